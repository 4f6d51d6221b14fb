"""Configuration settings for the voice agent."""

import os
from pathlib import Path
from typing import Optional, Dict, Any, Union
from dataclasses import dataclass, asdict
import json
import structlog
from dotenv import load_dotenv
import threading


logger = structlog.get_logger()


@dataclass
class SystemPrompts:
    """System prompts for LLM providers."""
    default: str = (
        "You are a friendly voice assistant. Your answers are spoken aloud, so "
        "keep them short and conversational and never use markdown or emoji. "
        "Use the available tools when they help you answer."
    )


@dataclass
class AudioSettings:
    """Audio capture and segmentation settings."""
    sample_rate: int = 16000
    channels: int = 1
    frame_ms: int = 30
    silence_threshold: float = 0.02  # RMS amplitude
    silence_duration_ms: int = 800
    min_segment_ms: int = 300
    max_segment_ms: Optional[int] = 30000
    device: Optional[Union[int, str]] = None


@dataclass
class ConversationSettings:
    """Turn loop settings."""
    max_tool_iterations: int = 5
    call_timeout: Optional[float] = None  # seconds, None = unbounded
    use_tools: bool = True
    speak_notices: bool = False
    quiet_wake_word: str = "cat"


@dataclass
class ProviderSettings:
    """Provider-specific settings."""
    stt_provider: str = "whisperkit"
    llm_provider: str = "ollama"
    tts_provider: str = "elevenlabs"

    # WhisperKit
    whisperkit_model: str = "large-v3_turbo"
    whisperkit_compute_units: str = "cpuAndNeuralEngine"
    whisperkit_path: str = "/opt/homebrew/bin/whisperkit-cli"

    # Ollama
    ollama_host: str = "http://localhost:11434"
    ollama_model: str = "qwen3:8b"

    # Gemini
    gemini_model: str = "gemini-1.5-flash"
    gemini_temperature: float = 0.7
    gemini_max_tokens: int = 2048

    # ElevenLabs
    elevenlabs_voice_id: str = "pNInz6obpgDQGcFmaJgB"  # Adam voice
    elevenlabs_model_id: str = "eleven_flash_v2_5"
    elevenlabs_output_format: str = "mp3_22050_32"
    elevenlabs_stability: float = 0.5
    elevenlabs_similarity_boost: float = 0.8
    elevenlabs_style: float = 0.0
    elevenlabs_speed: float = 1.0
    elevenlabs_use_speaker_boost: bool = True


@dataclass
class MetricsSettings:
    """Metrics collection settings."""
    enabled: bool = True
    save_sessions: bool = True
    cleanup_interval_days: int = 30


@dataclass
class LoggingSettings:
    """Logging configuration settings."""
    level: str = "INFO"
    format: str = "console"
    file_enabled: bool = True
    file_rotation_mb: int = 10
    file_backup_count: int = 7


KNOWN_STT_PROVIDERS = ("whisperkit", "mock")
KNOWN_LLM_PROVIDERS = ("ollama", "gemini", "mock")
KNOWN_TTS_PROVIDERS = ("elevenlabs", "mock")


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_optional_number(value: str, cast):
    """Parse a number where an empty string or 'none' means unset."""
    if value.strip().lower() in ("", "none", "null"):
        return None
    return cast(value)


def _env_device(value: str) -> Optional[Union[int, str]]:
    """Device index when numeric, otherwise a device name."""
    value = value.strip()
    if not value:
        return None
    return int(value) if value.isdigit() else value


# env var -> (section, field, parser)
ENV_OVERRIDES = {
    "SYSTEM_PROMPT_DEFAULT": ("system_prompts", "default", str),
    "AUDIO_SAMPLE_RATE": ("audio", "sample_rate", int),
    "AUDIO_CHANNELS": ("audio", "channels", int),
    "AUDIO_DEVICE": ("audio", "device", _env_device),
    "FRAME_MS": ("audio", "frame_ms", int),
    "SILENCE_THRESHOLD": ("audio", "silence_threshold", float),
    "SILENCE_DURATION_MS": ("audio", "silence_duration_ms", int),
    "MIN_SEGMENT_MS": ("audio", "min_segment_ms", int),
    "MAX_SEGMENT_MS": (
        "audio", "max_segment_ms", lambda v: _env_optional_number(v, int)
    ),
    "MAX_TOOL_ITERATIONS": ("conversation", "max_tool_iterations", int),
    "CALL_TIMEOUT": (
        "conversation", "call_timeout", lambda v: _env_optional_number(v, float)
    ),
    "USE_TOOLS": ("conversation", "use_tools", _env_bool),
    "SPEAK_NOTICES": ("conversation", "speak_notices", _env_bool),
    "QUIET_WAKE_WORD": ("conversation", "quiet_wake_word", str),
    "STT_PROVIDER": ("providers", "stt_provider", str),
    "LLM_PROVIDER": ("providers", "llm_provider", str),
    "TTS_PROVIDER": ("providers", "tts_provider", str),
    "WHISPERKIT_MODEL": ("providers", "whisperkit_model", str),
    "WHISPERKIT_COMPUTE_UNITS": ("providers", "whisperkit_compute_units", str),
    "WHISPERKIT_PATH": ("providers", "whisperkit_path", str),
    "OLLAMA_HOST": ("providers", "ollama_host", str),
    "OLLAMA_MODEL": ("providers", "ollama_model", str),
    "GEMINI_MODEL": ("providers", "gemini_model", str),
    "GEMINI_TEMPERATURE": ("providers", "gemini_temperature", float),
    "GEMINI_MAX_TOKENS": ("providers", "gemini_max_tokens", int),
    "ELEVENLABS_VOICE_ID": ("providers", "elevenlabs_voice_id", str),
    "ELEVENLABS_MODEL_ID": ("providers", "elevenlabs_model_id", str),
    "ELEVENLABS_OUTPUT_FORMAT": ("providers", "elevenlabs_output_format", str),
    "METRICS_ENABLED": ("metrics", "enabled", _env_bool),
    "LOG_LEVEL": ("logging", "level", str),
    "LOG_FORMAT": ("logging", "format", str),
    "LOG_FILE_ENABLED": ("logging", "file_enabled", _env_bool),
}


class Settings:
    """Main settings class for the voice agent."""

    SECTIONS = ("system_prompts", "audio", "conversation", "providers", "metrics", "logging")

    def __init__(self, config_file: Optional[Union[str, Path]] = None,
                 load_env_file: bool = True):
        self.config_file = Path(config_file) if config_file else None
        self._lock = threading.RLock()
        self._env_loaded = False

        # Initialize sub-settings
        self.system_prompts = SystemPrompts()
        self.audio = AudioSettings()
        self.conversation = ConversationSettings()
        self.providers = ProviderSettings()
        self.metrics = MetricsSettings()
        self.logging = LoggingSettings()

        # Load .env file first
        if load_env_file:
            self._load_env_file()

        # Load from file if provided
        if self.config_file and self.config_file.exists():
            self.load_from_file()

        # Override with environment variables
        self.load_from_env()

    def _load_env_file(self) -> None:
        """Load environment variables from .env file."""
        if not self._env_loaded:
            # Look for .env in current directory and parent directories
            current_dir = Path.cwd()
            for parent in [current_dir] + list(current_dir.parents):
                env_file = parent / ".env"
                if env_file.exists():
                    load_dotenv(env_file)
                    logger.debug("Loaded .env file", path=str(env_file))
                    break
            self._env_loaded = True

    def load_from_file(self) -> None:
        """Load settings from configuration file."""
        if not self.config_file or not self.config_file.exists():
            return

        try:
            with self._lock:
                with open(self.config_file, 'r') as f:
                    config = json.load(f)

                for section_name in self.SECTIONS:
                    section_config = config.get(section_name)
                    if not isinstance(section_config, dict):
                        continue
                    section = getattr(self, section_name)
                    for key, value in section_config.items():
                        if hasattr(section, key):
                            setattr(section, key, value)
                        else:
                            logger.warning("Ignoring unknown setting",
                                           section=section_name, key=key)

                logger.info("Loaded settings from file", file=str(self.config_file))

        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to load settings from file",
                        file=str(self.config_file),
                        error=str(e))

    def load_from_env(self) -> None:
        """Load settings from environment variables."""
        with self._lock:
            for env_name, (section_name, key, parse) in ENV_OVERRIDES.items():
                raw = os.getenv(env_name)
                if raw is None:
                    continue
                try:
                    value = parse(raw)
                except ValueError:
                    logger.warning("Ignoring invalid environment value",
                                   variable=env_name, value=raw)
                    continue
                setattr(getattr(self, section_name), key, value)

    def save_to_file(self, file_path: Optional[Union[str, Path]] = None) -> None:
        """Save current settings to file."""
        save_path = Path(file_path) if file_path else self.config_file
        if not save_path:
            raise ValueError("No file path provided")

        try:
            with self._lock:
                # Ensure parent directory exists
                save_path.parent.mkdir(parents=True, exist_ok=True)

                with open(save_path, 'w') as f:
                    json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)

                logger.info("Saved settings to file", file=str(save_path))

        except OSError as e:
            logger.error("Failed to save settings to file",
                        file=str(save_path), error=str(e))
            raise

    def get_provider_config(self, provider_type: str) -> Dict[str, Any]:
        """Get configuration for a specific provider."""
        p = self.providers
        if provider_type == "whisperkit":
            return {
                "model": p.whisperkit_model,
                "compute_units": p.whisperkit_compute_units,
                "whisperkit_path": p.whisperkit_path,
            }
        elif provider_type == "ollama":
            return {
                "host": p.ollama_host,
                "model": p.ollama_model,
                "system_prompt": self.system_prompts.default,
            }
        elif provider_type == "gemini":
            return {
                "model": p.gemini_model,
                "temperature": p.gemini_temperature,
                "max_tokens": p.gemini_max_tokens,
                "system_prompt": self.system_prompts.default,
            }
        elif provider_type == "elevenlabs":
            return {
                "voice_id": p.elevenlabs_voice_id,
                "model_id": p.elevenlabs_model_id,
                "output_format": p.elevenlabs_output_format,
                "stability": p.elevenlabs_stability,
                "similarity_boost": p.elevenlabs_similarity_boost,
                "style": p.elevenlabs_style,
                "speed": p.elevenlabs_speed,
                "use_speaker_boost": p.elevenlabs_use_speaker_boost,
            }
        else:
            raise ValueError(f"Unknown provider type: {provider_type}")

    def reload(self) -> None:
        """Reload settings from file and environment."""
        with self._lock:
            if self.config_file and self.config_file.exists():
                self.load_from_file()
            self.load_from_env()
            logger.info("Settings reloaded")

    def validate(self) -> list[str]:
        """Validate current settings and return list of issues."""
        issues = []

        # Validate audio settings
        audio = self.audio
        if audio.sample_rate not in [8000, 16000, 22050, 44100, 48000]:
            issues.append(f"Invalid sample rate: {audio.sample_rate}")
        if audio.channels not in [1, 2]:
            issues.append(f"Invalid channels: {audio.channels}")
        if audio.frame_ms <= 0:
            issues.append(f"Invalid frame duration: {audio.frame_ms}")
        if not 0 < audio.silence_threshold < 1:
            issues.append(f"Invalid silence threshold: {audio.silence_threshold}")
        if audio.silence_duration_ms <= 0:
            issues.append(f"Invalid silence duration: {audio.silence_duration_ms}")
        if audio.min_segment_ms < 0:
            issues.append(f"Invalid minimum segment duration: {audio.min_segment_ms}")
        if audio.max_segment_ms is not None and audio.max_segment_ms <= audio.min_segment_ms:
            issues.append(
                f"Maximum segment duration {audio.max_segment_ms} must exceed "
                f"minimum {audio.min_segment_ms}"
            )

        # Validate conversation settings
        conversation = self.conversation
        if conversation.max_tool_iterations < 1:
            issues.append(f"Invalid max tool iterations: {conversation.max_tool_iterations}")
        if conversation.call_timeout is not None and conversation.call_timeout <= 0:
            issues.append(f"Invalid call timeout: {conversation.call_timeout}")
        if not conversation.quiet_wake_word.strip():
            issues.append("Quiet wake word must not be empty")

        # Validate provider settings
        if self.providers.stt_provider not in KNOWN_STT_PROVIDERS:
            issues.append(f"Unknown STT provider: {self.providers.stt_provider}")
        if self.providers.llm_provider not in KNOWN_LLM_PROVIDERS:
            issues.append(f"Unknown LLM provider: {self.providers.llm_provider}")
        if self.providers.tts_provider not in KNOWN_TTS_PROVIDERS:
            issues.append(f"Unknown TTS provider: {self.providers.tts_provider}")

        if self.logging.format not in ("console", "json"):
            issues.append(f"Unknown log format: {self.logging.format}")

        return issues

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to dictionary for serialization."""
        with self._lock:
            return {name: asdict(getattr(self, name)) for name in self.SECTIONS}


# Global settings instance
settings = Settings()
