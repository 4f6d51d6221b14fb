"""Provider registry for dynamic provider loading."""

from typing import Any, Callable, Dict, List, Optional, Type
import structlog

from .stt.base import STTProvider
from .llm.base import LLMProvider
from .tts.base import TTSProvider


logger = structlog.get_logger()

ConfigGetter = Callable[[], Dict[str, Any]]

STT = "stt"
LLM = "llm"
TTS = "tts"


class ProviderRegistry:
    """Registry for managing provider implementations."""

    def __init__(self):
        self._providers: Dict[str, Dict[str, type]] = {STT: {}, LLM: {}, TTS: {}}
        self._provider_configs: Dict[str, ConfigGetter] = {}

    def _register(
        self,
        kind: str,
        name: str,
        provider_class: type,
        config_getter: Optional[ConfigGetter],
    ) -> None:
        self._providers[kind][name] = provider_class
        if config_getter:
            self._provider_configs[f"{kind}:{name}"] = config_getter
        logger.debug(
            f"Registered {kind.upper()} provider",
            name=name,
            class_name=provider_class.__name__,
        )

    def _create(self, kind: str, name: str, kwargs: Dict[str, Any]):
        if name not in self._providers[kind]:
            available = ", ".join(sorted(self._providers[kind])) or "none"
            raise ValueError(
                f"Unknown {kind.upper()} provider: {name} (available: {available})"
            )

        provider_class = self._providers[kind][name]
        config_key = f"{kind}:{name}"

        # Explicit keyword arguments win over configured values
        config: Dict[str, Any] = {}
        if config_key in self._provider_configs:
            config = self._provider_configs[config_key]()
        config.update(kwargs)

        return provider_class(**config)

    def register_stt_provider(
        self,
        name: str,
        provider_class: Type[STTProvider],
        config_getter: Optional[ConfigGetter] = None,
    ) -> None:
        """Register an STT provider."""
        self._register(STT, name, provider_class, config_getter)

    def register_llm_provider(
        self,
        name: str,
        provider_class: Type[LLMProvider],
        config_getter: Optional[ConfigGetter] = None,
    ) -> None:
        """Register an LLM provider."""
        self._register(LLM, name, provider_class, config_getter)

    def register_tts_provider(
        self,
        name: str,
        provider_class: Type[TTSProvider],
        config_getter: Optional[ConfigGetter] = None,
    ) -> None:
        """Register a TTS provider."""
        self._register(TTS, name, provider_class, config_getter)

    def get_stt_provider(self, name: str, **kwargs) -> STTProvider:
        """Get an STT provider instance."""
        return self._create(STT, name, kwargs)

    def get_llm_provider(self, name: str, **kwargs) -> LLMProvider:
        """Get an LLM provider instance."""
        return self._create(LLM, name, kwargs)

    def get_tts_provider(self, name: str, **kwargs) -> TTSProvider:
        """Get a TTS provider instance."""
        return self._create(TTS, name, kwargs)

    def list_stt_providers(self) -> List[str]:
        return list(self._providers[STT].keys())

    def list_llm_providers(self) -> List[str]:
        return list(self._providers[LLM].keys())

    def list_tts_providers(self) -> List[str]:
        return list(self._providers[TTS].keys())

    def list_all(self) -> Dict[str, List[str]]:
        """Provider names grouped by kind."""
        return {kind: list(names.keys()) for kind, names in self._providers.items()}

    def clear(self) -> None:
        """Clear all registered providers."""
        for names in self._providers.values():
            names.clear()
        self._provider_configs.clear()


# Global registry instance
registry = ProviderRegistry()
