"""ElevenLabs TTS provider implementation."""

import os
import time
from io import BytesIO
from typing import Iterator, Optional
import pygame
from elevenlabs import VoiceSettings
from elevenlabs.client import ElevenLabs
import structlog

from .base import TTSProvider, AudioChunk
from ...errors import SynthesisError


logger = structlog.get_logger()


class ElevenLabsProvider(TTSProvider):
    """
    ElevenLabs TTS provider with pygame playback.
    """

    def __init__(
        self,
        voice_id: str = "pNInz6obpgDQGcFmaJgB",  # Adam voice
        model_id: str = "eleven_flash_v2_5",
        output_format: str = "mp3_22050_32",
        stability: float = 0.5,
        similarity_boost: float = 0.8,
        style: float = 0.0,
        speed: float = 1.0,
        use_speaker_boost: bool = True,
        chunk_size: int = 4096,
    ):
        self.voice_id = voice_id
        self.model_id = model_id
        self.output_format = output_format
        self.chunk_size = chunk_size

        # Voice settings
        self.voice_settings = VoiceSettings(
            stability=stability,
            similarity_boost=similarity_boost,
            style=style,
            use_speaker_boost=use_speaker_boost,
            speed=speed,
        )

        self.client: Optional[ElevenLabs] = None
        self.is_playing = False
        self.should_stop = False
        self._audio_buffer = BytesIO()
        self.utterances_spoken = 0

    def initialize(self) -> None:
        """Initialize ElevenLabs client and pygame mixer."""
        logger.info("Initializing ElevenLabs provider", voice_id=self.voice_id)

        api_key = os.getenv("ELEVENLABS_API_KEY")
        if not api_key:
            raise ValueError("ELEVENLABS_API_KEY environment variable not set")

        self.client = ElevenLabs(api_key=api_key)

        pygame.mixer.pre_init(frequency=22050, size=-16, channels=2, buffer=1024)
        pygame.mixer.init()

        logger.info("ElevenLabs provider initialized")

    def stream_audio(self, text: str) -> Iterator[AudioChunk]:
        """Stream audio from ElevenLabs."""
        if not self.client:
            raise SynthesisError("ElevenLabs not initialized")

        logger.debug("Generating TTS audio", text_length=len(text))
        self.should_stop = False

        try:
            response = self.client.text_to_speech.stream(
                voice_id=self.voice_id,
                text=text,
                model_id=self.model_id,
                output_format=self.output_format,
                voice_settings=self.voice_settings,
            )

            is_first = True
            total_bytes = 0
            for data in response:
                if self.should_stop:
                    logger.debug("TTS generation stopped")
                    return
                if not data:
                    continue

                total_bytes += len(data)
                yield AudioChunk(
                    data=data,
                    is_first=is_first,
                    format=self.output_format.split("_")[0],
                )
                is_first = False

        except SynthesisError:
            raise
        except Exception as e:
            logger.error("Error generating TTS audio", error=str(e))
            raise SynthesisError(f"ElevenLabs synthesis failed: {e}") from e

        if total_bytes == 0:
            raise SynthesisError("ElevenLabs returned no audio")

        yield AudioChunk(data=b"", is_final=True)
        logger.debug("TTS generation complete", total_bytes=total_bytes)

    def play_chunk(self, chunk: AudioChunk) -> None:
        """Buffer chunk data; the final chunk plays the buffer to completion."""
        if chunk.is_first:
            self._audio_buffer = BytesIO()

        if chunk.data:
            self._audio_buffer.write(chunk.data)

        if not chunk.is_final:
            return

        try:
            self._audio_buffer.seek(0)
            pygame.mixer.music.load(self._audio_buffer)
            pygame.mixer.music.play()
            self.is_playing = True
            logger.debug("Started audio playback")

            while pygame.mixer.music.get_busy() and not self.should_stop:
                time.sleep(0.01)

            self.utterances_spoken += 1
            logger.debug("Audio playback completed")
        except pygame.error as e:
            logger.error("Audio playback failed", error=str(e))
            raise SynthesisError(f"Audio playback failed: {e}") from e
        finally:
            self.is_playing = False
            self._audio_buffer = BytesIO()

    def stop_playback(self) -> None:
        """Stop current audio playback."""
        logger.debug("Stopping audio playback")
        self.should_stop = True

        if self.is_playing and pygame.mixer.get_init():
            pygame.mixer.music.stop()
            self.is_playing = False

    def stop(self) -> None:
        """Stop ElevenLabs provider."""
        logger.info("Stopping ElevenLabs provider")

        self.stop_playback()
        if pygame.mixer.get_init():
            pygame.mixer.quit()
        self.client = None

    def get_status(self) -> dict:
        """Get ElevenLabs provider status."""
        return {
            "provider": "elevenlabs",
            "voice_id": self.voice_id,
            "model_id": self.model_id,
            "is_playing": self.is_playing,
            "utterances_spoken": self.utterances_spoken,
            "initialized": self.client is not None,
            "mixer_initialized": pygame.mixer.get_init() is not None,
        }
