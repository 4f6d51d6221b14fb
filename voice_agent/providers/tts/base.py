"""Base interface for Text-to-Speech providers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterator, Optional
import structlog

from ...errors import SynthesisError
from ...utils.text import clean_for_speech


logger = structlog.get_logger()


@dataclass
class AudioChunk:
    """Represents an audio chunk from TTS."""
    data: bytes
    is_first: bool = False
    is_final: bool = False
    duration_ms: Optional[int] = None
    format: str = "mp3"


class TTSProvider(ABC):
    """Abstract base class for TTS providers."""

    @abstractmethod
    def initialize(self) -> None:
        """Initialize the TTS provider."""
        pass

    @abstractmethod
    def stream_audio(self, text: str) -> Iterator[AudioChunk]:
        """
        Stream audio for the given text.

        Args:
            text: The text to convert to speech

        Yields:
            AudioChunk objects as audio is generated; the last has is_final=True
        """
        pass

    @abstractmethod
    def play_chunk(self, chunk: AudioChunk) -> None:
        """
        Play an audio chunk through speakers.

        Playback of the final chunk blocks until the audio has finished.
        """
        pass

    @abstractmethod
    def stop_playback(self) -> None:
        """Stop current audio playback."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop the TTS provider and clean up resources."""
        pass

    @abstractmethod
    def get_status(self) -> dict:
        """Get current status of the TTS provider."""
        pass

    def speak(self, text: str) -> None:
        """
        Synthesize and play text, returning once playback has completed.

        Raises:
            SynthesisError: if synthesis or playback fails
        """
        spoken = clean_for_speech(text)
        if not spoken:
            logger.debug("Nothing to speak after clean-up")
            return

        try:
            for chunk in self.stream_audio(spoken):
                self.play_chunk(chunk)
        except SynthesisError:
            self._safe_stop_playback()
            raise
        except Exception as e:
            logger.error("Speech synthesis failed", error=str(e))
            self._safe_stop_playback()
            raise SynthesisError(f"Speech synthesis failed: {e}") from e

    def _safe_stop_playback(self) -> None:
        try:
            self.stop_playback()
        except Exception as e:
            logger.warning("Error stopping playback", error=str(e))
