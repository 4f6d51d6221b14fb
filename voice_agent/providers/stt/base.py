"""Base interface for Speech-to-Text providers."""

from abc import ABC, abstractmethod

from ...audio.segmenter import AudioSegment


class STTProvider(ABC):
    """Abstract base class for STT providers."""

    @abstractmethod
    def initialize(self) -> None:
        """Initialize the STT provider."""
        pass

    @abstractmethod
    def transcribe(self, segment: AudioSegment) -> str:
        """
        Transcribe one audio segment.

        Args:
            segment: The segment to transcribe

        Returns:
            The transcribed text, possibly empty

        Raises:
            TranscriptionError: if the engine cannot process the segment
        """
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop the STT provider and clean up resources."""
        pass

    @abstractmethod
    def get_status(self) -> dict:
        """Get current status of the STT provider."""
        pass
