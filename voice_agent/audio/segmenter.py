"""Amplitude-based segmentation of microphone frames into utterances."""

import time
from dataclasses import dataclass, field
from typing import List, Optional
import numpy as np
import structlog


logger = structlog.get_logger()


@dataclass
class AudioSegment:
    """One contiguous utterance of audio bounded by silence."""

    samples: np.ndarray
    sample_rate: int
    started_at: float = field(default_factory=time.time)

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        return len(self.samples) / float(self.sample_rate)

    @property
    def duration_ms(self) -> float:
        return self.duration * 1000

    def resampled(self, target_rate: int) -> "AudioSegment":
        """Return a copy resampled to target_rate using linear interpolation."""
        if target_rate == self.sample_rate or len(self.samples) == 0:
            return AudioSegment(self.samples.copy(), self.sample_rate, self.started_at)

        target_length = max(1, int(round(len(self.samples) * target_rate / self.sample_rate)))
        source_positions = np.arange(len(self.samples), dtype=np.float64)
        target_positions = np.linspace(0, len(self.samples) - 1, target_length)
        resampled = np.interp(target_positions, source_positions, self.samples)
        return AudioSegment(resampled.astype(np.float32), target_rate, self.started_at)


@dataclass(frozen=True)
class SegmenterConfig:
    """Segmentation parameters."""

    sample_rate: int = 16000
    frame_ms: int = 30
    silence_threshold: float = 0.02  # RMS amplitude, samples in [-1, 1]
    silence_duration_ms: int = 800
    min_segment_ms: int = 300
    max_segment_ms: Optional[int] = 30000

    def __post_init__(self):
        if self.sample_rate <= 0:
            raise ValueError(f"Invalid sample rate: {self.sample_rate}")
        if self.frame_ms <= 0:
            raise ValueError(f"Invalid frame duration: {self.frame_ms}")
        if self.silence_threshold < 0:
            raise ValueError(f"Invalid silence threshold: {self.silence_threshold}")
        if self.max_segment_ms is not None and self.max_segment_ms < self.min_segment_ms:
            raise ValueError("max_segment_ms must not be below min_segment_ms")

    @property
    def frame_size(self) -> int:
        return int(self.sample_rate * self.frame_ms / 1000)

    @classmethod
    def from_settings(cls, settings) -> "SegmenterConfig":
        audio = settings.audio
        return cls(
            sample_rate=audio.sample_rate,
            frame_ms=audio.frame_ms,
            silence_threshold=audio.silence_threshold,
            silence_duration_ms=audio.silence_duration_ms,
            min_segment_ms=audio.min_segment_ms,
            max_segment_ms=audio.max_segment_ms,
        )


def frame_rms(frame: np.ndarray) -> float:
    """Root-mean-square amplitude of a frame."""
    if len(frame) == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(frame, dtype=np.float64))))


class Segmenter:
    """
    Turns a stream of frames into AudioSegments.

    Silent frames are dropped until speech begins. Once it has, frames are
    buffered until silence has lasted silence_duration_ms; the buffered
    speech, without the trailing silence, is then emitted. Candidates shorter
    than min_segment_ms are discarded as noise.
    """

    def __init__(self, config: SegmenterConfig):
        self.config = config
        self._frames: List[np.ndarray] = []
        self._speech_samples = 0
        self._trailing_silence: List[np.ndarray] = []
        self._trailing_silence_samples = 0
        self._started_at: Optional[float] = None

        self._silence_samples_needed = int(
            config.sample_rate * config.silence_duration_ms / 1000
        )
        self._min_samples = int(config.sample_rate * config.min_segment_ms / 1000)
        self._max_samples = (
            int(config.sample_rate * config.max_segment_ms / 1000)
            if config.max_segment_ms is not None
            else None
        )

        # Stats
        self.frames_processed = 0
        self.segments_emitted = 0
        self.segments_discarded = 0
        self.last_rms = 0.0

    @property
    def in_speech(self) -> bool:
        return self._started_at is not None

    def is_silent(self, frame: np.ndarray) -> bool:
        self.last_rms = frame_rms(frame)
        return self.last_rms < self.config.silence_threshold

    def process(self, frame: np.ndarray) -> Optional[AudioSegment]:
        """Feed one frame. Returns a completed segment, if this frame ended one."""
        frame = np.asarray(frame, dtype=np.float32).reshape(-1)
        self.frames_processed += 1
        silent = self.is_silent(frame)

        if not self.in_speech:
            if silent:
                return None
            self._started_at = time.time()
            logger.debug("Speech started", rms=self.last_rms)

        if silent:
            self._trailing_silence.append(frame)
            self._trailing_silence_samples += len(frame)
            if self._trailing_silence_samples >= self._silence_samples_needed:
                return self._finish()
            return None

        # Speech: a short pause inside the utterance belongs to it
        if self._trailing_silence:
            self._frames.extend(self._trailing_silence)
            self._speech_samples += self._trailing_silence_samples
            self._trailing_silence = []
            self._trailing_silence_samples = 0

        self._frames.append(frame)
        self._speech_samples += len(frame)

        if self._max_samples is not None and self._speech_samples >= self._max_samples:
            logger.debug("Maximum segment length reached", samples=self._speech_samples)
            return self._finish()
        return None

    def reset(self) -> None:
        """Drop any partially buffered speech."""
        self._frames = []
        self._speech_samples = 0
        self._trailing_silence = []
        self._trailing_silence_samples = 0
        self._started_at = None

    def _finish(self) -> Optional[AudioSegment]:
        started_at = self._started_at
        frames = self._frames
        speech_samples = self._speech_samples
        self.reset()

        if speech_samples < self._min_samples:
            self.segments_discarded += 1
            logger.debug(
                "Discarded short segment",
                duration_ms=speech_samples * 1000 / self.config.sample_rate,
                min_segment_ms=self.config.min_segment_ms,
            )
            return None

        segment = AudioSegment(
            samples=np.concatenate(frames),
            sample_rate=self.config.sample_rate,
            started_at=started_at,
        )
        self.segments_emitted += 1
        logger.info("Segment completed", duration_ms=round(segment.duration_ms))
        return segment

    def get_status(self) -> dict:
        return {
            "in_speech": self.in_speech,
            "buffered_ms": self._speech_samples * 1000 / self.config.sample_rate,
            "frames_processed": self.frames_processed,
            "segments_emitted": self.segments_emitted,
            "segments_discarded": self.segments_discarded,
            "last_rms": self.last_rms,
        }
