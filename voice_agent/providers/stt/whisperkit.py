"""WhisperKit STT provider: transcribes one segment per CLI invocation."""

import os
import subprocess
import tempfile
import time
from typing import Optional
import numpy as np
import soundfile as sf
import structlog

from .base import STTProvider
from ...audio.segmenter import AudioSegment
from ...errors import TranscriptionError
from ...utils.text import strip_non_speech_markers


logger = structlog.get_logger()


class WhisperKitProvider(STTProvider):
    """
    WhisperKit STT provider.

    Each segment is written to a temporary 16-bit WAV file and passed to
    `whisperkit-cli transcribe --audio-path`.
    """

    def __init__(
        self,
        model: str = "large-v3_turbo",
        compute_units: str = "cpuAndNeuralEngine",
        whisperkit_path: str = "/opt/homebrew/bin/whisperkit-cli",
        target_sample_rate: int = 16000,
        min_duration: float = 0.1,
        process_timeout: float = 60.0,
        verbose: bool = False,
    ):
        self.model = model
        self.compute_units = compute_units
        self.whisperkit_path = whisperkit_path
        self.target_sample_rate = target_sample_rate
        self.min_duration = min_duration
        self.process_timeout = process_timeout
        self.verbose = verbose

        # State management
        self.process: Optional[subprocess.Popen] = None
        self.is_initialized = False

        # Performance metrics
        self.segments_transcribed = 0
        self.last_processing_time_ms: Optional[float] = None

    def initialize(self) -> None:
        """Check that the WhisperKit CLI is available."""
        logger.info(
            "Initializing WhisperKit provider",
            model=self.model,
            whisperkit_path=self.whisperkit_path,
        )

        try:
            result = subprocess.run(
                [self.whisperkit_path, "--help"],
                capture_output=True,
                text=True,
                timeout=10,
            )
            if result.returncode != 0:
                raise RuntimeError(f"WhisperKit CLI not working: {result.stderr}")
        except FileNotFoundError:
            raise RuntimeError(f"WhisperKit CLI not found at {self.whisperkit_path}")
        except subprocess.TimeoutExpired:
            raise RuntimeError("WhisperKit CLI check timed out")

        self.is_initialized = True
        logger.info("WhisperKit provider initialized successfully")

    def _build_command(self, audio_path: str) -> list[str]:
        cmd = [
            self.whisperkit_path,
            "transcribe",
            "--audio-path",
            audio_path,
            "--model",
            self.model,
            "--audio-encoder-compute-units",
            self.compute_units,
            "--text-decoder-compute-units",
            self.compute_units,
        ]
        if self.verbose:
            cmd.append("--verbose")
        return cmd

    def _check_segment(self, segment: AudioSegment) -> None:
        if len(segment.samples) == 0:
            raise TranscriptionError("Empty audio segment")
        if segment.duration < self.min_duration:
            raise TranscriptionError(
                f"Segment too short: {segment.duration * 1000:.0f}ms"
            )
        if not np.all(np.isfinite(segment.samples)):
            raise TranscriptionError("Corrupt audio segment (non-finite samples)")

    def transcribe(self, segment: AudioSegment) -> str:
        """Transcribe a segment with WhisperKit."""
        if not self.is_initialized:
            raise TranscriptionError("Provider not initialized. Call initialize() first.")

        self._check_segment(segment)
        audio = segment.resampled(self.target_sample_rate)

        with tempfile.NamedTemporaryFile(suffix=".wav", delete=False) as temp_file:
            temp_filename = temp_file.name

        start_time = time.time()
        try:
            sf.write(
                temp_filename,
                np.clip(audio.samples, -1.0, 1.0),
                audio.sample_rate,
                subtype="PCM_16",
            )

            cmd = self._build_command(temp_filename)
            try:
                self.process = subprocess.Popen(
                    cmd,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                )
            except OSError as e:
                logger.error("Failed to start WhisperKit", error=str(e))
                raise TranscriptionError(f"Failed to start WhisperKit: {e}") from e

            logger.debug("WhisperKit subprocess started", pid=self.process.pid)

            try:
                stdout, stderr = self.process.communicate(timeout=self.process_timeout)
            except subprocess.TimeoutExpired:
                self.process.kill()
                self.process.communicate()
                raise TranscriptionError(
                    f"WhisperKit timed out after {self.process_timeout:g}s"
                )

            if self.process.returncode != 0:
                logger.error(
                    "WhisperKit process failed",
                    return_code=self.process.returncode,
                    stderr=stderr,
                )
                raise TranscriptionError(
                    f"WhisperKit failed with code {self.process.returncode}: {stderr.strip()}"
                )

        finally:
            self.process = None
            try:
                os.unlink(temp_filename)
            except OSError:
                pass

        text = strip_non_speech_markers(" ".join(stdout.split()))
        self.segments_transcribed += 1
        self.last_processing_time_ms = (time.time() - start_time) * 1000

        logger.info(
            "Segment transcribed",
            processing_time_ms=self.last_processing_time_ms,
            text_length=len(text),
        )
        return text

    def stop(self) -> None:
        """Stop the provider and terminate any running transcription."""
        logger.info("Stopping WhisperKit provider")

        process = self.process
        if process and process.poll() is None:
            try:
                process.terminate()
                process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                logger.warning("WhisperKit process didn't terminate, killing")
                process.kill()
                process.wait()
            except Exception as e:
                logger.error("Error stopping WhisperKit process", error=str(e))

        self.process = None
        self.is_initialized = False

    def get_status(self) -> dict:
        """Get provider status."""
        return {
            "provider": "whisperkit",
            "model": self.model,
            "is_initialized": self.is_initialized,
            "process_running": self.process is not None and self.process.poll() is None,
            "compute_units": self.compute_units,
            "whisperkit_path": self.whisperkit_path,
            "segments_transcribed": self.segments_transcribed,
            "last_processing_time_ms": self.last_processing_time_ms,
        }
