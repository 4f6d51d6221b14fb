"""Microphone frame source backed by sounddevice."""

import queue
import time
from typing import Optional, Union
import numpy as np
import sounddevice as sd
import structlog

from .listener import FrameSource
from ..errors import DeviceError


logger = structlog.get_logger()


class MicrophoneSource(FrameSource):
    """
    Reads fixed-size frames from the default (or configured) input device.

    The sounddevice callback only converts to mono and enqueues; all
    processing happens on the listener thread.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        frame_size: int = 480,
        device: Optional[Union[int, str]] = None,
        queue_size: int = 200,
    ):
        self.sample_rate = sample_rate
        self.channels = channels
        self.frame_size = frame_size
        self.device = device

        self.frame_queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self.audio_stream: Optional[sd.InputStream] = None
        self.is_recording = False
        self._stream_finished = False

        # Performance metrics
        self.audio_callback_count = 0
        self.dropped_frames = 0
        self.last_audio_time = 0.0

    def audio_callback(self, indata: np.ndarray, frames: int, time_info, status) -> None:
        """Low-latency audio callback for sounddevice."""
        if status:
            logger.warning("Audio callback status", status=str(status))

        # Convert to mono if needed
        if indata.shape[1] > 1:
            audio_data = np.mean(indata, axis=1)
        else:
            audio_data = indata.flatten()

        self.audio_callback_count += 1
        self.last_audio_time = time.time()

        try:
            self.frame_queue.put_nowait(audio_data.astype(np.float32, copy=True))
        except queue.Full:
            self.dropped_frames += 1
            logger.warning("Frame queue full, dropping frame")

    def _on_stream_finished(self) -> None:
        if self.is_recording:
            logger.error("Audio input stream finished unexpectedly")
        self._stream_finished = True

    def start(self) -> None:
        """Open the input stream."""
        logger.info(
            "Opening microphone",
            sample_rate=self.sample_rate,
            frame_size=self.frame_size,
            device=self.device,
        )

        try:
            default_input = sd.query_devices(self.device, kind="input")
            logger.info(
                "Audio device info",
                input_device=default_input["name"],
                sample_rate=default_input["default_samplerate"],
            )
        except Exception as e:
            logger.error("Failed to query audio devices", error=str(e))
            raise DeviceError(f"No usable input device: {e}") from e

        try:
            self.audio_stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype=np.float32,
                blocksize=self.frame_size,
                device=self.device,
                callback=self.audio_callback,
                finished_callback=self._on_stream_finished,
                latency="low",
            )
            self._stream_finished = False
            self.audio_stream.start()
            self.is_recording = True
        except Exception as e:
            logger.error("Failed to open audio stream", error=str(e))
            raise DeviceError(f"Failed to open audio stream: {e}") from e

        logger.info("Microphone opened", latency=self.audio_stream.latency)

    def read_frame(self, timeout: float) -> Optional[np.ndarray]:
        try:
            return self.frame_queue.get(timeout=timeout)
        except queue.Empty:
            if self.is_recording and (
                self._stream_finished
                or self.audio_stream is None
                or not self.audio_stream.active
            ):
                raise DeviceError("Audio input stream stopped delivering frames")
            return None

    def stop(self) -> None:
        """Stop and close the input stream."""
        self.is_recording = False

        if self.audio_stream:
            try:
                self.audio_stream.stop()
                self.audio_stream.close()
            except Exception as e:
                logger.error("Error stopping audio stream", error=str(e))
            self.audio_stream = None

        logger.info("Microphone closed")

    def get_status(self) -> dict:
        return {
            "source": "microphone",
            "device": self.device,
            "is_recording": self.is_recording,
            "audio_stream_active": self.audio_stream is not None and self.audio_stream.active,
            "sample_rate": self.sample_rate,
            "frame_size": self.frame_size,
            "audio_callback_count": self.audio_callback_count,
            "dropped_frames": self.dropped_frames,
            "frame_queue_size": self.frame_queue.qsize(),
            "last_audio_time": self.last_audio_time,
        }
