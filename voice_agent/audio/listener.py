"""Audio producer: frames -> segmenter -> channel, on its own thread."""

import threading
from abc import ABC, abstractmethod
from typing import Optional
import numpy as np
import structlog

from .channel import SegmentChannel
from .segmenter import Segmenter
from ..errors import DeviceError


logger = structlog.get_logger()


class FrameSource(ABC):
    """Abstract source of fixed-size audio frames."""

    @abstractmethod
    def start(self) -> None:
        """Open the device. Raises DeviceError if it is unavailable."""
        pass

    @abstractmethod
    def read_frame(self, timeout: float) -> Optional[np.ndarray]:
        """
        Return the next mono float32 frame, or None if none arrived in time.

        Raises DeviceError if the device stopped delivering audio.
        """
        pass

    @abstractmethod
    def stop(self) -> None:
        """Close the device and release resources."""
        pass

    @abstractmethod
    def get_status(self) -> dict:
        pass


class SegmentListener:
    """
    Continuously reads frames and publishes completed segments.

    Runs independently of the conversation turn: segments completed while
    the channel is closed are simply dropped by the channel.
    """

    def __init__(
        self,
        source: FrameSource,
        segmenter: Segmenter,
        channel: SegmentChannel,
        poll_interval: float = 0.5,
    ):
        self.source = source
        self.segmenter = segmenter
        self.channel = channel
        self.poll_interval = poll_interval

        self.is_running = False
        self.thread: Optional[threading.Thread] = None
        self.error: Optional[DeviceError] = None

    def start(self) -> None:
        """Open the source and start the capture thread."""
        logger.info("Starting segment listener")
        self.source.start()

        self.is_running = True
        self.thread = threading.Thread(
            target=self._capture_loop, daemon=True, name="Audio-Listener"
        )
        self.thread.start()

    def _capture_loop(self) -> None:
        logger.debug("Audio listener started")

        try:
            while self.is_running:
                frame = self.source.read_frame(timeout=self.poll_interval)
                if frame is None:
                    continue

                segment = self.segmenter.process(frame)
                if segment is not None:
                    self.channel.offer(segment)

        except DeviceError as e:
            logger.error("Audio device failed", error=str(e))
            self.error = e
            self.is_running = False
            self.channel.fail(e)

        except Exception as e:
            logger.error("Audio listener crashed", error=str(e), exc_info=True)
            self.error = DeviceError(f"Audio capture failed: {e}")
            self.is_running = False
            self.channel.fail(self.error)

        logger.debug("Audio listener stopped")

    def stop(self) -> None:
        """Stop capturing and release the device."""
        logger.info("Stopping segment listener")
        self.is_running = False

        if self.thread and self.thread.is_alive() and self.thread is not threading.current_thread():
            self.thread.join(timeout=2)
            if self.thread.is_alive():
                logger.warning("Audio listener thread did not terminate gracefully")

        try:
            self.source.stop()
        except Exception as e:
            logger.warning("Error stopping audio source", error=str(e))

        self.segmenter.reset()

    def get_status(self) -> dict:
        return {
            "is_running": self.is_running,
            "error": str(self.error) if self.error else None,
            "segmenter": self.segmenter.get_status(),
            "source": self.source.get_status(),
            "segments_dropped": self.channel.dropped_count,
        }
