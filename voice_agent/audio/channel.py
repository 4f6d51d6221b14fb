"""Single-slot hand-off between the audio producer and the turn owner."""

import threading
from typing import Optional
import structlog

from .segmenter import AudioSegment
from ..errors import DeviceError


logger = structlog.get_logger()


class SegmentChannel:
    """
    Bounded, single-slot channel with drop-on-full semantics.

    The consumer opens the channel when it is ready for a segment and closes
    it when a turn starts. Segments offered while the channel is closed or
    already holds a segment are dropped, never queued, so stale audio is not
    processed late. A fatal producer error is delivered to the consumer.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._slot: Optional[AudioSegment] = None
        self._open = False
        self._closed_for_good = False
        self._error: Optional[BaseException] = None
        self.dropped_count = 0
        self.delivered_count = 0

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        """Start accepting segments."""
        with self._cond:
            if not self._closed_for_good:
                self._open = True

    def close(self) -> None:
        """Stop accepting segments and drop anything pending."""
        with self._cond:
            self._open = False
            if self._slot is not None:
                self._slot = None
                self.dropped_count += 1

    def shutdown(self) -> None:
        """Close permanently and wake any waiting consumer."""
        with self._cond:
            self._closed_for_good = True
            self._open = False
            self._slot = None
            self._cond.notify_all()

    def offer(self, segment: AudioSegment) -> bool:
        """Offer a segment. Returns False if it was dropped."""
        with self._cond:
            if not self._open or self._slot is not None:
                self.dropped_count += 1
                logger.debug(
                    "Dropped segment",
                    reason="closed" if not self._open else "full",
                    duration_ms=round(segment.duration_ms),
                )
                return False
            self._slot = segment
            self._cond.notify_all()
            return True

    def fail(self, error: BaseException) -> None:
        """Report a fatal producer error to the consumer."""
        with self._cond:
            self._error = error
            self._cond.notify_all()

    def receive(self, timeout: Optional[float] = None) -> Optional[AudioSegment]:
        """
        Wait for a segment.

        Returns None on timeout or after shutdown. Raises DeviceError if the
        producer failed.
        """
        with self._cond:
            self._cond.wait_for(
                lambda: self._slot is not None
                or self._error is not None
                or self._closed_for_good,
                timeout=timeout,
            )
            if self._error is not None:
                error = self._error
                if isinstance(error, DeviceError):
                    raise error
                raise DeviceError(str(error)) from error
            segment = self._slot
            self._slot = None
            if segment is not None:
                self.delivered_count += 1
            return segment
