"""Tools available to the model out of the box."""

import threading
import time
from datetime import datetime
from typing import Callable, Optional
import structlog

from .base import ToolSpec
from .registry import ToolRegistry
from ..errors import ToolExecutionError


logger = structlog.get_logger()


class QuietPeriod:
    """
    Lets the model silence itself for a while.

    While active, user speech is ignored unless it contains the wake word.
    Saying the wake word ends the quiet period.
    """

    def __init__(self, wake_word: str = "cat", clock: Callable[[], float] = time.monotonic):
        self.wake_word = wake_word.lower()
        self._clock = clock
        self._until = 0.0
        self._lock = threading.Lock()

    def start(self, seconds: float) -> None:
        with self._lock:
            self._until = self._clock() + seconds
        logger.info("Quiet period started", seconds=seconds)

    def clear(self) -> None:
        with self._lock:
            self._until = 0.0

    def remaining(self) -> float:
        with self._lock:
            return max(0.0, self._until - self._clock())

    def is_active(self) -> bool:
        return self.remaining() > 0

    def allows(self, text: str) -> bool:
        """Whether the agent may answer this transcript."""
        if not self.is_active():
            return True
        return bool(self.wake_word) and self.wake_word in text.lower()


TIME_TOOL = ToolSpec(
    name="timetool",
    description="Returns the current time.",
)

TIMEOUT_TOOL = ToolSpec(
    name="timeout",
    description=(
        "Using this tool will make the chatbot not be able to respond "
        "for a certain amount of time."
    ),
    parameters={
        "type": "object",
        "properties": {
            "timeout": {
                "type": "integer",
                "description": "The duration to wait in seconds before being allowed to respond again.",
            }
        },
        "required": ["timeout"],
    },
)


def current_time(now: Optional[Callable[[], datetime]] = None) -> str:
    """Current local time as a readable string."""
    return (now or datetime.now)().strftime("%Y-%m-%d %H:%M:%S")


def make_timeout_handler(quiet_period: QuietPeriod) -> Callable[..., str]:
    def set_timeout(timeout: int) -> str:
        if timeout < 0:
            raise ToolExecutionError("timeout must not be negative")
        quiet_period.start(timeout)
        return f"Timeout set to {int(timeout)} seconds"

    return set_timeout


def register_builtin_tools(registry: ToolRegistry, quiet_period: QuietPeriod) -> None:
    """Register the built-in tools."""
    registry.register(TIME_TOOL, lambda: current_time())
    registry.register(TIMEOUT_TOOL, make_timeout_handler(quiet_period))
