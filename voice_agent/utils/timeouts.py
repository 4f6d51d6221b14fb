"""Per-call timeout for blocking adapter calls."""

import threading
from typing import Any, Callable, Optional, TypeVar
import structlog


logger = structlog.get_logger()

T = TypeVar("T")


class CallTimeoutError(TimeoutError):
    """A call did not finish within its timeout."""

    def __init__(self, name: str, timeout: float):
        self.name = name
        self.timeout = timeout
        super().__init__(f"{name} timed out after {timeout:g}s")


def call_with_timeout(
    func: Callable[..., T],
    *args: Any,
    timeout: Optional[float] = None,
    name: str = "call",
    **kwargs: Any,
) -> T:
    """
    Run func(*args, **kwargs), giving up after `timeout` seconds.

    With no timeout the call runs inline. Otherwise it runs on a daemon
    thread; if it stalls, the caller gets CallTimeoutError and the abandoned
    call's eventual result is discarded.
    """
    if timeout is None:
        return func(*args, **kwargs)

    outcome: dict = {}
    done = threading.Event()

    def target() -> None:
        try:
            outcome["value"] = func(*args, **kwargs)
        except BaseException as e:
            outcome["error"] = e
        finally:
            done.set()

    thread = threading.Thread(target=target, daemon=True, name=f"{name}-call")
    thread.start()

    if not done.wait(timeout):
        logger.warning("Call abandoned after timeout", call=name, timeout=timeout)
        raise CallTimeoutError(name, timeout)

    if "error" in outcome:
        raise outcome["error"]
    return outcome["value"]
