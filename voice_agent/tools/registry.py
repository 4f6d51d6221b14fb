"""Tool registry mapping tool names to specs and handlers."""

import threading
from typing import Dict, List, Tuple
import structlog

from .base import ToolHandler, ToolSpec
from ..errors import RegistryFrozenError


logger = structlog.get_logger()


class ToolRegistry:
    """
    Registry of tools the model may call.

    Tools are registered during startup. The conversation manager freezes the
    registry when the session starts; from then on it is read-only.
    """

    def __init__(self):
        self._tools: Dict[str, Tuple[ToolSpec, ToolHandler]] = {}
        self._frozen = False
        self._lock = threading.Lock()

    def register(self, spec: ToolSpec, handler: ToolHandler) -> None:
        """Register a tool."""
        if not callable(handler):
            raise TypeError(f"Handler for tool '{spec.name}' is not callable")

        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register tool '{spec.name}': registry is frozen"
                )
            if spec.name in self._tools:
                raise ValueError(f"Tool already registered: {spec.name}")
            self._tools[spec.name] = (spec, handler)

        logger.info("Registered tool", name=spec.name)

    def freeze(self) -> None:
        """Make the registry read-only."""
        with self._lock:
            if not self._frozen:
                self._frozen = True
                logger.debug("Tool registry frozen", tools=list(self._tools))

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    def get(self, name: str) -> Tuple[ToolSpec, ToolHandler]:
        """Get the spec and handler for a tool. Raises KeyError if unknown."""
        return self._tools[name]

    def specs(self) -> List[ToolSpec]:
        """List tool specs in registration order."""
        return [spec for spec, _ in self._tools.values()]

    def list_tools(self) -> List[str]:
        return list(self._tools.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
