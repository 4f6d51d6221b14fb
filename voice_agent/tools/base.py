"""Tool boundary types shared by the registry, executor and LLM adapters."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple


ToolHandler = Callable[..., Any]


def empty_parameters() -> Dict[str, Any]:
    return {"type": "object", "properties": {}, "required": []}


@dataclass(frozen=True)
class ToolSpec:
    """Describes a tool the model may call."""

    name: str
    description: str
    parameters: Dict[str, Any] = field(default_factory=empty_parameters)

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValueError("Tool name must not be empty")
        if self.parameters.get("type", "object") != "object":
            raise ValueError(
                f"Tool '{self.name}' parameter schema must be an object schema"
            )

    def to_function_schema(self) -> Dict[str, Any]:
        """Render in the function-calling format used by chat APIs."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass(frozen=True)
class ToolCallRequest:
    """A tool invocation requested by the model."""

    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolCallResult:
    """Outcome of a tool invocation, correlated to its request by id."""

    id: str
    name: str
    success: bool
    payload: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, request: ToolCallRequest, payload: Any) -> "ToolCallResult":
        return cls(id=request.id, name=request.name, success=True, payload=payload)

    @classmethod
    def failed(cls, request: ToolCallRequest, error: str) -> "ToolCallResult":
        return cls(id=request.id, name=request.name, success=False, error=error)

    def to_message(self) -> Dict[str, Any]:
        """Content reported back to the model."""
        if self.success:
            return {"success": True, "result": self.payload}
        return {"success": False, "error": self.error}


@dataclass(frozen=True)
class ToolRound:
    """One inference -> tool execution round trip within a turn."""

    requests: Tuple[ToolCallRequest, ...]
    results: Tuple[ToolCallResult, ...]
