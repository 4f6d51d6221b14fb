"""Tool registry, executor and built-in tools."""

from .base import ToolCallRequest, ToolCallResult, ToolRound, ToolSpec
from .executor import ToolExecutor, validate_arguments
from .registry import ToolRegistry

__all__ = [
    "ToolCallRequest",
    "ToolCallResult",
    "ToolExecutor",
    "ToolRegistry",
    "ToolRound",
    "ToolSpec",
    "validate_arguments",
]
