"""Base interface for LLM providers."""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Tuple

from ...core.types import Utterance
from ...tools.base import ToolCallRequest, ToolRound, ToolSpec


@dataclass(frozen=True)
class InferenceRequest:
    """Everything the model sees for one inference."""

    history: Tuple[Utterance, ...]
    tools: Tuple[ToolSpec, ...] = ()
    tool_rounds: Tuple[ToolRound, ...] = ()


@dataclass(frozen=True)
class LLMResponse:
    """Either final text or an ordered batch of tool calls."""

    text: Optional[str] = None
    tool_calls: Tuple[ToolCallRequest, ...] = ()
    metadata: dict = field(default_factory=dict)

    @property
    def is_final(self) -> bool:
        return not self.tool_calls


def new_call_id() -> str:
    """Id for tool calls from backends that don't assign one."""
    return f"call_{uuid.uuid4().hex[:12]}"


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    def __init__(self, system_prompt: str):
        self.system_prompt = system_prompt

    @abstractmethod
    def initialize(self) -> None:
        """Initialize the LLM provider."""
        pass

    @abstractmethod
    def infer(self, request: InferenceRequest) -> LLMResponse:
        """
        Run one inference.

        Args:
            request: History snapshot, available tools and this turn's tool rounds

        Returns:
            Final text, or the tool calls the model wants executed

        Raises:
            InferenceError: on connection failure or malformed model output
        """
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop the LLM provider and clean up resources."""
        pass

    @abstractmethod
    def get_status(self) -> dict:
        """Get current status of the LLM provider."""
        pass
