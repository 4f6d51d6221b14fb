"""
The inference / tool-execution loop for a single user turn.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple
import structlog

from .types import TurnState, Utterance
from ..errors import InferenceError
from ..metrics.collector import MetricsCollector
from ..providers.llm.base import InferenceRequest, LLMProvider, LLMResponse
from ..tools.base import ToolRound, ToolSpec
from ..tools.executor import ToolExecutor
from ..utils.timeouts import CallTimeoutError, call_with_timeout


logger = structlog.get_logger()

TOOL_LIMIT_RESPONSE = "Sorry, I couldn't complete that task."


@dataclass(frozen=True)
class LoopOutcome:
    """Final text for the turn plus the tool rounds it took to get there."""

    text: str
    rounds: Tuple[ToolRound, ...] = ()
    exhausted: bool = False


class ToolLoop:
    """
    Alternates inference and tool execution until the model answers.

    Each round sends the history snapshot, the tool specs and every tool
    round so far. After max_iterations rounds a further tool request is
    answered with TOOL_LIMIT_RESPONSE instead of being executed.
    """

    def __init__(
        self,
        llm: LLMProvider,
        executor: ToolExecutor,
        max_iterations: int = 5,
        call_timeout: Optional[float] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.llm = llm
        self.executor = executor
        self.max_iterations = max_iterations
        self.call_timeout = call_timeout
        self.metrics = metrics

    def _infer(self, request: InferenceRequest) -> LLMResponse:
        start_time = time.time()
        try:
            response = call_with_timeout(
                self.llm.infer, request, timeout=self.call_timeout, name="llm.infer"
            )
        except InferenceError:
            raise
        except CallTimeoutError as e:
            raise InferenceError(str(e)) from e
        except Exception as e:
            logger.error("LLM provider raised unexpectedly", error=str(e))
            raise InferenceError(f"{type(e).__name__}: {e}") from e

        if self.metrics:
            self.metrics.record_llm_latency((time.time() - start_time) * 1000)
        return response

    def run(
        self,
        history: Tuple[Utterance, ...],
        tools: Sequence[ToolSpec] = (),
        on_state: Optional[Callable[[TurnState], None]] = None,
    ) -> LoopOutcome:
        """
        Drive inference until the model produces final text.

        Args:
            history: Snapshot of the conversation, ending with the user's utterance
            tools: Tool specs the model may call
            on_state: Called with EXECUTING_TOOLS / INFERRING around each tool batch

        Returns:
            LoopOutcome with the text to speak

        Raises:
            InferenceError: if the model fails or answers with empty text
        """
        tools = tuple(tools)
        rounds = []

        while True:
            response = self._infer(
                InferenceRequest(history=history, tools=tools, tool_rounds=tuple(rounds))
            )

            if response.is_final:
                text = (response.text or "").strip()
                if not text:
                    raise InferenceError("Model returned an empty response")
                return LoopOutcome(text=text, rounds=tuple(rounds))

            if len(rounds) >= self.max_iterations:
                logger.warning(
                    "Tool iteration limit reached",
                    max_iterations=self.max_iterations,
                    requested=[call.name for call in response.tool_calls],
                )
                return LoopOutcome(
                    text=TOOL_LIMIT_RESPONSE, rounds=tuple(rounds), exhausted=True
                )

            if on_state:
                on_state(TurnState.EXECUTING_TOOLS)

            results = self.executor.execute_batch(response.tool_calls)
            rounds.append(ToolRound(requests=response.tool_calls, results=tuple(results)))
            logger.debug(
                "Tool round complete",
                round=len(rounds),
                succeeded=sum(1 for r in results if r.success),
                failed=sum(1 for r in results if not r.success),
            )

            if on_state:
                on_state(TurnState.INFERRING)
