"""Tests for the inference / tool execution loop."""

import time
from unittest.mock import Mock

import pytest

from voice_agent.core.tool_loop import TOOL_LIMIT_RESPONSE, ToolLoop
from voice_agent.core.types import Speaker, TurnState, Utterance
from voice_agent.errors import InferenceError
from voice_agent.metrics.collector import MetricsCollector
from voice_agent.mocks.providers import MockLLMProvider
from voice_agent.providers.llm.base import LLMResponse
from voice_agent.tools import ToolCallRequest, ToolExecutor, ToolRegistry, ToolSpec
from voice_agent.tools.builtin import QuietPeriod, register_builtin_tools


def user(text):
    return (Utterance(speaker=Speaker.USER, text=text),)


class TestToolLoop:
    """Test ToolLoop."""

    def setup_method(self):
        self.registry = ToolRegistry()
        register_builtin_tools(self.registry, QuietPeriod())
        self.registry.freeze()
        self.executor = ToolExecutor(self.registry)

    def test_direct_answer(self):
        """Test a final answer needs no tool rounds."""
        llm = MockLLMProvider()
        loop = ToolLoop(llm, self.executor)

        outcome = loop.run(user("What is 2 + 2?"), self.registry.specs())

        assert outcome.text == "4"
        assert outcome.rounds == ()
        assert not outcome.exhausted
        assert len(llm.requests) == 1
        assert [spec.name for spec in llm.requests[0].tools] == ["timetool", "timeout"]

    def test_tool_round_then_answer(self):
        """Test a tool call is executed and its result fed back to the model."""
        llm = MockLLMProvider()
        states = []
        loop = ToolLoop(llm, self.executor)

        outcome = loop.run(user("What time is it?"), self.registry.specs(), on_state=states.append)

        assert outcome.text.startswith("It is ")
        assert len(outcome.rounds) == 1
        tool_round = outcome.rounds[0]
        assert tool_round.requests[0].name == "timetool"
        assert tool_round.results[0].success
        assert tool_round.results[0].id == tool_round.requests[0].id
        assert states == [TurnState.EXECUTING_TOOLS, TurnState.INFERRING]

        # The second inference saw the first round
        assert llm.requests[1].tool_rounds == outcome.rounds
        assert llm.requests[1].history == llm.requests[0].history

    def test_unknown_tool_is_reported_to_model(self):
        """Test a call to an unknown tool reaches the model as a failed result."""
        llm = MockLLMProvider(
            responses=[MockLLMProvider.tool_call("weather", city="Paris"), "I can't check the weather."]
        )
        loop = ToolLoop(llm, self.executor)

        outcome = loop.run(user("Weather in Paris?"), self.registry.specs())

        assert outcome.text == "I can't check the weather."
        result = outcome.rounds[0].results[0]
        assert not result.success
        assert "Unknown tool" in result.error

    def test_multiple_calls_in_one_round_keep_order(self):
        """Test several calls requested at once are executed in order."""
        batch = LLMResponse(
            tool_calls=(
                ToolCallRequest(id="a", name="timetool"),
                ToolCallRequest(id="b", name="timeout", arguments={"timeout": 0}),
            )
        )
        llm = MockLLMProvider(responses=[batch, "Done."])
        outcome = ToolLoop(llm, self.executor).run(user("hi"), self.registry.specs())

        assert [r.id for r in outcome.rounds[0].results] == ["a", "b"]
        assert outcome.text == "Done."

    def test_iteration_limit(self):
        """Test a model that keeps calling tools gets the fallback answer."""
        llm = MockLLMProvider(responses=[MockLLMProvider.tool_call("timetool")] * 3)
        states = []
        loop = ToolLoop(llm, self.executor, max_iterations=2)

        outcome = loop.run(user("Loop forever"), self.registry.specs(), on_state=states.append)

        assert outcome.exhausted
        assert outcome.text == TOOL_LIMIT_RESPONSE
        assert len(outcome.rounds) == 2
        # The third request is never executed
        assert self.executor.executed_count == 2
        assert len(llm.requests) == 3
        assert states.count(TurnState.EXECUTING_TOOLS) == 2

    def test_invalid_max_iterations(self):
        with pytest.raises(ValueError):
            ToolLoop(MockLLMProvider(), self.executor, max_iterations=0)

    def test_empty_answer_is_inference_error(self):
        """Test empty final text is treated as malformed output."""
        loop = ToolLoop(MockLLMProvider(responses=["   "]), self.executor)
        with pytest.raises(InferenceError, match="empty response"):
            loop.run(user("hello"))

    def test_inference_error_propagates(self):
        loop = ToolLoop(
            MockLLMProvider(responses=[InferenceError("connection refused")]), self.executor
        )
        with pytest.raises(InferenceError, match="connection refused"):
            loop.run(user("hello"))

    def test_unexpected_exception_wrapped(self):
        """Test provider bugs surface as InferenceError."""
        llm = Mock()
        llm.infer.side_effect = KeyError("message")
        loop = ToolLoop(llm, self.executor)

        with pytest.raises(InferenceError, match="KeyError"):
            loop.run(user("hello"))

    def test_inference_timeout(self):
        """Test a stalled model call becomes InferenceError."""
        loop = ToolLoop(
            MockLLMProvider(delay=1.0), self.executor, call_timeout=0.05
        )
        start = time.time()
        with pytest.raises(InferenceError, match="timed out"):
            loop.run(user("hello"))
        assert time.time() - start < 0.9

    def test_records_llm_latency(self, tmp_path):
        metrics = MetricsCollector(storage_path=tmp_path)
        metrics.start_session("session_loop")
        loop = ToolLoop(MockLLMProvider(), self.executor, metrics=metrics)

        loop.run(user("What time is it?"), self.registry.specs())

        summary = metrics.get_summary()
        assert summary["llm_latency_ms"]["samples"] == 2

    def test_tools_not_offered(self):
        """Test the model is told about no tools when none are passed."""
        llm = MockLLMProvider()
        outcome = ToolLoop(llm, self.executor).run(user("What time is it?"))

        assert llm.requests[0].tools == ()
        assert outcome.text == "You said: What time is it?"
