"""Tests for the tool registry, argument validation, executor and built-in tools."""

import threading
import time
from datetime import datetime
from unittest.mock import Mock

import pytest

from voice_agent.errors import (
    RegistryFrozenError,
    ToolExecutionError,
    ToolValidationError,
)
from voice_agent.metrics.collector import MetricsCollector
from voice_agent.tools import (
    ToolCallRequest,
    ToolCallResult,
    ToolExecutor,
    ToolRegistry,
    ToolSpec,
    validate_arguments,
)
from voice_agent.tools.builtin import (
    TIME_TOOL,
    TIMEOUT_TOOL,
    QuietPeriod,
    current_time,
    make_timeout_handler,
    register_builtin_tools,
)
from voice_agent.utils.text import (
    clean_for_speech,
    remove_think_tags,
    strip_non_speech_markers,
)
from voice_agent.utils.timeouts import CallTimeoutError, call_with_timeout


ADD_TOOL = ToolSpec(
    name="add",
    description="Add two numbers.",
    parameters={
        "type": "object",
        "properties": {
            "a": {"type": "number"},
            "b": {"type": "number"},
        },
        "required": ["a", "b"],
    },
)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestToolSpec:
    """Test ToolSpec construction."""

    def test_defaults_to_empty_object_schema(self):
        spec = ToolSpec(name="noop", description="Does nothing")
        assert spec.parameters == {"type": "object", "properties": {}, "required": []}

    def test_rejects_empty_name(self):
        with pytest.raises(ValueError):
            ToolSpec(name="  ", description="blank")

    def test_rejects_non_object_schema(self):
        with pytest.raises(ValueError):
            ToolSpec(name="bad", description="bad", parameters={"type": "string"})

    def test_function_schema(self):
        schema = ADD_TOOL.to_function_schema()
        assert schema["type"] == "function"
        assert schema["function"]["name"] == "add"
        assert schema["function"]["parameters"]["required"] == ["a", "b"]


class TestToolRegistry:
    """Test tool registration and freezing."""

    def test_register_and_lookup(self):
        registry = ToolRegistry()
        handler = Mock()
        registry.register(ADD_TOOL, handler)

        assert "add" in registry
        assert len(registry) == 1
        assert registry.get("add") == (ADD_TOOL, handler)
        assert registry.specs() == [ADD_TOOL]
        assert registry.list_tools() == ["add"]

    def test_duplicate_name_rejected(self):
        registry = ToolRegistry()
        registry.register(ADD_TOOL, Mock())
        with pytest.raises(ValueError, match="already registered"):
            registry.register(ADD_TOOL, Mock())

    def test_handler_must_be_callable(self):
        with pytest.raises(TypeError):
            ToolRegistry().register(ADD_TOOL, "not callable")

    def test_frozen_registry_rejects_registration(self):
        registry = ToolRegistry()
        registry.freeze()
        registry.freeze()

        assert registry.is_frozen
        with pytest.raises(RegistryFrozenError):
            registry.register(ADD_TOOL, Mock())

    def test_unknown_tool_raises_key_error(self):
        with pytest.raises(KeyError):
            ToolRegistry().get("missing")


class TestValidateArguments:
    """Test schema validation of tool arguments."""

    def test_valid_arguments_pass(self):
        assert validate_arguments({"a": 1, "b": 2.5}, ADD_TOOL.parameters) == {"a": 1, "b": 2.5}

    def test_none_is_empty_object(self):
        assert validate_arguments(None, TIME_TOOL.parameters) == {}

    def test_non_object_rejected(self):
        with pytest.raises(ToolValidationError, match="must be an object"):
            validate_arguments(["a"], ADD_TOOL.parameters)

    def test_missing_required(self):
        with pytest.raises(ToolValidationError, match="Missing required argument"):
            validate_arguments({"a": 1}, ADD_TOOL.parameters)

    def test_wrong_type(self):
        with pytest.raises(ToolValidationError, match="must be of type number"):
            validate_arguments({"a": "one", "b": 2}, ADD_TOOL.parameters)

    def test_bool_is_not_a_number(self):
        with pytest.raises(ToolValidationError):
            validate_arguments({"a": True, "b": 2}, ADD_TOOL.parameters)

    def test_integral_float_is_an_integer(self):
        assert validate_arguments({"timeout": 5.0}, TIMEOUT_TOOL.parameters) == {"timeout": 5.0}
        with pytest.raises(ToolValidationError):
            validate_arguments({"timeout": 5.5}, TIMEOUT_TOOL.parameters)

    def test_undeclared_arguments_dropped(self):
        assert validate_arguments({"a": 1, "b": 2, "c": 3}, ADD_TOOL.parameters) == {"a": 1, "b": 2}

    def test_additional_properties_false(self):
        schema = dict(ADD_TOOL.parameters, additionalProperties=False)
        with pytest.raises(ToolValidationError, match="Unknown argument"):
            validate_arguments({"a": 1, "b": 2, "c": 3}, schema)

    def test_enum_and_nested(self):
        schema = {
            "type": "object",
            "properties": {
                "unit": {"type": "string", "enum": ["s", "m"]},
                "tags": {"type": "array", "items": {"type": "string"}},
                "when": {
                    "type": "object",
                    "properties": {"hour": {"type": "integer"}},
                    "required": ["hour"],
                },
            },
        }
        validate_arguments({"unit": "s", "tags": ["x"], "when": {"hour": 3}}, schema)

        with pytest.raises(ToolValidationError, match="must be one of"):
            validate_arguments({"unit": "h"}, schema)
        with pytest.raises(ToolValidationError, match=r"tags\[1\]"):
            validate_arguments({"tags": ["x", 2]}, schema)
        with pytest.raises(ToolValidationError, match="when.hour"):
            validate_arguments({"when": {}}, schema)


class TestToolExecutor:
    """Test ToolExecutor never raises and preserves order."""

    def setup_method(self):
        self.registry = ToolRegistry()
        self.registry.register(ADD_TOOL, lambda a, b: a + b)
        self.registry.register(
            ToolSpec(name="explode", description="Always fails"),
            Mock(side_effect=RuntimeError("kaboom")),
        )

    def test_successful_call(self):
        executor = ToolExecutor(self.registry)
        request = ToolCallRequest(id="call_1", name="add", arguments={"a": 2, "b": 2})

        result = executor.execute(request)

        assert result == ToolCallResult(id="call_1", name="add", success=True, payload=4)
        assert result.to_message() == {"success": True, "result": 4}

    def test_unknown_tool_is_failed_result(self):
        result = ToolExecutor(self.registry).execute(
            ToolCallRequest(id="call_2", name="weather")
        )

        assert not result.success
        assert result.id == "call_2"
        assert "Unknown tool: weather" in result.error

    def test_invalid_arguments_never_reach_handler(self):
        handler = Mock(return_value=0)
        registry = ToolRegistry()
        registry.register(ADD_TOOL, handler)

        result = ToolExecutor(registry).execute(
            ToolCallRequest(id="call_3", name="add", arguments={"a": "x"})
        )

        assert not result.success
        handler.assert_not_called()

    def test_handler_exception_is_failed_result(self):
        result = ToolExecutor(self.registry).execute(
            ToolCallRequest(id="call_4", name="explode")
        )

        assert not result.success
        assert result.error == "RuntimeError: kaboom"
        assert result.to_message() == {"success": False, "error": "RuntimeError: kaboom"}

    def test_batch_preserves_order(self):
        requests = [
            ToolCallRequest(id="c1", name="add", arguments={"a": 1, "b": 1}),
            ToolCallRequest(id="c2", name="explode"),
            ToolCallRequest(id="c3", name="add", arguments={"a": 3, "b": 4}),
        ]

        results = ToolExecutor(self.registry).execute_batch(requests)

        assert [r.id for r in results] == ["c1", "c2", "c3"]
        assert [r.success for r in results] == [True, False, True]
        assert results[2].payload == 7

    def test_slow_handler_times_out(self):
        registry = ToolRegistry()
        registry.register(ToolSpec(name="slow", description="Sleeps"), lambda: time.sleep(1))

        result = ToolExecutor(registry, call_timeout=0.05).execute(
            ToolCallRequest(id="c5", name="slow")
        )

        assert not result.success
        assert "timed out" in result.error

    @pytest.mark.parametrize("call_timeout", [None, 1.0])
    def test_arguments_named_like_timeout_options(self, call_timeout):
        registry = ToolRegistry()
        registry.register(
            ToolSpec(
                name="greet",
                description="Greets someone",
                parameters={
                    "type": "object",
                    "properties": {
                        "name": {"type": "string"},
                        "timeout": {"type": "integer"},
                    },
                    "required": ["name", "timeout"],
                },
            ),
            lambda name, timeout: f"Hello {name}, see you in {timeout}s",
        )

        result = ToolExecutor(registry, call_timeout=call_timeout).execute(
            ToolCallRequest(id="c8", name="greet", arguments={"name": "Ada", "timeout": 5})
        )

        assert result.success, result.error
        assert result.payload == "Hello Ada, see you in 5s"

    def test_timed_out_call_blocks_later_calls(self):
        release = threading.Event()
        running = []
        fast = Mock(return_value="done")

        def slow():
            running.append("slow")
            release.wait(5)
            running.remove("slow")

        def record_fast():
            return fast(list(running))

        registry = ToolRegistry()
        registry.register(ToolSpec(name="slow", description="Blocks"), slow)
        registry.register(ToolSpec(name="fast", description="Returns"), record_fast)
        executor = ToolExecutor(registry, call_timeout=0.05)

        results = executor.execute_batch(
            [
                ToolCallRequest(id="c9", name="slow"),
                ToolCallRequest(id="c10", name="fast"),
            ]
        )

        assert [r.success for r in results] == [False, False]
        assert "timed out" in results[0].error
        assert "still running" in results[1].error
        fast.assert_not_called()

        release.set()
        assert executor._abandoned.wait(1)
        later = executor.execute(ToolCallRequest(id="c11", name="fast"))

        assert later.success
        fast.assert_called_once_with([])

    def test_records_metrics(self, tmp_path):
        metrics = MetricsCollector(storage_path=tmp_path)
        metrics.start_session("session_test")
        executor = ToolExecutor(self.registry, metrics=metrics)

        executor.execute(ToolCallRequest(id="c6", name="add", arguments={"a": 1, "b": 2}))
        executor.execute(ToolCallRequest(id="c7", name="explode"))

        summary = metrics.get_summary()
        assert summary["tool_calls"] == {"succeeded": 1, "failed": 1}
        assert executor.executed_count == 2


class TestQuietPeriod:
    """Test the quiet period used by the timeout tool."""

    def test_inactive_allows_everything(self):
        assert QuietPeriod().allows("anything at all")

    def test_active_blocks_without_wake_word(self):
        clock = FakeClock()
        quiet = QuietPeriod(clock=clock)
        quiet.start(60)

        assert quiet.is_active()
        assert quiet.remaining() == 60
        assert not quiet.allows("What time is it?")
        assert quiet.allows("Hey CAT, are you there?")

    def test_expires(self):
        clock = FakeClock()
        quiet = QuietPeriod(clock=clock)
        quiet.start(10)
        clock.now += 11

        assert not quiet.is_active()
        assert quiet.allows("hello")

    def test_clear(self):
        quiet = QuietPeriod(clock=FakeClock())
        quiet.start(10)
        quiet.clear()
        assert quiet.remaining() == 0.0


class TestBuiltinTools:
    """Test the built-in tools."""

    def test_current_time_format(self):
        assert current_time(lambda: datetime(2024, 5, 1, 13, 45, 9)) == "2024-05-01 13:45:09"

    def test_timeout_handler(self):
        quiet = QuietPeriod(clock=FakeClock())
        handler = make_timeout_handler(quiet)

        assert handler(30) == "Timeout set to 30 seconds"
        assert quiet.remaining() == 30

        with pytest.raises(ToolExecutionError):
            handler(-1)

    def test_register_builtin_tools(self):
        registry = ToolRegistry()
        quiet = QuietPeriod(clock=FakeClock())
        register_builtin_tools(registry, quiet)
        executor = ToolExecutor(registry)

        assert registry.list_tools() == ["timetool", "timeout"]

        time_result = executor.execute(ToolCallRequest(id="t1", name="timetool"))
        assert time_result.success
        datetime.strptime(time_result.payload, "%Y-%m-%d %H:%M:%S")

        timeout_result = executor.execute(
            ToolCallRequest(id="t2", name="timeout", arguments={"timeout": 5})
        )
        assert timeout_result.payload == "Timeout set to 5 seconds"
        assert quiet.is_active()


class TestCallWithTimeout:
    """Test call_with_timeout."""

    def test_inline_without_timeout(self):
        caller = []
        call_with_timeout(lambda: caller.append(threading.current_thread()))
        assert caller == [threading.current_thread()]

    def test_returns_value_and_passes_arguments(self):
        assert call_with_timeout(lambda a, b=0: a + b, 1, b=2, timeout=1) == 3

    def test_propagates_exceptions(self):
        with pytest.raises(ValueError, match="bad"):
            call_with_timeout(Mock(side_effect=ValueError("bad")), timeout=1)

    def test_raises_on_timeout(self):
        with pytest.raises(CallTimeoutError) as exc_info:
            call_with_timeout(time.sleep, 1, timeout=0.05, name="stt.transcribe")

        assert exc_info.value.name == "stt.transcribe"
        assert isinstance(exc_info.value, TimeoutError)
        assert "stt.transcribe timed out after 0.05s" in str(exc_info.value)


class TestTextUtils:
    """Test text clean-up helpers."""

    def test_remove_think_tags(self):
        assert remove_think_tags("<think>hmm</think>The answer is 4.") == "The answer is 4."
        assert remove_think_tags("No tags") == "No tags"

    def test_clean_for_speech(self):
        assert clean_for_speech("<think>x</think>  Hello there! 😀 ") == "Hello there!"
        assert clean_for_speech("<think>only thinking</think>") == ""

    def test_strip_non_speech_markers(self):
        assert strip_non_speech_markers("[BLANK_AUDIO]") == ""
        assert strip_non_speech_markers("(music) hello   world") == "hello world"
