"""Validated, sequential execution of tool calls."""

import threading
import time
from typing import Any, Dict, Iterable, List, Optional
import structlog

from .base import ToolCallRequest, ToolCallResult
from .registry import ToolRegistry
from ..errors import ToolExecutionError, ToolValidationError
from ..metrics.collector import MetricsCollector
from ..utils.timeouts import CallTimeoutError, call_with_timeout


logger = structlog.get_logger()


_JSON_TYPES = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list, tuple),
    "object": (dict,),
    "null": (type(None),),
}


def _matches_type(value: Any, json_type: str) -> bool:
    if json_type not in _JSON_TYPES:
        # Unknown type keywords are not enforced
        return True
    if isinstance(value, bool) and json_type in ("integer", "number"):
        return False
    if json_type == "integer" and isinstance(value, float):
        return value.is_integer()
    return isinstance(value, _JSON_TYPES[json_type])


def _check_value(path: str, value: Any, schema: Dict[str, Any]) -> None:
    declared = schema.get("type")
    if declared is not None:
        types = declared if isinstance(declared, list) else [declared]
        if not any(_matches_type(value, t) for t in types):
            raise ToolValidationError(
                f"Argument '{path}' must be of type {' or '.join(types)}, "
                f"got {type(value).__name__}"
            )

    if "enum" in schema and value not in schema["enum"]:
        raise ToolValidationError(
            f"Argument '{path}' must be one of {schema['enum']!r}, got {value!r}"
        )

    if isinstance(value, (list, tuple)) and isinstance(schema.get("items"), dict):
        for index, item in enumerate(value):
            _check_value(f"{path}[{index}]", item, schema["items"])

    if isinstance(value, dict) and "properties" in schema:
        _check_object(value, schema, prefix=f"{path}.")


def _check_object(arguments: Dict[str, Any], schema: Dict[str, Any], prefix: str = "") -> None:
    properties = schema.get("properties", {})

    missing = [name for name in schema.get("required", []) if name not in arguments]
    if missing:
        raise ToolValidationError(
            "Missing required argument(s): "
            + ", ".join(f"{prefix}{name}" for name in missing)
        )

    if schema.get("additionalProperties") is False:
        unknown = sorted(set(arguments) - set(properties))
        if unknown:
            raise ToolValidationError(
                "Unknown argument(s): " + ", ".join(f"{prefix}{name}" for name in unknown)
            )

    for name, value in arguments.items():
        if name in properties:
            _check_value(f"{prefix}{name}", value, properties[name])


def validate_arguments(arguments: Any, schema: Dict[str, Any]) -> Dict[str, Any]:
    """
    Check tool arguments against a JSON-schema style object schema.

    Covers types, required fields, enums, array items and nested objects.
    Raises ToolValidationError describing the first problem found. Arguments
    the schema does not declare are dropped unless it allows extra properties.
    """
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        raise ToolValidationError(
            f"Arguments must be an object, got {type(arguments).__name__}"
        )
    _check_object(arguments, schema)

    if "properties" not in schema or schema.get("additionalProperties") is True:
        return dict(arguments)
    return {k: v for k, v in arguments.items() if k in schema["properties"]}


class ToolExecutor:
    """
    Executes tool calls requested by the model.

    Never raises for bad requests or failing handlers: every problem comes
    back as a failed ToolCallResult so the model can retry or recover.
    Calls run one at a time, in the order received. A call abandoned after
    its timeout keeps the executor busy: later calls fail without running
    until the abandoned handler returns.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        call_timeout: Optional[float] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.registry = registry
        self.call_timeout = call_timeout
        self.metrics = metrics
        self._lock = threading.Lock()
        self._abandoned: Optional[threading.Event] = None
        self._abandoned_name: Optional[str] = None
        self.executed_count = 0

    def execute(self, request: ToolCallRequest) -> ToolCallResult:
        """Execute a single tool call."""
        with self._lock:
            return self._execute_locked(request)

    def execute_batch(self, requests: Iterable[ToolCallRequest]) -> List[ToolCallResult]:
        """Execute a batch of tool calls sequentially, preserving order."""
        with self._lock:
            return [self._execute_locked(request) for request in requests]

    def _execute_locked(self, request: ToolCallRequest) -> ToolCallResult:
        start_time = time.time()
        self.executed_count += 1
        result = self._run(request)
        duration_ms = (time.time() - start_time) * 1000

        if result.success:
            logger.info(
                "Tool call succeeded",
                tool=request.name,
                call_id=request.id,
                duration_ms=duration_ms,
            )
        if self.metrics:
            self.metrics.record_tool_call(request.name, result.success, duration_ms)
        return result

    def _run(self, request: ToolCallRequest) -> ToolCallResult:
        try:
            if request.name not in self.registry:
                raise ToolValidationError(f"Unknown tool: {request.name}")

            spec, handler = self.registry.get(request.name)
            arguments = validate_arguments(request.arguments, spec.parameters)

            if self._abandoned is not None and not self._abandoned.is_set():
                raise ToolExecutionError(
                    f"Skipped: timed out tool call {self._abandoned_name} is still running"
                )

            finished = threading.Event()

            def invoke() -> Any:
                try:
                    return handler(**arguments)
                finally:
                    finished.set()

            try:
                payload = call_with_timeout(
                    invoke, timeout=self.call_timeout, name=f"tool:{request.name}"
                )
            except (ToolValidationError, ToolExecutionError):
                raise
            except CallTimeoutError as e:
                self._abandoned = finished
                self._abandoned_name = request.name
                raise ToolExecutionError(str(e)) from e
            except Exception as e:
                raise ToolExecutionError(f"{type(e).__name__}: {e}") from e

        except ToolValidationError as e:
            logger.warning(
                "Rejected tool call", tool=request.name, call_id=request.id, error=str(e)
            )
            return ToolCallResult.failed(request, str(e))

        except ToolExecutionError as e:
            logger.warning(
                "Tool call failed", tool=request.name, call_id=request.id, error=str(e)
            )
            return ToolCallResult.failed(request, str(e))

        return ToolCallResult.ok(request, payload)
