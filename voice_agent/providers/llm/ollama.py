"""Ollama LLM provider with native tool calling."""

import json
import time
from typing import Any, Dict, List, Optional
import httpx
import ollama
import structlog

from .base import InferenceRequest, LLMProvider, LLMResponse, new_call_id
from ...core.types import Speaker
from ...errors import InferenceError
from ...tools.base import ToolCallRequest
from ...utils.text import remove_think_tags


logger = structlog.get_logger()


class OllamaProvider(LLMProvider):
    """
    LLM provider talking to a local Ollama server.
    """

    def __init__(
        self,
        system_prompt: str,
        model: str = "qwen3:8b",
        host: str = "http://localhost:11434",
        temperature: Optional[float] = None,
        keep_alive: Optional[str] = None,
    ):
        super().__init__(system_prompt)
        self.model = model
        self.host = host
        self.temperature = temperature
        self.keep_alive = keep_alive

        self.client: Optional[ollama.Client] = None
        self.request_count = 0
        self.last_latency_ms: Optional[float] = None

    def initialize(self) -> None:
        """Create the Ollama client."""
        logger.info("Initializing Ollama provider", model=self.model, host=self.host)
        self.client = ollama.Client(host=self.host)

    def build_messages(self, request: InferenceRequest) -> List[Dict[str, Any]]:
        """Translate history and tool rounds into Ollama chat messages."""
        messages: List[Dict[str, Any]] = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})

        for utterance in request.history:
            role = "user" if utterance.speaker == Speaker.USER else "assistant"
            messages.append({"role": role, "content": utterance.text})

        for tool_round in request.tool_rounds:
            messages.append(
                {
                    "role": "assistant",
                    "content": "",
                    "tool_calls": [
                        {"function": {"name": call.name, "arguments": call.arguments}}
                        for call in tool_round.requests
                    ],
                }
            )
            for result in tool_round.results:
                messages.append(
                    {
                        "role": "tool",
                        "content": json.dumps(result.to_message(), default=str),
                        "tool_name": result.name,
                    }
                )

        return messages

    def _parse_tool_calls(self, raw_calls) -> List[ToolCallRequest]:
        calls = []
        for raw in raw_calls or []:
            function = raw.function
            arguments = function.arguments
            if isinstance(arguments, str):
                try:
                    arguments = json.loads(arguments) if arguments.strip() else {}
                except json.JSONDecodeError as e:
                    raise InferenceError(
                        f"Malformed arguments for tool '{function.name}': {e}"
                    ) from e
            if arguments is None:
                arguments = {}
            if not function.name:
                raise InferenceError("Model requested a tool call without a name")
            calls.append(
                ToolCallRequest(
                    id=new_call_id(), name=function.name, arguments=dict(arguments)
                )
            )
        return calls

    def infer(self, request: InferenceRequest) -> LLMResponse:
        """Send the conversation to Ollama."""
        if not self.client:
            raise InferenceError("Ollama not initialized")

        messages = self.build_messages(request)
        tools = [spec.to_function_schema() for spec in request.tools]
        options = {"temperature": self.temperature} if self.temperature is not None else None

        logger.debug(
            "Sending chat request",
            model=self.model,
            messages=len(messages),
            tools=len(tools),
        )

        start_time = time.time()
        try:
            response = self.client.chat(
                model=self.model,
                messages=messages,
                tools=tools or None,
                options=options,
                keep_alive=self.keep_alive,
            )
        except ollama.ResponseError as e:
            logger.error("Ollama returned an error", error=str(e), status=e.status_code)
            raise InferenceError(f"Ollama error: {e.error}") from e
        except (ConnectionError, httpx.HTTPError) as e:
            logger.error("Failed to reach Ollama", host=self.host, error=str(e))
            raise InferenceError(f"Failed to reach Ollama at {self.host}: {e}") from e

        self.request_count += 1
        self.last_latency_ms = (time.time() - start_time) * 1000

        message = response.message
        if message is None:
            raise InferenceError("Ollama response contained no message")

        tool_calls = self._parse_tool_calls(message.tool_calls)
        if tool_calls:
            logger.info(
                "Model requested tools", tools=[call.name for call in tool_calls]
            )
            return LLMResponse(tool_calls=tuple(tool_calls))

        text = remove_think_tags(message.content or "").strip()
        return LLMResponse(
            text=text,
            metadata={"latency_ms": self.last_latency_ms, "model": self.model},
        )

    def stop(self) -> None:
        """Stop Ollama provider."""
        logger.info("Stopping Ollama provider")
        if self.client is not None:
            inner = getattr(self.client, "_client", None)
            if isinstance(inner, httpx.Client):
                inner.close()
        self.client = None

    def get_status(self) -> dict:
        """Get Ollama provider status."""
        return {
            "provider": "ollama",
            "model": self.model,
            "host": self.host,
            "initialized": self.client is not None,
            "request_count": self.request_count,
            "last_latency_ms": self.last_latency_ms,
        }
