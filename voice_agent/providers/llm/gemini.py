"""Gemini LLM provider implementation with function calling."""

import os
import time
from typing import Any, Dict, List, Optional
import google.generativeai as genai
import structlog

from .base import InferenceRequest, LLMProvider, LLMResponse, new_call_id
from ...core.types import Speaker
from ...errors import InferenceError
from ...tools.base import ToolCallRequest, ToolSpec
from ...utils.text import remove_think_tags


logger = structlog.get_logger()


def to_gemini_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a JSON schema to the subset Gemini accepts (upper-case types)."""
    converted: Dict[str, Any] = {}
    for key, value in schema.items():
        if key == "type" and isinstance(value, str):
            converted["type"] = value.upper()
        elif key == "properties" and isinstance(value, dict):
            converted["properties"] = {
                name: to_gemini_schema(prop) for name, prop in value.items()
            }
        elif key == "items" and isinstance(value, dict):
            converted["items"] = to_gemini_schema(value)
        elif key in ("description", "enum", "required", "format", "nullable"):
            converted[key] = value
    return converted


class GeminiProvider(LLMProvider):
    """
    Gemini LLM provider using direct API calls.
    """

    def __init__(
        self,
        system_prompt: str,
        model_name: str = "gemini-1.5-flash",
        temperature: float = 0.7,
        max_tokens: int = 2048,
        max_retries: int = 3,
    ):
        super().__init__(system_prompt)
        self.model_name = model_name
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.max_retries = max_retries
        self.model: Optional[genai.GenerativeModel] = None
        self.request_count = 0

    def initialize(self) -> None:
        """Initialize Gemini API client."""
        logger.info("Initializing Gemini provider", model=self.model_name)

        api_key = os.getenv("GOOGLE_API_KEY")
        if not api_key:
            raise ValueError("GOOGLE_API_KEY environment variable not set")

        genai.configure(api_key=api_key)
        self.model = genai.GenerativeModel(
            model_name=self.model_name, system_instruction=self.system_prompt
        )
        logger.info("Gemini client initialized")

    @staticmethod
    def build_tools(specs) -> Optional[List[Dict[str, Any]]]:
        if not specs:
            return None
        declarations = []
        for spec in specs:
            declaration: Dict[str, Any] = {
                "name": spec.name,
                "description": spec.description,
            }
            # Gemini rejects object schemas without properties
            if spec.parameters.get("properties"):
                declaration["parameters"] = to_gemini_schema(spec.parameters)
            declarations.append(declaration)
        return [{"function_declarations": declarations}]

    @staticmethod
    def build_contents(request: InferenceRequest) -> List[Dict[str, Any]]:
        contents: List[Dict[str, Any]] = []
        for utterance in request.history:
            role = "user" if utterance.speaker == Speaker.USER else "model"
            contents.append({"role": role, "parts": [{"text": utterance.text}]})

        for tool_round in request.tool_rounds:
            contents.append(
                {
                    "role": "model",
                    "parts": [
                        {"function_call": {"name": call.name, "args": call.arguments}}
                        for call in tool_round.requests
                    ],
                }
            )
            contents.append(
                {
                    "role": "user",
                    "parts": [
                        {
                            "function_response": {
                                "name": result.name,
                                "response": result.to_message(),
                            }
                        }
                        for result in tool_round.results
                    ],
                }
            )
        return contents

    @staticmethod
    def parse_response(response) -> LLMResponse:
        if not response.candidates:
            raise InferenceError("Gemini returned no candidates")

        text_parts = []
        tool_calls = []
        for part in response.candidates[0].content.parts:
            function_call = getattr(part, "function_call", None)
            if function_call is not None and function_call.name:
                call = type(function_call).to_dict(function_call)
                tool_calls.append(
                    ToolCallRequest(
                        id=new_call_id(),
                        name=call["name"],
                        arguments=dict(call.get("args") or {}),
                    )
                )
            elif getattr(part, "text", ""):
                text_parts.append(part.text)

        if tool_calls:
            return LLMResponse(tool_calls=tuple(tool_calls))
        return LLMResponse(text=remove_think_tags("".join(text_parts)).strip())

    def infer(self, request: InferenceRequest) -> LLMResponse:
        """Send the conversation to Gemini."""
        if not self.model:
            raise InferenceError("Gemini not initialized")

        contents = self.build_contents(request)
        tools = self.build_tools(request.tools)
        generation_config = genai.GenerationConfig(
            temperature=self.temperature,
            max_output_tokens=self.max_tokens,
        )

        for attempt in range(self.max_retries):
            try:
                response = self.model.generate_content(
                    contents, generation_config=generation_config, tools=tools
                )
                self.request_count += 1
                return self.parse_response(response)

            except InferenceError:
                raise
            except Exception as e:
                logger.warning(f"Gemini attempt {attempt + 1} failed", error=str(e))

                if attempt == self.max_retries - 1:
                    logger.error("All Gemini retry attempts failed", error=str(e))
                    raise InferenceError(f"Gemini request failed: {e}") from e

                # Exponential backoff
                wait_time = 2**attempt
                logger.info(f"Retrying Gemini in {wait_time}s", attempt=attempt + 1)
                time.sleep(wait_time)

        raise InferenceError("Gemini request failed")

    def stop(self) -> None:
        """Stop Gemini provider."""
        logger.info("Stopping Gemini provider")
        self.model = None

    def get_status(self) -> dict:
        """Get Gemini provider status."""
        return {
            "provider": "gemini",
            "model": self.model_name,
            "initialized": self.model is not None,
            "request_count": self.request_count,
        }
