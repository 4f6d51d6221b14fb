"""Tests for the Ollama and Gemini LLM providers."""

import json
from types import SimpleNamespace
from unittest.mock import Mock, patch

import httpx
import ollama
import pytest

from voice_agent.config.settings import settings
from voice_agent.core.types import Speaker, Utterance
from voice_agent.errors import InferenceError
from voice_agent.providers import registry
from voice_agent.providers.llm.base import InferenceRequest, LLMResponse
from voice_agent.providers.llm.gemini import GeminiProvider, to_gemini_schema
from voice_agent.providers.llm.ollama import OllamaProvider
from voice_agent.tools.base import ToolCallRequest, ToolCallResult, ToolRound
from voice_agent.tools.builtin import TIME_TOOL, TIMEOUT_TOOL


def sample_request(with_round=False):
    history = (
        Utterance(speaker=Speaker.USER, text="Hi"),
        Utterance(speaker=Speaker.AGENT, text="Hello!"),
        Utterance(speaker=Speaker.USER, text="What time is it?"),
    )
    rounds = ()
    if with_round:
        call = ToolCallRequest(id="call_1", name="timetool")
        rounds = (ToolRound(requests=(call,), results=(ToolCallResult.ok(call, "12:00"),)),)
    return InferenceRequest(history=history, tools=(TIME_TOOL, TIMEOUT_TOOL), tool_rounds=rounds)


def ollama_reply(content="", tool_calls=None):
    return SimpleNamespace(message=SimpleNamespace(content=content, tool_calls=tool_calls))


def ollama_call(name, arguments):
    return SimpleNamespace(function=SimpleNamespace(name=name, arguments=arguments))


class TestLLMResponse:
    """Test LLMResponse."""

    def test_is_final(self):
        assert LLMResponse(text="done").is_final
        assert not LLMResponse(tool_calls=(ToolCallRequest(id="1", name="timetool"),)).is_final


class TestOllamaProvider:
    """Test Ollama provider."""

    def setup_method(self):
        self.provider = OllamaProvider(system_prompt="Be brief.", model="qwen3:8b")

    @patch("voice_agent.providers.llm.ollama.ollama.Client")
    def test_initialize(self, mock_client_class):
        self.provider.initialize()

        mock_client_class.assert_called_once_with(host="http://localhost:11434")
        assert self.provider.get_status()["initialized"]

    def test_infer_before_initialize(self):
        with pytest.raises(InferenceError, match="not initialized"):
            self.provider.infer(sample_request())

    def test_build_messages(self):
        messages = self.provider.build_messages(sample_request(with_round=True))

        assert messages[0] == {"role": "system", "content": "Be brief."}
        assert [m["role"] for m in messages[1:]] == [
            "user",
            "assistant",
            "user",
            "assistant",
            "tool",
        ]
        assert messages[4]["tool_calls"] == [
            {"function": {"name": "timetool", "arguments": {}}}
        ]
        assert json.loads(messages[5]["content"]) == {"success": True, "result": "12:00"}
        assert messages[5]["tool_name"] == "timetool"

    @patch("voice_agent.providers.llm.ollama.ollama.Client")
    def test_final_text(self, mock_client_class):
        client = mock_client_class.return_value
        client.chat.return_value = ollama_reply("<think>reasoning</think>It is noon.")
        self.provider.initialize()

        response = self.provider.infer(sample_request(with_round=True))

        assert response.is_final
        assert response.text == "It is noon."
        kwargs = client.chat.call_args.kwargs
        assert kwargs["model"] == "qwen3:8b"
        assert [tool["function"]["name"] for tool in kwargs["tools"]] == ["timetool", "timeout"]
        assert self.provider.request_count == 1

    @patch("voice_agent.providers.llm.ollama.ollama.Client")
    def test_tool_calls(self, mock_client_class):
        client = mock_client_class.return_value
        client.chat.return_value = ollama_reply(
            tool_calls=[
                ollama_call("timeout", {"timeout": 30}),
                ollama_call("timetool", '{}'),
            ]
        )
        self.provider.initialize()

        response = self.provider.infer(sample_request())

        assert not response.is_final
        assert [c.name for c in response.tool_calls] == ["timeout", "timetool"]
        assert response.tool_calls[0].arguments == {"timeout": 30}
        assert response.tool_calls[1].arguments == {}
        assert len({c.id for c in response.tool_calls}) == 2

    @patch("voice_agent.providers.llm.ollama.ollama.Client")
    def test_malformed_arguments(self, mock_client_class):
        mock_client_class.return_value.chat.return_value = ollama_reply(
            tool_calls=[ollama_call("timeout", "{not json")]
        )
        self.provider.initialize()

        with pytest.raises(InferenceError, match="Malformed arguments"):
            self.provider.infer(sample_request())

    @patch("voice_agent.providers.llm.ollama.ollama.Client")
    def test_no_tools_offered(self, mock_client_class):
        client = mock_client_class.return_value
        client.chat.return_value = ollama_reply("Hi")
        self.provider.initialize()

        self.provider.infer(InferenceRequest(history=sample_request().history))

        assert client.chat.call_args.kwargs["tools"] is None

    @patch("voice_agent.providers.llm.ollama.ollama.Client")
    def test_response_error(self, mock_client_class):
        mock_client_class.return_value.chat.side_effect = ollama.ResponseError(
            "model 'qwen3:8b' not found", 404
        )
        self.provider.initialize()

        with pytest.raises(InferenceError, match="not found"):
            self.provider.infer(sample_request())

    @patch("voice_agent.providers.llm.ollama.ollama.Client")
    def test_connection_error(self, mock_client_class):
        mock_client_class.return_value.chat.side_effect = httpx.ConnectError("refused")
        self.provider.initialize()

        with pytest.raises(InferenceError, match="Failed to reach Ollama"):
            self.provider.infer(sample_request())

    @patch("voice_agent.providers.llm.ollama.ollama.Client")
    def test_stop(self, mock_client_class):
        self.provider.initialize()
        self.provider.stop()

        assert self.provider.client is None
        assert not self.provider.get_status()["initialized"]


class FakeFunctionCall:
    def __init__(self, name, args):
        self.name = name
        self.args = args

    @staticmethod
    def to_dict(call):
        return {"name": call.name, "args": call.args}


def gemini_reply(*parts):
    return SimpleNamespace(
        candidates=[SimpleNamespace(content=SimpleNamespace(parts=list(parts)))]
    )


def text_part(text):
    return SimpleNamespace(function_call=None, text=text)


def call_part(name, args):
    return SimpleNamespace(function_call=FakeFunctionCall(name, args), text="")


class TestGeminiProvider:
    """Test Gemini provider."""

    def setup_method(self):
        self.provider = GeminiProvider(system_prompt="Be brief.", max_retries=2)

    def test_initialize_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        with pytest.raises(ValueError, match="GOOGLE_API_KEY"):
            self.provider.initialize()

    @patch("voice_agent.providers.llm.gemini.genai")
    def test_initialize(self, mock_genai, monkeypatch):
        monkeypatch.setenv("GOOGLE_API_KEY", "test-key")

        self.provider.initialize()

        mock_genai.configure.assert_called_once_with(api_key="test-key")
        mock_genai.GenerativeModel.assert_called_once_with(
            model_name="gemini-1.5-flash", system_instruction="Be brief."
        )
        assert self.provider.get_status()["initialized"]

    def test_schema_conversion(self):
        converted = to_gemini_schema(TIMEOUT_TOOL.parameters)
        assert converted["type"] == "OBJECT"
        assert converted["properties"]["timeout"]["type"] == "INTEGER"
        assert converted["required"] == ["timeout"]

    def test_build_tools_skips_empty_parameters(self):
        tools = GeminiProvider.build_tools([TIME_TOOL, TIMEOUT_TOOL])
        declarations = tools[0]["function_declarations"]

        assert "parameters" not in declarations[0]
        assert declarations[1]["parameters"]["type"] == "OBJECT"
        assert GeminiProvider.build_tools([]) is None

    def test_build_contents(self):
        contents = GeminiProvider.build_contents(sample_request(with_round=True))

        assert [c["role"] for c in contents] == ["user", "model", "user", "model", "user"]
        assert contents[3]["parts"][0]["function_call"] == {"name": "timetool", "args": {}}
        assert contents[4]["parts"][0]["function_response"] == {
            "name": "timetool",
            "response": {"success": True, "result": "12:00"},
        }

    def test_parse_text(self):
        response = GeminiProvider.parse_response(gemini_reply(text_part("It is "), text_part("noon.")))
        assert response.text == "It is noon."

    def test_parse_function_calls(self):
        response = GeminiProvider.parse_response(
            gemini_reply(call_part("timeout", {"timeout": 10.0}), call_part("timetool", None))
        )

        assert [c.name for c in response.tool_calls] == ["timeout", "timetool"]
        assert response.tool_calls[0].arguments == {"timeout": 10.0}
        assert response.tool_calls[1].arguments == {}

    def test_parse_no_candidates(self):
        with pytest.raises(InferenceError, match="no candidates"):
            GeminiProvider.parse_response(SimpleNamespace(candidates=[]))

    def test_infer_before_initialize(self):
        with pytest.raises(InferenceError, match="not initialized"):
            self.provider.infer(sample_request())

    @patch("voice_agent.providers.llm.gemini.time.sleep")
    def test_infer_retries_then_fails(self, mock_sleep):
        self.provider.model = Mock()
        self.provider.model.generate_content.side_effect = RuntimeError("503 unavailable")

        with pytest.raises(InferenceError, match="503 unavailable"):
            self.provider.infer(sample_request())

        assert self.provider.model.generate_content.call_count == 2
        mock_sleep.assert_called_once_with(1)

    @patch("voice_agent.providers.llm.gemini.time.sleep")
    def test_infer_recovers_after_retry(self, mock_sleep):
        self.provider.model = Mock()
        self.provider.model.generate_content.side_effect = [
            RuntimeError("503 unavailable"),
            gemini_reply(text_part("Hello!")),
        ]

        response = self.provider.infer(sample_request())

        assert response.text == "Hello!"
        assert self.provider.request_count == 1


class TestLLMRegistration:
    """Test registered LLM providers are built from current settings."""

    def test_gemini_model_setting(self):
        with patch.object(settings.providers, "gemini_model", "gemini-2.0-flash"):
            provider = registry.get_llm_provider("gemini")

        assert isinstance(provider, GeminiProvider)
        assert provider.model_name == "gemini-2.0-flash"
        assert provider.system_prompt == settings.system_prompts.default

    def test_ollama_host_setting(self):
        with patch.object(settings.providers, "ollama_host", "http://gpu-box:11434"):
            provider = registry.get_llm_provider("ollama", model="llama3.1:8b")

        assert isinstance(provider, OllamaProvider)
        assert provider.host == "http://gpu-box:11434"
        assert provider.model == "llama3.1:8b"
