"""
Mock provider implementations for testing the voice agent without
a microphone, speech engines or a model server.
"""

import itertools
import re
import time
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Union
import numpy as np

from ..audio.listener import FrameSource
from ..audio.segmenter import AudioSegment
from ..config.settings import settings
from ..errors import DeviceError, SynthesisError
from ..providers.registry import registry
from ..providers.llm.base import InferenceRequest, LLMProvider, LLMResponse, new_call_id
from ..providers.stt.base import STTProvider
from ..providers.tts.base import TTSProvider, AudioChunk
from ..tools.base import ToolCallRequest

ScriptItem = Union[str, Exception]


def tone(duration_ms: int, sample_rate: int = 16000, amplitude: float = 0.3,
         frequency: float = 220.0) -> np.ndarray:
    """A sine tone loud enough to count as speech."""
    t = np.arange(int(sample_rate * duration_ms / 1000)) / sample_rate
    return (amplitude * np.sin(2 * np.pi * frequency * t)).astype(np.float32)


def silence(duration_ms: int, sample_rate: int = 16000) -> np.ndarray:
    return np.zeros(int(sample_rate * duration_ms / 1000), dtype=np.float32)


def split_frames(samples: np.ndarray, frame_size: int) -> List[np.ndarray]:
    """Cut samples into fixed-size frames, zero-padding the last one."""
    frames = []
    for start in range(0, len(samples), frame_size):
        frame = samples[start:start + frame_size]
        if len(frame) < frame_size:
            frame = np.pad(frame, (0, frame_size - len(frame)))
        frames.append(frame.astype(np.float32))
    return frames


class ScriptedFrameSource(FrameSource):
    """Frame source that replays prepared frames instead of a microphone."""

    def __init__(
        self,
        frames: Iterable[np.ndarray],
        frame_duration: float = 0.03,
        realtime: bool = False,
        fail_with: Optional[Exception] = None,
    ):
        self._frames = iter(frames)
        self.frame_duration = frame_duration
        self.realtime = realtime
        self.fail_with = fail_with
        self.is_running = False
        self.exhausted = False
        self.frames_read = 0

    @classmethod
    def repeating_speech(
        cls,
        frame_size: int,
        sample_rate: int = 16000,
        speech_ms: int = 1200,
        pause_ms: int = 2500,
    ) -> "ScriptedFrameSource":
        """An endless speak-pause pattern, paced in real time."""
        pattern = split_frames(
            np.concatenate([tone(speech_ms, sample_rate), silence(pause_ms, sample_rate)]),
            frame_size,
        )
        return cls(
            itertools.cycle(pattern),
            frame_duration=frame_size / sample_rate,
            realtime=True,
        )

    def start(self) -> None:
        self.is_running = True

    def read_frame(self, timeout: float) -> Optional[np.ndarray]:
        if not self.is_running:
            raise DeviceError("Scripted source is not running")

        try:
            frame = next(self._frames)
        except StopIteration:
            if not self.exhausted:
                self.exhausted = True
                if self.fail_with is not None:
                    raise self.fail_with
            time.sleep(min(timeout, 0.05))
            return None

        if self.realtime:
            time.sleep(self.frame_duration)
        self.frames_read += 1
        return frame

    def stop(self) -> None:
        self.is_running = False

    def get_status(self) -> dict:
        return {
            "source": "scripted",
            "is_running": self.is_running,
            "frames_read": self.frames_read,
            "exhausted": self.exhausted,
        }


class MockSTTProvider(STTProvider):
    """
    Returns scripted transcripts, one per segment.

    Script items that are exceptions are raised instead. The script
    repeats when it runs out.
    """

    DEFAULT_SCRIPT = (
        "Hello, how are you today?",
        "What time is it?",
        "What is 2 + 2?",
        "Tell me a joke.",
    )

    def __init__(self, transcripts: Optional[Sequence[ScriptItem]] = None, delay: float = 0.0):
        self.transcripts = list(transcripts) if transcripts is not None else list(self.DEFAULT_SCRIPT)
        self.delay = delay
        self.is_initialized = False
        self.transcript_index = 0
        self.segments_seen: List[AudioSegment] = []

    def initialize(self) -> None:
        """Initialize mock STT provider."""
        self.is_initialized = True

    def transcribe(self, segment: AudioSegment) -> str:
        self.segments_seen.append(segment)
        if self.delay:
            time.sleep(self.delay)
        if not self.transcripts:
            return ""

        item = self.transcripts[self.transcript_index % len(self.transcripts)]
        self.transcript_index += 1
        if isinstance(item, Exception):
            raise item
        return item

    def stop(self) -> None:
        """Stop mock STT provider."""
        self.is_initialized = False

    def get_status(self) -> dict:
        """Get mock STT provider status."""
        return {
            "provider": "mock_stt",
            "initialized": self.is_initialized,
            "transcripts_generated": self.transcript_index,
        }


class MockLLMProvider(LLMProvider):
    """
    Mock LLM provider.

    With a script, each inference consumes the next item: a string is a final
    answer, an LLMResponse is returned as is, an exception is raised. Without
    a script it answers simple arithmetic itself and uses the time tool when
    asked for the time.
    """

    _ARITHMETIC = re.compile(r"(-?\d+(?:\.\d+)?)\s*([-+*/x])\s*(-?\d+(?:\.\d+)?)")

    def __init__(
        self,
        system_prompt: str = "",
        responses: Optional[Sequence[Union[str, LLMResponse, Exception]]] = None,
        delay: float = 0.0,
    ):
        super().__init__(system_prompt)
        self.responses = list(responses) if responses is not None else None
        self.delay = delay
        self.requests: List[InferenceRequest] = []
        self.response_index = 0
        self.is_initialized = False

    @staticmethod
    def tool_call(
        tool_name: str, arguments: Optional[Dict[str, Any]] = None, **kwargs
    ) -> LLMResponse:
        """Build a response requesting a single tool call."""
        arguments = dict(arguments or {}, **kwargs)
        return LLMResponse(
            tool_calls=(ToolCallRequest(id=new_call_id(), name=tool_name, arguments=arguments),)
        )

    def initialize(self) -> None:
        """Initialize mock LLM provider."""
        self.is_initialized = True

    def infer(self, request: InferenceRequest) -> LLMResponse:
        self.requests.append(request)
        if self.delay:
            time.sleep(self.delay)

        if self.responses is not None:
            if self.response_index >= len(self.responses):
                raise AssertionError("MockLLMProvider script exhausted")
            item = self.responses[self.response_index]
            self.response_index += 1
            if isinstance(item, Exception):
                raise item
            if isinstance(item, LLMResponse):
                return item
            return LLMResponse(text=item)

        self.response_index += 1
        return self._improvise(request)

    def _improvise(self, request: InferenceRequest) -> LLMResponse:
        question = request.history[-1].text if request.history else ""
        tool_names = {spec.name for spec in request.tools}

        if request.tool_rounds:
            result = request.tool_rounds[-1].results[0]
            if result.success:
                return LLMResponse(text=f"It is {result.payload}.")
            return LLMResponse(text="I couldn't look that up.")

        if "time" in question.lower() and "timetool" in tool_names:
            return self.tool_call("timetool")

        match = self._ARITHMETIC.search(question)
        if match:
            left, op, right = float(match.group(1)), match.group(2), float(match.group(3))
            if op == "+":
                value = left + right
            elif op == "-":
                value = left - right
            elif op in ("*", "x"):
                value = left * right
            elif right == 0:
                return LLMResponse(text="I can't divide by zero.")
            else:
                value = left / right
            answer = int(value) if value == int(value) else round(value, 4)
            return LLMResponse(text=str(answer))

        return LLMResponse(text=f"You said: {question}")

    def stop(self) -> None:
        """Stop mock LLM provider."""
        self.is_initialized = False

    def get_status(self) -> dict:
        """Get mock LLM provider status."""
        return {
            "provider": "mock_llm",
            "initialized": self.is_initialized,
            "responses_generated": self.response_index,
        }


class MockTTSProvider(TTSProvider):
    """Mock TTS provider that records what it was asked to say."""

    def __init__(self, word_duration_ms: int = 0, fail: bool = False):
        self.word_duration_ms = word_duration_ms
        self.fail = fail
        self.is_playing = False
        self.should_stop = False
        self.spoken: List[str] = []

    def initialize(self) -> None:
        """Initialize mock TTS provider."""
        pass

    def stream_audio(self, text: str) -> Iterator[AudioChunk]:
        """Generate mock audio chunks, one per word."""
        if self.fail:
            raise SynthesisError("Mock synthesis failure")

        self.should_stop = False
        self.spoken.append(text)
        words = text.split()
        for i, word in enumerate(words):
            if self.should_stop:
                return
            yield AudioChunk(
                data=word.encode("utf-8"),
                is_first=(i == 0),
                duration_ms=self.word_duration_ms,
            )
        yield AudioChunk(data=b"", is_first=not words, is_final=True)

    def play_chunk(self, chunk: AudioChunk) -> None:
        """Mock audio playback - just sleep to simulate timing."""
        self.is_playing = not chunk.is_final
        if chunk.duration_ms:
            time.sleep(chunk.duration_ms / 1000.0)

    def stop_playback(self) -> None:
        """Stop mock audio playback."""
        self.should_stop = True
        self.is_playing = False

    def stop(self) -> None:
        """Stop mock TTS provider."""
        self.stop_playback()

    def get_status(self) -> dict:
        """Get mock TTS provider status."""
        return {
            "provider": "mock_tts",
            "is_playing": self.is_playing,
            "utterances_spoken": len(self.spoken),
        }



registry.register_stt_provider("mock", MockSTTProvider)
registry.register_llm_provider(
    "mock",
    MockLLMProvider,
    lambda: {"system_prompt": settings.system_prompts.default},
)
registry.register_tts_provider("mock", MockTTSProvider)
