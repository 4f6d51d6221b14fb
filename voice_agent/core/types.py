"""Conversation data model: utterances, history and turn states."""

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Tuple


class Speaker(str, Enum):
    """Who produced an utterance."""

    USER = "user"
    AGENT = "agent"


class TurnState(str, Enum):
    """States of the conversation state machine."""

    IDLE = "idle"
    LISTENING = "listening"
    TRANSCRIBING = "transcribing"
    INFERRING = "inferring"
    EXECUTING_TOOLS = "executing_tools"
    SPEAKING = "speaking"


@dataclass(frozen=True)
class Utterance:
    """A single immutable line of dialogue."""

    speaker: Speaker
    text: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "speaker": self.speaker.value,
            "text": self.text,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Utterance":
        return cls(
            speaker=Speaker(data["speaker"]),
            text=data["text"],
            timestamp=data["timestamp"],
        )


class ConversationHistory:
    """
    Append-only sequence of utterances for one session.

    Only the conversation manager appends. Everyone else gets a snapshot,
    which is an immutable tuple and cannot alter the history.
    """

    def __init__(self):
        self._utterances: list[Utterance] = []
        self._lock = threading.Lock()

    def append(self, utterance: Utterance) -> None:
        if not isinstance(utterance, Utterance):
            raise TypeError(f"Expected Utterance, got {type(utterance).__name__}")
        with self._lock:
            self._utterances.append(utterance)

    def snapshot(self) -> Tuple[Utterance, ...]:
        with self._lock:
            return tuple(self._utterances)

    def last(self) -> Utterance:
        with self._lock:
            if not self._utterances:
                raise IndexError("History is empty")
            return self._utterances[-1]

    def __len__(self) -> int:
        with self._lock:
            return len(self._utterances)

    def __iter__(self) -> Iterator[Utterance]:
        return iter(self.snapshot())
