"""
Core conversation management: the turn state machine that drives
segment -> transcript -> inference/tools -> speech, one turn at a time.
"""

import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Optional, Tuple
import structlog

from .tool_loop import ToolLoop
from .types import ConversationHistory, Speaker, TurnState, Utterance
from ..audio.channel import SegmentChannel
from ..audio.listener import SegmentListener
from ..audio.segmenter import AudioSegment
from ..errors import (
    DeviceError,
    InferenceError,
    InvalidTransitionError,
    SynthesisError,
    TranscriptionError,
)
from ..metrics.collector import MetricsCollector
from ..providers.llm.base import LLMProvider
from ..providers.stt.base import STTProvider
from ..providers.tts.base import TTSProvider
from ..state.session_manager import Session, SessionManager
from ..tools.base import ToolRound
from ..tools.builtin import QuietPeriod, register_builtin_tools
from ..tools.executor import ToolExecutor
from ..tools.registry import ToolRegistry
from ..utils.timeouts import CallTimeoutError, call_with_timeout


logger = structlog.get_logger()

NOTICE_NOT_UNDERSTOOD = "Sorry, I didn't catch that."
NOTICE_FAILED = "Sorry, something went wrong."

# Any state may return to IDLE on shutdown
_TRANSITIONS: Dict[TurnState, Tuple[TurnState, ...]] = {
    TurnState.IDLE: (TurnState.LISTENING,),
    TurnState.LISTENING: (TurnState.TRANSCRIBING, TurnState.IDLE),
    TurnState.TRANSCRIBING: (TurnState.LISTENING, TurnState.INFERRING, TurnState.IDLE),
    TurnState.INFERRING: (
        TurnState.EXECUTING_TOOLS,
        TurnState.SPEAKING,
        TurnState.LISTENING,
        TurnState.IDLE,
    ),
    TurnState.EXECUTING_TOOLS: (TurnState.INFERRING, TurnState.IDLE),
    TurnState.SPEAKING: (TurnState.LISTENING, TurnState.IDLE),
}


class TurnStatus(str, Enum):
    """How a turn ended."""

    COMPLETED = "completed"
    NO_INPUT = "no_input"
    DISCARDED = "discarded"
    MUTED = "muted"
    TOOL_LIMIT = "tool_limit"
    FAILED = "failed"
    ABORTED = "aborted"


@dataclass(frozen=True)
class TurnResult:
    """What one call to handle_segment did."""

    status: TurnStatus
    user_utterance: Optional[Utterance] = None
    agent_utterance: Optional[Utterance] = None
    tool_rounds: Tuple[ToolRound, ...] = ()
    error: Optional[str] = None


@dataclass(frozen=True)
class ConversationConfig:
    """Immutable configuration for a conversation session."""

    max_tool_iterations: int = 5
    call_timeout: Optional[float] = None
    use_tools: bool = True
    speak_notices: bool = False
    quiet_wake_word: str = "cat"
    receive_poll_interval: float = 0.5

    def __post_init__(self):
        if self.max_tool_iterations < 1:
            raise ValueError("max_tool_iterations must be at least 1")
        if self.call_timeout is not None and self.call_timeout <= 0:
            raise ValueError("call_timeout must be positive or None")

    @classmethod
    def from_settings(cls, settings) -> "ConversationConfig":
        conversation = settings.conversation
        return cls(
            max_tool_iterations=conversation.max_tool_iterations,
            call_timeout=conversation.call_timeout,
            use_tools=conversation.use_tools,
            speak_notices=conversation.speak_notices,
            quiet_wake_word=conversation.quiet_wake_word,
        )


class ConversationManager:
    """
    Main orchestrator for the voice agent.

    Exactly one turn is in flight at a time. The thread calling run() (or
    handle_segment()) owns the turn and is the only writer of the history;
    the listener thread only offers segments through the channel.
    """

    def __init__(
        self,
        config: ConversationConfig,
        transcriber: STTProvider,
        llm: LLMProvider,
        synthesizer: TTSProvider,
        channel: Optional[SegmentChannel] = None,
        listener: Optional[SegmentListener] = None,
        tool_registry: Optional[ToolRegistry] = None,
        quiet_period: Optional[QuietPeriod] = None,
        metrics: Optional[MetricsCollector] = None,
        session_manager: Optional[SessionManager] = None,
        notice_handler: Optional[Callable[[str], None]] = None,
        utterance_handler: Optional[Callable[[Utterance], None]] = None,
    ):
        self.config = config
        self.transcriber = transcriber
        self.llm = llm
        self.synthesizer = synthesizer
        self.channel = channel or SegmentChannel()
        self.listener = listener
        self.metrics = metrics
        self.session_manager = session_manager
        self.notice_handler = notice_handler
        self.utterance_handler = utterance_handler

        self.quiet_period = quiet_period or QuietPeriod(config.quiet_wake_word)
        if tool_registry is None:
            tool_registry = ToolRegistry()
            if config.use_tools:
                register_builtin_tools(tool_registry, self.quiet_period)
        self.tool_registry = tool_registry

        self.executor = ToolExecutor(
            tool_registry, call_timeout=config.call_timeout, metrics=metrics
        )
        self.tool_loop = ToolLoop(
            llm,
            self.executor,
            max_iterations=config.max_tool_iterations,
            call_timeout=config.call_timeout,
            metrics=metrics,
        )

        self.history = ConversationHistory()
        self.current_session: Optional[Session] = None

        self._state = TurnState.IDLE
        self._state_lock = threading.Lock()
        self._turn_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._started = False
        self._finalized = False
        self._loop_active = False
        self.turn_count = 0

    @property
    def state(self) -> TurnState:
        with self._state_lock:
            return self._state

    @property
    def is_running(self) -> bool:
        return self._started and not self._stop_event.is_set()

    def _transition(self, new_state: TurnState) -> None:
        with self._state_lock:
            if new_state not in _TRANSITIONS[self._state]:
                raise InvalidTransitionError(self._state, new_state)
            old_state = self._state
            self._state = new_state
        logger.debug("Turn state changed", old=old_state.value, new=new_state.value)

    def history_snapshot(self) -> Tuple[Utterance, ...]:
        return self.history.snapshot()

    def start(self) -> None:
        """Initialize providers, freeze the tool registry and begin listening."""
        if self._started:
            raise RuntimeError("Conversation already started")

        logger.info(
            "Starting conversation",
            tools=self.tool_registry.list_tools() if self.config.use_tools else [],
            max_tool_iterations=self.config.max_tool_iterations,
            call_timeout=self.config.call_timeout,
        )

        try:
            self.transcriber.initialize()
            self.llm.initialize()
            self.synthesizer.initialize()
        except Exception as e:
            logger.error("Failed to initialize providers", error=str(e))
            raise

        self.tool_registry.freeze()
        self._started = True

        if self.session_manager:
            self.current_session = self.session_manager.create_session()
        if self.metrics:
            session_id = (
                self.current_session.id
                if self.current_session
                else f"session_{int(time.time())}"
            )
            self.metrics.start_session(session_id)

        self._transition(TurnState.LISTENING)
        self.channel.open()

        if self.listener:
            try:
                self.listener.start()
            except DeviceError as e:
                logger.error("Audio device unavailable", error=str(e))
                if self.metrics:
                    self.metrics.record_error("audio", str(e))
                self.stop()
                raise

        logger.info("Conversation started")

    def run(self) -> None:
        """
        Process segments from the channel until stop() is called.

        Raises:
            DeviceError: if the audio device fails; the session is shut down first
        """
        if not self._started:
            self.start()

        self._loop_active = True
        try:
            while not self._stop_event.is_set():
                segment = self.channel.receive(timeout=self.config.receive_poll_interval)
                if segment is None:
                    continue
                self.handle_segment(segment)
        except DeviceError as e:
            logger.error("Audio device failed", error=str(e))
            if self.metrics:
                self.metrics.record_error("audio", str(e))
            raise
        finally:
            self._loop_active = False
            self._stop_event.set()
            self._finalize()

    def handle_segment(self, segment: AudioSegment) -> TurnResult:
        """Run one full turn for a speech segment."""
        if not self._turn_lock.acquire(blocking=False):
            logger.info("Discarding segment, turn in progress")
            return TurnResult(status=TurnStatus.DISCARDED)

        try:
            if self.state != TurnState.LISTENING or self._stop_event.is_set():
                logger.info("Discarding segment, not listening", state=self.state.value)
                return TurnResult(status=TurnStatus.DISCARDED)

            # Stale audio must not queue up behind this turn
            self.channel.close()
            self._transition(TurnState.TRANSCRIBING)

            result = self._run_turn(segment, time.time())
            self.turn_count += 1

            if self._stop_event.is_set():
                if result.status in (TurnStatus.COMPLETED, TurnStatus.TOOL_LIMIT):
                    logger.info("Turn finished during shutdown")
                else:
                    result = TurnResult(
                        status=TurnStatus.ABORTED,
                        user_utterance=result.user_utterance,
                        tool_rounds=result.tool_rounds,
                        error=result.error,
                    )
            else:
                self._transition(TurnState.LISTENING)
                self.channel.open()

            if self.metrics:
                self.metrics.record_turn(result.status.value)
            logger.info(
                "Turn finished",
                status=result.status.value,
                tool_rounds=len(result.tool_rounds),
                history_length=len(self.history),
            )
            return result
        finally:
            self._turn_lock.release()
            if self._stop_event.is_set() and not self._loop_active:
                self._finalize()

    def _run_turn(self, segment: AudioSegment, turn_start: float) -> TurnResult:
        try:
            text = self._transcribe(segment)
        except TranscriptionError as e:
            self._notify(NOTICE_NOT_UNDERSTOOD, "stt", e)
            return TurnResult(status=TurnStatus.NO_INPUT, error=str(e))

        if not text:
            logger.debug("Empty transcript, nothing to answer")
            return TurnResult(status=TurnStatus.NO_INPUT)

        if self._stop_event.is_set():
            return TurnResult(status=TurnStatus.ABORTED)

        if not self.quiet_period.allows(text):
            logger.info(
                "Ignoring speech during quiet period",
                remaining_seconds=round(self.quiet_period.remaining(), 1),
            )
            return TurnResult(status=TurnStatus.MUTED)
        if self.quiet_period.is_active():
            logger.info("Wake word heard, ending quiet period")
            self.quiet_period.clear()

        user_utterance = Utterance(speaker=Speaker.USER, text=text)
        self.history.append(user_utterance)
        self._emit_utterance(user_utterance)
        self._transition(TurnState.INFERRING)

        tools = self.tool_registry.specs() if self.config.use_tools else ()
        try:
            outcome = self.tool_loop.run(
                self.history.snapshot(), tools, on_state=self._transition
            )
        except InferenceError as e:
            self._notify(NOTICE_FAILED, "llm", e)
            return TurnResult(
                status=TurnStatus.FAILED, user_utterance=user_utterance, error=str(e)
            )

        if self._stop_event.is_set():
            return TurnResult(
                status=TurnStatus.ABORTED,
                user_utterance=user_utterance,
                tool_rounds=outcome.rounds,
            )

        agent_utterance = Utterance(speaker=Speaker.AGENT, text=outcome.text)
        self._transition(TurnState.SPEAKING)
        self.history.append(agent_utterance)
        self._emit_utterance(agent_utterance)

        if self.metrics:
            self.metrics.record_e2e_latency((time.time() - turn_start) * 1000)

        status = TurnStatus.TOOL_LIMIT if outcome.exhausted else TurnStatus.COMPLETED
        try:
            self._speak(outcome.text)
        except SynthesisError as e:
            logger.error("Speech playback failed", error=str(e))
            if self.metrics:
                self.metrics.record_error("tts", str(e))
            if self.notice_handler:
                self.notice_handler(NOTICE_FAILED)
            return TurnResult(
                status=TurnStatus.FAILED,
                user_utterance=user_utterance,
                agent_utterance=agent_utterance,
                tool_rounds=outcome.rounds,
                error=str(e),
            )

        return TurnResult(
            status=status,
            user_utterance=user_utterance,
            agent_utterance=agent_utterance,
            tool_rounds=outcome.rounds,
        )

    def _transcribe(self, segment: AudioSegment) -> str:
        start_time = time.time()
        try:
            text = call_with_timeout(
                self.transcriber.transcribe,
                segment,
                timeout=self.config.call_timeout,
                name="stt.transcribe",
            )
        except TranscriptionError:
            raise
        except CallTimeoutError as e:
            raise TranscriptionError(str(e)) from e
        except Exception as e:
            logger.error("STT provider raised unexpectedly", error=str(e))
            raise TranscriptionError(f"{type(e).__name__}: {e}") from e

        if self.metrics:
            self.metrics.record_stt_latency((time.time() - start_time) * 1000)
        text = (text or "").strip()
        logger.info("Transcribed segment", text=text, duration_s=round(segment.duration, 2))
        return text

    def _speak(self, text: str) -> None:
        start_time = time.time()
        try:
            call_with_timeout(
                self.synthesizer.speak,
                text,
                timeout=self.config.call_timeout,
                name="tts.speak",
            )
        except SynthesisError:
            raise
        except CallTimeoutError as e:
            self.synthesizer.stop_playback()
            raise SynthesisError(str(e)) from e
        except Exception as e:
            raise SynthesisError(f"{type(e).__name__}: {e}") from e

        if self.metrics:
            self.metrics.record_tts_latency((time.time() - start_time) * 1000)

    def _notify(self, notice: str, component: str, error: Exception) -> None:
        """Tell the user a turn failed; the conversation carries on."""
        logger.warning("Turn failed", component=component, error=str(error), notice=notice)
        if self.metrics:
            self.metrics.record_error(component, str(error))
        if self.notice_handler:
            self.notice_handler(notice)
        if self.config.speak_notices and not self._stop_event.is_set():
            try:
                self._speak(notice)
            except SynthesisError as e:
                logger.warning("Could not speak notice", error=str(e))

    def _emit_utterance(self, utterance: Utterance) -> None:
        if self.utterance_handler:
            self.utterance_handler(utterance)

    def stop(self) -> None:
        """
        Request shutdown. Safe to call from a signal handler or another thread.

        A turn in flight is abandoned at its next step; a reply that was not
        yet committed is never added to the history.
        """
        if self._finalized:
            return
        if not self._stop_event.is_set():
            logger.info("Stopping conversation")
        self._stop_event.set()
        self.channel.shutdown()

        if self.state == TurnState.SPEAKING:
            try:
                self.synthesizer.stop_playback()
            except Exception as e:
                logger.warning("Error stopping playback", error=str(e))

        if not self._loop_active and not self._turn_lock.locked():
            self._finalize()

    def _finalize(self) -> None:
        with self._state_lock:
            if self._finalized:
                return
            self._finalized = True

        if self.listener:
            self.listener.stop()

        for name, provider in (
            ("stt", self.transcriber),
            ("llm", self.llm),
            ("tts", self.synthesizer),
        ):
            try:
                provider.stop()
            except Exception as e:
                logger.warning("Error stopping provider", provider=name, error=str(e))

        with self._state_lock:
            self._state = TurnState.IDLE

        if self.metrics:
            self.metrics.end_session()
            self.metrics.save_metrics()

        if self.session_manager and self.current_session:
            self.current_session.record_transcript(self.history.snapshot())
            self.current_session.ended_at = datetime.now().isoformat()
            try:
                self.session_manager.save_session(self.current_session)
            except OSError as e:
                logger.error("Could not save session transcript", error=str(e))

        logger.info("Conversation stopped", turns=self.turn_count, history_length=len(self.history))

    def get_status(self) -> dict:
        """Get current status of the conversation."""
        status = {
            "state": self.state.value,
            "running": self.is_running,
            "turns": self.turn_count,
            "history_length": len(self.history),
            "tools": self.tool_registry.list_tools() if self.config.use_tools else [],
            "quiet_period_remaining": round(self.quiet_period.remaining(), 1),
            "segments_dropped": self.channel.dropped_count,
            "providers": {},
        }
        for name, provider in (
            ("stt", self.transcriber),
            ("llm", self.llm),
            ("tts", self.synthesizer),
        ):
            try:
                status["providers"][name] = provider.get_status()
            except Exception as e:
                status["providers"][name] = {"error": str(e)}
        if self.listener:
            status["listener"] = self.listener.get_status()
        return status
