"""
Performance metrics collection and analysis for the voice agent.
"""

import json
import time
from dataclasses import dataclass, asdict, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional, Any
import structlog

logger = structlog.get_logger()


@dataclass
class LatencyMetrics:
    """Latency metrics for a specific component."""
    min: float
    max: float
    avg: float
    p50: float
    p95: float
    p99: float
    samples: int


@dataclass
class SessionMetrics:
    """Metrics for a single voice session."""
    session_id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    total_turns: int = 0
    turn_outcomes: Dict[str, int] = field(default_factory=dict)
    stt_latencies: List[float] = field(default_factory=list)
    llm_latencies: List[float] = field(default_factory=list)
    tool_latencies: List[float] = field(default_factory=list)
    tts_latencies: List[float] = field(default_factory=list)
    e2e_latencies: List[float] = field(default_factory=list)
    tool_calls: Dict[str, int] = field(
        default_factory=lambda: {"succeeded": 0, "failed": 0}
    )
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["start_time"] = self.start_time.isoformat()
        data["end_time"] = self.end_time.isoformat() if self.end_time else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionMetrics":
        data = dict(data)
        data["start_time"] = datetime.fromisoformat(data["start_time"])
        if data.get("end_time"):
            data["end_time"] = datetime.fromisoformat(data["end_time"])
        return cls(**data)


class MetricsCollector:
    """
    Collects and analyzes performance metrics for the voice agent.
    Tracks per-stage latencies, turn outcomes, tool calls and errors across sessions.
    """

    def __init__(self, storage_path: Optional[Path] = None):
        self.storage_path = storage_path or Path.home() / ".voice-agent" / "metrics"
        self.storage_path.mkdir(parents=True, exist_ok=True)

        self.current_session: Optional[SessionMetrics] = None
        self.session_start_time = None

    def start_session(self, session_id: str) -> None:
        """Start a new metrics collection session."""
        logger.debug("Starting metrics collection", session_id=session_id)

        self.current_session = SessionMetrics(
            session_id=session_id, start_time=datetime.now()
        )
        self.session_start_time = time.time()

    def end_session(self) -> None:
        """End the current metrics collection session."""
        if not self.current_session:
            logger.warning("No active session to end")
            return

        self.current_session.end_time = datetime.now()
        logger.debug("Ending metrics collection",
                    session_id=self.current_session.session_id,
                    turns=self.current_session.total_turns)

    def record_stt_latency(self, latency_ms: float) -> None:
        """Record transcription latency."""
        if self.current_session:
            self.current_session.stt_latencies.append(latency_ms)

    def record_llm_latency(self, latency_ms: float) -> None:
        """Record latency of one inference request."""
        if self.current_session:
            self.current_session.llm_latencies.append(latency_ms)

    def record_tts_latency(self, latency_ms: float) -> None:
        """Record synthesis plus playback latency."""
        if self.current_session:
            self.current_session.tts_latencies.append(latency_ms)

    def record_e2e_latency(self, latency_ms: float) -> None:
        """Record end-to-end latency (segment received -> playback started)."""
        if self.current_session:
            self.current_session.e2e_latencies.append(latency_ms)

    def record_tool_call(self, name: str, success: bool, latency_ms: float) -> None:
        if self.current_session:
            key = "succeeded" if success else "failed"
            self.current_session.tool_calls[key] += 1
            self.current_session.tool_latencies.append(latency_ms)

    def record_turn(self, status: str) -> None:
        """Record the outcome of a finished turn."""
        if self.current_session:
            self.current_session.total_turns += 1
            outcomes = self.current_session.turn_outcomes
            outcomes[status] = outcomes.get(status, 0) + 1

    def record_error(self, component: str, error: str, metadata: Optional[Dict] = None) -> None:
        """Record an error occurrence."""
        if self.current_session:
            error_record = {
                "timestamp": datetime.now().isoformat(),
                "component": component,
                "error": error,
                "metadata": metadata or {}
            }
            self.current_session.errors.append(error_record)

    @staticmethod
    def _calculate_latency_stats(latencies: List[float]) -> LatencyMetrics:
        """Calculate statistical metrics for a list of latencies."""
        if not latencies:
            return LatencyMetrics(0, 0, 0, 0, 0, 0, 0)

        sorted_latencies = sorted(latencies)
        count = len(sorted_latencies)

        def percentile(p: float) -> float:
            index = int(p * count)
            if index >= count:
                index = count - 1
            return sorted_latencies[index]

        return LatencyMetrics(
            min=sorted_latencies[0],
            max=sorted_latencies[-1],
            avg=sum(latencies) / count,
            p50=percentile(0.5),
            p95=percentile(0.95),
            p99=percentile(0.99),
            samples=count
        )

    def _latency_block(self, sessions: List[SessionMetrics]) -> Dict[str, Any]:
        block = {}
        for stage in ("stt", "llm", "tool", "tts", "e2e"):
            values: List[float] = []
            for session in sessions:
                values.extend(getattr(session, f"{stage}_latencies"))
            block[f"{stage}_latency_ms"] = asdict(self._calculate_latency_stats(values))
        return block

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of current session metrics."""
        if not self.current_session:
            return {"error": "No active session"}

        session = self.current_session
        session_duration = 0
        if self.session_start_time:
            session_duration = time.time() - self.session_start_time

        summary = {
            "session_id": session.session_id,
            "session_duration_seconds": session_duration,
            "total_turns": session.total_turns,
            "turn_outcomes": dict(session.turn_outcomes),
            "tool_calls": dict(session.tool_calls),
            "total_errors": len(session.errors),
            "error_rate": len(session.errors) / max(1, session.total_turns),
        }
        summary.update(self._latency_block([session]))
        return summary

    def save_metrics(self) -> Optional[Path]:
        """Save current session metrics to storage."""
        if not self.current_session:
            logger.warning("No session to save")
            return None

        filename = f"session_{self.current_session.session_id}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.json"
        filepath = self.storage_path / filename
        try:
            with open(filepath, 'w') as f:
                json.dump(self.current_session.to_dict(), f, indent=2)
        except OSError as e:
            logger.error("Failed to save metrics", error=str(e))
            return None

        logger.info("Metrics saved", filepath=str(filepath))
        return filepath

    def load_session_metrics(self, session_id: str) -> Optional[SessionMetrics]:
        """Load metrics for a specific session."""
        files = list(self.storage_path.glob(f"session_{session_id}_*.json"))
        if not files:
            return None

        latest_file = max(files, key=lambda f: f.stat().st_mtime)
        try:
            with open(latest_file, 'r') as f:
                return SessionMetrics.from_dict(json.load(f))
        except (OSError, ValueError, TypeError, KeyError) as e:
            logger.error("Failed to load session metrics",
                        session_id=session_id, error=str(e))
            return None

    def generate_report(self, days: int = 7) -> Dict[str, Any]:
        """Generate a metrics report for the last N days."""
        cutoff_date = datetime.now() - timedelta(days=days)

        sessions = []
        for filepath in self.storage_path.glob("session_*.json"):
            try:
                if datetime.fromtimestamp(filepath.stat().st_mtime) < cutoff_date:
                    continue
                with open(filepath, 'r') as f:
                    sessions.append(SessionMetrics.from_dict(json.load(f)))
            except (OSError, ValueError, TypeError, KeyError) as e:
                logger.warning("Failed to load session file",
                              filepath=str(filepath), error=str(e))

        if not sessions:
            return {
                "period_days": days,
                "total_sessions": 0,
                "total_turns": 0,
                "message": "No data available for the specified period"
            }

        total_turns = sum(s.total_turns for s in sessions)
        total_errors = sum(len(s.errors) for s in sessions)
        outcomes: Dict[str, int] = {}
        tool_calls = {"succeeded": 0, "failed": 0}
        for session in sessions:
            for status, count in session.turn_outcomes.items():
                outcomes[status] = outcomes.get(status, 0) + count
            for key in tool_calls:
                tool_calls[key] += session.tool_calls.get(key, 0)

        report = {
            "period_days": days,
            "total_sessions": len(sessions),
            "total_turns": total_turns,
            "turn_outcomes": outcomes,
            "tool_calls": tool_calls,
            "total_errors": total_errors,
            "error_rate": total_errors / max(1, total_turns),
        }
        report.update(self._latency_block(sessions))
        return report
