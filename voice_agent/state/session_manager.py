"""Session transcript persistence."""

import os
import json
import tempfile
from pathlib import Path
from datetime import datetime
from typing import Optional, List, Dict, Any, Iterable
from uuid import uuid4
import uuid
import structlog

from ..core.types import Utterance


logger = structlog.get_logger()


class Session:
    """A voice session and the transcript it produced."""

    def __init__(self, session_id: str):
        self.id = session_id
        self.created_at = datetime.now().isoformat()
        self.ended_at: Optional[str] = None
        self.utterances: List[Dict[str, Any]] = []
        self.metadata: Dict[str, Any] = {}

    def record_transcript(self, utterances: Iterable[Utterance]) -> None:
        """Replace the stored transcript with the given utterances."""
        self.utterances = [utterance.to_dict() for utterance in utterances]

    def transcript(self) -> List[Utterance]:
        return [Utterance.from_dict(data) for data in self.utterances]

    def to_dict(self) -> Dict[str, Any]:
        """Convert session to dictionary for serialization."""
        return {
            "id": self.id,
            "created_at": self.created_at,
            "ended_at": self.ended_at,
            "utterances": self.utterances,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        """Create session from dictionary."""
        session = cls(session_id=data["id"])
        session.created_at = data["created_at"]
        session.ended_at = data.get("ended_at")
        session.utterances = data.get("utterances", [])
        session.metadata = data.get("metadata", {})
        return session


class SessionManager:
    """Creates sessions and persists their transcripts as JSON files."""

    def __init__(self, base_path: Optional[str] = None):
        self.base_path = Path(base_path or "~/.voice-agent/sessions").expanduser()
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _generate_uuid7(self) -> str:
        """Generate UUID for time-sortable IDs. Falls back to uuid4 if uuid7 not available."""
        try:
            return str(uuid.uuid7())  # type: ignore[attr-defined]
        except AttributeError:
            return str(uuid4())

    def _atomic_write(self, file_path: Path, data: Dict[str, Any]) -> None:
        """Atomically write data to file."""
        file_path.parent.mkdir(parents=True, exist_ok=True)

        # Write to temporary file first
        with tempfile.NamedTemporaryFile(
            mode="w", dir=file_path.parent, delete=False, suffix=".tmp"
        ) as tmp_file:
            json.dump(data, tmp_file, indent=2, ensure_ascii=False)
            tmp_file.flush()
            os.fsync(tmp_file.fileno())
            tmp_path = tmp_file.name

        # Atomic move
        os.replace(tmp_path, file_path)

    def _session_file(self, session_id: str) -> Path:
        return self.base_path / f"{session_id}.json"

    def create_session(self, **metadata) -> Session:
        """Create a new session."""
        session = Session(f"session_{self._generate_uuid7()}")
        session.metadata.update(metadata)
        logger.info("Created new session", session_id=session.id)
        return session

    def save_session(self, session: Session) -> Path:
        """Save session to disk."""
        session_file = self._session_file(session.id)
        try:
            self._atomic_write(session_file, session.to_dict())
        except OSError as e:
            logger.error("Failed to save session", session_id=session.id, error=str(e))
            raise

        logger.info(
            "Session saved",
            session_id=session.id,
            utterance_count=len(session.utterances),
        )
        return session_file

    def load_session(self, session_id: str) -> Optional[Session]:
        """Load a session from disk."""
        session_file = self._session_file(session_id)
        if not session_file.exists():
            return None

        try:
            with open(session_file, "r") as f:
                return Session.from_dict(json.load(f))
        except (OSError, ValueError, KeyError) as e:
            logger.error("Failed to load session", session_id=session_id, error=str(e))
            return None

    def list_sessions(self) -> List[Dict[str, Any]]:
        """Summaries of saved sessions, newest first."""
        sessions = []
        for session_file in self.base_path.glob("session_*.json"):
            try:
                with open(session_file, "r") as f:
                    data = json.load(f)
            except (OSError, ValueError) as e:
                logger.warning(
                    "Failed to read session file", file=str(session_file), error=str(e)
                )
                continue

            sessions.append(
                {
                    "id": data.get("id", session_file.stem),
                    "created_at": data.get("created_at", ""),
                    "ended_at": data.get("ended_at"),
                    "utterance_count": len(data.get("utterances", [])),
                }
            )

        sessions.sort(key=lambda s: s["created_at"], reverse=True)
        return sessions
