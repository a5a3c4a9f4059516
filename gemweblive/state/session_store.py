"""Persistence of resumption handles and session transcripts."""

import os
import json
import tempfile
from pathlib import Path
from datetime import datetime
from typing import Optional, List, Dict, Any
import structlog


logger = structlog.get_logger()


class SessionRecord:
    """Transcript and metadata of one live session."""

    def __init__(self, session_id: str, model_id: str, resumed: bool = False):
        self.id = session_id
        self.model_id = model_id
        self.resumed = resumed
        self.created_at = datetime.now().isoformat()
        self.ended_at: Optional[str] = None
        self.messages: List[Dict[str, Any]] = []
        self.metadata: Dict[str, Any] = {}

    def add_entry(self, entry: Dict[str, Any]) -> None:
        """Add a transcript entry."""
        self.messages.append(entry)

    def to_dict(self) -> Dict[str, Any]:
        """Convert record to dictionary for serialization."""
        return {
            "id": self.id,
            "model_id": self.model_id,
            "resumed": self.resumed,
            "created_at": self.created_at,
            "ended_at": self.ended_at,
            "messages": self.messages,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionRecord":
        """Create record from dictionary."""
        record = cls(
            session_id=data["id"],
            model_id=data["model_id"],
            resumed=data.get("resumed", False),
        )
        record.created_at = data["created_at"]
        record.ended_at = data.get("ended_at")
        record.messages = data.get("messages", [])
        record.metadata = data.get("metadata", {})
        return record


class SessionStore:
    """
    Stores the latest resumption handle per model and one transcript file
    per session under ``base_path``.
    """

    def __init__(self, base_path: Optional[str] = None):
        self.base_path = Path(base_path or "~/.gemweblive").expanduser()
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.handles_path = self.base_path / "handles.json"
        self.sessions_dir = self.base_path / "sessions"

    def _atomic_write(self, file_path: Path, data: Dict[str, Any]) -> None:
        """Atomically write data to file."""
        file_path.parent.mkdir(parents=True, exist_ok=True)

        with tempfile.NamedTemporaryFile(
            mode="w", dir=file_path.parent, delete=False, suffix=".tmp"
        ) as tmp_file:
            json.dump(data, tmp_file, indent=2, ensure_ascii=False)
            tmp_file.flush()
            os.fsync(tmp_file.fileno())
            tmp_path = tmp_file.name

        os.replace(tmp_path, file_path)

    def _read_handles(self) -> Dict[str, Any]:
        if not self.handles_path.exists():
            return {}
        try:
            with open(self.handles_path, "r") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to read resumption handles", error=str(e))
            return {}

    def load_handle(self, model_id: str) -> Optional[str]:
        """Get the last resumable handle saved for a model."""
        entry = self._read_handles().get(model_id)
        if not entry:
            return None
        return entry.get("handle")

    def save_handle(self, model_id: str, handle: str) -> None:
        """Remember the latest resumable handle for a model."""
        handles = self._read_handles()
        handles[model_id] = {
            "handle": handle,
            "updated_at": datetime.now().isoformat(),
        }
        self._atomic_write(self.handles_path, handles)
        logger.debug("Resumption handle saved", model=model_id)

    def clear_handle(self, model_id: str) -> None:
        """Forget the handle for a model so the next session starts fresh."""
        handles = self._read_handles()
        if handles.pop(model_id, None) is not None:
            self._atomic_write(self.handles_path, handles)
            logger.info("Resumption handle cleared", model=model_id)

    def create_record(self, session_id: str, model_id: str, resumed: bool = False) -> SessionRecord:
        """Create a new session record."""
        record = SessionRecord(session_id, model_id, resumed)
        logger.info("Created session record", session_id=session_id, model=model_id)
        return record

    def save_record(self, record: SessionRecord) -> Path:
        """Save a session record to disk."""
        session_file = self.sessions_dir / f"{record.id}.json"
        try:
            self._atomic_write(session_file, record.to_dict())
        except OSError as e:
            logger.error("Failed to save session", session_id=record.id, error=str(e))
            raise
        logger.info("Session saved", session_id=record.id, message_count=len(record.messages))
        return session_file

    def load_record(self, session_id: str) -> Optional[SessionRecord]:
        """Load a session record from disk."""
        session_file = self.sessions_dir / f"{session_id}.json"
        if not session_file.exists():
            return None
        try:
            with open(session_file, "r") as f:
                return SessionRecord.from_dict(json.load(f))
        except (OSError, json.JSONDecodeError, KeyError) as e:
            logger.error("Failed to load session", session_id=session_id, error=str(e))
            return None

    def list_records(self) -> List[Dict[str, Any]]:
        """Summaries of saved sessions, newest first."""
        if not self.sessions_dir.exists():
            return []

        summaries = []
        for session_file in self.sessions_dir.glob("*.json"):
            try:
                with open(session_file, "r") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.error("Failed to read session file", file=session_file.name, error=str(e))
                continue
            summaries.append(
                {
                    "id": data.get("id"),
                    "model_id": data.get("model_id"),
                    "created_at": data.get("created_at", ""),
                    "message_count": len(data.get("messages", [])),
                }
            )

        summaries.sort(key=lambda x: x["created_at"], reverse=True)
        return summaries
