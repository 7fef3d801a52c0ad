"""Filesystem-backed session store for SKFill.

Form sessions are saved as JSON snapshots under ``~/.skfill/`` so a
half-filled form survives a restart. No database required.

Directory layout::

    ~/.skfill/
    ├── sessions/           # One JSON snapshot per session
    │   └── <session-id>.json
    └── submissions/        # Append-only submitted values (JSONL)
        └── <session-id>.jsonl
"""

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from .config import DEFAULT_SKFILL_DIR
from .errors import SessionNotFoundError
from .models import FormState, SessionRecord, SubmissionRecord

logger = logging.getLogger("skfill.store")

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class SessionStore:
    """Filesystem CRUD for form sessions and their submissions.

    Args:
        base_dir: Root directory for all skfill data.
    """

    def __init__(self, base_dir: Optional[Path] = None) -> None:
        self.base = Path(base_dir) if base_dir else DEFAULT_SKFILL_DIR
        self._sessions_dir = self.base / "sessions"
        self._submissions_dir = self.base / "submissions"

        for d in (self._sessions_dir, self._submissions_dir):
            d.mkdir(parents=True, exist_ok=True)

    def _session_path(self, session_id: str) -> Path:
        if not _SESSION_ID_RE.match(session_id):
            raise SessionNotFoundError(f"Session not found: {session_id}")
        return self._sessions_dir / f"{session_id}.json"

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def save(
        self,
        session_id: str,
        state: FormState,
        title: Optional[str] = None,
    ) -> SessionRecord:
        """Save a session snapshot, keeping its creation time and title.

        An existing file that cannot be read is overwritten as a new session.

        Args:
            session_id: Session identifier.
            state: Snapshot to persist.
            title: Display title (unchanged if None).

        Returns:
            The stored SessionRecord.
        """
        path = self._session_path(session_id)
        try:
            record = self.load(session_id)
            record.state = state
            record.updated_at = datetime.now(timezone.utc)
        except SessionNotFoundError:
            record = SessionRecord(session_id=session_id, state=state)
        except ValueError as exc:
            # Bad JSON or a record that no longer validates.
            logger.warning("Replacing unreadable session %s: %s", session_id[:8], exc)
            record = SessionRecord(session_id=session_id, state=state)
        if title is not None:
            record.title = title

        path.write_text(
            record.model_dump_json(indent=2, by_alias=True),
            encoding="utf-8",
        )
        logger.info("Saved session %s", session_id[:8])
        return record

    def load(self, session_id: str) -> SessionRecord:
        """Load a session by ID.

        Raises:
            SessionNotFoundError: If the session doesn't exist.
        """
        path = self._session_path(session_id)
        if not path.exists():
            raise SessionNotFoundError(f"Session not found: {session_id}")
        data = json.loads(path.read_text(encoding="utf-8"))
        return SessionRecord.model_validate(data)

    def list_sessions(self) -> list[SessionRecord]:
        """List all sessions, most recently updated first."""
        sessions = []
        for f in self._sessions_dir.glob("*.json"):
            try:
                data = json.loads(f.read_text(encoding="utf-8"))
                sessions.append(SessionRecord.model_validate(data))
            except Exception as exc:
                logger.warning("Skipping invalid session %s: %s", f.name, exc)
        sessions.sort(key=lambda s: s.updated_at, reverse=True)
        return sessions

    def delete(self, session_id: str) -> bool:
        """Delete a session and its submissions.

        Returns:
            True if deleted, False if not found.
        """
        try:
            path = self._session_path(session_id)
        except SessionNotFoundError:
            return False
        if not path.exists():
            return False
        path.unlink()
        log_path = self._submissions_dir / f"{session_id}.jsonl"
        if log_path.exists():
            log_path.unlink()
        logger.info("Deleted session %s", session_id[:8])
        return True

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------

    def append_submission(self, session_id: str, values: dict[str, Any]) -> SubmissionRecord:
        """Record submitted values (JSONL, one line per submission)."""
        self._session_path(session_id)
        record = SubmissionRecord(session_id=session_id, values=values)
        log_path = self._submissions_dir / f"{session_id}.jsonl"
        with open(log_path, "a", encoding="utf-8") as f:
            f.write(record.model_dump_json() + "\n")
        logger.info("Recorded submission for session %s", session_id[:8])
        return record

    def get_submissions(self, session_id: str) -> list[SubmissionRecord]:
        """Chronological submissions for a session."""
        log_path = self._submissions_dir / f"{session_id}.jsonl"
        if not log_path.exists():
            return []

        records = []
        for line in log_path.read_text(encoding="utf-8").strip().splitlines():
            try:
                records.append(SubmissionRecord.model_validate_json(line))
            except Exception as exc:
                logger.warning("Skipping invalid submission line: %s", exc)
        return sorted(records, key=lambda r: r.submitted_at)
