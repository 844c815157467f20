"""Append-only JSONL mirror of agent interaction records.

Every recorded interaction is appended to a session-specific JSONL file.
Records are never modified or deleted on disk; the in-memory log decides
what it keeps.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Iterator

from code_memory.config import INTERACTION_LOG_DIR
from code_memory.models import InteractionRecord, interaction_from_record, interaction_to_record

DEFAULT_SESSION = "default"


class JSONLInteractionWriter:
    """Per-session JSONL files of flat interaction records."""

    def __init__(self, log_dir: Path | None = None) -> None:
        self.log_dir = log_dir or INTERACTION_LOG_DIR
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def _session_path(self, session_id: str | None) -> Path:
        # Sanitize session_id to prevent path traversal
        safe_id = os.path.basename(session_id or DEFAULT_SESSION) or DEFAULT_SESSION
        return self.log_dir / f"{safe_id}.jsonl"

    def append(self, record: InteractionRecord) -> tuple[str, int]:
        """Append a record and return (file_path, byte_offset)."""
        path = self._session_path(record.session_id)
        line = json.dumps(interaction_to_record(record), ensure_ascii=False) + "\n"
        byte_offset = path.stat().st_size if path.exists() else 0
        with open(path, "a", encoding="utf-8") as f:
            f.write(line)
        return str(path), byte_offset

    def iter_session(self, session_id: str | None) -> Iterator[InteractionRecord]:
        """Yield all records for a session in write order."""
        path = self._session_path(session_id)
        if not path.exists():
            return
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    yield interaction_from_record(json.loads(line))

    def iter_all(self) -> Iterator[InteractionRecord]:
        for session in self.list_sessions():
            yield from self.iter_session(session)

    def list_sessions(self) -> list[str]:
        """Return all session IDs that have log files."""
        return [p.stem for p in sorted(self.log_dir.glob("*.jsonl"))]

    def session_size(self, session_id: str | None) -> int:
        path = self._session_path(session_id)
        return path.stat().st_size if path.exists() else 0
