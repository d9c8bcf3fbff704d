"""Durable storage for active session records, one per user.

put() returns only after the record is durable. A crash before that
point means the write did not happen.
"""

from __future__ import annotations

import copy
import json
import threading
from pathlib import Path
from typing import Protocol
from urllib.parse import quote, unquote

from focusboard.errors import PersistenceError
from focusboard.fileio import read_json, remove_file, write_json_atomic
from focusboard.models import SessionRecord
from focusboard.workspace import sessions_dir


class SessionStore(Protocol):
    def get(self, user_id: str) -> SessionRecord | None: ...

    def put(self, record: SessionRecord) -> None: ...

    def delete(self, user_id: str) -> bool: ...

    def user_ids(self) -> list[str]: ...


class FileSessionStore:
    """One JSON file per user under <root>/sessions/."""

    def __init__(self, root: Path | None = None) -> None:
        self.directory = sessions_dir(root)

    def _path(self, user_id: str) -> Path:
        return self.directory / f"{quote(user_id, safe='')}.json"

    def get(self, user_id: str) -> SessionRecord | None:
        try:
            data = read_json(self._path(user_id))
            return SessionRecord.from_dict(data) if data else None
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Could not read session for {user_id!r}: {e}") from e

    def put(self, record: SessionRecord) -> None:
        try:
            write_json_atomic(self._path(record.user_id), record.to_dict())
        except OSError as e:
            raise PersistenceError(f"Could not write session for {record.user_id!r}: {e}") from e

    def delete(self, user_id: str) -> bool:
        try:
            return remove_file(self._path(user_id))
        except OSError as e:
            raise PersistenceError(f"Could not delete session for {user_id!r}: {e}") from e

    def user_ids(self) -> list[str]:
        if not self.directory.exists():
            return []
        return sorted(
            unquote(p.stem) for p in self.directory.glob("*.json") if not p.name.startswith(".tmp_")
        )


class MemorySessionStore:
    """Process-local store. Survives machine re-creation, not process exit."""

    def __init__(self) -> None:
        self._records: dict[str, dict] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> SessionRecord | None:
        with self._lock:
            data = self._records.get(user_id)
        return SessionRecord.from_dict(copy.deepcopy(data)) if data else None

    def put(self, record: SessionRecord) -> None:
        data = json.loads(json.dumps(record.to_dict()))
        with self._lock:
            self._records[record.user_id] = data

    def delete(self, user_id: str) -> bool:
        with self._lock:
            return self._records.pop(user_id, None) is not None

    def user_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._records)
