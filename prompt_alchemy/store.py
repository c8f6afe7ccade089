"""Session persistence: an abstract store plus in-memory and JSON-file implementations."""

import logging
import time
import uuid
from abc import ABC, abstractmethod
from pathlib import Path

from prompt_alchemy.errors import SessionNotFoundError
from prompt_alchemy.schemas import HistoryItem, SessionRecord, SessionState

logger = logging.getLogger(__name__)


class SessionStore(ABC):
    """Owner-scoped session records. One in-flight turn per session is the caller's job."""

    @abstractmethod
    async def get(self, session_id: str, owner_id: str) -> SessionRecord | None:
        """Return the session if it exists and belongs to ``owner_id``."""
        ...

    @abstractmethod
    async def create(self, owner_id: str, state: SessionState | None = None) -> SessionRecord:
        ...

    @abstractmethod
    async def update(self, session_id: str, history: list[HistoryItem], state: SessionState) -> SessionRecord:
        """Replace history and state in one write.

        Raises:
            SessionNotFoundError: If the session does not exist.
        """
        ...


def _new_record(owner_id: str, state: SessionState | None) -> SessionRecord:
    return SessionRecord(id=str(uuid.uuid4()), owner_id=owner_id, state=state or SessionState())


class InMemorySessionStore(SessionStore):
    def __init__(self) -> None:
        self._records: dict[str, SessionRecord] = {}

    async def get(self, session_id: str, owner_id: str) -> SessionRecord | None:
        record = self._records.get(session_id)
        if record is None or record.owner_id != owner_id:
            return None
        return record.model_copy(deep=True)

    async def create(self, owner_id: str, state: SessionState | None = None) -> SessionRecord:
        record = _new_record(owner_id, state)
        self._records[record.id] = record
        return record.model_copy(deep=True)

    async def update(self, session_id: str, history: list[HistoryItem], state: SessionState) -> SessionRecord:
        record = self._records.get(session_id)
        if record is None:
            raise SessionNotFoundError(session_id)
        updated = record.model_copy(update={"history": history, "state": state, "updated_at": time.time()})
        self._records[session_id] = updated
        return updated.model_copy(deep=True)


class JsonFileSessionStore(SessionStore):
    """One ``<session_id>.json`` file per session under ``directory``."""

    def __init__(self, directory: Path) -> None:
        self._dir = directory
        self._dir.mkdir(parents=True, exist_ok=True)

    def _path(self, session_id: str) -> Path:
        if not session_id.replace("-", "").isalnum():
            raise SessionNotFoundError(session_id)
        return self._dir / f"{session_id}.json"

    def _read(self, session_id: str) -> SessionRecord | None:
        path = self._path(session_id)
        if not path.exists():
            return None
        return SessionRecord.model_validate_json(path.read_text(encoding="utf-8"))

    def _write(self, record: SessionRecord) -> None:
        path = self._path(record.id)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(record.model_dump_json(indent=2), encoding="utf-8")
        tmp.replace(path)
        logger.debug("Session saved to: %s", path)

    async def get(self, session_id: str, owner_id: str) -> SessionRecord | None:
        try:
            record = self._read(session_id)
        except SessionNotFoundError:
            return None
        if record is None or record.owner_id != owner_id:
            return None
        return record

    async def create(self, owner_id: str, state: SessionState | None = None) -> SessionRecord:
        record = _new_record(owner_id, state)
        self._write(record)
        return record

    async def update(self, session_id: str, history: list[HistoryItem], state: SessionState) -> SessionRecord:
        record = self._read(session_id)
        if record is None:
            raise SessionNotFoundError(session_id)
        updated = record.model_copy(update={"history": history, "state": state, "updated_at": time.time()})
        self._write(updated)
        return updated
