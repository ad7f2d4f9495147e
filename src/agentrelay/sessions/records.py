"""Per-session record files, one JSON document per session id."""

import asyncio
import json
import logging
import os
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from agentrelay.config import MAX_COMMANDS, SESSION_TTL_SECONDS, SESSIONS_DIR
from agentrelay.sessions.jsonfile import read_json_object, write_json_atomic
from agentrelay.sessions.models import Notification, SessionRecord

logger = logging.getLogger(__name__)


class SessionRecordStore:
    """Filesystem-backed session records.

    Each registration writes a distinct file, so records are never contended
    and need no locking beyond an atomic replace.
    """

    def __init__(self, sessions_dir: Path | None = None):
        self.sessions_dir = sessions_dir or SESSIONS_DIR

    def path_for(self, session_id: str) -> Path:
        return self.sessions_dir / f"{session_id}.json"

    async def create(
        self,
        session_id: str,
        notification: Notification,
        token: str,
        *,
        now: datetime | None = None,
        cwd: str | None = None,
        ttl_seconds: int = SESSION_TTL_SECONDS,
        max_commands: int = MAX_COMMANDS,
    ) -> SessionRecord:
        """Persist a new ``waiting`` record.

        OSError from the filesystem propagates; the caller decides what to undo.
        """
        record = SessionRecord.new(
            session_id,
            token,
            notification,
            now=now,
            cwd=cwd or os.getcwd(),
            ttl_seconds=ttl_seconds,
            max_commands=max_commands,
        )
        await asyncio.to_thread(write_json_atomic, self.path_for(session_id), record.to_json())
        logger.debug("Session record created: %s", session_id)
        return record

    async def remove(self, session_id: str) -> bool:
        """Delete a record. Removing a missing record is not an error."""
        removed = await asyncio.to_thread(self._unlink, self.path_for(session_id))
        if removed:
            logger.debug("Session record removed: %s", session_id)
        return removed

    async def get(self, session_id: str) -> SessionRecord | None:
        """Load a record by id."""
        return await asyncio.to_thread(self._load, self.path_for(session_id))

    async def list_records(self) -> list[SessionRecord]:
        """All readable records, oldest first."""
        records = await asyncio.to_thread(self._load_all)
        return sorted(records, key=lambda r: r.created_at)

    async def sweep(self, now: datetime | None = None) -> list[str]:
        """Remove records whose expiry has passed. Returns the removed ids."""
        removed = []
        for record in await self.list_records():
            if record.is_expired(now) and await self.remove(record.id):
                removed.append(record.id)
        if removed:
            logger.info("Swept %d expired session records", len(removed))
        return removed

    @staticmethod
    def _unlink(path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    @staticmethod
    def _load(path: Path) -> SessionRecord | None:
        try:
            data = read_json_object(path)
        except json.JSONDecodeError as e:
            logger.warning("Unreadable session record %s: %s", path, e)
            return None
        if data is None:
            return None
        try:
            return SessionRecord.model_validate(data)
        except ValidationError as e:
            logger.warning("Invalid session record %s: %s", path, e)
            return None

    def _load_all(self) -> list[SessionRecord]:
        if not self.sessions_dir.is_dir():
            return []
        records = []
        for path in sorted(self.sessions_dir.glob("*.json")):
            record = self._load(path)
            if record:
                records.append(record)
        return records
