"""Token → routing table shared with the inbound relay.

The table is a single JSON file rewritten in full on every change. Two
writers interleaving between read and write would silently lose one update,
so every mutation holds an in-process asyncio lock (serialising writers in
this event loop) and an exclusive file lock (serialising other processes)
across the whole read-modify-write span. Reads need neither: writes replace
the file atomically.
"""

import asyncio
import json
import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from agentrelay.config import LOCK_TIMEOUT, SESSION_MAP_PATH
from agentrelay.locking import acquire_file_lock, lock_path_for
from agentrelay.sessions.jsonfile import read_json_object, write_json_atomic
from agentrelay.sessions.models import SessionMapEntry, epoch_seconds

logger = logging.getLogger(__name__)

RawTable = dict[str, dict]


class SessionMap:
    """File-backed session map with serialised per-key updates."""

    def __init__(self, path: Path | None = None, lock_timeout: float = LOCK_TIMEOUT):
        self.path = path or SESSION_MAP_PATH
        self.lock_timeout = lock_timeout
        self._lock = asyncio.Lock()

    async def upsert(self, token: str, entry: SessionMapEntry) -> None:
        """Set ``table[token] = entry``, keeping every other entry intact."""

        def apply(table: RawTable) -> bool:
            table[token] = entry.to_json()
            return True

        await self._mutate(apply, "session map upsert")
        logger.debug("Session map entry written: %s -> %s", token, entry.session_id)

    async def remove(self, token: str) -> bool:
        """Drop a token. Returns False if it was not present."""

        def apply(table: RawTable) -> bool:
            return table.pop(token, None) is not None

        removed = await self._mutate(apply, "session map remove")
        if removed:
            logger.debug("Session map entry removed: %s", token)
        return removed

    async def sweep(self, now: datetime | None = None) -> list[str]:
        """Remove entries whose expiry has passed. Returns the removed tokens."""
        cutoff = epoch_seconds(now)
        removed: list[str] = []

        def apply(table: RawTable) -> bool:
            for token, raw in list(table.items()):
                expires_at = raw.get("expiresAt") if isinstance(raw, dict) else None
                if isinstance(expires_at, int) and expires_at < cutoff:
                    del table[token]
                    removed.append(token)
            return bool(removed)

        await self._mutate(apply, "session map sweep")
        if removed:
            logger.info("Swept %d expired session map entries", len(removed))
        return removed

    async def lookup(self, token: str) -> SessionMapEntry | None:
        """Resolve a token, or None if it is unknown or malformed."""
        table = await asyncio.to_thread(self._read)
        raw = table.get(token)
        return self._parse(token, raw) if raw is not None else None

    async def contains(self, token: str) -> bool:
        """True if the table holds ``token``, whether or not its entry is valid."""
        table = await asyncio.to_thread(self._read)
        return token in table

    async def entries(self) -> dict[str, SessionMapEntry]:
        """All valid entries keyed by token."""
        table = await asyncio.to_thread(self._read)
        parsed = {token: self._parse(token, raw) for token, raw in table.items()}
        return {token: entry for token, entry in parsed.items() if entry is not None}

    async def _mutate(self, apply: Callable[[RawTable], bool], operation: str) -> bool:
        async with self._lock:
            work = asyncio.ensure_future(
                asyncio.to_thread(self._locked_mutate, apply, operation)
            )
            try:
                return await asyncio.shield(work)
            except asyncio.CancelledError:
                # The worker thread cannot be interrupted. Keep the lock until its
                # write has landed so a follow-up mutation sees it.
                await asyncio.wait({work})
                if not work.cancelled() and work.exception() is not None:
                    logger.warning("%s failed after cancellation: %s", operation, work.exception())
                raise

    def _locked_mutate(self, apply: Callable[[RawTable], bool], operation: str) -> bool:
        with acquire_file_lock(lock_path_for(self.path), self.lock_timeout, operation):
            table = self._read()
            changed = apply(table)
            if changed:
                write_json_atomic(self.path, table)
            return changed

    def _read(self) -> RawTable:
        # A missing or corrupt table counts as empty
        try:
            data = read_json_object(self.path)
        except json.JSONDecodeError as e:
            logger.warning("Session map %s is not valid JSON, starting empty: %s", self.path, e)
            return {}
        return data or {}

    @staticmethod
    def _parse(token: str, raw: object) -> SessionMapEntry | None:
        try:
            return SessionMapEntry.model_validate(raw)
        except ValidationError as e:
            logger.warning("Ignoring malformed session map entry %s: %s", token, e)
            return None
