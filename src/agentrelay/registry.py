"""Registry coordinator - binds a notification to a live session before it is sent.

A registration is one unit: the session record and the map entry are written
before dispatch, and any failure after the first write undoes what was
written in reverse order (map entry, then record) before the error reaches
the caller. A failed registration therefore never leaves a usable token.
"""

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4

from agentrelay.config import RelaySettings
from agentrelay.dispatch import DispatchTrigger
from agentrelay.errors import ConfigurationError, DispatchError, TokenCollisionError
from agentrelay.sessions.models import Notification, Registration, SessionMapEntry
from agentrelay.sessions.records import SessionRecordStore
from agentrelay.sessions.session_map import SessionMap
from agentrelay.tmux import current_tmux_session
from agentrelay.tokens import generate_token

logger = logging.getLogger(__name__)

Undo = tuple[str, Callable[[], Awaitable[bool]]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SweepResult:
    """What an expiry sweep removed."""

    tokens: list[str] = field(default_factory=list)
    session_ids: list[str] = field(default_factory=list)


class RegistryCoordinator:
    """Creates and rolls back session record + map entry pairs."""

    def __init__(
        self,
        settings: RelaySettings | None = None,
        *,
        record_store: SessionRecordStore | None = None,
        session_map: SessionMap | None = None,
        dispatcher: DispatchTrigger | None = None,
        resolve_context: Callable[[], str | None] | None = None,
        token_factory: Callable[[], str] = generate_token,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.settings = settings or RelaySettings()
        self.records = record_store or SessionRecordStore(self.settings.sessions_dir)
        self.session_map = session_map or SessionMap(
            self.settings.session_map_path, lock_timeout=self.settings.lock_timeout
        )
        self.dispatcher = dispatcher
        self.resolve_context = resolve_context or current_tmux_session
        self.token_factory = token_factory
        self.clock = clock

    async def register(self, notification: Notification, *, dispatch: bool = True) -> Registration:
        """Persist a session for ``notification`` and send it.

        With ``dispatch=False`` the session is persisted and returned without
        sending; the caller is responsible for delivering the token.

        Raises:
            ConfigurationError: Dispatch requested but not configured (nothing written)
            TokenCollisionError: No unused token found (nothing written)
            DispatchError: The send failed (everything written was removed)
            OSError: Storage failed (everything written was removed)
        """
        dispatcher = self.dispatcher if dispatch else None
        if dispatch:
            if dispatcher is None:
                raise ConfigurationError("No dispatcher configured")
            dispatcher.validate_config()

        tmux_session = await self._tmux_session_for(notification)
        session_id = str(uuid4())
        token = await self._unused_token()

        record = await self.records.create(
            session_id,
            notification,
            token,
            now=self.clock(),
            cwd=os.getcwd(),
            ttl_seconds=self.settings.ttl_seconds,
            max_commands=self.settings.max_commands,
        )
        undo: list[Undo] = [("record", lambda: self.records.remove(session_id))]

        try:
            entry = SessionMapEntry.for_record(record, tmux_session, notification.description)
            # Registered first: a cancelled upsert may still land its write
            undo.append(("map entry", lambda: self.session_map.remove(token)))
            await self.session_map.upsert(token, entry)

            registration = Registration(
                session_id=session_id, token=token, tmux_session=tmux_session
            )
            if dispatcher is not None:
                await self._dispatch(dispatcher, notification, registration)
        except BaseException:
            # Also runs on cancellation, so an interrupted send leaves nothing behind
            await self._rollback(session_id, undo)
            raise

        logger.info("Session registered: %s, token %s, tmux %s", session_id, token, tmux_session)
        return registration

    async def sweep(self, now: datetime | None = None) -> SweepResult:
        """Remove expired map entries, then expired records."""
        now = now or self.clock()
        tokens = await self.session_map.sweep(now)
        session_ids = await self.records.sweep(now)
        return SweepResult(tokens=tokens, session_ids=session_ids)

    async def _tmux_session_for(self, notification: Notification) -> str:
        if notification.metadata and notification.metadata.tmux_session:
            return notification.metadata.tmux_session
        # The resolver shells out to tmux
        resolved = await asyncio.to_thread(self.resolve_context)
        return resolved or self.settings.default_tmux_session

    async def _unused_token(self) -> str:
        attempts = self.settings.token_attempts
        for _ in range(attempts):
            token = self.token_factory()
            if not await self.session_map.contains(token):
                return token
            logger.warning("Generated token %s is already in use, retrying", token)
        raise TokenCollisionError(attempts)

    async def _dispatch(
        self, dispatcher: DispatchTrigger, notification: Notification, registration: Registration
    ) -> None:
        try:
            sent = await dispatcher.dispatch(notification, registration)
        except Exception as e:
            reason = str(e) or type(e).__name__
            raise DispatchError(registration.session_id, registration.token, reason) from e
        if sent is False:
            raise DispatchError(
                registration.session_id, registration.token, "dispatcher reported failure"
            )

    async def _rollback(self, session_id: str, undo: list[Undo]) -> None:
        logger.warning("Rolling back session %s", session_id)
        for label, action in reversed(undo):
            try:
                await action()
            except Exception:
                logger.exception("Failed to remove %s for session %s", label, session_id)
