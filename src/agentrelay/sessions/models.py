"""Session data models for the token relay.

Field names are snake_case in Python and camelCase on disk, which is the
layout the inbound relay reads.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from agentrelay.config import MAX_COMMANDS, SESSION_TTL_SECONDS

SESSION_KIND = "pty"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def epoch_seconds(moment: datetime | None) -> int:
    return int((moment or _utcnow()).timestamp())


class RelayModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class SessionStatus(str, Enum):
    """Lifecycle of a session. Only ``waiting`` is set here; the relay moves it on."""

    WAITING = "waiting"
    RESUMED = "resumed"
    EXPIRED = "expired"
    QUOTA_EXHAUSTED = "quota_exhausted"


class NotificationMetadata(RelayModel):
    """Conversation context captured alongside a notification."""

    model_config = ConfigDict(extra="allow")

    user_question: str | None = None
    claude_response: str | None = None
    tmux_session: str | None = None


class Notification(RelayModel):
    """An event that should reach the operator."""

    type: Literal["completed", "waiting"] = Field(description="Why the agent is notifying")
    project: str = Field(description="Project name shown to the operator")
    message: str = Field(default="", description="Notification text")
    title: str | None = None
    metadata: NotificationMetadata | None = None

    @property
    def description(self) -> str:
        return f"{self.type} - {self.project}"


class NotificationSnapshot(RelayModel):
    type: str
    project: str
    message: str


class SessionRecord(RelayModel):
    """Durable per-session state, one file per session id."""

    model_config = ConfigDict(extra="allow")

    id: str
    token: str
    type: str = SESSION_KIND
    created: datetime
    expires: datetime
    created_at: int
    expires_at: int
    cwd: str
    notification: NotificationSnapshot
    status: SessionStatus = SessionStatus.WAITING
    command_count: int = 0
    max_commands: int = MAX_COMMANDS

    @classmethod
    def new(
        cls,
        session_id: str,
        token: str,
        notification: Notification,
        *,
        now: datetime | None = None,
        cwd: str,
        ttl_seconds: int = SESSION_TTL_SECONDS,
        max_commands: int = MAX_COMMANDS,
    ) -> "SessionRecord":
        created = (now or _utcnow()).replace(microsecond=0)
        created_at = epoch_seconds(created)
        return cls(
            id=session_id,
            token=token,
            created=created,
            expires=created + timedelta(seconds=ttl_seconds),
            created_at=created_at,
            expires_at=created_at + ttl_seconds,
            cwd=cwd,
            notification=NotificationSnapshot(
                type=notification.type,
                project=notification.project,
                message=notification.message,
            ),
            max_commands=max_commands,
        )

    @property
    def commands_remaining(self) -> int:
        return max(self.max_commands - self.command_count, 0)

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at < epoch_seconds(now)


class SessionMapEntry(RelayModel):
    """Routing information the inbound relay resolves a token to."""

    model_config = ConfigDict(extra="allow")

    type: str = SESSION_KIND
    created_at: int
    expires_at: int
    cwd: str
    session_id: str
    tmux_session: str
    description: str

    @classmethod
    def for_record(
        cls, record: SessionRecord, tmux_session: str, description: str
    ) -> "SessionMapEntry":
        return cls(
            created_at=record.created_at,
            expires_at=record.expires_at,
            cwd=record.cwd,
            session_id=record.id,
            tmux_session=tmux_session,
            description=description,
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at < epoch_seconds(now)


class Registration(RelayModel):
    """What a successful registration hands to the message formatter."""

    session_id: str
    token: str
    tmux_session: str
