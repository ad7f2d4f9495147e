"""Session records and the token map shared with the inbound relay."""

from agentrelay.sessions.models import (
    Notification,
    NotificationMetadata,
    Registration,
    SessionMapEntry,
    SessionRecord,
    SessionStatus,
)
from agentrelay.sessions.records import SessionRecordStore
from agentrelay.sessions.session_map import SessionMap

__all__ = [
    "Notification",
    "NotificationMetadata",
    "Registration",
    "SessionMap",
    "SessionMapEntry",
    "SessionRecord",
    "SessionRecordStore",
    "SessionStatus",
]
