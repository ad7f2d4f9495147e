"""MCP server with operator-notification tools."""

from typing import Literal

from mcp.server.fastmcp import FastMCP

from agentrelay.config import RelaySettings
from agentrelay.dispatch import EmailConfig, SmtpDispatcher
from agentrelay.registry import RegistryCoordinator
from agentrelay.sessions.models import Notification, NotificationMetadata

mcp = FastMCP("agentrelay")
registry = RegistryCoordinator(
    RelaySettings.from_env(),
    dispatcher=SmtpDispatcher(EmailConfig.from_env()),
)


@mcp.tool()
async def notify_operator(
    type: Literal["completed", "waiting"],
    project: str,
    message: str,
    tmux_session: str | None = None,
    user_question: str | None = None,
    send: bool = True,
) -> dict:
    """Email the operator and register a token so their reply resumes this session.

    Call this when a task is finished or when you are blocked waiting for the
    operator. The reply is routed back into the tmux session named here (or the
    one this server runs in).

    Args:
        type: "completed" when a task finished, "waiting" when input is needed
        project: Project name shown in the email subject
        message: What the operator should know
        tmux_session: Optional - tmux session the reply should be injected into
        user_question: Optional - the original request, shown in the subject
        send: Set false to only register the token without sending email
    """
    metadata = None
    if tmux_session or user_question:
        metadata = NotificationMetadata(tmux_session=tmux_session, user_question=user_question)
    notification = Notification(type=type, project=project, message=message, metadata=metadata)
    registration = await registry.register(notification, dispatch=send)
    return {
        "session_id": registration.session_id,
        "token": registration.token,
        "tmux_session": registration.tmux_session,
        "status": "sent" if send else "registered",
    }


@mcp.tool()
async def lookup_token(token: str) -> dict | str:
    """Resolve a reply token to the session it routes to.

    Args:
        token: The 8-character token from the email subject
    """
    entry = await registry.session_map.lookup(token.strip().upper())
    if not entry:
        return f"Token {token} not found"
    return {
        "token": token.strip().upper(),
        "session_id": entry.session_id,
        "tmux_session": entry.tmux_session,
        "description": entry.description,
        "cwd": entry.cwd,
        "expires_at": entry.expires_at,
        "expired": entry.is_expired(registry.clock()),
    }


@mcp.tool()
async def list_sessions() -> list[dict]:
    """List registered reply tokens and where they route, newest first."""
    entries = await registry.session_map.entries()
    return [
        {
            "token": token,
            "session_id": entry.session_id,
            "tmux_session": entry.tmux_session,
            "description": entry.description,
            "expires_at": entry.expires_at,
        }
        for token, entry in sorted(entries.items(), key=lambda kv: kv[1].created_at, reverse=True)
    ]
