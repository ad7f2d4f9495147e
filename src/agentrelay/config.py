"""Configuration and directory management for AgentRelay."""

import os
from pathlib import Path

from pydantic import BaseModel, Field

RELAY_DIR = Path.home() / ".agentrelay"
SESSIONS_DIR = RELAY_DIR / "sessions"
SESSION_MAP_PATH = RELAY_DIR / "session-map.json"

# Environment variable that relocates the token map (shared with the inbound relay)
SESSION_MAP_ENV = "SESSION_MAP_PATH"

# Routing target when no tmux session can be detected
DEFAULT_TMUX_SESSION = "claude-code-remote"

SESSION_TTL_SECONDS = 24 * 60 * 60
MAX_COMMANDS = 10
TOKEN_ATTEMPTS = 5
LOCK_TIMEOUT = 5.0


class RelaySettings(BaseModel):
    """Storage locations and limits handed to the registry at construction."""

    sessions_dir: Path = Field(default_factory=lambda: SESSIONS_DIR)
    session_map_path: Path = Field(default_factory=lambda: SESSION_MAP_PATH)
    default_tmux_session: str = DEFAULT_TMUX_SESSION
    ttl_seconds: int = Field(default=SESSION_TTL_SECONDS, gt=0)
    max_commands: int = Field(default=MAX_COMMANDS, ge=1)
    token_attempts: int = Field(default=TOKEN_ATTEMPTS, ge=1)
    lock_timeout: float = Field(default=LOCK_TIMEOUT, gt=0)

    @classmethod
    def from_env(cls) -> "RelaySettings":
        """Build settings, honouring SESSION_MAP_PATH if it is set."""
        override = os.environ.get(SESSION_MAP_ENV)
        if override:
            return cls(session_map_path=Path(override).expanduser())
        return cls()


def ensure_dirs() -> None:
    """Ensure the AgentRelay directory structure exists."""
    RELAY_DIR.mkdir(parents=True, exist_ok=True)
    SESSIONS_DIR.mkdir(parents=True, exist_ok=True)
