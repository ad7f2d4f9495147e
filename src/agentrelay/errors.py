"""
Exceptions raised by agentrelay.

Exception Hierarchy:
    RelayError (base)
    ├── ConfigurationError (transport or recipient missing, nothing written)
    ├── RegistrationError (a registration attempt failed)
    │   ├── TokenCollisionError (no free token after retries)
    │   └── DispatchError (send failed, session state rolled back)
    └── LockTimeoutError (session map lock not acquired in time)
"""


class RelayError(Exception):
    """Base exception for all agentrelay errors."""


class ConfigurationError(RelayError):
    """Raised when dispatch is not configured well enough to send."""


class RegistrationError(RelayError):
    """Base exception for failed registrations."""


class TokenCollisionError(RegistrationError):
    """Raised when every generated token was already present in the session map."""

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"Could not generate an unused token after {attempts} attempts")


class DispatchError(RegistrationError):
    """Raised when the notification could not be sent."""

    def __init__(self, session_id: str, token: str, reason: str) -> None:
        self.session_id = session_id
        self.token = token
        super().__init__(f"Dispatch failed for session {session_id} (token {token}): {reason}")


class LockTimeoutError(RelayError):
    """Raised when a file lock cannot be acquired within the timeout."""
