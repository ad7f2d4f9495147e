"""Outbound delivery of notifications.

The registry only depends on the ``DispatchTrigger`` protocol. ``SmtpDispatcher``
is the stock implementation: a plain-text email whose subject carries the
token, sent with smtplib.
"""

import asyncio
import contextlib
import logging
import os
import smtplib
from collections.abc import Iterator
from email.mime.text import MIMEText
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field

from agentrelay.errors import ConfigurationError
from agentrelay.sessions.models import Notification, Registration

logger = logging.getLogger(__name__)

SESSION_ID_HEADER = "X-Claude-Code-Remote-Session-ID"
TYPE_HEADER = "X-Claude-Code-Remote-Type"

SUBJECTS = {
    "completed": "[Claude-Code-Remote #{token}] Claude Code Task Completed - {project}",
    "waiting": "[Claude-Code-Remote #{token}] Claude Code Waiting for Input - {project}",
}

TEXT_TEMPLATE = """{heading}

Project: {project}
Question: {question}

{message}

Reply to this email to send a command back to the session.

Session ID: {session_id}
Token: {token}
Security: Do not forward this email. Session expires in 24 hours.
"""

MAX_QUESTION_LENGTH = 30

SELF_TEST_PROJECT = "Claude-Code-Remote-Test"


@runtime_checkable
class DispatchTrigger(Protocol):
    """Sends the notification for a registration that has already been persisted."""

    def validate_config(self) -> None:
        """Raise ConfigurationError if a send cannot possibly succeed."""
        ...

    async def dispatch(self, notification: Notification, registration: Registration) -> bool | None:
        """Send the notification.

        Raising, or returning False, counts as a failed dispatch and rolls the
        registration back.
        """
        ...


class EmailConfig(BaseModel):
    """SMTP transport and addressing."""

    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_secure: bool = False
    smtp_user: str | None = None
    smtp_pass: str | None = None
    email_from: str | None = None
    email_to: str | None = None
    timeout: float = Field(default=10.0, gt=0, description="Socket timeout in seconds")

    @classmethod
    def from_env(cls) -> "EmailConfig":
        """Read SMTP_* and EMAIL_* environment variables.

        Raises:
            ConfigurationError: SMTP_PORT or SMTP_TIMEOUT is not a valid number
        """
        env = os.environ
        timeout_ms = env.get("SMTP_TIMEOUT")
        try:
            return cls(
                smtp_host=env.get("SMTP_HOST") or None,
                smtp_port=int(env.get("SMTP_PORT") or 587),
                smtp_secure=env.get("SMTP_SECURE", "").lower() in ("1", "true", "yes"),
                smtp_user=env.get("SMTP_USER") or None,
                smtp_pass=env.get("SMTP_PASS") or None,
                email_from=env.get("EMAIL_FROM") or None,
                email_to=env.get("EMAIL_TO") or None,
                timeout=int(timeout_ms) / 1000 if timeout_ms else 10.0,
            )
        except ValueError as e:
            # pydantic.ValidationError is a ValueError too
            raise ConfigurationError(f"Invalid SMTP_PORT or SMTP_TIMEOUT: {e}") from e

    def check(self) -> None:
        if not self.smtp_host:
            raise ConfigurationError("SMTP host required")
        if not self.smtp_user or not self.smtp_pass:
            raise ConfigurationError("SMTP authentication required")
        if not self.email_to:
            raise ConfigurationError("Recipient email required")

    @property
    def sender(self) -> str:
        return self.email_from or self.smtp_user or ""


def render_email(notification: Notification, registration: Registration) -> MIMEText:
    """Build the plain-text message for a registration."""
    question = ""
    if notification.metadata and notification.metadata.user_question:
        question = notification.metadata.user_question
    short_question = question
    if len(short_question) > MAX_QUESTION_LENGTH:
        short_question = short_question[:MAX_QUESTION_LENGTH] + "..."

    project = notification.project
    if short_question:
        project = f"{project} | {short_question}"

    template = SUBJECTS.get(notification.type, SUBJECTS["completed"])
    heading = "Task completed" if notification.type == "completed" else "Waiting for input"

    msg = MIMEText(
        TEXT_TEMPLATE.format(
            heading=notification.title or heading,
            project=notification.project,
            question=question or "No specified task",
            message=notification.message,
            session_id=registration.session_id,
            token=registration.token,
        )
    )
    msg["Subject"] = template.format(token=registration.token, project=project)
    msg[SESSION_ID_HEADER] = registration.session_id
    msg[TYPE_HEADER] = notification.type
    return msg


def self_test_notification() -> Notification:
    """The notification ``agentrelay email test`` sends."""
    return Notification(
        type="completed",
        project=SELF_TEST_PROJECT,
        title="Claude-Code-Remote Test",
        message=(
            "This is a test email to verify that the email notification "
            "function is working properly."
        ),
    )


class SmtpDispatcher:
    """Email dispatch over SMTP (implements DispatchTrigger)."""

    def __init__(self, config: EmailConfig):
        self.config = config

    def validate_config(self) -> None:
        self.config.check()

    async def dispatch(self, notification: Notification, registration: Registration) -> bool:
        msg = render_email(notification, registration)
        msg["From"] = self.config.sender
        msg["To"] = self.config.email_to or ""
        await asyncio.to_thread(self._send, msg)
        logger.info(
            "Email sent to %s, session %s", self.config.email_to, registration.session_id
        )
        return True

    async def verify(self) -> None:
        """Connect, authenticate and NOOP without sending anything.

        Raises:
            ConfigurationError: Transport or recipient not configured
            smtplib.SMTPException: The server rejected the session
            OSError: The server could not be reached
        """
        self.config.check()
        await asyncio.to_thread(self._verify)
        logger.info("SMTP connection to %s:%s verified", self.config.smtp_host, self.config.smtp_port)

    def status(self) -> dict:
        """Transport summary for display. Never includes credentials."""
        cfg = self.config
        try:
            cfg.check()
            configured = True
        except ConfigurationError:
            configured = False
        return {
            "type": "email",
            "configured": configured,
            "smtp": {
                "host": cfg.smtp_host or "not configured",
                "port": cfg.smtp_port,
                "secure": cfg.smtp_secure,
            },
            "recipient": cfg.email_to or "not configured",
        }

    def _send(self, msg: MIMEText) -> None:
        # Exceptions propagate so the registry can roll the session back
        with self._session() as smtp:
            smtp.send_message(msg)

    def _verify(self) -> None:
        with self._session() as smtp:
            code, reply = smtp.noop()
            if code != 250:
                raise smtplib.SMTPResponseException(code, reply)

    @contextlib.contextmanager
    def _session(self) -> Iterator[smtplib.SMTP]:
        cfg = self.config
        if cfg.smtp_secure:
            smtp: smtplib.SMTP = smtplib.SMTP_SSL(cfg.smtp_host, cfg.smtp_port, timeout=cfg.timeout)
        else:
            smtp = smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=cfg.timeout)
        try:
            if not cfg.smtp_secure:
                # Plain relays without STARTTLS are allowed, like nodemailer's secure=false
                smtp.ehlo()
                if smtp.has_extn("starttls"):
                    smtp.starttls()
                    smtp.ehlo()
            if cfg.smtp_user and cfg.smtp_pass:
                smtp.login(cfg.smtp_user, cfg.smtp_pass)
            yield smtp
        finally:
            with contextlib.suppress(smtplib.SMTPException, OSError):
                smtp.quit()
