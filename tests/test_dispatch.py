"""Tests for SMTP dispatch and its configuration."""

import smtplib
from unittest.mock import patch

import pytest

from agentrelay.dispatch import (
    SESSION_ID_HEADER,
    TYPE_HEADER,
    DispatchTrigger,
    EmailConfig,
    SmtpDispatcher,
    render_email,
)
from agentrelay.errors import ConfigurationError
from agentrelay.sessions.models import Notification, NotificationMetadata, Registration


@pytest.fixture
def email_config():
    return EmailConfig(
        smtp_host="smtp.example.com",
        smtp_port=587,
        smtp_user="agent@example.com",
        smtp_pass="secret",
        email_to="operator@example.com",
    )


@pytest.fixture
def registration():
    return Registration(session_id="sid-1", token="ABCD1234", tmux_session="session-A")


class TestEmailConfig:
    def test_valid(self, email_config):
        email_config.check()

    @pytest.mark.parametrize(
        "field, message",
        [
            ("smtp_host", "SMTP host required"),
            ("smtp_pass", "SMTP authentication required"),
            ("email_to", "Recipient email required"),
        ],
    )
    def test_missing_fields(self, email_config, field, message):
        config = email_config.model_copy(update={field: None})
        with pytest.raises(ConfigurationError, match=message):
            config.check()

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("SMTP_HOST", "mail.local")
        monkeypatch.setenv("SMTP_PORT", "465")
        monkeypatch.setenv("SMTP_SECURE", "true")
        monkeypatch.setenv("SMTP_USER", "u")
        monkeypatch.setenv("SMTP_PASS", "p")
        monkeypatch.setenv("EMAIL_TO", "ops@example.com")
        monkeypatch.setenv("SMTP_TIMEOUT", "2500")
        monkeypatch.delenv("EMAIL_FROM", raising=False)

        config = EmailConfig.from_env()
        assert config.smtp_host == "mail.local"
        assert config.smtp_port == 465
        assert config.smtp_secure is True
        assert config.timeout == 2.5
        assert config.sender == "u"

    @pytest.mark.parametrize("name, value", [("SMTP_PORT", "smtp"), ("SMTP_TIMEOUT", "soon")])
    def test_from_env_invalid_number(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)
        with pytest.raises(ConfigurationError, match="Invalid SMTP_PORT or SMTP_TIMEOUT"):
            EmailConfig.from_env()

    def test_from_env_empty(self, monkeypatch):
        for name in ("SMTP_HOST", "SMTP_USER", "SMTP_PASS", "EMAIL_TO", "SMTP_PORT", "SMTP_TIMEOUT"):
            monkeypatch.delenv(name, raising=False)
        config = EmailConfig.from_env()
        assert config.smtp_port == 587
        with pytest.raises(ConfigurationError):
            config.check()


class TestProtocol:
    def test_smtp_dispatcher_is_a_dispatch_trigger(self, email_config):
        assert isinstance(SmtpDispatcher(email_config), DispatchTrigger)


class TestStatus:
    def test_configured(self, email_config):
        status = SmtpDispatcher(email_config).status()
        assert status == {
            "type": "email",
            "configured": True,
            "smtp": {"host": "smtp.example.com", "port": 587, "secure": False},
            "recipient": "operator@example.com",
        }

    def test_unconfigured_hides_nothing_secret(self):
        status = SmtpDispatcher(EmailConfig(smtp_pass="secret")).status()
        assert status["configured"] is False
        assert status["smtp"]["host"] == "not configured"
        assert status["recipient"] == "not configured"
        assert "secret" not in str(status)


class TestRenderEmail:
    def test_subject_carries_token(self, registration):
        event = Notification(type="completed", project="demo", message="Done")
        msg = render_email(event, registration)

        assert msg["Subject"] == "[Claude-Code-Remote #ABCD1234] Claude Code Task Completed - demo"
        assert msg[SESSION_ID_HEADER] == "sid-1"
        assert msg[TYPE_HEADER] == "completed"
        body = msg.get_payload()
        assert "Token: ABCD1234" in body
        assert "Session ID: sid-1" in body
        assert "Done" in body

    def test_waiting_subject_with_short_question(self, registration):
        event = Notification(
            type="waiting",
            project="demo",
            message="Which database?",
            metadata=NotificationMetadata(user_question="Please migrate the whole schema to postgres"),
        )
        msg = render_email(event, registration)

        assert msg["Subject"] == (
            "[Claude-Code-Remote #ABCD1234] Claude Code Waiting for Input - "
            "demo | Please migrate the whole schem..."
        )
        assert "Please migrate the whole schema to postgres" in msg.get_payload()


@pytest.mark.asyncio
class TestSmtpDispatcher:
    async def test_sends_via_starttls(self, email_config, registration):
        dispatcher = SmtpDispatcher(email_config)
        event = Notification(type="completed", project="demo", message="Done")

        with patch("smtplib.SMTP") as mock_smtp:
            assert await dispatcher.dispatch(event, registration) is True

        mock_smtp.assert_called_once_with("smtp.example.com", 587, timeout=10.0)
        smtp = mock_smtp.return_value
        smtp.starttls.assert_called_once()
        smtp.login.assert_called_once_with("agent@example.com", "secret")
        sent = smtp.send_message.call_args.args[0]
        assert sent["To"] == "operator@example.com"
        assert sent["From"] == "agent@example.com"
        smtp.quit.assert_called_once()

    async def test_secure_uses_ssl(self, email_config, registration):
        config = email_config.model_copy(update={"smtp_secure": True, "smtp_port": 465})
        event = Notification(type="completed", project="demo")

        with patch("smtplib.SMTP_SSL") as mock_ssl:
            await SmtpDispatcher(config).dispatch(event, registration)

        mock_ssl.return_value.starttls.assert_not_called()
        mock_ssl.return_value.send_message.assert_called_once()

    async def test_send_errors_propagate(self, email_config, registration):
        event = Notification(type="completed", project="demo")

        with patch("smtplib.SMTP") as mock_smtp:
            mock_smtp.return_value.send_message.side_effect = OSError("connection reset")
            with pytest.raises(OSError, match="connection reset"):
                await SmtpDispatcher(email_config).dispatch(event, registration)

        mock_smtp.return_value.quit.assert_called_once()

    async def test_plain_relay_without_starttls(self, email_config, registration):
        event = Notification(type="completed", project="demo")

        with patch("smtplib.SMTP") as mock_smtp:
            mock_smtp.return_value.has_extn.return_value = False
            await SmtpDispatcher(email_config).dispatch(event, registration)

        smtp = mock_smtp.return_value
        smtp.has_extn.assert_called_once_with("starttls")
        smtp.starttls.assert_not_called()
        smtp.send_message.assert_called_once()

    async def test_verify_sends_nothing(self, email_config):
        with patch("smtplib.SMTP") as mock_smtp:
            mock_smtp.return_value.noop.return_value = (250, b"OK")
            await SmtpDispatcher(email_config).verify()

        smtp = mock_smtp.return_value
        smtp.login.assert_called_once_with("agent@example.com", "secret")
        smtp.noop.assert_called_once()
        smtp.send_message.assert_not_called()
        smtp.quit.assert_called_once()

    async def test_verify_rejected_noop(self, email_config):
        with patch("smtplib.SMTP") as mock_smtp:
            mock_smtp.return_value.noop.return_value = (421, b"Service not available")
            with pytest.raises(smtplib.SMTPResponseException):
                await SmtpDispatcher(email_config).verify()

    async def test_verify_requires_config(self):
        with patch("smtplib.SMTP") as mock_smtp:
            with pytest.raises(ConfigurationError):
                await SmtpDispatcher(EmailConfig()).verify()
        mock_smtp.assert_not_called()
