"""Shared fixtures: every test gets its own relay directory."""

import pytest

from agentrelay.config import RelaySettings
from agentrelay.sessions.models import Notification, Registration
from agentrelay.sessions.records import SessionRecordStore
from agentrelay.sessions.session_map import SessionMap


class FakeDispatcher:
    """Records dispatches; can be told to fail."""

    def __init__(self, fail_with: Exception | None = None, result: bool | None = True):
        self.fail_with = fail_with
        self.result = result
        self.sent: list[tuple[Notification, Registration]] = []
        self.config_error: Exception | None = None

    def validate_config(self) -> None:
        if self.config_error:
            raise self.config_error

    async def dispatch(self, notification: Notification, registration: Registration) -> bool | None:
        if self.fail_with:
            raise self.fail_with
        self.sent.append((notification, registration))
        return self.result


@pytest.fixture(autouse=True)
def relay_home(tmp_path, monkeypatch):
    """Point the default relay paths at a temp dir."""
    import agentrelay.config as config

    home = tmp_path / "relay"
    monkeypatch.setattr(config, "RELAY_DIR", home)
    monkeypatch.setattr(config, "SESSIONS_DIR", home / "sessions")
    monkeypatch.setattr(config, "SESSION_MAP_PATH", home / "session-map.json")
    monkeypatch.delenv("SESSION_MAP_PATH", raising=False)
    return home


@pytest.fixture
def settings(tmp_path):
    return RelaySettings(
        sessions_dir=tmp_path / "sessions",
        session_map_path=tmp_path / "data" / "session-map.json",
    )


@pytest.fixture
def records(settings):
    return SessionRecordStore(settings.sessions_dir)


@pytest.fixture
def session_map(settings):
    return SessionMap(settings.session_map_path)


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def completed_event():
    return Notification(type="completed", project="demo", message="All tests pass")
