"""
Pytest configuration for auth_gate. Tests never reach a real notification channel and never
sleep for expiry: time comes from a FakeClock and codes from a RecordingNotifier.
"""
import os

import pytest
from fastapi.testclient import TestClient

# auth_gate.main builds a module-level app from the environment on import; keep it on the log notifier
for _key in ("TELEGRAM_BOT_TOKEN", "TELEGRAM_CHAT_ID", "DISCORD_WEBHOOK_URL"):
    os.environ.pop(_key, None)

from auth_gate.config import Settings  # noqa: E402
from auth_gate.flow import AuthFlow  # noqa: E402
from auth_gate.main import create_app  # noqa: E402
from auth_gate.notifiers import NotificationError  # noqa: E402
from auth_gate.store import Store  # noqa: E402


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingNotifier:
    """Captures delivered codes; set fail=True to simulate a channel outage."""

    def __init__(self):
        self.sent: list[tuple[str, str]] = []
        self.fail = False

    def send_code(self, code: str, identity: str) -> None:
        if self.fail:
            raise NotificationError("channel down")
        self.sent.append((code, identity))

    @property
    def last_code(self) -> str | None:
        return self.sent[-1][0] if self.sent else None


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return Store(clock=clock)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def settings():
    return Settings(code_ttl=60, session_ttl=24 * 3600, cooldown=30, verify_delay=0, cookie_name="test_cookie")


@pytest.fixture
def flow(store, notifier, settings):
    return AuthFlow(store, notifier, settings)


@pytest.fixture
def client(settings, store, notifier):
    app = create_app(settings=settings, store=store, notifier=notifier)
    return TestClient(app, base_url="https://testserver")
