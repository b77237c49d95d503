"""Shared fixtures for the courier test suite."""

from datetime import datetime, timedelta, timezone

import pytest

from courier.logging.context import clear_log_context
from courier.queue import MessageQueue

COURIER_ENV_VARS = (
    "COURIER_QUEUE_PATH",
    "LOG_LEVEL",
    "ENVIRONMENT",
    "CHAT_BOT_TOKEN",
    "CHAT_ID",
    "SMTP_HOST",
    "SMTP_PORT",
    "SMTP_USER",
    "SMTP_PASS",
    "SMTP_FROM",
)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove courier environment variables so tests see a blank environment."""
    for name in COURIER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def clean_log_context():
    clear_log_context()
    yield
    clear_log_context()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queue_path(tmp_path):
    return tmp_path / "queue.json"


@pytest.fixture
def queue(queue_path, clock):
    """Queue with three attempts, one-second base delay and no jitter."""
    return MessageQueue(queue_path, max_attempts=3, base_retry_delay=1.0, clock=clock)


@pytest.fixture
def chat_payload():
    return {"bot_token": "123:ABC", "chat_id": "4242", "text": "Deploy finished"}


@pytest.fixture
def email_payload():
    return {
        "host": "smtp.example.com",
        "port": 465,
        "username": "robot@example.com",
        "password": "s3cret",
        "sender": "Robot <robot@example.com>",
        "to": "ops@example.com",
        "subject": "Nightly report",
        "body": "All green.",
    }
