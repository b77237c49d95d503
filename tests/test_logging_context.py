"""Tests for logging context propagation."""

import logging
import threading

import pytest

from courier.logging.config import ContextualFilter
from courier.logging.context import (
    clear_log_context,
    get_log_context,
    log_context,
    pop_log_context,
    push_log_context,
)


@pytest.fixture(autouse=True)
def clean_context():
    """Clear logging context before and after each test."""
    clear_log_context()
    yield
    clear_log_context()


def test_empty_context():
    """Test that context starts empty."""
    assert get_log_context() == {}


def test_push_and_pop():
    """Test pushing fields and restoring with the token."""
    token = push_log_context(message_id="msg_1", kind="email")
    assert get_log_context() == {"message_id": "msg_1", "kind": "email"}
    pop_log_context(token)
    assert get_log_context() == {}


def test_nested_context():
    """Test nested pushes merge and pop in reverse order."""
    token1 = push_log_context(message_id="msg_1")
    token2 = push_log_context(attempt=2)
    assert get_log_context() == {"message_id": "msg_1", "attempt": 2}

    pop_log_context(token2)
    assert get_log_context() == {"message_id": "msg_1"}

    pop_log_context(token1)
    assert get_log_context() == {}


def test_context_override():
    """Test that pushing the same key overwrites the previous value."""
    token1 = push_log_context(message_id="msg_1")
    token2 = push_log_context(message_id="msg_2")
    assert get_log_context() == {"message_id": "msg_2"}

    pop_log_context(token2)
    assert get_log_context() == {"message_id": "msg_1"}
    pop_log_context(token1)


def test_get_returns_copy():
    """Test that mutating the returned dict does not change the context."""
    with log_context(message_id="msg_1"):
        context = get_log_context()
        context["message_id"] = "tampered"
        assert get_log_context() == {"message_id": "msg_1"}


def test_context_manager_nested():
    """Test nested context managers."""
    with log_context(message_id="msg_1", kind="chat"):
        with log_context(attempt=1):
            assert get_log_context() == {"message_id": "msg_1", "kind": "chat", "attempt": 1}
        assert get_log_context() == {"message_id": "msg_1", "kind": "chat"}

    assert get_log_context() == {}


def test_context_manager_exception():
    """Test that context is restored even when an exception occurs."""
    with pytest.raises(ValueError):
        with log_context(message_id="msg_1"):
            raise ValueError("boom")

    assert get_log_context() == {}


def test_context_isolated_between_threads():
    """Test that a worker thread does not see the caller's context."""
    seen = {}

    def worker():
        seen["context"] = get_log_context()

    with log_context(message_id="msg_1"):
        thread = threading.Thread(target=worker)
        thread.start()
        thread.join()

    assert seen["context"] == {}


def test_filter_copies_context_onto_records():
    """Test that ContextualFilter attaches context fields to log records."""
    record = logging.LogRecord("courier.test", logging.INFO, __file__, 1, "hello", None, None)

    with log_context(message_id="msg_1", attempt=3):
        assert ContextualFilter(environment="test").filter(record)

    assert record.message_id == "msg_1"
    assert record.attempt == 3
    assert record.service == "courier"
    assert record.environment == "test"
