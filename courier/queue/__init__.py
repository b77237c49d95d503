"""Durable message queue.

Public API:
    - MessageQueue: snapshot-persisted queue with retry/backoff transitions
    - QueuedMessage, MessageKind, MessageStatus, QueueStats: record models
    - ChatPayload, EmailPayload, Attachment: payload variants
    - compute_backoff: retry delay law
    - QueueError and subclasses

Example usage:
    >>> from courier.queue import MessageQueue
    >>> queue = MessageQueue("data/queue.json")
    >>> message_id = queue.add("chat", {"bot_token": "...", "chat_id": "42", "text": "hi"})
"""

from .backoff import compute_backoff
from .exceptions import (
    InvalidMessageError,
    MessageNotFoundError,
    QueueError,
    StorageError,
)
from .models import (
    Attachment,
    ChatPayload,
    EmailPayload,
    MessageKind,
    MessageStatus,
    QueuedMessage,
    QueueStats,
)
from .store import MessageQueue

__all__ = [
    "MessageQueue",
    # Models
    "QueuedMessage",
    "QueueStats",
    "MessageKind",
    "MessageStatus",
    "ChatPayload",
    "EmailPayload",
    "Attachment",
    # Backoff
    "compute_backoff",
    # Exceptions
    "QueueError",
    "StorageError",
    "MessageNotFoundError",
    "InvalidMessageError",
]
