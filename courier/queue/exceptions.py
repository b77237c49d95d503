"""Queue exceptions.

All queue errors inherit from QueueError so callers can catch them with a
single except clause.
"""


class QueueError(Exception):
    """Base exception for queue errors."""

    pass


class StorageError(QueueError):
    """Raised when the queue snapshot cannot be read or written.

    On a failed write the in-memory state has already changed, so the caller
    must treat the queue as possibly out of sync with disk.
    """

    pass


class MessageNotFoundError(QueueError):
    """Raised when an operation requires a message id the queue does not hold.

    Lookups that may legitimately miss (get, remove) return None/False
    instead of raising this.
    """

    pass


class InvalidMessageError(QueueError):
    """Raised when add() receives an unknown kind or a malformed payload."""

    pass
