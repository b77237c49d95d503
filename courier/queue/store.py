"""Durable message queue backed by a JSON snapshot file.

The queue keeps every record in memory and rewrites the whole snapshot after
each mutation (no append log). The file holds a JSON array of
``[id, record]`` pairs. Records found in ``processing`` on load are reset to
``pending``: an interrupted delivery is never presumed to have succeeded.
"""

import os
import random
import tempfile
import threading
import uuid
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import TypeAdapter, ValidationError

from courier.config.models import QueueConfig
from courier.logging import get_logger
from courier.utils.timestamps import Clock, utc_now

from .backoff import compute_backoff
from .exceptions import InvalidMessageError, StorageError
from .models import (
    ChatPayload,
    EmailPayload,
    MessageKind,
    MessageStatus,
    QueuedMessage,
    QueueStats,
)

logger = get_logger(__name__, component="queue")

_SNAPSHOT = TypeAdapter(List[Tuple[str, QueuedMessage]])

PayloadInput = Union[ChatPayload, EmailPayload, Dict[str, Any]]


class MessageQueue:
    """Canonical store of queued messages and their status transitions.

    The queue is the only writer of status, attempts and timestamps. Every
    mutating call persists the snapshot before returning; a failed write
    raises StorageError after the in-memory state has changed.

    Records handed out by get(), get_all() and get_next_pending() are copies;
    changing them does not affect the queue.

    An internal lock serializes mutations within one process (the processor
    runs on a scheduler thread). Concurrent writers in separate processes are
    not supported.
    """

    def __init__(
        self,
        storage_path: Union[str, Path],
        max_attempts: int = 3,
        base_retry_delay: float = 1.0,
        retry_jitter: float = 0.0,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
    ):
        """Open the queue, loading an existing snapshot if there is one.

        Args:
            storage_path: Snapshot file location
            max_attempts: Default attempt ceiling for new messages
            base_retry_delay: Seconds before the first retry
            retry_jitter: Random extra backoff fraction in [0, 1]
            clock: Returns the current aware UTC datetime (utc_now if None)
            rng: Random source for jitter

        Raises:
            ValueError: If a numeric setting is out of range
            StorageError: If an existing snapshot cannot be read or parsed
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        if base_retry_delay <= 0:
            raise ValueError(f"base_retry_delay must be positive, got {base_retry_delay}")
        if not 0.0 <= retry_jitter <= 1.0:
            raise ValueError(f"retry_jitter must be between 0 and 1, got {retry_jitter}")

        self.storage_path = Path(storage_path)
        self.max_attempts = max_attempts
        self.base_retry_delay = base_retry_delay
        self.retry_jitter = retry_jitter
        self._clock = clock or utc_now
        self._rng = rng
        self._messages: Dict[str, QueuedMessage] = {}
        self._lock = threading.RLock()

        self._load()

    @classmethod
    def from_config(cls, config: QueueConfig, **kwargs) -> "MessageQueue":
        """Build a queue from the validated ``queue`` config section."""
        return cls(
            storage_path=config.storage_path,
            max_attempts=config.max_attempts,
            base_retry_delay=config.retry_base_delay_seconds,
            retry_jitter=config.retry_jitter,
            **kwargs,
        )

    # Producer API

    def add(
        self,
        kind: Union[MessageKind, str],
        payload: PayloadInput,
        max_attempts: Optional[int] = None,
    ) -> str:
        """Enqueue a message and persist it.

        Args:
            kind: "chat" or "email"
            payload: Payload model or mapping with the fields for that kind
            max_attempts: Attempt ceiling (queue default if None)

        Returns:
            Id of the new message

        Raises:
            InvalidMessageError: If kind is unknown or the payload is malformed
            StorageError: If the snapshot cannot be written
        """
        try:
            kind = MessageKind(kind)
        except ValueError as e:
            supported = ", ".join(k.value for k in MessageKind)
            raise InvalidMessageError(f"Unknown message kind: {kind!r}. Supported kinds: {supported}") from e

        limit = self.max_attempts if max_attempts is None else max_attempts
        if limit < 1:
            raise InvalidMessageError(f"max_attempts must be >= 1, got {limit}")

        with self._lock:
            message_id = self._new_id()
            try:
                message = QueuedMessage(
                    id=message_id,
                    kind=kind,
                    payload=payload,
                    max_attempts=limit,
                    created_at=self._clock(),
                )
            except ValidationError as e:
                raise InvalidMessageError(f"Invalid {kind.value} payload: {e}") from e

            # Payload model instances are kept by reference during validation
            self._messages[message_id] = message.model_copy(deep=True)
            self._persist()

        logger.info(
            f"Enqueued {kind.value} message {message_id}",
            extra={
                "event": "queue.message.enqueued",
                "message_id": message_id,
                "kind": kind.value,
                "max_attempts": limit,
            },
        )
        return message_id

    # Queries

    def get(self, message_id: str) -> Optional[QueuedMessage]:
        with self._lock:
            message = self._messages.get(message_id)
            return message.model_copy(deep=True) if message else None

    def get_status(self, message_id: str) -> Optional[MessageStatus]:
        with self._lock:
            message = self._messages.get(message_id)
            return message.status if message else None

    def get_all(self, status: Optional[Union[MessageStatus, str]] = None) -> List[QueuedMessage]:
        """Copies of all records (optionally one status), in insertion order."""
        wanted = MessageStatus(status) if status is not None else None
        with self._lock:
            return [
                message.model_copy(deep=True)
                for message in self._messages.values()
                if wanted is None or message.status == wanted
            ]

    def get_dead(self) -> List[QueuedMessage]:
        return self.get_all(MessageStatus.DEAD)

    def get_next_pending(self) -> Optional[QueuedMessage]:
        """Earliest-created message that is pending and due.

        Ties on created_at resolve to insertion order, so the choice is
        deterministic for a given queue state.
        """
        with self._lock:
            now = self._clock()
            eligible = [m for m in self._messages.values() if m.is_due(now)]
            if not eligible:
                return None
            return min(eligible, key=lambda m: m.created_at).model_copy(deep=True)

    def has_pending(self) -> bool:
        """True while any message is pending (due or not) or processing."""
        with self._lock:
            return any(
                m.status in (MessageStatus.PENDING, MessageStatus.PROCESSING)
                for m in self._messages.values()
            )

    def get_stats(self) -> QueueStats:
        stats = QueueStats()
        with self._lock:
            for message in self._messages.values():
                stats.total += 1
                setattr(stats, message.status.value, getattr(stats, message.status.value) + 1)
        return stats

    def __len__(self) -> int:
        return len(self._messages)

    # Transitions

    def mark_processing(self, message_id: str) -> bool:
        """pending -> processing. False if the message is missing or not pending."""
        with self._lock:
            message = self._messages.get(message_id)
            if message is None or message.status != MessageStatus.PENDING:
                return False

            message.status = MessageStatus.PROCESSING
            message.last_attempt_at = self._clock()
            self._persist()
            return True

    def mark_sent(self, message_id: str) -> bool:
        """Any status -> sent. Idempotent: a second call keeps completed_at."""
        with self._lock:
            message = self._messages.get(message_id)
            if message is None:
                return False

            if message.status != MessageStatus.SENT or message.completed_at is None:
                message.completed_at = self._clock()
            message.status = MessageStatus.SENT
            message.error = None
            message.next_retry_at = None
            self._persist()
            return True

    def mark_failed(self, message_id: str, error: str) -> bool:
        """Record a failed attempt.

        Increments attempts; at max_attempts the message goes dead, otherwise
        it returns to pending with next_retry_at pushed out by the backoff
        delay. Returns False for unknown ids and for messages already sent or
        dead.
        """
        with self._lock:
            message = self._messages.get(message_id)
            if message is None or message.status in (MessageStatus.SENT, MessageStatus.DEAD):
                return False

            now = self._clock()
            message.attempts += 1
            message.error = error

            if message.attempts >= message.max_attempts:
                message.status = MessageStatus.DEAD
                message.completed_at = now
                message.next_retry_at = None
                self._persist()
                logger.warning(
                    f"Message {message_id} dead-lettered after {message.attempts} attempts",
                    extra={
                        "event": "queue.message.dead",
                        "message_id": message_id,
                        "attempts": message.attempts,
                    },
                )
                return True

            delay = compute_backoff(
                message.attempts, self.base_retry_delay, self.retry_jitter, self._rng
            )
            message.status = MessageStatus.PENDING
            message.next_retry_at = now + timedelta(seconds=delay)
            self._persist()

        logger.info(
            f"Message {message_id} scheduled for retry in {delay:.2f}s",
            extra={
                "event": "queue.message.retry_scheduled",
                "message_id": message_id,
                "attempts": message.attempts,
                "delay_seconds": round(delay, 3),
            },
        )
        return True

    def retry(self, message_id: str) -> bool:
        """Return a dead message to circulation with a fresh attempt budget.

        No-op (False) unless the message exists and is dead.
        """
        with self._lock:
            message = self._messages.get(message_id)
            if message is None or message.status != MessageStatus.DEAD:
                return False

            message.status = MessageStatus.PENDING
            message.attempts = 0
            message.error = None
            message.next_retry_at = None
            message.completed_at = None
            self._persist()

        logger.info(
            f"Dead message {message_id} re-queued",
            extra={"event": "queue.message.requeued", "message_id": message_id},
        )
        return True

    def remove(self, message_id: str) -> bool:
        with self._lock:
            if self._messages.pop(message_id, None) is None:
                return False
            self._persist()
            return True

    def clear(self, status: Optional[Union[MessageStatus, str]] = None) -> int:
        """Delete all records, or only those with the given status.

        Returns:
            Number of records removed
        """
        wanted = MessageStatus(status) if status is not None else None
        with self._lock:
            if wanted is None:
                count = len(self._messages)
                self._messages.clear()
            else:
                doomed = [mid for mid, m in self._messages.items() if m.status == wanted]
                for message_id in doomed:
                    del self._messages[message_id]
                count = len(doomed)
            self._persist()

        logger.info(
            f"Cleared {count} message(s)",
            extra={
                "event": "queue.cleared",
                "status": wanted.value if wanted else "all",
                "count": count,
            },
        )
        return count

    # Persistence

    def _new_id(self) -> str:
        while True:
            message_id = f"msg_{uuid.uuid4().hex}"
            if message_id not in self._messages:
                return message_id

    def _persist(self) -> None:
        """Atomically replace the snapshot with the current record set."""
        data = _SNAPSHOT.dump_json(
            list(self._messages.items()), by_alias=True, exclude_none=True, indent=2
        )
        directory = self.storage_path.parent
        tmp_path = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=directory, prefix=f".{self.storage_path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.storage_path)
        except OSError as e:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            logger.error(
                f"Failed to persist queue snapshot to {self.storage_path}: {e}",
                exc_info=True,
                extra={"event": "queue.persist.failed", "path": str(self.storage_path)},
            )
            raise StorageError(f"Failed to persist queue to {self.storage_path}: {e}") from e

    def _load(self) -> None:
        """Load the snapshot if present and reset interrupted deliveries."""
        if not self.storage_path.exists():
            return

        try:
            raw = self.storage_path.read_bytes()
        except OSError as e:
            raise StorageError(f"Failed to read queue snapshot {self.storage_path}: {e}") from e

        if not raw.strip():
            return

        try:
            entries = _SNAPSHOT.validate_json(raw)
        except ValidationError as e:
            raise StorageError(f"Queue snapshot {self.storage_path} is malformed: {e}") from e

        recovered = 0
        messages: Dict[str, QueuedMessage] = {}
        for message_id, message in entries:
            if message.status == MessageStatus.PROCESSING:
                message.status = MessageStatus.PENDING
                recovered += 1
            messages[message_id] = message
        self._messages = messages

        logger.info(
            f"Loaded {len(messages)} message(s) from {self.storage_path}",
            extra={
                "event": "queue.loaded",
                "path": str(self.storage_path),
                "count": len(messages),
                "recovered_processing": recovered,
            },
        )
        if recovered:
            logger.warning(
                f"Reset {recovered} interrupted delivery(ies) to pending",
                extra={"event": "queue.recovered", "count": recovered},
            )
