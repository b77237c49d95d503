"""Queue processor: drains the message queue through delivery adapters.

This module provides the QueueProcessor that pulls due messages from the
MessageQueue one at a time, dispatches each to the adapter for its kind,
records the outcome on the queue and notifies the producer through optional
callbacks.
"""

import threading
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional, Union

from courier.delivery.base import DeliveryAdapter
from courier.delivery.exceptions import DeliveryError
from courier.logging import get_logger
from courier.logging.context import log_context
from courier.queue.exceptions import MessageNotFoundError
from courier.queue.models import MessageKind, MessageStatus, QueuedMessage
from courier.queue.store import MessageQueue
from courier.scheduler.service import SchedulerService

logger = get_logger(__name__, component="processor")

SentCallback = Callable[[QueuedMessage], None]
FailedCallback = Callable[[QueuedMessage, str], None]
DeadCallback = Callable[[QueuedMessage], None]


@dataclass
class BatchResult:
    """Outcome counts of a process_all() run."""

    sent: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.sent + self.failed


class QueueProcessor:
    """Delivers queued messages, one at a time, with retry bookkeeping.

    Work happens either on a schedule (start/stop, driven by the scheduler
    service) or on demand (process_cycle, process_all). A busy lock ensures
    only one message is ever in flight: a scheduled cycle that fires while
    another cycle or a process_all() run is active does nothing.

    Delivery failures never escape a cycle. They are recorded on the queue
    with mark_failed() and reported through on_failed, or on_dead once the
    message has used its last attempt. Callback errors are logged and
    ignored.
    """

    def __init__(
        self,
        queue: MessageQueue,
        adapters: Mapping[Union[MessageKind, str], DeliveryAdapter],
        on_sent: Optional[SentCallback] = None,
        on_failed: Optional[FailedCallback] = None,
        on_dead: Optional[DeadCallback] = None,
        scheduler_factory: Callable[..., SchedulerService] = SchedulerService,
    ):
        """Initialize queue processor.

        Args:
            queue: Queue to drain
            adapters: Adapter per message kind
            on_sent: Called with the record after a successful delivery
            on_failed: Called with the record and error text after a failed
                attempt that will be retried
            on_dead: Called with the record once it is dead-lettered
            scheduler_factory: Builds the scheduler, called as
                scheduler_factory(job, interval_seconds)
        """
        self.queue = queue
        self.adapters: Dict[MessageKind, DeliveryAdapter] = {
            MessageKind(kind): adapter for kind, adapter in adapters.items()
        }
        self.on_sent = on_sent
        self.on_failed = on_failed
        self.on_dead = on_dead
        self.scheduler_factory = scheduler_factory

        self._busy = threading.Lock()
        self._lifecycle = threading.Lock()
        self._scheduler: Optional[SchedulerService] = None

    # Lifecycle

    def start(self, interval_seconds: float) -> None:
        """Begin polling: one cycle now, then one every interval_seconds.

        Calling start() on a running processor does nothing.
        """
        with self._lifecycle:
            if self._scheduler is not None:
                logger.debug(
                    "Processor already running",
                    extra={"event": "processor.start.ignored"},
                )
                return

            scheduler = self.scheduler_factory(self.process_cycle, interval_seconds)
            scheduler.start()
            self._scheduler = scheduler

        logger.info(
            "Queue processor started",
            extra={"event": "processor.started", "interval_seconds": interval_seconds},
        )

    def stop(self, wait: bool = False) -> None:
        """Stop scheduling cycles. A cycle already in flight runs to completion.

        Args:
            wait: Block until the in-flight cycle (if any) has finished
        """
        with self._lifecycle:
            scheduler, self._scheduler = self._scheduler, None

        if scheduler is None:
            return

        scheduler.shutdown(wait=wait)
        logger.info("Queue processor stopped", extra={"event": "processor.stopped"})

    def is_running(self) -> bool:
        return self._scheduler is not None

    # Processing

    def process_cycle(self) -> Optional[QueuedMessage]:
        """Process at most one due message.

        Returns:
            The message's record after the attempt, or None when nothing was
            due, another cycle was in progress, or an unexpected error
            (e.g. a storage failure) aborted the cycle
        """
        if not self._busy.acquire(blocking=False):
            logger.debug(
                "Processing already in progress, skipping cycle",
                extra={"event": "processor.cycle.skipped"},
            )
            return None

        try:
            return self._process_next()
        except Exception as e:
            logger.error(
                f"Processing cycle aborted: {e}",
                exc_info=True,
                extra={"event": "processor.cycle.error", "error_type": type(e).__name__},
            )
            return None
        finally:
            self._busy.release()

    def process_all(self) -> BatchResult:
        """Deliver due messages until none remain.

        Blocks until any in-flight cycle finishes, then holds the busy lock
        for the whole drain. Messages scheduled for a later retry are left
        alone.

        Returns:
            BatchResult with the number of messages sent and failed attempts

        Raises:
            QueueError: If the queue cannot be updated (e.g. StorageError)
        """
        result = BatchResult()
        with self._busy:
            while True:
                record = self._process_next()
                if record is None:
                    break
                if record.status == MessageStatus.SENT:
                    result.sent += 1
                else:
                    result.failed += 1

        logger.info(
            f"Batch complete: {result.sent} sent, {result.failed} failed",
            extra={"event": "processor.batch.completed", "sent": result.sent, "failed": result.failed},
        )
        return result

    def _process_next(self) -> Optional[QueuedMessage]:
        message = self.queue.get_next_pending()
        if message is None:
            return None

        attempt = message.attempts + 1
        with log_context(message_id=message.id, kind=message.kind.value, attempt=attempt):
            if not self.queue.mark_processing(message.id):
                raise MessageNotFoundError(
                    f"Message {message.id} could not be claimed for processing"
                )

            logger.debug(
                f"Delivering message {message.id} (attempt {attempt}/{message.max_attempts})",
                extra={"event": "processor.delivery.started"},
            )

            error = self._deliver(message)
            if error is None:
                self.queue.mark_sent(message.id)
                record = self._reload(message.id)
                logger.info(
                    f"Message {message.id} sent",
                    extra={"event": "processor.delivery.succeeded"},
                )
                self._notify("on_sent", self.on_sent, record)
                return record

            self.queue.mark_failed(message.id, error)
            record = self._reload(message.id)
            if record.status == MessageStatus.DEAD:
                logger.error(
                    f"Message {message.id} failed permanently: {error}",
                    extra={"event": "processor.delivery.dead", "error": error},
                )
                self._notify("on_dead", self.on_dead, record)
            else:
                logger.warning(
                    f"Message {message.id} failed, will retry: {error}",
                    extra={
                        "event": "processor.delivery.failed",
                        "error": error,
                        "next_retry_at": record.next_retry_at.isoformat() if record.next_retry_at else None,
                    },
                )
                self._notify("on_failed", self.on_failed, record, error)
            return record

    def _deliver(self, message: QueuedMessage) -> Optional[str]:
        """Run the adapter; return None on success or the error text."""
        adapter = self.adapters.get(message.kind)
        if adapter is None:
            return f"No delivery adapter registered for kind '{message.kind.value}'"

        try:
            adapter.deliver(message.payload)
        except DeliveryError as e:
            return str(e) or type(e).__name__
        except Exception as e:
            logger.error(
                f"Unexpected adapter error: {e}",
                exc_info=True,
                extra={"event": "processor.adapter.error", "error_type": type(e).__name__},
            )
            return f"{type(e).__name__}: {e}"
        return None

    def _reload(self, message_id: str) -> QueuedMessage:
        record = self.queue.get(message_id)
        if record is None:
            raise MessageNotFoundError(f"Message {message_id} vanished during processing")
        return record

    def _notify(self, name: str, callback: Optional[Callable], *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error(
                f"{name} callback raised: {e}",
                exc_info=True,
                extra={"event": "processor.callback.failed", "callback": name},
            )
