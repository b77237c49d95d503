"""Queue processing: scheduled and on-demand delivery of queued messages."""

from .service import BatchResult, QueueProcessor

__all__ = [
    "QueueProcessor",
    "BatchResult",
]
