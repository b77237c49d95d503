"""Base class for delivery adapters."""

from abc import ABC, abstractmethod
from typing import Any

from courier.queue.models import MessageKind


class DeliveryAdapter(ABC):
    """Sends one payload over one channel.

    Subclasses set ``kind`` to the MessageKind they handle and implement
    deliver(). Returning normally means the remote end accepted the message;
    any failure is raised as a DeliveryError.
    """

    kind: MessageKind

    @abstractmethod
    def deliver(self, payload: Any) -> None:
        """Deliver a single payload.

        Args:
            payload: Payload model matching this adapter's kind

        Raises:
            DeliveryError: If the message was not accepted
        """
        pass

    def close(self) -> None:
        """Release held resources (sessions, pools). Default: nothing to do."""
        return None
