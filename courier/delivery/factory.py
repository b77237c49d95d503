"""Factory function for instantiating delivery adapters."""

from typing import Dict

from courier.config.models import DeliveryConfig
from courier.logging import get_logger
from courier.queue.models import MessageKind

from .base import DeliveryAdapter
from .chat import ChatAdapter
from .mail import EmailAdapter

logger = get_logger(__name__, component="delivery")


def build_adapters(config: DeliveryConfig) -> Dict[MessageKind, DeliveryAdapter]:
    """Create one adapter per message kind from the delivery config.

    Args:
        config: Validated ``delivery`` section

    Returns:
        Mapping of message kind to the adapter that delivers it

    Example:
        >>> adapters = build_adapters(DeliveryConfig())
        >>> adapters[MessageKind.CHAT].deliver(payload)
    """
    adapters: Dict[MessageKind, DeliveryAdapter] = {
        MessageKind.CHAT: ChatAdapter(
            api_base_url=config.chat_api_base_url,
            timeout=config.timeout_seconds,
            user_agent=config.user_agent,
        ),
        MessageKind.EMAIL: EmailAdapter(
            timeout=config.timeout_seconds,
            ehlo_hostname=config.ehlo_hostname,
        ),
    }

    logger.debug(
        "Delivery adapters created",
        extra={
            "event": "delivery.adapters.created",
            "kinds": sorted(kind.value for kind in adapters),
            "timeout_seconds": config.timeout_seconds,
        },
    )
    return adapters
