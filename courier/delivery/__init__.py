"""Delivery adapters for the supported channels.

This module provides one adapter per message kind:
- Chat (Telegram Bot API over HTTPS): chat.ChatAdapter
- Email (SMTP AUTH LOGIN over implicit TLS): mail.EmailAdapter

Use the factory function to build the adapter map for a processor:
    from courier.delivery import build_adapters
    adapters = build_adapters(app_config.delivery)

The SMTP protocol session can also be driven directly:
    from courier.delivery.smtp_session import SmtpSession, open_tls_stream

Exception handling:
    from courier.delivery.exceptions import DeliveryError, SmtpProtocolError, DeliveryTimeoutError
"""

from .base import DeliveryAdapter
from .chat import ChatAdapter
from .exceptions import (
    ChatDeliveryError,
    DeliveryError,
    DeliveryTimeoutError,
    SmtpProtocolError,
)
from .factory import build_adapters
from .mail import EmailAdapter, build_email_message
from .smtp_session import (
    ReplyReader,
    SmtpReply,
    SmtpSession,
    SmtpState,
    encode_message_data,
    open_tls_stream,
)

__all__ = [
    # Base and factory
    "DeliveryAdapter",
    "build_adapters",
    # Adapters
    "ChatAdapter",
    "EmailAdapter",
    "build_email_message",
    # SMTP session
    "SmtpSession",
    "SmtpState",
    "SmtpReply",
    "ReplyReader",
    "encode_message_data",
    "open_tls_stream",
    # Exceptions
    "DeliveryError",
    "SmtpProtocolError",
    "DeliveryTimeoutError",
    "ChatDeliveryError",
]
