"""Email delivery through an SMTP submission session."""

import time
from email.message import EmailMessage
from email.policy import SMTP
from email.utils import formatdate, make_msgid, parseaddr
from typing import Callable, Optional

from courier.logging import get_logger
from courier.queue.models import EmailPayload, MessageKind

from .base import DeliveryAdapter
from .exceptions import DeliveryError, DeliveryTimeoutError
from .smtp_session import SmtpSession, open_tls_stream

logger = get_logger(__name__, component="delivery")


def build_email_message(payload: EmailPayload) -> EmailMessage:
    """Build the MIME message for an email payload.

    Without attachments the result is a single text/plain part. With
    attachments it becomes multipart/mixed: the body first, then one
    base64-encoded part per attachment.
    """
    message = EmailMessage(policy=SMTP)
    message["From"] = payload.sender
    message["To"] = payload.to
    message["Subject"] = payload.subject
    message["Date"] = formatdate(localtime=False)

    _, sender_address = parseaddr(payload.sender)
    domain = sender_address.rpartition("@")[2] or None
    message["Message-ID"] = make_msgid(domain=domain)

    message.set_content(payload.body, subtype="plain", charset="utf-8")

    for attachment in payload.attachments:
        maintype, _, subtype = attachment.resolved_media_type().partition("/")
        message.add_attachment(
            attachment.content,
            maintype=maintype,
            subtype=subtype or "octet-stream",
            filename=attachment.filename,
        )

    return message


class EmailAdapter(DeliveryAdapter):
    """Delivers email payloads with AUTH LOGIN over implicit TLS.

    Each delivery opens its own connection to the host and port named in the
    payload. One deadline covers connecting and the whole session. The
    connection factory and session class can be injected for testing.
    """

    kind = MessageKind.EMAIL

    def __init__(
        self,
        timeout: float = 30.0,
        ehlo_hostname: str = "localhost",
        connect: Optional[Callable] = None,
        session_factory: Optional[Callable] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        """Initialize email adapter.

        Args:
            timeout: Seconds allowed per delivery attempt (connect + session)
            ehlo_hostname: Name announced in EHLO
            connect: Opens a TLS stream, called as connect(host, port, timeout)
            session_factory: Builds an SmtpSession from (stream, timeout, ehlo_hostname)
            monotonic: Time source for the attempt deadline
        """
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")

        self.timeout = timeout
        self.ehlo_hostname = ehlo_hostname
        self.connect = connect or open_tls_stream
        self.session_factory = session_factory or SmtpSession
        self._monotonic = monotonic

    def deliver(self, payload: EmailPayload) -> None:
        """Send one email.

        Raises:
            DeliveryError: If the payload is not an EmailPayload or any
                connection or protocol step fails
        """
        if not isinstance(payload, EmailPayload):
            raise DeliveryError(
                f"EmailAdapter cannot deliver {type(payload).__name__}"
            )

        try:
            data = build_email_message(payload).as_bytes()
        except (ValueError, TypeError) as e:
            raise DeliveryError(f"Failed to build email message: {e}") from e

        logger.debug(
            f"Connecting to {payload.host}:{payload.port}",
            extra={
                "event": "delivery.email.connecting",
                "host": payload.host,
                "port": payload.port,
            },
        )

        deadline = self._monotonic() + self.timeout
        stream = self.connect(payload.host, payload.port, self.timeout)

        remaining = deadline - self._monotonic()
        if remaining <= 0:
            stream.close()
            raise DeliveryTimeoutError(
                f"Connecting to {payload.host}:{payload.port} used the whole {self.timeout}s deadline"
            )

        session = self.session_factory(
            stream, timeout=remaining, ehlo_hostname=self.ehlo_hostname
        )
        session.send_mail(
            username=payload.username,
            password=payload.password,
            sender=payload.envelope_sender(),
            recipient=payload.to,
            message=data,
        )

        logger.info(
            f"Email delivered to {payload.to}",
            extra={
                "event": "delivery.email.sent",
                "host": payload.host,
                "size_bytes": len(data),
                "attachments": len(payload.attachments),
            },
        )
