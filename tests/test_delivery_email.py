"""Unit tests for email delivery.

Tests the email adapter including:
- MIME message construction (plain and with attachments)
- Connection and session wiring with injected factories
- One deadline shared by connecting and the session
- Error propagation from connection and protocol failures
"""

from unittest.mock import Mock

import pytest

from courier.delivery.exceptions import DeliveryError, DeliveryTimeoutError, SmtpProtocolError
from courier.delivery.mail import EmailAdapter, build_email_message
from courier.queue.models import Attachment, ChatPayload, EmailPayload, MessageKind


@pytest.fixture
def payload(email_payload):
    return EmailPayload(**email_payload)


class TestBuildEmailMessage:
    """Tests for build_email_message."""

    def test_plain_message(self, payload):
        message = build_email_message(payload)

        assert message.get_content_type() == "text/plain"
        assert message["From"] == "Robot <robot@example.com>"
        assert message["To"] == "ops@example.com"
        assert message["Subject"] == "Nightly report"
        assert message["Date"]
        assert message["Message-ID"].endswith("@example.com>")
        assert message.get_content().strip() == "All green."

    def test_serialized_with_crlf(self, payload):
        data = build_email_message(payload).as_bytes()

        assert b"\r\nSubject: Nightly report\r\n" in data
        assert b"\n" not in data.replace(b"\r\n", b"")

    def test_attachments_make_multipart(self, payload):
        payload.attachments = [
            Attachment(filename="report.pdf", content=b"%PDF-1.4 fake"),
            Attachment(filename="data", content=b"\x00\x01\x02", media_type="application/x-custom"),
        ]

        message = build_email_message(payload)

        assert message.get_content_type() == "multipart/mixed"
        parts = list(message.iter_parts())
        assert [p.get_content_type() for p in parts] == [
            "text/plain",
            "application/pdf",
            "application/x-custom",
        ]
        assert parts[1].get_filename() == "report.pdf"
        assert parts[1]["Content-Transfer-Encoding"] == "base64"
        assert parts[1].get_content() == b"%PDF-1.4 fake"
        assert parts[2].get_content() == b"\x00\x01\x02"

    def test_non_ascii_body(self, payload):
        payload.body = "Grüße"

        message = build_email_message(payload)

        assert message.get_content().strip() == "Grüße"


class TestEmailAdapter:
    """Tests for EmailAdapter."""

    def test_kind(self):
        assert EmailAdapter.kind == MessageKind.EMAIL

    def test_deliver_drives_session(self, payload):
        connect = Mock(return_value="stream")
        session = Mock()
        session_factory = Mock(return_value=session)
        adapter = EmailAdapter(
            timeout=12.0,
            ehlo_hostname="courier.example.com",
            connect=connect,
            session_factory=session_factory,
            monotonic=Mock(return_value=100.0),
        )

        adapter.deliver(payload)

        connect.assert_called_once_with("smtp.example.com", 465, 12.0)
        session_factory.assert_called_once_with(
            "stream", timeout=12.0, ehlo_hostname="courier.example.com"
        )
        kwargs = session.send_mail.call_args.kwargs
        assert kwargs["username"] == "robot@example.com"
        assert kwargs["password"] == "s3cret"
        assert kwargs["sender"] == "robot@example.com"
        assert kwargs["recipient"] == "ops@example.com"
        assert b"Subject: Nightly report" in kwargs["message"]

    def test_slow_connect_shrinks_session_budget(self, payload):
        clock = Mock(side_effect=[100.0, 109.0])
        session_factory = Mock(return_value=Mock())
        adapter = EmailAdapter(
            timeout=12.0, connect=Mock(), session_factory=session_factory, monotonic=clock
        )

        adapter.deliver(payload)

        assert session_factory.call_args.kwargs["timeout"] == pytest.approx(3.0)

    def test_connect_using_whole_deadline_times_out(self, payload):
        stream = Mock()
        session_factory = Mock()
        adapter = EmailAdapter(
            timeout=12.0,
            connect=Mock(return_value=stream),
            session_factory=session_factory,
            monotonic=Mock(side_effect=[100.0, 112.5]),
        )

        with pytest.raises(DeliveryTimeoutError, match="deadline"):
            adapter.deliver(payload)

        stream.close.assert_called_once()
        session_factory.assert_not_called()

    def test_connection_failure_propagates(self, payload):
        connect = Mock(side_effect=DeliveryError("Failed to connect"))
        session_factory = Mock()
        adapter = EmailAdapter(connect=connect, session_factory=session_factory)

        with pytest.raises(DeliveryError, match="Failed to connect"):
            adapter.deliver(payload)

        session_factory.assert_not_called()

    def test_protocol_failure_propagates(self, payload):
        session = Mock()
        session.send_mail.side_effect = SmtpProtocolError("auth_password", 235, "535 denied")
        adapter = EmailAdapter(connect=Mock(), session_factory=Mock(return_value=session))

        with pytest.raises(SmtpProtocolError):
            adapter.deliver(payload)

    def test_rejects_other_payload_types(self):
        adapter = EmailAdapter(connect=Mock(), session_factory=Mock())

        with pytest.raises(DeliveryError, match="cannot deliver ChatPayload"):
            adapter.deliver(ChatPayload(bot_token="t", chat_id="1", text="hi"))

    def test_invalid_timeout(self):
        with pytest.raises(ValueError):
            EmailAdapter(timeout=0)
