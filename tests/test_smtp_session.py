"""Unit tests for the SMTP protocol session.

Tests the SMTP session including:
- Reply parsing (single-line, multi-line, fragmented, coalesced)
- The full AUTH LOGIN submission sequence and state progression
- Failure at each step stops the exchange and closes the stream
- Dot-stuffing of message data
- Deadline and socket timeout handling
- Opening implicit-TLS streams
"""

import base64
import socket
from unittest.mock import Mock, patch

import pytest

from courier.delivery.exceptions import DeliveryError, DeliveryTimeoutError, SmtpProtocolError
from courier.delivery.smtp_session import (
    ReplyReader,
    SmtpSession,
    SmtpState,
    encode_message_data,
    open_tls_stream,
)

GOOD_REPLIES = [
    b"220 mail.example.com ESMTP ready\r\n",
    b"250-mail.example.com\r\n250-AUTH LOGIN PLAIN\r\n250 8BITMIME\r\n",
    b"334 VXNlcm5hbWU6\r\n",
    b"334 UGFzc3dvcmQ6\r\n",
    b"235 2.7.0 Authentication successful\r\n",
    b"250 2.1.0 OK\r\n",
    b"250 2.1.5 OK\r\n",
    b"354 End data with <CR><LF>.<CR><LF>\r\n",
    b"250 2.0.0 OK queued\r\n",
    b"221 2.0.0 Bye\r\n",
]

MESSAGE = b"Subject: Hi\r\n\r\nHello\r\n.signature\r\n"


class FakeStream:
    """Socket stand-in that replays scripted chunks and records writes."""

    def __init__(self, chunks):
        self.chunks = list(chunks)
        self.written = bytearray()
        self.timeouts = []
        self.closed = False

    def sendall(self, data):
        self.written.extend(data)

    def recv(self, size):
        if not self.chunks:
            return b""
        chunk = self.chunks.pop(0)
        if isinstance(chunk, Exception):
            raise chunk
        return chunk

    def settimeout(self, value):
        self.timeouts.append(value)

    def close(self):
        self.closed = True

    def lines(self):
        return bytes(self.written).split(b"\r\n")


def b64(text):
    return base64.b64encode(text.encode()).decode().encode()


def run_session(chunks, **kwargs):
    stream = FakeStream(chunks)
    session = SmtpSession(stream, **kwargs)
    return stream, session


def send(session):
    session.send_mail(
        username="robot@example.com",
        password="s3cret",
        sender="robot@example.com",
        recipient="ops@example.com",
        message=MESSAGE,
    )


class TestReplyReader:
    """Tests for ReplyReader."""

    def reader(self, chunks):
        stream = FakeStream(chunks)
        return ReplyReader(stream.recv), stream

    def test_single_line(self):
        reader, _ = self.reader([b"220 ready\r\n"])

        reply = reader.read_reply()

        assert reply.code == 220
        assert reply.text == "220 ready"

    def test_multi_line(self):
        reader, _ = self.reader([b"250-first\r\n250-second\r\n250 last\r\n"])

        reply = reader.read_reply()

        assert reply.code == 250
        assert reply.lines == ["250-first", "250-second", "250 last"]

    def test_fragmented_reply(self):
        """Test a reply delivered one byte per read."""
        data = b"250-mail.example.com\r\n250 AUTH LOGIN\r\n"
        reader, _ = self.reader([bytes([b]) for b in data])

        reply = reader.read_reply()

        assert reply.code == 250
        assert reply.lines == ["250-mail.example.com", "250 AUTH LOGIN"]

    def test_coalesced_replies(self):
        """Test two replies arriving in one read are returned one at a time."""
        reader, stream = self.reader([b"334 VXNlcm5hbWU6\r\n235 ok\r\n"])

        assert reader.read_reply().code == 334
        assert reader.read_reply().code == 235
        assert stream.chunks == []

    def test_bare_code_line(self):
        reader, _ = self.reader([b"250\r\n"])

        assert reader.read_reply().code == 250

    def test_lf_only_line_endings(self):
        reader, _ = self.reader([b"220 ready\n"])

        assert reader.read_reply().text == "220 ready"

    def test_connection_closed_mid_reply(self):
        reader, _ = self.reader([b"250-first\r\n250 la"])

        with pytest.raises(DeliveryError, match="Connection closed"):
            reader.read_reply()

    @pytest.mark.parametrize("line", [b"hello\r\n", b"25\r\n", b"250xyz\r\n"])
    def test_malformed_line(self, line):
        reader, _ = self.reader([line])

        with pytest.raises(DeliveryError, match="Malformed"):
            reader.read_reply()


class TestEncodeMessageData:
    """Tests for DATA-phase encoding."""

    def test_dot_stuffing_and_terminator(self):
        data = encode_message_data(b"line1\n.hidden\r\n..two\r\nend")

        assert data == b"line1\r\n..hidden\r\n...two\r\nend\r\n.\r\n"

    def test_leading_dot_on_first_line(self):
        assert encode_message_data(b".start\r\n") == b"..start\r\n.\r\n"

    def test_bare_cr_normalized(self):
        assert encode_message_data(b"a\rb") == b"a\r\nb\r\n.\r\n"

    def test_empty_message(self):
        assert encode_message_data(b"") == b"\r\n.\r\n"


class TestSmtpSession:
    """Tests for the submission sequence."""

    def test_successful_submission(self):
        stream, session = run_session(GOOD_REPLIES, ehlo_hostname="courier.example.com")

        send(session)

        lines = stream.lines()
        assert lines[:7] == [
            b"EHLO courier.example.com",
            b"AUTH LOGIN",
            b64("robot@example.com"),
            b64("s3cret"),
            b"MAIL FROM:<robot@example.com>",
            b"RCPT TO:<ops@example.com>",
            b"DATA",
        ]
        assert b"Subject: Hi\r\n\r\nHello\r\n..signature\r\n.\r\nQUIT\r\n" in bytes(stream.written)
        assert session.state == SmtpState.CLOSED
        assert stream.closed

    def test_password_rejected_stops_exchange(self):
        """Test a 535 after the password fails that step and sends nothing more."""
        replies = GOOD_REPLIES[:4] + [b"535 5.7.8 Authentication credentials invalid\r\n"]
        stream, session = run_session(replies)

        with pytest.raises(SmtpProtocolError) as exc_info:
            send(session)

        assert exc_info.value.step == "auth_password"
        assert exc_info.value.expected == 235
        assert exc_info.value.reply == "535 5.7.8 Authentication credentials invalid"
        assert stream.lines()[-2] == b64("s3cret")
        assert b"MAIL FROM" not in bytes(stream.written)
        assert b"QUIT" not in bytes(stream.written)
        assert session.state == SmtpState.FAILED
        assert stream.closed

    @pytest.mark.parametrize(
        "index,step,expected",
        [
            (0, "greeting", 220),
            (1, "ehlo", 250),
            (2, "auth_login", 334),
            (3, "auth_username", 334),
            (5, "mail_from", 250),
            (6, "rcpt_to", 250),
            (7, "data", 354),
            (8, "message_body", 250),
        ],
    )
    def test_unexpected_code_at_each_step(self, index, step, expected):
        replies = GOOD_REPLIES[:index] + [b"554 5.0.0 no\r\n"]
        stream, session = run_session(replies)

        with pytest.raises(SmtpProtocolError) as exc_info:
            send(session)

        assert exc_info.value.step == step
        assert exc_info.value.expected == expected
        assert "554 5.0.0 no" in str(exc_info.value)
        assert stream.closed

    def test_failed_quit_does_not_fail_delivery(self):
        stream, session = run_session(GOOD_REPLIES[:-1] + [b"500 what\r\n"])

        send(session)

        assert session.state == SmtpState.CLOSED
        assert stream.closed

    def test_connection_dropped_before_quit_reply(self):
        stream, session = run_session(GOOD_REPLIES[:-1])

        send(session)

        assert session.state == SmtpState.CLOSED

    def test_socket_timeout_maps_to_delivery_timeout(self):
        stream, session = run_session(GOOD_REPLIES[:2] + [socket.timeout("timed out")])

        with pytest.raises(DeliveryTimeoutError):
            send(session)

        assert session.state == SmtpState.FAILED
        assert stream.closed

    def test_network_error_maps_to_delivery_error(self):
        stream, session = run_session([ConnectionResetError("reset")])

        with pytest.raises(DeliveryError, match="Network error"):
            send(session)

        assert stream.closed

    def test_deadline_applies_to_whole_session(self):
        """Test the remaining time shrinks per read and expiry aborts the exchange."""
        now = {"t": 0.0}

        class SlowStream(FakeStream):
            def recv(self, size):
                now["t"] += 20.0
                return super().recv(size)

        stream = SlowStream(GOOD_REPLIES)
        session = SmtpSession(stream, timeout=30.0, monotonic=lambda: now["t"])

        with pytest.raises(DeliveryTimeoutError, match="deadline"):
            send(session)

        assert stream.timeouts[0] == 30.0
        assert stream.timeouts[-1] == 10.0
        assert b"AUTH LOGIN" not in bytes(stream.written)
        assert stream.closed

    def test_session_is_single_use(self):
        stream, session = run_session(GOOD_REPLIES)
        send(session)

        with pytest.raises(DeliveryError, match="already used"):
            send(session)


class TestOpenTlsStream:
    """Tests for open_tls_stream."""

    def test_wraps_socket_with_sni(self):
        raw = Mock()
        context = Mock()
        context.wrap_socket.return_value = "tls-stream"

        with patch("courier.delivery.smtp_session.socket.create_connection", return_value=raw) as connect:
            stream = open_tls_stream("smtp.example.com", 465, 10.0, ssl_context=context)

        assert stream == "tls-stream"
        connect.assert_called_once_with(("smtp.example.com", 465), timeout=10.0)
        context.wrap_socket.assert_called_once_with(raw, server_hostname="smtp.example.com")

    def test_connect_timeout(self):
        with patch(
            "courier.delivery.smtp_session.socket.create_connection",
            side_effect=socket.timeout("timed out"),
        ):
            with pytest.raises(DeliveryTimeoutError):
                open_tls_stream("smtp.example.com", 465, 1.0, ssl_context=Mock())

    def test_connection_refused(self):
        with patch(
            "courier.delivery.smtp_session.socket.create_connection",
            side_effect=ConnectionRefusedError("refused"),
        ):
            with pytest.raises(DeliveryError, match="Failed to connect"):
                open_tls_stream("smtp.example.com", 465, 1.0, ssl_context=Mock())

    def test_handshake_failure_closes_socket(self):
        raw = Mock()
        context = Mock()
        context.wrap_socket.side_effect = OSError("certificate verify failed")

        with patch("courier.delivery.smtp_session.socket.create_connection", return_value=raw):
            with pytest.raises(DeliveryError, match="TLS handshake"):
                open_tls_stream("smtp.example.com", 465, 1.0, ssl_context=context)

        raw.close.assert_called_once()

    def test_handshake_gets_remaining_budget(self):
        raw = Mock()
        context = Mock()
        clock = Mock(side_effect=[50.0, 56.0])

        with patch("courier.delivery.smtp_session.socket.create_connection", return_value=raw):
            open_tls_stream("smtp.example.com", 465, 10.0, ssl_context=context, monotonic=clock)

        raw.settimeout.assert_called_once_with(4.0)

    def test_slow_connect_leaves_no_time_for_handshake(self):
        raw = Mock()
        context = Mock()

        with patch("courier.delivery.smtp_session.socket.create_connection", return_value=raw):
            with pytest.raises(DeliveryTimeoutError):
                open_tls_stream(
                    "smtp.example.com", 465, 10.0,
                    ssl_context=context, monotonic=Mock(side_effect=[50.0, 61.0]),
                )

        raw.close.assert_called_once()
        context.wrap_socket.assert_not_called()
