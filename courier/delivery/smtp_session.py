"""Client side of an SMTP submission over implicit TLS.

SmtpSession drives one message through a fixed command sequence (EHLO,
AUTH LOGIN, MAIL FROM, RCPT TO, DATA, QUIT) and checks every reply code
before sending the next command. Replies are read through ReplyReader, which
buffers the stream so a reply split across reads, several replies arriving in
one read, and multi-line replies are all handled.
"""

import base64
import re
import socket
import ssl
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from courier.logging import get_logger

from .exceptions import DeliveryError, DeliveryTimeoutError, SmtpProtocolError

logger = get_logger(__name__, component="smtp")

CRLF = b"\r\n"
MAX_LINE_LENGTH = 8192
READ_CHUNK_SIZE = 4096

_LINE_ENDINGS = re.compile(rb"\r\n|\r|\n")
_LEADING_DOT = re.compile(rb"^\.", re.MULTILINE)


class SmtpState(str, Enum):
    """Position of a session in the submission sequence."""

    CONNECTED = "connected"
    GREETED = "greeted"
    HELO_SENT = "helo_sent"
    AUTH_USERNAME_SENT = "auth_username_sent"
    AUTH_PASSWORD_SENT = "auth_password_sent"
    AUTHENTICATED = "authenticated"
    SENDER_SET = "sender_set"
    RECIPIENT_SET = "recipient_set"
    DATA_MODE = "data_mode"
    MESSAGE_SENT = "message_sent"
    CLOSED = "closed"
    FAILED = "failed"


@dataclass(frozen=True)
class SmtpReply:
    """A complete server reply: its code and every line as received."""

    code: int
    lines: List[str]

    @property
    def text(self) -> str:
        return "\n".join(self.lines)


class ReplyReader:
    """Assembles SMTP replies from a byte stream.

    Bytes are accumulated until a full line is present; lines whose fourth
    character is ``-`` continue the reply, and the first line with a space
    (or nothing) after the code ends it. Leftover bytes stay buffered for the
    next reply.
    """

    def __init__(self, recv: Callable[[int], bytes], chunk_size: int = READ_CHUNK_SIZE):
        """
        Args:
            recv: Reads up to n bytes; returns b"" at end of stream
            chunk_size: Bytes requested per read
        """
        self._recv = recv
        self._chunk_size = chunk_size
        self._buffer = bytearray()

    def read_reply(self) -> SmtpReply:
        """Read one complete (possibly multi-line) reply.

        Raises:
            DeliveryError: If the stream ends mid-reply or a line is malformed
        """
        lines: List[str] = []
        while True:
            line = self._read_line()
            code, last = self._parse_line(line)
            lines.append(line)
            if last:
                return SmtpReply(code=code, lines=lines)

    def _read_line(self) -> str:
        while True:
            end = self._buffer.find(b"\n")
            if end >= 0:
                raw = bytes(self._buffer[: end + 1])
                del self._buffer[: end + 1]
                return raw.rstrip(b"\r\n").decode("utf-8", errors="replace")

            if len(self._buffer) > MAX_LINE_LENGTH:
                raise DeliveryError(f"SMTP reply line exceeds {MAX_LINE_LENGTH} bytes")

            chunk = self._recv(self._chunk_size)
            if not chunk:
                raise DeliveryError("Connection closed by SMTP server")
            self._buffer.extend(chunk)

    @staticmethod
    def _parse_line(line: str):
        if len(line) < 3 or not line[:3].isdigit():
            raise DeliveryError(f"Malformed SMTP reply line: {line!r}")
        if len(line) > 3 and line[3] not in ("-", " "):
            raise DeliveryError(f"Malformed SMTP reply line: {line!r}")
        return int(line[:3]), len(line) == 3 or line[3] == " "


def encode_message_data(message: bytes) -> bytes:
    """Prepare message bytes for the DATA phase.

    Normalizes line endings to CRLF, doubles a leading dot on any line, and
    appends the ``CRLF.CRLF`` terminator.
    """
    data = _LINE_ENDINGS.sub(CRLF, message)
    data = _LEADING_DOT.sub(b"..", data)
    if not data.endswith(CRLF):
        data += CRLF
    return data + b"." + CRLF


def _b64(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


class SmtpSession:
    """One authenticated submission over an already-open TLS stream.

    The session owns the stream: it is closed when send_mail() returns or
    raises. A session is single-use.

    The stream must offer sendall(), recv(), settimeout() and close(), as an
    ssl.SSLSocket does.
    """

    def __init__(
        self,
        stream,
        timeout: float = 30.0,
        ehlo_hostname: str = "localhost",
        monotonic: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            stream: Connected socket-like object
            timeout: Seconds allowed for the whole exchange
            ehlo_hostname: Name announced in EHLO
            monotonic: Time source for the deadline
        """
        self.stream = stream
        self.timeout = timeout
        self.ehlo_hostname = ehlo_hostname
        self.state = SmtpState.CONNECTED
        self._monotonic = monotonic
        self._deadline: Optional[float] = None
        self._reader = ReplyReader(self._recv)

    def send_mail(
        self,
        username: str,
        password: str,
        sender: str,
        recipient: str,
        message: bytes,
    ) -> None:
        """Authenticate with AUTH LOGIN and submit one message.

        Args:
            username: SMTP account name
            password: SMTP account password
            sender: Bare envelope sender address
            recipient: Bare recipient address
            message: Serialized RFC 5322 message

        Raises:
            SmtpProtocolError: If a reply code does not match its step
            DeliveryTimeoutError: If the deadline passes
            DeliveryError: On any other I/O failure
        """
        if self.state != SmtpState.CONNECTED:
            raise DeliveryError(f"SMTP session already used (state: {self.state.value})")

        self._deadline = self._monotonic() + self.timeout
        try:
            self._expect("greeting", 220)
            self.state = SmtpState.GREETED

            self._command("ehlo", f"EHLO {self.ehlo_hostname}", 250)
            self.state = SmtpState.HELO_SENT

            self._command("auth_login", "AUTH LOGIN", 334)
            self._send_line(_b64(username))
            self.state = SmtpState.AUTH_USERNAME_SENT
            self._expect("auth_username", 334)

            self._send_line(_b64(password))
            self.state = SmtpState.AUTH_PASSWORD_SENT
            self._expect("auth_password", 235)
            self.state = SmtpState.AUTHENTICATED

            self._command("mail_from", f"MAIL FROM:<{sender}>", 250)
            self.state = SmtpState.SENDER_SET

            self._command("rcpt_to", f"RCPT TO:<{recipient}>", 250)
            self.state = SmtpState.RECIPIENT_SET

            self._command("data", "DATA", 354)
            self.state = SmtpState.DATA_MODE

            self._send(encode_message_data(message))
            self._expect("message_body", 250)
            self.state = SmtpState.MESSAGE_SENT

            self._quit()
        except socket.timeout as e:
            self.state = SmtpState.FAILED
            raise DeliveryTimeoutError(f"SMTP server timed out after {self.timeout}s") from e
        except DeliveryError:
            self.state = SmtpState.FAILED
            raise
        except OSError as e:
            self.state = SmtpState.FAILED
            raise DeliveryError(f"Network error during SMTP session: {e}") from e
        finally:
            self._close()

    def _quit(self) -> None:
        # The message is already accepted; a bad goodbye is not a failure
        try:
            self._command("quit", "QUIT", 221)
        except (DeliveryError, OSError) as e:
            logger.warning(
                f"Error closing SMTP session: {e}",
                extra={"event": "smtp.session.quit_failed", "error_type": type(e).__name__},
            )

    def _command(self, step: str, line: str, expected: int) -> SmtpReply:
        self._send_line(line)
        return self._expect(step, expected)

    def _expect(self, step: str, expected: int) -> SmtpReply:
        reply = self._reader.read_reply()
        logger.debug(
            f"SMTP {step}: {reply.code}",
            extra={"event": "smtp.session.step", "step": step, "code": reply.code},
        )
        if reply.code != expected:
            raise SmtpProtocolError(step, expected, reply.text)
        return reply

    def _send_line(self, line: str) -> None:
        self._send(line.encode("utf-8") + CRLF)

    def _send(self, data: bytes) -> None:
        self._apply_deadline()
        self.stream.sendall(data)

    def _recv(self, size: int) -> bytes:
        self._apply_deadline()
        return self.stream.recv(size)

    def _apply_deadline(self) -> None:
        remaining = self._deadline - self._monotonic()
        if remaining <= 0:
            raise DeliveryTimeoutError(f"SMTP session exceeded {self.timeout}s deadline")
        self.stream.settimeout(remaining)

    def _close(self) -> None:
        try:
            self.stream.close()
        except OSError as e:
            logger.debug(f"Error closing SMTP stream: {e}")
        if self.state != SmtpState.FAILED:
            self.state = SmtpState.CLOSED


def open_tls_stream(
    host: str,
    port: int,
    timeout: float,
    ssl_context: Optional[ssl.SSLContext] = None,
    monotonic: Callable[[], float] = time.monotonic,
) -> ssl.SSLSocket:
    """Connect to host:port and complete a TLS handshake (implicit TLS).

    ``timeout`` bounds connecting and the handshake together.

    Raises:
        DeliveryTimeoutError: If connecting or the handshake times out
        DeliveryError: On any other connection or TLS failure
    """
    context = ssl_context or ssl.create_default_context()
    deadline = monotonic() + timeout
    try:
        raw = socket.create_connection((host, port), timeout=timeout)
    except socket.timeout as e:
        raise DeliveryTimeoutError(f"Timed out connecting to {host}:{port}") from e
    except OSError as e:
        raise DeliveryError(f"Failed to connect to {host}:{port}: {e}") from e

    remaining = deadline - monotonic()
    if remaining <= 0:
        raw.close()
        raise DeliveryTimeoutError(f"Timed out connecting to {host}:{port}")

    try:
        raw.settimeout(remaining)
        return context.wrap_socket(raw, server_hostname=host)
    except socket.timeout as e:
        raw.close()
        raise DeliveryTimeoutError(f"TLS handshake with {host}:{port} timed out") from e
    except OSError as e:
        raw.close()
        raise DeliveryError(f"TLS handshake with {host}:{port} failed: {e}") from e
