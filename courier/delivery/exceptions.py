"""Custom exceptions for delivery adapters."""

from typing import Optional


class DeliveryError(Exception):
    """Base exception for all delivery failures.

    The processor treats any DeliveryError as a failed attempt: the message
    text is recorded on the queued message and the attempt is retried with
    backoff until the message runs out of attempts.
    """

    pass


class SmtpProtocolError(DeliveryError):
    """The SMTP server answered a step with an unexpected reply code.

    Carries the step name, the code that was expected and the full reply
    text so the failure can be diagnosed from the stored error alone.
    """

    def __init__(self, step: str, expected: int, reply: str) -> None:
        """Initialize protocol error.

        Args:
            step: Session step that failed (e.g., "auth_password")
            expected: Reply code the step required
            reply: Full reply text received from the server
        """
        super().__init__(f"SMTP {step} failed: expected {expected}, got: {reply}")
        self.step = step
        self.expected = expected
        self.reply = reply


class DeliveryTimeoutError(DeliveryError):
    """The remote end did not answer within the per-attempt deadline.

    This is a transient error; the attempt is retried like any other failure.
    """

    pass


class ChatDeliveryError(DeliveryError):
    """The chat bot API rejected a request.

    Any status other than 200 counts as a rejection.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = "") -> None:
        """Initialize chat delivery error.

        Args:
            message: Human-readable error message
            status_code: HTTP status returned by the API
            body: Response body (truncated)
        """
        super().__init__(message)
        self.status_code = status_code
        self.body = body
