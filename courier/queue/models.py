"""Queue record models.

A QueuedMessage carries a payload whose shape depends on its kind: chat
messages go to the bot HTTPS API, email messages through an SMTP session.
The payload is a discriminated union keyed by ``kind``; the record's own
``kind`` is copied into the payload during validation so snapshots do not
repeat it.
"""

import base64
import binascii
import mimetypes
from dataclasses import asdict, dataclass
from datetime import datetime
from email.utils import parseaddr
from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Union

from email_validator import EmailNotValidError, validate_email
from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from courier.utils.timestamps import ensure_utc

DEFAULT_MEDIA_TYPE = "application/octet-stream"


class MessageKind(str, Enum):
    """Delivery channel of a queued message."""

    CHAT = "chat"
    EMAIL = "email"


class MessageStatus(str, Enum):
    """Lifecycle status of a queued message.

    FAILED is part of the vocabulary (stats, clear) but the queue never
    assigns it: a failed attempt goes back to PENDING or on to DEAD.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    DEAD = "dead"


def _decode_content(value: Any) -> Any:
    # Text content is base64, as stored in the snapshot
    if isinstance(value, str):
        try:
            return base64.b64decode(value, validate=True)
        except binascii.Error as e:
            raise ValueError(f"attachment content is not valid base64: {e}") from e
    return value


AttachmentContent = Annotated[
    bytes,
    BeforeValidator(_decode_content),
    PlainSerializer(
        lambda v: base64.b64encode(v).decode("ascii"), return_type=str, when_used="json"
    ),
]


def _reject_line_breaks(value: str, field_name: str) -> str:
    if "\r" in value or "\n" in value:
        raise ValueError(f"{field_name} cannot contain line breaks")
    return value


def _check_address(address: str) -> None:
    try:
        validate_email(address, check_deliverability=False)
    except EmailNotValidError as e:
        raise ValueError(f"invalid email address '{address}': {e}") from e


_RECORD_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)
_PAYLOAD_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class Attachment(BaseModel):
    """Binary attachment: raw bytes plus filename and optional media type."""

    model_config = _PAYLOAD_CONFIG

    filename: str = Field(..., min_length=1)
    content: AttachmentContent = Field(..., repr=False)
    media_type: Optional[str] = None

    @field_validator("filename")
    @classmethod
    def check_filename(cls, v: str) -> str:
        stripped = _reject_line_breaks(v.strip(), "filename")
        if not stripped:
            raise ValueError("filename cannot be empty")
        if '"' in stripped:
            raise ValueError("filename cannot contain double quotes")
        return stripped

    def resolved_media_type(self) -> str:
        """Declared media type, else a guess from the filename."""
        if self.media_type:
            return self.media_type
        guessed, _ = mimetypes.guess_type(self.filename)
        return guessed or DEFAULT_MEDIA_TYPE


class ChatPayload(BaseModel):
    """Chat bot message: text, a photo, or a document (with text as caption)."""

    model_config = _PAYLOAD_CONFIG

    kind: Literal["chat"] = Field("chat", exclude=True)
    bot_token: str = Field(..., min_length=1, repr=False)
    chat_id: str = Field(..., min_length=1)
    text: Optional[str] = None
    photo: Optional[Attachment] = None
    document: Optional[Attachment] = None

    @field_validator("chat_id", mode="before")
    @classmethod
    def coerce_chat_id(cls, v: Any) -> Any:
        # Numeric chat ids are common in producer code
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @model_validator(mode="after")
    def require_content(self):
        if not self.text and self.photo is None and self.document is None:
            raise ValueError("chat payload needs text, a photo or a document")
        return self


class EmailPayload(BaseModel):
    """SMTP message with the server credentials needed to deliver it."""

    model_config = _PAYLOAD_CONFIG

    kind: Literal["email"] = Field("email", exclude=True)
    host: str = Field(..., min_length=1)
    port: int = Field(465, ge=1, le=65535)
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1, repr=False)
    sender: str = Field(..., min_length=1, description="Address or 'Name <address>'")
    to: str = Field(..., min_length=1)
    subject: str = ""
    body: str = ""
    attachments: List[Attachment] = Field(default_factory=list)

    @field_validator("host")
    @classmethod
    def strip_host(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("host cannot be empty")
        return stripped

    @field_validator("subject")
    @classmethod
    def check_subject(cls, v: str) -> str:
        return _reject_line_breaks(v, "subject")

    @field_validator("to")
    @classmethod
    def check_recipient(cls, v: str) -> str:
        v = _reject_line_breaks(v.strip(), "to")
        _check_address(v)
        return v

    @field_validator("sender")
    @classmethod
    def check_sender(cls, v: str) -> str:
        v = _reject_line_breaks(v.strip(), "sender")
        _, address = parseaddr(v)
        _check_address(address or v)
        return v

    def envelope_sender(self) -> str:
        """Bare address of the sender for MAIL FROM."""
        _, address = parseaddr(self.sender)
        return address or self.sender


Payload = Annotated[Union[ChatPayload, EmailPayload], Field(discriminator="kind")]


class QueuedMessage(BaseModel):
    """Unit of durable work held by the MessageQueue."""

    model_config = _RECORD_CONFIG

    id: str = Field(..., min_length=1)
    kind: MessageKind
    payload: Payload
    status: MessageStatus = MessageStatus.PENDING
    attempts: int = Field(0, ge=0)
    max_attempts: int = Field(3, ge=1)
    created_at: datetime
    last_attempt_at: Optional[datetime] = None
    next_retry_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def tag_payload(cls, data: Any) -> Any:
        """Copy the record kind into a dict payload so the union can discriminate."""
        if not isinstance(data, dict):
            return data
        kind = data.get("kind")
        payload = data.get("payload")
        if isinstance(kind, MessageKind):
            kind = kind.value
        if isinstance(kind, str) and isinstance(payload, dict) and "kind" not in payload:
            data = {**data, "payload": {**payload, "kind": kind}}
        return data

    @field_validator("created_at", "last_attempt_at", "next_retry_at", "completed_at")
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @model_validator(mode="after")
    def check_consistency(self):
        if self.payload.kind != self.kind.value:
            raise ValueError(
                f"payload of type {type(self.payload).__name__} does not match kind '{self.kind.value}'"
            )
        if self.attempts > self.max_attempts:
            raise ValueError(
                f"attempts ({self.attempts}) cannot exceed max_attempts ({self.max_attempts})"
            )
        return self

    def is_due(self, now: datetime) -> bool:
        """True when the message is pending and its retry time (if any) has come."""
        if self.status != MessageStatus.PENDING:
            return False
        return self.next_retry_at is None or self.next_retry_at <= now


@dataclass
class QueueStats:
    """Record counts per status."""

    total: int = 0
    pending: int = 0
    processing: int = 0
    sent: int = 0
    failed: int = 0
    dead: int = 0

    def as_dict(self) -> dict:
        return asdict(self)
