"""Configuration schema models using Pydantic."""

from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .duration import DurationParseError, parse_duration, validate_duration_range


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    KEY_VALUE = "key-value"


def _checked_duration(value: str, min_seconds: float, max_seconds: float, label: str) -> float:
    try:
        seconds = parse_duration(value)
        validate_duration_range(seconds, min_seconds=min_seconds, max_seconds=max_seconds, label=label)
    except DurationParseError as e:
        raise ValueError(str(e)) from e
    return seconds


class QueueConfig(BaseModel):
    """Durable queue settings."""

    storage_path: Path = Field(..., description="Snapshot file holding the queue records")
    max_attempts: int = Field(
        3, ge=1, le=20, description="Delivery attempts before a message is dead-lettered"
    )
    retry_base_delay: str = Field(
        "1s", description="Delay before the first retry; doubles on each further failure"
    )
    retry_jitter: float = Field(
        0.0, ge=0.0, le=1.0, description="Random extra delay as a fraction of the backoff"
    )

    retry_base_delay_seconds: Optional[float] = None

    @field_validator("storage_path")
    @classmethod
    def reject_directory_path(cls, v: Path) -> Path:
        """The snapshot must be a file path, not an existing directory."""
        if str(v).strip() in ("", "."):
            raise ValueError("storage_path cannot be empty")
        if v.exists() and v.is_dir():
            raise ValueError(f"storage_path points to a directory: {v}")
        return v

    @model_validator(mode="after")
    def compute_retry_delay(self):
        self.retry_base_delay_seconds = _checked_duration(
            self.retry_base_delay, min_seconds=0.001, max_seconds=86400, label="Retry base delay"
        )
        return self


class ProcessorConfig(BaseModel):
    """Queue processor scheduling settings."""

    poll_interval: str = Field("5s", description="Interval between processing cycles")

    poll_interval_seconds: Optional[float] = None

    @model_validator(mode="after")
    def compute_poll_interval(self):
        self.poll_interval_seconds = _checked_duration(
            self.poll_interval, min_seconds=1, max_seconds=86400, label="Poll interval"
        )
        return self


class DeliveryConfig(BaseModel):
    """Settings shared by the delivery adapters."""

    timeout: str = Field("30s", description="Deadline for a single delivery attempt")
    chat_api_base_url: str = Field(
        "https://api.telegram.org", description="Base URL of the chat bot API"
    )
    user_agent: str = Field("Courier/1.0", min_length=1, description="User-Agent for HTTPS calls")
    ehlo_hostname: str = Field("localhost", min_length=1, description="Name announced in EHLO")

    timeout_seconds: Optional[float] = None

    @field_validator("chat_api_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        stripped = v.strip().rstrip("/")
        if not stripped.startswith(("https://", "http://")):
            raise ValueError("chat_api_base_url must be an http(s) URL")
        return stripped

    @field_validator("user_agent", "ehlo_hostname")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("Field cannot be empty or whitespace-only")
        return stripped

    @model_validator(mode="after")
    def compute_timeout(self):
        self.timeout_seconds = _checked_duration(
            self.timeout, min_seconds=1, max_seconds=600, label="Delivery timeout"
        )
        return self


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(LogLevel.INFO, description="Log level")
    format: LogFormat = Field(
        LogFormat.KEY_VALUE, description="Log output format (json or key-value)"
    )

    model_config = {"use_enum_values": True}


class AppConfig(BaseModel):
    """Root configuration object for courier."""

    queue: QueueConfig = Field(..., description="Durable queue settings")
    processor: ProcessorConfig = Field(
        default_factory=ProcessorConfig, description="Processor scheduling"
    )
    delivery: DeliveryConfig = Field(
        default_factory=DeliveryConfig, description="Delivery adapter settings"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
