"""Environment variable loading and validation."""

import os
from pathlib import Path
from typing import Optional

from email_validator import EmailNotValidError, validate_email

from .exceptions import ConfigurationError

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class EnvironmentConfig:
    """Environment variable configuration holder.

    Everything here is optional. The queue path and log level override the
    YAML file; the chat and SMTP values are only read by the CLI producer
    commands (``enqueue-chat`` / ``enqueue-email``).
    """

    def __init__(
        self,
        queue_path: Optional[Path] = None,
        log_level: Optional[str] = None,
        environment: Optional[str] = None,
        chat_bot_token: Optional[str] = None,
        chat_id: Optional[str] = None,
        smtp_host: Optional[str] = None,
        smtp_port: Optional[int] = None,
        smtp_user: Optional[str] = None,
        smtp_pass: Optional[str] = None,
        smtp_from: Optional[str] = None,
    ):
        self.queue_path = queue_path
        self.log_level = log_level
        self.environment = environment or "local"
        self.chat_bot_token = chat_bot_token
        self.chat_id = chat_id
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port or 465
        self.smtp_user = smtp_user
        self.smtp_pass = smtp_pass
        self.smtp_from = smtp_from or smtp_user

    def has_chat_credentials(self) -> bool:
        return bool(self.chat_bot_token and self.chat_id)

    def has_smtp_credentials(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_pass and self.smtp_from)


def load_environment_config() -> EnvironmentConfig:
    """
    Load and validate environment variables.

    Recognised variables:
    - COURIER_QUEUE_PATH: Overrides queue.storage_path
    - LOG_LEVEL: Overrides logging.level
    - ENVIRONMENT: Label attached to log records (default: local)
    - CHAT_BOT_TOKEN / CHAT_ID: Chat credentials for enqueue-chat
    - SMTP_HOST / SMTP_PORT / SMTP_USER / SMTP_PASS / SMTP_FROM: SMTP
      settings for enqueue-email (SMTP_PORT defaults to 465)

    Returns:
        EnvironmentConfig object with validated values

    Raises:
        ConfigurationError: If any variable that is set holds an invalid value
    """
    errors = []

    queue_path = os.getenv("COURIER_QUEUE_PATH")
    log_level = os.getenv("LOG_LEVEL")
    smtp_port_str = os.getenv("SMTP_PORT")
    smtp_user = os.getenv("SMTP_USER")
    smtp_pass = os.getenv("SMTP_PASS")
    smtp_from = os.getenv("SMTP_FROM")

    if log_level and log_level.upper() not in VALID_LOG_LEVELS:
        errors.append(
            f"Invalid LOG_LEVEL: '{log_level}'. Must be one of: {', '.join(VALID_LOG_LEVELS)}"
        )

    smtp_port = None
    if smtp_port_str:
        try:
            smtp_port = int(smtp_port_str)
            if smtp_port < 1 or smtp_port > 65535:
                errors.append(f"Invalid SMTP_PORT: {smtp_port}. Must be between 1 and 65535.")
        except ValueError:
            errors.append(f"Invalid SMTP_PORT: '{smtp_port_str}'. Must be a valid integer.")

    if smtp_user and not smtp_pass:
        errors.append("SMTP_USER is set but SMTP_PASS is not. Both must be set for authentication.")
    elif smtp_pass and not smtp_user:
        errors.append("SMTP_PASS is set but SMTP_USER is not. Both must be set for authentication.")

    if smtp_from:
        address = smtp_from.rsplit("<", 1)[-1].rstrip(">").strip()
        try:
            validate_email(address, check_deliverability=False)
        except EmailNotValidError as e:
            errors.append(f"Invalid SMTP_FROM address '{smtp_from}': {e}")

    if errors:
        raise ConfigurationError(
            "Environment variable validation failed",
            errors=errors,
            suggestions=[
                "Copy .env.example to .env and fill in your credentials",
                "Verify SMTP_PORT is a number between 1 and 65535",
                "Check that SMTP_FROM is an address or 'Name <address>'",
            ],
        )

    return EnvironmentConfig(
        queue_path=Path(queue_path) if queue_path else None,
        log_level=log_level.upper() if log_level else None,
        environment=os.getenv("ENVIRONMENT"),
        chat_bot_token=os.getenv("CHAT_BOT_TOKEN"),
        chat_id=os.getenv("CHAT_ID"),
        smtp_host=os.getenv("SMTP_HOST"),
        smtp_port=smtp_port,
        smtp_user=smtp_user,
        smtp_pass=smtp_pass,
        smtp_from=smtp_from,
    )
