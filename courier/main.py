"""Command-line entry point for courier."""

import argparse
import json
import signal
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from courier.config.environment import EnvironmentConfig
from courier.config.exceptions import ConfigurationError
from courier.config.loader import load_config
from courier.config.models import AppConfig
from courier.delivery.factory import build_adapters
from courier.logging import get_logger
from courier.logging.config import configure_logging
from courier.processor import QueueProcessor
from courier.queue import (
    Attachment,
    MessageKind,
    MessageQueue,
    MessageStatus,
    QueueError,
    QueuedMessage,
)
from courier.utils.timestamps import format_timestamp

logger = get_logger(__name__, component="cli")

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
STATUS_CHOICES = [status.value for status in MessageStatus]
SECRET_FIELDS = ("password", "botToken")


@dataclass
class Runtime:
    """Everything a subcommand needs, built once from configuration."""

    app_config: AppConfig
    env_config: EnvironmentConfig
    queue: MessageQueue


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="courier",
        description="Courier - durable outbound chat and email delivery",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: courier.yaml or config/courier.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=LOG_LEVELS,
        help="Log level (overrides config and environment)",
    )

    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.required = True

    commands.add_parser("run", help="Run the queue processor until interrupted")
    commands.add_parser("flush", help="Deliver all due messages once and exit")
    commands.add_parser("stats", help="Show message counts per status")

    list_parser = commands.add_parser("list", help="List queued messages")
    list_parser.add_argument("--status", choices=STATUS_CHOICES, help="Only show this status")

    for name, help_text in (
        ("show", "Show one message (credentials masked)"),
        ("retry", "Re-queue a dead message"),
        ("remove", "Delete a message"),
    ):
        sub = commands.add_parser(name, help=help_text)
        sub.add_argument("message_id", metavar="ID")

    clear_parser = commands.add_parser("clear", help="Delete messages")
    clear_parser.add_argument("--status", choices=STATUS_CHOICES, help="Only delete this status")

    chat_parser = commands.add_parser(
        "enqueue-chat", help="Queue a chat message (CHAT_BOT_TOKEN / CHAT_ID from environment)"
    )
    chat_parser.add_argument("--text", default=None, help="Message text (caption for files)")
    chat_parser.add_argument("--chat-id", default=None, help="Override CHAT_ID")
    media = chat_parser.add_mutually_exclusive_group()
    media.add_argument("--photo", type=Path, help="Image file to send")
    media.add_argument("--document", type=Path, help="File to send as a document")

    email_parser = commands.add_parser(
        "enqueue-email", help="Queue an email (SMTP_* settings from environment)"
    )
    email_parser.add_argument("--to", required=True, help="Recipient address")
    email_parser.add_argument("--subject", default="", help="Subject line")
    email_parser.add_argument("--body", default="", help="Plain-text body")
    email_parser.add_argument(
        "--attach", type=Path, action="append", default=[], help="File to attach (repeatable)"
    )

    return parser


def load_runtime(config_path: Optional[Path], log_level_override: Optional[str]) -> Runtime:
    """
    Load configuration, configure logging and open the queue.

    Log level priority: CLI > LOG_LEVEL environment variable > config file.

    Raises:
        ConfigurationError: If configuration is invalid
        QueueError: If the queue snapshot cannot be loaded
    """
    app_config, env_config = load_config(config_path)

    level = log_level_override or app_config.logging.level
    configure_logging(
        level=level,
        format_type=app_config.logging.format,
        environment=env_config.environment,
    )

    queue = MessageQueue.from_config(app_config.queue)
    return Runtime(app_config=app_config, env_config=env_config, queue=queue)


# Subcommands


def cmd_run(args: argparse.Namespace, runtime: Runtime) -> int:
    start_time = time.time()
    adapters = build_adapters(runtime.app_config.delivery)
    processor = QueueProcessor(runtime.queue, adapters)
    shutdown_event = threading.Event()

    def signal_handler(signum, frame):
        logger.info(
            f"Received signal {signum}, shutting down",
            extra={"event": "service.signal_received", "signal": signum},
        )
        shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    processor.start(runtime.app_config.processor.poll_interval_seconds)
    logger.info(
        "Processor running. Press Ctrl+C to stop",
        extra={
            "event": "service.daemon_mode.started",
            "queue_path": str(runtime.queue.storage_path),
        },
    )

    try:
        shutdown_event.wait()
    finally:
        processor.stop(wait=True)
        for adapter in adapters.values():
            adapter.close()

    logger.info(
        "Courier stopped",
        extra={"event": "service.stopping", "uptime_seconds": round(time.time() - start_time, 2)},
    )
    return 0


def cmd_flush(args: argparse.Namespace, runtime: Runtime) -> int:
    adapters = build_adapters(runtime.app_config.delivery)
    processor = QueueProcessor(runtime.queue, adapters)
    try:
        result = processor.process_all()
    finally:
        for adapter in adapters.values():
            adapter.close()

    print(f"Sent: {result.sent}, failed: {result.failed}")
    return 1 if result.failed else 0


def cmd_stats(args: argparse.Namespace, runtime: Runtime) -> int:
    for name, count in runtime.queue.get_stats().as_dict().items():
        print(f"{name:<10} {count}")
    return 0


def cmd_list(args: argparse.Namespace, runtime: Runtime) -> int:
    messages = runtime.queue.get_all(args.status)
    if not messages:
        print("No messages")
        return 0

    for message in messages:
        print(_summary_line(message))
    return 0


def cmd_show(args: argparse.Namespace, runtime: Runtime) -> int:
    message = runtime.queue.get(args.message_id)
    if message is None:
        print(f"Message not found: {args.message_id}", file=sys.stderr)
        return 1

    print(json.dumps(redact(message), indent=2))
    return 0


def cmd_retry(args: argparse.Namespace, runtime: Runtime) -> int:
    if not runtime.queue.retry(args.message_id):
        print(f"Message {args.message_id} is not a dead message", file=sys.stderr)
        return 1
    print(f"Re-queued {args.message_id}")
    return 0


def cmd_remove(args: argparse.Namespace, runtime: Runtime) -> int:
    if not runtime.queue.remove(args.message_id):
        print(f"Message not found: {args.message_id}", file=sys.stderr)
        return 1
    print(f"Removed {args.message_id}")
    return 0


def cmd_clear(args: argparse.Namespace, runtime: Runtime) -> int:
    count = runtime.queue.clear(args.status)
    print(f"Removed {count} message(s)")
    return 0


def cmd_enqueue_chat(args: argparse.Namespace, runtime: Runtime) -> int:
    env = runtime.env_config
    chat_id = args.chat_id or env.chat_id
    if not env.chat_bot_token or not chat_id:
        raise ConfigurationError(
            "Chat credentials are not configured",
            suggestions=["Set CHAT_BOT_TOKEN and CHAT_ID in the environment or .env"],
        )

    payload = {"bot_token": env.chat_bot_token, "chat_id": chat_id, "text": args.text}
    if args.photo:
        payload["photo"] = _read_attachment(args.photo)
    if args.document:
        payload["document"] = _read_attachment(args.document)

    message_id = runtime.queue.add(MessageKind.CHAT, payload)
    print(message_id)
    return 0


def cmd_enqueue_email(args: argparse.Namespace, runtime: Runtime) -> int:
    env = runtime.env_config
    if not env.has_smtp_credentials():
        raise ConfigurationError(
            "SMTP settings are not configured",
            suggestions=["Set SMTP_HOST, SMTP_USER and SMTP_PASS (and optionally SMTP_PORT, SMTP_FROM)"],
        )

    payload = {
        "host": env.smtp_host,
        "port": env.smtp_port,
        "username": env.smtp_user,
        "password": env.smtp_pass,
        "sender": env.smtp_from,
        "to": args.to,
        "subject": args.subject,
        "body": args.body,
        "attachments": [_read_attachment(path) for path in args.attach],
    }

    message_id = runtime.queue.add(MessageKind.EMAIL, payload)
    print(message_id)
    return 0


COMMANDS = {
    "run": cmd_run,
    "flush": cmd_flush,
    "stats": cmd_stats,
    "list": cmd_list,
    "show": cmd_show,
    "retry": cmd_retry,
    "remove": cmd_remove,
    "clear": cmd_clear,
    "enqueue-chat": cmd_enqueue_chat,
    "enqueue-email": cmd_enqueue_email,
}


# Helpers


def redact(message: QueuedMessage) -> dict:
    """JSON-ready view of a record with credentials masked and file bodies summarized."""
    data = message.model_dump(mode="json", by_alias=True, exclude_none=True)
    payload = data.get("payload", {})

    for field in SECRET_FIELDS:
        if field in payload:
            payload[field] = "***"

    files = list(payload.get("attachments", []))
    files.extend(payload[key] for key in ("photo", "document") if key in payload)
    for item in files:
        item["content"] = f"<{len(item['content'])} base64 chars>"

    return data


def _summary_line(message: QueuedMessage) -> str:
    line = (
        f"{message.id}  {message.kind.value:<5}  {message.status.value:<10}  "
        f"{message.attempts}/{message.max_attempts}  {format_timestamp(message.created_at)}"
    )
    if message.next_retry_at is not None and message.status == MessageStatus.PENDING:
        line += f"  retry at {format_timestamp(message.next_retry_at)}"
    if message.error:
        line += f"  error: {message.error}"
    return line


def _read_attachment(path: Path) -> Attachment:
    try:
        return Attachment(filename=path.name, content=path.read_bytes())
    except OSError as e:
        raise ConfigurationError(
            f"Cannot read attachment {path}: {e}",
            suggestions=[f"Ensure {path} exists and is readable"],
        ) from e


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the courier CLI.

    Returns:
        Exit code: 0 success, 1 failure or configuration error
        (argparse exits with 2 on usage errors)
    """
    load_dotenv()
    args = build_parser().parse_args(argv)

    try:
        runtime = load_runtime(args.config, args.log_level)
        return COMMANDS[args.command](args, runtime)
    except ConfigurationError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        return 1
    except QueueError as e:
        print(f"Queue Error: {e}", file=sys.stderr)
        logger.error(
            f"Queue error: {e}",
            extra={"event": "service.queue_error", "error_type": type(e).__name__},
        )
        return 1
    except KeyboardInterrupt:
        print("\nShutdown requested by user", file=sys.stderr)
        return 0
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        logger.critical(
            "Fatal error",
            exc_info=True,
            extra={
                "event": "service.failed",
                "error_type": type(e).__name__,
                "error": str(e),
            },
        )
        return 1


def main_entry() -> None:
    sys.exit(main())


if __name__ == "__main__":
    main_entry()
