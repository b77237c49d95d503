"""Soft configuration checks that warn instead of failing."""

import warnings
from typing import Any, Dict, List

from .duration import DurationParseError, parse_duration


def check_for_warnings(config_dict: Dict[str, Any]) -> List[str]:
    """
    Check raw configuration for settings that are valid but probably unwise.

    Args:
        config_dict: Raw configuration dictionary

    Returns:
        List of warning messages
    """
    warning_messages = []

    queue = config_dict.get("queue", {})
    if isinstance(queue, dict):
        if queue.get("max_attempts") == 1:
            warning_messages.append(
                "queue.max_attempts is 1: failed messages go straight to the dead-letter state"
            )

        jitter = queue.get("retry_jitter", 0.0)
        base_delay = queue.get("retry_base_delay", "1s")
        if not jitter and isinstance(base_delay, str):
            try:
                if parse_duration(base_delay) < 1:
                    warning_messages.append(
                        "retry_jitter is 0 with a sub-second retry_base_delay: "
                        "retries of messages that failed together will stay in lockstep"
                    )
            except DurationParseError:
                # Reported properly by model validation
                pass

    processor = config_dict.get("processor", {})
    delivery = config_dict.get("delivery", {})
    if isinstance(processor, dict) and isinstance(delivery, dict):
        try:
            poll = parse_duration(processor.get("poll_interval", "5s"))
            timeout = parse_duration(delivery.get("timeout", "30s"))
        except (DurationParseError, AttributeError):
            return warning_messages
        if timeout > poll * 10:
            warning_messages.append(
                f"delivery.timeout ({delivery.get('timeout', '30s')}) is much longer than "
                f"processor.poll_interval ({processor.get('poll_interval', '5s')}); "
                "a hung delivery will skip many cycles"
            )

    return warning_messages


def emit_warnings(warning_messages: List[str]) -> None:
    """Emit each message as a UserWarning."""
    for message in warning_messages:
        warnings.warn(message, UserWarning, stacklevel=2)
