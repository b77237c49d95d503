"""Small shared helpers."""

from .timestamps import Clock, ensure_utc, format_timestamp, utc_now

__all__ = [
    "Clock",
    "utc_now",
    "ensure_utc",
    "format_timestamp",
]
