"""Scheduling module for periodic queue processing."""

from .service import SchedulerService

__all__ = [
    "SchedulerService",
]
