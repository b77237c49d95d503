"""Courier: durable outbound chat and email delivery."""

__version__ = "1.0.0"
