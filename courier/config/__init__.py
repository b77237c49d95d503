"""Configuration management for courier."""

from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .loader import load_config
from .models import (
    AppConfig,
    DeliveryConfig,
    LogFormat,
    LogLevel,
    LoggingConfig,
    ProcessorConfig,
    QueueConfig,
)

__all__ = [
    # Loader functions
    "load_config",
    "load_environment_config",
    # Configuration models
    "AppConfig",
    "QueueConfig",
    "ProcessorConfig",
    "DeliveryConfig",
    "LoggingConfig",
    "EnvironmentConfig",
    # Enums
    "LogLevel",
    "LogFormat",
    # Exceptions
    "ConfigurationError",
]
