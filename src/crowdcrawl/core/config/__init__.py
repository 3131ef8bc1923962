"""Configuration loading and validation."""

from .models import (
    ProjectSort,
    AppConfig,
    TransportConfig,
    CrawlConfig,
    BackoffConfig,
    StorageConfig,
    LoggingConfig,
)
from .loader import ConfigError, load_app_config, validate_config_file

__all__ = [
    # Enums
    "ProjectSort",
    # Config models
    "AppConfig",
    "TransportConfig",
    "CrawlConfig",
    "BackoffConfig",
    "StorageConfig",
    "LoggingConfig",
    # Loaders
    "ConfigError",
    "load_app_config",
    "validate_config_file",
]
