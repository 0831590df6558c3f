"""Configuration and logging helpers for ensdns."""

from __future__ import annotations

from .config_schema import ConfigError, LoggingConfig, ServerConfig, load_server_config
from .logging_config import init_logging

__all__ = [
    "ConfigError",
    "LoggingConfig",
    "ServerConfig",
    "init_logging",
    "load_server_config",
]
