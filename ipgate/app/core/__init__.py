"""Core utilities for the rate limiter application."""

from ipgate.app.core.config import (
    LimiterConfig,
    LimiterConfigBuilder,
    Settings,
    settings,
)
from ipgate.app.core.logging import get_log_context, get_logger, setup_logging

__all__ = [
    "LimiterConfig",
    "LimiterConfigBuilder",
    "Settings",
    "settings",
    "get_logger",
    "get_log_context",
    "setup_logging",
]
