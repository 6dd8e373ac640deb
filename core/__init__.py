"""Core modules for the notification pipeline."""

from core.errors import retry_with_logging
from core.logging import JSONFormatter, get_logger, setup_logging

__all__ = [
    "retry_with_logging",
    "JSONFormatter",
    "get_logger",
    "setup_logging",
]
