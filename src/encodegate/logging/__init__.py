"""Structured logging for encodegate.

Provides configurable logging with JSON format support, file rotation and
run context injection.
"""

from encodegate.logging.config import configure_logging
from encodegate.logging.context import (
    RunContextFilter,
    clear_run_context,
    get_run_context,
    run_log_context,
    set_run_context,
)
from encodegate.logging.handlers import JSONFormatter

__all__ = [
    "JSONFormatter",
    "RunContextFilter",
    "clear_run_context",
    "configure_logging",
    "get_run_context",
    "run_log_context",
    "set_run_context",
]
