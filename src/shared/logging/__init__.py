"""Structured stdout logging with context-bound correlation fields."""

from .config import configure_logging
from .context import current_fields, log_context

__all__ = [
    "configure_logging",
    "current_fields",
    "log_context",
]
