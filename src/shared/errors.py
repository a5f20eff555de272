"""Shared error taxonomy for Lazyfill components.

Component exceptions stay plain Python exceptions raised where the failure
happens. This module maps them onto a small set of categories so workers and
callers can decide between "move on", "surface", "retry" and "investigate"
without knowing every concrete type.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping

from sqlalchemy.exc import OperationalError


class ErrorCategory(str, Enum):
    """High-level error categories."""

    CONTENTION = "contention"
    RESOURCE = "resource"
    TRANSIENT = "transient"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    INTERNAL = "internal"


@dataclass(frozen=True)
class ErrorDetail:
    """Structured error description used in logs and results."""

    code: str
    message: str
    category: ErrorCategory
    retryable: bool = False
    metadata: Mapping[str, str] = field(default_factory=dict)


class CategorizedError(Exception):
    """Mixin for component errors that know their own category."""

    category: ErrorCategory = ErrorCategory.INTERNAL
    code: str = "INTERNAL_ERROR"
    retryable: bool = False


def exception_to_error(exc: BaseException) -> ErrorDetail:
    """Normalize an exception into an ``ErrorDetail``.

    Component errors carry their own category; builtin and driver errors fall
    back to a conservative mapping.
    """
    metadata = {"exception_type": type(exc).__name__}
    message = str(exc) or type(exc).__name__

    if isinstance(exc, CategorizedError):
        return ErrorDetail(
            code=exc.code,
            message=message,
            category=exc.category,
            retryable=exc.retryable,
            metadata=metadata,
        )

    if isinstance(exc, (TimeoutError, ConnectionError, OperationalError)):
        return ErrorDetail(
            code="DEPENDENCY_UNAVAILABLE",
            message=message,
            category=ErrorCategory.TRANSIENT,
            retryable=True,
            metadata=metadata,
        )

    if isinstance(exc, KeyError):
        return ErrorDetail(
            code="NOT_FOUND",
            message=message,
            category=ErrorCategory.NOT_FOUND,
            metadata=metadata,
        )

    if isinstance(exc, (ValueError, TypeError)):
        return ErrorDetail(
            code="INVALID_ARGUMENT",
            message=message,
            category=ErrorCategory.VALIDATION,
            metadata=metadata,
        )

    return ErrorDetail(
        code="UNEXPECTED_EXCEPTION",
        message=message,
        category=ErrorCategory.INTERNAL,
        metadata=metadata,
    )


def is_retryable(exc: BaseException) -> bool:
    """Return whether an exception is worth retrying."""
    return exception_to_error(exc).retryable
