"""Correlation fields carried by the current execution context.

Fields bound with ``log_context`` follow the code that runs inside the block,
including work handed to other threads through ``contextvars.copy_context``.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Mapping

_FIELDS: ContextVar[Mapping[str, str]] = ContextVar("lazyfill_log_fields", default={})


def current_fields() -> dict[str, str]:
    """Return the fields bound in the current context."""
    return dict(_FIELDS.get())


@contextmanager
def log_context(values: Mapping[str, object]) -> Iterator[None]:
    """Bind ``values`` on top of the current fields for the block.

    ``None`` values are skipped; everything else is stringified.
    """
    merged = dict(_FIELDS.get())
    merged.update((str(key), str(value)) for key, value in values.items() if value is not None)
    token = _FIELDS.set(merged)
    try:
        yield
    finally:
        _FIELDS.reset(token)
