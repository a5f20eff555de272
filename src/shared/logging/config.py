"""Stdout logging for Lazyfill processes."""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any, Mapping

from . import fields
from .context import current_fields


class ContextFilter(logging.Filter):
    """Attach process fields and the context's correlation fields to records."""

    def __init__(self, process_fields: Mapping[str, str]) -> None:
        super().__init__()
        self._process_fields = dict(process_fields)

    def filter(self, record: logging.LogRecord) -> bool:
        record.fields = {**self._process_fields, **current_fields()}
        return True


class StructuredFormatter(logging.Formatter):
    """Render records as JSON lines or as text with trailing key=value pairs."""

    def __init__(self, json_output: bool) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )
        self._json_output = json_output

    def format(self, record: logging.LogRecord) -> str:
        extra: dict[str, str] = getattr(record, "fields", None) or {}
        if not self._json_output:
            line = super().format(record)
            if not extra:
                return line
            return line + " " + " ".join(f"{key}={value}" for key, value in sorted(extra.items()))

        payload: dict[str, Any] = {
            fields.TIMESTAMP: datetime.now(UTC).isoformat(),
            fields.LEVEL: record.levelname,
            fields.LOGGER: record.name,
            fields.MESSAGE: record.getMessage(),
            **extra,
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, separators=(",", ":"))


def configure_logging(
    *,
    level: str = "INFO",
    json_output: bool = True,
    service: str | None = None,
) -> None:
    """Send every log record to stdout through a single root handler.

    Calling it again replaces the previous handler. ``service`` is stamped
    on records from every thread.
    """
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level.upper())

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.addFilter(ContextFilter({fields.SERVICE: service} if service else {}))
    handler.setFormatter(StructuredFormatter(json_output))
    root.addHandler(handler)
