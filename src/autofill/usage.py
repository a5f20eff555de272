"""Per-autofill accounting of model tokens and cost, grouped by stage."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator

from llm import TokenUsage

CLASSIFICATION = "classification"
INFERENCE = "inference"
AGGREGATION = "aggregation"
JD_FORM_MATCH = "jd_form_match"

_current_meter: ContextVar["UsageMeter | None"] = ContextVar("lazyfill_usage_meter", default=None)


class UsageMeter:
    """Accumulates usage per stage across retries and worker threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._stages: dict[str, TokenUsage] = {}

    def record(self, stage: str, usage: TokenUsage) -> None:
        with self._lock:
            self._stages[stage] = self._stages.get(stage, TokenUsage()) + usage

    def total(self) -> TokenUsage:
        with self._lock:
            return sum(self._stages.values(), TokenUsage())

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Return stage usage as plain dicts, ready for JSON columns."""
        with self._lock:
            return {stage: usage.as_dict() for stage, usage in sorted(self._stages.items())}


@contextmanager
def metering(meter: UsageMeter) -> Iterator[UsageMeter]:
    """Route ``record_usage`` calls in this context to ``meter``."""
    token = _current_meter.set(meter)
    try:
        yield meter
    finally:
        _current_meter.reset(token)


def record_usage(stage: str, usage: TokenUsage) -> None:
    """Add ``usage`` to the active meter; a no-op outside ``metering``."""
    meter = _current_meter.get()
    if meter is not None:
        meter.record(stage, usage)
