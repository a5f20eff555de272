"""When a failed outbox delivery may run again."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from config import settings

# Delay before attempt ``n + 1`` given the base delay and ``n`` attempts so far.
_DELAYS: dict[str, Callable[[int, int], int]] = {
    "none": lambda base, attempts: 0,
    "fixed": lambda base, attempts: base,
    "exponential": lambda base, attempts: base * 2 ** (attempts - 1),
}


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt ceiling and backoff gate for failed deliveries."""

    max_attempts: int
    backoff_strategy: str
    backoff_base_seconds: int

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1.")
        if self.backoff_strategy not in _DELAYS:
            raise ValueError(f"Unknown backoff strategy: {self.backoff_strategy}")
        if self.backoff_base_seconds < 0:
            raise ValueError("backoff_base_seconds must be >= 0.")

    @classmethod
    def from_settings(cls) -> RetryPolicy:
        outbox = settings.outbox
        return cls(
            max_attempts=int(outbox.max_attempts),
            backoff_strategy=str(outbox.backoff_strategy),
            backoff_base_seconds=int(outbox.backoff_base_seconds),
        )

    def allows_retry(self, attempts: int) -> bool:
        """Whether an entry with ``attempts`` deliveries behind it may run again."""
        return int(attempts) < self.max_attempts

    def retry_at(self, failed_at: datetime, attempts: int) -> datetime:
        """Earliest time the entry becomes claimable after its latest failure."""
        delay = _DELAYS[self.backoff_strategy](self.backoff_base_seconds, max(int(attempts), 1))
        return failed_at + timedelta(seconds=delay)
