"""Transactional outbox: durable store and claim-based dispatch."""

from outbox.dispatcher import (
    DispatcherPool,
    DispatchOutcome,
    DrainResult,
    OutboxDispatcher,
    OutboxHandler,
)
from outbox.errors import (
    EntryAlreadyProcessing,
    EntryNotClaimed,
    EntryNotFound,
    PermanentHandlerError,
)
from outbox.retry_policy import RetryPolicy
from outbox.store import (
    ClaimResult,
    Claimed,
    NoneAvailable,
    OutboxMessage,
    OutboxStore,
    ReclaimResult,
)

__all__ = [
    "ClaimResult",
    "Claimed",
    "DispatchOutcome",
    "DispatcherPool",
    "DrainResult",
    "EntryAlreadyProcessing",
    "EntryNotClaimed",
    "EntryNotFound",
    "NoneAvailable",
    "OutboxDispatcher",
    "OutboxHandler",
    "OutboxMessage",
    "OutboxStore",
    "PermanentHandlerError",
    "ReclaimResult",
    "RetryPolicy",
]
