"""Unit tests for Celery outbox maintenance helpers."""

from __future__ import annotations

import pytest
from sqlalchemy.orm import sessionmaker

from outbox import OutboxDispatcher, OutboxMessage, OutboxStore, RetryPolicy
from outbox.tasks import (
    DRAIN_TASK_NAME,
    RECLAIM_TASK_NAME,
    celery_app,
    drain_entries,
    reclaim_stale_entries,
)


@pytest.fixture()
def store(sqlite_session_factory: sessionmaker) -> OutboxStore:
    return OutboxStore(
        sqlite_session_factory,
        retry_policy=RetryPolicy(max_attempts=1, backoff_strategy="none", backoff_base_seconds=0),
    )


def test_beat_schedule_registers_maintenance_tasks() -> None:
    """Both periodic jobs are scheduled under their task names."""
    schedule = celery_app.conf.beat_schedule

    assert schedule[RECLAIM_TASK_NAME]["task"] == RECLAIM_TASK_NAME
    assert schedule[DRAIN_TASK_NAME]["task"] == DRAIN_TASK_NAME
    assert RECLAIM_TASK_NAME in celery_app.tasks
    assert DRAIN_TASK_NAME in celery_app.tasks


def test_reclaim_stale_entries_summarizes_sweep(store: OutboxStore) -> None:
    """The sweep reports requeued and abandoned counts."""
    store.enqueue("k", {})
    store.claim_next()

    assert reclaim_stale_entries(store, 0) == {"requeued": 0, "abandoned": 1}
    assert reclaim_stale_entries(store, 0) == {"requeued": 0, "abandoned": 0}


def test_drain_entries_summarizes_outcomes(store: OutboxStore) -> None:
    """Drain results are flattened into a serializable dict."""
    delivered: list[str] = []

    def handler(entry: OutboxMessage) -> None:
        delivered.append(entry.log_id)

    store.enqueue("k", {})
    store.enqueue("unrouted", {})
    dispatcher = OutboxDispatcher(store, {"k": handler}, poll_interval_seconds=0.01)

    summary = drain_entries(dispatcher, 10)

    assert summary == {"processed": 2, "done": 1, "retried": 0, "failed": 1, "lost": 0}
    assert len(delivered) == 1
