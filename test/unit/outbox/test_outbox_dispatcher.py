"""Unit tests for the outbox dispatcher and worker pool."""

from __future__ import annotations

import logging
import threading
import time

import pytest
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import sessionmaker

from outbox import (
    DispatcherPool,
    NoneAvailable,
    OutboxDispatcher,
    OutboxMessage,
    OutboxStore,
    PermanentHandlerError,
    RetryPolicy,
)


@pytest.fixture()
def store(sqlite_session_factory: sessionmaker) -> OutboxStore:
    return OutboxStore(
        sqlite_session_factory,
        retry_policy=RetryPolicy(max_attempts=2, backoff_strategy="none", backoff_base_seconds=0),
    )


class RecordingHandler:
    """Handler stub that records deliveries and optionally raises."""

    def __init__(self, errors: list[Exception] | None = None) -> None:
        self.errors = list(errors or [])
        self.delivered: list[OutboxMessage] = []

    def __call__(self, entry: OutboxMessage) -> None:
        self.delivered.append(entry)
        if self.errors:
            raise self.errors.pop(0)


def _dispatcher(store: OutboxStore, handlers: dict) -> OutboxDispatcher:
    return OutboxDispatcher(
        store, handlers, poll_interval_seconds=0.01, max_poll_interval_seconds=0.05
    )


def test_run_once_idle_when_queue_empty(store: OutboxStore) -> None:
    """An empty queue yields an idle outcome."""
    assert _dispatcher(store, {}).run_once().status == "idle"


def test_run_once_delivers_and_completes(store: OutboxStore) -> None:
    """Successful handlers mark the entry DONE."""
    handler = RecordingHandler()
    log_id = store.enqueue("autofill.completed", {"x": 1}, owner_key="u1")

    outcome = _dispatcher(store, {"autofill.completed": handler}).run_once()

    assert outcome.status == "done"
    assert outcome.log_id == log_id
    assert handler.delivered[0].payload == {"x": 1}
    assert handler.delivered[0].attempts == 1
    assert store.get(log_id).status == "done"


def test_unregistered_kind_fails_without_retry(
    store: OutboxStore, caplog: pytest.LogCaptureFixture
) -> None:
    """Entries with no handler go straight to FAILED."""
    log_id = store.enqueue("mystery.kind", {})

    with caplog.at_level(logging.ERROR, logger="outbox.dispatcher"):
        outcome = _dispatcher(store, {}).run_once()

    assert outcome.status == "failed"
    entry = store.get(log_id)
    assert entry.status == "failed"
    assert entry.attempts == 1
    assert "mystery.kind" in (entry.last_error or "")
    assert any("No handler registered" in record.message for record in caplog.records)


def test_transient_error_retries_then_fails(store: OutboxStore) -> None:
    """Handler exceptions retry until the attempt ceiling."""
    handler = RecordingHandler([ConnectionError("down"), ConnectionError("still down")])
    log_id = store.enqueue("k", {})
    dispatcher = _dispatcher(store, {"k": handler})

    assert dispatcher.run_once().status == "retry"
    assert store.get(log_id).status == "pending"
    assert dispatcher.run_once().status == "failed"

    entry = store.get(log_id)
    assert entry.status == "failed"
    assert entry.last_error == "ConnectionError: still down"
    assert len(handler.delivered) == 2


def test_transient_error_then_success(store: OutboxStore) -> None:
    """A later attempt can still complete the entry."""
    handler = RecordingHandler([TimeoutError("slow")])
    log_id = store.enqueue("k", {})
    dispatcher = _dispatcher(store, {"k": handler})

    assert dispatcher.run_once().status == "retry"
    assert dispatcher.run_once().status == "done"
    assert store.get(log_id).attempts == 2


def test_permanent_error_fails_immediately(store: OutboxStore) -> None:
    """PermanentHandlerError skips the remaining attempts."""
    handler = RecordingHandler([PermanentHandlerError("rejected")])
    log_id = store.enqueue("k", {})

    outcome = _dispatcher(store, {"k": handler}).run_once()

    assert outcome.status == "failed"
    assert store.get(log_id).last_error == "rejected"


def test_lost_claim_is_reported_not_raised(store: OutboxStore) -> None:
    """A claim reclaimed mid-delivery cannot be completed by the old worker."""

    def slow_handler(entry: OutboxMessage) -> None:
        store.reclaim_stale(0)

    log_id = store.enqueue("k", {})

    outcome = _dispatcher(store, {"k": slow_handler}).run_once()

    assert outcome.status == "lost"
    assert store.get(log_id).status == "pending"


def test_drain_respects_limit(store: OutboxStore) -> None:
    """Drain stops at the limit and summarizes outcomes."""
    handler = RecordingHandler([PermanentHandlerError("no")])
    for n in range(4):
        store.enqueue("k", {"n": n})

    result = _dispatcher(store, {"k": handler}).drain(limit=3)

    assert result.processed == 3
    assert result.done == 2
    assert result.failed == 1
    assert len(store.list_by_status("pending")) == 1


def test_drain_stops_when_idle(store: OutboxStore) -> None:
    """Drain ends early once nothing is claimable."""
    store.enqueue("k", {})

    result = _dispatcher(store, {"k": RecordingHandler()}).drain(limit=10)

    assert result.processed == 1
    assert result.done == 1


def test_run_forever_exits_when_stopped(store: OutboxStore) -> None:
    """The loop processes work and exits once the stop event is set."""
    stop = threading.Event()
    delivered: list[str] = []

    def handler(entry: OutboxMessage) -> None:
        delivered.append(entry.log_id)
        stop.set()

    log_id = store.enqueue("k", {})

    _dispatcher(store, {"k": handler}).run_forever(stop)

    assert delivered == [log_id]
    assert store.get(log_id).status == "done"


def test_run_forever_survives_database_errors() -> None:
    """Operational errors back off instead of killing the loop."""
    stop = threading.Event()

    class FlakyStore:
        calls = 0

        def claim_next(self):
            FlakyStore.calls += 1
            stop.set()
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    dispatcher = OutboxDispatcher(
        FlakyStore(), {}, poll_interval_seconds=0.01, max_poll_interval_seconds=0.01
    )

    dispatcher.run_forever(stop)

    assert FlakyStore.calls == 1


def test_run_forever_logs_other_database_errors_and_keeps_going(
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Non-operational database errors are logged at error level and retried."""
    stop = threading.Event()

    class BrokenThenIdleStore:
        calls = 0

        def claim_next(self):
            BrokenThenIdleStore.calls += 1
            if BrokenThenIdleStore.calls == 1:
                raise InterfaceError("SELECT 1", {}, Exception("connection closed"))
            stop.set()
            return NoneAvailable()

    dispatcher = OutboxDispatcher(
        BrokenThenIdleStore(), {}, poll_interval_seconds=0.01, max_poll_interval_seconds=0.01
    )

    with caplog.at_level(logging.WARNING, logger="outbox.dispatcher"):
        dispatcher.run_forever(stop)

    assert BrokenThenIdleStore.calls == 2
    errors = [r for r in caplog.records if r.levelno == logging.ERROR]
    assert len(errors) == 1
    assert "connection closed" in errors[0].getMessage()


def test_dispatcher_rejects_bad_intervals(store: OutboxStore) -> None:
    """Poll intervals must be positive and ordered."""
    with pytest.raises(ValueError):
        OutboxDispatcher(store, {}, poll_interval_seconds=0)
    with pytest.raises(ValueError):
        OutboxDispatcher(store, {}, poll_interval_seconds=1.0, max_poll_interval_seconds=0.5)


def test_pool_delivers_each_entry_once(store: OutboxStore) -> None:
    """Parallel dispatchers deliver every entry exactly once."""
    lock = threading.Lock()
    delivered: list[str] = []

    def handler(entry: OutboxMessage) -> None:
        with lock:
            delivered.append(entry.log_id)

    ids = {store.enqueue("k", {"n": n}) for n in range(10)}
    pool = DispatcherPool(
        store,
        {"k": handler},
        workers=3,
        poll_interval_seconds=0.01,
        max_poll_interval_seconds=0.05,
    )

    pool.start()
    try:
        deadline = time.monotonic() + 10
        while len(store.list_by_status("done")) < len(ids) and time.monotonic() < deadline:
            time.sleep(0.02)
    finally:
        pool.stop(timeout=5)

    assert not pool.is_alive()
    assert sorted(delivered) == sorted(ids)
    assert len(store.list_by_status("done")) == len(ids)


def test_pool_cannot_start_twice(store: OutboxStore) -> None:
    """Starting a running pool is an error."""
    pool = DispatcherPool(store, {}, workers=1, poll_interval_seconds=0.01)
    pool.start()
    try:
        with pytest.raises(RuntimeError):
            pool.start()
    finally:
        pool.stop(timeout=5)
