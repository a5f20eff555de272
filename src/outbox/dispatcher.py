"""Outbox dispatcher: claim, hand off to a handler, record the outcome."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Mapping, Protocol

from sqlalchemy.exc import OperationalError, SQLAlchemyError

from config import settings
from outbox.errors import EntryNotClaimed, PermanentHandlerError
from outbox.store import NoneAvailable, OutboxMessage, OutboxStore
from shared.logging import fields, log_context

logger = logging.getLogger(__name__)


class OutboxHandler(Protocol):
    """Callable that delivers one entry downstream.

    Handlers must tolerate redelivery of the same ``log_id``; raising marks
    the attempt failed.
    """

    def __call__(self, entry: OutboxMessage) -> None: ...


@dataclass(frozen=True)
class DispatchOutcome:
    """Result of one ``run_once`` call.

    ``status`` is one of ``idle``, ``done``, ``retry``, ``failed`` or ``lost``.
    """

    status: str
    log_id: str | None = None


@dataclass(frozen=True)
class DrainResult:
    """Counts from a bounded drain."""

    processed: int = 0
    done: int = 0
    retried: int = 0
    failed: int = 0
    lost: int = 0


class OutboxDispatcher:
    """Single-threaded dispatch loop over an ``OutboxStore``."""

    def __init__(
        self,
        store: OutboxStore,
        handlers: Mapping[str, OutboxHandler],
        *,
        poll_interval_seconds: float | None = None,
        max_poll_interval_seconds: float | None = None,
        name: str = "dispatcher",
    ) -> None:
        """Initialize the dispatcher with a store and a kind-to-handler map."""
        self._store = store
        self._handlers = dict(handlers)
        self._poll_interval = (
            poll_interval_seconds
            if poll_interval_seconds is not None
            else settings.outbox.poll_interval_seconds
        )
        self._max_poll_interval = (
            max_poll_interval_seconds
            if max_poll_interval_seconds is not None
            else settings.outbox.max_poll_interval_seconds
        )
        if self._poll_interval <= 0:
            raise ValueError("poll_interval_seconds must be > 0.")
        if self._max_poll_interval < self._poll_interval:
            raise ValueError("max_poll_interval_seconds must be >= poll_interval_seconds.")
        self.name = name

    def run_once(self) -> DispatchOutcome:
        """Claim and process at most one entry."""
        claim = self._store.claim_next()
        if isinstance(claim, NoneAvailable):
            return DispatchOutcome(status="idle")
        entry = claim.entry
        token = claim.claim_token
        with log_context(
            {
                fields.LOG_ID: entry.log_id,
                fields.OUTBOX_KIND: entry.kind,
                fields.WORKER: self.name,
            }
        ):
            handler = self._handlers.get(entry.kind)
            if handler is None:
                logger.error(
                    "No handler registered for outbox kind: log_id=%s kind=%s",
                    entry.log_id,
                    entry.kind,
                )
                return self._fail(
                    entry,
                    token,
                    f"no handler registered for kind {entry.kind}",
                    retryable=False,
                )
            try:
                handler(entry)
            except PermanentHandlerError as exc:
                logger.error(
                    "Outbox handler failed permanently: log_id=%s error=%s",
                    entry.log_id,
                    exc,
                )
                return self._fail(entry, token, str(exc) or type(exc).__name__, retryable=False)
            except Exception as exc:
                logger.warning(
                    "Outbox handler raised: log_id=%s attempt=%s error=%s",
                    entry.log_id,
                    entry.attempts,
                    exc,
                    exc_info=True,
                )
                return self._fail(
                    entry, token, f"{type(exc).__name__}: {exc}", retryable=True
                )
            try:
                self._store.complete(entry.log_id, claim_token=token)
            except EntryNotClaimed:
                logger.debug("Outbox claim lost before completion: log_id=%s", entry.log_id)
                return DispatchOutcome(status="lost", log_id=entry.log_id)
            logger.info("Outbox entry delivered: log_id=%s", entry.log_id)
            return DispatchOutcome(status="done", log_id=entry.log_id)

    def _fail(
        self, entry: OutboxMessage, token: str, reason: str, *, retryable: bool
    ) -> DispatchOutcome:
        try:
            status = self._store.fail(
                entry.log_id, claim_token=token, reason=reason, retryable=retryable
            )
        except EntryNotClaimed:
            logger.debug("Outbox claim lost before failure was recorded: log_id=%s", entry.log_id)
            return DispatchOutcome(status="lost", log_id=entry.log_id)
        return DispatchOutcome(
            status="retry" if status == "pending" else "failed",
            log_id=entry.log_id,
        )

    def drain(self, limit: int | None = None) -> DrainResult:
        """Process entries until none are available or ``limit`` is reached."""
        cap = limit if limit is not None else settings.outbox.drain_batch_size
        if cap < 1:
            raise ValueError("limit must be >= 1.")
        counts = {"done": 0, "retry": 0, "failed": 0, "lost": 0}
        processed = 0
        while processed < cap:
            outcome = self.run_once()
            if outcome.status == "idle":
                break
            processed += 1
            counts[outcome.status] += 1
        return DrainResult(
            processed=processed,
            done=counts["done"],
            retried=counts["retry"],
            failed=counts["failed"],
            lost=counts["lost"],
        )

    def run_forever(self, stop_event: threading.Event) -> None:
        """Dispatch until ``stop_event`` is set.

        Idle polls back off exponentially up to the configured cap; any
        processed entry resets the interval.
        """
        delay = self._poll_interval
        logger.info("Outbox dispatcher started: worker=%s", self.name)
        while not stop_event.is_set():
            try:
                outcome = self.run_once()
            except SQLAlchemyError as exc:
                # Lock timeouts and dropped connections are expected; anything else is not.
                level = logging.WARNING if isinstance(exc, OperationalError) else logging.ERROR
                logger.log(level, "Outbox dispatcher database error: worker=%s error=%s", self.name, exc)
                stop_event.wait(delay)
                delay = min(delay * 2, self._max_poll_interval)
                continue
            if outcome.status != "idle":
                delay = self._poll_interval
                continue
            stop_event.wait(delay)
            delay = min(delay * 2, self._max_poll_interval)
        logger.info("Outbox dispatcher stopped: worker=%s", self.name)


class DispatcherPool:
    """Run several independent dispatchers on background threads."""

    def __init__(
        self,
        store: OutboxStore,
        handlers: Mapping[str, OutboxHandler],
        *,
        workers: int | None = None,
        poll_interval_seconds: float | None = None,
        max_poll_interval_seconds: float | None = None,
    ) -> None:
        count = workers if workers is not None else settings.outbox.workers
        if count < 1:
            raise ValueError("workers must be >= 1.")
        self.stop_event = threading.Event()
        self.dispatchers = [
            OutboxDispatcher(
                store,
                handlers,
                poll_interval_seconds=poll_interval_seconds,
                max_poll_interval_seconds=max_poll_interval_seconds,
                name=f"dispatcher-{index}",
            )
            for index in range(count)
        ]
        self._threads: list[threading.Thread] = []

    def start(self) -> None:
        if self._threads:
            raise RuntimeError("DispatcherPool already started.")
        self.stop_event.clear()
        for dispatcher in self.dispatchers:
            thread = threading.Thread(
                target=dispatcher.run_forever,
                args=(self.stop_event,),
                name=dispatcher.name,
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)

    def stop(self, timeout: float | None = None) -> None:
        """Signal every worker and wait for them to exit."""
        self.stop_event.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []

    def is_alive(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)
