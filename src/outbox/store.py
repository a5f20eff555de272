"""Durable outbox with compare-and-swap claiming.

Every status transition is one conditional UPDATE whose WHERE clause names
the state the caller expects. ``rowcount == 1`` means the caller won; zero
means another worker moved the row first. Ownership of a claimed entry is
proven by the ``claim_token`` issued at claim time, so a worker whose claim
was reclaimed as stale cannot complete or fail the entry afterwards.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping, Union
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import OutboxEntry, OutboxStatusEnum
from outbox.errors import EntryAlreadyProcessing, EntryNotClaimed, EntryNotFound
from outbox.retry_policy import RetryPolicy
from services.database import run_in_scope
from time_utils import to_utc, to_utc_optional, utc_now

logger = logging.getLogger(__name__)

_entries = OutboxEntry.__table__

ABANDONED_REASON = "abandoned"


@dataclass(frozen=True)
class OutboxMessage:
    """Detached view of an outbox row."""

    log_id: str
    kind: str
    payload: dict[str, Any]
    status: str
    attempts: int
    available_at: datetime
    created_at: datetime
    owner_key: str | None = None
    dedupe_key: str | None = None
    claim_token: str | None = None
    claimed_at: datetime | None = None
    last_error: str | None = None
    processed_at: datetime | None = None


@dataclass(frozen=True)
class Claimed:
    """The caller now owns ``entry`` until it completes, fails or goes stale."""

    entry: OutboxMessage

    @property
    def claim_token(self) -> str:
        return self.entry.claim_token or ""


@dataclass(frozen=True)
class NoneAvailable:
    """No entry was claimable at the time of the call."""


ClaimResult = Union[Claimed, NoneAvailable]


@dataclass(frozen=True)
class ReclaimResult:
    """Entries returned to PENDING or abandoned by a stale sweep."""

    requeued: list[str] = field(default_factory=list)
    abandoned: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.requeued) + len(self.abandoned)


def _to_message(row: OutboxEntry) -> OutboxMessage:
    return OutboxMessage(
        log_id=row.log_id,
        kind=row.kind,
        payload=dict(row.payload or {}),
        status=row.status,
        attempts=int(row.attempts or 0),
        available_at=to_utc(row.available_at),
        created_at=to_utc(row.created_at),
        owner_key=row.owner_key,
        dedupe_key=row.dedupe_key,
        claim_token=row.claim_token,
        claimed_at=to_utc_optional(row.claimed_at),
        last_error=row.last_error,
        processed_at=to_utc_optional(row.processed_at),
    )


def _load(session: Session, log_id: str) -> OutboxEntry:
    row = session.get(OutboxEntry, log_id, populate_existing=True)
    if row is None:
        raise EntryNotFound(log_id)
    return row


def _validate_payload(payload: Mapping[str, Any]) -> dict[str, Any]:
    try:
        json.dumps(payload)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"outbox payload must be JSON-serializable: {exc}") from exc
    return dict(payload)


class OutboxStore:
    """Repository for outbox entries and their claim protocol."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        retry_policy: RetryPolicy | None = None,
        claim_candidates: int = 5,
    ) -> None:
        """Initialize the store with a session factory and retry policy."""
        if claim_candidates < 1:
            raise ValueError("claim_candidates must be >= 1.")
        self._session_factory = session_factory
        self._retry_policy = retry_policy or RetryPolicy.from_settings()
        self._claim_candidates = claim_candidates

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    def enqueue(
        self,
        kind: str,
        payload: Mapping[str, Any],
        *,
        owner_key: str | None = None,
        dedupe_key: str | None = None,
        scope: Session | None = None,
        now: datetime | None = None,
    ) -> str:
        """Insert a PENDING entry and return its ``log_id``.

        When ``dedupe_key`` matches an existing entry, that entry's id is
        returned and nothing is inserted.
        """
        if not kind or not kind.strip():
            raise ValueError("kind is required.")
        body = _validate_payload(payload)

        def handler(session: Session) -> str:
            if dedupe_key is not None:
                existing = _find_by_dedupe_key(session, dedupe_key)
                if existing is not None:
                    logger.info(
                        "Outbox enqueue deduplicated: dedupe_key=%s log_id=%s",
                        dedupe_key,
                        existing,
                    )
                    return existing
            timestamp = now or utc_now()
            log_id = uuid4().hex
            entry = OutboxEntry(
                log_id=log_id,
                kind=kind,
                payload=body,
                owner_key=owner_key,
                dedupe_key=dedupe_key,
                status="pending",
                attempts=0,
                available_at=timestamp,
                created_at=timestamp,
                updated_at=timestamp,
            )
            try:
                with session.begin_nested():
                    session.add(entry)
                    session.flush()
            except IntegrityError:
                if dedupe_key is None:
                    raise
                existing = _find_by_dedupe_key(session, dedupe_key)
                if existing is None:
                    raise
                return existing
            logger.debug("Outbox entry enqueued: log_id=%s kind=%s", log_id, kind)
            return log_id

        return run_in_scope(self._session_factory, handler, scope)

    def claim_next(self, *, now: datetime | None = None) -> ClaimResult:
        """Claim the oldest available PENDING entry, if any."""

        def handler(session: Session) -> ClaimResult:
            timestamp = now or utc_now()
            stmt = (
                select(_entries.c.log_id)
                .where(_entries.c.status == "pending")
                .where(_entries.c.available_at <= timestamp)
                .order_by(_entries.c.available_at, _entries.c.created_at)
                .limit(self._claim_candidates)
            )
            if session.get_bind().dialect.name == "postgresql":
                stmt = stmt.with_for_update(skip_locked=True)
            for log_id in session.scalars(stmt).all():
                token = uuid4().hex
                result = session.execute(
                    update(_entries)
                    .where(_entries.c.log_id == log_id)
                    .where(_entries.c.status == "pending")
                    .values(
                        status="claimed",
                        claim_token=token,
                        claimed_at=timestamp,
                        attempts=_entries.c.attempts + 1,
                        updated_at=timestamp,
                    )
                )
                if result.rowcount == 1:
                    return Claimed(_to_message(_load(session, log_id)))
                logger.debug("Outbox claim lost: log_id=%s", log_id)
            return NoneAvailable()

        return run_in_scope(self._session_factory, handler)

    def mark_processing(self, log_id: str, *, now: datetime | None = None) -> Claimed:
        """Claim a specific entry, raising if it is no longer PENDING."""

        def handler(session: Session) -> Claimed:
            timestamp = now or utc_now()
            token = uuid4().hex
            result = session.execute(
                update(_entries)
                .where(_entries.c.log_id == log_id)
                .where(_entries.c.status == "pending")
                .values(
                    status="claimed",
                    claim_token=token,
                    claimed_at=timestamp,
                    attempts=_entries.c.attempts + 1,
                    updated_at=timestamp,
                )
            )
            row = _load(session, log_id)
            if result.rowcount != 1:
                raise EntryAlreadyProcessing(log_id, row.status)
            return Claimed(_to_message(row))

        return run_in_scope(self._session_factory, handler)

    def complete(
        self, log_id: str, *, claim_token: str, now: datetime | None = None
    ) -> None:
        """Mark a claimed entry DONE."""

        def handler(session: Session) -> None:
            timestamp = now or utc_now()
            result = session.execute(
                update(_entries)
                .where(_entries.c.log_id == log_id)
                .where(_entries.c.status == "claimed")
                .where(_entries.c.claim_token == claim_token)
                .values(
                    status="done",
                    claim_token=None,
                    processed_at=timestamp,
                    updated_at=timestamp,
                )
            )
            if result.rowcount != 1:
                _raise_not_owned(session, log_id)

        run_in_scope(self._session_factory, handler)

    def fail(
        self,
        log_id: str,
        *,
        claim_token: str,
        reason: str,
        retryable: bool = True,
        now: datetime | None = None,
    ) -> str:
        """Record a failed attempt and return the resulting status.

        Retryable failures go back to PENDING behind a backoff gate until the
        attempt ceiling is reached; everything else ends FAILED.
        """
        policy = self._retry_policy

        def handler(session: Session) -> str:
            timestamp = now or utc_now()
            attempts = session.execute(
                select(_entries.c.attempts)
                .where(_entries.c.log_id == log_id)
                .where(_entries.c.status == "claimed")
                .where(_entries.c.claim_token == claim_token)
            ).scalar_one_or_none()
            if attempts is None:
                _raise_not_owned(session, log_id)
            if retryable and policy.allows_retry(attempts):
                status = "pending"
                values = {
                    "available_at": policy.retry_at(timestamp, attempts),
                    "claimed_at": None,
                }
            else:
                status = "failed"
                values = {"processed_at": timestamp}
            result = session.execute(
                update(_entries)
                .where(_entries.c.log_id == log_id)
                .where(_entries.c.status == "claimed")
                .where(_entries.c.claim_token == claim_token)
                .values(
                    status=status,
                    claim_token=None,
                    last_error=reason,
                    updated_at=timestamp,
                    **values,
                )
            )
            if result.rowcount != 1:
                _raise_not_owned(session, log_id)
            log = logger.warning if status == "failed" else logger.info
            log(
                "Outbox entry failed: log_id=%s attempts=%s status=%s reason=%s",
                log_id,
                attempts,
                status,
                reason,
            )
            return status

        return run_in_scope(self._session_factory, handler)

    def reclaim_stale(
        self, older_than: timedelta | float, *, now: datetime | None = None
    ) -> ReclaimResult:
        """Release claims older than ``older_than`` back to PENDING.

        Entries that already used every attempt are moved to FAILED with the
        reason ``abandoned`` instead.
        """
        threshold = older_than if isinstance(older_than, timedelta) else timedelta(seconds=older_than)
        if threshold < timedelta(0):
            raise ValueError("older_than must be >= 0.")
        policy = self._retry_policy

        def handler(session: Session) -> ReclaimResult:
            timestamp = now or utc_now()
            cutoff = timestamp - threshold
            stale = session.execute(
                select(_entries.c.log_id, _entries.c.attempts, _entries.c.claim_token)
                .where(_entries.c.status == "claimed")
                .where(_entries.c.claimed_at <= cutoff)
                .order_by(_entries.c.claimed_at)
            ).all()
            requeued: list[str] = []
            abandoned: list[str] = []
            for row in stale:
                exhausted = not policy.allows_retry(row.attempts)
                values: dict[str, Any]
                if exhausted:
                    values = {"status": "failed", "last_error": ABANDONED_REASON, "processed_at": timestamp}
                else:
                    values = {"status": "pending", "available_at": timestamp, "claimed_at": None}
                result = session.execute(
                    update(_entries)
                    .where(_entries.c.log_id == row.log_id)
                    .where(_entries.c.status == "claimed")
                    .where(_entries.c.claim_token == row.claim_token)
                    .values(claim_token=None, updated_at=timestamp, **values)
                )
                if result.rowcount != 1:
                    continue
                (abandoned if exhausted else requeued).append(row.log_id)
            if requeued or abandoned:
                logger.info(
                    "Reclaimed stale outbox entries: requeued=%s abandoned=%s",
                    len(requeued),
                    len(abandoned),
                )
            return ReclaimResult(requeued=requeued, abandoned=abandoned)

        return run_in_scope(self._session_factory, handler)

    def get(self, log_id: str) -> OutboxMessage:
        """Fetch one entry by id."""

        def handler(session: Session) -> OutboxMessage:
            return _to_message(_load(session, log_id))

        return run_in_scope(self._session_factory, handler)

    def list_by_status(self, status: str, limit: int = 100) -> list[OutboxMessage]:
        """List entries in ``status``, oldest first."""
        if status not in OutboxStatusEnum.enums:
            raise ValueError(f"Unknown outbox status: {status}")
        if limit < 1:
            raise ValueError("limit must be >= 1.")

        def handler(session: Session) -> list[OutboxMessage]:
            rows = session.scalars(
                select(OutboxEntry)
                .where(OutboxEntry.status == status)
                .order_by(OutboxEntry.created_at, OutboxEntry.log_id)
                .limit(limit)
            )
            return [_to_message(row) for row in rows]

        return run_in_scope(self._session_factory, handler)


def _find_by_dedupe_key(session: Session, dedupe_key: str) -> str | None:
    return session.execute(
        select(_entries.c.log_id).where(_entries.c.dedupe_key == dedupe_key)
    ).scalar_one_or_none()


def _raise_not_owned(session: Session, log_id: str) -> None:
    exists = session.execute(
        select(_entries.c.log_id).where(_entries.c.log_id == log_id)
    ).scalar_one_or_none()
    if exists is None:
        raise EntryNotFound(log_id)
    raise EntryNotClaimed(log_id)
