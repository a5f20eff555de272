"""Field registry backends: SQL and in-memory."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Callable, Iterable, Protocol

from sqlalchemy import event, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from field_registry.hashing import FieldIdentity, hash_field_identity
from models import FieldRecord
from services.database import run_in_scope
from time_utils import utc_now

logger = logging.getLogger(__name__)

_LOOKUP_CHUNK_SIZE = 500


@dataclass(frozen=True)
class FieldMetadata:
    """Cached classification for one field identity."""

    tag: str
    field_type: str
    classification: str
    name: str | None = None
    label: str | None = None
    placeholder: str | None = None
    description: str | None = None
    is_file_upload: bool = False
    semantic_type: str = "unknown"
    link_type: str | None = None
    inference_hint: str | None = None
    answer_template: str | None = None


@dataclass(frozen=True)
class FieldLookupResult:
    """Partition of requested hashes into cached and uncached.

    ``missing`` preserves the order of first appearance in the request.
    """

    found: dict[str, FieldMetadata] = field(default_factory=dict)
    missing: list[str] = field(default_factory=list)


class FieldRegistry(Protocol):
    """Capability interface shared by registry backends."""

    def hash(self, identity: FieldIdentity) -> str: ...

    def lookup_many(
        self, field_hashes: Iterable[str], *, scope: Session | None = None
    ) -> FieldLookupResult: ...

    def store(
        self, field_hash: str, record: FieldMetadata, *, scope: Session | None = None
    ) -> None: ...


def _unique_in_order(field_hashes: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for field_hash in field_hashes:
        if field_hash in seen:
            continue
        seen.add(field_hash)
        ordered.append(field_hash)
    return ordered


def _partition(
    ordered: list[str], cached: dict[str, FieldMetadata]
) -> FieldLookupResult:
    found = {field_hash: cached[field_hash] for field_hash in ordered if field_hash in cached}
    missing = [field_hash for field_hash in ordered if field_hash not in cached]
    return FieldLookupResult(found=found, missing=missing)


def _row_to_metadata(row: FieldRecord) -> FieldMetadata:
    return FieldMetadata(**{item.name: getattr(row, item.name) for item in fields(FieldMetadata)})


def _apply_metadata(row: FieldRecord, record: FieldMetadata, now: datetime) -> None:
    for item in fields(FieldMetadata):
        setattr(row, item.name, getattr(record, item.name))
    row.updated_at = now


class SqlFieldRegistry:
    """Registry backed by the ``field_records`` table."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize registry with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def hash(self, identity: FieldIdentity) -> str:
        return hash_field_identity(identity)

    def lookup_many(
        self, field_hashes: Iterable[str], *, scope: Session | None = None
    ) -> FieldLookupResult:
        """Return cached metadata for known hashes and the list of unknown ones."""
        ordered = _unique_in_order(field_hashes)
        if not ordered:
            return FieldLookupResult()

        def handler(session: Session) -> FieldLookupResult:
            cached: dict[str, FieldMetadata] = {}
            for start in range(0, len(ordered), _LOOKUP_CHUNK_SIZE):
                chunk = ordered[start : start + _LOOKUP_CHUNK_SIZE]
                rows = session.scalars(
                    select(FieldRecord).where(FieldRecord.field_hash.in_(chunk))
                )
                for row in rows:
                    cached[row.field_hash] = _row_to_metadata(row)
            return _partition(ordered, cached)

        return run_in_scope(self._session_factory, handler, scope)

    def store(
        self, field_hash: str, record: FieldMetadata, *, scope: Session | None = None
    ) -> None:
        """Insert or update the record for ``field_hash``.

        Identical content is a no-op. Differing content overwrites the stored
        row and logs ``field_registry_content_mismatch``.
        """

        def handler(session: Session) -> None:
            now = utc_now()
            existing = session.get(FieldRecord, field_hash)
            if existing is None:
                row = FieldRecord(field_hash=field_hash, created_at=now)
                _apply_metadata(row, record, now)
                try:
                    with session.begin_nested():
                        session.add(row)
                        session.flush()
                    logger.debug("Stored field record: hash=%s", field_hash)
                    return
                except IntegrityError:
                    # Concurrent first insert won; fall through to compare.
                    existing = session.get(FieldRecord, field_hash)
                    if existing is None:
                        raise
            if _row_to_metadata(existing) == record:
                return
            logger.warning(
                "field_registry_content_mismatch: hash=%s stored=%s incoming=%s",
                field_hash,
                existing.classification,
                record.classification,
            )
            _apply_metadata(existing, record, now)
            session.flush()

        run_in_scope(self._session_factory, handler, scope)


class InMemoryFieldRegistry:
    """Process-local registry for tests and single-process deployments.

    Writes made with a ``scope`` are staged on the session and applied only
    when that session commits, so they share the caller's atomic unit.
    """

    def __init__(self) -> None:
        self._records: dict[str, FieldMetadata] = {}
        self._lock = threading.Lock()
        self._staging_key = f"in_memory_field_registry:{id(self)}"
        self._listening_key = f"{self._staging_key}:listening"

    def hash(self, identity: FieldIdentity) -> str:
        return hash_field_identity(identity)

    def lookup_many(
        self, field_hashes: Iterable[str], *, scope: Session | None = None
    ) -> FieldLookupResult:
        ordered = _unique_in_order(field_hashes)
        with self._lock:
            cached = {h: self._records[h] for h in ordered if h in self._records}
        return _partition(ordered, cached)

    def store(
        self, field_hash: str, record: FieldMetadata, *, scope: Session | None = None
    ) -> None:
        if scope is None:
            self._apply({field_hash: record})
            return
        staged = scope.info.setdefault(self._staging_key, {})
        staged[field_hash] = record
        if not scope.info.get(self._listening_key):
            event.listen(scope, "after_commit", self._on_commit)
            event.listen(scope, "after_rollback", self._on_rollback)
            scope.info[self._listening_key] = True

    def _on_commit(self, session: Session) -> None:
        staged = session.info.pop(self._staging_key, None)
        if staged:
            self._apply(staged)

    def _on_rollback(self, session: Session) -> None:
        session.info.pop(self._staging_key, None)

    def _apply(self, records: dict[str, FieldMetadata]) -> None:
        with self._lock:
            for field_hash, record in records.items():
                current = self._records.get(field_hash)
                if current is not None and current != record:
                    logger.warning(
                        "field_registry_content_mismatch: hash=%s stored=%s incoming=%s",
                        field_hash,
                        current.classification,
                        record.classification,
                    )
                self._records[field_hash] = record

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
