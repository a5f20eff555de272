"""Commit strategies that persist a finished autofill.

``TransactionalCommit`` writes the debit, new field records, the autofill
record and the outbox entry in one database transaction. ``SagaCommit`` runs
the same steps as separate transactions and refunds the debit when a later
step fails; field records written first are kept because the registry is a
shared cache, not a per-request result.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Protocol

from sqlalchemy.orm import Session

from autofill.errors import AutofillCancelled
from field_registry import FieldMetadata, FieldRegistry
from ledger import CreditLedger
from models import AutofillRecord
from outbox import OutboxStore
from outbox.handlers import AUTOFILL_COMPLETED
from services.database import session_scope
from time_utils import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommitRequest:
    """Everything a commit strategy needs to persist one autofill."""

    autofill_id: str
    user_id: str
    form_hash: str
    cost_credits: int
    filled_values: Mapping[str, str | None]
    new_records: Mapping[str, FieldMetadata] = field(default_factory=dict)
    llm_usage: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)

    def outbox_payload(self) -> dict[str, Any]:
        return {
            "autofill_id": self.autofill_id,
            "user_id": self.user_id,
            "form_hash": self.form_hash,
            "credits_charged": self.cost_credits,
            "field_count": len(self.filled_values),
            "filled_count": sum(1 for value in self.filled_values.values() if value),
            "llm_usage": {stage: dict(usage) for stage, usage in self.llm_usage.items()},
        }


@dataclass(frozen=True)
class CommitResult:
    balance_after: int
    outbox_log_id: str


class CommitStrategy(Protocol):
    def commit(
        self, request: CommitRequest, *, cancel_event: threading.Event | None = None
    ) -> CommitResult: ...


def _raise_if_cancelled(request: CommitRequest, cancel_event: threading.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise AutofillCancelled(request.autofill_id)


def _charge(ledger: CreditLedger, request: CommitRequest, scope: Session | None) -> int:
    if request.cost_credits == 0:
        return ledger.get_balance(request.user_id, scope=scope).credit_balance
    return ledger.update_balance(
        request.user_id,
        -request.cost_credits,
        scope,
        kind="autofill",
        reference_id=request.autofill_id,
    )


def _autofill_row(request: CommitRequest) -> AutofillRecord:
    return AutofillRecord(
        autofill_id=request.autofill_id,
        user_id=request.user_id,
        form_hash=request.form_hash,
        credits_charged=request.cost_credits,
        filled_values=dict(request.filled_values),
        llm_usage={stage: dict(usage) for stage, usage in request.llm_usage.items()},
        created_at=utc_now(),
    )


def _enqueue(outbox: OutboxStore, request: CommitRequest, scope: Session) -> str:
    return outbox.enqueue(
        AUTOFILL_COMPLETED,
        request.outbox_payload(),
        owner_key=request.user_id,
        dedupe_key=f"autofill:{request.autofill_id}",
        scope=scope,
    )


class TransactionalCommit:
    """Persist every autofill write in a single transaction."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        ledger: CreditLedger,
        registry: FieldRegistry,
        outbox: OutboxStore,
    ) -> None:
        self._session_factory = session_factory
        self._ledger = ledger
        self._registry = registry
        self._outbox = outbox

    def commit(
        self, request: CommitRequest, *, cancel_event: threading.Event | None = None
    ) -> CommitResult:
        _raise_if_cancelled(request, cancel_event)
        with session_scope(self._session_factory) as session:
            balance_after = _charge(self._ledger, request, session)
            for field_hash, record in request.new_records.items():
                self._registry.store(field_hash, record, scope=session)
            session.add(_autofill_row(request))
            log_id = _enqueue(self._outbox, request, session)
            session.flush()
            # Last chance to abandon; raising here rolls back every write above.
            _raise_if_cancelled(request, cancel_event)
        return CommitResult(balance_after=balance_after, outbox_log_id=log_id)


class SagaCommit:
    """Persist autofill writes step by step with a compensating refund."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        ledger: CreditLedger,
        registry: FieldRegistry,
        outbox: OutboxStore,
    ) -> None:
        self._session_factory = session_factory
        self._ledger = ledger
        self._registry = registry
        self._outbox = outbox

    def commit(
        self, request: CommitRequest, *, cancel_event: threading.Event | None = None
    ) -> CommitResult:
        _raise_if_cancelled(request, cancel_event)
        for field_hash, record in request.new_records.items():
            self._registry.store(field_hash, record)
        balance_after = _charge(self._ledger, request, None)
        try:
            _raise_if_cancelled(request, cancel_event)
            with session_scope(self._session_factory) as session:
                session.add(_autofill_row(request))
                log_id = _enqueue(self._outbox, request, session)
        except Exception:
            if request.cost_credits > 0:
                logger.error(
                    "Autofill saga failed after debit, refunding: autofill_id=%s user_id=%s",
                    request.autofill_id,
                    request.user_id,
                )
                self._ledger.update_balance(
                    request.user_id,
                    request.cost_credits,
                    kind="refund",
                    reference_id=request.autofill_id,
                )
            raise
        return CommitResult(balance_after=balance_after, outbox_log_id=log_id)
