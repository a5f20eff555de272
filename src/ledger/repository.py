"""Credit ledger persistence.

Balance changes are a single conditional UPDATE so concurrent debits resolve
inside the database: either the delta applies against the current value and
the post-update balance comes back, or no row matches and nothing changes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import settings
from ledger.errors import InsufficientCredits, UserNotFound
from models import CreditUsage, CreditUsageKindEnum, UserBalance
from services.database import run_in_scope
from time_utils import to_utc, utc_now

logger = logging.getLogger(__name__)

_balances = UserBalance.__table__


@dataclass(frozen=True)
class LedgerBalance:
    """Snapshot of one user's balance."""

    user_id: str
    credit_balance: int
    updated_at: datetime


@dataclass(frozen=True)
class CreditUsageEntry:
    """One accepted balance delta."""

    user_id: str
    kind: str
    credits_delta: int
    balance_after: int
    reference_id: str | None
    created_at: datetime


class CreditLedger:
    """Repository for user credit balances and their audit trail."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """Initialize ledger with a SQLAlchemy session factory."""
        self._session_factory = session_factory

    def get_balance(self, user_id: str, *, scope: Session | None = None) -> LedgerBalance:
        """Return the current balance, raising ``UserNotFound`` if absent."""

        def handler(session: Session) -> LedgerBalance:
            row = session.execute(
                select(_balances.c.credit_balance, _balances.c.updated_at).where(
                    _balances.c.user_id == user_id
                )
            ).one_or_none()
            if row is None:
                raise UserNotFound(user_id)
            return LedgerBalance(
                user_id=user_id,
                credit_balance=int(row.credit_balance),
                updated_at=to_utc(row.updated_at),
            )

        return run_in_scope(self._session_factory, handler, scope)

    def update_balance(
        self,
        user_id: str,
        credits_delta: int,
        scope: Session | None = None,
        *,
        kind: str = "adjustment",
        reference_id: str | None = None,
    ) -> int:
        """Apply a signed delta and return the post-update balance.

        Raises ``InsufficientCredits`` when the result would be negative, in
        which case the stored balance is unchanged. Joins ``scope`` when given
        so the delta commits or rolls back with the caller's other writes.
        """
        if credits_delta == 0:
            raise ValueError("credits_delta must be non-zero.")
        if kind not in CreditUsageKindEnum.enums:
            raise ValueError(f"Unknown credit usage kind: {kind}")

        def handler(session: Session) -> int:
            now = utc_now()
            balance_after = session.execute(
                update(_balances)
                .where(_balances.c.user_id == user_id)
                .where(_balances.c.credit_balance + credits_delta >= 0)
                .values(
                    credit_balance=_balances.c.credit_balance + credits_delta,
                    updated_at=now,
                )
                .returning(_balances.c.credit_balance)
            ).scalar_one_or_none()
            if balance_after is None:
                current = session.execute(
                    select(_balances.c.credit_balance).where(_balances.c.user_id == user_id)
                ).scalar_one_or_none()
                if current is None:
                    raise UserNotFound(user_id)
                logger.info(
                    "Rejected debit: user_id=%s balance=%s delta=%s",
                    user_id,
                    current,
                    credits_delta,
                )
                raise InsufficientCredits(user_id, int(current), credits_delta)
            session.add(
                CreditUsage(
                    user_id=user_id,
                    kind=kind,
                    credits_delta=credits_delta,
                    balance_after=int(balance_after),
                    reference_id=reference_id,
                    created_at=now,
                )
            )
            session.flush()
            logger.debug(
                "Applied credit delta: user_id=%s delta=%s balance=%s kind=%s",
                user_id,
                credits_delta,
                balance_after,
                kind,
            )
            return int(balance_after)

        return run_in_scope(self._session_factory, handler, scope)

    def provision(
        self,
        user_id: str,
        initial_balance: int | None = None,
        *,
        scope: Session | None = None,
    ) -> LedgerBalance:
        """Create a balance row if none exists; existing rows are left alone."""
        opening = settings.ledger.initial_balance if initial_balance is None else initial_balance
        if opening < 0:
            raise ValueError("initial_balance must be >= 0.")

        def handler(session: Session) -> LedgerBalance:
            existing = session.get(UserBalance, user_id)
            if existing is None:
                now = utc_now()
                try:
                    with session.begin_nested():
                        session.add(
                            UserBalance(
                                user_id=user_id,
                                credit_balance=opening,
                                created_at=now,
                                updated_at=now,
                            )
                        )
                        if opening > 0:
                            session.add(
                                CreditUsage(
                                    user_id=user_id,
                                    kind="top_up",
                                    credits_delta=opening,
                                    balance_after=opening,
                                    reference_id="provision",
                                    created_at=now,
                                )
                            )
                        session.flush()
                    logger.info("Provisioned balance: user_id=%s balance=%s", user_id, opening)
                    return LedgerBalance(user_id=user_id, credit_balance=opening, updated_at=now)
                except IntegrityError:
                    existing = session.get(UserBalance, user_id)
                    if existing is None:
                        raise
            return LedgerBalance(
                user_id=user_id,
                credit_balance=int(existing.credit_balance),
                updated_at=to_utc(existing.updated_at),
            )

        return run_in_scope(self._session_factory, handler, scope)

    def list_usage(self, user_id: str, limit: int = 50) -> list[CreditUsageEntry]:
        """Return the audit trail for a user, newest first."""
        if limit < 1:
            raise ValueError("limit must be >= 1.")

        def handler(session: Session) -> list[CreditUsageEntry]:
            rows = session.scalars(
                select(CreditUsage)
                .where(CreditUsage.user_id == user_id)
                .order_by(CreditUsage.created_at.desc(), CreditUsage.id.desc())
                .limit(limit)
            )
            return [
                CreditUsageEntry(
                    user_id=row.user_id,
                    kind=row.kind,
                    credits_delta=row.credits_delta,
                    balance_after=row.balance_after,
                    reference_id=row.reference_id,
                    created_at=to_utc(row.created_at),
                )
                for row in rows
            ]

        return run_in_scope(self._session_factory, handler, scope=None)
