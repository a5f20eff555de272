"""Atomic per-user credit ledger."""

from ledger.errors import InsufficientCredits, UserNotFound
from ledger.repository import CreditLedger, CreditUsageEntry, LedgerBalance

__all__ = [
    "CreditLedger",
    "CreditUsageEntry",
    "InsufficientCredits",
    "LedgerBalance",
    "UserNotFound",
]
