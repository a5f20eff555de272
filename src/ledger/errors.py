"""Error types for the credit ledger."""

from __future__ import annotations

from shared.errors import CategorizedError, ErrorCategory


class UserNotFound(CategorizedError, KeyError):
    """Raised when no balance row exists for a user."""

    category = ErrorCategory.RESOURCE
    code = "USER_NOT_FOUND"

    def __init__(self, user_id: str) -> None:
        """Initialize the error with the missing user identifier."""
        super().__init__(f"user balance not found: {user_id}")
        self.user_id = user_id


class InsufficientCredits(CategorizedError, ValueError):
    """Raised when a debit would take a balance below zero."""

    category = ErrorCategory.RESOURCE
    code = "INSUFFICIENT_CREDITS"

    def __init__(self, user_id: str, balance: int, requested_delta: int) -> None:
        """Initialize the error with the balance left untouched."""
        super().__init__(
            f"insufficient credits for {user_id}: balance={balance} delta={requested_delta}"
        )
        self.user_id = user_id
        self.balance = balance
        self.requested_delta = requested_delta
