"""Error types for the outbox store and dispatcher."""

from __future__ import annotations

from shared.errors import CategorizedError, ErrorCategory


class EntryNotFound(CategorizedError, KeyError):
    """Raised when an outbox entry cannot be located."""

    category = ErrorCategory.NOT_FOUND
    code = "OUTBOX_ENTRY_NOT_FOUND"

    def __init__(self, log_id: str) -> None:
        """Initialize the error with the missing log identifier."""
        super().__init__(f"outbox entry not found: {log_id}")
        self.log_id = log_id


class EntryNotClaimed(CategorizedError, ValueError):
    """Raised when completing or failing an entry the caller no longer owns."""

    category = ErrorCategory.CONTENTION
    code = "OUTBOX_ENTRY_NOT_CLAIMED"

    def __init__(self, log_id: str) -> None:
        """Initialize the error with the contested log identifier."""
        super().__init__(f"outbox entry not claimed by caller: {log_id}")
        self.log_id = log_id


class EntryAlreadyProcessing(CategorizedError, ValueError):
    """Raised when an explicit claim finds the entry past PENDING."""

    category = ErrorCategory.CONTENTION
    code = "OUTBOX_ENTRY_ALREADY_PROCESSING"

    def __init__(self, log_id: str, status: str) -> None:
        """Initialize the error with the entry's current status."""
        super().__init__(f"outbox entry {log_id} is already {status}")
        self.log_id = log_id
        self.status = status


class PermanentHandlerError(CategorizedError, RuntimeError):
    """Raised by handlers for failures that retrying cannot fix."""

    category = ErrorCategory.INTERNAL
    code = "OUTBOX_HANDLER_PERMANENT_FAILURE"
