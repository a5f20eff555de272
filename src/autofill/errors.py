"""Error types for autofill orchestration."""

from __future__ import annotations

from shared.errors import CategorizedError, ErrorCategory


class PipelineStageFailed(CategorizedError, RuntimeError):
    """Raised when a pipeline stage cannot produce a result."""

    category = ErrorCategory.TRANSIENT
    code = "PIPELINE_STAGE_FAILED"

    def __init__(self, stage: str, message: str, *, retryable: bool) -> None:
        """Initialize the error with the failing stage and retry hint."""
        super().__init__(f"{stage} stage failed: {message}")
        self.stage = stage
        self.retryable = retryable
        if not retryable:
            self.category = ErrorCategory.INTERNAL


class PipelineStageTimeout(PipelineStageFailed):
    """Raised when a stage exceeds its time budget on every attempt."""

    code = "PIPELINE_STAGE_TIMEOUT"

    def __init__(self, stage: str, timeout_seconds: float) -> None:
        """Initialize the error with the stage and the exceeded budget."""
        super().__init__(stage, f"timed out after {timeout_seconds:.1f}s", retryable=True)
        self.timeout_seconds = timeout_seconds


class AutofillCancelled(CategorizedError, RuntimeError):
    """Raised when the caller cancels an autofill before it commits."""

    category = ErrorCategory.CONTENTION
    code = "AUTOFILL_CANCELLED"

    def __init__(self, autofill_id: str) -> None:
        """Initialize the error with the abandoned autofill identifier."""
        super().__init__(f"autofill cancelled before commit: {autofill_id}")
        self.autofill_id = autofill_id
