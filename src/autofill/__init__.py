"""Autofill pipeline and its atomic commit."""

from autofill.commit import AUTOFILL_COMPLETED, SagaCommit, TransactionalCommit
from autofill.domain import (
    CvContent,
    ExperienceEntry,
    FilledField,
    FilledForm,
    FormField,
    JdContent,
)
from autofill.errors import AutofillCancelled, PipelineStageFailed, PipelineStageTimeout
from autofill.orchestrator import AutofillOrchestrator, build_orchestrator
from autofill.rules import sanitize_generated_text

__all__ = [
    "AUTOFILL_COMPLETED",
    "AutofillCancelled",
    "AutofillOrchestrator",
    "CvContent",
    "ExperienceEntry",
    "FilledField",
    "FilledForm",
    "FormField",
    "JdContent",
    "PipelineStageFailed",
    "PipelineStageTimeout",
    "SagaCommit",
    "TransactionalCommit",
    "build_orchestrator",
    "sanitize_generated_text",
]
