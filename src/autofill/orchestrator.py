"""Autofill orchestration: resolve, classify, generate, then commit once."""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from typing import Callable, Mapping, Sequence, TypeVar
from uuid import uuid4

from sqlalchemy.orm import Session

from autofill.commit import CommitRequest, CommitStrategy, SagaCommit, TransactionalCommit
from autofill.domain import CvContent, FilledField, FilledForm, FormField, JdContent
from autofill.errors import AutofillCancelled, PipelineStageFailed
from autofill.paths import ROLE_SUMMARY, TEXT_FROM_JD_CV, VERBATIM_PATHS, resolve_profile_value
from autofill.pipeline import (
    ExperienceAggregator,
    FieldClassifier,
    FieldInferencer,
    JdMatcher,
    LlmExperienceAggregator,
    LlmFieldClassifier,
    LlmFieldInferencer,
    LlmJdMatcher,
    StageRunner,
    unknown_metadata,
)
from autofill.rules import sanitize_generated_text
from autofill.usage import UsageMeter, metering
from config import settings
from field_registry import FieldMetadata, FieldRegistry, SqlFieldRegistry
from ledger import CreditLedger
from outbox import OutboxStore
from services.database import get_sync_session
from shared.logging import fields as log_fields
from shared.logging import log_context

logger = logging.getLogger(__name__)

T = TypeVar("T")

_INFER_PATHS = {"motivation_text", "cover_letter"}


def compute_form_hash(field_hashes: Sequence[str]) -> str:
    """Hash the ordered field hashes that make up a form."""
    canonical = json.dumps(list(field_hashes), separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _clean_value(path: str, value: str | None) -> str | None:
    if value is None or path in VERBATIM_PATHS:
        return value
    return sanitize_generated_text(value)


def _generation_route(record: FieldMetadata) -> str | None:
    """Return ``aggregate``, ``infer`` or None for a classified field."""
    if record.is_file_upload:
        return None
    if record.inference_hint == ROLE_SUMMARY or record.classification == "experience":
        return "aggregate"
    if record.inference_hint == TEXT_FROM_JD_CV or record.classification in _INFER_PATHS:
        return "infer"
    return None


class AutofillOrchestrator:
    """Fill a form for one user and record the result atomically."""

    def __init__(
        self,
        *,
        registry: FieldRegistry,
        commit_strategy: CommitStrategy,
        classifier: FieldClassifier,
        inferencer: FieldInferencer,
        aggregator: ExperienceAggregator,
        matcher: JdMatcher,
        stage_runner: StageRunner | None = None,
        cost_credits: int | None = None,
    ) -> None:
        self._registry = registry
        self._commit = commit_strategy
        self._classifier = classifier
        self._inferencer = inferencer
        self._aggregator = aggregator
        self._matcher = matcher
        self._runner = stage_runner or StageRunner()
        self._cost = cost_credits if cost_credits is not None else settings.autofill.cost_credits
        if self._cost < 0:
            raise ValueError("cost_credits must be >= 0.")

    def autofill(
        self,
        cv_content: CvContent,
        jd_content: JdContent,
        form_fields: Sequence[FormField],
        user_id: str,
        *,
        cancel_event: threading.Event | None = None,
    ) -> FilledForm:
        """Fill ``form_fields`` and charge ``user_id``.

        Nothing is persisted unless every step succeeds. Raises
        ``InsufficientCredits`` or ``UserNotFound`` from the ledger,
        ``PipelineStageFailed`` when a stage gives up and
        ``AutofillCancelled`` when ``cancel_event`` is set before commit.
        """
        if not user_id:
            raise ValueError("user_id is required.")
        if not form_fields:
            raise ValueError("form_fields must not be empty.")
        autofill_id = uuid4().hex
        context = {log_fields.USER_ID: user_id, log_fields.AUTOFILL_ID: autofill_id}
        with log_context(context), metering(UsageMeter()) as meter:
            return self._autofill(
                autofill_id, cv_content, jd_content, form_fields, user_id, cancel_event, meter
            )

    def _autofill(
        self,
        autofill_id: str,
        cv: CvContent,
        jd: JdContent,
        form_fields: Sequence[FormField],
        user_id: str,
        cancel_event: threading.Event | None,
        meter: UsageMeter,
    ) -> FilledForm:
        hashed: dict[str, FormField] = {}
        for form_field in form_fields:
            hashed.setdefault(self._registry.hash(form_field.identity()), form_field)

        lookup = self._registry.lookup_many(hashed)
        records: dict[str, FieldMetadata] = dict(lookup.found)
        new_records: dict[str, FieldMetadata] = {}
        if lookup.missing:
            pending = {field_hash: hashed[field_hash] for field_hash in lookup.missing}
            classified = self._run(
                "classify", lambda: self._classifier.classify(pending), autofill_id, cancel_event
            )
            for field_hash in lookup.missing:
                record = classified.get(field_hash) or unknown_metadata(hashed[field_hash])
                new_records[field_hash] = record
                records[field_hash] = record
        logger.info(
            "Autofill fields resolved: total=%s cached=%s classified=%s",
            len(hashed),
            len(lookup.found),
            len(new_records),
        )

        values: dict[str, str | None] = {}
        sources: dict[str, str] = {}
        to_infer: dict[str, FormField] = {}
        to_aggregate: dict[str, FormField] = {}
        for field_hash, record in records.items():
            route = _generation_route(record)
            if route == "aggregate":
                to_aggregate[field_hash] = hashed[field_hash]
                continue
            if route == "infer":
                to_infer[field_hash] = hashed[field_hash]
                continue
            value = _clean_value(
                record.classification,
                resolve_profile_value(cv.profile, record.classification, record.link_type),
            )
            if value:
                values[field_hash], sources[field_hash] = value, "profile"

        generated: dict[str, str] = {}
        if to_infer:
            inferred = self._run(
                "infer", lambda: self._inferencer.infer(cv, jd, to_infer), autofill_id, cancel_event
            )
            self._collect(inferred, to_infer, "inferred", generated, sources)
        if to_aggregate:
            aggregated = self._run(
                "aggregate",
                lambda: self._aggregator.aggregate(cv, jd, to_aggregate),
                autofill_id,
                cancel_event,
            )
            self._collect(aggregated, to_aggregate, "aggregated", generated, sources)
        values.update(generated)

        for field_hash, record in records.items():
            if values.get(field_hash) is not None:
                continue
            template = _clean_value(record.classification, record.answer_template)
            if template:
                values[field_hash], sources[field_hash] = template, "template"

        mismatches = self._match(jd, generated, autofill_id, cancel_event)

        if cancel_event is not None and cancel_event.is_set():
            raise AutofillCancelled(autofill_id)

        ordered = list(hashed)
        filled_values = {field_hash: values.get(field_hash) for field_hash in ordered}
        request = CommitRequest(
            autofill_id=autofill_id,
            user_id=user_id,
            form_hash=compute_form_hash(ordered),
            cost_credits=self._cost,
            filled_values=filled_values,
            new_records=new_records,
            llm_usage=meter.snapshot(),
        )
        result = self._commit.commit(request, cancel_event=cancel_event)
        logger.info(
            "Autofill committed: credits=%s balance_after=%s log_id=%s llm_tokens=%s",
            self._cost,
            result.balance_after,
            result.outbox_log_id,
            meter.total().total_tokens,
        )

        flagged = set(mismatches)
        return FilledForm(
            autofill_id=autofill_id,
            user_id=user_id,
            form_hash=request.form_hash,
            fields=tuple(
                FilledField(
                    field_hash=field_hash,
                    classification=records[field_hash].classification,
                    value=filled_values[field_hash],
                    source=sources.get(field_hash, "none"),
                    field_id=hashed[field_hash].field_id,
                    link_type=records[field_hash].link_type,
                    jd_mismatch=field_hash in flagged,
                )
                for field_hash in ordered
            ),
            credits_charged=self._cost,
            balance_after=result.balance_after,
            outbox_log_id=result.outbox_log_id,
            jd_mismatches=tuple(h for h in ordered if h in flagged),
            llm_usage=request.llm_usage,
        )

    @staticmethod
    def _collect(
        answers: Mapping[str, str],
        requested: Mapping[str, FormField],
        source: str,
        generated: dict[str, str],
        sources: dict[str, str],
    ) -> None:
        for field_hash, text in answers.items():
            if field_hash not in requested:
                continue
            cleaned = sanitize_generated_text(text)
            if cleaned:
                generated[field_hash] = cleaned
                sources[field_hash] = source

    def _run(
        self,
        stage: str,
        call: Callable[[], T],
        autofill_id: str,
        cancel_event: threading.Event | None,
    ) -> T:
        with log_context({log_fields.STAGE: stage}):
            return self._runner.run(
                stage, call, autofill_id=autofill_id, cancel_event=cancel_event
            )

    def _match(
        self,
        jd: JdContent,
        answers: Mapping[str, str],
        autofill_id: str,
        cancel_event: threading.Event | None,
    ) -> list[str]:
        if not answers or jd.is_empty:
            return []
        try:
            return self._run(
                "match", lambda: self._matcher.find_mismatches(jd, answers), autofill_id, cancel_event
            )
        except PipelineStageFailed as exc:
            # Matching only annotates the result.
            logger.warning("JD match skipped: %s", exc)
            return []

    def close(self) -> None:
        self._runner.close()


def build_orchestrator(
    session_factory: Callable[[], Session] | None = None,
    *,
    registry: FieldRegistry | None = None,
    commit_mode: str | None = None,
) -> AutofillOrchestrator:
    """Wire the default orchestrator from settings."""
    factory = session_factory or get_sync_session
    field_registry = registry or SqlFieldRegistry(factory)
    ledger = CreditLedger(factory)
    outbox = OutboxStore(factory)
    mode = commit_mode or settings.autofill.commit_mode
    if mode == "saga":
        strategy: CommitStrategy = SagaCommit(factory, ledger, field_registry, outbox)
    elif mode == "transaction":
        strategy = TransactionalCommit(factory, ledger, field_registry, outbox)
    else:
        raise ValueError(f"Unknown commit mode: {mode}")
    return AutofillOrchestrator(
        registry=field_registry,
        commit_strategy=strategy,
        classifier=LlmFieldClassifier(),
        inferencer=LlmFieldInferencer(),
        aggregator=LlmExperienceAggregator(),
        matcher=LlmJdMatcher(),
    )
