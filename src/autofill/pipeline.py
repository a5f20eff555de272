"""Pipeline stages and the runner that bounds them.

Each stage is a Protocol so tests and alternative providers can be injected;
the default implementations call the configured model through ``llm.LLMClient``.
"""

from __future__ import annotations

import contextvars
import json
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Mapping, Protocol, Sequence, TypeVar

from autofill.domain import CvContent, FormField, JdContent
from autofill.errors import AutofillCancelled, PipelineStageFailed, PipelineStageTimeout
from autofill.paths import INFERENCE_HINTS, SEMANTIC_TYPES, default_semantic_type, normalize_path
from autofill.prompts import (
    AGGREGATION_PROMPT,
    CLASSIFICATION_PROMPT,
    INFERENCE_PROMPT,
    MATCH_PROMPT,
)
from autofill.usage import AGGREGATION, CLASSIFICATION, INFERENCE, JD_FORM_MATCH, record_usage
from config import settings
from field_registry import FieldMetadata
from llm import (
    TRANSIENT_LLM_ERRORS,
    LLMClient,
    LLMResponseError,
    llm_client,
    parse_json_response,
)
from shared.errors import is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FieldClassifier(Protocol):
    """Assigns a classification to fields the registry has not seen."""

    def classify(self, fields: Mapping[str, FormField]) -> dict[str, FieldMetadata]: ...


class FieldInferencer(Protocol):
    """Writes answers for open questions from CV and role facts."""

    def infer(
        self, cv: CvContent, jd: JdContent, fields: Mapping[str, FormField]
    ) -> dict[str, str]: ...


class ExperienceAggregator(Protocol):
    """Writes answers that combine experience across several roles."""

    def aggregate(
        self, cv: CvContent, jd: JdContent, fields: Mapping[str, FormField]
    ) -> dict[str, str]: ...


class JdMatcher(Protocol):
    """Flags answers that conflict with role facts. Advisory only."""

    def find_mismatches(self, jd: JdContent, answers: Mapping[str, str]) -> list[str]: ...


def unknown_metadata(field: FormField) -> FieldMetadata:
    """Metadata recorded for a field the classifier left out."""
    return FieldMetadata(
        tag=field.tag,
        field_type=field.field_type,
        classification="unknown",
        name=field.name,
        label=field.label,
        placeholder=field.placeholder,
        description=field.description,
        is_file_upload=field.is_file_upload,
        semantic_type=default_semantic_type(field),
    )


def _field_prompt_payload(field_hash: str, field: FormField) -> dict[str, Any]:
    return {
        "hash": field_hash,
        "tag": field.tag,
        "type": field.field_type,
        "name": field.name,
        "label": field.label,
        "placeholder": field.placeholder,
        "description": field.description,
        "is_file_upload": field.is_file_upload,
        "accept": field.accept,
    }


def _experience_payload(cv: CvContent) -> list[dict[str, Any]]:
    return [
        {"role": entry.role, "company": entry.company, "facts": list(entry.facts)}
        for entry in cv.experience
    ]


def _parse_answers(text: str, expected: Sequence[str]) -> dict[str, str]:
    parsed = parse_json_response(text)
    answers = parsed.get("answers") if isinstance(parsed, dict) else None
    if not isinstance(answers, dict):
        raise LLMResponseError("LLM response has no answers object")
    wanted = set(expected)
    return {
        str(field_hash): str(answer)
        for field_hash, answer in answers.items()
        if field_hash in wanted and isinstance(answer, str) and answer.strip()
    }


class _LlmStage:
    temperature = 0.3
    usage_stage = "unknown"

    def __init__(self, client: LLMClient | None = None) -> None:
        self._client = client or llm_client

    def _ask(self, system_prompt: str, payload: Any) -> str:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": json.dumps(payload, ensure_ascii=False, indent=2)},
        ]
        completion = self._client.complete_sync_with_usage(messages, temperature=self.temperature)
        record_usage(self.usage_stage, completion.usage)
        return completion.text


class LlmFieldClassifier(_LlmStage):
    temperature = 0.0
    usage_stage = CLASSIFICATION

    def classify(self, fields: Mapping[str, FormField]) -> dict[str, FieldMetadata]:
        if not fields:
            return {}
        text = self._ask(
            CLASSIFICATION_PROMPT,
            [_field_prompt_payload(field_hash, field) for field_hash, field in fields.items()],
        )
        parsed = parse_json_response(text)
        if not isinstance(parsed, list):
            raise LLMResponseError("classification response is not a list")

        results: dict[str, FieldMetadata] = {}
        for item in parsed:
            if not isinstance(item, dict):
                continue
            field_hash = item.get("hash")
            field = fields.get(field_hash) if isinstance(field_hash, str) else None
            # The first classification for a hash wins.
            if field is None or field_hash in results:
                continue
            path = normalize_path(item.get("path"))
            semantic_type = item.get("semantic_type")
            if semantic_type not in SEMANTIC_TYPES:
                semantic_type = default_semantic_type(field)
            hint = item.get("inference_hint")
            link_type = item.get("link_type")
            results[field_hash] = FieldMetadata(
                tag=field.tag,
                field_type=field.field_type,
                classification=path,
                name=field.name,
                label=field.label,
                placeholder=field.placeholder,
                description=field.description,
                is_file_upload=field.is_file_upload,
                semantic_type=semantic_type,
                link_type=str(link_type) if path == "links" and link_type else None,
                inference_hint=hint if hint in INFERENCE_HINTS else None,
            )

        for field_hash, field in fields.items():
            if field_hash not in results:
                logger.warning(
                    "Classifier skipped field, defaulting to unknown: hash=%s name=%s",
                    field_hash,
                    field.name,
                )
                results[field_hash] = unknown_metadata(field)
        return results


class LlmFieldInferencer(_LlmStage):
    usage_stage = INFERENCE

    def infer(
        self, cv: CvContent, jd: JdContent, fields: Mapping[str, FormField]
    ) -> dict[str, str]:
        if not fields:
            return {}
        payload = {
            "summary_facts": list(cv.summary_facts),
            "experience": _experience_payload(cv),
            "profile_signals": dict(cv.profile_signals),
            "role_facts": list(jd.facts),
            "fields": [_field_prompt_payload(h, f) for h, f in fields.items()],
        }
        return _parse_answers(self._ask(INFERENCE_PROMPT, payload), list(fields))


class LlmExperienceAggregator(_LlmStage):
    usage_stage = AGGREGATION

    def aggregate(
        self, cv: CvContent, jd: JdContent, fields: Mapping[str, FormField]
    ) -> dict[str, str]:
        if not fields:
            return {}
        payload = {
            "experience": _experience_payload(cv),
            "summary_facts": list(cv.summary_facts),
            "role_facts": list(jd.facts),
            "fields": [_field_prompt_payload(h, f) for h, f in fields.items()],
        }
        return _parse_answers(self._ask(AGGREGATION_PROMPT, payload), list(fields))


class LlmJdMatcher(_LlmStage):
    temperature = 0.0
    usage_stage = JD_FORM_MATCH

    def find_mismatches(self, jd: JdContent, answers: Mapping[str, str]) -> list[str]:
        if not answers or jd.is_empty:
            return []
        payload = {
            "role_facts": list(jd.facts),
            "role_text": jd.text,
            "answers": dict(answers),
        }
        parsed = parse_json_response(self._ask(MATCH_PROMPT, payload))
        flagged = parsed.get("mismatches") if isinstance(parsed, dict) else None
        if not isinstance(flagged, list):
            logger.warning("Invalid match response, treating as no mismatches")
            return []
        return [item for item in flagged if isinstance(item, str) and item in answers]


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, TRANSIENT_LLM_ERRORS + (LLMResponseError,)) or is_retryable(exc)


class StageRunner:
    """Run stage calls with a per-attempt timeout and bounded retries.

    Calls run on a worker thread so a hung provider call can be abandoned
    after ``timeout_seconds``. Abandoned calls finish in the background;
    their results are discarded.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float | None = None,
        max_attempts: int | None = None,
        backoff_seconds: float | None = None,
        max_workers: int = 4,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        config = settings.autofill
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else config.stage_timeout_seconds
        )
        self.max_attempts = max_attempts if max_attempts is not None else config.stage_max_attempts
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else config.stage_backoff_seconds
        )
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0.")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1.")
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="autofill-stage"
        )
        self._sleep = sleep

    def run(
        self,
        stage: str,
        call: Callable[[], T],
        *,
        autofill_id: str,
        cancel_event: threading.Event | None = None,
    ) -> T:
        last_error: PipelineStageFailed | None = None
        for attempt in range(1, self.max_attempts + 1):
            if cancel_event is not None and cancel_event.is_set():
                raise AutofillCancelled(autofill_id)
            # Stage calls see the caller's logging fields and usage meter.
            future = self._executor.submit(contextvars.copy_context().run, call)
            try:
                return future.result(timeout=self.timeout_seconds)
            except FutureTimeoutError:
                future.cancel()
                last_error = PipelineStageTimeout(stage, self.timeout_seconds)
            except Exception as exc:
                if not _is_transient(exc):
                    raise PipelineStageFailed(stage, str(exc), retryable=False) from exc
                last_error = PipelineStageFailed(stage, str(exc), retryable=True)
                last_error.__cause__ = exc
            logger.warning(
                "Autofill stage attempt failed: stage=%s attempt=%s/%s error=%s",
                stage,
                attempt,
                self.max_attempts,
                last_error,
            )
            if attempt < self.max_attempts and self.backoff_seconds > 0:
                self._sleep(self.backoff_seconds * (2 ** (attempt - 1)))
        assert last_error is not None
        raise last_error

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
