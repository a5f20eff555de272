"""Input and output shapes for the autofill pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from field_registry import FieldIdentity


@dataclass(frozen=True)
class ExperienceEntry:
    """One CV role with the concrete facts extracted for it."""

    role: str | None = None
    company: str | None = None
    facts: tuple[str, ...] = ()
    start_date: str | None = None
    end_date: str | None = None


@dataclass(frozen=True)
class CvContent:
    """Structured CV data.

    ``profile`` follows the form-field path layout (``personal.email``,
    ``links``, ``extras.notice_period`` ...) so profile fields can be filled
    without a model call.
    """

    profile: Mapping[str, Any] = field(default_factory=dict)
    summary_facts: tuple[str, ...] = ()
    experience: tuple[ExperienceEntry, ...] = ()
    profile_signals: Mapping[str, str] = field(default_factory=dict)
    raw_text: str = ""


@dataclass(frozen=True)
class JdContent:
    """Job description text and the facts extracted from it."""

    text: str = ""
    facts: tuple[str, ...] = ()
    url: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.text.strip() and not self.facts


@dataclass(frozen=True)
class FormField:
    """A field as scanned from the application form."""

    tag: str
    field_type: str
    field_id: str | None = None
    name: str | None = None
    label: str | None = None
    placeholder: str | None = None
    description: str | None = None
    is_file_upload: bool = False
    accept: str | None = None
    context: str | None = None

    def identity(self) -> FieldIdentity:
        return FieldIdentity(
            tag=self.tag,
            field_type=self.field_type,
            name=self.name,
            label=self.label,
            placeholder=self.placeholder,
            description=self.description,
            is_file_upload=self.is_file_upload,
            context=self.context,
        )


@dataclass(frozen=True)
class FilledField:
    """Value chosen for one form field.

    ``source`` is ``profile``, ``inferred``, ``aggregated``, ``template`` or
    ``none``.
    """

    field_hash: str
    classification: str
    value: str | None
    source: str
    field_id: str | None = None
    link_type: str | None = None
    jd_mismatch: bool = False


@dataclass(frozen=True)
class FilledForm:
    """Outcome of a committed autofill."""

    autofill_id: str
    user_id: str
    form_hash: str
    fields: tuple[FilledField, ...]
    credits_charged: int
    balance_after: int
    outbox_log_id: str
    jd_mismatches: tuple[str, ...] = ()
    llm_usage: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)

    def values(self) -> dict[str, str | None]:
        """Return field values keyed by field hash."""
        return {item.field_hash: item.value for item in self.fields}
