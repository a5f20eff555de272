"""Form-field classification paths and profile lookups."""

from __future__ import annotations

from typing import Any, Mapping

from autofill.domain import FormField

FORM_FIELD_PATHS: dict[str, str] = {
    "personal.full_name": "Applicant full name",
    "personal.email": "Email address",
    "personal.phone": "Phone number",
    "personal.location": "City, region or country of residence",
    "personal.nationality": "Nationality or citizenship",
    "personal.right_to_work": "Right to work or visa status",
    "links": "Profile or portfolio URL; set link_type (linkedin, github, portfolio, ...)",
    "headline": "Professional headline or current title",
    "summary": "Short professional summary or about-me text",
    "experience": "Work experience or description of past roles",
    "education": "Degrees, schools and fields of study",
    "certifications": "Professional certifications",
    "languages": "Spoken languages and proficiency",
    "extras.driving_license": "Driving license",
    "extras.work_permit": "Work permit",
    "extras.willing_to_relocate": "Willingness to relocate",
    "extras.remote_preference": "Remote, hybrid or on-site preference",
    "extras.notice_period": "Notice period",
    "extras.availability": "Start date or availability",
    "extras.salary_expectation": "Salary expectation",
    "resume_upload": "CV or resume file upload",
    "cover_letter": "Cover letter text or file",
    "motivation_text": "Motivation, why this company, why this role",
    "unknown": "Anything that does not fit another path",
}

TEXT_FROM_JD_CV = "text_from_jd_cv"
ROLE_SUMMARY = "role_summary"
INFERENCE_HINTS = (TEXT_FROM_JD_CV, ROLE_SUMMARY)

SEMANTIC_TYPES = ("text", "choice", "date", "file", "boolean", "unknown")

# Paths answered straight from the structured profile.
PROFILE_PATHS = frozenset(
    path
    for path in FORM_FIELD_PATHS
    if path.startswith(("personal.", "extras."))
    or path in {"links", "headline", "summary", "education", "certifications", "languages"}
)

# Identifiers copied exactly; every other value is free text.
VERBATIM_PATHS = frozenset({"personal.full_name", "personal.email", "personal.phone", "links"})

_CHOICE_TYPES = {"select", "select-one", "select-multiple", "radio"}
_BOOLEAN_TYPES = {"checkbox"}
_DATE_TYPES = {"date", "datetime-local", "month"}


def normalize_path(path: str | None) -> str:
    """Return ``path`` if it is a known classification, else ``unknown``."""
    if path and path in FORM_FIELD_PATHS:
        return path
    return "unknown"


def default_semantic_type(field: FormField) -> str:
    """Derive a semantic type from the declared tag and type."""
    if field.is_file_upload:
        return "file"
    field_type = (field.field_type or "").strip().lower()
    tag = (field.tag or "").strip().lower()
    if field_type in _BOOLEAN_TYPES:
        return "boolean"
    if field_type in _DATE_TYPES:
        return "date"
    if tag == "select" or field_type in _CHOICE_TYPES:
        return "choice"
    if tag in {"input", "textarea"}:
        return "text"
    return "unknown"


def _lookup(profile: Mapping[str, Any], path: str) -> Any:
    current: Any = profile
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
    return current


def _format_education(entries: Any) -> str | None:
    lines = []
    for entry in entries or []:
        if not isinstance(entry, Mapping):
            continue
        degree = ", ".join(
            str(part) for part in (entry.get("degree"), entry.get("field")) if part
        )
        institution = entry.get("institution")
        line = " - ".join(part for part in (degree, institution) if part)
        if line:
            lines.append(line)
    return "; ".join(lines) or None


def _format_named(entries: Any, name_key: str, detail_key: str) -> str | None:
    items = []
    for entry in entries or []:
        if isinstance(entry, str):
            items.append(entry)
            continue
        if not isinstance(entry, Mapping) or not entry.get(name_key):
            continue
        detail = entry.get(detail_key)
        items.append(f"{entry[name_key]} ({detail})" if detail else str(entry[name_key]))
    return ", ".join(items) or None


def _find_link(links: Any, link_type: str | None) -> str | None:
    candidates = [link for link in links or [] if isinstance(link, Mapping) and link.get("url")]
    if link_type:
        wanted = link_type.strip().casefold()
        for link in candidates:
            if str(link.get("type") or "").strip().casefold() == wanted:
                return str(link["url"])
        return None
    if len(candidates) == 1:
        return str(candidates[0]["url"])
    return None


def resolve_profile_value(
    profile: Mapping[str, Any], path: str, link_type: str | None = None
) -> str | None:
    """Return the profile value for a classification path, if present."""
    if path not in PROFILE_PATHS:
        return None
    if path == "links":
        return _find_link(profile.get("links"), link_type)
    if path == "education":
        return _format_education(profile.get("education"))
    if path == "certifications":
        return _format_named(profile.get("certifications"), "name", "issuer")
    if path == "languages":
        return _format_named(profile.get("languages"), "language", "level")
    value = _lookup(profile, path)
    if value is None:
        return None
    if isinstance(value, bool):
        return "Yes" if value else "No"
    text = str(value).strip()
    return text or None
