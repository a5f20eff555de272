"""Writing rules shared by generation prompts, and their enforcement."""

from __future__ import annotations

import re

GENERAL_RULES = """- Never use the long dash character; write a plain "-" instead.
- Never mention the CV, resume or job description by name. Speak about your background and the role directly."""

AGGREGATION_RULES = """- Combining experience from several roles is allowed when the question is about roles or background.
- Combining is not inventing: every statement must be backed by the provided facts.
- Pick the few most relevant items rather than listing everything.
- Do not walk through positions in date order unless the question asks for a timeline.
- Emphasis follows relevance to the role and the question:
  -- the most relevant skills, projects and technologies lead;
  -- secondary experience may appear briefly, never with equal weight."""

_LONG_DASHES = re.compile("[\u2014\u2013]")

_DOCUMENTS = r"(?:cv|c\.v\.|resume|résumé|curriculum vitae|job description|job posting|job ad|jd)"

_REFERENCE_PHRASE = re.compile(
    r"\s*,?\s*\b(?:as\s+(?:mentioned|stated|noted|listed|described|outlined|shown|detailed|highlighted)"
    r"|according\s+to|based\s+on|per)\s+(?:in\s+|on\s+)?(?:my|the|your|this)\s+"
    + _DOCUMENTS
    + r"(?!\w)\s*,?",
    re.IGNORECASE,
)
_OWN_DOCUMENT = re.compile(
    r"\b(?:my|the|this)\s+(?:cv|c\.v\.|resume|résumé|curriculum vitae)(?!\w)", re.IGNORECASE
)
_BARE_CV = re.compile(r"\b(?:cv|c\.v\.|curriculum vitae)(?!\w)", re.IGNORECASE)
_JOB_DOCUMENT = re.compile(
    r"\b(?:the|this|your)\s+(?:job description|job posting|job ad|jd)\b", re.IGNORECASE
)
_BARE_JOB_DOCUMENT = re.compile(r"\b(?:job description|jd)\b", re.IGNORECASE)

_SPACE_RUNS = re.compile(r"[ \t]{2,}")
_SPACE_BEFORE_PUNCT = re.compile(r"[ \t]+([,.;:!?])")
_DOUBLED_PUNCT = re.compile(r",\s*([.;:!?])")
_LEADING_PUNCT = re.compile(r"^[ \t,;:]+", re.MULTILINE)


def _keep_case(replacement: str):
    def substitute(match: re.Match[str]) -> str:
        if match.group(0)[:1].isupper():
            return replacement[:1].upper() + replacement[1:]
        return replacement

    return substitute


def _capitalize_first(text: str) -> str:
    for index, char in enumerate(text):
        if char.isalpha():
            return text[:index] + char.upper() + text[index + 1 :]
    return text


def sanitize_generated_text(text: str | None) -> str | None:
    """Apply the writing rules to model output.

    Long dashes become "-". Phrases that cite the CV, resume or job
    description are removed, and remaining mentions are reworded to talk
    about "my background" or "the role".
    """
    if text is None:
        return None
    cleaned = _LONG_DASHES.sub("-", text)
    cleaned = _REFERENCE_PHRASE.sub(" ", cleaned)
    cleaned = _OWN_DOCUMENT.sub(_keep_case("my background"), cleaned)
    cleaned = _BARE_CV.sub(_keep_case("background"), cleaned)
    cleaned = _JOB_DOCUMENT.sub(_keep_case("the role"), cleaned)
    cleaned = _BARE_JOB_DOCUMENT.sub(_keep_case("the role"), cleaned)
    cleaned = _SPACE_BEFORE_PUNCT.sub(r"\1", cleaned)
    cleaned = _DOUBLED_PUNCT.sub(r"\1", cleaned)
    cleaned = _SPACE_RUNS.sub(" ", cleaned)
    cleaned = _LEADING_PUNCT.sub("", cleaned)
    return _capitalize_first(cleaned.strip())
