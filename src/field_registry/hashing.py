"""Deterministic field identity hashing."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass

HASH_VERSION = "v1"


@dataclass(frozen=True)
class FieldIdentity:
    """Properties that identify a form field independent of page or user.

    ``context`` carries structural context such as the site domain, so the
    same label on two unrelated sites can be told apart when callers want it.
    """

    tag: str
    field_type: str
    name: str | None = None
    label: str | None = None
    placeholder: str | None = None
    description: str | None = None
    is_file_upload: bool = False
    context: str | None = None


def _normalize_text(value: str | None) -> str | None:
    """Collapse whitespace and casefold; empty strings normalize to None."""
    if value is None:
        return None
    collapsed = " ".join(value.split()).casefold()
    return collapsed or None


def normalize_identity(identity: FieldIdentity) -> dict[str, object]:
    """Return the canonical mapping that the hash is computed over."""
    return {
        "version": HASH_VERSION,
        "tag": _normalize_text(identity.tag) or "",
        "type": _normalize_text(identity.field_type) or "",
        "name": _normalize_text(identity.name),
        "label": _normalize_text(identity.label),
        "placeholder": _normalize_text(identity.placeholder),
        "description": _normalize_text(identity.description),
        "is_file_upload": bool(identity.is_file_upload),
        "context": _normalize_text(identity.context),
    }


def hash_field_identity(identity: FieldIdentity) -> str:
    """Return the sha256 hex digest of the normalized field identity."""
    canonical = json.dumps(
        normalize_identity(identity),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
