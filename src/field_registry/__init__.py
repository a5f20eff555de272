"""Content-addressed cache of classified form-field metadata."""

from field_registry.hashing import FieldIdentity, hash_field_identity, normalize_identity
from field_registry.repository import (
    FieldLookupResult,
    FieldMetadata,
    FieldRegistry,
    InMemoryFieldRegistry,
    SqlFieldRegistry,
)

__all__ = [
    "FieldIdentity",
    "FieldLookupResult",
    "FieldMetadata",
    "FieldRegistry",
    "InMemoryFieldRegistry",
    "SqlFieldRegistry",
    "hash_field_identity",
    "normalize_identity",
]
