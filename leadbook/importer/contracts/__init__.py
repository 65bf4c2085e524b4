"""Canonical ingest contract helpers for importer adapters."""

from __future__ import annotations

from .lead import (
    CONTACT_FIELDS,
    EMAIL_BEARING_FIELDS,
    LEAD_CANONICAL_FIELDS,
    PHONE_BEARING_FIELDS,
    FieldSpec,
    coerce_text,
    get_lead_alias_map,
    get_lead_field_specs,
    get_lead_required_fields,
    get_lead_supported_headers,
    normalize_header,
    resolve_fields,
)

__all__ = [
    "FieldSpec",
    "LEAD_CANONICAL_FIELDS",
    "CONTACT_FIELDS",
    "EMAIL_BEARING_FIELDS",
    "PHONE_BEARING_FIELDS",
    "coerce_text",
    "get_lead_field_specs",
    "get_lead_required_fields",
    "get_lead_supported_headers",
    "get_lead_alias_map",
    "normalize_header",
    "resolve_fields",
]
