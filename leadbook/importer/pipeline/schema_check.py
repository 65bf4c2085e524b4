"""
Batch-level schema validation for lead uploads.

Runs once, before any row is validated, so a file exported from the wrong
tool is rejected up front instead of producing one error per row.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

from leadbook.importer.contracts import (
    CONTACT_FIELDS,
    EMAIL_BEARING_FIELDS,
    PHONE_BEARING_FIELDS,
    get_lead_alias_map,
    normalize_header,
)


@dataclass(frozen=True)
class ImportConfig:
    """Per-import validation toggles."""

    require_email: bool = False
    require_phone: bool = False

    @classmethod
    def from_app_config(cls, config: Mapping[str, object], **overrides: bool | None) -> "ImportConfig":
        values = {
            "require_email": bool(config.get("IMPORTER_REQUIRE_EMAIL", False)),
            "require_phone": bool(config.get("IMPORTER_REQUIRE_PHONE", False)),
        }
        for key, value in overrides.items():
            if value is not None:
                values[key] = bool(value)
        return cls(**values)


@dataclass(frozen=True)
class SchemaValidationResult:
    valid: bool
    detected_columns: tuple[str, ...]
    expected_columns: tuple[str, ...]
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    column_map: Mapping[str, str] = field(default_factory=dict)

    def as_dict(self) -> dict[str, object]:
        return {
            "valid": self.valid,
            "detected_columns": list(self.detected_columns),
            "expected_columns": list(self.expected_columns),
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


EXPECTED_COLUMNS: tuple[str, ...] = ("companyName", "country", "contactFirstName", "contactEmail", "contactPhone")


def detect_columns(rows: Iterable[Mapping[str, object]]) -> tuple[str, ...]:
    """Union of column names across ``rows`` in first-seen order."""

    seen: dict[str, None] = {}
    for row in rows:
        for header in row.keys():
            if header is None:
                continue
            seen.setdefault(str(header), None)
    return tuple(seen)


def validate_schema(rows: Sequence[Mapping[str, object]], config: ImportConfig | None = None) -> SchemaValidationResult:
    """
    Check that the upload's columns can be mapped onto the lead contract.

    Unknown columns only produce warnings; a missing company name or country
    column, or the absence of any contact column, makes the result invalid.
    """

    config = config or ImportConfig()
    errors: list[str] = []
    warnings: list[str] = []

    if not rows:
        return SchemaValidationResult(
            valid=False,
            detected_columns=(),
            expected_columns=EXPECTED_COLUMNS,
            errors=("The file contains no data rows.",),
        )

    detected = detect_columns(rows)
    alias_map = get_lead_alias_map()
    column_map: dict[str, str] = {}
    unexpected: list[str] = []
    claimed: dict[str, list[str]] = {}
    for header in detected:
        logical = alias_map.get(normalize_header(header))
        if logical is None:
            if header.strip():
                unexpected.append(header)
            continue
        column_map[header] = logical
        claimed.setdefault(logical, []).append(header)

    present = set(claimed)
    if "company_name" not in present:
        errors.append("Missing company name column (e.g. 'companyName').")
    if "country" not in present:
        errors.append("Missing country column (e.g. 'country').")
    if not present.intersection(CONTACT_FIELDS):
        errors.append("No contact columns found (e.g. 'contactFirstName', 'contactEmail', 'contactPhone').")
    if config.require_email and not present.intersection(EMAIL_BEARING_FIELDS):
        errors.append("Email is required but no email column was found (e.g. 'contactEmail').")
    if config.require_phone and not present.intersection(PHONE_BEARING_FIELDS):
        errors.append("Phone is required but no phone column was found (e.g. 'contactPhone').")

    if unexpected:
        warnings.append("Ignoring unrecognized columns: " + ", ".join(unexpected) + ".")
    for logical, headers in claimed.items():
        if len(headers) > 1:
            warnings.append(
                f"Columns {', '.join(headers)} all map to '{logical}'; the first non-blank value per row is used."
            )

    return SchemaValidationResult(
        valid=not errors,
        detected_columns=detected,
        expected_columns=EXPECTED_COLUMNS,
        errors=tuple(errors),
        warnings=tuple(warnings),
        column_map=column_map,
    )
