"""
Error taxonomy for the lead importer.

Only :class:`SchemaError` stops an import before any write. Every other
failure is scoped to a row, a chunk, or one identity group and is reported in
the import summary while the rest of the batch continues.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Sequence, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from .pipeline.schema_check import SchemaValidationResult


class ImporterError(Exception):
    """Base exception for importer failures."""


class SchemaError(ImporterError):
    """Raised when an upload's columns cannot be mapped to the lead contract."""

    def __init__(self, result: "SchemaValidationResult") -> None:
        details = " ".join(result.errors) if result.errors else "Unrecognized file layout."
        super().__init__(f"Schema validation failed. {details}")
        self.result = result


class ResolutionInvariantViolation(ImporterError):
    """Raised when an identity group is internally inconsistent (e.g. holds no rows)."""

    def __init__(self, group_key: str, message: str) -> None:
        super().__init__(f"Identity group '{group_key}': {message}")
        self.group_key = group_key


class UploadError(ImporterError):
    """Base exception for upload decoding failures."""


class UnsupportedUploadError(UploadError):
    """Raised when the upload extension/kind has no decoder."""

    def __init__(self, kind: str) -> None:
        super().__init__(f"Unsupported upload type '{kind}'. Use a .csv or .xlsx file.")
        self.kind = kind


class UploadDecodeError(UploadError):
    """Raised when a supported upload cannot be read."""


ERROR_TYPE_VALIDATION = "validation"
ERROR_TYPE_DUPLICATE = "duplicate"
ERROR_TYPE_WRITE = "write"
ERROR_TYPE_RESOLUTION = "resolution"


@dataclass(frozen=True)
class RowValidationError:
    """
    Structured, non-fatal problem tied to one source row.

    Attributes:
        row_number: 1-based file position (the header is row 1).
        fields: Logical field names the problem concerns.
        message: Operator-facing description, already prefixed with the row.
        error_type: One of validation, duplicate, write or resolution.
        values: Whatever partial values the row carried, for diagnostics.
    """

    row_number: int
    fields: Sequence[str]
    message: str
    error_type: str = ERROR_TYPE_VALIDATION
    values: Mapping[str, object] = field(default_factory=dict)

    def as_dict(self) -> dict[str, object]:
        return {
            "row_number": self.row_number,
            "fields": list(self.fields),
            "message": self.message,
            "error_type": self.error_type,
            "values": dict(self.values),
        }


@dataclass(frozen=True)
class WriteError:
    """Detail of a chunk that failed to persist."""

    chunk_index: int
    row_numbers: Sequence[int]
    message: str
