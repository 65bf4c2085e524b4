"""Lead import pipeline stages."""

from .dq import RowValidationSummary, validate_row, validate_rows
from .executor import ChunkResult, ImportContext, ImportCounters, ImportExecutor
from .normalize import EMPTY_ROW, CanonicalRow, ContactSubRecord, normalize_row, normalize_website
from .resolver import DecisionKind, IdentityResolver, ResolutionPlan, RowOutcome
from .schema_check import ImportConfig, SchemaValidationResult, validate_schema
from .service import ImportSummary, LeadImportService, import_batch, import_file

__all__ = [
    "CanonicalRow",
    "ChunkResult",
    "ContactSubRecord",
    "DecisionKind",
    "EMPTY_ROW",
    "IdentityResolver",
    "ImportConfig",
    "ImportContext",
    "ImportCounters",
    "ImportExecutor",
    "ImportSummary",
    "LeadImportService",
    "ResolutionPlan",
    "RowOutcome",
    "RowValidationSummary",
    "SchemaValidationResult",
    "import_batch",
    "import_file",
    "normalize_row",
    "normalize_website",
    "validate_row",
    "validate_rows",
    "validate_schema",
]
