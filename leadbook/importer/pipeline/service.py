"""
Bulk lead import orchestration.

``import_batch`` runs one upload through schema validation, row validation,
identity resolution and chunked merge/create, publishing a progress snapshot
at every stage. Partial success is the normal outcome; the returned
:class:`ImportSummary` accounts for every input row exactly once::

    total == successful + merged + duplicates_in_file + duplicates_in_db + skipped_rows
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

from flask import current_app, has_app_context

from leadbook.importer import metrics
from leadbook.importer.adapters.file_decoder import decode_upload
from leadbook.importer.audit import (
    ACTION_BULK_IMPORT,
    ACTION_BULK_IMPORT_REJECTED,
    ENTITY_TYPE_LEAD,
    DatabaseAuditSink,
)
from leadbook.importer.errors import RowValidationError, SchemaError
from leadbook.importer.progress import ImportStage, ProgressRegistry, ProgressSnapshot, get_progress_registry
from leadbook.importer.store import LeadStore
from leadbook.importer.utils import generate_batch_id

from .dq import validate_rows
from .executor import DEFAULT_CHUNK_SIZE, ImportContext, ImportCounters, ImportExecutor
from .normalize import EMPTY_ROW, CanonicalRow, normalize_row
from .resolver import IdentityResolver
from .schema_check import ImportConfig, SchemaValidationResult, validate_schema

logger = logging.getLogger(__name__)

DEFAULT_MAX_ERROR_MESSAGES = 100
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


@dataclass
class ImportSummary:
    batch_id: str
    status: str
    total: int
    valid_rows: int = 0
    successful: int = 0
    merged: int = 0
    duplicates_in_file: int = 0
    duplicates_in_db: int = 0
    skipped_rows: int = 0
    error_count: int = 0
    errors: list[str] = field(default_factory=list)
    error_rows: list[RowValidationError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    schema: SchemaValidationResult | None = None

    @property
    def is_balanced(self) -> bool:
        accounted = self.successful + self.merged + self.duplicates_in_file + self.duplicates_in_db + self.skipped_rows
        return accounted == self.total

    def counts(self) -> dict[str, int]:
        return {
            "total": self.total,
            "valid_rows": self.valid_rows,
            "successful": self.successful,
            "merged": self.merged,
            "duplicates_in_file": self.duplicates_in_file,
            "duplicates_in_db": self.duplicates_in_db,
            "skipped_rows": self.skipped_rows,
            "error_count": self.error_count,
        }

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"batch_id": self.batch_id, "status": self.status}
        payload.update(self.counts())
        payload.update(
            {
                "errors": list(self.errors),
                "error_rows": [error.as_dict() for error in self.error_rows],
                "warnings": list(self.warnings),
                "schema": self.schema.as_dict() if self.schema else None,
            }
        )
        return payload


def _log(level: int, message: str, **extra: object) -> None:
    if has_app_context():
        current_app.logger.log(level, message, extra=extra)
    else:
        logger.log(level, message, extra=extra)


class LeadImportService:
    """
    Run lead imports against a store, an audit sink and a progress registry.

    Settings left as ``None`` are read from the current Flask app config.
    """

    def __init__(
        self,
        *,
        store: LeadStore | None = None,
        audit_sink=None,
        progress: ProgressRegistry | None = None,
        chunk_size: int | None = None,
        max_error_messages: int | None = None,
        identity_scope: str | None = None,
        record_duplicate_activity: bool | None = None,
    ) -> None:
        config: Mapping[str, Any] = current_app.config if has_app_context() else {}
        self.store = store or LeadStore()
        self.audit_sink = audit_sink or DatabaseAuditSink(self.store.session)
        self.progress = progress or get_progress_registry()
        self.chunk_size = chunk_size or config.get("IMPORTER_CHUNK_SIZE", DEFAULT_CHUNK_SIZE)
        self.max_error_messages = max_error_messages or config.get(
            "IMPORTER_MAX_ERROR_MESSAGES", DEFAULT_MAX_ERROR_MESSAGES
        )
        self.identity_scope = identity_scope or config.get("IMPORTER_IDENTITY_SCOPE", "global")
        if record_duplicate_activity is None:
            record_duplicate_activity = bool(config.get("IMPORTER_RECORD_DUPLICATE_ACTIVITY", False))
        self.record_duplicate_activity = record_duplicate_activity
        self.default_config = ImportConfig.from_app_config(config)

    def import_batch(
        self,
        rows: Iterable[Mapping[str, object]],
        owner_identity: str,
        *,
        file_name: str | None = None,
        group_id: str | None = None,
        config: ImportConfig | None = None,
        batch_id: str | None = None,
    ) -> ImportSummary:
        rows = list(rows)
        config = config or self.default_config
        batch_id = batch_id or generate_batch_id()
        counters = ImportCounters(total=len(rows))
        self._publish(batch_id, counters, ImportStage.VALIDATING)

        try:
            schema = validate_schema(rows, config)
            if not schema.valid:
                raise SchemaError(schema)
        except SchemaError as exc:
            return self._reject(batch_id, rows, owner_identity, file_name, exc)

        try:
            return self._run(batch_id, rows, owner_identity, file_name, group_id, config, schema, counters)
        except Exception as exc:
            self._publish(batch_id, counters, ImportStage.FAILED, message=str(exc))
            _log(
                logging.ERROR,
                "Lead import failed",
                importer_batch_id=batch_id,
                importer_error=str(exc),
            )
            raise

    def _run(
        self,
        batch_id: str,
        rows: Sequence[Mapping[str, object]],
        owner_identity: str,
        file_name: str | None,
        group_id: str | None,
        config: ImportConfig,
        schema: SchemaValidationResult,
        counters: ImportCounters,
    ) -> ImportSummary:
        canonical: list[CanonicalRow] = []
        blank_rows = 0
        for index, raw in enumerate(rows):
            normalized = normalize_row(raw, index)
            if normalized is EMPTY_ROW:
                blank_rows += 1
                continue
            canonical.append(normalized)

        validation = validate_rows(canonical, config)
        invalid_rows = validation.rows_invalid
        counters = counters.add(skipped=blank_rows + invalid_rows, processed=blank_rows + invalid_rows)
        self._publish(batch_id, counters, ImportStage.DEDUPING)

        scope_owner = owner_identity if self.identity_scope == "owner" else None
        plan = IdentityResolver(self.store, scope_owner=scope_owner).resolve(validation.valid_rows)
        settled = len(plan.duplicates_in_file) + plan.failed_rows
        counters = counters.add(
            duplicates_in_file=len(plan.duplicates_in_file),
            skipped=plan.failed_rows,
            processed=settled,
        )
        self._publish(batch_id, counters, ImportStage.INSERTING)

        context = ImportContext(
            batch_id=batch_id,
            owner_identity=owner_identity,
            total_count=len(rows),
            file_name=file_name,
            group_id=group_id,
            record_duplicate_activity=self.record_duplicate_activity,
        )
        executor = ImportExecutor(self.store, chunk_size=self.chunk_size)
        counters = executor.apply(
            plan,
            context,
            counters,
            on_chunk=lambda running, _result: self._publish(batch_id, running, ImportStage.INSERTING),
        )

        error_rows = sorted(
            [*validation.errors, *plan.errors, *executor.write_errors],
            key=lambda error: error.row_number,
        )
        summary = ImportSummary(
            batch_id=batch_id,
            status=STATUS_COMPLETED,
            total=counters.total,
            valid_rows=validation.rows_valid,
            successful=counters.successful,
            merged=counters.merged,
            duplicates_in_file=counters.duplicates_in_file,
            duplicates_in_db=counters.duplicates_in_store,
            skipped_rows=counters.skipped,
            error_count=len(error_rows),
            errors=[error.message for error in error_rows[: self.max_error_messages]],
            error_rows=error_rows,
            warnings=[*schema.warnings, *plan.warnings],
            schema=schema,
        )
        if not summary.is_balanced:
            _log(
                logging.WARNING,
                "Lead import counters do not add up to the row total",
                importer_batch_id=batch_id,
                importer_counts=summary.counts(),
            )

        self._publish(batch_id, counters, ImportStage.DONE)
        metrics.record_row_outcomes(
            {
                "successful": summary.successful,
                "merged": summary.merged,
                "duplicate_in_file": summary.duplicates_in_file,
                "duplicate_in_db": summary.duplicates_in_db,
                "skipped": summary.skipped_rows,
            }
        )
        self.audit_sink.record(
            actor_identity=owner_identity,
            action=ACTION_BULK_IMPORT,
            entity_type=ENTITY_TYPE_LEAD,
            description=f"Bulk imported {summary.successful}/{summary.total} leads.",
            data={"file_name": file_name, "group_id": group_id, **self._audit_payload(summary)},
        )
        _log(
            logging.INFO,
            "Lead import completed",
            importer_batch_id=batch_id,
            importer_owner=owner_identity,
            importer_file_name=file_name,
            **{f"importer_{key}": value for key, value in summary.counts().items()},
        )
        return summary

    def _reject(
        self,
        batch_id: str,
        rows: Sequence[Mapping[str, object]],
        owner_identity: str,
        file_name: str | None,
        exc: SchemaError,
    ) -> ImportSummary:
        schema = exc.result
        counters = ImportCounters(total=len(rows), processed=len(rows), skipped=len(rows))
        self._publish(batch_id, counters, ImportStage.FAILED, message=str(exc))
        metrics.record_schema_rejection()
        summary = ImportSummary(
            batch_id=batch_id,
            status=STATUS_FAILED,
            total=len(rows),
            skipped_rows=len(rows),
            error_count=len(schema.errors),
            errors=list(schema.errors)[: self.max_error_messages],
            warnings=list(schema.warnings),
            schema=schema,
        )
        self.audit_sink.record(
            actor_identity=owner_identity,
            action=ACTION_BULK_IMPORT_REJECTED,
            entity_type=ENTITY_TYPE_LEAD,
            description=f"Bulk import rejected: {'; '.join(schema.errors)}",
            data={"file_name": file_name, **self._audit_payload(summary)},
        )
        _log(
            logging.WARNING,
            "Lead import rejected by schema validation",
            importer_batch_id=batch_id,
            importer_owner=owner_identity,
            importer_schema_errors=list(schema.errors),
            importer_detected_columns=list(schema.detected_columns),
        )
        return summary

    def _audit_payload(self, summary: ImportSummary) -> dict[str, Any]:
        return {"batch_id": summary.batch_id, **summary.counts(), "errors": summary.errors}

    def _publish(
        self,
        batch_id: str,
        counters: ImportCounters,
        stage: ImportStage,
        *,
        message: str | None = None,
    ) -> ProgressSnapshot:
        return self.progress.report(
            ProgressSnapshot(
                batch_id=batch_id,
                total=counters.total,
                processed=counters.processed,
                inserted=counters.successful,
                merged=counters.merged,
                duplicates=counters.duplicates,
                errors=counters.skipped,
                stage=stage,
                message=message,
            )
        )


def import_batch(
    rows: Iterable[Mapping[str, object]],
    owner_identity: str,
    file_name: str | None = None,
    group_id: str | None = None,
    config: ImportConfig | None = None,
    *,
    batch_id: str | None = None,
) -> ImportSummary:
    """Import already-decoded rows using the current app's configuration."""

    return LeadImportService().import_batch(
        rows,
        owner_identity,
        file_name=file_name,
        group_id=group_id,
        config=config,
        batch_id=batch_id,
    )


def import_file(
    path: Path,
    owner_identity: str,
    *,
    file_name: str | None = None,
    group_id: str | None = None,
    config: ImportConfig | None = None,
    batch_id: str | None = None,
    service: LeadImportService | None = None,
) -> ImportSummary:
    """Decode an uploaded spreadsheet (deleting it afterwards) and import its rows."""

    path = Path(path)
    rows = decode_upload(path)
    service = service or LeadImportService()
    return service.import_batch(
        rows,
        owner_identity,
        file_name=file_name or path.name,
        group_id=group_id,
        config=config,
        batch_id=batch_id,
    )
