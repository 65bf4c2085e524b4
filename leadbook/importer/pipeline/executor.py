"""
Merge/create execution for lead imports.

Decisions from the identity resolver are applied in bounded chunks, each in
its own transaction. A chunk that fails to persist is rolled back and its
rows are counted as skipped; later chunks still run. Every chunk produces a
:class:`ChunkResult` that is folded into an immutable :class:`ImportCounters`.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Sequence

from flask import current_app, has_app_context
from sqlalchemy.exc import SQLAlchemyError

from leadbook.importer import metrics
from leadbook.importer.errors import ERROR_TYPE_WRITE, RowValidationError, WriteError
from leadbook.importer.store import LeadStore, build_contact
from leadbook.models import Lead, LeadSource, LeadStatus
from leadbook.models.base import utcnow

from .resolver import DecisionKind, GroupDecision, ResolutionPlan, RowOutcome

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 200


@dataclass(frozen=True)
class ImportContext:
    """Who is importing what; copied onto every lead the batch touches."""

    batch_id: str
    owner_identity: str
    total_count: int
    file_name: str | None = None
    group_id: str | None = None
    imported_at: datetime = field(default_factory=utcnow)
    record_duplicate_activity: bool = False

    def activity_note(self, contact_count: int | None = None) -> str:
        note = "Lead imported via bulk upload"
        if self.file_name:
            note += f' from "{self.file_name}"'
        if self.group_id:
            note += " with group assignment"
        details = [f"batch {self.batch_id}"]
        if contact_count is not None:
            details.append(f"{contact_count} contact(s)")
        return f"{note} ({', '.join(details)})"


@dataclass(frozen=True)
class ChunkResult:
    index: int
    rows: int
    successful: int = 0
    merged: int = 0
    duplicates_in_store: int = 0
    failed_rows: int = 0
    error: WriteError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ImportCounters:
    """Running totals for one import, in original-row units."""

    total: int = 0
    processed: int = 0
    successful: int = 0
    merged: int = 0
    duplicates_in_file: int = 0
    duplicates_in_store: int = 0
    skipped: int = 0

    def fold(self, result: ChunkResult) -> "ImportCounters":
        return replace(
            self,
            processed=self.processed + result.rows,
            successful=self.successful + result.successful,
            merged=self.merged + result.merged,
            duplicates_in_store=self.duplicates_in_store + result.duplicates_in_store,
            skipped=self.skipped + result.failed_rows,
        )

    def add(self, **deltas: int) -> "ImportCounters":
        values = {name: getattr(self, name) + delta for name, delta in deltas.items()}
        return replace(self, **values)

    @property
    def duplicates(self) -> int:
        return self.duplicates_in_file + self.duplicates_in_store

    def is_balanced(self) -> bool:
        accounted = self.successful + self.merged + self.duplicates_in_file + self.duplicates_in_store + self.skipped
        return accounted == self.total


ChunkCallback = Callable[[ImportCounters, ChunkResult], None]


def chunk_decisions(decisions: Sequence[GroupDecision], chunk_size: int) -> list[list[GroupDecision]]:
    size = max(1, int(chunk_size))
    return [list(decisions[start : start + size]) for start in range(0, len(decisions), size)]


def _log(level: int, message: str, **extra: object) -> None:
    if has_app_context():
        current_app.logger.log(level, message, extra=extra)
    else:
        logger.log(level, message, extra=extra)


class ImportExecutor:
    """Apply a resolution plan to the store chunk by chunk."""

    def __init__(self, store: LeadStore, *, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self.store = store
        self.chunk_size = max(1, int(chunk_size))
        self.write_errors: list[RowValidationError] = []

    def apply(
        self,
        plan: ResolutionPlan,
        context: ImportContext,
        counters: ImportCounters,
        on_chunk: ChunkCallback | None = None,
    ) -> ImportCounters:
        for index, chunk in enumerate(chunk_decisions(plan.decisions, self.chunk_size)):
            result = self._run_chunk(index, chunk, context)
            counters = counters.fold(result)
            if on_chunk is not None:
                on_chunk(counters, result)
        return counters

    def _run_chunk(self, index: int, chunk: Sequence[GroupDecision], context: ImportContext) -> ChunkResult:
        started = time.perf_counter()
        rows = sum(len(decision.row_numbers) for decision in chunk)
        try:
            with self.store.transaction():
                for decision in chunk:
                    self.apply_decision(decision, context)
        except SQLAlchemyError as exc:
            metrics.record_chunk(status="failure", duration_seconds=time.perf_counter() - started)
            return self._failed_chunk(index, chunk, rows, exc, context)

        metrics.record_chunk(status="success", duration_seconds=time.perf_counter() - started)
        return ChunkResult(
            index=index,
            rows=rows,
            successful=sum(decision.count(RowOutcome.SUCCESSFUL) for decision in chunk),
            merged=sum(decision.count(RowOutcome.MERGED) for decision in chunk),
            duplicates_in_store=sum(decision.count(RowOutcome.DUPLICATE_IN_DB) for decision in chunk),
        )

    def _failed_chunk(
        self,
        index: int,
        chunk: Sequence[GroupDecision],
        rows: int,
        exc: SQLAlchemyError,
        context: ImportContext,
    ) -> ChunkResult:
        # Duplicates that needed no write still hold; everything else is lost.
        lost = [d.writes or context.record_duplicate_activity for d in chunk]
        duplicates = sum(d.count(RowOutcome.DUPLICATE_IN_DB) for d, was_lost in zip(chunk, lost) if not was_lost)
        failed_numbers = [n for d, was_lost in zip(chunk, lost) if was_lost for n in d.row_numbers]
        message = str(getattr(exc, "orig", None) or exc)
        for row_number in failed_numbers:
            self.write_errors.append(
                RowValidationError(
                    row_number=row_number,
                    fields=(),
                    message=f"Row {row_number}: Failed to save lead ({message}).",
                    error_type=ERROR_TYPE_WRITE,
                )
            )
        _log(
            logging.ERROR,
            "Importer chunk failed; rows skipped",
            importer_chunk_index=index,
            importer_chunk_rows=len(failed_numbers),
            importer_error=message,
        )
        return ChunkResult(
            index=index,
            rows=rows,
            duplicates_in_store=duplicates,
            failed_rows=len(failed_numbers),
            error=WriteError(chunk_index=index, row_numbers=tuple(failed_numbers), message=message),
        )

    def apply_decision(self, decision: GroupDecision, context: ImportContext) -> Lead | None:
        if decision.kind == DecisionKind.CREATE:
            return self._create(decision, context)
        if decision.kind == DecisionKind.MERGE:
            return self._merge(decision, context)
        if context.record_duplicate_activity:
            lead = self.store.get(decision.target_lead_id)
            if lead is not None:
                self.store.append_activity(
                    lead,
                    actor_identity=context.owner_identity,
                    notes=f"{context.activity_note()}; duplicate rows skipped ({len(decision.row_numbers)})",
                )
            return lead
        return None

    def _create(self, decision: GroupDecision, context: ImportContext) -> Lead:
        draft = decision.draft
        status = LeadStatus.coerce(draft.status, default=LeadStatus.NEW)
        lead = Lead(
            company_name=draft.company_name,
            website=draft.website,
            website_normalized=draft.website_normalized or None,
            country=draft.country,
            address=draft.address,
            notes=draft.notes,
            status=status,
            source=LeadSource.IMPORTED,
            owner_identity=context.owner_identity,
            group_id=context.group_id,
            import_batch_id=context.batch_id,
            imported_at=context.imported_at,
            imported_by=context.owner_identity,
            import_file_name=context.file_name,
            import_total_count=context.total_count,
        )
        lead.contacts = [build_contact(contact, position=i) for i, contact in enumerate(draft.contacts)]
        self.store.add_lead(lead)
        self.store.append_activity(
            lead,
            actor_identity=context.owner_identity,
            notes=context.activity_note(len(draft.contacts)),
            at=context.imported_at,
        )
        return lead

    def _merge(self, decision: GroupDecision, context: ImportContext) -> Lead:
        lead = self.store.get(decision.target_lead_id)
        if lead is None:
            raise _missing_target(decision)
        self.store.append_contacts(lead, decision.contacts)
        self.store.append_activity(
            lead,
            actor_identity=context.owner_identity,
            notes=f"{context.activity_note(len(decision.contacts))}; merged into existing lead",
            at=context.imported_at,
        )
        return lead


def _missing_target(decision: GroupDecision) -> SQLAlchemyError:
    return SQLAlchemyError(f"Lead {decision.target_lead_id} disappeared before merge of '{decision.company_name}'")
