"""Prometheus metrics helpers for the lead importer."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Histogram

_rows_counter = Counter(
    "importer_lead_rows_total",
    "Lead import rows by final outcome.",
    ["outcome"],
)
_chunk_counter = Counter(
    "importer_lead_chunks_total",
    "Merge/create chunks processed by status.",
    ["status"],
)
_chunk_duration = Histogram(
    "importer_lead_chunk_duration_seconds",
    "Duration of a merge/create chunk in seconds.",
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
)
_schema_rejections = Counter(
    "importer_lead_schema_rejections_total",
    "Uploads rejected before any write because their columns could not be mapped.",
)


def record_chunk(*, status: Literal["success", "failure"], duration_seconds: float) -> None:
    """Capture metrics for one merge/create chunk."""

    _chunk_counter.labels(status=status).inc()
    _chunk_duration.observe(duration_seconds)


def record_row_outcomes(outcomes: dict[str, int]) -> None:
    """Increment the per-outcome row counters (zero counts are skipped)."""

    for outcome, count in outcomes.items():
        if count:
            _rows_counter.labels(outcome=outcome).inc(count)


def record_schema_rejection() -> None:
    _schema_rejections.inc()
