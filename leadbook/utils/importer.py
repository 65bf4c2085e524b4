"""
Feature flag lookups for the lead importer.
"""

from __future__ import annotations

from typing import NamedTuple

from flask import current_app


class ImporterFlags(NamedTuple):
    enabled: bool
    worker_enabled: bool


def importer_flags(app=None) -> ImporterFlags:
    """Read both importer switches from ``app`` (or the current app)."""
    config = (app or current_app).config
    enabled = bool(config.get("IMPORTER_ENABLED", False))
    # The worker never runs without the importer itself.
    worker_enabled = enabled and bool(config.get("IMPORTER_WORKER_ENABLED", False))
    return ImporterFlags(enabled=enabled, worker_enabled=worker_enabled)


def is_importer_enabled(app=None) -> bool:
    return importer_flags(app).enabled
