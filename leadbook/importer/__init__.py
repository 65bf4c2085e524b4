"""
Lead importer package.

Registers the importer CLI and Celery worker when ``IMPORTER_ENABLED`` is set
and always provides a progress registry so inline imports can be followed.
"""

from __future__ import annotations

from flask import Flask

from leadbook.utils.importer import importer_flags

from .celery_app import ensure_celery_app, get_celery_app
from .cli import get_disabled_importer_group, importer_cli
from .pipeline import ImportConfig, ImportSummary, LeadImportService, import_batch, import_file
from .progress import PROGRESS_REGISTRY_KEY, create_progress_registry, get_progress_registry, report_progress

IMPORTER_EXTENSION_KEY = "importer"

__all__ = [
    "IMPORTER_EXTENSION_KEY",
    "ImportConfig",
    "ImportSummary",
    "LeadImportService",
    "get_celery_app",
    "get_progress_registry",
    "import_batch",
    "import_file",
    "init_importer",
    "report_progress",
]


def _ensure_extension_state(app: Flask) -> dict:
    state = app.extensions.setdefault(IMPORTER_EXTENSION_KEY, {})
    state.setdefault("enabled", False)
    state.setdefault("worker_enabled", False)
    state.setdefault("celery_app", None)
    state.setdefault(PROGRESS_REGISTRY_KEY, None)
    return state


def _set_cli(app: Flask, enabled: bool) -> None:
    """Register the appropriate CLI group based on flag state."""
    # Avoid duplicate registrations when running tests
    command_name = importer_cli.name
    if command_name in app.cli.commands:
        app.cli.commands.pop(command_name)

    if enabled:
        app.cli.add_command(importer_cli)
    else:
        app.cli.add_command(get_disabled_importer_group())


def init_importer(app: Flask) -> None:
    """
    Conditionally mount the importer CLI and worker based on configuration.

    State is kept in ``app.extensions['importer']`` for the CLI, the Celery
    tasks and the progress helpers.
    """
    flags = importer_flags(app)
    enabled = flags.enabled
    state = _ensure_extension_state(app)
    state.update({"enabled": enabled, "worker_enabled": flags.worker_enabled})
    if state[PROGRESS_REGISTRY_KEY] is None:
        state[PROGRESS_REGISTRY_KEY] = create_progress_registry(app)

    if not enabled:
        _set_cli(app, enabled=False)
        app.logger.info("Importer disabled via IMPORTER_ENABLED flag; skipping registration.")
        return

    ensure_celery_app(app, state)
    _set_cli(app, enabled=True)
    app.logger.info(
        "Importer enabled",
        extra={"importer_worker_enabled": state["worker_enabled"]},
    )
