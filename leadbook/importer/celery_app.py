"""
Celery wiring for the lead import worker.

Nothing here runs until ``IMPORTER_ENABLED`` is set. Without an explicit
broker the worker talks to a SQLite file in the instance folder, so a laptop
can run queued imports without Redis.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from celery import Celery
from flask import Flask
from kombu import Queue

DEFAULT_QUEUE_NAME = "imports"
DEFAULT_SQLITE_FILENAME = "celery.sqlite"

TASK_MODULES = ("leadbook.importer.tasks",)


@dataclass(frozen=True)
class WorkerSettings:
    """Transport and limits the import worker is started with."""

    broker_url: str
    result_backend: str
    hard_time_limit: int
    soft_time_limit: int
    overrides: Mapping[str, Any] = field(default_factory=dict)

    def as_conf(self) -> dict[str, Any]:
        conf = {
            "task_default_queue": DEFAULT_QUEUE_NAME,
            "task_queues": [Queue(DEFAULT_QUEUE_NAME)],
            "task_default_exchange": DEFAULT_QUEUE_NAME,
            "task_default_routing_key": DEFAULT_QUEUE_NAME,
            "task_routes": {"importer.*": {"queue": DEFAULT_QUEUE_NAME}},
            # One import at a time per worker process; an import is acked only once finished.
            "task_acks_late": True,
            "worker_prefetch_multiplier": 1,
            "task_track_started": True,
            "result_extended": True,
            "broker_connection_retry_on_startup": True,
            "task_time_limit": self.hard_time_limit,
            "task_soft_time_limit": self.soft_time_limit,
            "worker_hijack_root_logger": False,
            "worker_log_format": "[%(asctime)s: %(levelname)s/%(processName)s] %(message)s",
            "worker_task_log_format": (
                "[%(asctime)s: %(levelname)s/%(processName)s][%(task_name)s(%(task_id)s)] %(message)s"
            ),
        }
        conf.update(self.overrides)
        return conf


def _sqlite_transport_path(app: Flask) -> Path:
    configured = app.config.get("CELERY_SQLITE_PATH")
    path = Path(configured) if configured else Path(DEFAULT_SQLITE_FILENAME)
    if not path.is_absolute():
        path = Path(app.instance_path) / path
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def _overrides(app: Flask) -> dict[str, Any]:
    raw = app.config.get("CELERY_CONFIG")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            app.logger.warning("CELERY_CONFIG is not valid JSON; ignoring value.", exc_info=True)
            return {}
    return dict(raw or {})


def resolve_worker_settings(app: Flask) -> WorkerSettings:
    """
    Build :class:`WorkerSettings` from the Flask config.

    ``CELERY_BROKER_URL``/``CELERY_RESULT_BACKEND`` win when set; any missing
    half falls back to the SQLite file (``CELERY_SQLITE_PATH``, relative paths
    resolve against the instance folder). ``CELERY_CONFIG`` may be a mapping
    or a JSON object and is applied last.
    """
    broker_url = app.config.get("CELERY_BROKER_URL")
    result_backend = app.config.get("CELERY_RESULT_BACKEND")
    if not (broker_url and result_backend):
        # Celery expects forward slashes even on Windows.
        sqlite_path = _sqlite_transport_path(app).as_posix()
        broker_url = broker_url or f"sqla+sqlite:///{sqlite_path}"
        result_backend = result_backend or f"db+sqlite:///{sqlite_path}"

    return WorkerSettings(
        broker_url=broker_url,
        result_backend=result_backend,
        hard_time_limit=int(app.config.get("IMPORTER_TASK_TIME_LIMIT", 15 * 60)),
        soft_time_limit=int(app.config.get("IMPORTER_TASK_SOFT_TIME_LIMIT", 12 * 60)),
        overrides=_overrides(app),
    )


def create_celery_app(app: Flask) -> Celery:
    """Create the import worker's Celery app; its tasks run inside ``app``'s context."""
    settings = resolve_worker_settings(app)
    celery_app = Celery(
        app.import_name,
        broker=settings.broker_url,
        backend=settings.result_backend,
        include=TASK_MODULES,
    )
    celery_app.conf.update(settings.as_conf())
    app.logger.info(
        "Importer Celery configuration resolved",
        extra={
            "importer_celery_broker_url": settings.broker_url,
            "importer_celery_result_backend": settings.result_backend,
            "importer_celery_overrides": dict(settings.overrides) or None,
        },
    )

    if not app.config.get("SQLALCHEMY_ECHO", False):
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("celery.worker.strategy").setLevel(logging.WARNING)

    class FlaskContextTask(celery_app.Task):  # type: ignore[misc]
        def __call__(self, *args, **kwargs):
            with app.app_context():
                return super().__call__(*args, **kwargs)

    celery_app.Task = FlaskContextTask  # type: ignore[assignment]
    celery_app.set_default()
    celery_app.loader.import_default_modules()
    return celery_app


def ensure_celery_app(app: Flask, state: dict[str, Any]) -> Celery:
    celery_app: Celery | None = state.get("celery_app")
    if celery_app is None:
        celery_app = state["celery_app"] = create_celery_app(app)
    return celery_app


def get_celery_app(app: Flask) -> Celery | None:
    """
    Return the worker's Celery app, or ``None`` while the importer is disabled.
    """
    state: dict[str, Any] | None = app.extensions.get("importer")  # type: ignore[arg-type]
    if not state:
        return None
    if state.get("celery_app") is None and state.get("enabled"):
        return ensure_celery_app(app, state)
    return state.get("celery_app")
