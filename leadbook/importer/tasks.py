"""
Importer Celery tasks.

``import_leads_file`` runs a whole lead import inside the worker and mirrors
each progress snapshot into the task's result meta (``state="PROGRESS"``) so
processes other than the worker can follow the batch.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from celery import shared_task
from flask import current_app

from leadbook.importer.pipeline import ImportConfig, LeadImportService, import_file
from leadbook.importer.progress import ProgressSnapshot, get_progress_registry
from leadbook.importer.utils import cleanup_upload, generate_batch_id
from leadbook.models import db


@shared_task(name="importer.healthcheck", bind=True)
def importer_healthcheck(self) -> dict[str, Any]:
    """
    Simple heartbeat task used by worker health checks.
    """
    now = datetime.now(timezone.utc)
    return {
        "status": "ok",
        "timestamp": now.isoformat(),
        "worker_hostname": self.request.hostname,
    }


@shared_task(name="importer.pipeline.import_leads", bind=True)
def import_leads_file(
    self,
    *,
    file_path: str,
    owner_identity: str,
    file_name: str | None = None,
    group_id: str | None = None,
    batch_id: str | None = None,
    require_email: bool | None = None,
    require_phone: bool | None = None,
) -> dict[str, Any]:
    """
    Import a staged upload. The file is removed whether or not the import succeeds.
    """

    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"Upload not found: {file_path}")

    batch_id = batch_id or generate_batch_id()
    config = ImportConfig.from_app_config(
        current_app.config,
        require_email=require_email,
        require_phone=require_phone,
    )
    registry = get_progress_registry()

    def _mirror(snapshot: ProgressSnapshot) -> None:
        if self.request.called_directly or self.request.is_eager:
            return
        self.update_state(state="PROGRESS", meta=snapshot.as_dict())

    remove_listener = registry.listen(batch_id, _mirror)
    try:
        summary = import_file(
            path,
            owner_identity,
            file_name=file_name,
            group_id=group_id,
            config=config,
            batch_id=batch_id,
            service=LeadImportService(progress=registry),
        )
    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception(
            "Lead import task failed",
            extra={
                "importer_batch_id": batch_id,
                "importer_file_name": file_name or path.name,
                "importer_error": str(exc),
            },
        )
        raise
    finally:
        remove_listener()
        cleanup_upload(path)

    payload = summary.as_dict()
    payload["task_id"] = self.request.id
    return payload
