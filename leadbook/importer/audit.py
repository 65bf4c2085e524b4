"""
Audit logging for bulk imports.

Recording is fire-and-forget: a failure to write the audit row is logged and
swallowed so it can never change the outcome of an import that already
committed its leads.
"""

from __future__ import annotations

from typing import Any, Mapping

from flask import current_app, has_app_context
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from leadbook.models import AuditLog, db

from .utils import normalize_payload

ACTION_BULK_IMPORT = "bulk_import_leads"
ACTION_BULK_IMPORT_REJECTED = "bulk_import_leads_rejected"
ENTITY_TYPE_LEAD = "lead"


class DatabaseAuditSink:
    """Persist audit entries to the ``audit_logs`` table."""

    def __init__(self, session: Session | None = None) -> None:
        self.session = session or db.session

    def record(
        self,
        *,
        actor_identity: str,
        action: str,
        entity_type: str,
        entity_id: str | None = None,
        description: str | None = None,
        data: Mapping[str, Any] | None = None,
    ) -> AuditLog | None:
        entry = AuditLog(
            actor_identity=actor_identity,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            description=description,
            data_json=normalize_payload(data),
        )
        try:
            self.session.add(entry)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            if has_app_context():
                current_app.logger.warning(
                    "Failed to write audit log entry",
                    extra={"importer_audit_action": action, "importer_error": str(exc)},
                )
            return None
        return entry
