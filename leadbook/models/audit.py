# leadbook/models/audit.py

from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Mapped, mapped_column

from .base import db, utcnow


class AuditLog(db.Model):
    """Record of a user-facing action, kept for operator review."""

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(primary_key=True)
    actor_identity: Mapped[str] = mapped_column(db.String(255), nullable=False, index=True)
    action: Mapped[str] = mapped_column(db.String(100), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(db.String(50), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(db.String(64), nullable=True)
    description: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    data_json: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def __repr__(self):
        return f"<AuditLog {self.action} by {self.actor_identity}>"
