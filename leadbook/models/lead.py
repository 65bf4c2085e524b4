"""
SQLAlchemy models for leads, their contact persons and activity history.

Company name plus normalized website is treated as the identity of a lead.
That uniqueness is enforced by the import resolver rather than a database
constraint so manually created leads are never rejected at write time.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Enum, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from .base import BaseModel, db, utcnow


def normalize_company_name(value: str | None) -> str:
    """Comparable form of a company name: trimmed and Unicode case-folded."""
    return (value or "").strip().casefold()


class LeadStatus(str, enum.Enum):
    """Sales pipeline states a lead can be in."""

    NEW = "new"
    BUSY = "busy"
    ANSWERING_MACHINE = "answering_machine"
    INTERESTED = "interested"
    NOT_INTERESTED = "not_interested"
    TEST_TRIAL = "test_trial"
    CALL_BACK = "call_back"
    ON_BOARD = "on_board"
    NO_ANSWER = "no_answer"
    EMAIL_WHATSAPP_SENT = "email_whatsapp_sent"
    LANGUAGE_BARRIER = "language_barrier"
    INVALID_NUMBER = "invalid_number"

    @classmethod
    def coerce(cls, value: object | None, default: "LeadStatus | None" = None) -> "LeadStatus | None":
        if isinstance(value, cls):
            return value
        if value is None:
            return default
        token = str(value).strip().lower().replace(" ", "_").replace("-", "_")
        for member in cls:
            if member.value == token:
                return member
        return default


class LeadSource(str, enum.Enum):
    MANUAL = "manual"
    IMPORTED = "imported"
    WEBSITE = "website"


class Lead(BaseModel):
    """A company/organization prospect owned by a user."""

    __tablename__ = "leads"

    id: Mapped[int] = mapped_column(primary_key=True)
    company_name: Mapped[str] = mapped_column(db.String(255), nullable=False, index=True)
    # normalize_company_name(company_name), kept in sync by the validator below
    company_name_normalized: Mapped[str] = mapped_column(db.String(255), nullable=False, index=True)
    website: Mapped[str | None] = mapped_column(db.String(500), nullable=True)
    website_normalized: Mapped[str | None] = mapped_column(db.String(500), nullable=True, index=True)
    address: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    country: Mapped[str] = mapped_column(db.String(120), nullable=False, index=True)
    notes: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    status: Mapped[LeadStatus] = mapped_column(
        Enum(LeadStatus, name="lead_status_enum"),
        nullable=False,
        default=LeadStatus.NEW,
        index=True,
    )
    source: Mapped[LeadSource] = mapped_column(
        Enum(LeadSource, name="lead_source_enum"),
        nullable=False,
        default=LeadSource.MANUAL,
    )
    owner_identity: Mapped[str] = mapped_column(db.String(255), nullable=False, index=True)
    group_id: Mapped[str | None] = mapped_column(db.String(255), nullable=True, index=True)

    # Provenance stub written by bulk imports
    import_batch_id: Mapped[str | None] = mapped_column(db.String(64), nullable=True, index=True)
    imported_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    imported_by: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    import_file_name: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    import_total_count: Mapped[int | None] = mapped_column(db.Integer, nullable=True)

    contacts = relationship(
        "LeadContact",
        back_populates="lead",
        cascade="all, delete-orphan",
        order_by="LeadContact.position",
    )
    activities = relationship(
        "LeadActivity",
        back_populates="lead",
        cascade="all, delete-orphan",
        order_by="LeadActivity.id",
    )

    __table_args__ = (Index("idx_lead_owner_status", "owner_identity", "status"),)

    @validates("company_name")
    def _sync_company_name_normalized(self, key, value):
        """Keep the case-folded lookup column in step with the name"""
        self.company_name_normalized = normalize_company_name(value)
        return value

    def contact_emails(self) -> set[str]:
        """Every email held by any contact of this lead."""
        emails: set[str] = set()
        for contact in self.contacts:
            emails.update(contact.emails or ())
        return emails

    def __repr__(self):
        return f"<Lead {self.company_name}>"


class LeadContact(BaseModel):
    """Contact person attached to a lead."""

    __tablename__ = "lead_contacts"

    id: Mapped[int] = mapped_column(primary_key=True)
    lead_id: Mapped[int] = mapped_column(ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True)
    position: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    first_name: Mapped[str | None] = mapped_column(db.String(120), nullable=True)
    last_name: Mapped[str | None] = mapped_column(db.String(120), nullable=True)
    designation: Mapped[str | None] = mapped_column(db.String(120), nullable=True)
    emails: Mapped[list] = mapped_column(db.JSON, nullable=False, default=list)
    phones: Mapped[list] = mapped_column(db.JSON, nullable=False, default=list)
    primary_email: Mapped[str | None] = mapped_column(db.String(255), nullable=True, index=True)

    lead = relationship("Lead", back_populates="contacts")

    def __repr__(self):
        return f"<LeadContact {self.primary_email or self.first_name}>"


class LeadActivity(db.Model):
    """Append-only history entry for a lead."""

    __tablename__ = "lead_activities"

    id: Mapped[int] = mapped_column(primary_key=True)
    lead_id: Mapped[int] = mapped_column(ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True)
    status: Mapped[LeadStatus] = mapped_column(
        Enum(LeadStatus, name="lead_status_enum"),
        nullable=False,
        default=LeadStatus.NEW,
    )
    actor_identity: Mapped[str] = mapped_column(db.String(255), nullable=False)
    at: Mapped[datetime] = mapped_column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    notes: Mapped[str | None] = mapped_column(db.Text, nullable=True)

    lead = relationship("Lead", back_populates="activities")
