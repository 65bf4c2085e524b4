"""
Entity store used by the lead importer.

A thin service over the SQLAlchemy session exposing only what identity
resolution and the merge/create executor need.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import TYPE_CHECKING, Iterable, Iterator

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from leadbook.models import Lead, LeadActivity, LeadContact, LeadStatus, db, normalize_company_name
from leadbook.models.base import utcnow

if TYPE_CHECKING:  # pragma: no cover
    from .pipeline.normalize import ContactSubRecord


class LeadStore:
    """Read and write leads for the importer within one session."""

    def __init__(self, session: Session | None = None) -> None:
        self.session = session or db.session

    def find_existing(
        self,
        company_name: str,
        website_normalized: str | None = None,
        *,
        owner_identity: str | None = None,
    ) -> Lead | None:
        """
        Return the oldest lead whose case-folded name matches ``company_name``,
        or whose normalized website contains ``website_normalized``.

        The website clause is skipped when no website is given. When
        ``owner_identity`` is provided only that owner's leads are searched.
        """

        conditions = [Lead.company_name_normalized == normalize_company_name(company_name)]
        if website_normalized:
            conditions.append(Lead.website_normalized.contains(website_normalized, autoescape=True))
        stmt = select(Lead).where(or_(*conditions))
        if owner_identity is not None:
            stmt = stmt.where(Lead.owner_identity == owner_identity)
        stmt = stmt.order_by(Lead.id.asc()).limit(1)
        return self.session.execute(stmt).scalars().first()

    def get(self, lead_id: int) -> Lead | None:
        return self.session.get(Lead, lead_id)

    def existing_emails(self, lead: Lead) -> set[str]:
        return lead.contact_emails()

    def add_lead(self, lead: Lead) -> Lead:
        self.session.add(lead)
        return lead

    def append_contacts(self, lead: Lead, contacts: Iterable[ContactSubRecord]) -> list[LeadContact]:
        position = len(lead.contacts)
        created: list[LeadContact] = []
        for contact in contacts:
            record = build_contact(contact, position=position)
            lead.contacts.append(record)
            created.append(record)
            position += 1
        return created

    def append_activity(
        self,
        lead: Lead,
        *,
        actor_identity: str,
        notes: str,
        status: LeadStatus | None = None,
        at: datetime | None = None,
    ) -> LeadActivity:
        activity = LeadActivity(
            status=status or lead.status or LeadStatus.NEW,
            actor_identity=actor_identity,
            at=at or utcnow(),
            notes=notes,
        )
        lead.activities.append(activity)
        return activity

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Commit everything written inside the block, or roll it back.

        ``SQLAlchemyError`` is re-raised after the rollback so the caller can
        record the failure.
        """

        try:
            yield self.session
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise


def build_contact(contact: ContactSubRecord, *, position: int = 0) -> LeadContact:
    return LeadContact(
        position=position,
        first_name=contact.first_name,
        last_name=contact.last_name,
        designation=contact.designation,
        emails=list(contact.emails),
        phones=list(contact.phones),
        primary_email=contact.identity_key,
    )
