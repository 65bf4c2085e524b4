"""
Identity resolution for lead imports.

Valid rows are grouped by company identity, then each group is matched against
the store and against groups from the same file that are already planned for
creation. Every group ends up as exactly one decision:

* **create**: nothing matched; a new lead is planned.
* **merge**: an existing lead matched and the group brings at least one
  contact whose first email the lead does not have yet.
* **duplicate**: an existing lead matched and the group brings nothing new.

Email and phone indexes are built over the whole candidate set before any
decision is taken, so the plan does not depend on chunking or write order.
"""

from __future__ import annotations

import enum
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from flask import current_app, has_app_context
from sqlalchemy.exc import SQLAlchemyError

from leadbook.importer.errors import (
    ERROR_TYPE_DUPLICATE,
    ERROR_TYPE_RESOLUTION,
    ResolutionInvariantViolation,
    RowValidationError,
)
from leadbook.models import Lead, normalize_company_name

from .normalize import CanonicalRow, ContactSubRecord

logger = logging.getLogger(__name__)


class DecisionKind(str, enum.Enum):
    CREATE = "create"
    MERGE = "merge"
    DUPLICATE = "duplicate"


class RowOutcome(str, enum.Enum):
    SUCCESSFUL = "successful"
    MERGED = "merged"
    DUPLICATE_IN_DB = "duplicate_in_db"
    DUPLICATE_IN_FILE = "duplicate_in_file"


@dataclass
class LeadDraft:
    """Field values for a lead that will be created."""

    company_name: str
    country: str
    website: str | None = None
    website_normalized: str = ""
    address: str | None = None
    notes: str | None = None
    status: str | None = None
    contacts: list[ContactSubRecord] = field(default_factory=list)

    def emails(self) -> set[str]:
        return {email for contact in self.contacts for email in contact.emails}


@dataclass
class CompanyGroup:
    """Rows sharing one company identity, with their surviving contacts."""

    key: str
    rows: list[CanonicalRow] = field(default_factory=list)
    contributions: "OrderedDict[int, list[ContactSubRecord]]" = field(default_factory=OrderedDict)
    in_file_duplicates: list[int] = field(default_factory=list)

    @property
    def first_row(self) -> CanonicalRow:
        return self.rows[0]

    @property
    def contacts(self) -> list[ContactSubRecord]:
        return [contact for contacts in self.contributions.values() for contact in contacts]

    @property
    def row_numbers(self) -> tuple[int, ...]:
        return tuple(row.row_number for row in self.rows)


@dataclass
class GroupDecision:
    kind: DecisionKind
    group_key: str
    company_name: str
    row_outcomes: "OrderedDict[int, RowOutcome]" = field(default_factory=OrderedDict)
    contacts: list[ContactSubRecord] = field(default_factory=list)
    draft: LeadDraft | None = None
    target_lead_id: int | None = None
    folded_keys: list[str] = field(default_factory=list)

    @property
    def row_numbers(self) -> tuple[int, ...]:
        return tuple(self.row_outcomes)

    @property
    def writes(self) -> bool:
        return self.kind in (DecisionKind.CREATE, DecisionKind.MERGE)

    def count(self, outcome: RowOutcome) -> int:
        return sum(1 for value in self.row_outcomes.values() if value == outcome)


@dataclass
class FailedGroup:
    group_key: str
    row_numbers: tuple[int, ...]
    message: str


@dataclass
class ResolutionPlan:
    decisions: list[GroupDecision] = field(default_factory=list)
    duplicates_in_file: list[int] = field(default_factory=list)
    failed_groups: list[FailedGroup] = field(default_factory=list)
    errors: list[RowValidationError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def failed_rows(self) -> int:
        return sum(len(group.row_numbers) for group in self.failed_groups)

    def decisions_of(self, kind: DecisionKind) -> list[GroupDecision]:
        return [decision for decision in self.decisions if decision.kind == kind]

    def rows_with(self, outcome: RowOutcome) -> int:
        return sum(decision.count(outcome) for decision in self.decisions)


def _log(level: int, message: str, **extra: object) -> None:
    if has_app_context():
        current_app.logger.log(level, message, extra=extra)
    else:
        logger.log(level, message, extra=extra)


def group_rows(rows: Iterable[CanonicalRow]) -> list[CompanyGroup]:
    """
    Group rows by company key and deduplicate their contacts by first email.

    Contacts without an email are always kept. A non-first row whose every
    contact was already seen in its group is recorded as an in-file duplicate.
    """

    groups: "OrderedDict[str, CompanyGroup]" = OrderedDict()
    seen_emails: dict[str, set[str]] = {}
    for row in rows:
        key = row.company_key
        group = groups.get(key)
        if group is None:
            group = groups[key] = CompanyGroup(key=key)
            seen_emails[key] = set()
        group.rows.append(row)
        seen = seen_emails[key]
        kept: list[ContactSubRecord] = []
        for contact in row.contacts:
            identity = contact.identity_key
            if identity is None:
                kept.append(contact)
                continue
            if identity in seen:
                continue
            seen.add(identity)
            kept.append(contact)
        if kept or len(group.rows) == 1:
            group.contributions[row.row_number] = kept
        else:
            group.in_file_duplicates.append(row.row_number)
    return list(groups.values())


def _shared_key_warnings(groups: Sequence[CompanyGroup]) -> list[str]:
    """Warn about emails or phones listed under more than one company."""

    email_index: dict[str, list[str]] = {}
    phone_index: dict[str, list[str]] = {}
    for group in groups:
        name = group.first_row.company_name or group.key
        for contact in group.contacts:
            for email in contact.emails:
                owners = email_index.setdefault(email, [])
                if name not in owners:
                    owners.append(name)
            for phone in contact.phones:
                owners = phone_index.setdefault(phone, [])
                if name not in owners:
                    owners.append(name)

    warnings: list[str] = []
    for email, owners in email_index.items():
        if len(owners) > 1:
            warnings.append(f"Email {email} is listed under several companies: {', '.join(owners)}.")
    for phone, owners in phone_index.items():
        if len(owners) > 1:
            warnings.append(f"Phone {phone} is listed under several companies: {', '.join(owners)}.")
    return warnings


def _first_value(rows: Sequence[CanonicalRow], attribute: str) -> str | None:
    for row in rows:
        value = getattr(row, attribute)
        if value:
            return value
    return None


class IdentityResolver:
    """
    Partition validated rows into create, merge and duplicate decisions.

    Args:
        store: Object exposing ``find_existing`` and ``existing_emails``
            (see :class:`leadbook.importer.store.LeadStore`).
        scope_owner: When set, only this owner's leads are considered matches.
    """

    def __init__(self, store, *, scope_owner: str | None = None) -> None:
        self.store = store
        self.scope_owner = scope_owner

    def resolve(self, rows: Sequence[CanonicalRow]) -> ResolutionPlan:
        plan = ResolutionPlan()
        groups = group_rows(rows)
        plan.warnings.extend(_shared_key_warnings(groups))

        pending_creates: list[GroupDecision] = []
        merges_by_lead: dict[int, GroupDecision] = {}
        claimed_emails: dict[int, set[str]] = {}

        for group in groups:
            try:
                self._check_group(group)
            except ResolutionInvariantViolation as exc:
                self._fail_group(plan, group, str(exc))
                continue

            try:
                existing = self.store.find_existing(
                    group.first_row.company_name,
                    group.first_row.website_normalized,
                    owner_identity=self.scope_owner,
                )
                stored_emails = set(self.store.existing_emails(existing)) if existing is not None else set()
            except SQLAlchemyError as exc:
                self._fail_group(plan, group, f"Lookup of existing leads failed ({exc.__class__.__name__}).")
                continue

            for row_number in group.in_file_duplicates:
                plan.duplicates_in_file.append(row_number)
                plan.errors.append(self._in_file_duplicate_error(group, row_number))

            if existing is not None:
                decision = self._decide_against_existing(
                    group, existing, stored_emails, claimed_emails, merges_by_lead
                )
                if decision is not None:
                    plan.decisions.append(decision)
                    if decision.kind == DecisionKind.DUPLICATE:
                        plan.errors.extend(self._duplicate_errors(group, decision, existing))
                continue

            pending = self._match_pending(group, pending_creates)
            if pending is not None:
                self._fold_into_create(group, pending, plan)
                continue

            decision = self._create_decision(group)
            pending_creates.append(decision)
            plan.decisions.append(decision)

        _log(
            logging.INFO,
            "Identity resolution planned",
            importer_groups=len(groups),
            importer_creates=len(plan.decisions_of(DecisionKind.CREATE)),
            importer_merges=len(plan.decisions_of(DecisionKind.MERGE)),
            importer_duplicates=len(plan.decisions_of(DecisionKind.DUPLICATE)),
            importer_duplicates_in_file=len(plan.duplicates_in_file),
            importer_failed_groups=len(plan.failed_groups),
        )
        return plan

    def _fail_group(self, plan: ResolutionPlan, group: CompanyGroup, message: str) -> None:
        """Skip every row of ``group`` with a resolution error; the rest of the plan continues."""

        _log(logging.ERROR, "Identity group skipped", importer_group_key=group.key, importer_error=message)
        plan.failed_groups.append(FailedGroup(group.key, group.row_numbers, message))
        for row in group.rows:
            plan.errors.append(
                RowValidationError(
                    row_number=row.row_number,
                    fields=("company_name",),
                    message=f"Row {row.row_number}: {message}",
                    error_type=ERROR_TYPE_RESOLUTION,
                    values=row.partial_values(),
                )
            )

    def _check_group(self, group: CompanyGroup) -> None:
        if not group.rows:
            raise ResolutionInvariantViolation(group.key, "group holds no rows")
        if not (group.first_row.company_name or "").strip():
            raise ResolutionInvariantViolation(group.key, "group has no company name")
        if not group.contributions:
            raise ResolutionInvariantViolation(group.key, "group has no contributing rows")

    def _create_decision(self, group: CompanyGroup) -> GroupDecision:
        rows = group.rows
        first = group.first_row
        website_row = next((row for row in rows if row.website), first)
        draft = LeadDraft(
            company_name=first.company_name.strip(),
            country=first.country.strip(),
            website=website_row.website,
            website_normalized=website_row.website_normalized,
            address=_first_value(rows, "address"),
            notes=_first_value(rows, "notes"),
            status=first.status,
            contacts=list(group.contacts),
        )
        decision = GroupDecision(
            kind=DecisionKind.CREATE,
            group_key=group.key,
            company_name=draft.company_name,
            contacts=list(draft.contacts),
            draft=draft,
        )
        for row_number in group.contributions:
            decision.row_outcomes[row_number] = RowOutcome.SUCCESSFUL
        return decision

    def _match_pending(self, group: CompanyGroup, pending: Sequence[GroupDecision]) -> GroupDecision | None:
        """Apply the store's match rule to leads planned earlier in this file."""

        name = normalize_company_name(group.first_row.company_name)
        website = group.first_row.website_normalized
        for decision in pending:
            draft = decision.draft
            if normalize_company_name(draft.company_name) == name:
                return decision
            if website and website in (draft.website_normalized or ""):
                return decision
        return None

    def _fold_into_create(self, group: CompanyGroup, decision: GroupDecision, plan: ResolutionPlan) -> None:
        draft = decision.draft
        known = draft.emails()
        decision.folded_keys.append(group.key)
        for row_number, contacts in group.contributions.items():
            added = [c for c in contacts if c.identity_key is None or c.identity_key not in known]
            if not added:
                plan.duplicates_in_file.append(row_number)
                plan.errors.append(self._in_file_duplicate_error(group, row_number))
                continue
            for contact in added:
                if contact.identity_key is not None:
                    known.add(contact.identity_key)
                draft.contacts.append(contact)
                decision.contacts.append(contact)
            decision.row_outcomes[row_number] = RowOutcome.SUCCESSFUL
        if not draft.website and group.first_row.website:
            draft.website = group.first_row.website
            draft.website_normalized = group.first_row.website_normalized

    def _decide_against_existing(
        self,
        group: CompanyGroup,
        existing: Lead,
        stored_emails: set[str],
        claimed_emails: dict[int, set[str]],
        merges_by_lead: dict[int, GroupDecision],
    ) -> GroupDecision | None:
        present = stored_emails | claimed_emails.setdefault(existing.id, set())
        has_new_email = any(
            contact.identity_key is not None and contact.identity_key not in present for contact in group.contacts
        )

        if not has_new_email:
            decision = GroupDecision(
                kind=DecisionKind.DUPLICATE,
                group_key=group.key,
                company_name=existing.company_name,
                target_lead_id=existing.id,
            )
            for row_number in group.contributions:
                decision.row_outcomes[row_number] = RowOutcome.DUPLICATE_IN_DB
            return decision

        # A second group resolving to the same lead extends the first merge.
        decision = merges_by_lead.get(existing.id)
        is_new = decision is None
        if decision is None:
            decision = GroupDecision(
                kind=DecisionKind.MERGE,
                group_key=group.key,
                company_name=existing.company_name,
                target_lead_id=existing.id,
            )
            merges_by_lead[existing.id] = decision
        else:
            decision.folded_keys.append(group.key)

        claimed = claimed_emails[existing.id]
        for row_number, contacts in group.contributions.items():
            appended: list[ContactSubRecord] = []
            for contact in contacts:
                identity = contact.identity_key
                if identity is None:
                    appended.append(contact)
                elif identity not in present and identity not in claimed:
                    claimed.add(identity)
                    appended.append(contact)
            if appended:
                decision.contacts.extend(appended)
                decision.row_outcomes[row_number] = RowOutcome.MERGED
            else:
                decision.row_outcomes[row_number] = RowOutcome.DUPLICATE_IN_DB
        return decision if is_new else None

    def _in_file_duplicate_error(self, group: CompanyGroup, row_number: int) -> RowValidationError:
        row = next((r for r in group.rows if r.row_number == row_number), group.first_row)
        return RowValidationError(
            row_number=row_number,
            fields=("company_name", "contact_email"),
            message=(
                f"Row {row_number}: Duplicate of row {group.first_row.row_number} in this file "
                f'for company "{row.company_name}"; no new contacts.'
            ),
            error_type=ERROR_TYPE_DUPLICATE,
            values=row.partial_values(),
        )

    def _duplicate_errors(
        self,
        group: CompanyGroup,
        decision: GroupDecision,
        existing: Lead,
    ) -> list[RowValidationError]:
        errors: list[RowValidationError] = []
        rows_by_number = {row.row_number: row for row in group.rows}
        for row_number in group.contributions:
            row = rows_by_number[row_number]
            website_note = f' with website "{row.website}"' if row.website else ""
            errors.append(
                RowValidationError(
                    row_number=row_number,
                    fields=("company_name", "website"),
                    message=f'Row {row_number}: Lead already exists for company "{row.company_name}"{website_note}.',
                    error_type=ERROR_TYPE_DUPLICATE,
                    values={**row.partial_values(), "existing_lead_id": existing.id},
                )
            )
        return errors
