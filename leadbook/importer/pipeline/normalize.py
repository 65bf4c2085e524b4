"""
Row normalization for lead imports.

Turns one decoded spreadsheet row into a :class:`CanonicalRow`: logical field
names resolved through the alias table, websites reduced to a comparable
form, and every contact person parsed into a :class:`ContactSubRecord`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Mapping

from email_validator import EmailNotValidError, validate_email

from leadbook.importer.contracts import resolve_fields
from leadbook.models import normalize_company_name

# The header occupies row 1, so data row ``index`` sits at ``index + 2``.
HEADER_OFFSET = 2

_SPLIT_REGEX = re.compile(r"[,;]")
_WHITESPACE_REGEX = re.compile(r"\s+")
MIN_PHONE_LENGTH = 7


@dataclass(frozen=True)
class ContactSubRecord:
    """A contact person parsed from a row."""

    first_name: str | None = None
    last_name: str | None = None
    designation: str | None = None
    emails: tuple[str, ...] = ()
    phones: tuple[str, ...] = ()

    @property
    def identity_key(self) -> str | None:
        """First email, used to recognise the same person across rows."""
        return self.emails[0] if self.emails else None

    def as_dict(self) -> dict[str, object]:
        return {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "designation": self.designation,
            "emails": list(self.emails),
            "phones": list(self.phones),
        }


@dataclass(frozen=True)
class CanonicalRow:
    row_number: int
    company_name: str | None
    country: str | None
    website: str | None = None
    website_normalized: str = ""
    address: str | None = None
    notes: str | None = None
    status: str | None = None
    contacts: tuple[ContactSubRecord, ...] = ()
    raw: Mapping[str, object] = field(default_factory=dict)

    @property
    def company_key(self) -> str:
        """Grouping key: case-folded company name plus normalized website."""
        return company_key(self.company_name, self.website_normalized)

    def partial_values(self) -> dict[str, object]:
        return {
            "company_name": self.company_name,
            "website": self.website,
            "country": self.country,
            "address": self.address,
            "notes": self.notes,
            "status": self.status,
            "contacts": [contact.as_dict() for contact in self.contacts],
        }


class _EmptyRow:
    """Sentinel returned for rows that carry no lead data at all."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "EMPTY_ROW"


EMPTY_ROW = _EmptyRow()


def row_number_for_index(index: int) -> int:
    return index + HEADER_OFFSET


def normalize_website(value: str | None) -> str:
    """Lower-case and strip protocol, ``www.`` and a trailing slash."""

    if not value:
        return ""
    token = value.strip().lower()
    token = re.sub(r"^https?://", "", token)
    token = re.sub(r"^www\.", "", token)
    token = re.sub(r"/$", "", token)
    return token


def company_key(company_name: str | None, website_normalized: str | None) -> str:
    name = normalize_company_name(company_name)
    return f"{name}|{website_normalized or ''}"


def _is_email(value: str) -> bool:
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def split_emails(value: str | None) -> tuple[str, ...]:
    """Split a multi-value email cell, keeping well-formed addresses only."""

    if not value:
        return ()
    emails: list[str] = []
    for token in _SPLIT_REGEX.split(value):
        email = token.strip().lower()
        if email and email not in emails and _is_email(email):
            emails.append(email)
    return tuple(emails)


def split_phones(value: str | None) -> tuple[str, ...]:
    """Split a multi-value phone cell; tokens shorter than seven characters are dropped."""

    if not value:
        return ()
    phones: list[str] = []
    for token in _SPLIT_REGEX.split(value):
        phone = _WHITESPACE_REGEX.sub("", token)
        if len(phone) >= MIN_PHONE_LENGTH and phone not in phones:
            phones.append(phone)
    return tuple(phones)


def _primary_contact(fields: Mapping[str, str | None]) -> ContactSubRecord | None:
    first_name = fields.get("contact_first_name")
    emails = split_emails(fields.get("contact_email"))
    phones = split_phones(fields.get("contact_phone"))
    if not (first_name or emails or phones):
        return None
    return ContactSubRecord(
        first_name=first_name,
        last_name=fields.get("contact_last_name"),
        designation=fields.get("contact_designation"),
        emails=emails,
        phones=phones,
    )


def parse_additional_contacts(value: str | None) -> tuple[ContactSubRecord, ...]:
    """
    Parse ``"name, email, phone; name, email, phone"`` entries.

    Entries with fewer than three parts, or with neither a valid email nor a
    valid phone, are ignored.
    """

    if not value:
        return ()
    contacts: list[ContactSubRecord] = []
    for entry in value.split(";"):
        parts = [part.strip() for part in entry.split(",")]
        if len(parts) < 3:
            continue
        name, email, phone = parts[0], parts[1], parts[2]
        emails = split_emails(email)
        phones = split_phones(phone)
        if not emails and not phones:
            continue
        contacts.append(ContactSubRecord(first_name=name or None, emails=emails, phones=phones))
    return tuple(contacts)


def normalize_row(raw: Mapping[str, object], index: int) -> CanonicalRow | _EmptyRow:
    """
    Normalize the ``index``-th data row (0-based) of an upload.

    Returns ``EMPTY_ROW`` when the row has no company, no country and no
    contact data, which is how trailing spreadsheet rows usually look.
    """

    fields = resolve_fields(raw)
    contacts: list[ContactSubRecord] = []
    primary = _primary_contact(fields)
    if primary is not None:
        contacts.append(primary)
    contacts.extend(parse_additional_contacts(fields.get("additional_contacts")))

    company_name = fields.get("company_name")
    country = fields.get("country")
    if not company_name and not country and not contacts:
        return EMPTY_ROW

    website = fields.get("website")
    return CanonicalRow(
        row_number=row_number_for_index(index),
        company_name=company_name,
        country=country,
        website=website,
        website_normalized=normalize_website(website),
        address=fields.get("address"),
        notes=fields.get("notes"),
        status=fields.get("status"),
        contacts=tuple(contacts),
        raw={str(key): value for key, value in raw.items() if key is not None},
    )
