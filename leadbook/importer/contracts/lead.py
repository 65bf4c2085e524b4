"""Canonical lead ingest contract.

Spreadsheets exported from different tools name the same column differently
("companyName", "Company Name", "Agency Name"...). Each logical field lists its
accepted headers in priority order; when a row carries several of them the
first non-blank one wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Mapping, Tuple

Normalizer = Callable[[object | None], str | None]


def coerce_text(value: object | None) -> str | None:
    """
    Render a cell value as trimmed text, ``None`` when blank.

    Spreadsheet decoders hand back whole numbers as floats (``5551234.0``), so
    integral floats are rendered without the fractional part.
    """

    if value is None:
        return None
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class FieldSpec:
    """Metadata describing a logical lead field and the headers it accepts."""

    name: str
    description: str
    required: bool = False
    aliases: Tuple[str, ...] = ()
    normalizer: Normalizer = coerce_text

    def headers(self) -> Tuple[str, ...]:
        """Return the canonical header plus aliases, in priority order."""

        return (self.name, *self.aliases)


LEAD_CANONICAL_FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec(
        name="company_name",
        description="Company or organization name.",
        required=True,
        aliases=("companyName", "company", "Company Name", "Agency Name", "organization", "organisation"),
    ),
    FieldSpec(
        name="website",
        description="Company website; compared without protocol, www. or trailing slash.",
        aliases=("websiteUrl", "url", "web"),
    ),
    FieldSpec(
        name="country",
        description="Country the company operates in.",
        required=True,
        aliases=("Country Name",),
    ),
    FieldSpec(
        name="address",
        description="Postal address.",
        aliases=("Agency Address", "location"),
    ),
    FieldSpec(
        name="notes",
        description="Free-form notes copied onto the lead.",
        aliases=("note", "comments"),
    ),
    FieldSpec(
        name="status",
        description="Requested lead status; defaults to new.",
        aliases=("leadStatus",),
    ),
    FieldSpec(
        name="contact_first_name",
        description="Primary contact given name.",
        aliases=("contactFirstName", "firstName", "Contact Name", "contactName", "name"),
    ),
    FieldSpec(
        name="contact_last_name",
        description="Primary contact family name.",
        aliases=("contactLastName", "lastName", "surname"),
    ),
    FieldSpec(
        name="contact_designation",
        description="Primary contact job title.",
        aliases=("contactDesignation", "designation", "title", "position"),
    ),
    FieldSpec(
        name="contact_email",
        description="Primary contact emails, separated by ',' or ';'.",
        aliases=("contactEmail", "email", "emails", "Email Address"),
    ),
    FieldSpec(
        name="contact_phone",
        description="Primary contact phones, separated by ',' or ';'.",
        aliases=("contactPhone", "phone", "phones", "Phone Number", "mobile"),
    ),
    FieldSpec(
        name="additional_contacts",
        description="Extra contacts as 'name, email, phone' entries separated by ';'.",
        aliases=("additionalContacts", "otherContacts"),
    ),
)

CONTACT_FIELDS: Tuple[str, ...] = (
    "contact_first_name",
    "contact_last_name",
    "contact_designation",
    "contact_email",
    "contact_phone",
    "additional_contacts",
)
EMAIL_BEARING_FIELDS: Tuple[str, ...] = ("contact_email", "additional_contacts")
PHONE_BEARING_FIELDS: Tuple[str, ...] = ("contact_phone", "additional_contacts")


def get_lead_field_specs() -> Tuple[FieldSpec, ...]:
    return LEAD_CANONICAL_FIELDS


def get_lead_required_fields() -> Tuple[str, ...]:
    return tuple(field.name for field in LEAD_CANONICAL_FIELDS if field.required)


def get_lead_supported_headers() -> Tuple[str, ...]:
    headers: list[str] = []
    for field in LEAD_CANONICAL_FIELDS:
        headers.extend(field.headers())
    return tuple(headers)


def get_lead_alias_map() -> Mapping[str, str]:
    """Map every normalized accepted header to its logical field name."""

    mapping: dict[str, str] = {}
    for field in LEAD_CANONICAL_FIELDS:
        for header in field.headers():
            mapping.setdefault(normalize_header(header), field.name)
    return mapping


def normalize_header(header: str) -> str:
    """Normalize a header for comparison (case/space/underscore/hyphen agnostic)."""

    token = str(header).strip().lstrip("\ufeff").lower()
    for char in (" ", "_", "-", "."):
        token = token.replace(char, "")
    return token


def resolve_fields(raw: Mapping[str, object]) -> dict[str, str | None]:
    """
    Collapse a raw row onto logical field names.

    Every logical field is present in the result; fields with no usable value
    map to ``None``.
    """

    by_header: dict[str, list[object]] = {}
    for header, value in raw.items():
        if header is None:
            continue
        by_header.setdefault(normalize_header(header), []).append(value)

    resolved: dict[str, str | None] = {}
    for field in LEAD_CANONICAL_FIELDS:
        resolved[field.name] = None
        for header in field.headers():
            for value in by_header.get(normalize_header(header), ()):
                text = field.normalizer(value)
                if text is not None:
                    resolved[field.name] = text
                    break
            if resolved[field.name] is not None:
                break
    return resolved
