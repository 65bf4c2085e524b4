"""
Row-level data quality rules for lead imports.

Rules are small declarative objects evaluated against a normalized row. Each
emits structured outcomes which :func:`validate_row` turns into
:class:`RowValidationError` entries tied to the source row number. A failing
row is excluded from identity resolution but is never fatal to the batch.
"""

from __future__ import annotations

import enum
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

from leadbook.importer.errors import ERROR_TYPE_VALIDATION, RowValidationError

from .normalize import CanonicalRow
from .schema_check import ImportConfig


class RuleSeverity(str, enum.Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class DQResult:
    """
    Outcome from evaluating a single data-quality rule against a row.

    Attributes:
        rule_code: Stable identifier for the rule (e.g., ``LEAD_COUNTRY_REQUIRED``).
        severity: Error or warning. Only errors invalidate the row.
        message: Human-friendly summary explaining the violation.
        details: Structured context, at least the offending ``fields``.
    """

    rule_code: str
    severity: RuleSeverity
    message: str
    details: Mapping[str, object]


@dataclass(frozen=True)
class DQRule:
    """Declarative rule definition evaluated against a canonical row."""

    code: str
    description: str
    severity: RuleSeverity

    def evaluate(self, row: CanonicalRow) -> Iterable[DQResult]:
        """Return violations for the provided row."""
        raise NotImplementedError


class CompanyNameRequiredRule(DQRule):
    def __init__(self) -> None:
        super().__init__(
            code="LEAD_COMPANY_REQUIRED",
            description="Every lead needs a company name.",
            severity=RuleSeverity.ERROR,
        )

    def evaluate(self, row: CanonicalRow) -> Iterable[DQResult]:
        if row.company_name:
            return []
        return [
            DQResult(
                rule_code=self.code,
                severity=self.severity,
                message="Missing required field companyName.",
                details={"fields": ["company_name"]},
            )
        ]


class CountryRequiredRule(DQRule):
    def __init__(self) -> None:
        super().__init__(
            code="LEAD_COUNTRY_REQUIRED",
            description="Every lead needs a country.",
            severity=RuleSeverity.ERROR,
        )

    def evaluate(self, row: CanonicalRow) -> Iterable[DQResult]:
        if row.country:
            return []
        return [
            DQResult(
                rule_code=self.code,
                severity=self.severity,
                message="Missing required field country.",
                details={"fields": ["country"]},
            )
        ]


class ContactRequiredRule(DQRule):
    """At least one contact person with a name, email or phone."""

    def __init__(self) -> None:
        super().__init__(
            code="LEAD_CONTACT_REQUIRED",
            description="Lead should include at least one valid contact person.",
            severity=RuleSeverity.ERROR,
        )

    def evaluate(self, row: CanonicalRow) -> Iterable[DQResult]:
        if row.contacts:
            return []
        return [
            DQResult(
                rule_code=self.code,
                severity=self.severity,
                message="No valid contact persons found.",
                details={"fields": ["contact_first_name", "contact_email", "contact_phone"]},
            )
        ]


def _contacts_without(row: CanonicalRow, attribute: str) -> list[str]:
    """Labels of the contacts on ``row`` whose ``attribute`` is empty."""
    return [
        contact.first_name or f"contact {position}"
        for position, contact in enumerate(row.contacts, start=1)
        if not getattr(contact, attribute)
    ]


class ContactEmailRequiredRule(DQRule):
    def __init__(self) -> None:
        super().__init__(
            code="LEAD_EMAIL_REQUIRED",
            description="Every contact must carry a valid email.",
            severity=RuleSeverity.ERROR,
        )

    def evaluate(self, row: CanonicalRow) -> Iterable[DQResult]:
        missing = _contacts_without(row, "emails")
        if not missing:
            return []
        return [
            DQResult(
                rule_code=self.code,
                severity=self.severity,
                message=f"A valid contact email is required (missing for {', '.join(missing)}).",
                details={"fields": ["contact_email"], "contacts": missing},
            )
        ]


class ContactPhoneRequiredRule(DQRule):
    def __init__(self) -> None:
        super().__init__(
            code="LEAD_PHONE_REQUIRED",
            description="Every contact must carry a valid phone number.",
            severity=RuleSeverity.ERROR,
        )

    def evaluate(self, row: CanonicalRow) -> Iterable[DQResult]:
        missing = _contacts_without(row, "phones")
        if not missing:
            return []
        return [
            DQResult(
                rule_code=self.code,
                severity=self.severity,
                message=f"A valid contact phone number is required (missing for {', '.join(missing)}).",
                details={"fields": ["contact_phone"], "contacts": missing},
            )
        ]


def get_lead_rules(config: ImportConfig | None = None) -> Sequence[DQRule]:
    """Rules applicable under ``config``, in evaluation order."""

    config = config or ImportConfig()
    rules: list[DQRule] = [
        CompanyNameRequiredRule(),
        CountryRequiredRule(),
        ContactRequiredRule(),
    ]
    if config.require_email:
        rules.append(ContactEmailRequiredRule())
    if config.require_phone:
        rules.append(ContactPhoneRequiredRule())
    return tuple(rules)


def evaluate_rules(row: CanonicalRow, rules: Sequence[DQRule]) -> list[DQResult]:
    results: list[DQResult] = []
    for rule in rules:
        results.extend(rule.evaluate(row))
    return results


def validate_row(row: CanonicalRow, config: ImportConfig | None = None) -> list[RowValidationError]:
    """
    Evaluate every applicable rule against ``row``.

    An empty list means the row may proceed to identity resolution.
    """

    return _errors_from_results(row, evaluate_rules(row, get_lead_rules(config)))


def _errors_from_results(row: CanonicalRow, results: Sequence[DQResult]) -> list[RowValidationError]:
    errors: list[RowValidationError] = []
    for result in results:
        if result.severity != RuleSeverity.ERROR:
            continue
        errors.append(
            RowValidationError(
                row_number=row.row_number,
                fields=tuple(result.details.get("fields", ())),
                message=f"Row {row.row_number}: {result.message}",
                error_type=ERROR_TYPE_VALIDATION,
                values=row.partial_values(),
            )
        )
    return errors


@dataclass
class RowValidationSummary:
    """Tallies from validating every non-empty row of a batch."""

    rows_evaluated: int = 0
    rows_valid: int = 0
    valid_rows: list[CanonicalRow] = field(default_factory=list)
    errors: list[RowValidationError] = field(default_factory=list)
    rule_counts: Counter = field(default_factory=Counter)

    @property
    def rows_invalid(self) -> int:
        """Distinct invalid rows; a row with several problems counts once."""
        return len({error.row_number for error in self.errors})


def validate_rows(rows: Iterable[CanonicalRow], config: ImportConfig | None = None) -> RowValidationSummary:
    rules = get_lead_rules(config)
    summary = RowValidationSummary()
    for row in rows:
        summary.rows_evaluated += 1
        results = evaluate_rules(row, rules)
        row_errors = _errors_from_results(row, results)
        if row_errors:
            summary.errors.extend(row_errors)
            for result in results:
                summary.rule_counts[result.rule_code] += 1
            continue
        summary.rows_valid += 1
        summary.valid_rows.append(row)
    return summary
