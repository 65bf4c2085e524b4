"""
Tests for the chunked merge/create executor.
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError

from leadbook.importer.errors import ERROR_TYPE_WRITE
from leadbook.importer.pipeline.executor import ImportContext, ImportCounters, ImportExecutor, chunk_decisions
from leadbook.importer.pipeline.normalize import normalize_row
from leadbook.importer.pipeline.resolver import IdentityResolver
from leadbook.importer.store import LeadStore
from leadbook.models import Lead, LeadSource, LeadStatus, db

IMPORTED_AT = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store(app):
    return LeadStore()


@pytest.fixture
def plan_for(store, lead_row):
    def _plan(*overrides):
        rows = [normalize_row(lead_row(**fields), index) for index, fields in enumerate(overrides)]
        return IdentityResolver(store).resolve(rows)

    return _plan


def _context(total, **overrides):
    values = {
        "batch_id": "import_1_abc1234",
        "owner_identity": "owner-1",
        "total_count": total,
        "file_name": "leads.csv",
        "group_id": "group-7",
        "imported_at": IMPORTED_AT,
    }
    values.update(overrides)
    return ImportContext(**values)


def test_activity_note_mentions_file_and_group():
    assert _context(1).activity_note(2) == (
        'Lead imported via bulk upload from "leads.csv" with group assignment (batch import_1_abc1234, 2 contact(s))'
    )
    assert _context(1, file_name=None, group_id=None).activity_note() == "Lead imported via bulk upload (batch import_1_abc1234)"


def test_chunk_decisions_splits_in_order():
    assert chunk_decisions([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
    assert chunk_decisions([1], 0) == [[1]]


def test_create_writes_lead_contacts_provenance_and_activity(store, plan_for):
    plan = plan_for({"email": "a@x.com", "leadStatus": "Interested"}, {"email": "b@x.com"})

    counters = ImportExecutor(store).apply(plan, _context(2), ImportCounters(total=2))

    assert counters.successful == 2
    assert counters.processed == 2
    lead = db.session.execute(db.select(Lead)).scalar_one()
    assert lead.status == LeadStatus.INTERESTED
    assert lead.source == LeadSource.IMPORTED
    assert lead.owner_identity == "owner-1"
    assert lead.group_id == "group-7"
    assert lead.import_batch_id == "import_1_abc1234"
    assert lead.import_file_name == "leads.csv"
    assert lead.import_total_count == 2
    assert [contact.primary_email for contact in lead.contacts] == ["a@x.com", "b@x.com"]
    assert [contact.position for contact in lead.contacts] == [0, 1]
    (activity,) = lead.activities
    assert activity.status == LeadStatus.INTERESTED
    assert activity.actor_identity == "owner-1"
    assert activity.notes.startswith('Lead imported via bulk upload from "leads.csv" with group assignment')
    assert "2 contact(s)" in activity.notes


def test_merge_appends_contacts_and_activity(store, plan_for, make_lead):
    existing = make_lead("Acme", emails=("a@x.com",))
    plan = plan_for({"email": "c@x.com"})

    counters = ImportExecutor(store).apply(plan, _context(1), ImportCounters(total=1))

    assert counters.merged == 1
    lead = db.session.get(Lead, existing.id)
    assert [contact.primary_email for contact in lead.contacts] == ["a@x.com", "c@x.com"]
    assert lead.contacts[1].position == 1
    assert lead.activities[-1].notes.endswith("(batch import_1_abc1234, 1 contact(s)); merged into existing lead")
    assert db.session.execute(db.select(db.func.count(Lead.id))).scalar() == 1


def test_duplicates_write_nothing_by_default(store, plan_for, make_lead):
    existing = make_lead("Acme", emails=("a@x.com",))
    plan = plan_for({"email": "a@x.com"})

    counters = ImportExecutor(store).apply(plan, _context(1), ImportCounters(total=1))

    assert counters.duplicates_in_store == 1
    assert db.session.get(Lead, existing.id).activities == []


def test_duplicate_activity_can_be_recorded(store, plan_for, make_lead):
    existing = make_lead("Acme", emails=("a@x.com",))
    plan = plan_for({"email": "a@x.com"})

    ImportExecutor(store).apply(plan, _context(1, record_duplicate_activity=True), ImportCounters(total=1))

    (activity,) = db.session.get(Lead, existing.id).activities
    assert "duplicate rows skipped (1)" in activity.notes


def test_failed_chunk_is_rolled_back_and_later_chunks_continue(store, plan_for, monkeypatch):
    plan = plan_for(
        {"company": "Alpha", "email": "a@x.com"},
        {"company": "Beta", "email": "b@x.com"},
        {"company": "Gamma", "email": "c@x.com"},
    )
    executor = ImportExecutor(store, chunk_size=1)
    original = executor.apply_decision

    def flaky_apply(decision, context):
        result = original(decision, context)
        if decision.company_name == "Beta":
            raise OperationalError("INSERT INTO leads", {}, Exception("database is locked"))
        return result

    monkeypatch.setattr(executor, "apply_decision", flaky_apply)
    seen = []

    counters = executor.apply(plan, _context(3), ImportCounters(total=3), on_chunk=lambda c, r: seen.append(r))

    assert [result.ok for result in seen] == [True, False, True]
    assert counters.successful == 2
    assert counters.skipped == 1
    assert counters.is_balanced()
    names = db.session.execute(db.select(Lead.company_name).order_by(Lead.id)).scalars().all()
    assert names == ["Alpha", "Gamma"]
    (error,) = executor.write_errors
    assert error.row_number == 3
    assert error.error_type == ERROR_TYPE_WRITE
    assert "database is locked" in error.message
    assert seen[1].error.row_numbers == (3,)


def test_counters_balance_across_outcomes():
    counters = ImportCounters(total=6).add(skipped=1, duplicates_in_file=1)
    counters = counters.add(successful=2, merged=1, duplicates_in_store=1)

    assert counters.duplicates == 2
    assert counters.is_balanced()
    assert not ImportCounters(total=2, successful=1).is_balanced()
