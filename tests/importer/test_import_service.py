"""
End-to-end tests for LeadImportService.import_batch.

Covers the summary accounting, schema rejection with zero writes, re-import
idempotency, error capping, progress stages and audit entries.
"""

import pytest
from sqlalchemy.exc import OperationalError

from leadbook.importer.audit import ACTION_BULK_IMPORT, ACTION_BULK_IMPORT_REJECTED
from leadbook.importer.pipeline import ImportConfig, LeadImportService, import_batch
from leadbook.importer.progress import ImportStage
from leadbook.models import AuditLog, Lead, LeadContact, db


@pytest.fixture
def service(app, registry):
    return LeadImportService(progress=registry)


def _lead_count():
    return db.session.execute(db.select(db.func.count(Lead.id))).scalar()


def _audit_entries(action):
    return db.session.execute(db.select(AuditLog).where(AuditLog.action == action)).scalars().all()


def test_first_import_creates_and_reimport_is_all_duplicates(service, lead_row):
    rows = [
        lead_row(company="Acme", email="a@x.com"),
        lead_row(company="Acme", email="b@x.com"),
        lead_row(company="Beta", email="a@x.com"),
    ]

    first = service.import_batch(rows, "owner-1", file_name="leads.csv", batch_id="import_1_aaaaaaa")

    assert first.status == "completed"
    assert first.total == 3
    assert first.successful == 3
    assert first.duplicates_in_db == 0
    assert first.is_balanced
    assert _lead_count() == 2
    assert db.session.execute(db.select(db.func.count(LeadContact.id))).scalar() == 3

    second = service.import_batch(rows, "owner-1", file_name="leads.csv")

    assert second.successful == 0
    assert second.merged == 0
    assert second.duplicates_in_db == 3
    assert second.is_balanced
    assert _lead_count() == 2
    assert {error.error_type for error in second.error_rows} == {"duplicate"}


def test_schema_rejection_writes_nothing(service, registry):
    rows = [{"Organisation Size": "50", "contactEmail": "a@x.com"}, {"contactEmail": "b@x.com"}]

    summary = service.import_batch(rows, "owner-1", file_name="bad.csv", batch_id="import_2_bbbbbbb")

    assert summary.status == "failed"
    assert summary.total == 2
    assert summary.skipped_rows == 2
    assert summary.successful == 0
    assert summary.is_balanced
    assert any("company name" in error for error in summary.errors)
    assert summary.schema is not None and not summary.schema.valid
    assert _lead_count() == 0
    (audit,) = _audit_entries(ACTION_BULK_IMPORT_REJECTED)
    assert audit.actor_identity == "owner-1"
    assert audit.data_json["file_name"] == "bad.csv"
    assert registry.latest("import_2_bbbbbbb").stage == ImportStage.FAILED


def test_mixed_batch_accounts_for_every_row(service, lead_row, make_lead):
    existing = make_lead("Gamma", emails=("g@x.com",))
    rows = [
        lead_row(company="Acme", email="a@x.com"),
        lead_row(company="", country="", first_name=None, email=None, phone=None),
        lead_row(company="Beta", country="", email="b@x.com"),
        lead_row(company="Acme", email="a@x.com"),
        lead_row(company="Gamma", email="h@x.com"),
        lead_row(company="Gamma", email="g@x.com"),
    ]

    summary = service.import_batch(rows, "owner-1", file_name="mixed.csv", group_id="group-1")

    assert summary.counts() == {
        "total": 6,
        "valid_rows": 4,
        "successful": 1,
        "merged": 1,
        "duplicates_in_file": 1,
        "duplicates_in_db": 1,
        "skipped_rows": 2,
        "error_count": 2,
    }
    assert summary.is_balanced
    assert summary.errors == [
        "Row 4: Missing required field country.",
        "Row 5: Duplicate of row 2 in this file for company \"Acme\"; no new contacts.",
    ]
    gamma = db.session.get(Lead, existing.id)
    assert sorted(gamma.contact_emails()) == ["g@x.com", "h@x.com"]


def test_error_messages_are_capped_but_counted(app, registry, lead_row):
    service = LeadImportService(progress=registry, max_error_messages=2)
    rows = [lead_row(company=f"Co {index}", country="") for index in range(5)]

    summary = service.import_batch(rows, "owner-1")

    assert summary.error_count == 5
    assert len(summary.errors) == 2
    assert len(summary.error_rows) == 5
    assert summary.skipped_rows == 5


def test_required_email_override_rejects_phone_only_rows(service, lead_row):
    rows = [lead_row(email=None), lead_row(company="Beta", email="b@x.com")]

    summary = service.import_batch(rows, "owner-1", config=ImportConfig(require_email=True))

    assert summary.successful == 1
    assert summary.skipped_rows == 1
    assert summary.error_rows[0].fields == ("contact_email",)


def test_required_email_rejects_row_with_one_phone_only_contact(service, lead_row):
    rows = [
        lead_row(email="a@x.com", additionalContacts="Bob, , 5551234567"),
        lead_row(company="Beta", email="b@x.com"),
    ]

    summary = service.import_batch(rows, "owner-1", config=ImportConfig(require_email=True))

    assert summary.successful == 1
    assert summary.skipped_rows == 1
    assert summary.errors == ["Row 2: A valid contact email is required (missing for Bob)."]
    assert _lead_count() == 1


def test_reimport_matches_non_ascii_company_names(service, lead_row):
    rows = [lead_row(company="ÄCME Gmbh", email="a@x.com")]

    first = service.import_batch(rows, "owner-1")
    second = service.import_batch([lead_row(company="äcme GMBH", email="a@x.com")], "owner-1")

    assert first.successful == 1
    assert second.successful == 0
    assert second.duplicates_in_db == 1
    assert second.is_balanced
    assert _lead_count() == 1


def test_contacts_without_email_are_never_in_file_duplicates(service, lead_row):
    rows = [
        lead_row(company="Acme", first_name="Ann", email=None, phone="555 123 4567"),
        lead_row(company="Acme", first_name="Ann", email=None, phone="555 123 4567"),
    ]

    summary = service.import_batch(rows, "owner-1")

    assert summary.duplicates_in_file == 0
    assert summary.successful == 2
    assert summary.is_balanced
    (lead,) = db.session.execute(db.select(Lead)).scalars().all()
    assert len(lead.contacts) == 2


def test_lookup_failure_skips_only_that_company(service, registry, lead_row, monkeypatch):
    real_lookup = service.store.find_existing

    def flaky_lookup(company_name, *args, **kwargs):
        if company_name == "Beta":
            raise OperationalError("SELECT leads", {}, Exception("database is locked"))
        return real_lookup(company_name, *args, **kwargs)

    monkeypatch.setattr(service.store, "find_existing", flaky_lookup)
    rows = [
        lead_row(company="Acme", email="a@x.com"),
        lead_row(company="Beta", email="b@x.com"),
        lead_row(company="Beta", email="c@x.com"),
    ]

    summary = service.import_batch(rows, "owner-1", batch_id="import_5_eeeeeee")

    assert summary.status == "completed"
    assert summary.successful == 1
    assert summary.skipped_rows == 2
    assert summary.is_balanced
    assert {error.error_type for error in summary.error_rows} == {"resolution"}
    assert summary.errors[0] == "Row 3: Lookup of existing leads failed (OperationalError)."
    assert _lead_count() == 1
    assert registry.latest("import_5_eeeeeee").stage == ImportStage.DONE


def test_progress_moves_through_stages(service, registry, lead_row):
    seen = []
    registry.listen("import_3_ccccccc", seen.append)
    rows = [lead_row(company=f"Co {index}", email=f"c{index}@x.com") for index in range(3)]

    service.import_batch(rows, "owner-1", batch_id="import_3_ccccccc")

    stages = [snapshot.stage for snapshot in seen]
    assert stages[0] == ImportStage.VALIDATING
    assert ImportStage.DEDUPING in stages
    assert stages[-1] == ImportStage.DONE
    assert [snapshot.processed for snapshot in seen] == sorted(snapshot.processed for snapshot in seen)
    assert seen[-1].processed == 3
    assert seen[-1].inserted == 3
    assert seen[-1].percentage == 100


def test_completed_import_is_audited(service, lead_row):
    summary = service.import_batch([lead_row(email="a@x.com")], "owner-1", file_name="one.csv")

    (audit,) = _audit_entries(ACTION_BULK_IMPORT)
    assert audit.entity_type == "lead"
    assert audit.description == "Bulk imported 1/1 leads."
    assert audit.data_json["batch_id"] == summary.batch_id
    assert audit.data_json["successful"] == 1


def test_owner_scope_creates_separate_leads(app, registry, lead_row, make_lead):
    make_lead("Acme", emails=("a@x.com",), owner="someone-else")
    service = LeadImportService(progress=registry, identity_scope="owner")

    summary = service.import_batch([lead_row(email="a@x.com")], "owner-1")

    assert summary.successful == 1
    assert _lead_count() == 2


def test_unexpected_failure_publishes_failed_and_reraises(service, registry, lead_row, monkeypatch):
    def broken_lookup(*args, **kwargs):
        raise RuntimeError("lookup exploded")

    monkeypatch.setattr(service.store, "find_existing", broken_lookup)

    with pytest.raises(RuntimeError, match="lookup exploded"):
        service.import_batch([lead_row(email="a@x.com")], "owner-1", batch_id="import_4_ddddddd")

    latest = registry.latest("import_4_ddddddd")
    assert latest.stage == ImportStage.FAILED
    assert latest.message == "lookup exploded"


def test_module_level_import_batch_uses_app_config(app, lead_row):
    app.config["IMPORTER_REQUIRE_PHONE"] = True

    summary = import_batch([lead_row(phone=None, email="a@x.com")], "owner-1", file_name="x.csv")

    assert summary.successful == 0
    assert summary.skipped_rows == 1
