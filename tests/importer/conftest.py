from __future__ import annotations

import csv
from pathlib import Path

import pytest

from leadbook.importer import init_importer
from leadbook.importer.progress import ProgressRegistry
from leadbook.models import Lead, LeadContact, LeadSource, LeadStatus, db


@pytest.fixture
def importer_app(app):
    app.config.update(
        {
            "IMPORTER_ENABLED": True,
            "IMPORTER_WORKER_ENABLED": True,
            "CELERY_CONFIG": {"task_always_eager": True, "task_eager_propagates": True},
        }
    )
    init_importer(app)
    yield app


@pytest.fixture
def registry():
    """A private progress registry so tests do not see each other's batches."""
    return ProgressRegistry(ttl_seconds=60, done_grace_seconds=10)


def _lead_row(company="Acme", country="US", first_name="Ann", email=None, phone="555 123 4567", **extra):
    row = {
        "companyName": company,
        "country": country,
        "contactFirstName": first_name,
        "contactEmail": email,
        "contactPhone": phone,
    }
    row.update(extra)
    return row


@pytest.fixture
def lead_row():
    """Build a raw upload row using the camelCase headers of the lead template."""
    return _lead_row


@pytest.fixture
def make_lead():
    def _factory(company_name="Acme", *, website=None, emails=("a@x.com",), owner="owner-1", country="US"):
        from leadbook.importer.pipeline.normalize import normalize_website

        lead = Lead(
            company_name=company_name,
            website=website,
            website_normalized=normalize_website(website) or None,
            country=country,
            status=LeadStatus.NEW,
            source=LeadSource.MANUAL,
            owner_identity=owner,
        )
        lead.contacts = [
            LeadContact(position=index, first_name="Existing", emails=[email], phones=[], primary_email=email)
            for index, email in enumerate(emails)
        ]
        db.session.add(lead)
        db.session.commit()
        return lead

    return _factory


@pytest.fixture
def write_csv(tmp_path):
    def _write(rows, name="leads.csv", headers=None) -> Path:
        path = tmp_path / name
        headers = headers or list(rows[0].keys())
        with path.open("w", encoding="utf-8", newline="") as handle:
            writer = csv.DictWriter(handle, fieldnames=headers)
            writer.writeheader()
            for row in rows:
                writer.writerow({key: "" if value is None else value for key, value in row.items()})
        return path

    return _write
