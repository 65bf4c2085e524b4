import pytest

from leadbook.importer import get_celery_app
from leadbook.importer.utils import stage_upload
from leadbook.models import Lead, db


@pytest.fixture
def import_task(importer_app):
    celery_app = get_celery_app(importer_app)
    return celery_app.tasks["importer.pipeline.import_leads"]


def test_import_task_runs_pipeline_and_removes_upload(importer_app, import_task, write_csv, lead_row):
    staged = stage_upload(
        write_csv([lead_row(company="Acme", email="a@x.com"), lead_row(company="Beta", phone=None)]),
        importer_app,
    )

    result = import_task.apply(
        kwargs={
            "file_path": str(staged),
            "owner_identity": "owner-1",
            "file_name": "leads.csv",
            "batch_id": "import_6_fffffff",
            "require_phone": True,
        }
    )
    payload = result.get()

    assert payload["batch_id"] == "import_6_fffffff"
    assert payload["status"] == "completed"
    assert payload["successful"] == 1
    assert payload["skipped_rows"] == 1
    assert "task_id" in payload
    assert not staged.exists()
    names = db.session.execute(db.select(Lead.company_name)).scalars().all()
    assert names == ["Acme"]


def test_import_task_missing_file_raises(importer_app, import_task, tmp_path):
    with pytest.raises(FileNotFoundError):
        import_task.apply(kwargs={"file_path": str(tmp_path / "gone.csv"), "owner_identity": "owner-1"}).get()


def test_healthcheck_task_reports_ok(importer_app):
    celery_app = get_celery_app(importer_app)

    payload = celery_app.tasks["importer.healthcheck"].apply().get()

    assert payload["status"] == "ok"
