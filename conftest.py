# conftest.py

import os

import pytest

# Set testing environment BEFORE importing app so app.py picks TestingConfig
os.environ["FLASK_ENV"] = "testing"

from app import app as flask_app  # noqa: E402
from leadbook.models import db  # noqa: E402
from leadbook.utils.logging_config import setup_logging  # noqa: E402

TEST_CONFIG = {
    "TESTING": True,
    "SECRET_KEY": "test-secret-key-for-testing-only",
    "LOG_LEVEL": "DEBUG",
    "IMPORTER_ENABLED": False,
    "IMPORTER_WORKER_ENABLED": False,
    "IMPORTER_CHUNK_SIZE": 200,
    "IMPORTER_MAX_ERROR_MESSAGES": 100,
    "IMPORTER_REQUIRE_EMAIL": False,
    "IMPORTER_REQUIRE_PHONE": False,
    "IMPORTER_IDENTITY_SCOPE": "global",
    "IMPORTER_RECORD_DUPLICATE_ACTIVITY": False,
}


@pytest.fixture(scope="function")
def app(tmp_path):
    """
    The application with a fresh schema on the in-memory TestingConfig engine.

    Config edits and importer state (Celery app, progress registry) made by a
    test are undone afterwards.
    """
    saved_config = dict(flask_app.config)
    saved_importer_state = flask_app.extensions.pop("importer", None)
    flask_app.config.update(TEST_CONFIG)
    flask_app.config.update(
        IMPORTER_UPLOAD_DIR=str(tmp_path / "uploads"),
        CELERY_SQLITE_PATH=str(tmp_path / "celery.sqlite"),
    )
    # Re-initialize logging with updated config to pick up LOG_LEVEL=DEBUG
    setup_logging(flask_app)

    try:
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            yield flask_app
            db.session.remove()
            db.drop_all()
    finally:
        flask_app.config.clear()
        flask_app.config.update(saved_config)
        flask_app.extensions.pop("importer", None)
        if saved_importer_state is not None:
            flask_app.extensions["importer"] = saved_importer_state


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask application"""
    return app.test_cli_runner()
