# app.py

import logging
import os

from dotenv import load_dotenv
from flask import Flask
from sqlalchemy import event

# Load environment variables from .env file first
load_dotenv()

# Module imports after load_dotenv() - E402 is intentional
from config import DevelopmentConfig, ProductionConfig, TestingConfig  # noqa: E402
from leadbook.importer import init_importer  # noqa: E402
from leadbook.models import db  # noqa: E402
from leadbook.utils.logging_config import setup_logging  # noqa: E402

logger = logging.getLogger(__name__)

CONFIG_BY_ENV = {
    "production": ProductionConfig,
    "testing": TestingConfig,
}

# Applied to every new SQLite connection; busy_timeout lets a locked import chunk fail instead of hanging.
SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA busy_timeout=5000",
)


def _install_sqlite_pragmas(engine, *, foreign_keys: bool) -> None:
    if getattr(engine, "_leadbook_pragmas", False):
        return
    statements = SQLITE_PRAGMAS + (("PRAGMA foreign_keys=ON",) if foreign_keys else ())

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # pragma: no cover - instrumentation
        cursor = dbapi_connection.cursor()
        try:
            for statement in statements:
                cursor.execute(statement)
        except Exception as exc:
            logger.warning("Failed to apply SQLite PRAGMAs: %s", exc)
        finally:
            cursor.close()

    engine._leadbook_pragmas = True  # type: ignore[attr-defined]


app = Flask(__name__)

flask_env = os.environ.get("FLASK_ENV", "development")
app.config.from_object(CONFIG_BY_ENV.get(flask_env, DevelopmentConfig))

db.init_app(app)
setup_logging(app)

with app.app_context():
    if db.engine.url.drivername.startswith("sqlite"):
        _install_sqlite_pragmas(db.engine, foreign_keys=not app.config.get("TESTING", False))
    # Tests build their own schema per case
    if not app.config.get("TESTING", False):
        db.create_all()

init_importer(app)


if __name__ == "__main__":
    app.run(debug=app.config.get("DEBUG", False))
