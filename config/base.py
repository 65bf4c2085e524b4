# config/base.py
import os


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


def _coerce_int(value, default, *, minimum=None, maximum=None):
    """
    Parse an integer environment value, falling back to ``default`` when the
    value is missing or malformed and clamping to the optional bounds.
    """
    if value is None or str(value).strip() == "":
        number = default
    else:
        try:
            number = int(str(value).strip())
        except ValueError:
            number = default
    if minimum is not None and number < minimum:
        number = minimum
    if maximum is not None and number > maximum:
        number = maximum
    return number


def _parse_identity_scope(value):
    scope = (value or "global").strip().lower()
    if scope not in {"global", "owner"}:
        return "global"
    return scope


class Config:
    _flask_env = os.environ.get("FLASK_ENV", "development")
    _is_production = _flask_env == "production"

    SECRET_KEY = os.environ.get("SECRET_KEY")
    if not SECRET_KEY and _is_production:
        raise ValueError("SECRET_KEY environment variable is required in production.")
    if not SECRET_KEY:
        SECRET_KEY = "dev-secret-key-change-in-production"

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}
    SQLALCHEMY_ECHO = False

    # Importer configuration
    IMPORTER_ENABLED = _coerce_bool(os.environ.get("IMPORTER_ENABLED"), default=False)
    IMPORTER_WORKER_ENABLED = _coerce_bool(os.environ.get("IMPORTER_WORKER_ENABLED"), default=False)
    IMPORTER_UPLOAD_DIR = os.environ.get("IMPORTER_UPLOAD_DIR")
    IMPORTER_CHUNK_SIZE = _coerce_int(os.environ.get("IMPORTER_CHUNK_SIZE"), 200, minimum=1, maximum=5000)
    IMPORTER_MAX_ERROR_MESSAGES = _coerce_int(os.environ.get("IMPORTER_MAX_ERROR_MESSAGES"), 100, minimum=1)
    IMPORTER_REQUIRE_EMAIL = _coerce_bool(os.environ.get("IMPORTER_REQUIRE_EMAIL"), default=False)
    IMPORTER_REQUIRE_PHONE = _coerce_bool(os.environ.get("IMPORTER_REQUIRE_PHONE"), default=False)
    IMPORTER_IDENTITY_SCOPE = _parse_identity_scope(os.environ.get("IMPORTER_IDENTITY_SCOPE"))
    IMPORTER_RECORD_DUPLICATE_ACTIVITY = _coerce_bool(
        os.environ.get("IMPORTER_RECORD_DUPLICATE_ACTIVITY"),
        default=False,
    )
    IMPORTER_PROGRESS_TTL_SECONDS = _coerce_int(os.environ.get("IMPORTER_PROGRESS_TTL_SECONDS"), 3600, minimum=1)
    IMPORTER_PROGRESS_DONE_GRACE_SECONDS = _coerce_int(
        os.environ.get("IMPORTER_PROGRESS_DONE_GRACE_SECONDS"),
        300,
        minimum=0,
    )
    IMPORTER_TASK_TIME_LIMIT = _coerce_int(os.environ.get("IMPORTER_TASK_TIME_LIMIT"), 15 * 60, minimum=1)
    IMPORTER_TASK_SOFT_TIME_LIMIT = _coerce_int(os.environ.get("IMPORTER_TASK_SOFT_TIME_LIMIT"), 12 * 60, minimum=1)

    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_SQLITE_PATH = os.environ.get("CELERY_SQLITE_PATH")
    CELERY_CONFIG = os.environ.get("CELERY_CONFIG")

    # Logging
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")  # 'json' or 'text'


class DevelopmentConfig(Config):
    DEBUG = True
    # Project root is the parent of the config directory
    _config_dir = os.path.dirname(os.path.abspath(__file__))
    _project_root = os.path.dirname(_config_dir)
    instance_path = os.path.join(_project_root, "instance")

    if not os.path.exists(instance_path):
        os.makedirs(instance_path, exist_ok=True)

    # SQLite URIs need forward slashes, even on Windows
    db_path = os.path.join(instance_path, "leadbook_dev.db").replace("\\", "/")
    db_uri = f"sqlite:///{db_path}"

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", db_uri)
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"), default=False)
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": 5,
            }
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {}
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG")


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {
            "check_same_thread": False,
            "timeout": 5,
        }
    }
    IMPORTER_ENABLED = False
    IMPORTER_WORKER_ENABLED = False


class ProductionConfig(Config):
    DEBUG = False
    uri = os.environ.get("DATABASE_URL")
    if uri and uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = uri
    SQLALCHEMY_ECHO = False
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")
