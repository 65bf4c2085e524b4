"""
Upload staging, batch ids and JSON helpers shared by the importer entry points.
"""

from __future__ import annotations

import shutil
import time
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable
from uuid import uuid4

from flask import current_app, has_app_context
from werkzeug.utils import secure_filename

DEFAULT_UPLOAD_SUBDIR = "import_uploads"
UPLOAD_EXTENSIONS: tuple[str, ...] = ("csv", "xlsx")


def resolve_upload_directory(app) -> Path:
    """
    Return the directory staged uploads live in, creating it if needed.

    ``IMPORTER_UPLOAD_DIR`` may be absolute or relative to the instance folder.
    """
    configured = app.config.get("IMPORTER_UPLOAD_DIR")
    upload_dir = Path(configured) if configured else Path(DEFAULT_UPLOAD_SUBDIR)
    if not upload_dir.is_absolute():
        upload_dir = Path(app.instance_path) / upload_dir
    upload_dir.mkdir(parents=True, exist_ok=True)
    return upload_dir


def allowed_file(filename: str, allowed_extensions: Iterable[str] = UPLOAD_EXTENSIONS) -> bool:
    if not filename or "." not in filename:
        return False
    return Path(filename).suffix[1:].lower() in {ext.lower() for ext in allowed_extensions}


def stage_upload(source_path: Path, app) -> Path:
    """
    Copy a spreadsheet into the upload directory and return the copy's path.

    Decoding deletes the file it reads, so imports always work on a staged
    copy. The copy gets a random name but keeps the original extension so the
    decoder can pick the right reader.
    """
    extension = Path(secure_filename(source_path.name)).suffix.lower() or ".csv"
    target_path = resolve_upload_directory(app) / f"{uuid4().hex}{extension}"
    shutil.copyfile(source_path, target_path)
    app.logger.debug("Importer upload staged at %s", target_path)
    return target_path


def cleanup_upload(path: Path) -> None:
    """Remove a staged upload; filesystem errors are logged, not raised."""
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        if has_app_context():
            current_app.logger.warning("Failed to remove importer upload %s: %s", path, exc)


def prune_stale_uploads(app, *, max_age_hours: int, now: float | None = None) -> tuple[int, Path]:
    """
    Delete staged uploads last modified more than ``max_age_hours`` ago.

    Returns the number of files removed and the directory that was swept.
    """
    upload_dir = resolve_upload_directory(app)
    cutoff = (now if now is not None else time.time()) - max_age_hours * 3600
    removed = 0
    for path in upload_dir.iterdir():
        try:
            stale = path.is_file() and path.stat().st_mtime < cutoff
        except FileNotFoundError:  # pragma: no cover - removed concurrently
            continue
        if stale:
            cleanup_upload(path)
            removed += 1
    if removed:
        app.logger.info(
            "Pruned stale importer uploads",
            extra={"importer_upload_dir": str(upload_dir), "importer_removed": removed},
        )
    return removed, upload_dir


def generate_batch_id(now: datetime | None = None) -> str:
    """Return an id like ``import_1718000000000_k3j9x2a`` (epoch millis + 7 random chars)."""
    now = now or datetime.now(timezone.utc)
    return f"import_{int(now.timestamp() * 1000)}_{uuid4().hex[:7]}"


def ensure_json_serializable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(key): ensure_json_serializable(inner) for key, inner in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray)):
        return [ensure_json_serializable(item) for item in value]
    return str(value)


def normalize_payload(payload: Mapping[str, Any] | None) -> dict[str, Any]:
    """Shallow copy of an audit payload with JSON-safe values."""
    return {str(key): ensure_json_serializable(value) for key, value in (payload or {}).items()}
