"""Spreadsheet decoding for lead uploads.

Reads CSV (stdlib ``csv``) and XLSX (``openpyxl``) uploads into ordered row
mappings keyed by the header row. Uploads are temporary: the file is removed
once it has been fully read, or as soon as decoding fails.
"""

from __future__ import annotations

import csv
import zipfile
from pathlib import Path
from typing import Iterator

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from leadbook.importer.errors import UnsupportedUploadError, UploadDecodeError
from leadbook.importer.utils import cleanup_upload

RawRow = dict[str, object]

UPLOAD_KINDS = {
    ".csv": "csv",
    ".xlsx": "xlsx",
    ".xlsm": "xlsx",
}


def detect_upload_kind(filename: str | Path) -> str:
    """Map a filename's extension onto a decoder kind (``csv`` or ``xlsx``)."""

    suffix = Path(str(filename)).suffix.lower()
    kind = UPLOAD_KINDS.get(suffix)
    if kind is None:
        raise UnsupportedUploadError(suffix.lstrip(".") or "unknown")
    return kind


def _sanitize_header(header: object | None) -> str:
    token = "" if header is None else str(header)
    return token.strip().lstrip("\ufeff")


def _row_is_blank(values) -> bool:
    return all(value is None or (isinstance(value, str) and value.strip() == "") for value in values)


def _iter_csv(path: Path) -> Iterator[RawRow]:
    with path.open("r", encoding="utf-8-sig", newline="") as handle:
        reader = csv.DictReader(handle)
        if reader.fieldnames is None:
            return
        reader.fieldnames = [_sanitize_header(name) for name in reader.fieldnames]
        for row in reader:
            # Cells beyond the header land under the ``None`` key
            row.pop(None, None)
            if _row_is_blank(row.values()):
                continue
            yield dict(row)


def _open_workbook(path: Path):
    try:
        return load_workbook(filename=str(path), read_only=True, data_only=True)
    except KeyError as exc:
        # Zip archive lacking [Content_Types].xml or the workbook part
        raise InvalidFileException(f"missing workbook part: {exc}") from exc


def _iter_xlsx(path: Path) -> Iterator[RawRow]:
    workbook = _open_workbook(path)
    try:
        sheet = workbook.worksheets[0]
        rows = sheet.iter_rows(values_only=True)
        header_row = next(rows, None)
        if header_row is None:
            return
        headers = [_sanitize_header(cell) for cell in header_row]
        for values in rows:
            if values is None or _row_is_blank(values):
                continue
            row: RawRow = {}
            for position, header in enumerate(headers):
                if not header:
                    continue
                value = values[position] if position < len(values) else None
                row.setdefault(header, value)
            yield row
    finally:
        workbook.close()


def iter_upload_rows(path: Path, kind: str | None = None, *, keep_file: bool = False) -> Iterator[RawRow]:
    """
    Yield the data rows of an upload in file order.

    The file is deleted when iteration finishes or fails unless
    ``keep_file`` is set.
    """

    path = Path(path)
    kind = kind or detect_upload_kind(path)
    if kind == "csv":
        reader = _iter_csv
    elif kind == "xlsx":
        reader = _iter_xlsx
    else:
        raise UnsupportedUploadError(kind)

    try:
        yield from reader(path)
    except (csv.Error, UnicodeDecodeError) as exc:
        raise UploadDecodeError(f"Could not read CSV upload {path.name}: {exc}") from exc
    except (InvalidFileException, zipfile.BadZipFile) as exc:
        raise UploadDecodeError(f"Could not read spreadsheet upload {path.name}: {exc}") from exc
    finally:
        if not keep_file:
            cleanup_upload(path)


def decode_upload(path: Path, kind: str | None = None, *, keep_file: bool = False) -> list[RawRow]:
    """Read every row of an upload into memory (see :func:`iter_upload_rows`)."""

    return list(iter_upload_rows(path, kind, keep_file=keep_file))
