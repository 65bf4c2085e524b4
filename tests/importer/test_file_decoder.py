import zipfile

import pytest
from openpyxl import Workbook

from leadbook.importer.adapters import decode_upload, detect_upload_kind, iter_upload_rows
from leadbook.importer.errors import UnsupportedUploadError, UploadDecodeError


def _write_xlsx(path, rows):
    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    workbook.save(path)
    return path


def test_detect_upload_kind():
    assert detect_upload_kind("leads.CSV") == "csv"
    assert detect_upload_kind("leads.xlsx") == "xlsx"
    with pytest.raises(UnsupportedUploadError, match="txt"):
        detect_upload_kind("leads.txt")


def test_csv_rows_are_decoded_and_file_removed(tmp_path):
    path = tmp_path / "leads.csv"
    path.write_text(
        "\ufeffcompanyName,country,contactEmail\n"
        "Acme,US,a@x.com\n"
        ",,\n"
        "Beta,UK,b@x.com,extra-cell\n",
        encoding="utf-8",
    )

    rows = decode_upload(path)

    assert rows == [
        {"companyName": "Acme", "country": "US", "contactEmail": "a@x.com"},
        {"companyName": "Beta", "country": "UK", "contactEmail": "b@x.com"},
    ]
    assert not path.exists()


def test_keep_file_leaves_upload_in_place(tmp_path):
    path = tmp_path / "leads.csv"
    path.write_text("companyName,country\nAcme,US\n", encoding="utf-8")

    assert list(iter_upload_rows(path, keep_file=True)) == [{"companyName": "Acme", "country": "US"}]
    assert path.exists()


def test_xlsx_rows_use_first_sheet_header(tmp_path):
    path = _write_xlsx(
        tmp_path / "leads.xlsx",
        [
            ["companyName", "country", "contactPhone", None],
            ["Acme", "US", 5551234567, None],
            [None, None, None, None],
            ["Beta", "UK", None, "ignored"],
        ],
    )

    rows = decode_upload(path)

    assert rows == [
        {"companyName": "Acme", "country": "US", "contactPhone": 5551234567},
        {"companyName": "Beta", "country": "UK", "contactPhone": None},
    ]
    assert not path.exists()


def test_corrupt_xlsx_raises_decode_error_and_is_removed(tmp_path):
    path = tmp_path / "broken.xlsx"
    path.write_bytes(b"not a zip archive")

    with pytest.raises(UploadDecodeError):
        decode_upload(path)
    assert not path.exists()


def test_zip_without_workbook_parts_raises_decode_error(tmp_path):
    path = tmp_path / "empty.xlsx"
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr("notes.txt", "not a workbook")

    with pytest.raises(UploadDecodeError, match="missing workbook part"):
        decode_upload(path)
    assert not path.exists()
