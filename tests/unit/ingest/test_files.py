"""Tests for upload validation and text extraction."""

from __future__ import annotations

import io

import openpyxl
import pypdf
import pytest

from lectern.errors import AcquisitionError, UnsupportedFileError
from lectern.ingest.files import (
    FileKind,
    extract_csv,
    extract_pdf,
    extract_spreadsheet,
    extract_text,
    object_name,
    read_text,
    resolve_kind,
    validate_upload,
)


def _workbook_bytes(sheets: dict[str, list[list]]) -> bytes:
    wb = openpyxl.Workbook()
    wb.remove(wb.active)
    for title, rows in sheets.items():
        ws = wb.create_sheet(title)
        for row in rows:
            ws.append(row)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def _blank_pdf_bytes() -> bytes:
    writer = pypdf.PdfWriter()
    writer.add_blank_page(width=72, height=72)
    buf = io.BytesIO()
    writer.write(buf)
    return buf.getvalue()


# ------------------------------------------------------------------
# Kinds and validation
# ------------------------------------------------------------------


def test_object_name():
    assert object_name("abc", "report.pdf") == "sources/abc/report.pdf"


@pytest.mark.parametrize(
    "filename,kind",
    [
        ("notes.txt", FileKind.PLAIN_TEXT),
        ("README.MD", FileKind.MARKDOWN),
        ("paper.pdf", FileKind.PDF),
        ("budget.xlsx", FileKind.SPREADSHEET),
        ("export.csv", FileKind.CSV),
    ],
)
def test_resolve_kind_by_extension(filename, kind):
    assert resolve_kind(filename) is kind


def test_resolve_kind_falls_back_to_content_type():
    assert resolve_kind("upload", "text/csv; charset=utf-8") is FileKind.CSV


def test_resolve_kind_unknown_raises():
    with pytest.raises(UnsupportedFileError, match="Unsupported file type"):
        resolve_kind("setup.exe", "application/octet-stream")


def test_validate_upload_accepts_allowed_file():
    assert validate_upload("doc.pdf", 1024) is FileKind.PDF


@pytest.mark.parametrize("filename", ["legacy.xls", "image.png", "noext"])
def test_validate_upload_rejects_extension(filename):
    with pytest.raises(UnsupportedFileError):
        validate_upload(filename, 10)


def test_validate_upload_rejects_empty_file():
    with pytest.raises(UnsupportedFileError, match="empty"):
        validate_upload("notes.txt", 0)


def test_validate_upload_rejects_oversized_file():
    validate_upload("notes.txt", 1024 * 1024, max_upload_mb=1)  # exactly at the limit
    with pytest.raises(UnsupportedFileError, match="1 MB"):
        validate_upload("notes.txt", 1024 * 1024 + 1, max_upload_mb=1)


def test_file_kind_content_type():
    assert FileKind.PDF.content_type == "application/pdf"


# ------------------------------------------------------------------
# Extractors
# ------------------------------------------------------------------


def test_read_text_decodes_and_strips():
    assert read_text(b"  hello\nworld \n") == "hello\nworld"


def test_read_text_replaces_invalid_utf8():
    assert read_text(b"caf\xff") == "caf\ufffd"


def test_read_text_empty_raises():
    with pytest.raises(AcquisitionError, match="file is empty"):
        read_text(b"  \n ")


def test_extract_csv_tab_joins_rows():
    data = b"name,qty\nbolts,10\n\nnuts,5,extra\n"
    assert extract_csv(data) == "name\tqty\nbolts\t10\nnuts\t5\textra"


def test_extract_csv_empty_raises():
    with pytest.raises(AcquisitionError, match="no data found in CSV file"):
        extract_csv(b"")


def test_extract_spreadsheet_renders_every_sheet():
    data = _workbook_bytes(
        {
            "Parts": [["name", "qty"], ["bolt", 10], [None, None]],
            "Notes": [["remember to reorder"]],
        }
    )
    text = extract_spreadsheet(data)
    assert text == (
        "=== Sheet: Parts ===\nname\tqty\nbolt\t10"
        "\n\n=== Sheet: Notes ===\nremember to reorder"
    )


def test_extract_spreadsheet_without_rows_raises():
    with pytest.raises(AcquisitionError, match="no data could be extracted"):
        extract_spreadsheet(_workbook_bytes({"Empty": []}))


def test_extract_spreadsheet_garbage_raises():
    with pytest.raises(AcquisitionError, match="failed to open spreadsheet"):
        extract_spreadsheet(b"not a zip file")


def test_extract_pdf_garbage_raises():
    with pytest.raises(AcquisitionError):
        extract_pdf(b"%PDF-1.4 truncated garbage")


def test_extract_pdf_without_text_raises():
    with pytest.raises(AcquisitionError, match="no text could be extracted from PDF"):
        extract_pdf(_blank_pdf_bytes())


def test_extract_text_dispatches_by_kind():
    assert extract_text(b"a,b\n", FileKind.CSV) == "a\tb"
    assert extract_text(b"# Title", FileKind.MARKDOWN) == "# Title"
