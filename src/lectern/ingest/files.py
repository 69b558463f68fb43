"""Uploaded-file validation and text extraction.

Supported kinds are a closed set, each with a pure ``bytes -> str``
extractor. Every extractor raises AcquisitionError when the file yields no
text, so an empty upload fails its source instead of indexing nothing.
"""

from __future__ import annotations

import csv
import io
import os
from collections.abc import Callable
from enum import Enum

import openpyxl
import pypdf
from pypdf.errors import PyPdfError

from lectern.errors import AcquisitionError, UnsupportedFileError


class FileKind(str, Enum):
    PLAIN_TEXT = "text/plain"
    MARKDOWN = "text/markdown"
    PDF = "application/pdf"
    SPREADSHEET = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    CSV = "text/csv"

    @property
    def content_type(self) -> str:
        return self.value


_EXTENSIONS: dict[str, FileKind] = {
    ".txt": FileKind.PLAIN_TEXT,
    ".md": FileKind.MARKDOWN,
    ".pdf": FileKind.PDF,
    ".xlsx": FileKind.SPREADSHEET,
    ".csv": FileKind.CSV,
}

ALLOWED_EXTENSIONS = tuple(_EXTENSIONS)


def object_name(source_id: str, filename: str) -> str:
    """Blob name under which a source's file is stored."""
    return f"sources/{source_id}/{filename}"


def resolve_kind(filename: str, content_type: str = "") -> FileKind:
    """Map *filename* (extension first) or *content_type* to a FileKind.

    Raises:
        UnsupportedFileError: If neither identifies a supported kind.
    """
    ext = os.path.splitext(filename)[1].lower()
    if ext in _EXTENSIONS:
        return _EXTENSIONS[ext]
    ct = content_type.split(";")[0].strip().lower()
    for kind in FileKind:
        if kind.value == ct:
            return kind
    raise UnsupportedFileError(
        f"Unsupported file type '{ext or content_type or filename}'. "
        f"Allowed: {', '.join(ALLOWED_EXTENSIONS)}"
    )


def validate_upload(filename: str, size: int, max_upload_mb: int = 100) -> FileKind:
    """Check an upload before anything is stored.

    Raises:
        UnsupportedFileError: For an extension outside the allow-list, an
            empty file, or a file above *max_upload_mb*.
    """
    ext = os.path.splitext(filename)[1].lower()
    if ext not in _EXTENSIONS:
        raise UnsupportedFileError(
            f"Unsupported file type '{ext or filename}'. "
            f"Allowed: {', '.join(ALLOWED_EXTENSIONS)}"
        )
    if size <= 0:
        raise UnsupportedFileError(f"File '{filename}' is empty.")
    if size > max_upload_mb * 1024 * 1024:
        raise UnsupportedFileError(
            f"File '{filename}' exceeds the {max_upload_mb} MB upload limit."
        )
    return _EXTENSIONS[ext]


# ---------------------------------------------------------------------------
# Extractors
# ---------------------------------------------------------------------------


def read_text(data: bytes) -> str:
    """Decode plain text or markdown (invalid UTF-8 is replaced)."""
    text = data.decode("utf-8", errors="replace").strip()
    if not text:
        raise AcquisitionError("file is empty")
    return text


def extract_pdf(data: bytes) -> str:
    """Extract page text with pypdf; pages are separated by a blank line."""
    try:
        reader = pypdf.PdfReader(io.BytesIO(data))
        pages = [(page.extract_text() or "").strip() for page in reader.pages]
    except (PyPdfError, ValueError) as exc:
        raise AcquisitionError(f"failed to read PDF: {exc}") from exc
    text = "\n\n".join(p for p in pages if p)
    if not text:
        raise AcquisitionError("no text could be extracted from PDF")
    return text


def extract_spreadsheet(data: bytes) -> str:
    """Render every sheet as a header line followed by tab-joined rows."""
    try:
        workbook = openpyxl.load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except Exception as exc:  # openpyxl surfaces zip, xml and key errors alike
        raise AcquisitionError(f"failed to open spreadsheet: {exc}") from exc

    parts: list[str] = []
    row_count = 0
    try:
        for sheet in workbook.worksheets:
            lines = [f"=== Sheet: {sheet.title} ==="]
            for row in sheet.iter_rows(values_only=True):
                cells = ["" if cell is None else str(cell) for cell in row]
                if any(c.strip() for c in cells):
                    lines.append("\t".join(cells))
                    row_count += 1
            parts.append("\n".join(lines))
    finally:
        workbook.close()

    if row_count == 0:
        raise AcquisitionError("no data could be extracted from spreadsheet")
    return "\n\n".join(parts)


def extract_csv(data: bytes) -> str:
    """Render CSV records as tab-joined lines; ragged rows are allowed."""
    text = data.decode("utf-8", errors="replace")
    try:
        rows = [row for row in csv.reader(io.StringIO(text)) if row]
    except csv.Error as exc:
        raise AcquisitionError(f"failed to read CSV file: {exc}") from exc
    if not rows:
        raise AcquisitionError("no data found in CSV file")
    return "\n".join("\t".join(row) for row in rows)


_EXTRACTORS: dict[FileKind, Callable[[bytes], str]] = {
    FileKind.PLAIN_TEXT: read_text,
    FileKind.MARKDOWN: read_text,
    FileKind.PDF: extract_pdf,
    FileKind.SPREADSHEET: extract_spreadsheet,
    FileKind.CSV: extract_csv,
}


def extract_text(data: bytes, kind: FileKind) -> str:
    """Extract text from *data* with the extractor registered for *kind*."""
    return _EXTRACTORS[FileKind(kind)](data)
