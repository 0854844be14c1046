"""
Per-format extractors
═════════════════════

Each extractor takes the raw file bytes and returns text. They are plain
synchronous functions; the dispatcher runs them in a thread executor.

Failure contract:
  extract_plain_text   never fails (malformed UTF-8 is replaced)
  extract_spreadsheet  raises ExtractorError on an unreadable workbook
  extract_docx         raises ExtractorError on an unreadable package
  extract_image_text   never raises — OCR failure degrades to a fixed
                       advisory, since many images simply contain no text

Third-party parsers are imported inside each function so a missing
optional engine only affects its own format.
"""

from __future__ import annotations

import io
import logging

from tutorchat.core.errors import ExtractorError
from tutorchat.extraction.sentinels import OCR_UNAVAILABLE_ADVISORY

logger = logging.getLogger(__name__)

_UTF8_BOM = "\ufeff"


# ---------------------------------------------------------------------------
# Plain text
# ---------------------------------------------------------------------------

def extract_plain_text(data: bytes) -> str:
    text = data.decode("utf-8", errors="replace")
    if text.startswith(_UTF8_BOM):
        text = text[len(_UTF8_BOM):]
    return text


# ---------------------------------------------------------------------------
# Spreadsheet (openpyxl)
# ---------------------------------------------------------------------------

def _cell_text(value: object) -> str:
    return "" if value is None else str(value)


def extract_spreadsheet(data: bytes) -> str:
    """
    Dump every sheet as tab-separated rows, each prefixed with its name:

        Sheet: Grades
        name<TAB>score
        Ada<TAB>97

    Empty rows are skipped. Legacy BIFF .xls files are not OOXML
    and fail here as an unreadable workbook.
    """
    from openpyxl import load_workbook

    try:
        workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except Exception as exc:
        raise ExtractorError(f"Could not open workbook: {exc}") from exc

    parts: list[str] = []
    try:
        for sheet in workbook.worksheets:
            lines: list[str] = []
            for row in sheet.iter_rows(values_only=True):
                cells = [_cell_text(cell) for cell in row]
                if any(cell.strip() for cell in cells):
                    lines.append("\t".join(cells).rstrip("\t"))
            parts.append(f"Sheet: {sheet.title}\n" + "\n".join(lines) + "\n\n")
    except Exception as exc:
        raise ExtractorError(f"Could not read workbook: {exc}") from exc
    finally:
        workbook.close()

    return "".join(parts)


# ---------------------------------------------------------------------------
# Word document (python-docx)
# ---------------------------------------------------------------------------

def extract_docx(data: bytes) -> str:
    """Raw paragraph text, followed by table cell text row by row."""
    import docx

    try:
        document = docx.Document(io.BytesIO(data))
    except Exception as exc:
        raise ExtractorError(f"Could not open DOCX package: {exc}") from exc

    lines = [para.text for para in document.paragraphs if para.text.strip()]
    for table in document.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells]
            if any(cells):
                lines.append("\t".join(cells))
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Image OCR (pytesseract + Pillow)
# ---------------------------------------------------------------------------

def extract_image_text(data: bytes) -> str:
    try:
        import pytesseract
        from PIL import Image

        with Image.open(io.BytesIO(data)) as image:
            text = pytesseract.image_to_string(image)
    except Exception as exc:
        logger.warning("OCR unavailable, using advisory | error=%s", exc)
        return OCR_UNAVAILABLE_ADVISORY

    if not text or not text.strip():
        return OCR_UNAVAILABLE_ADVISORY
    return text
