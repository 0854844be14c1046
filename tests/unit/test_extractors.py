"""
Unit Tests — Per-format Extractors
══════════════════════════════════
Documents are built in memory with the same libraries that parse them,
so no fixtures on disk are needed.
"""

from __future__ import annotations

import io
from unittest.mock import patch

import pytest

from tutorchat.core.errors import ExtractorError
from tutorchat.extraction import extractors
from tutorchat.extraction.sentinels import OCR_UNAVAILABLE_ADVISORY


# ─────────────────────────────────────────────────────────────────────────────
# Builders
# ─────────────────────────────────────────────────────────────────────────────

def _xlsx_bytes(sheets: dict[str, list[list]]) -> bytes:
    from openpyxl import Workbook

    workbook = Workbook()
    workbook.remove(workbook.active)
    for title, rows in sheets.items():
        sheet = workbook.create_sheet(title)
        for row in rows:
            sheet.append(row)
    buf = io.BytesIO()
    workbook.save(buf)
    return buf.getvalue()


def _docx_bytes(paragraphs: list[str], table: list[list[str]] | None = None) -> bytes:
    import docx

    document = docx.Document()
    for text in paragraphs:
        document.add_paragraph(text)
    if table:
        grid = document.add_table(rows=len(table), cols=len(table[0]))
        for r, row in enumerate(table):
            for c, value in enumerate(row):
                grid.cell(r, c).text = value
    buf = io.BytesIO()
    document.save(buf)
    return buf.getvalue()


def _png_bytes() -> bytes:
    from PIL import Image

    buf = io.BytesIO()
    Image.new("RGB", (8, 8), "white").save(buf, format="PNG")
    return buf.getvalue()


# ─────────────────────────────────────────────────────────────────────────────
# Plain text
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestPlainText:

    def test_csv_is_returned_verbatim(self):
        assert extractors.extract_plain_text(b"a,b\n1,2") == "a,b\n1,2"

    def test_utf8_bom_is_stripped(self):
        assert extractors.extract_plain_text(b"\xef\xbb\xbfhello") == "hello"

    def test_invalid_utf8_is_replaced_not_raised(self):
        text = extractors.extract_plain_text(b"caf\xe9")
        assert text.startswith("caf")
        assert "�" in text


# ─────────────────────────────────────────────────────────────────────────────
# Spreadsheet
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestSpreadsheet:

    def test_sheets_are_prefixed_and_tab_separated(self):
        data = _xlsx_bytes({
            "Grades": [["name", "score"], ["Ada", 97]],
            "Notes":  [["done"]],
        })

        text = extractors.extract_spreadsheet(data)

        assert text == "Sheet: Grades\nname\tscore\nAda\t97\n\nSheet: Notes\ndone\n\n"

    def test_empty_rows_are_skipped(self):
        data = _xlsx_bytes({"S": [["a"], [None, None], ["b"]]})
        assert extractors.extract_spreadsheet(data) == "Sheet: S\na\nb\n\n"

    def test_corrupt_workbook_raises_extractor_error(self):
        with pytest.raises(ExtractorError):
            extractors.extract_spreadsheet(b"this is not a zip archive")


# ─────────────────────────────────────────────────────────────────────────────
# DOCX
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestDocx:

    def test_paragraphs_then_tables(self):
        data = _docx_bytes(
            ["Photosynthesis", "", "Light reactions"],
            table=[["term", "meaning"], ["ATP", "energy"]],
        )

        text = extractors.extract_docx(data)

        assert text == "Photosynthesis\nLight reactions\nterm\tmeaning\nATP\tenergy"

    def test_corrupt_package_raises_extractor_error(self):
        with pytest.raises(ExtractorError):
            extractors.extract_docx(b"PK\x03\x04 truncated")


# ─────────────────────────────────────────────────────────────────────────────
# Image OCR
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestImageText:

    def test_ocr_text_is_returned(self):
        pytest.importorskip("pytesseract")
        with patch("pytesseract.image_to_string", return_value="E = mc^2\n"):
            assert extractors.extract_image_text(_png_bytes()) == "E = mc^2\n"

    def test_ocr_engine_failure_degrades_to_advisory(self):
        pytest.importorskip("pytesseract")
        with patch("pytesseract.image_to_string", side_effect=OSError("tesseract not found")):
            assert extractors.extract_image_text(_png_bytes()) == OCR_UNAVAILABLE_ADVISORY

    def test_blank_ocr_output_degrades_to_advisory(self):
        pytest.importorskip("pytesseract")
        with patch("pytesseract.image_to_string", return_value="  \n"):
            assert extractors.extract_image_text(_png_bytes()) == OCR_UNAVAILABLE_ADVISORY

    def test_undecodable_image_degrades_to_advisory(self):
        assert extractors.extract_image_text(b"not an image") == OCR_UNAVAILABLE_ADVISORY
