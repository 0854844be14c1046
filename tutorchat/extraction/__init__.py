"""
Attachment Text Extraction Package
═══════════════════════════════════

  classifier.py  (MIME type, file name) → FormatKind
  extractors.py  plain text, spreadsheet, docx and image OCR extractors
  pdf.py         caller side of the isolated PDF worker protocol
  pdf_worker.py  subprocess entry point (pypdf → PyMuPDF)
  sentinels.py   fixed texts stored in place of raw error detail

Nothing in here touches the database or object storage; the dispatcher in
services/ wires extraction to the stores.
"""

from tutorchat.extraction.classifier import FormatKind, classify
from tutorchat.extraction.pdf import PdfExtraction, extract_pdf

__all__ = [
    "FormatKind",
    "classify",
    "PdfExtraction",
    "extract_pdf",
]
