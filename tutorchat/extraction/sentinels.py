"""
Fixed, human-readable texts stored in `extracted_text` instead of raw error
detail. Every value here is safe to interpolate straight into a prompt.
"""

from __future__ import annotations

from tutorchat.extraction.classifier import FormatKind

DOC_LEGACY_ADVISORY = (
    "[DOC file detected. Please convert to DOCX for better text extraction.]"
)

OCR_UNAVAILABLE_ADVISORY = (
    "[Image file - OCR extraction attempted but unavailable for this image]"
)

PDF_QUALITY_GATE_FAILURE = (
    "[File processing failed: PDF extraction returned little or no text. "
    "The PDF may be corrupted, encrypted or image-based, or uses formatting "
    "that could not be extracted.]"
)

PDF_EXTRACTION_FAILURE = (
    "[File processing failed: the PDF could not be read. It may be corrupted, "
    "encrypted or image-based.]"
)

EXTRACTION_TIMEOUT_FAILURE = (
    "[File processing failed: text extraction took too long and was stopped.]"
)

_EXTRACTOR_FAILURES: dict[FormatKind, str] = {
    FormatKind.SPREADSHEET: (
        "[File processing failed: the spreadsheet could not be read. It may be "
        "corrupted or saved in an unsupported legacy format.]"
    ),
    FormatKind.DOCX: (
        "[File processing failed: the Word document could not be read. It may "
        "be corrupted or password-protected.]"
    ),
}

_GENERIC_FAILURE = "[File processing failed: the file content could not be extracted.]"


def extractor_failure(kind: FormatKind) -> str:
    return _EXTRACTOR_FAILURES.get(kind, _GENERIC_FAILURE)
