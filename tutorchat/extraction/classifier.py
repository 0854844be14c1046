"""
Format classifier — maps (declared MIME type, file name) to an extraction
strategy. Pure function, no I/O.

The declared MIME type comes from the browser and is frequently empty or
generic (application/octet-stream), so every rule also accepts the file
extension. Rules are evaluated in priority order; the first match wins.
"""

from __future__ import annotations

from enum import Enum


class FormatKind(str, Enum):
    PLAIN_TEXT  = "plain_text"
    PDF         = "pdf"
    DOCX        = "docx"
    DOC_LEGACY  = "doc_legacy"
    SPREADSHEET = "spreadsheet"
    IMAGE       = "image"
    UNSUPPORTED = "unsupported"


PDF_MIME         = "application/pdf"
DOCX_MIME        = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
DOC_LEGACY_MIME  = "application/msword"
XLS_LEGACY_MIME  = "application/vnd.ms-excel"

_TEXT_EXTENSIONS:        frozenset[str] = frozenset({"txt", "md", "json", "csv"})
_SPREADSHEET_EXTENSIONS: frozenset[str] = frozenset({"xlsx", "xls"})


def _normalize_mime(mime_type: str | None) -> str:
    """Lowercase and drop parameters: 'Text/Plain; charset=utf-8' -> 'text/plain'."""
    return (mime_type or "").split(";", 1)[0].strip().lower()


def file_extension(file_name: str | None) -> str:
    """Lowercased extension without the dot; '' when there is none."""
    base = (file_name or "").replace("\\", "/").rsplit("/", 1)[-1]
    if "." not in base:
        return ""
    return base.rsplit(".", 1)[-1].lower()


def classify(declared_mime_type: str | None, file_name: str | None) -> FormatKind:
    mime = _normalize_mime(declared_mime_type)
    ext  = file_extension(file_name)

    if mime.startswith("text/") or ext in _TEXT_EXTENSIONS:
        return FormatKind.PLAIN_TEXT

    if mime == PDF_MIME or ext == "pdf":
        return FormatKind.PDF

    if mime == DOCX_MIME or ext == "docx":
        return FormatKind.DOCX

    if mime == DOC_LEGACY_MIME or ext == "doc":
        return FormatKind.DOC_LEGACY

    if "spreadsheet" in mime or mime == XLS_LEGACY_MIME or ext in _SPREADSHEET_EXTENSIONS:
        return FormatKind.SPREADSHEET

    if mime.startswith("image/"):
        return FormatKind.IMAGE

    return FormatKind.UNSUPPORTED
