"""
Context Composer — turns attachment terminal states into the text block
appended to a user message before it goes to the model.

Pure: no I/O, no clock. Output for two attachments:

    "\n\n[File: notes.txt]\n<text>\n\n[File: scan.pdf - Unable to extract …]"
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, Sequence

from tutorchat.models.attachments import ExtractionState

EMPTY_CONTENT_NOTE = "(no extractable text content)"

FAILED_NOTE = (
    "Unable to extract text content. The file may be image-based, "
    "encrypted, or in an unsupported format."
)

PENDING_NOTE = "Processing in progress. Its content is not yet available."


class ComposableAttachment(Protocol):
    file_name:        str
    extraction_state: str
    extracted_text:   str | None
    linked_at:        datetime | None
    created_at:       datetime | None


def _ts(value: datetime | None) -> tuple[int, float]:
    return (1, 0.0) if value is None else (0, value.timestamp())


def link_order(attachments: Sequence[ComposableAttachment]) -> list[ComposableAttachment]:
    """linked_at, then created_at, then the given order (stable sort)."""
    return sorted(attachments, key=lambda a: (_ts(a.linked_at), _ts(a.created_at)))


def render_attachment(attachment: ComposableAttachment) -> str:
    name  = attachment.file_name
    state = ExtractionState(attachment.extraction_state)

    if state is ExtractionState.PENDING:
        return f"[File: {name} - {PENDING_NOTE}]"
    if state is ExtractionState.FAILED:
        return f"[File: {name} - {FAILED_NOTE}]"

    text = attachment.extracted_text or ""
    if not text.strip():
        return f"[File: {name}]\n{EMPTY_CONTENT_NOTE}"
    return f"[File: {name}]\n{text}"


def compose_attachment_context(attachments: Sequence[ComposableAttachment]) -> str:
    if not attachments:
        return ""
    return "".join("\n\n" + render_attachment(a) for a in link_order(attachments))
