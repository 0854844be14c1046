"""
Exception hierarchy for the attachment pipeline.

Two families with opposite propagation rules:

  ExtractionError       — something is wrong with the *file*.
                          Always absorbed by the dispatcher into a
                          terminal `failed` state with a sentinel text.

  InfrastructureError   — the operation could not even be attempted
                          (record missing, blob store or database down).
                          Always propagated to whoever scheduled the
                          dispatch, so it can decide whether to retry.
"""

from __future__ import annotations

from uuid import UUID


class ExtractionError(Exception):
    """Base class for per-file extraction failures."""


class ExtractorError(ExtractionError):
    """A format-specific extractor could not parse the file."""


class PdfExtractionError(ExtractionError):
    """The PDF worker failed with both strategies, or its output was unusable."""


class PdfWorkerTimeout(ExtractionError):
    """The PDF worker exceeded its duration ceiling and was killed."""

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(f"PDF worker exceeded {timeout_seconds:.0f}s and was killed")
        self.timeout_seconds = timeout_seconds


class QualityGateRejected(ExtractionError):
    """Extraction 'succeeded' but produced too little text to be useful."""


class InfrastructureError(Exception):
    """Base class for store / storage failures that must reach the caller."""


class AttachmentNotFound(InfrastructureError):
    def __init__(self, attachment_id: UUID) -> None:
        super().__init__(f"Attachment not found: {attachment_id}")
        self.attachment_id = attachment_id


class RecordStoreError(InfrastructureError):
    """The attachment record store is unavailable."""


class BlobStoreError(InfrastructureError):
    """The blob store is unavailable or rejected the request."""


class BlobNotFound(BlobStoreError):
    def __init__(self, path: str) -> None:
        super().__init__(f"Object not found: {path}")
        self.path = path
