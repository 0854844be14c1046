"""
Extraction Dispatcher
═════════════════════

Drives one attachment from `pending` to a terminal state:

    ┌────────────┐   ┌───────────┐   ┌──────────┐   ┌──────────────┐   ┌────────────────────┐
    │ load record│──▶│ fetch blob│──▶│ classify │──▶│ extract/gate │──▶│ set_terminal_state │
    └────────────┘   └───────────┘   └──────────┘   └──────────────┘   └────────────────────┘
          │                │                                                    │
     AttachmentNotFound  BlobStoreError                              False → re-read winner
          └──── propagate (state stays pending, caller may retry) ────┘

Outcome mapping:
  text                          → succeeded
  doc_legacy                    → succeeded, advisory text
  unsupported                   → succeeded, ""
  image (OCR failed or empty)   → succeeded, advisory text
  ExtractorError                → failed, per-format sentinel
  PdfExtractionError            → failed, PDF sentinel
  quality gate rejection        → failed, quality-gate sentinel
  PdfWorkerTimeout              → failed, timeout sentinel

ExtractionError never leaves dispatch(); InfrastructureError always does.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable
from uuid import UUID

from tutorchat.core.config import settings
from tutorchat.core.errors import (
    ExtractionError,
    PdfExtractionError,
    PdfWorkerTimeout,
    QualityGateRejected,
)
from tutorchat.core.logging import attachment_logger
from tutorchat.extraction import extractors, sentinels
from tutorchat.extraction.classifier import FormatKind, classify
from tutorchat.extraction.pdf import PdfExtraction, extract_pdf
from tutorchat.models.attachments import ExtractionState
from tutorchat.repositories.attachments import AttachmentRepository
from tutorchat.storage.blob import BlobStore

logger = logging.getLogger(__name__)

PdfExtractor = Callable[..., Awaitable[PdfExtraction]]

_SYNC_EXTRACTORS: dict[FormatKind, Callable[[bytes], str]] = {
    FormatKind.PLAIN_TEXT:  extractors.extract_plain_text,
    FormatKind.SPREADSHEET: extractors.extract_spreadsheet,
    FormatKind.DOCX:        extractors.extract_docx,
    FormatKind.IMAGE:       extractors.extract_image_text,
}


@dataclass(frozen=True)
class DispatchResult:
    attachment_id: UUID
    state:         ExtractionState
    text:          str
    written:       bool   # False when the row was already terminal


def passes_quality_gate(text: object, min_chars: int) -> bool:
    return isinstance(text, str) and len(text.strip()) >= min_chars


class ExtractionDispatcher:
    """
    Stateless apart from its collaborators; safe to share across
    concurrent dispatches of different attachments.
    """

    def __init__(
        self,
        repository: AttachmentRepository,
        blob_store: BlobStore,
        *,
        pdf_extractor: PdfExtractor = extract_pdf,
        quality_gate_min_chars: int | None = None,
        pdf_timeout_seconds: float | None = None,
    ) -> None:
        self._repo          = repository
        self._blobs         = blob_store
        self._extract_pdf   = pdf_extractor
        self._min_chars     = (
            settings.quality_gate_min_chars if quality_gate_min_chars is None else quality_gate_min_chars
        )
        self._pdf_timeout   = (
            settings.pdf_worker_timeout_seconds if pdf_timeout_seconds is None else pdf_timeout_seconds
        )

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    async def dispatch(self, attachment_id: UUID) -> DispatchResult:
        log = attachment_logger(__name__, attachment_id)

        attachment = await self._repo.get(attachment_id)
        if attachment.state.is_terminal:
            log.info("Already terminal, skipping | state=%s", attachment.extraction_state)
            return DispatchResult(
                attachment_id=attachment_id,
                state=attachment.state,
                text=attachment.extracted_text or "",
                written=False,
            )

        started = time.perf_counter()
        data = await self._blobs.get(attachment.storage_path)
        kind = classify(attachment.declared_mime_type, attachment.file_name)
        log.info(
            "Dispatch start | kind=%s file=%s size=%d",
            kind.value, attachment.file_name, len(data),
        )

        state, text = await self.extract(kind, data, log)

        written = await self._repo.set_terminal_state(attachment_id, state, text)
        elapsed_ms = (time.perf_counter() - started) * 1000

        if not written:
            # A concurrent dispatcher finished first; report what it stored.
            stored = await self._repo.get(attachment_id)
            log.warning(
                "Terminal state already written by another dispatcher | state=%s",
                stored.extraction_state,
            )
            return DispatchResult(
                attachment_id=attachment_id,
                state=stored.state,
                text=stored.extracted_text or "",
                written=False,
            )

        log.info(
            "Dispatch done | state=%s chars=%d elapsed_ms=%.0f",
            state.value, len(text), elapsed_ms,
        )
        return DispatchResult(attachment_id=attachment_id, state=state, text=text, written=True)

    # ------------------------------------------------------------------
    # Extraction + outcome mapping
    # ------------------------------------------------------------------

    async def extract(
        self,
        kind: FormatKind,
        data: bytes,
        log: logging.Logger | logging.LoggerAdapter = logger,
    ) -> tuple[ExtractionState, str]:
        """Run the extractor for `kind`; every ExtractionError becomes `failed`."""
        if kind is FormatKind.UNSUPPORTED:
            return ExtractionState.SUCCEEDED, ""
        if kind is FormatKind.DOC_LEGACY:
            return ExtractionState.SUCCEEDED, sentinels.DOC_LEGACY_ADVISORY

        try:
            if kind is FormatKind.PDF:
                text = await self._extract_pdf_gated(data, log)
            else:
                loop = asyncio.get_running_loop()
                text = await loop.run_in_executor(None, _SYNC_EXTRACTORS[kind], data)
        except ExtractionError as exc:
            log.warning("Extraction failed | kind=%s error=%s", kind.value, exc)
            return ExtractionState.FAILED, _failure_sentinel(kind, exc)
        except Exception:
            # Parser bugs on hostile input end the same way as a parse failure.
            log.exception("Extractor crashed | kind=%s", kind.value)
            return ExtractionState.FAILED, sentinels.extractor_failure(kind)

        return ExtractionState.SUCCEEDED, text

    async def _extract_pdf_gated(
        self, data: bytes, log: logging.Logger | logging.LoggerAdapter
    ) -> str:
        result = await self._extract_pdf(data, timeout=self._pdf_timeout, log=log)
        if not passes_quality_gate(result.text, self._min_chars):
            raise QualityGateRejected(
                f"PDF text below {self._min_chars} chars "
                f"(strategy={result.strategy} pages={result.page_count})"
            )
        return result.text


def _failure_sentinel(kind: FormatKind, exc: ExtractionError) -> str:
    if isinstance(exc, PdfWorkerTimeout):
        return sentinels.EXTRACTION_TIMEOUT_FAILURE
    if isinstance(exc, QualityGateRejected):
        return sentinels.PDF_QUALITY_GATE_FAILURE
    if isinstance(exc, PdfExtractionError):
        return sentinels.PDF_EXTRACTION_FAILURE
    return sentinels.extractor_failure(kind)
