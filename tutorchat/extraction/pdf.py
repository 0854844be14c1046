"""
PDF extraction — caller side of the worker protocol.

    ┌──────────────┐  mkstemp (0600)   ┌──────────────────────────────┐
    │ extract_pdf  │ ────────────────▶ │ python -m …pdf_worker <path> │
    │              │ ◀── stdout JSON ─ │   pypdf → PyMuPDF fallback   │
    │              │ ◀── stderr JSON ─ │                              │
    └──────────────┘                   └──────────────────────────────┘

Bounds enforced here, not in the worker:
  - combined stdout+stderr size cap — overflow kills the worker
  - wall-clock ceiling — breach kills the worker, raises PdfWorkerTimeout
  - the temp file is removed on every exit path, including spawn failure
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import sys
import tempfile
from dataclasses import dataclass

from tutorchat.core.config import settings
from tutorchat.core.errors import PdfExtractionError, PdfWorkerTimeout

logger = logging.getLogger(__name__)

WORKER_MODULE = "tutorchat.extraction.pdf_worker"

_READ_CHUNK = 64 * 1024


@dataclass
class PdfExtraction:
    text:       str | None   # None when the worker returned no usable string
    page_count: int
    strategy:   str


class _OutputLimitExceeded(Exception):
    pass


class _OutputBudget:
    """Byte allowance shared by the stdout and stderr readers."""

    def __init__(self, limit: int) -> None:
        self.remaining = limit

    def consume(self, n: int) -> None:
        self.remaining -= n
        if self.remaining < 0:
            raise _OutputLimitExceeded()


async def _read_capped(stream: asyncio.StreamReader, budget: _OutputBudget) -> bytes:
    chunks: list[bytes] = []
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            return b"".join(chunks)
        budget.consume(len(chunk))
        chunks.append(chunk)


async def _collect(
    proc: asyncio.subprocess.Process, budget: _OutputBudget
) -> tuple[bytes, bytes]:
    readers = [
        asyncio.create_task(_read_capped(proc.stdout, budget)),
        asyncio.create_task(_read_capped(proc.stderr, budget)),
    ]
    try:
        stdout, stderr = await asyncio.gather(*readers)
    except BaseException:
        # Overflow or timeout: no reader may outlive the worker.
        for reader in readers:
            reader.cancel()
        await asyncio.gather(*readers, return_exceptions=True)
        raise
    await proc.wait()
    return stdout, stderr


async def _kill(proc: asyncio.subprocess.Process) -> None:
    with contextlib.suppress(ProcessLookupError):
        proc.kill()
    await proc.wait()


def _worker_error(stderr: bytes) -> str:
    """Best-effort reason from the worker's stderr error line."""
    raw = stderr.decode("utf-8", errors="replace").strip()
    for line in reversed(raw.splitlines()):
        try:
            payload = json.loads(line)
        except ValueError:
            continue
        if isinstance(payload, dict) and payload.get("error"):
            return str(payload["error"])
    return raw[-500:] or "no error output"


def _parse_success(stdout: bytes) -> PdfExtraction:
    try:
        payload = json.loads(stdout.decode("utf-8", errors="replace"))
    except ValueError as exc:
        raise PdfExtractionError(f"PDF worker produced malformed output: {exc}") from exc
    if not isinstance(payload, dict):
        raise PdfExtractionError("PDF worker produced malformed output: not an object")

    meta = payload.get("meta") if isinstance(payload.get("meta"), dict) else {}
    text = payload.get("text")
    pages = meta.get("numPages")
    return PdfExtraction(
        text=text if isinstance(text, str) else None,
        page_count=pages if isinstance(pages, int) else 0,
        strategy=str(meta.get("strategy", "unknown")),
    )


async def extract_pdf(
    data: bytes,
    *,
    timeout: float | None = None,
    max_output_bytes: int | None = None,
    log: logging.Logger | logging.LoggerAdapter | None = None,
) -> PdfExtraction:
    """
    Extract text from PDF bytes in an isolated worker process.

    Raises:
        PdfWorkerTimeout:    the worker exceeded `timeout` and was killed.
        PdfExtractionError:  the worker could not start, failed both
                             strategies, overflowed its output cap, or
                             wrote something that is not the protocol.
    """
    timeout          = settings.pdf_worker_timeout_seconds if timeout is None else timeout
    max_output_bytes = settings.pdf_worker_max_output_bytes if max_output_bytes is None else max_output_bytes
    log              = log or logger

    fd, path = tempfile.mkstemp(prefix="tutorchat-", suffix=".pdf")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)

        try:
            proc = await asyncio.create_subprocess_exec(
                sys.executable, "-m", WORKER_MODULE, path,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise PdfExtractionError(f"Could not start PDF worker: {exc}") from exc

        log.info("PDF worker started | pid=%s bytes=%d", proc.pid, len(data))

        try:
            stdout, stderr = await asyncio.wait_for(
                _collect(proc, _OutputBudget(max_output_bytes)), timeout
            )
        except asyncio.TimeoutError:
            await _kill(proc)
            log.warning("PDF worker killed on timeout | timeout=%.1fs", timeout)
            raise PdfWorkerTimeout(timeout)
        except _OutputLimitExceeded:
            await _kill(proc)
            log.warning("PDF worker killed on output cap | limit=%d", max_output_bytes)
            raise PdfExtractionError(
                f"PDF worker output exceeded {max_output_bytes} bytes"
            )
    finally:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(path)

    if proc.returncode != 0:
        reason = _worker_error(stderr)
        log.warning("PDF worker failed | exit=%s reason=%s", proc.returncode, reason)
        raise PdfExtractionError(reason)

    result = _parse_success(stdout)
    log.info(
        "PDF worker done | strategy=%s pages=%d chars=%d",
        result.strategy, result.page_count, len(result.text or ""),
    )
    return result
