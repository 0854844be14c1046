"""
PDF Extraction Worker — subprocess entry point
═══════════════════════════════════════════════

Run as:

    python -m tutorchat.extraction.pdf_worker /path/to/file.pdf

This module is executed in its own interpreter so that a native-level
crash inside a PDF library (segfault, runaway allocation) kills only the
worker, never the API process or the Celery worker that spawned it.

Wire protocol (one JSON document per stream, single line):

  success  →  stdout: {"text": "...", "meta": {"numPages": 5, "strategy": "pypdf"}}
              exit code 0
  failure  →  stderr: {"error": "..."}
              exit code 1

Strategy cascade:
  A. pypdf        — high-level text extraction API, pure Python
  B. PyMuPDF      — page-rendering engine; its import name differs between
                    releases and packagings, so it is located by probing an
                    ordered list of candidate modules (first hit wins)

If A raises or is not installed, B is attempted. If A returns (almost) no
text, B is attempted as well and the longer result is kept, because
pypdf yields empty strings on some font encodings that MuPDF handles.
"""

from __future__ import annotations

import importlib
import json
import sys
from dataclasses import dataclass
from typing import Any, Callable

# Below this many non-whitespace characters strategy A is considered to
# have produced nothing and strategy B gets a chance.
_RETRY_BELOW_CHARS = 10


@dataclass
class WorkerResult:
    text:      str
    num_pages: int
    strategy:  str

    def to_json(self) -> str:
        return json.dumps(
            {"text": self.text, "meta": {"numPages": self.num_pages, "strategy": self.strategy}},
            ensure_ascii=False,
        )


class StrategyUnavailable(Exception):
    """The library backing a strategy could not be imported."""


# ---------------------------------------------------------------------------
# Strategy A: pypdf
# ---------------------------------------------------------------------------

def extract_with_pypdf(path: str) -> WorkerResult:
    try:
        from pypdf import PdfReader
    except ImportError as exc:
        raise StrategyUnavailable("pypdf is not installed") from exc

    reader = PdfReader(path)
    if reader.is_encrypted:
        # Empty-password encryption is common and readable; anything else raises.
        reader.decrypt("")
    pages = [page.extract_text() or "" for page in reader.pages]
    return WorkerResult(text="\n\n".join(pages), num_pages=len(pages), strategy="pypdf")


# ---------------------------------------------------------------------------
# Strategy B: PyMuPDF, resolved via candidate module names
# ---------------------------------------------------------------------------

def _probe(module_name: str) -> Any | None:
    """Import `module_name`; return it if it exposes `open`, else None."""
    try:
        module = importlib.import_module(module_name)
    except Exception:
        return None
    return module if callable(getattr(module, "open", None)) else None


# Current wheels install `pymupdf`; older ones only `fitz`; some 1.23.x
# builds ship the legacy implementation as `fitz_old`.
PYMUPDF_CANDIDATES: tuple[Callable[[], Any | None], ...] = (
    lambda: _probe("pymupdf"),
    lambda: _probe("fitz"),
    lambda: _probe("fitz_old"),
)


def resolve_pymupdf(
    candidates: tuple[Callable[[], Any | None], ...] = PYMUPDF_CANDIDATES,
) -> Any | None:
    for loader in candidates:
        handle = loader()
        if handle is not None:
            return handle
    return None


def extract_with_pymupdf(path: str) -> WorkerResult:
    mupdf = resolve_pymupdf()
    if mupdf is None:
        raise StrategyUnavailable("PyMuPDF is not installed under any known module name")

    with mupdf.open(path) as doc:
        if doc.needs_pass and not doc.authenticate(""):
            raise ValueError("document is password-protected")
        pages = [page.get_text("text") or "" for page in doc]
    return WorkerResult(text="\n".join(pages), num_pages=len(pages), strategy="pymupdf")


# ---------------------------------------------------------------------------
# Cascade
# ---------------------------------------------------------------------------

STRATEGIES: tuple[Callable[[str], WorkerResult], ...] = (
    extract_with_pypdf,
    extract_with_pymupdf,
)


def run_strategies(
    path: str,
    strategies: tuple[Callable[[str], WorkerResult], ...] = STRATEGIES,
) -> WorkerResult:
    """
    Try each strategy in order. Returns the first result with real text, or
    the longest near-empty result if every strategy that ran produced
    almost nothing. Raises RuntimeError when no strategy produced a result.
    """
    best: WorkerResult | None = None
    errors: list[str] = []

    for strategy in strategies:
        try:
            result = strategy(path)
        except Exception as exc:
            errors.append(f"{strategy.__name__}: {exc}")
            continue

        if len(result.text.strip()) >= _RETRY_BELOW_CHARS:
            return result
        if best is None or len(result.text.strip()) > len(best.text.strip()):
            best = result

    if best is not None:
        return best
    raise RuntimeError("All PDF strategies failed: " + "; ".join(errors))


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if len(args) != 1:
        sys.stderr.write(json.dumps({"error": "usage: pdf_worker <path>"}) + "\n")
        return 2

    try:
        result = run_strategies(args[0])
    except Exception as exc:
        sys.stderr.write(json.dumps({"error": str(exc)}) + "\n")
        return 1

    sys.stdout.write(result.to_json() + "\n")
    sys.stdout.flush()
    return 0


if __name__ == "__main__":
    sys.exit(main())
