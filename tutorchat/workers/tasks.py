"""
Celery Tasks — Attachment Extraction

Task: extract_attachment
  Runs the ExtractionDispatcher for one attachment. Extraction problems
  with the file itself end in a terminal state inside the dispatcher;
  InfrastructureError (record missing, blob store or database down) is
  retried up to 3 times, 30 s apart, leaving the attachment pending.

Task: requeue_stale_pending
  Beat task — re-queues attachments stuck in 'pending' longer than
  `stale_pending_after_seconds`. Covers broker failures during upload and
  workers that died mid-extraction.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from celery import Task

from tutorchat.core.config import settings
from tutorchat.core.errors import AttachmentNotFound, InfrastructureError
from tutorchat.workers.celery_app import celery_app

logger = logging.getLogger(__name__)

MAX_RETRIES   = 3
RETRY_DELAY_S = 30
REQUEUE_BATCH = 50


# ---------------------------------------------------------------------------
# Async task helper
# Run async coroutines inside Celery's synchronous task context.
# ---------------------------------------------------------------------------

def run_async(coro):
    """Execute an async coroutine from a synchronous Celery task."""
    try:
        loop = asyncio.get_event_loop()
        if loop.is_running():
            import concurrent.futures
            with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
                future = pool.submit(asyncio.run, coro)
                return future.result()
        return loop.run_until_complete(coro)
    except RuntimeError:
        return asyncio.run(coro)


async def _dispose_engine() -> None:
    # Pooled asyncpg connections are bound to the loop that opened them;
    # each task runs on its own loop.
    from tutorchat.db.session import engine
    await engine.dispose()


# ---------------------------------------------------------------------------
# Extraction task
# ---------------------------------------------------------------------------

@celery_app.task(
    name="tutorchat.workers.tasks.extract_attachment",
    bind=True,
    max_retries=MAX_RETRIES,
    default_retry_delay=RETRY_DELAY_S,
    acks_late=True,
    reject_on_worker_lost=True,
)
def extract_attachment(self: Task, *, attachment_id: str) -> dict[str, Any]:
    """Extract text for one attachment and store its terminal state."""
    try:
        return run_async(_extract_attachment_async(uuid.UUID(attachment_id)))
    except AttachmentNotFound:
        # Deleted before extraction ran, or the upload never committed.
        if self.request.retries >= MAX_RETRIES:
            logger.warning("Attachment gone, giving up | attachment=%s", attachment_id)
            return {"status": "not_found", "attachment_id": attachment_id}
        raise self.retry(countdown=RETRY_DELAY_S)
    except InfrastructureError as exc:
        logger.warning(
            "Infrastructure failure, retrying | attachment=%s attempt=%d error=%s",
            attachment_id, self.request.retries + 1, exc,
        )
        raise self.retry(exc=exc, countdown=RETRY_DELAY_S)


async def _extract_attachment_async(attachment_id: uuid.UUID) -> dict[str, Any]:
    from tutorchat.auth.dependencies import get_blob_store
    from tutorchat.db.session import session_scope
    from tutorchat.repositories.attachments import AttachmentRepository
    from tutorchat.services.dispatcher import ExtractionDispatcher

    try:
        async with session_scope() as db:
            dispatcher = ExtractionDispatcher(AttachmentRepository(db), get_blob_store())
            result = await dispatcher.dispatch(attachment_id)
    finally:
        await _dispose_engine()

    return {
        "status":        result.state.value,
        "attachment_id": str(attachment_id),
        "chars":         len(result.text),
        "written":       result.written,
    }


# ---------------------------------------------------------------------------
# Stale-pending scanner — runs every 60 seconds via Celery Beat
# ---------------------------------------------------------------------------

@celery_app.task(
    name="tutorchat.workers.tasks.requeue_stale_pending",
    acks_late=True,
    soft_time_limit=55,
    time_limit=60,
)
def requeue_stale_pending() -> dict[str, int]:
    return run_async(_requeue_stale_pending_async())


async def _requeue_stale_pending_async() -> dict[str, int]:
    from tutorchat.db.session import session_scope
    from tutorchat.repositories.attachments import AttachmentRepository

    cutoff = datetime.now(timezone.utc) - timedelta(seconds=settings.stale_pending_after_seconds)
    try:
        async with session_scope() as db:
            stale = await AttachmentRepository(db).list_stale_pending(cutoff, limit=REQUEUE_BATCH)
    finally:
        await _dispose_engine()

    for attachment in stale:
        extract_attachment.apply_async(
            kwargs={"attachment_id": str(attachment.id)},
            queue="attachments.requeue",
            countdown=5,
        )
        logger.info("Re-queued stale attachment | attachment=%s", attachment.id)

    return {"requeued": len(stale)}


# ---------------------------------------------------------------------------
# Health check task
# ---------------------------------------------------------------------------

@celery_app.task(name="tutorchat.workers.tasks.health_check")
def health_check() -> dict[str, str]:
    return {"status": "ok", "worker": "healthy"}
