"""
Celery Application Factory

Configures the Celery app for async attachment extraction.
Broker: Redis by default (any Celery broker URL works).
Result backend: Redis (optional; extraction state is tracked in the database).

Queue topology:
  attachments.extract   — extraction of freshly uploaded attachments
  attachments.requeue   — stale-pending scanner and the work it re-queues
  system.health         — internal health-check tasks

Task arguments carry only the attachment id. Raw file bytes never travel
through the broker; the worker loads them from the blob store.
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import after_setup_logger, task_failure, task_postrun, task_prerun
from kombu import Exchange, Queue

from tutorchat.core.config import settings
from tutorchat.core.logging import LOG_FORMAT

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Queue and exchange definitions
# ---------------------------------------------------------------------------

ATTACHMENTS_EXCHANGE = Exchange("attachments", type="direct", durable=True)

TASK_QUEUES = (
    Queue(
        "attachments.extract",
        exchange=ATTACHMENTS_EXCHANGE,
        routing_key="attachments.extract",
        durable=True,
    ),
    Queue(
        "attachments.requeue",
        exchange=ATTACHMENTS_EXCHANGE,
        routing_key="attachments.requeue",
        durable=True,
    ),
    Queue(
        "system.health",
        Exchange("system", type="direct"),
        routing_key="system.health",
        durable=True,
    ),
)

TASK_ROUTES = {
    "tutorchat.workers.tasks.extract_attachment":     {"queue": "attachments.extract"},
    "tutorchat.workers.tasks.requeue_stale_pending":  {"queue": "attachments.requeue"},
    "tutorchat.workers.tasks.health_check":           {"queue": "system.health"},
}

# Celery's hard limit sits above the PDF worker ceiling so the subprocess
# timeout, not a SIGKILL of the Celery child, decides the outcome.
_SOFT_TIME_LIMIT = int(settings.pdf_worker_timeout_seconds) + 30
_HARD_TIME_LIMIT = _SOFT_TIME_LIMIT + 30


# ---------------------------------------------------------------------------
# Celery app factory
# ---------------------------------------------------------------------------

def create_celery_app() -> Celery:
    app = Celery("tutorchat")

    app.conf.update(
        # --- Broker / Backend ---
        broker_url=settings.celery_broker_url,
        result_backend=settings.celery_result_backend,

        # --- Serialization (reject non-JSON messages) ---
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        event_serializer="json",

        # --- Queues ---
        task_queues=TASK_QUEUES,
        task_routes=TASK_ROUTES,
        task_default_queue="attachments.extract",
        task_default_exchange="attachments",
        task_default_routing_key="attachments.extract",

        # --- Reliability ---
        task_acks_late=True,           # ack only after the task completes
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,  # PDF extraction is heavy; one at a time

        # --- Timeouts ---
        task_soft_time_limit=_SOFT_TIME_LIMIT,
        task_time_limit=_HARD_TIME_LIMIT,

        # --- Result TTL ---
        result_expires=3600,

        # --- Timezone ---
        timezone="UTC",
        enable_utc=True,

        # --- Beat schedule (stale-pending scanner) ---
        beat_schedule={
            "requeue-stale-pending-every-60s": {
                "task":     "tutorchat.workers.tasks.requeue_stale_pending",
                "schedule": 60,
                "options":  {"queue": "attachments.requeue"},
            },
        },

        # --- Worker ---
        worker_max_tasks_per_child=200,
    )

    app.autodiscover_tasks(["tutorchat.workers"])

    return app


celery_app = create_celery_app()


# ---------------------------------------------------------------------------
# Celery signals — structured task logging
# ---------------------------------------------------------------------------

@after_setup_logger.connect
def on_setup_logger(logger: logging.Logger, *_, **__):
    for handler in logger.handlers:
        handler.setFormatter(logging.Formatter(LOG_FORMAT))


@task_prerun.connect
def on_task_prerun(task_id, task, args, kwargs, **_):
    logger.info(
        "Task start | task_id=%s task=%s attachment=%s",
        task_id, task.name, (kwargs or {}).get("attachment_id", "-"),
    )


@task_postrun.connect
def on_task_postrun(task_id, task, args, kwargs, retval, state, **_):
    logger.info(
        "Task end | task_id=%s task=%s state=%s attachment=%s",
        task_id, task.name, state, (kwargs or {}).get("attachment_id", "-"),
    )


@task_failure.connect
def on_task_failure(task_id, exception, args, kwargs, traceback, einfo, **_):
    logger.error(
        "Task failed | task_id=%s attachment=%s error=%s",
        task_id, (kwargs or {}).get("attachment_id", "-"), exception,
        exc_info=True,
    )
