"""
Logging setup.

Module loggers everywhere (`logging.getLogger(__name__)`), configured once
by the API app factory or the Celery worker. Extraction code receives an
AttachmentLogger so every line it emits carries the attachment id, which
keeps concurrent extractions distinguishable in a shared log stream.
"""

from __future__ import annotations

import logging
from typing import Any, MutableMapping
from uuid import UUID

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_configured = False


def configure_logging(level: str = "INFO") -> None:
    """Idempotent root logger setup."""
    global _configured
    if _configured:
        return
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    _configured = True


class AttachmentLogger(logging.LoggerAdapter):
    """
    Logger adapter that tags every message with `attachment=<id>`.

        log = AttachmentLogger(logger, attachment_id)
        log.info("Extracted | chars=%d", n)
        # -> "attachment=… | Extracted | chars=123"
    """

    def __init__(self, logger: logging.Logger, attachment_id: UUID | str) -> None:
        super().__init__(logger, {"attachment_id": str(attachment_id)})

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("attachment_id", self.extra["attachment_id"])
        kwargs["extra"] = extra
        return f"attachment={self.extra['attachment_id']} | {msg}", kwargs


def attachment_logger(name: str, attachment_id: UUID | str) -> AttachmentLogger:
    return AttachmentLogger(logging.getLogger(name), attachment_id)
