"""
Composed FastAPI Dependencies

Combines auth + DB session + blob store + task publisher into injectable
objects. Route handlers import from here, not from auth/token,
db/session or storage/blob directly, so tests override one place.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tutorchat.auth.token import TokenPayload, get_current_user
from tutorchat.db.session import get_db
from tutorchat.services.ingestion import TaskPublisher
from tutorchat.services.messages import ConversationForwarder, LoggingForwarder
from tutorchat.storage.blob import BlobStore, S3BlobStore


@lru_cache(maxsize=1)
def get_blob_store() -> BlobStore:
    """Process-wide S3 blob store; aioboto3 sessions are safe to share."""
    return S3BlobStore()


def get_task_publisher() -> TaskPublisher:
    return TaskPublisher()


def get_forwarder() -> ConversationForwarder:
    return LoggingForwarder()


# ---------------------------------------------------------------------------
# Type aliases for cleaner route signatures
# ---------------------------------------------------------------------------

CurrentUser   = Annotated[TokenPayload,          Depends(get_current_user)]
DBSession     = Annotated[AsyncSession,          Depends(get_db)]
Blobs         = Annotated[BlobStore,             Depends(get_blob_store)]
Publisher     = Annotated[TaskPublisher,         Depends(get_task_publisher)]
Forwarder     = Annotated[ConversationForwarder, Depends(get_forwarder)]
