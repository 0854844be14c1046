"""
Attachment Ingestion Service

Orchestrates the upload pipeline:
  1. Read the file with a hard size ceiling (empty → 400, too large → 413)
  2. Resolve the conversation, creating it on first upload ("new-chat")
  3. Store the bytes under attachments/<owner_id>/<attachment_id>/<name>
  4. Insert the attachment record (extraction_state=pending)
  5. Publish the extraction task to Celery
  6. Return the 202 response

Invariants enforced here:
  - owner_id is ALWAYS taken from the verified token, never the request body.
  - The storage key is constructed server-side; the file name is sanitized.
  - A broker failure is non-fatal: the record stays pending and the
    stale-pending scanner re-queues it.
"""

from __future__ import annotations

import asyncio
import logging
import uuid

from fastapi import HTTPException, UploadFile, status

from tutorchat.auth.token import TokenPayload
from tutorchat.core.config import settings
from tutorchat.core.errors import BlobStoreError
from tutorchat.models.attachments import Attachment, ExtractionState
from tutorchat.repositories.attachments import AttachmentRepository, ConversationRepository
from tutorchat.schemas.attachments import AttachmentErrors, AttachmentUploadResponse, ErrorDetail
from tutorchat.storage.blob import BlobStore, attachment_key

logger = logging.getLogger(__name__)

NEW_CONVERSATION = "new-chat"

_READ_CHUNK = 1024 * 1024


def resolve_conversation_id(raw: str | None) -> uuid.UUID:
    """
    Parse the client's conversation id. Empty or "new-chat" starts a new
    conversation; anything else must be a UUID.
    """
    value = (raw or "").strip()
    if not value or value == NEW_CONVERSATION:
        return uuid.uuid4()
    try:
        return uuid.UUID(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=AttachmentErrors.validation_error(
                [ErrorDetail(field="conversation_id", message=f"'{value}' is not a valid id.", code="INVALID_ID")]
            ).model_dump(mode="json"),
        )


class AttachmentIngestionService:
    """
    Stateless service object — one instance per request.
    All dependencies are injected (testable, no hidden globals).
    """

    def __init__(
        self,
        attachments:    AttachmentRepository,
        conversations:  ConversationRepository,
        blob_store:     BlobStore,
        user:           TokenPayload,
        task_publisher: "TaskPublisher",
    ) -> None:
        self._attachments   = attachments
        self._conversations = conversations
        self._blobs         = blob_store
        self._user          = user
        self._publisher     = task_publisher

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    async def ingest(self, file: UploadFile, conversation_id: uuid.UUID) -> AttachmentUploadResponse:
        owner_id = self._user.sub

        # ---- Step 1: Read file into memory (with size guard) -----------
        data      = await self._read_upload(file)
        file_name = (file.filename or "").strip() or "upload"
        mime_type = (file.content_type or "").strip()

        # ---- Step 2: Conversation -------------------------------------
        conversation = await self._conversations.ensure(conversation_id, owner_id, title=file_name)
        if conversation is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=AttachmentErrors.conversation_not_found(conversation_id).model_dump(mode="json"),
            )

        attachment_id = uuid.uuid4()
        storage_path  = attachment_key(owner_id, attachment_id, file_name)

        logger.info(
            "Ingest start | owner=%s conversation=%s file=%s size=%d mime=%s",
            owner_id, conversation_id, file_name, len(data), mime_type or "-",
        )

        # ---- Step 3: Blob store ---------------------------------------
        try:
            await self._blobs.put(storage_path, data, mime_type)
        except BlobStoreError as exc:
            logger.exception("Blob upload failed | attachment=%s", attachment_id)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=AttachmentErrors.storage_error(str(exc)).model_dump(mode="json"),
            )

        # ---- Step 4: Record -------------------------------------------
        await self._attachments.create(
            Attachment(
                id=attachment_id,
                owner_id=owner_id,
                conversation_id=conversation_id,
                file_name=file_name,
                declared_mime_type=mime_type,
                byte_size=len(data),
                storage_path=storage_path,
                extraction_state=ExtractionState.PENDING.value,
            )
        )
        # The worker reads the row from its own session.
        await self._attachments.commit()

        # ---- Step 5: Publish extraction task --------------------------
        try:
            await self._publisher.publish_extraction_task(attachment_id)
        except Exception as exc:
            # Stored and pending; the stale-pending scanner picks it up.
            logger.error(
                "Failed to publish extraction task | attachment=%s error=%s",
                attachment_id, exc,
            )

        return AttachmentUploadResponse(
            attachment_id=attachment_id,
            url=self._blobs.public_url(storage_path),
            file_name=file_name,
            byte_size=len(data),
            declared_mime_type=mime_type,
            conversation_id=conversation_id,
            extraction_state=ExtractionState.PENDING,
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _read_upload(self, file: UploadFile | None) -> bytes:
        """
        Read the upload into memory with a hard size ceiling.
        Stops reading one chunk past the limit so an oversized body is never
        fully buffered. Raises 400/413.
        """
        if file is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=AttachmentErrors.missing_file().model_dump(mode="json"),
            )

        limit  = settings.max_upload_bytes
        chunks: list[bytes] = []
        total  = 0
        while True:
            chunk = await file.read(_READ_CHUNK)
            if not chunk:
                break
            total += len(chunk)
            if total > limit:
                raise HTTPException(
                    status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                    detail=AttachmentErrors.file_too_large(total).model_dump(mode="json"),
                )
            chunks.append(chunk)

        if total == 0:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=AttachmentErrors.missing_file().model_dump(mode="json"),
            )
        return b"".join(chunks)


# ---------------------------------------------------------------------------
# Task publisher — thin abstraction over Celery apply_async()
# Injected into AttachmentIngestionService so it can be mocked in tests.
# ---------------------------------------------------------------------------

class TaskPublisher:
    """
    Sends the extraction task to the Celery broker.
    Import is deferred so the broker connection is not required at module load time.
    """

    async def publish_extraction_task(self, attachment_id: uuid.UUID) -> None:
        """Runs in a thread executor to avoid blocking the event loop."""
        from tutorchat.workers.tasks import extract_attachment

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None,
            lambda: extract_attachment.apply_async(
                kwargs={"attachment_id": str(attachment_id)},
                countdown=0,
            ),
        )
        logger.info("Extraction task published | attachment=%s", attachment_id)
