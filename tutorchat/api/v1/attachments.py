"""
Attachment API Router

  POST /api/v1/attachments/upload     multipart {file, conversation_id} → 202
  POST /api/v1/attachments/process    run the dispatcher synchronously
  GET  /api/v1/attachments/status     batch state read (client-side polling)
  GET  /api/v1/attachments/{id}       metadata + extraction outcome

Request lifecycle (upload):
  ┌─────────────────────────────────────────────────────────┐
  │ 1. JWT verification → owner_id = sub (never client data) │
  │ 2. Size guard (empty → 400, > limit → 413)               │
  │ 3. Blob store under attachments/<owner>/<id>/<name>      │
  │ 4. DB insert (extraction_state=pending), commit          │
  │ 5. Celery task published → returns 202                   │
  └─────────────────────────────────────────────────────────┘

AttachmentNotFound → 404 and other InfrastructureError → 503 are mapped
by the app-level exception handlers in main.py.
"""

from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, File, Form, Query, UploadFile, status

from tutorchat.auth.dependencies import Blobs, CurrentUser, DBSession, Publisher
from tutorchat.repositories.attachments import AttachmentRepository, ConversationRepository
from tutorchat.schemas.attachments import (
    AttachmentResponse,
    AttachmentState,
    AttachmentStatusResponse,
    AttachmentUploadResponse,
    ErrorResponse,
    ProcessRequest,
    ProcessResponse,
)
from tutorchat.services.dispatcher import ExtractionDispatcher
from tutorchat.services.ingestion import AttachmentIngestionService, resolve_conversation_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/attachments", tags=["Attachments"])

# Upper bound on ids per status query
MAX_STATUS_IDS = 50


@router.post(
    "/upload",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=AttachmentUploadResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Empty file or malformed conversation id"},
        401: {"model": ErrorResponse, "description": "Missing or invalid token"},
        404: {"model": ErrorResponse, "description": "Conversation belongs to another user"},
        413: {"model": ErrorResponse, "description": "File exceeds the upload limit"},
        500: {"model": ErrorResponse, "description": "Blob store rejected the upload"},
    },
    summary="Upload a file into a conversation",
)
async def upload_attachment(
    user:      CurrentUser,
    db:        DBSession,
    blobs:     Blobs,
    publisher: Publisher,
    file:            UploadFile = File(..., description="The file to attach"),
    conversation_id: Optional[str] = Form(None, description='Conversation UUID, or "new-chat"'),
) -> AttachmentUploadResponse:
    service = AttachmentIngestionService(
        attachments=AttachmentRepository(db),
        conversations=ConversationRepository(db),
        blob_store=blobs,
        user=user,
        task_publisher=publisher,
    )
    return await service.ingest(file, resolve_conversation_id(conversation_id))


@router.post(
    "/process",
    response_model=ProcessResponse,
    responses={
        404: {"model": ErrorResponse, "description": "Attachment not found"},
        503: {"model": ErrorResponse, "description": "Record or blob store unavailable"},
    },
    summary="Extract an attachment's text now",
)
async def process_attachment(
    body:  ProcessRequest,
    user:  CurrentUser,
    db:    DBSession,
    blobs: Blobs,
) -> ProcessResponse:
    repo = AttachmentRepository(db)
    # Ownership check; raises AttachmentNotFound for foreign ids.
    await repo.get(body.attachment_id, owner_id=user.sub)

    result = await ExtractionDispatcher(repo, blobs).dispatch(body.attachment_id)
    return ProcessResponse(
        attachment_id=result.attachment_id,
        extraction_state=result.state,
        extracted_text=result.text,
        text_length=len(result.text),
    )


@router.get(
    "/status",
    response_model=AttachmentStatusResponse,
    summary="Extraction state for a batch of attachments",
)
async def attachment_status(
    user: CurrentUser,
    db:   DBSession,
    ids:  list[UUID] = Query(..., max_length=MAX_STATUS_IDS),
) -> AttachmentStatusResponse:
    rows = await AttachmentRepository(db).get_many(ids, owner_id=user.sub)
    return AttachmentStatusResponse(
        attachments=[
            AttachmentState(attachment_id=a.id, extraction_state=a.state) for a in rows
        ]
    )


@router.get(
    "/{attachment_id}",
    response_model=AttachmentResponse,
    responses={404: {"model": ErrorResponse, "description": "Attachment not found"}},
    summary="Attachment metadata and extraction outcome",
)
async def get_attachment(
    attachment_id: UUID,
    user:  CurrentUser,
    db:    DBSession,
    blobs: Blobs,
) -> AttachmentResponse:
    attachment = await AttachmentRepository(db).get(attachment_id, owner_id=user.sub)
    return AttachmentResponse(
        attachment_id=attachment.id,
        conversation_id=attachment.conversation_id,
        message_id=attachment.message_id,
        file_name=attachment.file_name,
        declared_mime_type=attachment.declared_mime_type,
        byte_size=attachment.byte_size,
        url=blobs.public_url(attachment.storage_path),
        extraction_state=attachment.state,
        extracted_text=attachment.extracted_text,
        created_at=attachment.created_at,
        linked_at=attachment.linked_at,
    )
