"""
Conversation API Router

  POST   /api/v1/conversations/{id}/messages   send a message with attachments
  DELETE /api/v1/conversations/{id}            delete conversation + files
  DELETE /api/v1/account/data                  delete everything the user owns
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter

from tutorchat.auth.dependencies import Blobs, CurrentUser, DBSession, Forwarder
from tutorchat.repositories.attachments import AttachmentRepository, ConversationRepository
from tutorchat.schemas.attachments import (
    DeleteResponse,
    ErrorResponse,
    SendMessageRequest,
    SendMessageResponse,
)
from tutorchat.services.conversations import ConversationService
from tutorchat.services.messages import MessageService

router = APIRouter(tags=["Conversations"])


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=SendMessageResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Neither content nor attachments given"},
        404: {"model": ErrorResponse, "description": "Conversation belongs to another user"},
    },
    summary="Send a message, waiting briefly for attachment extraction",
)
async def send_message(
    conversation_id: UUID,
    body:      SendMessageRequest,
    user:      CurrentUser,
    db:        DBSession,
    forwarder: Forwarder,
) -> SendMessageResponse:
    service = MessageService(
        attachments=AttachmentRepository(db),
        conversations=ConversationRepository(db),
        forwarder=forwarder,
        user=user,
    )
    return await service.send(conversation_id, body.content, body.attachment_ids)


@router.delete(
    "/conversations/{conversation_id}",
    response_model=DeleteResponse,
    responses={404: {"model": ErrorResponse, "description": "Conversation not found"}},
    summary="Delete a conversation with its messages and files",
)
async def delete_conversation(
    conversation_id: UUID,
    user:  CurrentUser,
    db:    DBSession,
    blobs: Blobs,
) -> DeleteResponse:
    service = ConversationService(
        AttachmentRepository(db), ConversationRepository(db), blobs, user
    )
    return await service.delete_conversation(conversation_id)


@router.delete(
    "/account/data",
    response_model=DeleteResponse,
    summary="Delete every conversation, message and file the user owns",
)
async def delete_account_data(
    user:  CurrentUser,
    db:    DBSession,
    blobs: Blobs,
) -> DeleteResponse:
    service = ConversationService(
        AttachmentRepository(db), ConversationRepository(db), blobs, user
    )
    return await service.delete_account_data()
