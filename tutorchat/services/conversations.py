"""
Conversation and account deletion.

Children go before parents: attachment rows (collecting their blob paths),
then messages, then the conversation, then the blobs themselves. Everything
runs in the request transaction, so a blob store failure rolls the row
deletions back and the request can simply be retried.
"""

from __future__ import annotations

import logging
import uuid

from fastapi import HTTPException, status

from tutorchat.auth.token import TokenPayload
from tutorchat.repositories.attachments import AttachmentRepository, ConversationRepository
from tutorchat.schemas.attachments import AttachmentErrors, DeleteResponse
from tutorchat.storage.blob import BlobStore

logger = logging.getLogger(__name__)


class ConversationService:
    def __init__(
        self,
        attachments:   AttachmentRepository,
        conversations: ConversationRepository,
        blob_store:    BlobStore,
        user:          TokenPayload,
    ) -> None:
        self._attachments   = attachments
        self._conversations = conversations
        self._blobs         = blob_store
        self._user          = user

    async def delete_conversation(self, conversation_id: uuid.UUID) -> DeleteResponse:
        owner_id = self._user.sub

        paths   = await self._attachments.delete_for_conversation(conversation_id, owner_id)
        deleted = await self._conversations.delete(conversation_id, owner_id)
        if not deleted and not paths:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=AttachmentErrors.conversation_not_found(conversation_id).model_dump(mode="json"),
            )

        await self._blobs.delete(paths)
        logger.info(
            "Conversation deleted | owner=%s conversation=%s blobs=%d",
            owner_id, conversation_id, len(paths),
        )
        return DeleteResponse(deleted=True, blobs_removed=len(paths))

    async def delete_account_data(self) -> DeleteResponse:
        owner_id = self._user.sub

        paths = await self._attachments.delete_for_owner(owner_id)
        count = await self._conversations.delete_for_owner(owner_id)
        await self._blobs.delete(paths)

        logger.warning(
            "Account data deleted | owner=%s conversations=%d blobs=%d",
            owner_id, count, len(paths),
        )
        return DeleteResponse(deleted=True, blobs_removed=len(paths))
