"""
Message composition — the point where attachments meet the conversation.

    POST /conversations/{id}/messages
      1. validate (text or attachments required)
      2. store the user message, link the attachments to it, commit
      3. bounded wait for extraction (server-side ReadinessPoller)
      4. compose "<text>\n\n[File: …]\n…" from whatever state each file is in
      5. persist the composed content and hand it to the forwarder

Step 3 never fails the request: on timeout the composer renders the
still-pending files with a "processing in progress" note.
"""

from __future__ import annotations

import logging
import uuid
from typing import Protocol, Sequence

from fastapi import HTTPException, status

from tutorchat.auth.token import TokenPayload
from tutorchat.core.config import settings
from tutorchat.models.attachments import ExtractionState
from tutorchat.repositories.attachments import AttachmentRepository, ConversationRepository
from tutorchat.schemas.attachments import AttachmentErrors, SendMessageResponse
from tutorchat.services.composer import compose_attachment_context
from tutorchat.services.readiness import ReadinessPoller

logger = logging.getLogger(__name__)

DEFAULT_ATTACHMENT_PROMPT = "Please analyze the attached file(s)."


# ---------------------------------------------------------------------------
# Forwarding to the conversational model
# ---------------------------------------------------------------------------

class ConversationForwarder(Protocol):
    async def forward(
        self, conversation_id: uuid.UUID, message_id: uuid.UUID, content: str
    ) -> None: ...


class LoggingForwarder:
    """Default forwarder: records the hand-off. The model call lives elsewhere."""

    async def forward(
        self, conversation_id: uuid.UUID, message_id: uuid.UUID, content: str
    ) -> None:
        logger.info(
            "Message forwarded | conversation=%s message=%s chars=%d",
            conversation_id, message_id, len(content),
        )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class MessageService:
    def __init__(
        self,
        attachments:   AttachmentRepository,
        conversations: ConversationRepository,
        forwarder:     ConversationForwarder,
        user:          TokenPayload,
        *,
        poll_interval: float | None = None,
        poll_deadline: float | None = None,
    ) -> None:
        self._attachments   = attachments
        self._conversations = conversations
        self._forwarder     = forwarder
        self._user          = user
        self._interval      = settings.poll_interval_seconds if poll_interval is None else poll_interval
        self._deadline      = (
            settings.server_poll_deadline_seconds if poll_deadline is None else poll_deadline
        )

    async def _fetch_states(self, ids: Sequence[uuid.UUID]) -> dict[uuid.UUID, ExtractionState]:
        rows = await self._attachments.get_many(ids, owner_id=self._user.sub)
        return {a.id: a.state for a in rows}

    async def send(
        self,
        conversation_id: uuid.UUID,
        content: str,
        attachment_ids: Sequence[uuid.UUID],
    ) -> SendMessageResponse:
        owner_id = self._user.sub
        text     = (content or "").strip()
        ids      = list(dict.fromkeys(attachment_ids))

        if not text and not ids:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=AttachmentErrors.empty_message().model_dump(mode="json"),
            )
        if not text:
            text = DEFAULT_ATTACHMENT_PROMPT

        conversation = await self._conversations.ensure(conversation_id, owner_id, title=text[:80])
        if conversation is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=AttachmentErrors.conversation_not_found(conversation_id).model_dump(mode="json"),
            )

        message = await self._conversations.add_message(conversation_id, owner_id, text)
        linked  = await self._attachments.link_to_message(ids, message.id, owner_id)
        # Release the row locks taken by the link so the extraction worker
        # can write terminal states while we poll.
        await self._attachments.commit()

        logger.info(
            "Message stored | conversation=%s message=%s requested=%d linked=%d",
            conversation_id, message.id, len(ids), linked,
        )

        attachments = [
            a for a in await self._attachments.get_many(ids, owner_id=owner_id)
            if a.message_id == message.id
        ]
        readiness = await ReadinessPoller(self._fetch_states, self._interval).wait(
            [a.id for a in attachments], self._deadline
        )
        if readiness.timed_out:
            logger.warning(
                "Composing with pending attachments | message=%s pending=%d waited=%.2fs",
                message.id, len(readiness.pending_ids), readiness.elapsed,
            )

        # Re-read: the poll only carried states, the composer needs the text.
        attachments = await self._attachments.get_many([a.id for a in attachments], owner_id=owner_id)
        final_content = text + compose_attachment_context(attachments)

        await self._conversations.update_message_content(message.id, final_content)
        await self._forwarder.forward(conversation_id, message.id, final_content)

        pending = [a.id for a in attachments if not a.state.is_terminal]
        return SendMessageResponse(
            message_id=message.id,
            conversation_id=conversation_id,
            content=final_content,
            attachments_ready=not pending,
            pending_attachment_ids=pending,
        )
