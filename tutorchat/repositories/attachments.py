"""
Attachment Record Store — SQLAlchemy async repository.

Write-once terminal state
─────────────────────────
set_terminal_state() issues

    UPDATE attachments SET extraction_state=…, extracted_text=…
     WHERE id = :id AND extraction_state = 'pending'

and reports whether a row matched. Two dispatchers racing on the same
attachment therefore cannot overwrite each other: the loser sees False and
re-reads the winner's result.

All database failures surface as RecordStoreError so callers only deal
with the InfrastructureError family.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterator, Sequence

from sqlalchemy import case, delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tutorchat.core.errors import AttachmentNotFound, RecordStoreError
from tutorchat.models.attachments import Attachment, Conversation, ExtractionState, Message

logger = logging.getLogger(__name__)


def link_timestamps(
    attachment_ids: Sequence[uuid.UUID], now: datetime
) -> dict[uuid.UUID, datetime]:
    """One microsecond apart, in request order, so linked_at alone orders a message."""
    return {
        attachment_id: now + timedelta(microseconds=position)
        for position, attachment_id in enumerate(dict.fromkeys(attachment_ids))
    }


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Record store failure | op=%s error=%s", operation, exc)
        raise RecordStoreError(f"{operation} failed: {exc}") from exc


class AttachmentRepository:
    """
    One instance per session. `owner_id` arguments scope reads to a single
    user; the dispatcher and background scanner pass None because they act
    on behalf of the system.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Create / read
    # ------------------------------------------------------------------

    async def create(self, attachment: Attachment) -> uuid.UUID:
        with _store_errors("create"):
            self._db.add(attachment)
            await self._db.flush()
        return attachment.id

    async def commit(self) -> None:
        """Make pending writes visible to other sessions (e.g. a Celery worker)."""
        with _store_errors("commit"):
            await self._db.commit()

    async def get(self, attachment_id: uuid.UUID, owner_id: str | None = None) -> Attachment:
        stmt = select(Attachment).where(Attachment.id == attachment_id)
        if owner_id is not None:
            stmt = stmt.where(Attachment.owner_id == owner_id)
        # Bypass the identity map so state written by another session is seen.
        stmt = stmt.execution_options(populate_existing=True)

        with _store_errors("get"):
            result = await self._db.execute(stmt)
        attachment = result.scalars().first()
        if attachment is None:
            raise AttachmentNotFound(attachment_id)
        return attachment

    async def get_many(
        self,
        attachment_ids: Sequence[uuid.UUID],
        owner_id: str | None = None,
    ) -> list[Attachment]:
        """Missing ids are omitted; the result follows the input order."""
        if not attachment_ids:
            return []
        stmt = select(Attachment).where(Attachment.id.in_(list(attachment_ids)))
        if owner_id is not None:
            stmt = stmt.where(Attachment.owner_id == owner_id)
        stmt = stmt.execution_options(populate_existing=True)

        with _store_errors("get_many"):
            result = await self._db.execute(stmt)
        by_id = {a.id: a for a in result.scalars().all()}

        ordered: list[Attachment] = []
        seen: set[uuid.UUID] = set()
        for attachment_id in attachment_ids:
            if attachment_id in by_id and attachment_id not in seen:
                ordered.append(by_id[attachment_id])
                seen.add(attachment_id)
        return ordered

    async def list_for_message(self, message_id: uuid.UUID) -> list[Attachment]:
        stmt = (
            select(Attachment)
            .where(Attachment.message_id == message_id)
            .order_by(Attachment.linked_at, Attachment.created_at)
        )
        with _store_errors("list_for_message"):
            result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def list_stale_pending(self, older_than: datetime, limit: int = 100) -> list[Attachment]:
        """Pending rows created before `older_than`, oldest first."""
        stmt = (
            select(Attachment)
            .where(
                Attachment.extraction_state == ExtractionState.PENDING.value,
                Attachment.created_at < older_than,
            )
            .order_by(Attachment.created_at)
            .limit(limit)
        )
        with _store_errors("list_stale_pending"):
            result = await self._db.execute(stmt)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    async def set_terminal_state(
        self,
        attachment_id: uuid.UUID,
        state: ExtractionState,
        text: str,
    ) -> bool:
        """
        Move a pending attachment to `state`. Returns False when the row was
        no longer pending (or does not exist); nothing is written then.
        """
        state = ExtractionState(state)
        if not state.is_terminal:
            raise ValueError("Terminal state required, got 'pending'")
        if text is None:
            raise ValueError("extracted_text must not be None for a terminal state")
        if state is ExtractionState.FAILED and not text.strip():
            raise ValueError("A failed attachment needs a non-empty sentinel text")

        stmt = (
            update(Attachment)
            .where(
                Attachment.id == attachment_id,
                Attachment.extraction_state == ExtractionState.PENDING.value,
            )
            .values(extraction_state=state.value, extracted_text=text)
            .execution_options(synchronize_session=False)
        )
        with _store_errors("set_terminal_state"):
            result = await self._db.execute(stmt)
        return result.rowcount == 1

    async def link_to_message(
        self,
        attachment_ids: Sequence[uuid.UUID],
        message_id: uuid.UUID,
        owner_id: str,
    ) -> int:
        """Attach unlinked attachments owned by `owner_id` to a message."""
        if not attachment_ids:
            return 0
        stamps = link_timestamps(attachment_ids, datetime.now(timezone.utc))
        stmt = (
            update(Attachment)
            .where(
                Attachment.id.in_(list(stamps)),
                Attachment.owner_id == owner_id,
                Attachment.message_id.is_(None),
            )
            .values(message_id=message_id, linked_at=case(stamps, value=Attachment.id))
            .execution_options(synchronize_session=False)
        )
        with _store_errors("link_to_message"):
            result = await self._db.execute(stmt)
        return result.rowcount

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def delete_for_conversation(
        self, conversation_id: uuid.UUID, owner_id: str
    ) -> list[str]:
        """Delete the conversation's attachment rows; returns their blob paths."""
        return await self._delete_where(
            "delete_for_conversation",
            Attachment.conversation_id == conversation_id,
            Attachment.owner_id == owner_id,
        )

    async def delete_for_owner(self, owner_id: str) -> list[str]:
        return await self._delete_where("delete_for_owner", Attachment.owner_id == owner_id)

    async def _delete_where(self, operation: str, *criteria) -> list[str]:
        with _store_errors(operation):
            result = await self._db.execute(select(Attachment.storage_path).where(*criteria))
            paths = list(result.scalars().all())
            await self._db.execute(
                delete(Attachment).where(*criteria).execution_options(synchronize_session=False)
            )
        return paths


class ConversationRepository:
    """Parents of attachments: conversations and the messages sent in them."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def get(self, conversation_id: uuid.UUID, owner_id: str) -> Conversation | None:
        stmt = select(Conversation).where(
            Conversation.id == conversation_id,
            Conversation.owner_id == owner_id,
        )
        with _store_errors("get_conversation"):
            result = await self._db.execute(stmt)
        return result.scalars().first()

    async def ensure(
        self, conversation_id: uuid.UUID, owner_id: str, title: str = ""
    ) -> Conversation | None:
        """
        Return the owner's conversation, creating it on first use.
        None when the id already belongs to somebody else.
        """
        with _store_errors("ensure_conversation"):
            existing = await self._db.get(Conversation, conversation_id)
            if existing is not None:
                return existing if existing.owner_id == owner_id else None
            conversation = Conversation(id=conversation_id, owner_id=owner_id, title=title[:200])
            self._db.add(conversation)
            await self._db.flush()
        return conversation

    async def add_message(
        self,
        conversation_id: uuid.UUID,
        owner_id: str,
        content: str,
        role: str = "user",
    ) -> Message:
        message = Message(
            id=uuid.uuid4(),
            conversation_id=conversation_id,
            owner_id=owner_id,
            role=role,
            content=content,
        )
        with _store_errors("add_message"):
            self._db.add(message)
            await self._db.flush()
        return message

    async def update_message_content(self, message_id: uuid.UUID, content: str) -> None:
        stmt = (
            update(Message)
            .where(Message.id == message_id)
            .values(content=content)
            .execution_options(synchronize_session=False)
        )
        with _store_errors("update_message_content"):
            await self._db.execute(stmt)

    async def delete(self, conversation_id: uuid.UUID, owner_id: str) -> bool:
        """Delete messages, then the conversation. Attachments go first, via AttachmentRepository."""
        with _store_errors("delete_conversation"):
            await self._db.execute(
                delete(Message)
                .where(Message.conversation_id == conversation_id, Message.owner_id == owner_id)
                .execution_options(synchronize_session=False)
            )
            result = await self._db.execute(
                delete(Conversation)
                .where(Conversation.id == conversation_id, Conversation.owner_id == owner_id)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount == 1

    async def delete_for_owner(self, owner_id: str) -> int:
        with _store_errors("delete_conversations_for_owner"):
            await self._db.execute(
                delete(Message)
                .where(Message.owner_id == owner_id)
                .execution_options(synchronize_session=False)
            )
            result = await self._db.execute(
                delete(Conversation)
                .where(Conversation.owner_id == owner_id)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount
