"""
SQLAlchemy ORM Models — Conversations, Messages & Attachments

Using SQLAlchemy mapped classes (2.x style) for full async support.

Ownership note: every row carries `owner_id` (the token `sub`). Queries in
repositories/ always filter on it; nothing here adds that filter implicitly.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Declarative base — shared across all models
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


class ExtractionState(str, Enum):
    PENDING   = "pending"
    SUCCEEDED = "succeeded"
    FAILED    = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ExtractionState.PENDING


# ---------------------------------------------------------------------------
# Conversation / Message — minimal parents for attachment linking
# ---------------------------------------------------------------------------

class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        Index("idx_conversations_owner_id", "owner_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    owner_id: Mapped[str] = mapped_column(Text, nullable=False)
    title:    Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        CheckConstraint("role IN ('user', 'assistant')", name="messages_role_check"),
        Index("idx_messages_conversation_id", "conversation_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    owner_id: Mapped[str] = mapped_column(Text, nullable=False)
    role:     Mapped[str] = mapped_column(Text, nullable=False, default="user")
    content:  Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Final composed content: user text followed by attachment context",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


# ---------------------------------------------------------------------------
# Attachment
# ---------------------------------------------------------------------------

class Attachment(Base):
    """
    One uploaded file and the text extracted from it.

    State machine (extraction_state column):
        pending    — blob stored, extraction not finished
        succeeded  — extracted_text holds the text (possibly "" or an advisory)
        failed     — extracted_text holds a human-readable failure sentinel

    Terminal states are write-once: the repository only ever updates rows
    WHERE extraction_state = 'pending'. The CHECK constraints keep
    extracted_text NULL exactly while the row is pending.
    """

    __tablename__ = "attachments"
    __table_args__ = (
        CheckConstraint(
            "extraction_state IN ('pending', 'succeeded', 'failed')",
            name="attachments_state_check",
        ),
        CheckConstraint(
            "(extraction_state = 'pending') = (extracted_text IS NULL)",
            name="attachments_text_state_check",
        ),
        Index("idx_attachments_owner_id",        "owner_id"),
        Index("idx_attachments_conversation_id", "conversation_id"),
        Index("idx_attachments_message_id",      "message_id"),
        Index("idx_attachments_pending",         "extraction_state", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )

    # Uploader — token `sub`, never taken from the request body
    owner_id: Mapped[str] = mapped_column(Text, nullable=False)

    conversation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    # Set at most once, when the user sends the message the file belongs to
    message_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("messages.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Upload metadata — immutable
    file_name:          Mapped[str] = mapped_column(Text, nullable=False)
    declared_mime_type: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
        server_default="",
        comment="Content-Type as sent by the client; may be empty or generic",
    )
    byte_size:    Mapped[int] = mapped_column(BigInteger, nullable=False)
    storage_path: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Blob key: attachments/<owner_id>/<attachment_id>/<file name>",
    )

    # Extraction outcome
    extraction_state: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=ExtractionState.PENDING.value,
        server_default=ExtractionState.PENDING.value,
    )
    extracted_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    linked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    @property
    def state(self) -> ExtractionState:
        return ExtractionState(self.extraction_state)

    def __repr__(self) -> str:
        return (
            f"<Attachment id={self.id} owner={self.owner_id} "
            f"state={self.extraction_state} file={self.file_name!r}>"
        )
