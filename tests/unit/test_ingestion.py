"""
Unit Tests — AttachmentIngestionService
═══════════════════════════════════════
Tests for:
  • Size guard      — empty file (400), oversized (413), limit boundary
  • Storage key     — attachments/<owner>/<attachment_id>/<sanitized name>
  • Ownership       — owner_id from the token, foreign conversation → 404
  • Publishing      — broker failure is logged, upload still succeeds
  • Blob failure    — 500 STORAGE_ERROR, no record written
  • conversation id — "new-chat" / empty → fresh UUID, garbage → 400
"""

from __future__ import annotations

import io
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import HTTPException, UploadFile
from starlette.datastructures import Headers

from tests.conftest import TEST_OWNER
from tutorchat.core.config import settings
from tutorchat.core.errors import BlobStoreError
from tutorchat.models.attachments import Conversation, ExtractionState
from tutorchat.repositories.attachments import AttachmentRepository, ConversationRepository
from tutorchat.services.ingestion import (
    NEW_CONVERSATION,
    AttachmentIngestionService,
    resolve_conversation_id,
)

CONVERSATION_ID = uuid.UUID("dddddddd-dddd-dddd-dddd-dddddddddddd")


def _upload(data: bytes, filename: str | None = "notes.txt", content_type: str = "text/plain"):
    headers = Headers({"content-type": content_type}) if content_type else Headers({})
    return UploadFile(file=io.BytesIO(data), filename=filename, headers=headers)


@pytest.fixture
def attachments():
    repo = MagicMock(spec=AttachmentRepository)
    repo.create = AsyncMock(side_effect=lambda a: a.id)
    repo.commit = AsyncMock()
    return repo


@pytest.fixture
def conversations():
    repo = MagicMock(spec=ConversationRepository)
    repo.ensure = AsyncMock(
        return_value=Conversation(id=CONVERSATION_ID, owner_id=TEST_OWNER, title="notes.txt")
    )
    return repo


@pytest.fixture
def service(attachments, conversations, mock_blob_store, user_payload, mock_publisher):
    return AttachmentIngestionService(
        attachments=attachments,
        conversations=conversations,
        blob_store=mock_blob_store,
        user=user_payload,
        task_publisher=mock_publisher,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Happy path
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestIngestHappyPath:

    async def test_returns_pending_response(self, service):
        resp = await service.ingest(_upload(b"hello world"), CONVERSATION_ID)

        assert resp.extraction_state is ExtractionState.PENDING
        assert resp.byte_size == 11
        assert resp.file_name == "notes.txt"
        assert resp.declared_mime_type == "text/plain"
        assert resp.conversation_id == CONVERSATION_ID
        assert resp.url.startswith("https://files.test/attachments/")

    async def test_storage_key_layout(self, service, mock_blob_store):
        resp = await service.ingest(_upload(b"x", filename="../../My Notes (v2).txt"), CONVERSATION_ID)

        path, data, content_type = mock_blob_store.put.await_args.args
        assert path == f"attachments/{TEST_OWNER}/{resp.attachment_id}/My_Notes__v2_.txt"
        assert data == b"x"
        assert content_type == "text/plain"

    async def test_record_is_pending_and_owned_by_token_subject(self, service, attachments):
        await service.ingest(_upload(b"abc"), CONVERSATION_ID)

        record = attachments.create.await_args.args[0]
        assert record.owner_id == TEST_OWNER
        assert record.extraction_state == "pending"
        assert record.extracted_text is None
        assert record.conversation_id == CONVERSATION_ID

    async def test_commit_happens_before_publish(self, service, attachments, mock_publisher):
        order: list[str] = []
        attachments.commit.side_effect = lambda: order.append("commit")
        mock_publisher.publish_extraction_task.side_effect = lambda _id: order.append("publish")

        resp = await service.ingest(_upload(b"abc"), CONVERSATION_ID)

        assert order == ["commit", "publish"]
        mock_publisher.publish_extraction_task.assert_awaited_once_with(resp.attachment_id)

    async def test_conversation_is_created_with_file_name_title(self, service, conversations):
        await service.ingest(_upload(b"abc", filename="essay.docx"), CONVERSATION_ID)

        conversations.ensure.assert_awaited_once_with(CONVERSATION_ID, TEST_OWNER, title="essay.docx")

    async def test_missing_name_and_type_fall_back(self, service):
        resp = await service.ingest(_upload(b"abc", filename=None, content_type=""), CONVERSATION_ID)

        assert resp.file_name == "upload"
        assert resp.declared_mime_type == ""

    async def test_publish_failure_is_not_fatal(self, service, mock_publisher):
        mock_publisher.publish_extraction_task.side_effect = ConnectionError("broker down")

        resp = await service.ingest(_upload(b"abc"), CONVERSATION_ID)

        assert resp.extraction_state is ExtractionState.PENDING


# ─────────────────────────────────────────────────────────────────────────────
# Rejections
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestIngestRejections:

    async def test_empty_file_is_400(self, service, mock_blob_store):
        with pytest.raises(HTTPException) as exc_info:
            await service.ingest(_upload(b""), CONVERSATION_ID)

        assert exc_info.value.status_code == 400
        assert exc_info.value.detail["error_code"] == "MISSING_FILE"
        mock_blob_store.put.assert_not_awaited()

    async def test_oversized_file_is_413(self, service, mock_blob_store, monkeypatch):
        monkeypatch.setattr(settings, "max_upload_bytes", 16)

        with pytest.raises(HTTPException) as exc_info:
            await service.ingest(_upload(b"x" * 17), CONVERSATION_ID)

        assert exc_info.value.status_code == 413
        assert exc_info.value.detail["error_code"] == "FILE_TOO_LARGE"
        mock_blob_store.put.assert_not_awaited()

    async def test_file_at_limit_is_accepted(self, service, monkeypatch):
        monkeypatch.setattr(settings, "max_upload_bytes", 16)

        resp = await service.ingest(_upload(b"x" * 16), CONVERSATION_ID)

        assert resp.byte_size == 16

    async def test_foreign_conversation_is_404(self, service, conversations, mock_blob_store):
        conversations.ensure.return_value = None

        with pytest.raises(HTTPException) as exc_info:
            await service.ingest(_upload(b"abc"), CONVERSATION_ID)

        assert exc_info.value.status_code == 404
        mock_blob_store.put.assert_not_awaited()

    async def test_blob_failure_is_500_and_nothing_recorded(
        self, service, mock_blob_store, attachments, mock_publisher
    ):
        mock_blob_store.put.side_effect = BlobStoreError("access denied")

        with pytest.raises(HTTPException) as exc_info:
            await service.ingest(_upload(b"abc"), CONVERSATION_ID)

        assert exc_info.value.status_code == 500
        assert exc_info.value.detail["error_code"] == "STORAGE_ERROR"
        attachments.create.assert_not_awaited()
        mock_publisher.publish_extraction_task.assert_not_awaited()


# ─────────────────────────────────────────────────────────────────────────────
# Conversation id parsing
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestResolveConversationId:

    @pytest.mark.parametrize("raw", [None, "", "  ", NEW_CONVERSATION])
    def test_new_conversation_gets_fresh_uuid(self, raw):
        first, second = resolve_conversation_id(raw), resolve_conversation_id(raw)
        assert isinstance(first, uuid.UUID)
        assert first != second

    def test_existing_uuid_is_kept(self):
        assert resolve_conversation_id(str(CONVERSATION_ID)) == CONVERSATION_ID

    def test_garbage_is_400(self):
        with pytest.raises(HTTPException) as exc_info:
            resolve_conversation_id("conv-123")

        assert exc_info.value.status_code == 400
        assert exc_info.value.detail["details"][0]["code"] == "INVALID_ID"
