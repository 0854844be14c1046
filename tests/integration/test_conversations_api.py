"""
Integration Tests — Conversation API (messages, deletion)
"""

from __future__ import annotations

import uuid

import pytest

from tests.conftest import db_result

CONVERSATION_ID = uuid.UUID("dddddddd-dddd-dddd-dddd-dddddddddddd")


@pytest.mark.integration
class TestSendMessage:

    async def test_text_message_is_forwarded(self, async_client, mock_forwarder, mock_db):
        resp = await async_client.post(
            f"/api/v1/conversations/{CONVERSATION_ID}/messages",
            json={"content": "What is a derivative?"},
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["content"] == "What is a derivative?"
        assert body["attachments_ready"] is True
        mock_forwarder.forward.assert_awaited_once()
        mock_db.commit.assert_awaited()

    async def test_empty_message_is_400(self, async_client, mock_forwarder):
        resp = await async_client.post(
            f"/api/v1/conversations/{CONVERSATION_ID}/messages",
            json={"content": "  ", "attachment_ids": []},
        )

        assert resp.status_code == 400
        assert resp.json()["error_code"] == "EMPTY_MESSAGE"
        mock_forwarder.forward.assert_not_awaited()

    async def test_too_many_attachments_is_422(self, async_client):
        resp = await async_client.post(
            f"/api/v1/conversations/{CONVERSATION_ID}/messages",
            json={"content": "x", "attachment_ids": [str(uuid.uuid4()) for _ in range(21)]},
        )

        assert resp.status_code == 422


@pytest.mark.integration
class TestDeletion:

    async def test_delete_conversation_removes_blobs(self, async_client, mock_db, mock_blob_store):
        mock_db.execute.side_effect = [
            db_result(all=["attachments/o/1/a.txt"]),   # attachment paths
            db_result(),                                # delete attachments
            db_result(),                                # delete messages
            db_result(rowcount=1),                      # delete conversation
        ]

        resp = await async_client.delete(f"/api/v1/conversations/{CONVERSATION_ID}")

        assert resp.status_code == 200
        assert resp.json() == {"deleted": True, "blobs_removed": 1}
        mock_blob_store.delete.assert_awaited_once_with(["attachments/o/1/a.txt"])

    async def test_delete_unknown_conversation_is_404(self, async_client, mock_db, mock_blob_store):
        mock_db.execute.side_effect = [
            db_result(all=[]),
            db_result(),
            db_result(),
            db_result(rowcount=0),
        ]

        resp = await async_client.delete(f"/api/v1/conversations/{CONVERSATION_ID}")

        assert resp.status_code == 404
        assert resp.json()["error_code"] == "CONVERSATION_NOT_FOUND"
        mock_blob_store.delete.assert_not_awaited()

    async def test_delete_account_data(self, async_client, mock_db, mock_blob_store):
        mock_db.execute.side_effect = [
            db_result(all=["p1", "p2"]),
            db_result(),
            db_result(),
            db_result(rowcount=2),
        ]

        resp = await async_client.delete("/api/v1/account/data")

        assert resp.status_code == 200
        assert resp.json()["blobs_removed"] == 2
        mock_blob_store.delete.assert_awaited_once_with(["p1", "p2"])
