"""
Async HTTP client for the attachment API.

Mirrors what the chat front-end does around a send:

    async with AttachmentsClient(base_url, token) as client:
        up = await client.upload("notes.pdf", data, "application/pdf", conversation_id)
        await client.send_message_when_ready(up.conversation_id, "Summarise", [up.attachment_id])

The client-side wait is short (`client_poll_deadline_seconds`); the server
waits again, longer, when the message arrives.
"""

from __future__ import annotations

import logging
from typing import Sequence
from uuid import UUID

import httpx

from tutorchat.core.config import settings
from tutorchat.models.attachments import ExtractionState
from tutorchat.schemas.attachments import (
    AttachmentStatusResponse,
    AttachmentUploadResponse,
    ProcessResponse,
    SendMessageResponse,
)
from tutorchat.services.readiness import ReadinessPoller, ReadinessResult

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


class AttachmentsClient:
    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        poll_interval: float | None = None,
        poll_deadline: float | None = None,
    ) -> None:
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + API_PREFIX,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )
        self._interval = settings.poll_interval_seconds if poll_interval is None else poll_interval
        self._deadline = (
            settings.client_poll_deadline_seconds if poll_deadline is None else poll_deadline
        )

    async def __aenter__(self) -> "AttachmentsClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    async def upload(
        self,
        file_name: str,
        data: bytes,
        content_type: str = "",
        conversation_id: UUID | str | None = None,
    ) -> AttachmentUploadResponse:
        form = {"conversation_id": str(conversation_id)} if conversation_id else {}
        resp = await self._http.post(
            "/attachments/upload",
            files={"file": (file_name, data, content_type or "application/octet-stream")},
            data=form,
        )
        resp.raise_for_status()
        return AttachmentUploadResponse.model_validate(resp.json())

    async def process(self, attachment_id: UUID) -> ProcessResponse:
        resp = await self._http.post(
            "/attachments/process", json={"attachment_id": str(attachment_id)}
        )
        resp.raise_for_status()
        return ProcessResponse.model_validate(resp.json())

    async def status(self, attachment_ids: Sequence[UUID]) -> dict[UUID, ExtractionState]:
        resp = await self._http.get(
            "/attachments/status", params=[("ids", str(i)) for i in attachment_ids]
        )
        resp.raise_for_status()
        body = AttachmentStatusResponse.model_validate(resp.json())
        return {a.attachment_id: a.extraction_state for a in body.attachments}

    async def send_message(
        self,
        conversation_id: UUID,
        content: str,
        attachment_ids: Sequence[UUID] = (),
    ) -> SendMessageResponse:
        resp = await self._http.post(
            f"/conversations/{conversation_id}/messages",
            json={"content": content, "attachment_ids": [str(i) for i in attachment_ids]},
        )
        resp.raise_for_status()
        return SendMessageResponse.model_validate(resp.json())

    # ------------------------------------------------------------------
    # Client-side readiness
    # ------------------------------------------------------------------

    async def wait_for_processing(
        self,
        attachment_ids: Sequence[UUID],
        deadline: float | None = None,
    ) -> ReadinessResult:
        """Best-effort wait; a timed-out result is normal, not an error."""
        poller = ReadinessPoller(self.status, self._interval)
        result = await poller.wait(
            attachment_ids, self._deadline if deadline is None else deadline
        )
        if result.timed_out:
            logger.info(
                "Sending before extraction finished | pending=%d", len(result.pending_ids)
            )
        return result

    async def send_message_when_ready(
        self,
        conversation_id: UUID,
        content: str,
        attachment_ids: Sequence[UUID] = (),
    ) -> SendMessageResponse:
        if attachment_ids:
            await self.wait_for_processing(attachment_ids)
        return await self.send_message(conversation_id, content, attachment_ids)
