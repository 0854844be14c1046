"""
Attachments & Messages — Pydantic Request/Response Schemas

Covers:
  - POST /attachments/upload      (202 response)
  - POST /attachments/process     (synchronous dispatch)
  - GET  /attachments/status      (batch state read used by client polling)
  - GET  /attachments/{id}
  - POST /conversations/{id}/messages
  - All structured error bodies (400, 401, 404, 413, 422, 500, 503)

Design decisions:
  - attachment_id is always server-generated (UUID4); never client-supplied.
  - extraction_state is the async pipeline state, separate from HTTP status.
  - Failed extractions expose only the sentinel text, never raw error detail.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from tutorchat.core.config import settings
from tutorchat.models.attachments import ExtractionState


# ---------------------------------------------------------------------------
# Upload — 202 Accepted
# ---------------------------------------------------------------------------

class AttachmentUploadResponse(BaseModel):
    """
    Returned immediately after a successful upload.
    HTTP 202 — the file is stored but extraction is async.
    """
    attachment_id:      UUID            = Field(..., description="Server-generated attachment UUID")
    url:                str             = Field(..., description="Public URL of the stored file")
    file_name:          str
    byte_size:          int
    declared_mime_type: str             = Field("", description="Content-Type as sent by the client")
    conversation_id:    UUID
    extraction_state:   ExtractionState = ExtractionState.PENDING


# ---------------------------------------------------------------------------
# Process — synchronous dispatch
# ---------------------------------------------------------------------------

class ProcessRequest(BaseModel):
    attachment_id: UUID


class ProcessResponse(BaseModel):
    attachment_id:    UUID
    extraction_state: ExtractionState
    extracted_text:   str
    text_length:      int


# ---------------------------------------------------------------------------
# Status / metadata
# ---------------------------------------------------------------------------

class AttachmentState(BaseModel):
    attachment_id:    UUID
    extraction_state: ExtractionState


class AttachmentStatusResponse(BaseModel):
    """Batch state read. Unknown or foreign ids are omitted."""
    attachments: list[AttachmentState] = Field(default_factory=list)


class AttachmentResponse(BaseModel):
    attachment_id:      UUID
    conversation_id:    UUID
    message_id:         UUID | None = None
    file_name:          str
    declared_mime_type: str
    byte_size:          int
    url:                str
    extraction_state:   ExtractionState
    extracted_text:     str | None = None
    created_at:         datetime | None = None
    linked_at:          datetime | None = None


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

class SendMessageRequest(BaseModel):
    content:        str        = Field("", description="User text; may be empty when files are attached")
    attachment_ids: list[UUID] = Field(default_factory=list, max_length=20)


class SendMessageResponse(BaseModel):
    message_id:         UUID
    conversation_id:    UUID
    content:            str  = Field(..., description="Final content forwarded to the model")
    attachments_ready:  bool = Field(..., description="False when the wait ended with files still pending")
    pending_attachment_ids: list[UUID] = Field(default_factory=list)


class DeleteResponse(BaseModel):
    deleted:        bool
    blobs_removed:  int = 0


# ---------------------------------------------------------------------------
# Structured error bodies
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single structured error — may appear in a list."""
    field:   str | None = Field(None, description="Request field that caused the error, if applicable")
    message: str
    code:    str        = Field(..., description="Machine-readable error code for client handling")


class ErrorResponse(BaseModel):
    """
    Uniform error envelope for all 4xx/5xx responses.
    Clients should check `error_code` for programmatic handling.
    """
    error_code: str               = Field(..., description="Stable machine-readable code")
    message:    str               = Field(..., description="Human-readable summary")
    details:    list[ErrorDetail] = Field(default_factory=list)
    request_id: str | None        = Field(None, description="Trace ID for log correlation")


# ---------------------------------------------------------------------------
# Pre-defined error factories (keeps route handlers thin)
# ---------------------------------------------------------------------------

class AttachmentErrors:
    """Factories for every documented error case."""

    @staticmethod
    def missing_file() -> ErrorResponse:
        return ErrorResponse(
            error_code="MISSING_FILE",
            message="No file content was provided in the request.",
            details=[
                ErrorDetail(
                    field="file",
                    message="The 'file' multipart field is required and must not be empty.",
                    code="MISSING_FILE",
                )
            ],
        )

    @staticmethod
    def file_too_large(byte_size: int) -> ErrorResponse:
        limit  = settings.max_upload_bytes
        max_mb = limit // (1024 * 1024)
        return ErrorResponse(
            error_code="FILE_TOO_LARGE",
            message=f"Uploaded file exceeds the {max_mb} MB limit.",
            details=[
                ErrorDetail(
                    field="file",
                    message=f"Received {byte_size:,} bytes; limit is {limit:,} bytes.",
                    code="FILE_TOO_LARGE",
                )
            ],
        )

    @staticmethod
    def empty_message() -> ErrorResponse:
        return ErrorResponse(
            error_code="EMPTY_MESSAGE",
            message="A message needs text content or at least one attachment.",
            details=[
                ErrorDetail(
                    field="content",
                    message="Both 'content' and 'attachment_ids' are empty.",
                    code="EMPTY_MESSAGE",
                )
            ],
        )

    @staticmethod
    def attachment_not_found(attachment_id: UUID) -> ErrorResponse:
        return ErrorResponse(
            error_code="ATTACHMENT_NOT_FOUND",
            message=f"Attachment '{attachment_id}' was not found.",
        )

    @staticmethod
    def conversation_not_found(conversation_id: UUID) -> ErrorResponse:
        return ErrorResponse(
            error_code="CONVERSATION_NOT_FOUND",
            message=f"Conversation '{conversation_id}' was not found.",
        )

    @staticmethod
    def storage_error(detail: str | None = None) -> ErrorResponse:
        return ErrorResponse(
            error_code="STORAGE_ERROR",
            message="Failed to store the file. Please retry.",
            details=(
                [ErrorDetail(field=None, message=detail, code="STORAGE_ERROR")]
                if detail
                else []
            ),
        )

    @staticmethod
    def service_unavailable() -> ErrorResponse:
        return ErrorResponse(
            error_code="SERVICE_UNAVAILABLE",
            message="Attachment storage is temporarily unavailable. Please retry.",
        )

    @staticmethod
    def unauthorized(detail: str = "Missing or invalid Authorization header.") -> ErrorResponse:
        return ErrorResponse(
            error_code="UNAUTHORIZED",
            message="Authentication required. Provide a valid Bearer token.",
            details=[ErrorDetail(field=None, message=detail, code="UNAUTHORIZED")],
        )

    @staticmethod
    def validation_error(details: list[ErrorDetail]) -> ErrorResponse:
        return ErrorResponse(
            error_code="VALIDATION_ERROR",
            message="The request is invalid.",
            details=details,
        )

    @staticmethod
    def internal_error(request_id: str | None = None) -> ErrorResponse:
        return ErrorResponse(
            error_code="INTERNAL_ERROR",
            message="An unexpected error occurred.",
            request_id=request_id,
        )
