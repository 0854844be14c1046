"""
FastAPI Application — Entry Point

Tutoring-chat attachment service

Architecture:
  - All routes are versioned under /api/v1/
  - Authentication is JWT-based (any OIDC provider, RS256 + JWKS) per route
  - Every query is scoped to the token's `sub` as owner_id
  - Extraction runs in Celery workers; the API only stores and enqueues
  - Structured JSON error responses on all 4xx/5xx

Middleware stack (innermost → outermost):
  1. CORS — restrict to configured origins
  2. Request ID injection — X-Request-ID header on every response
  3. Gzip — compress responses > 1 KB

Exception mapping:
  AttachmentNotFound     → 404
  InfrastructureError    → 503 (record store / blob store unavailable)
  RequestValidationError → 422
  anything else          → 500, no stack trace in the body
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from tutorchat.api.v1.attachments import router as attachments_router
from tutorchat.api.v1.conversations import router as conversations_router
from tutorchat.core.config import settings
from tutorchat.core.errors import AttachmentNotFound, InfrastructureError
from tutorchat.core.logging import configure_logging
from tutorchat.db.session import check_db_health
from tutorchat.schemas.attachments import AttachmentErrors, ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)

configure_logging("DEBUG" if settings.debug else settings.log_level)

# HTTP status → error code for HTTPExceptions raised without an envelope
HTTP_ERROR_MAP: dict[int, str] = {
    400: "INVALID_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    413: "FILE_TOO_LARGE",
    422: "VALIDATION_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get(
        "X-Request-ID", str(uuid.uuid4())
    )


def _error_response(request: Request, status_code: int, body: ErrorResponse, headers=None) -> JSONResponse:
    body.request_id = _request_id(request)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json"),
        headers={**(headers or {}), "X-Request-ID": body.request_id},
    )


# ---------------------------------------------------------------------------
# Application lifespan — startup / shutdown hooks
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Run on startup: check DB connectivity, log config summary.
    Run on shutdown: clean up connection pools.
    """
    logger.info("Starting attachment service | env=%s", settings.app_env)

    db_health = await check_db_health()
    if db_health["status"] != "ok":
        # /ready reports this; liveness should not depend on the database.
        logger.error("Database unavailable at startup: %s", db_health)
    else:
        logger.info("Database: connected")
    logger.info("Auth issuer: %s", settings.auth_issuer or "-")
    logger.info("S3 bucket: %s", settings.s3_bucket)

    yield

    logger.info("Shutting down attachment service")
    from tutorchat.db.session import engine
    await engine.dispose()


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app() -> FastAPI:
    app = FastAPI(
        title="Tutoring Chat Attachments",
        description=(
            "Upload, text extraction and message composition for files attached "
            "to tutoring conversations."
        ),
        version="0.1.0",
        docs_url="/api/docs" if not settings.is_production else None,
        redoc_url="/api/redoc" if not settings.is_production else None,
        openapi_url="/api/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )

    # ----------------------------------------------------------------
    # Middleware (applied in reverse order — last added = outermost)
    # ----------------------------------------------------------------

    app.add_middleware(GZipMiddleware, minimum_size=1024)

    # CORS: restrict to configured origins
    allowed_origins = (
        ["*"] if settings.app_env == "development"
        else list(settings.cors_allowed_origins)
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
    )

    @app.middleware("http")
    async def request_id_and_logging(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        start = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "HTTP %s %s %d %.1fms",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
        )
        return response

    # ----------------------------------------------------------------
    # Exception handlers — uniform structured error responses
    # ----------------------------------------------------------------

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Flatten ErrorResponse details; wrap plain-string details in one."""
        if isinstance(exc.detail, dict) and "error_code" in exc.detail:
            body = ErrorResponse.model_validate(exc.detail)
        else:
            body = ErrorResponse(
                error_code=HTTP_ERROR_MAP.get(exc.status_code, "ERROR"),
                message=str(exc.detail),
            )
        return _error_response(request, exc.status_code, body, getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Convert Pydantic/FastAPI validation errors to structured ErrorResponse."""
        details = [
            ErrorDetail(
                field=" → ".join(str(loc) for loc in err["loc"]),
                message=err["msg"],
                code="VALIDATION_ERROR",
            )
            for err in exc.errors()
        ]
        return _error_response(
            request,
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            AttachmentErrors.validation_error(details),
        )

    @app.exception_handler(AttachmentNotFound)
    async def not_found_handler(request: Request, exc: AttachmentNotFound):
        return _error_response(
            request,
            status.HTTP_404_NOT_FOUND,
            AttachmentErrors.attachment_not_found(exc.attachment_id),
        )

    @app.exception_handler(InfrastructureError)
    async def infrastructure_handler(request: Request, exc: InfrastructureError):
        logger.error(
            "Infrastructure failure | path=%s error=%s", request.url.path, exc,
        )
        return _error_response(
            request,
            status.HTTP_503_SERVICE_UNAVAILABLE,
            AttachmentErrors.service_unavailable(),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Catch-all for unhandled exceptions — never expose stack traces."""
        request_id = _request_id(request)
        logger.exception(
            "Unhandled exception | path=%s request_id=%s",
            request.url.path, request_id,
        )
        return _error_response(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            AttachmentErrors.internal_error(request_id),
        )

    # ----------------------------------------------------------------
    # Routers
    # ----------------------------------------------------------------

    app.include_router(attachments_router,   prefix="/api/v1")
    app.include_router(conversations_router, prefix="/api/v1")

    # ----------------------------------------------------------------
    # Health & readiness endpoints (no auth — used by load balancer)
    # ----------------------------------------------------------------

    @app.get("/health", tags=["Operations"], summary="Liveness probe")
    async def health() -> dict:
        return {"status": "ok", "service": "tutorchat-attachments"}

    @app.get("/ready", tags=["Operations"], summary="Readiness probe")
    async def readiness() -> JSONResponse:
        db_status = await check_db_health()
        if db_status["status"] != "ok":
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "not_ready", "database": db_status},
            )
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"status": "ready", "database": db_status},
        )

    return app


# ---------------------------------------------------------------------------
# Application instance (imported by uvicorn)
# ---------------------------------------------------------------------------

app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "tutorchat.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.app_env == "development",
        log_level="debug" if settings.debug else "info",
    )
