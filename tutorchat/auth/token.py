"""
JWT Token Verification — OIDC-Compatible

Any OIDC provider that signs RS256 access tokens and publishes a JWKS at
<issuer>/.well-known/jwks.json works (Cognito, Auth0, Supabase, Keycloak).
Only `sub` is required beyond the standard exp/iss/aud claims; it becomes
the owner_id of every record the request touches.

We fetch the public JWKS once and cache it (TTL: 1 hour). If a kid is
missing we force-refresh — handles key rotation transparently.
"""

from __future__ import annotations

import logging
import time
from typing import Annotated

import httpx
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwk, jwt
from pydantic import BaseModel

from tutorchat.core.config import settings
from tutorchat.schemas.attachments import AttachmentErrors

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# HTTP Bearer extractor
# ---------------------------------------------------------------------------

bearer_scheme = HTTPBearer(auto_error=False)


# ---------------------------------------------------------------------------
# Verified token payload
# ---------------------------------------------------------------------------

class TokenPayload(BaseModel):
    """Parsed, validated JWT claims — passed to route handlers."""
    sub:   str   # provider user ID; used as owner_id
    email: str
    exp:   int
    iss:   str


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status.HTTP_401_UNAUTHORIZED,
        detail=AttachmentErrors.unauthorized(detail).model_dump(mode="json"),
        headers={"WWW-Authenticate": "Bearer"},
    )


# ---------------------------------------------------------------------------
# JWKS cache (in-memory, TTL-based)
# ---------------------------------------------------------------------------

_JWKS_CACHE: dict[str, tuple[dict, float]] = {}   # issuer → (jwks, fetched_at)
_JWKS_TTL   = 3600   # 1 hour


async def _fetch_jwks(issuer: str) -> dict:
    """Fetch JWKS from the provider's well-known endpoint with TTL caching."""
    now = time.monotonic()
    cached = _JWKS_CACHE.get(issuer)
    if cached and (now - cached[1]) < _JWKS_TTL:
        return cached[0]

    jwks_uri = f"{issuer.rstrip('/')}/.well-known/jwks.json"
    async with httpx.AsyncClient(timeout=10.0) as client:
        resp = await client.get(jwks_uri)
        resp.raise_for_status()
        jwks = resp.json()

    _JWKS_CACHE[issuer] = (jwks, now)
    logger.debug("JWKS refreshed for issuer: %s", issuer)
    return jwks


async def _get_signing_key(token: str):
    """
    Extract kid from token header, fetch matching public key from JWKS.
    Force-refreshes the cache if the kid is not found (handles key rotation).
    """
    try:
        header = jwt.get_unverified_header(token)
    except JWTError as exc:
        raise _unauthorized("Invalid token header") from exc

    kid    = header.get("kid")
    issuer = settings.auth_issuer

    for attempt in range(2):   # 0 = cached, 1 = force refresh
        if attempt == 1:
            _JWKS_CACHE.pop(issuer, None)

        try:
            jwks = await _fetch_jwks(issuer)
        except httpx.HTTPError as exc:
            logger.error("JWKS fetch failed | issuer=%s error=%s", issuer, exc)
            raise HTTPException(
                status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=AttachmentErrors.service_unavailable().model_dump(mode="json"),
            ) from exc

        for key_data in jwks.get("keys", []):
            if key_data.get("kid") == kid:
                return jwk.construct(key_data)

    raise _unauthorized(f"Unable to find signing key for kid={kid}")


# ---------------------------------------------------------------------------
# Main verification function
# ---------------------------------------------------------------------------

async def verify_token(token: str) -> TokenPayload:
    """
    Verify a JWT token:
      1. Fetch matching public key from JWKS (cached).
      2. Verify signature, expiry, issuer, audience.
      3. Return a typed TokenPayload.
    """
    signing_key = await _get_signing_key(token)

    try:
        claims = jwt.decode(
            token,
            signing_key,
            algorithms=["RS256"],
            audience=settings.auth_audience or None,
            issuer=settings.auth_issuer,
            options={"verify_exp": True, "verify_aud": bool(settings.auth_audience)},
        )
    except ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except JWTError as exc:
        raise _unauthorized(f"Invalid token: {exc}")

    if not claims.get("sub"):
        raise _unauthorized("Token missing sub claim")

    return TokenPayload(
        sub=str(claims["sub"]),
        email=claims.get("email", ""),
        exp=claims["exp"],
        iss=claims["iss"],
    )


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------

async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> TokenPayload:
    """
    FastAPI dependency that extracts and validates the Bearer token.

        @router.get("/attachments/{attachment_id}")
        async def get_attachment(user: TokenPayload = Depends(get_current_user)):
            ...
    """
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Missing or invalid Authorization header.")
    return await verify_token(credentials.credentials)
