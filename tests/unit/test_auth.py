"""
Unit Tests — JWT verification
═════════════════════════════
Tests for:
  • verify_token       — valid token, expired, bad audience, missing sub
  • _get_signing_key   — kid lookup, force-refresh on unknown kid, JWKS outage
  • get_current_user   — missing credentials

All tests use the test RSA key pair from conftest.py.
Zero network calls — _fetch_jwks is patched.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from tests.conftest import TEST_ISSUER, TEST_OWNER


@pytest.fixture(autouse=True)
def clear_jwks_cache():
    from tutorchat.auth.token import _JWKS_CACHE
    _JWKS_CACHE.clear()
    yield
    _JWKS_CACHE.clear()


def _patch_jwks(jwks=None, side_effect=None):
    return patch(
        "tutorchat.auth.token._fetch_jwks",
        new=AsyncMock(return_value=jwks, side_effect=side_effect),
    )


@pytest.mark.unit
class TestVerifyToken:

    async def test_valid_token_returns_payload(self, make_token, test_jwks):
        from tutorchat.auth.token import verify_token

        with _patch_jwks(test_jwks):
            payload = await verify_token(make_token())

        assert payload.sub == TEST_OWNER
        assert payload.email == "student@example.com"
        assert payload.iss == TEST_ISSUER

    async def test_expired_token_is_401(self, make_token, test_jwks):
        from tutorchat.auth.token import verify_token

        with _patch_jwks(test_jwks):
            with pytest.raises(HTTPException) as exc_info:
                await verify_token(make_token(expired=True))

        assert exc_info.value.status_code == 401
        assert exc_info.value.headers["WWW-Authenticate"] == "Bearer"
        assert exc_info.value.detail["details"][0]["message"] == "Token has expired"

    async def test_wrong_audience_is_401(self, make_token, test_jwks):
        from tutorchat.auth.token import verify_token

        with _patch_jwks(test_jwks):
            with pytest.raises(HTTPException) as exc_info:
                await verify_token(make_token(audience="another-api"))

        assert exc_info.value.status_code == 401

    async def test_wrong_issuer_is_401(self, make_token, test_jwks):
        from tutorchat.auth.token import verify_token

        with _patch_jwks(test_jwks):
            with pytest.raises(HTTPException) as exc_info:
                await verify_token(make_token(issuer="https://evil.example.com/"))

        assert exc_info.value.status_code == 401

    async def test_missing_sub_is_401(self, make_token, test_jwks):
        from tutorchat.auth.token import verify_token

        with _patch_jwks(test_jwks):
            with pytest.raises(HTTPException) as exc_info:
                await verify_token(make_token(sub=None))

        assert exc_info.value.status_code == 401

    async def test_garbage_token_is_401(self, test_jwks):
        from tutorchat.auth.token import verify_token

        with _patch_jwks(test_jwks):
            with pytest.raises(HTTPException) as exc_info:
                await verify_token("not.a.jwt")

        assert exc_info.value.status_code == 401


@pytest.mark.unit
class TestSigningKey:

    async def test_unknown_kid_forces_one_refresh(self, make_token, test_jwks):
        from tutorchat.auth.token import _get_signing_key

        fetch = AsyncMock(return_value=test_jwks)
        with patch("tutorchat.auth.token._fetch_jwks", new=fetch):
            with pytest.raises(HTTPException) as exc_info:
                await _get_signing_key(make_token(kid="rotated-away"))

        assert exc_info.value.status_code == 401
        assert fetch.await_count == 2

    async def test_rotated_key_found_after_refresh(self, make_token, test_jwks):
        from tutorchat.auth.token import _get_signing_key

        fetch = AsyncMock(side_effect=[{"keys": []}, test_jwks])
        with patch("tutorchat.auth.token._fetch_jwks", new=fetch):
            key = await _get_signing_key(make_token())

        assert key is not None
        assert fetch.await_count == 2

    async def test_jwks_outage_is_503(self, make_token):
        from tutorchat.auth.token import _get_signing_key

        with _patch_jwks(side_effect=httpx.ConnectError("dns failure")):
            with pytest.raises(HTTPException) as exc_info:
                await _get_signing_key(make_token())

        assert exc_info.value.status_code == 503


@pytest.mark.unit
class TestGetCurrentUser:

    async def test_missing_credentials_is_401(self):
        from tutorchat.auth.token import get_current_user

        with pytest.raises(HTTPException) as exc_info:
            await get_current_user(None)

        assert exc_info.value.status_code == 401

    async def test_bearer_token_is_verified(self, make_token, test_jwks):
        from tutorchat.auth.token import get_current_user

        creds = HTTPAuthorizationCredentials(scheme="Bearer", credentials=make_token())
        with _patch_jwks(test_jwks):
            user = await get_current_user(creds)

        assert user.sub == TEST_OWNER
