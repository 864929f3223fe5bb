import asyncio
from uuid import uuid4

import pytest

from screentime.core import supabase_auth
from screentime.core.config import settings
from screentime.core.errors import AuthError, UpstreamUnavailable
from screentime.core.security import AuthUser
from screentime.core.supabase_auth import verify_supabase_access_token


def test_verify_supabase_access_token_uses_jwks_when_available(monkeypatch):
    expected = AuthUser(user_id=uuid4(), email="user@example.com", display_name="User")

    monkeypatch.setattr(
        supabase_auth,
        "_decode_token_with_jwks",
        lambda token: expected,
    )

    async def _fallback(_token: str):
        raise AssertionError("fallback should not be called when jwks succeeds")

    monkeypatch.setattr(supabase_auth, "_fetch_user_from_supabase", _fallback)

    actual = asyncio.run(verify_supabase_access_token("Bearer sample-token"))
    assert actual == expected


def test_verify_supabase_access_token_falls_back_to_user_endpoint(monkeypatch):
    expected = AuthUser(user_id=uuid4(), email="fallback@example.com", display_name="Fallback")

    def _decode_fail(_token: str):
        raise ValueError("decode failed")

    async def _fallback(_token: str):
        return expected

    monkeypatch.setattr(supabase_auth, "_decode_token_with_jwks", _decode_fail)
    monkeypatch.setattr(supabase_auth, "_fetch_user_from_supabase", _fallback)

    actual = asyncio.run(verify_supabase_access_token("Bearer sample-token"))
    assert actual == expected


def test_verify_supabase_access_token_requires_bearer_header():
    with pytest.raises(AuthError):
        asyncio.run(verify_supabase_access_token(None))


def test_unconfigured_identity_provider_is_upstream_unavailable(monkeypatch):
    monkeypatch.setattr(settings, "jwt_issuer", None)
    monkeypatch.setattr(settings, "supabase_url", None)
    monkeypatch.setattr(supabase_auth, "_jwks_client", None)

    with pytest.raises(UpstreamUnavailable):
        asyncio.run(verify_supabase_access_token("Bearer sample-token"))


def test_user_endpoint_rejection_is_auth_error(monkeypatch):
    def _decode_fail(_token: str):
        raise ValueError("decode failed")

    async def _rejected(_token: str):
        raise AuthError(supabase_auth.INVALID_TOKEN_MESSAGE)

    monkeypatch.setattr(supabase_auth, "_decode_token_with_jwks", _decode_fail)
    monkeypatch.setattr(supabase_auth, "_fetch_user_from_supabase", _rejected)

    with pytest.raises(AuthError) as exc_info:
        asyncio.run(verify_supabase_access_token("Bearer sample-token"))
    assert str(exc_info.value) == "invalid or expired access token"
