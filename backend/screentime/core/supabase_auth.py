import logging
from uuid import UUID

import httpx
import jwt
from jwt import PyJWKClient

from screentime.core.config import settings
from screentime.core.errors import AuthError, UpstreamUnavailable
from screentime.core.security import AuthUser, extract_bearer_token

SUPPORTED_JWT_ALGS = ["RS256", "ES256", "EdDSA"]
INVALID_TOKEN_MESSAGE = "invalid or expired access token"

logger = logging.getLogger("screentime.auth")
_jwks_client: PyJWKClient | None = None


def _resolve_issuer() -> str:
    if settings.jwt_issuer:
        return settings.jwt_issuer.rstrip("/")
    if not settings.supabase_url:
        raise UpstreamUnavailable("identity provider is not configured")
    return f"{settings.supabase_url.rstrip('/')}/auth/v1"


def _get_jwks_client() -> PyJWKClient:
    global _jwks_client
    if _jwks_client is None:
        _jwks_client = PyJWKClient(f"{_resolve_issuer()}/.well-known/jwks.json")
    return _jwks_client


def _user_id_from(raw) -> UUID:
    try:
        return UUID(raw)
    except (TypeError, ValueError, AttributeError) as exc:
        raise AuthError(INVALID_TOKEN_MESSAGE) from exc


def _auth_user_from_payload(user_id_raw, email, user_metadata) -> AuthUser:
    display_name = (
        user_metadata.get("full_name") if isinstance(user_metadata, dict) else None
    )
    return AuthUser(
        user_id=_user_id_from(user_id_raw),
        email=email if isinstance(email, str) else None,
        display_name=display_name if isinstance(display_name, str) else None,
    )


def _decode_token_with_jwks(token: str) -> AuthUser:
    signing_key = _get_jwks_client().get_signing_key_from_jwt(token)
    claims = jwt.decode(
        token,
        signing_key.key,
        algorithms=SUPPORTED_JWT_ALGS,
        audience=settings.jwt_audience,
        issuer=_resolve_issuer(),
        options={"require": ["sub", "exp", "iat"]},
    )
    return _auth_user_from_payload(
        claims.get("sub"), claims.get("email"), claims.get("user_metadata")
    )


async def _fetch_user_from_supabase(token: str) -> AuthUser:
    if not settings.supabase_url:
        raise UpstreamUnavailable("identity provider is not configured")

    url = f"{settings.supabase_url.rstrip('/')}/auth/v1/user"
    apikey = settings.supabase_anon_key or settings.supabase_service_role_key
    headers = {"Authorization": f"Bearer {token}"}
    if apikey:
        headers["apikey"] = apikey

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.get(url, headers=headers)
    except httpx.HTTPError as exc:
        logger.warning("identity provider request failed: %s", exc)
        raise AuthError(INVALID_TOKEN_MESSAGE) from exc

    if response.status_code != httpx.codes.OK:
        raise AuthError(INVALID_TOKEN_MESSAGE)

    payload = response.json()
    return _auth_user_from_payload(
        payload.get("id"), payload.get("email"), payload.get("user_metadata")
    )


async def verify_supabase_access_token(authorization: str | None) -> AuthUser:
    token = extract_bearer_token(authorization)

    # Local JWKS verification first, then the provider's user endpoint.
    try:
        return _decode_token_with_jwks(token)
    except UpstreamUnavailable:
        raise
    except Exception:
        return await _fetch_user_from_supabase(token)
