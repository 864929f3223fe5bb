import hmac
from dataclasses import dataclass
from uuid import UUID

from fastapi import status

from screentime.core.errors import ApiError, AuthError, ErrorCode


@dataclass(slots=True)
class AuthUser:
    user_id: UUID
    email: str | None = None
    display_name: str | None = None


def extract_bearer_token(authorization: str | None) -> str:
    if not authorization:
        raise AuthError("missing Authorization header")

    prefix = "Bearer "
    if not authorization.startswith(prefix):
        raise AuthError("invalid Authorization header")

    token = authorization[len(prefix) :].strip()
    if not token:
        raise AuthError("missing bearer token")
    return token


def parse_mock_bearer_token(authorization: str | None) -> AuthUser:
    token = extract_bearer_token(authorization)
    if not token.startswith("mock_"):
        raise AuthError("invalid mock token")

    user_id_raw = token.removeprefix("mock_").strip()
    try:
        user_id = UUID(user_id_raw)
    except ValueError as exc:
        raise AuthError("invalid mock token") from exc

    return AuthUser(
        user_id=user_id,
        email=f"{user_id}@mock.local",
        display_name="Mock User",
    )


def verify_admin_secret(provided: str | None, expected: str | None) -> None:
    # An unconfigured secret locks the endpoint instead of opening it.
    if not expected or not provided:
        raise ApiError(status.HTTP_403_FORBIDDEN, ErrorCode.FORBIDDEN, "forbidden")
    if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise ApiError(status.HTTP_403_FORBIDDEN, ErrorCode.FORBIDDEN, "forbidden")
