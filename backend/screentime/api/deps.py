from fastapi import Header

from screentime.core.config import settings
from screentime.core.security import AuthUser, parse_mock_bearer_token, verify_admin_secret
from screentime.core.supabase_auth import verify_supabase_access_token
from screentime.db.store import SqlUsageStore, UsageStore


async def get_current_user(authorization: str | None = Header(default=None)) -> AuthUser:
    token_is_mock = isinstance(authorization, str) and authorization.strip().startswith("Bearer mock_")

    # Allow explicit mock token in any auth mode when mock is enabled.
    if token_is_mock and settings.mock_auth_enabled:
        return parse_mock_bearer_token(authorization)

    if settings.auth_mode == "mock":
        return parse_mock_bearer_token(authorization)
    return await verify_supabase_access_token(authorization)


async def require_admin(x_admin_secret: str | None = Header(default=None)) -> None:
    verify_admin_secret(x_admin_secret, settings.admin_secret)


def get_usage_store() -> UsageStore:
    return SqlUsageStore()
