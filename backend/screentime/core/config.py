from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BACKEND_DIR = Path(__file__).resolve().parents[2]
ROOT_DIR = Path(__file__).resolve().parents[3]

WRITE_GUARDS = {"none", "pushed_at"}
MIN_ADMIN_SECRET_LENGTH = 16


def _parse_bool(value):
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "on"}:
            return True
        if normalized in {"0", "false", "no", "off"}:
            return False
    return value


def _bounded_int(value, default: int, minimum: int, maximum: int | None = None) -> int:
    try:
        normalized = int(value)
    except (TypeError, ValueError):
        return default
    normalized = max(minimum, normalized)
    if maximum is not None:
        normalized = min(maximum, normalized)
    return normalized


class Settings(BaseSettings):
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    slow_request_ms: int = Field(default=1200, alias="SLOW_REQUEST_MS")
    observability_recent_run_limit: int = Field(
        default=20, alias="OBSERVABILITY_RECENT_RUN_LIMIT"
    )
    auth_mode: str = Field(default="mock", alias="AUTH_MODE")
    mock_auth_enabled: bool = Field(default=True, alias="MOCK_AUTH_ENABLED")
    allow_mock_auth_in_production: bool = Field(
        default=False, alias="ALLOW_MOCK_AUTH_IN_PRODUCTION"
    )

    database_url: str = Field(alias="DATABASE_URL")
    supabase_url: str | None = Field(default=None, alias="SUPABASE_URL")
    supabase_anon_key: str | None = Field(default=None, alias="SUPABASE_ANON_KEY")
    supabase_service_role_key: str | None = Field(
        default=None, alias="SUPABASE_SERVICE_ROLE_KEY"
    )
    jwt_audience: str = Field(default="authenticated", alias="JWT_AUDIENCE")
    jwt_issuer: str | None = Field(default=None, alias="JWT_ISSUER")

    admin_secret: str | None = Field(default=None, alias="ADMIN_SECRET")
    scheduler_enabled: bool = Field(default=False, alias="SCHEDULER_ENABLED")
    aggregation_cron_hour: int = Field(default=3, alias="AGGREGATION_CRON_HOUR")
    aggregation_cron_minute: int = Field(default=0, alias="AGGREGATION_CRON_MINUTE")
    aggregation_concurrency: int = Field(default=4, alias="AGGREGATION_CONCURRENCY")
    aggregation_user_timeout_seconds: float = Field(
        default=30.0, alias="AGGREGATION_USER_TIMEOUT_SECONDS"
    )
    summary_write_guard: str = Field(default="none", alias="SUMMARY_WRITE_GUARD")

    cors_origins: str = Field(default="http://localhost:3000", alias="CORS_ORIGINS")
    cors_origin_regex: str | None = Field(default=None, alias="CORS_ORIGIN_REGEX")

    model_config = SettingsConfigDict(
        env_file=(str(BACKEND_DIR / ".env"), str(ROOT_DIR / ".env")),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def sqlalchemy_database_url(self) -> str:
        db_url = self.database_url.strip()
        if db_url.startswith("postgresql+asyncpg://"):
            return db_url
        if db_url.startswith("postgresql://"):
            return db_url.replace(
                "postgresql://", "postgresql+asyncpg://", 1
            )
        return db_url

    @property
    def write_guard_enabled(self) -> bool:
        return self.summary_write_guard == "pushed_at"

    @field_validator(
        "app_env",
        "log_level",
        "auth_mode",
        "database_url",
        "supabase_url",
        "supabase_anon_key",
        "supabase_service_role_key",
        "jwt_audience",
        "jwt_issuer",
        "admin_secret",
        "summary_write_guard",
        "cors_origins",
        "cors_origin_regex",
        mode="before",
    )
    @classmethod
    def strip_string_values(cls, value):
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("admin_secret", "cors_origin_regex", mode="after")
    @classmethod
    def empty_string_as_none(cls, value):
        return value or None

    @field_validator("auth_mode", mode="before")
    @classmethod
    def normalize_auth_mode(cls, value):
        if not isinstance(value, str):
            return "mock"
        normalized = value.strip().lower()
        if normalized not in {"mock", "supabase"}:
            return "mock"
        return normalized

    @field_validator("summary_write_guard", mode="before")
    @classmethod
    def normalize_summary_write_guard(cls, value):
        if not isinstance(value, str):
            return "none"
        normalized = value.strip().lower()
        if normalized not in WRITE_GUARDS:
            return "none"
        return normalized

    @field_validator("slow_request_ms", mode="before")
    @classmethod
    def normalize_slow_request_ms(cls, value):
        return _bounded_int(value, default=1200, minimum=1)

    @field_validator("observability_recent_run_limit", mode="before")
    @classmethod
    def normalize_recent_run_limit(cls, value):
        return _bounded_int(value, default=20, minimum=1)

    @field_validator("aggregation_cron_hour", mode="before")
    @classmethod
    def normalize_cron_hour(cls, value):
        return _bounded_int(value, default=3, minimum=0, maximum=23)

    @field_validator("aggregation_cron_minute", mode="before")
    @classmethod
    def normalize_cron_minute(cls, value):
        return _bounded_int(value, default=0, minimum=0, maximum=59)

    @field_validator("aggregation_concurrency", mode="before")
    @classmethod
    def normalize_concurrency(cls, value):
        return _bounded_int(value, default=4, minimum=1, maximum=64)

    @field_validator("aggregation_user_timeout_seconds", mode="before")
    @classmethod
    def normalize_user_timeout(cls, value):
        try:
            normalized = float(value)
        except (TypeError, ValueError):
            return 30.0
        return max(1.0, normalized)

    @field_validator(
        "mock_auth_enabled",
        "allow_mock_auth_in_production",
        "scheduler_enabled",
        mode="before",
    )
    @classmethod
    def parse_bool_flags(cls, value):
        return _parse_bool(value)

    @model_validator(mode="after")
    def enforce_prod_auth_constraints(self):
        if self.app_env.lower() != "production":
            return self
        if self.mock_auth_enabled and not self.allow_mock_auth_in_production:
            raise ValueError(
                "MOCK_AUTH_ENABLED must be false in production "
                "(or set ALLOW_MOCK_AUTH_IN_PRODUCTION=true for emergency override)"
            )
        if self.admin_secret and len(self.admin_secret) < MIN_ADMIN_SECRET_LENGTH:
            raise ValueError(
                f"ADMIN_SECRET must be at least {MIN_ADMIN_SECRET_LENGTH} characters in production"
            )
        return self


settings = Settings()
