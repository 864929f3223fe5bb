from datetime import date, datetime

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str
    app_env: str
    scheduler_enabled: bool


class AggregationRunItem(BaseModel):
    week_start: date
    week_end: date
    pushed_by: str
    started_at: datetime
    finished_at: datetime
    user_count: int = Field(ge=0)
    written: int = Field(ge=0)
    skipped: int = Field(ge=0)
    stale: int = Field(ge=0)
    failed_user_ids: list[str]
    failures: dict[str, str] = Field(default_factory=dict)


class AggregationRunsResponse(BaseModel):
    started_at: datetime
    total_runs: int = Field(ge=0)
    total_failed_runs: int = Field(ge=0)
    total_failed_users: int = Field(ge=0)
    last_failure_at: datetime | None = None
    last_failure_reason: str | None = None
    recent_runs: list[AggregationRunItem]
