from datetime import date, datetime
from enum import StrEnum
from typing import Annotated
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

PackageName = Annotated[str, Field(min_length=1, max_length=255)]
MinuteCount = Annotated[int, Field(ge=0)]


class PushedBy(StrEnum):
    DEVICE = "device"
    SERVER_CRON = "server_cron"
    SERVER_MANUAL = "server_manual"


class DailyUsageRecord(BaseModel):
    user_id: UUID
    date: date
    package_name: str | None = None
    minutes: int | None = None


class WeeklySummary(BaseModel):
    user_id: UUID
    week_start: date
    generated_at: datetime
    apps: dict[str, int]
    pushed_by: PushedBy
    pushed_at: datetime


class WeeklySummaryPushRequest(BaseModel):
    # Devices send camelCase keys.
    model_config = ConfigDict(populate_by_name=True)

    week_start: date = Field(alias="weekStart")
    generated_at: datetime | None = Field(default=None, alias="generatedAt")
    apps: dict[PackageName, MinuteCount]

    @field_validator("week_start")
    @classmethod
    def week_start_is_monday(cls, value: date) -> date:
        if value.weekday() != 0:
            raise ValueError("weekStart must be a Monday")
        return value


class WeeklySummaryPushResponse(BaseModel):
    success: bool = True
    week_start: date
    pushed_by: PushedBy


class WeeklySummaryResponse(BaseModel):
    week_start: date
    week_end: date
    generated_at: datetime
    apps: dict[str, int]
    pushed_by: PushedBy
    pushed_at: datetime


class AggregationRunResponse(BaseModel):
    success: bool = True
    week_start: date
    week_end: date
    pushed_by: PushedBy
    user_count: int = Field(ge=0)
    written: int = Field(ge=0)
    skipped: int = Field(ge=0)
    stale: int = Field(ge=0)
    failed_user_ids: list[str]
    failures: dict[str, str] = Field(default_factory=dict)
