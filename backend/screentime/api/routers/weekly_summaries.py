from datetime import date, timedelta

from fastapi import APIRouter, Depends, HTTPException, status

from screentime.api.deps import get_current_user, get_usage_store
from screentime.core.security import AuthUser
from screentime.db.store import UsageStore
from screentime.schemas.weekly_summaries import (
    WeeklySummaryPushRequest,
    WeeklySummaryPushResponse,
    WeeklySummaryResponse,
)
from screentime.services.triggers import push_device_summary

router = APIRouter(prefix="/api/v1/weekly-summaries", tags=["weekly-summaries"])


@router.post("", response_model=WeeklySummaryPushResponse)
async def push_weekly_summary(
    payload: WeeklySummaryPushRequest,
    user: AuthUser = Depends(get_current_user),
    store: UsageStore = Depends(get_usage_store),
) -> WeeklySummaryPushResponse:
    await store.ensure_user(user.user_id, user.email)
    summary = await push_device_summary(store, user.user_id, payload)
    return WeeklySummaryPushResponse(
        week_start=summary.week_start,
        pushed_by=summary.pushed_by,
    )


@router.get("/{week_start}", response_model=WeeklySummaryResponse)
async def get_weekly_summary(
    week_start: date,
    user: AuthUser = Depends(get_current_user),
    store: UsageStore = Depends(get_usage_store),
) -> WeeklySummaryResponse:
    summary = await store.get_weekly_summary(user.user_id, week_start)
    if summary is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="weekly summary not found",
        )

    return WeeklySummaryResponse(
        week_start=summary.week_start,
        week_end=summary.week_start + timedelta(days=6),
        generated_at=summary.generated_at,
        apps=summary.apps,
        pushed_by=summary.pushed_by,
        pushed_at=summary.pushed_at,
    )
