from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from screentime.core.config import settings
from screentime.core.errors import ApiError, ErrorCode, UpstreamUnavailable
from screentime.core.observability import aggregation_run_registry
from screentime.db.store import UsageStore
from screentime.schemas.weekly_summaries import (
    PushedBy,
    WeeklySummary,
    WeeklySummaryPushRequest,
)
from screentime.services.aggregation import (
    AggregationRun,
    build_device_summary,
    run_weekly_aggregation,
)
from screentime.services.week_window import WeekWindow, resolve_previous_week

logger = logging.getLogger("screentime.aggregation")


async def push_device_summary(
    store: UsageStore,
    user_id: UUID,
    payload: WeeklySummaryPushRequest,
    now: datetime | None = None,
) -> WeeklySummary:
    summary = build_device_summary(
        user_id,
        payload.week_start,
        payload.apps,
        generated_at=payload.generated_at,
        now=now,
    )
    applied = await store.replace_weekly_summary(summary, guarded=settings.write_guard_enabled)
    if not applied:
        logger.warning(
            "Rejected stale device summary user_id=%s week_start=%s",
            user_id,
            payload.week_start.isoformat(),
        )
        raise ApiError(
            status_code=409,
            error_code=ErrorCode.CONFLICT,
            message="a newer weekly summary is already stored",
        )
    return summary


async def _run_batch(
    store: UsageStore, window: WeekWindow, pushed_by: PushedBy
) -> AggregationRun:
    try:
        run = await run_weekly_aggregation(
            store,
            window,
            pushed_by,
            concurrency=settings.aggregation_concurrency,
            user_timeout_seconds=settings.aggregation_user_timeout_seconds,
            guarded=settings.write_guard_enabled,
        )
    except UpstreamUnavailable as exc:
        aggregation_run_registry.record_failure(pushed_by=pushed_by.value, reason=str(exc))
        raise
    aggregation_run_registry.record_run(run)
    return run


async def run_scheduled_aggregation(
    store: UsageStore, fired_at: datetime | None = None
) -> AggregationRun:
    return await _run_batch(store, resolve_previous_week(fired_at), PushedBy.SERVER_CRON)


async def run_manual_aggregation(
    store: UsageStore,
    reference: datetime | None = None,
    window: WeekWindow | None = None,
) -> AggregationRun:
    resolved = window or resolve_previous_week(reference)
    return await _run_batch(store, resolved, PushedBy.SERVER_MANUAL)
