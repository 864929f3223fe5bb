from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from uuid import UUID

from screentime.db.store import UsageStore
from screentime.schemas.weekly_summaries import DailyUsageRecord, PushedBy, WeeklySummary
from screentime.services.week_window import WeekWindow

logger = logging.getLogger("screentime.aggregation")

SERVER_PROVENANCE = (PushedBy.SERVER_CRON, PushedBy.SERVER_MANUAL)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class UserOutcome:
    user_id: str
    status: str
    reason: str | None = None


@dataclass(slots=True)
class AggregationRun:
    week_start: date
    week_end: date
    pushed_by: PushedBy
    started_at: datetime
    finished_at: datetime | None = None
    user_count: int = 0
    written: int = 0
    skipped: int = 0
    stale: int = 0
    failed_user_ids: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "week_start": self.week_start,
            "week_end": self.week_end,
            "pushed_by": self.pushed_by.value,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "user_count": self.user_count,
            "written": self.written,
            "skipped": self.skipped,
            "stale": self.stale,
            "failed_user_ids": list(self.failed_user_ids),
            "failures": dict(self.failures),
        }


def sum_minutes_by_package(
    records: Iterable[DailyUsageRecord], window: WeekWindow
) -> dict[str, int]:
    totals: dict[str, int] = {}
    for record in records:
        if not record.package_name:
            continue
        if not window.contains(record.date):
            continue
        totals[record.package_name] = totals.get(record.package_name, 0) + (record.minutes or 0)
    return totals


async def aggregate_user(store: UsageStore, user_id: UUID, window: WeekWindow) -> dict[str, int]:
    records = await store.fetch_daily_usage(user_id, window)
    return sum_minutes_by_package(records, window)


def build_server_summary(
    user_id: UUID,
    window: WeekWindow,
    apps: dict[str, int],
    pushed_by: PushedBy,
    now: datetime | None = None,
) -> WeeklySummary:
    if pushed_by not in SERVER_PROVENANCE:
        raise ValueError(f"{pushed_by} is not a server provenance tag")
    timestamp = now or _utc_now()
    return WeeklySummary(
        user_id=user_id,
        week_start=window.start,
        generated_at=timestamp,
        apps=dict(apps),
        pushed_by=pushed_by,
        pushed_at=timestamp,
    )


def build_device_summary(
    user_id: UUID,
    week_start: date,
    apps: dict[str, int],
    generated_at: datetime | None = None,
    now: datetime | None = None,
) -> WeeklySummary:
    timestamp = now or _utc_now()
    return WeeklySummary(
        user_id=user_id,
        week_start=week_start,
        generated_at=generated_at or timestamp,
        apps=dict(apps),
        pushed_by=PushedBy.DEVICE,
        pushed_at=timestamp,
    )


async def _process_user(
    store: UsageStore,
    user_id: UUID,
    window: WeekWindow,
    pushed_by: PushedBy,
    guarded: bool,
) -> UserOutcome:
    apps = await aggregate_user(store, user_id, window)
    if not apps:
        return UserOutcome(user_id=str(user_id), status="skipped")

    summary = build_server_summary(user_id, window, apps, pushed_by)
    applied = await store.merge_weekly_summary(summary, guarded=guarded)
    if not applied:
        logger.warning(
            "Skipped stale weekly summary write user_id=%s week_start=%s pushed_by=%s",
            user_id,
            window.start.isoformat(),
            pushed_by.value,
        )
        return UserOutcome(user_id=str(user_id), status="stale")
    return UserOutcome(user_id=str(user_id), status="written")


async def run_weekly_aggregation(
    store: UsageStore,
    window: WeekWindow,
    pushed_by: PushedBy,
    *,
    concurrency: int = 4,
    user_timeout_seconds: float = 30.0,
    guarded: bool = False,
) -> AggregationRun:
    """Aggregate every known user's daily usage into their weekly summary.

    Each user is attempted exactly once. A failure or timeout for one user is
    logged and recorded on the returned run; it never stops the others.
    Failing to list users raises ``UpstreamUnavailable``.
    """
    run = AggregationRun(
        week_start=window.start,
        week_end=window.end,
        pushed_by=pushed_by,
        started_at=_utc_now(),
    )
    logger.info(
        "Aggregating weekly summaries week_start=%s week_end=%s pushed_by=%s",
        window.start.isoformat(),
        window.end.isoformat(),
        pushed_by.value,
    )

    user_ids = await store.list_user_ids()
    run.user_count = len(user_ids)

    semaphore = asyncio.Semaphore(max(1, int(concurrency)))
    timeout = max(1.0, float(user_timeout_seconds))

    async def _worker(user_id: UUID) -> UserOutcome:
        async with semaphore:
            try:
                return await asyncio.wait_for(
                    _process_user(store, user_id, window, pushed_by, guarded),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                logger.error(
                    "Timed out aggregating weekly summary user_id=%s week_start=%s",
                    user_id,
                    window.start.isoformat(),
                )
                return UserOutcome(user_id=str(user_id), status="failed", reason="timeout")
            except Exception as exc:
                logger.exception(
                    "Failed to aggregate weekly summary user_id=%s week_start=%s",
                    user_id,
                    window.start.isoformat(),
                )
                return UserOutcome(
                    user_id=str(user_id), status="failed", reason=type(exc).__name__
                )

    outcomes = await asyncio.gather(*[_worker(user_id) for user_id in user_ids])

    for outcome in outcomes:
        if outcome.status == "written":
            run.written += 1
        elif outcome.status == "skipped":
            run.skipped += 1
        elif outcome.status == "stale":
            run.stale += 1
        else:
            run.failed_user_ids.append(outcome.user_id)
            run.failures[outcome.user_id] = outcome.reason or "unknown"

    run.finished_at = _utc_now()
    logger.info(
        "Finished weekly aggregation week_start=%s pushed_by=%s users=%d written=%d "
        "skipped=%d stale=%d failed=%d",
        window.start.isoformat(),
        pushed_by.value,
        run.user_count,
        run.written,
        run.skipped,
        run.stale,
        len(run.failed_user_ids),
    )
    return run
