from __future__ import annotations

import logging
from datetime import datetime, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from screentime.core.config import settings
from screentime.core.errors import UpstreamUnavailable
from screentime.db.store import SqlUsageStore
from screentime.services.triggers import run_scheduled_aggregation

logger = logging.getLogger("screentime.scheduler")

SCHEDULE_TIMEZONE = "UTC"
WEEKLY_JOB_ID = "weekly_summary_aggregation"


async def aggregate_weekly_summaries_job() -> None:
    fired_at = datetime.now(timezone.utc)
    try:
        run = await run_scheduled_aggregation(SqlUsageStore(), fired_at=fired_at)
    except UpstreamUnavailable:
        # No retry queue: the next firing or a manual trigger recovers.
        logger.exception("Scheduled weekly aggregation failed fired_at=%s", fired_at.isoformat())
        raise
    logger.info(
        "Scheduled weekly aggregation done week_start=%s failed_users=%d",
        run.week_start.isoformat(),
        len(run.failed_user_ids),
    )


def build_weekly_trigger() -> CronTrigger:
    return CronTrigger(
        day_of_week="mon",
        hour=settings.aggregation_cron_hour,
        minute=settings.aggregation_cron_minute,
        timezone=SCHEDULE_TIMEZONE,
    )


class SchedulerService:
    scheduler: AsyncIOScheduler | None = None

    @classmethod
    def start(cls) -> None:
        if cls.scheduler is not None and cls.scheduler.running:
            return

        cls.scheduler = AsyncIOScheduler(timezone=SCHEDULE_TIMEZONE)
        cls.scheduler.add_job(
            aggregate_weekly_summaries_job,
            build_weekly_trigger(),
            id=WEEKLY_JOB_ID,
            coalesce=True,
            max_instances=1,
            replace_existing=True,
        )
        cls.scheduler.start()
        logger.info(
            "Scheduler started; weekly aggregation every Monday %02d:%02d %s",
            settings.aggregation_cron_hour,
            settings.aggregation_cron_minute,
            SCHEDULE_TIMEZONE,
        )

    @classmethod
    def stop(cls) -> None:
        if cls.scheduler is not None and cls.scheduler.running:
            cls.scheduler.shutdown(wait=False)
        cls.scheduler = None
