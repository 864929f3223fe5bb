from fastapi import APIRouter, Depends

from screentime.api.deps import get_usage_store, require_admin
from screentime.db.store import UsageStore
from screentime.schemas.weekly_summaries import AggregationRunResponse
from screentime.services.triggers import run_manual_aggregation

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


@router.post(
    "/aggregations/weekly",
    response_model=AggregationRunResponse,
    dependencies=[Depends(require_admin)],
)
async def trigger_weekly_aggregation(
    store: UsageStore = Depends(get_usage_store),
) -> AggregationRunResponse:
    run = await run_manual_aggregation(store)
    return AggregationRunResponse(
        week_start=run.week_start,
        week_end=run.week_end,
        pushed_by=run.pushed_by,
        user_count=run.user_count,
        written=run.written,
        skipped=run.skipped,
        stale=run.stale,
        failed_user_ids=run.failed_user_ids,
        failures=run.failures,
    )
