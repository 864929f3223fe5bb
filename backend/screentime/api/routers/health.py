from fastapi import APIRouter

from screentime.core.config import settings
from screentime.core.observability import aggregation_run_registry
from screentime.schemas.common import AggregationRunsResponse, HealthResponse

router = APIRouter(tags=["system"])


@router.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(
        status="ok",
        app_env=settings.app_env,
        scheduler_enabled=settings.scheduler_enabled,
    )


@router.get("/ops/aggregation-runs", response_model=AggregationRunsResponse)
def aggregation_runs() -> AggregationRunsResponse:
    return AggregationRunsResponse.model_validate(aggregation_run_registry.snapshot())
