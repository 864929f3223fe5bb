import json
import logging
from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from screentime.api.routers.admin import router as admin_router
from screentime.api.routers.health import router as health_router
from screentime.api.routers.weekly_summaries import router as weekly_summaries_router
from screentime.core.config import settings
from screentime.core.errors import (
    ApiError,
    AuthError,
    ErrorCode,
    InputError,
    StoreError,
    UpstreamUnavailable,
    build_error_payload,
    map_status_to_error_code,
)
from screentime.core.observability import aggregation_run_registry
from screentime.services.scheduler import SchedulerService

logger = logging.getLogger("screentime.api")
request_logger = logging.getLogger("screentime.api.request")


def _request_id_from(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if isinstance(request_id, str) and request_id:
        return request_id
    return str(uuid4())


def _route_template_from(request: Request) -> str:
    route = request.scope.get("route")
    template = getattr(route, "path", None)
    if isinstance(template, str) and template:
        return template
    return request.url.path


def _configure_logging() -> None:
    normalized = settings.log_level.strip().upper()
    level = getattr(logging, normalized, logging.INFO)
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
    logging.getLogger("screentime").setLevel(level)


def _error_response(status_code: int, error_code: ErrorCode, message: str, request: Request):
    return JSONResponse(
        status_code=status_code,
        content=build_error_payload(
            error_code=error_code,
            message=message,
            request_id=_request_id_from(request),
        ),
    )


@asynccontextmanager
async def lifespan(_app: FastAPI):
    if settings.scheduler_enabled:
        SchedulerService.start()
    try:
        yield
    finally:
        SchedulerService.stop()


def create_app() -> FastAPI:
    _configure_logging()
    aggregation_run_registry.configure(
        max_recent_runs=settings.observability_recent_run_limit
    )
    app = FastAPI(
        title="Screentime Weekly Summary API",
        version="0.1.0",
        description="Aggregates device usage minutes into per-user weekly summaries",
        lifespan=lifespan,
    )

    origins = [item.strip() for item in settings.cors_origins.split(",") if item.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins if "*" not in origins else ["*"],
        allow_origin_regex=settings.cors_origin_regex if "*" not in origins else None,
        allow_credentials="*" not in origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_request_id_header(request: Request, call_next):
        request_id = request.headers.get("x-request-id", "").strip() or str(uuid4())
        request.state.request_id = request_id
        started_at = perf_counter()
        response = None
        status_code = 500
        path = request.url.path
        route = path
        try:
            response = await call_next(request)
            status_code = response.status_code
            route = _route_template_from(request)
            return response
        finally:
            latency_ms = (perf_counter() - started_at) * 1000
            request_logger.info(
                json.dumps(
                    {
                        "request_id": request_id,
                        "method": request.method,
                        "path": path,
                        "route": route,
                        "status_code": status_code,
                        "latency_ms": round(latency_ms, 2),
                        "is_slow": latency_ms >= settings.slow_request_ms,
                    },
                    ensure_ascii=False,
                    sort_keys=True,
                )
            )
            if response is not None:
                response.headers["X-Request-ID"] = request_id

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        return _error_response(exc.status_code, exc.error_code, exc.message, request)

    @app.exception_handler(InputError)
    async def input_error_handler(request: Request, exc: InputError):
        return _error_response(400, ErrorCode.VALIDATION_ERROR, str(exc), request)

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        return _error_response(401, ErrorCode.UNAUTHORIZED, str(exc), request)

    @app.exception_handler(UpstreamUnavailable)
    async def upstream_unavailable_handler(request: Request, exc: UpstreamUnavailable):
        logger.error(
            "Upstream unavailable: %s",
            exc,
            extra={"request_id": _request_id_from(request)},
        )
        return _error_response(
            503,
            ErrorCode.UPSTREAM_UNAVAILABLE,
            str(exc) or "upstream service unavailable",
            request,
        )

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        logger.error(
            "Store error user_id=%s: %s",
            exc.user_id,
            exc,
            extra={"request_id": _request_id_from(request)},
        )
        return _error_response(
            500,
            ErrorCode.INTERNAL_ERROR,
            "internal server error",
            request,
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        message = str(first.get("msg", "request validation failed"))
        return _error_response(400, ErrorCode.VALIDATION_ERROR, message, request)

    @app.exception_handler(HTTPException)
    async def fastapi_http_exception_handler(request: Request, exc: HTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "request failed"
        return _error_response(
            exc.status_code,
            map_status_to_error_code(exc.status_code),
            message,
            request,
        )

    @app.exception_handler(StarletteHTTPException)
    async def starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "request failed"
        return _error_response(
            exc.status_code,
            map_status_to_error_code(exc.status_code),
            message,
            request,
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception", extra={"request_id": _request_id_from(request)})
        return _error_response(
            500,
            ErrorCode.INTERNAL_ERROR,
            "internal server error",
            request,
        )

    app.include_router(health_router)
    app.include_router(weekly_summaries_router)
    app.include_router(admin_router)

    return app


app = create_app()
