"""FastAPI application entry point.

Tournament Lifecycle Service - single-elimination brackets
"""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from sqlalchemy import text

from tournament_service.config import Settings, get_settings
from tournament_service.container import TournamentServiceContainer, build_container
from tournament_service.logging_config import configure_logging, get_logger, log_context
from tournament_service.repositories import sqlalchemy_uow_factory
from tournament_service.tournament.api import router as tournament_router
from tournament_service.tournament.consumer import GameFinishedConsumer
from tournament_service.tournament.event_bus import RedisStreamEventPublisher
from tournament_service.tournament.game_client import HttpGameOrchestrator
from tournament_service.tournament.models import TournamentRules
from tournament_service.utils.db import (
    close_engine,
    create_engine,
    create_session_factory,
    create_tables,
)
from tournament_service.utils.errors import ErrorCategory, ErrorCode, TournamentError
from tournament_service.utils.json_utils import ORJSONResponse
from tournament_service.utils.redis_client import close_redis, create_redis
from tournament_service.utils.retry import RetryPolicy

logger = get_logger(__name__)

STATUS_BY_CATEGORY = {
    ErrorCategory.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCategory.BAD_REQUEST: status.HTTP_400_BAD_REQUEST,
    ErrorCategory.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCategory.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorCategory.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorCategory.EXTERNAL_SERVICE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCategory.SERVICE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


# =============================================================================
# Lifespan Events
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build infrastructure and background workers unless a container was injected."""
    if getattr(app.state, "container", None) is not None:
        yield
        return

    settings: Settings = app.state.settings
    logger.info("Starting application...")

    engine = create_engine(settings)
    await create_tables(engine)
    logger.info("Database connection established")

    redis_client = await create_redis(settings)
    logger.info("Redis connection established")

    game_orchestrator = HttpGameOrchestrator(
        base_url=settings.game_service_url,
        internal_api_key=settings.internal_api_key,
        retry_policy=RetryPolicy.from_settings(settings),
        timeout=settings.game_service_timeout_seconds,
    )
    container = build_container(
        TournamentRules.from_settings(settings),
        sqlalchemy_uow_factory(create_session_factory(engine)),
        RedisStreamEventPublisher(
            redis_client,
            stream_key=settings.tournament_events_stream,
            max_len=settings.events_stream_max_len,
        ),
        game_orchestrator,
        sweep_interval_seconds=settings.auto_start_sweep_interval_seconds,
    )
    consumer = GameFinishedConsumer(
        redis_client,
        container.complete_match,
        stream_key=settings.game_events_stream,
        group=settings.game_events_group,
        pending_interval=settings.game_events_pending_interval_seconds,
    )

    app.state.container = container
    app.state.engine = engine
    app.state.redis = redis_client

    await container.auto_start.start()
    await consumer.start()
    logger.info("Application startup complete")

    try:
        yield
    finally:
        logger.info("Shutting down application...")
        await consumer.stop()
        await container.auto_start.stop()
        await game_orchestrator.aclose()
        await close_redis(redis_client)
        await close_engine(engine)
        app.state.container = None
        logger.info("Application shutdown complete")


# =============================================================================
# Error Handling
# =============================================================================


def get_request_id(request: Request) -> str:
    """Request ID assigned by the middleware, else the header, else a fresh one."""
    request_id = getattr(request.state, "request_id", None)
    return request_id or request.headers.get("X-Request-ID") or str(uuid.uuid4())


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Echo X-Request-ID and bind it as trace_id for every log event of the request."""

    async def dispatch(self, request: Request, call_next):
        request_id = get_request_id(request)
        request.state.request_id = request_id

        with log_context(trace_id=request_id):
            response = await call_next(request)

        response.headers["X-Request-ID"] = request_id
        return response


async def tournament_error_handler(request: Request, exc: TournamentError) -> ORJSONResponse:
    """Map error categories to HTTP status codes."""
    trace_id = get_request_id(request)
    status_code = STATUS_BY_CATEGORY.get(exc.category, status.HTTP_400_BAD_REQUEST)

    log = logger.error if exc.recoverable else logger.warning
    log(
        "tournament_error",
        code=exc.code,
        category=exc.category.value,
        message=exc.message,
        trace_id=trace_id,
    )

    return ORJSONResponse(
        status_code=status_code,
        content={"error": exc.to_dict(), "traceId": trace_id},
    )


async def general_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    """Handle unexpected exceptions."""
    trace_id = get_request_id(request)

    logger.error(
        "unexpected_error",
        error_type=type(exc).__name__,
        error_message=str(exc),
        trace_id=trace_id,
        exc_info=True,
    )

    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "errorCode": ErrorCode.INTERNAL_ERROR.value,
                "errorMessage": "Internal server error",
                "details": {},
                "recoverable": False,
            },
            "traceId": trace_id,
        },
    )


# =============================================================================
# FastAPI Application
# =============================================================================


def create_app(
    container: Optional[TournamentServiceContainer] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Application factory.

    Passing a container skips infrastructure setup (used by tests).
    """
    settings = settings or get_settings()
    configure_logging(
        log_level=settings.log_level,
        json_logs=settings.app_env == "production",
    )

    app = FastAPI(
        title="Tournament Service API",
        version="1.0.0",
        description="Single-elimination tournament lifecycle",
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
    )
    app.state.settings = settings
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID", "X-User-Id"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(TournamentError, tournament_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(tournament_router)

    @app.get("/health", tags=["Health"], response_model=dict)
    async def health_check() -> dict[str, Any]:
        """Database and Redis connectivity."""
        health_status: dict[str, Any] = {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "services": {},
        }

        engine = getattr(app.state, "engine", None)
        if engine is not None:
            try:
                async with engine.connect() as conn:
                    await conn.execute(text("SELECT 1"))
                health_status["services"]["database"] = "healthy"
            except Exception as e:
                logger.warning("health_check_database_failed", error=str(e))
                health_status["services"]["database"] = "unhealthy"
                health_status["status"] = "degraded"

        redis_client = getattr(app.state, "redis", None)
        if redis_client is not None:
            try:
                await redis_client.ping()
                health_status["services"]["redis"] = "healthy"
            except Exception as e:
                logger.warning("health_check_redis_failed", error=str(e))
                health_status["services"]["redis"] = "unhealthy"
                health_status["status"] = "degraded"

        return health_status

    return app


# =============================================================================
# Development / Production Server
# =============================================================================


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "tournament_service.main:create_app",
        factory=True,
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.app_env == "development",
        log_level=settings.log_level.lower(),
    )
