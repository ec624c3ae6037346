"""calsync FastAPI application factory."""

import logging
import os
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy import text

from calsync.config import Settings, get_settings
from calsync.dependencies import get_session_factory, init_db, shutdown_db
from calsync.errors import SyncError
from calsync.middleware.error_handler import ErrorHandlerMiddleware, sync_error_to_http
from calsync.middleware.logging import LoggingMiddleware, setup_logging
from calsync.middleware.rate_limit import RateLimitMiddleware
from calsync.routers import calendar, calendar_webhook, oauth, scheduler, sync

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    settings = get_settings()
    setup_logging(debug=settings.debug)
    logger.info("Starting calsync API (env=%s)", settings.app_env)

    init_db(settings)
    if not settings.calendar_webhook_url:
        logger.warning("calendar_webhook_url is not set; watch registration will be rejected")

    yield

    await shutdown_db()
    logger.info("calsync API shutting down")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title="calsync",
        description="Calendar synchronization engine: watches, webhooks, job queue and event upserts",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Middleware (order matters: outermost first)
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RateLimitMiddleware, settings=settings)
    origins = settings.cors_origins
    allow_all = origins == ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins if not allow_all else [],
        allow_origin_regex=r".*" if allow_all else None,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept"],
        max_age=600,
    )

    @app.exception_handler(SyncError)
    async def sync_error_handler(request: Request, exc: SyncError):
        logger.warning("Sync error on %s: %s", request.url.path, exc.code)
        http_exc = sync_error_to_http(exc)
        return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})

    prefix = settings.api_prefix
    app.include_router(calendar_webhook.router, prefix=prefix)
    app.include_router(calendar.router, prefix=prefix)
    app.include_router(scheduler.router, prefix=prefix)
    app.include_router(sync.router, prefix=prefix)
    app.include_router(oauth.router, prefix=prefix)

    @app.get("/")
    async def root():
        return {"status": "running", "service": "calsync-api", "version": "1.0.0"}

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "calsync-api"}

    @app.get("/health/ready")
    async def health_ready():
        """Deep health check: verifies DB and Redis connectivity."""
        checks: dict = {}

        try:
            factory = get_session_factory(settings)
            async with factory() as session:
                await session.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception as e:
            checks["database"] = f"error: {type(e).__name__}"

        try:
            r = aioredis.from_url(settings.redis_url, decode_responses=True)
            await r.ping()
            await r.aclose()
            checks["redis"] = "ok"
        except Exception as e:
            checks["redis"] = f"error: {type(e).__name__}"

        all_ok = all(v == "ok" for v in checks.values())
        return JSONResponse(
            status_code=200 if all_ok else 503,
            content={"status": "ready" if all_ok else "degraded", "checks": checks},
        )

    instrumentator = Instrumentator(
        excluded_handlers=["/health", "/health/ready", "/docs", "/redoc", "/openapi.json", "/metrics"],
    )
    instrumentator.instrument(app)

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        """Prometheus metrics endpoint with multiprocess support."""
        from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest, multiprocess

        multiproc_dir = os.environ.get("PROMETHEUS_MULTIPROC_DIR")
        if multiproc_dir:
            registry = CollectorRegistry()
            multiprocess.MultiProcessCollector(registry)
            data = generate_latest(registry)
        else:
            data = generate_latest()

        return Response(content=data, media_type=CONTENT_TYPE_LATEST)

    return app


# Default app instance for uvicorn
app = create_app()
