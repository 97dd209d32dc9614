from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from trustdesk import db
from trustdesk.config import AppInfo, get_settings
from trustdesk.core.logging import get_logger, setup_logging
import trustdesk.models  # registers the tables
from trustdesk.routers import get_api_router
from trustdesk.services.cron import (
    AUTO_RELEASE_JOB,
    DISPUTE_ESCALATION_JOB,
    auto_release_escrows_once,
    escalate_overdue_disputes_once,
)
from trustdesk.services.scheduler_lock import (
    refresh_scheduler_lock,
    release_scheduler_lock,
    set_scheduler_active,
    try_acquire_scheduler_lock,
)
from trustdesk.utils.errors import DomainError, error_response

logger = get_logger(__name__)
scheduler: AsyncIOScheduler | None = None
ALLOWED_CREATE_ENV = {"dev", "local", "test"}


def _configure_middlewares(fastapi_app: FastAPI) -> None:
    runtime_settings = get_settings()
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=runtime_settings.CORS_ALLOW_ORIGINS,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-API-Key"],
    )

    if runtime_settings.PROMETHEUS_ENABLED:
        from starlette_exporter import PrometheusMiddleware, handle_metrics

        fastapi_app.add_middleware(PrometheusMiddleware)
        fastapi_app.add_route("/metrics", handle_metrics)

    if runtime_settings.SENTRY_DSN:
        import sentry_sdk

        sentry_sdk.init(dsn=runtime_settings.SENTRY_DSN, traces_sample_rate=0.2)


def _start_scheduler(settings: Any) -> AsyncIOScheduler:
    runner = AsyncIOScheduler()
    runner.start()
    runner.add_job(
        auto_release_escrows_once,
        "interval",
        minutes=settings.AUTO_RELEASE_INTERVAL_MINUTES,
        id=AUTO_RELEASE_JOB,
        replace_existing=True,
    )
    runner.add_job(
        escalate_overdue_disputes_once,
        "interval",
        minutes=settings.DISPUTE_ESCALATION_INTERVAL_MINUTES,
        id=DISPUTE_ESCALATION_JOB,
        replace_existing=True,
    )
    runner.add_job(
        refresh_scheduler_lock,
        "interval",
        seconds=60,
        id="scheduler-lock-heartbeat",
        replace_existing=True,
    )
    return runner


@asynccontextmanager
async def lifespan(app: FastAPI):
    global scheduler
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL, env=settings.app_env)
    logger.info("Application startup", extra={"env": settings.app_env})

    db.init_engine()
    if settings.ALLOW_DB_CREATE_ALL and settings.app_env.lower() in ALLOWED_CREATE_ENV:
        logger.warning(
            "Running Base.metadata.create_all() because APP_ENV=%s and ALLOW_DB_CREATE_ALL=True",
            settings.app_env,
        )
        db.create_all()
    else:
        logger.info("Skipping create_all(); use Alembic migrations. APP_ENV=%s", settings.app_env)

    # Only one runner may hold the sweep lock; the others serve HTTP only.
    set_scheduler_active(False)
    lock_acquired = False
    if settings.SCHEDULER_ENABLED:
        lock_acquired = try_acquire_scheduler_lock()
        if lock_acquired:
            scheduler = _start_scheduler(settings)
            set_scheduler_active(True)
        else:
            logger.warning(
                "Scheduler disabled because lock is already held by another instance.",
                extra={"env": settings.app_env},
            )
    try:
        yield
    finally:
        if scheduler:
            scheduler.shutdown(wait=False)
            scheduler = None
        if lock_acquired:
            release_scheduler_lock()
        set_scheduler_active(False)
        db.close_engine()
        logger.info("Application shutdown", extra={"env": settings.app_env})


app_info = AppInfo()

app = FastAPI(title=app_info.name, version=app_info.version, lifespan=lifespan)

_configure_middlewares(app)
app.include_router(get_api_router())


@app.exception_handler(DomainError)
async def domain_exception_handler(request: Request, exc: DomainError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception", exc_info=exc)
    payload = error_response("INTERNAL_SERVER_ERROR", "An unexpected error occurred.")
    return JSONResponse(status_code=500, content=payload)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict) and "error" in detail:
        content: dict[str, Any] = detail
    else:
        content = error_response("HTTP_ERROR", str(detail))
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


__all__ = ["app"]
