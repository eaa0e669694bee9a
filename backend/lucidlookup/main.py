from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from lucidlookup import __version__
from lucidlookup.dependencies import limiter
from lucidlookup.pipeline.fetcher import SnapshotFetcher
from lucidlookup.pipeline.mirror import SnapshotMirror
from lucidlookup.pipeline.refresh import DocumentSource, RefreshCoordinator, RefreshTrigger
from lucidlookup.pipeline.store import LookupStore, utc_now
from lucidlookup.routers import admin as admin_router
from lucidlookup.routers import lookup as lookup_router
from lucidlookup.routers import status as status_router
from lucidlookup.scheduler import run_scheduler
from lucidlookup.schemas import ErrorResponse
from lucidlookup.settings import Settings, settings

logger = logging.getLogger(__name__)

# Seconds to wait for a running refresh before shutdown stops waiting for it.
SHUTDOWN_GRACE_S = 10.0


class TimeoutMiddleware(BaseHTTPMiddleware):
    """Bound the time a single request may take."""

    def __init__(self, app, *, timeout_s: float) -> None:
        super().__init__(app)
        self._timeout_s = timeout_s

    async def dispatch(self, request: Request, call_next):
        try:
            return await asyncio.wait_for(call_next(request), timeout=self._timeout_s)
        except asyncio.TimeoutError:
            return JSONResponse(
                status_code=504,
                content=ErrorResponse(error=f"Request timed out after {self._timeout_s:.0f} seconds").model_dump(),
            )


def build_coordinator(
    app_settings: Settings,
    *,
    fetcher: DocumentSource | None = None,
    clock: Callable[[], datetime] = utc_now,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> RefreshCoordinator:
    return RefreshCoordinator(
        store=LookupStore(clock=clock),
        fetcher=fetcher or SnapshotFetcher(app_settings.fetch_config()),
        mirror=SnapshotMirror(app_settings.cache_path),
        ttl=app_settings.cache_ttl,
        max_retries=app_settings.refresh_max_retries,
        backoff_s=app_settings.refresh_backoff_s,
        clock=clock,
        sleep_fn=sleep_fn,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Restore the disk cache, kick off a refresh if it is missing or stale, start the scheduler."""
    app_settings: Settings = app.state.settings
    coordinator: RefreshCoordinator = app.state.coordinator

    try:
        logger.info("Starting LUCID lookup service %s", __version__)
        logger.info(
            "Upstream %s, cache TTL %sh, admin key %s",
            app_settings.api_url,
            app_settings.cache_ttl_hours,
            "configured" if app_settings.internal_api_key else "not set",
        )
        app.state.started_at = time.monotonic()
        coordinator.restore()

        if app_settings.refresh_on_startup and coordinator.is_due():
            logger.info("Cache missing or stale, starting initial refresh in the background")
            coordinator.start_background_refresh(force=True, trigger=RefreshTrigger.STARTUP)

        stop_event = asyncio.Event()
        app.state.scheduler_stop_event = stop_event
        app.state.scheduler_task = None
        if app_settings.schedule_enabled:
            app.state.scheduler_task = asyncio.create_task(
                run_scheduler(coordinator=coordinator, settings=app_settings, stop_event=stop_event)
            )
    except Exception as e:
        logger.error(f"FATAL: Startup failed: {e}", exc_info=True)
        raise

    yield

    logger.info("Shutting down LUCID lookup service...")
    app.state.scheduler_stop_event.set()
    task = app.state.scheduler_task
    if task is not None:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
    try:
        await asyncio.wait_for(asyncio.shield(coordinator.wait_idle()), timeout=SHUTDOWN_GRACE_S)
    except asyncio.TimeoutError:
        logger.warning("Refresh still running at shutdown, abandoning it")
    close = getattr(coordinator.fetcher, "close", None)
    if close is not None and not coordinator.store.is_loading():
        close()
    logger.info("Shutdown complete")


def create_app(
    app_settings: Settings | None = None,
    *,
    fetcher: DocumentSource | None = None,
    clock: Callable[[], datetime] = utc_now,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> FastAPI:
    app_settings = app_settings or settings
    app = FastAPI(title="LUCID lookup service", version=__version__, lifespan=lifespan)

    coordinator = build_coordinator(app_settings, fetcher=fetcher, clock=clock, sleep_fn=sleep_fn)
    app.state.settings = app_settings
    app.state.coordinator = coordinator
    app.state.started_at = time.monotonic()
    app.state.limiter = limiter

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        error = ErrorResponse(error="Rate limit exceeded. Try again later.")
        return JSONResponse(status_code=429, content=error.model_dump())

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=ErrorResponse(error=str(exc.detail)).model_dump())

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "%s %s -> %s (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
        )
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(TimeoutMiddleware, timeout_s=app_settings.request_deadline_s)

    app.include_router(status_router.router)
    app.include_router(lookup_router.router)
    app.include_router(admin_router.router)
    return app


app = create_app()
