"""Health and cache statistics router."""

import time

from fastapi import APIRouter, Depends, Request

from lucidlookup.dependencies import get_coordinator, get_settings
from lucidlookup.pipeline.mirror import to_epoch_ms
from lucidlookup.pipeline.refresh import RefreshCoordinator
from lucidlookup.routers.lookup import cache_age_minutes
from lucidlookup.schemas import CacheHealth, HealthResponse, LastRefresh, StatsResponse
from lucidlookup.settings import Settings

router = APIRouter(tags=["status"])


@router.get("/healthz", response_model=HealthResponse)
def healthz(request: Request, coordinator: RefreshCoordinator = Depends(get_coordinator)) -> HealthResponse:
    """Liveness check. Always 200 while the process serves requests, even with an empty cache."""
    store = coordinator.store
    age = cache_age_minutes(store)
    return HealthResponse(
        uptime=round(time.monotonic() - request.app.state.started_at, 3),
        cache=CacheHealth(
            entries=store.size,
            last_update=to_epoch_ms(store.fetched_at) if store.fetched_at else None,
            age=f"{age} minutes" if age is not None else "never",
        ),
    )


@router.get("/api/stats", response_model=StatsResponse)
def api_stats(
    coordinator: RefreshCoordinator = Depends(get_coordinator),
    app_settings: Settings = Depends(get_settings),
) -> StatsResponse:
    store = coordinator.store
    outcome = coordinator.last_outcome
    return StatsResponse(
        entries=store.size,
        last_update=to_epoch_ms(store.fetched_at) if store.fetched_at else None,
        last_update_iso=store.fetched_at.isoformat() if store.fetched_at else None,
        age_minutes=cache_age_minutes(store),
        is_loading=store.is_loading(),
        ttl_hours=app_settings.cache_ttl_hours,
        api_key_required=bool(app_settings.internal_api_key),
        last_refresh=LastRefresh.model_validate(outcome.to_dict()) if outcome else None,
    )
