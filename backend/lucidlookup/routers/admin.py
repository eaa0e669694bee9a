"""Administrative cache refresh router."""

from fastapi import APIRouter, Depends, Request

from lucidlookup.dependencies import get_coordinator, limiter, require_api_key
from lucidlookup.pipeline.refresh import RefreshCoordinator, RefreshTrigger
from lucidlookup.schemas import RefreshResponse
from lucidlookup.settings import settings

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_api_key)])


@router.post("/refresh", response_model=RefreshResponse)
@limiter.limit(lambda: settings.admin_rate_limit)
async def admin_refresh(
    request: Request,
    coordinator: RefreshCoordinator = Depends(get_coordinator),
) -> RefreshResponse:
    """Start a forced refresh in the background and answer immediately.

    The outcome is reported by ``/api/stats`` under ``lastRefresh``.
    """
    started = coordinator.start_background_refresh(force=True, trigger=RefreshTrigger.ADMIN)
    store = coordinator.store
    return RefreshResponse(
        started=started,
        loading=store.is_loading(),
        entries=store.size,
        message="Refresh started" if started else "Refresh already running",
    )
