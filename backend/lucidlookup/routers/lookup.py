"""Registration number lookup router."""

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Request

from lucidlookup.dependencies import get_coordinator, limiter
from lucidlookup.pipeline.refresh import CacheUnavailableError, RefreshCoordinator
from lucidlookup.pipeline.store import LookupStore
from lucidlookup.schemas import LegacyValidateResponse, LookupResponse, RecordDetails
from lucidlookup.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["lookup"])


def cache_age_minutes(store: LookupStore) -> int | None:
    age = store.age()
    if age is None:
        return None
    return int(age.total_seconds() // 60)


def build_lookup_response(store: LookupStore, key: str) -> LookupResponse:
    record = store.lookup(key)
    return LookupResponse(
        registered=record is not None,
        status="registered" if record is not None else "not_found",
        key=key,
        company=record.company_name if record is not None else None,
        details=RecordDetails(**record.to_dict()) if record is not None else None,
        checked_at=datetime.now(UTC).isoformat(),
        cache_age=cache_age_minutes(store),
    )


async def _lookup(coordinator: RefreshCoordinator, key: str | None, param: str) -> LookupResponse:
    if key is None or not key.strip():
        raise HTTPException(status_code=400, detail=f"Missing '{param}' query parameter")
    try:
        await coordinator.ensure_loaded()
    except CacheUnavailableError as e:
        logger.warning("Lookup for %r failed: %s", key, e)
        raise HTTPException(status_code=503, detail="Cache not available, please try again later") from e
    return build_lookup_response(coordinator.store, key)


@router.get("/api/lookup", response_model=LookupResponse)
@limiter.limit(lambda: settings.lookup_rate_limit)
async def api_lookup(
    request: Request,
    key: str | None = None,
    coordinator: RefreshCoordinator = Depends(get_coordinator),
) -> LookupResponse:
    """Check whether a registration number is in the register."""
    return await _lookup(coordinator, key, "key")


@router.get("/api/lucid/validate", response_model=LegacyValidateResponse)
@limiter.limit(lambda: settings.lookup_rate_limit)
async def api_lucid_validate(
    request: Request,
    lucid: str | None = None,
    coordinator: RefreshCoordinator = Depends(get_coordinator),
) -> LegacyValidateResponse:
    """Same as /api/lookup, for clients of the ``?lucid=`` endpoint."""
    response = await _lookup(coordinator, lucid, "lucid")
    return LegacyValidateResponse(**response.model_dump(), lucid=lucid)
