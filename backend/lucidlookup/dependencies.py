"""Request-scoped access to the service objects created by ``create_app``."""
from __future__ import annotations

import secrets

from fastapi import Header, HTTPException, Query, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from lucidlookup.pipeline.refresh import RefreshCoordinator
from lucidlookup.settings import Settings

limiter = Limiter(key_func=get_remote_address)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_coordinator(request: Request) -> RefreshCoordinator:
    return request.app.state.coordinator


def require_api_key(
    request: Request,
    x_api_key: str | None = Header(default=None),
    api_key: str | None = Query(default=None),
) -> None:
    """Reject the request unless it carries the internal API key (when one is configured)."""
    expected = get_settings(request).internal_api_key
    if not expected:
        return
    provided = x_api_key or api_key
    if not provided or not secrets.compare_digest(provided.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Invalid API key")
