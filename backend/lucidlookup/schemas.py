from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RecordDetails(BaseModel):
    registration_number: str
    company_name: str = ""
    vat_number: str = ""
    tax_number: str = ""
    address: str = ""
    city: str = ""
    postal_code: str = ""


class LookupResponse(_CamelModel):
    ok: bool = True
    registered: bool
    status: str
    key: str
    company: str | None = None
    details: RecordDetails | None = None
    checked_at: str
    cache_age: int | None = None


class LegacyValidateResponse(LookupResponse):
    lucid: str


class CacheHealth(_CamelModel):
    entries: int
    last_update: int | None = None
    age: str


class HealthResponse(_CamelModel):
    ok: bool = True
    uptime: float
    cache: CacheHealth


class LastRefresh(_CamelModel):
    status: str
    trigger: str
    at: str
    entries: int
    duration_seconds: float | None = None
    error: str | None = None


class StatsResponse(_CamelModel):
    entries: int
    last_update: int | None = None
    last_update_iso: str | None = Field(default=None, alias="lastUpdateISO")
    age_minutes: int | None = None
    is_loading: bool
    ttl_hours: float
    api_key_required: bool
    last_refresh: LastRefresh | None = None


class RefreshResponse(_CamelModel):
    ok: bool = True
    started: bool
    loading: bool
    entries: int
    message: str


class ErrorResponse(_CamelModel):
    ok: bool = False
    error: str
