"""
Pytest configuration for backend tests.

Shared fixtures: isolated settings, a scriptable fetcher, a controllable clock
and sample register documents in the known upstream layouts.
"""
import sys
import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
from fastapi import FastAPI

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from lucidlookup.dependencies import limiter
from lucidlookup.main import create_app
from lucidlookup.pipeline.fetcher import FetchError
from lucidlookup.pipeline.mirror import SnapshotMirror
from lucidlookup.pipeline.refresh import RefreshCoordinator
from lucidlookup.pipeline.store import LookupStore
from lucidlookup.pipeline.types import Record, Snapshot
from lucidlookup.settings import Settings

# --- Test Constants ---
UPSTREAM_URL = "https://lucid.test/v1/listofproducers"
UPSTREAM_TOKEN = "test-token-123456"
START_TIME = datetime(2025, 3, 1, 8, 0, tzinfo=UTC)


def register_xml_root_layout(producers: list[dict[str, str]]) -> bytes:
    """Register document in the Root/ListOfProducers/Producer layout."""
    items = "".join(
        "<Producer>" + "".join(f"<{k}>{v}</{k}>" for k, v in p.items()) + "</Producer>" for p in producers
    )
    return f'<?xml version="1.0" encoding="UTF-8"?><Root><ListOfProducers>{items}</ListOfProducers></Root>'.encode()


def register_xml_excerpt_layout(producers: list[dict[str, str]]) -> bytes:
    """Register document in the RegisterExcerpt/Producer layout."""
    items = "".join(
        "<Producer>" + "".join(f"<{k}>{v}</{k}>" for k, v in p.items()) + "</Producer>" for p in producers
    )
    return f"<RegisterExcerpt>{items}</RegisterExcerpt>".encode()


class Clock:
    """Mutable clock for TTL tests."""

    def __init__(self, now: datetime = START_TIME) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class FakeFetcher:
    """Fetcher returning scripted documents or raising scripted errors.

    When ``gate`` is set, each fetch blocks until the gate is opened, which lets
    tests observe the store while a refresh is in flight.
    """

    def __init__(self, *responses: bytes | FetchError, gate: threading.Event | None = None) -> None:
        self._responses = list(responses)
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self.started = threading.Event()
        self.gate = gate
        self._lock = threading.Lock()
        self.closed = False

    def fetch(self) -> bytes:
        with self._lock:
            self.calls += 1
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            response = self._responses[min(self.calls, len(self._responses)) - 1]
        self.started.set()
        try:
            if self.gate is not None:
                self.gate.wait(timeout=5)
            if isinstance(response, FetchError):
                raise response
            return response
        finally:
            with self._lock:
                self.in_flight -= 1

    def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    limiter.reset()
    yield


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def settings_factory(tmp_path: Path) -> Callable[..., Settings]:
    """Build Settings isolated to tmp_path with background activity disabled."""

    def _create(**overrides: Any) -> Settings:
        values: dict[str, Any] = {
            "data_dir": tmp_path / "data",
            "api_url": UPSTREAM_URL,
            "token": UPSTREAM_TOKEN,
            "refresh_on_startup": False,
            "schedule_enabled": False,
            "refresh_max_retries": 0,
            "refresh_backoff_s": 0.0,
            "internal_api_key": None,
        }
        values.update(overrides)
        return Settings(**values)

    return _create


@pytest.fixture
def mirror(tmp_path: Path) -> SnapshotMirror:
    return SnapshotMirror(tmp_path / "data" / "lucid-cache.json")


@pytest.fixture
def coordinator_factory(mirror: SnapshotMirror, clock: Clock) -> Callable[..., RefreshCoordinator]:
    def _create(fetcher: Any, **kwargs: Any) -> RefreshCoordinator:
        params: dict[str, Any] = {
            "store": LookupStore(clock=clock),
            "fetcher": fetcher,
            "mirror": mirror,
            "ttl": timedelta(hours=24),
            "clock": clock,
            "sleep_fn": lambda _s: None,
        }
        params.update(kwargs)
        return RefreshCoordinator(**params)

    return _create


@pytest.fixture
def sample_producers() -> list[dict[str, str]]:
    return [
        {
            "RegistrationNumber": "DE1234567890123",
            "ProducerName": "Muster Verpackung GmbH",
            "VATNumber": "DE123456789",
            "City": "Berlin",
            "PostalCode": "10115",
        },
        {
            "RegistrationNumber": "de9876543210987",
            "Name": "Beispiel AG",
            "TaxNumber": "27/123/45678",
            "Address": "Hauptstr. 1",
            "City": "Hamburg",
        },
    ]


@pytest.fixture
def snapshot_factory(clock: Clock) -> Callable[..., Snapshot]:
    def _create(count: int = 3, prefix: str = "DE", company: str = "Company") -> Snapshot:
        records = [
            Record(registration_number=f"{prefix}{i:05d}", company_name=f"{company} {i}") for i in range(count)
        ]
        return Snapshot.build(records, clock())

    return _create


@pytest.fixture
def app_factory(settings_factory, clock: Clock) -> Callable[..., FastAPI]:
    """Build an app around a scripted fetcher. Use it inside ``with TestClient(app)`` to run the lifespan."""

    def _create(fetcher: Any, **overrides: Any) -> FastAPI:
        return create_app(settings_factory(**overrides), fetcher=fetcher, clock=clock, sleep_fn=lambda _s: None)

    return _create


def wait_for_idle(client, timeout_s: float = 5.0) -> dict[str, Any]:
    """Poll /api/stats until no refresh is running and return the final stats."""
    deadline = time.monotonic() + timeout_s
    while True:
        stats = client.get("/api/stats").json()
        if not stats["isLoading"] or time.monotonic() > deadline:
            return stats
        time.sleep(0.02)
