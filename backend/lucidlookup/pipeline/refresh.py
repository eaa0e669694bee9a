"""
Refresh coordination for the register cache.

Decides whether a refresh is due, guarantees that at most one refresh runs at a
time, and drives fetch -> normalize -> install -> save. Failures leave the
previously installed snapshot in place.

All state changes happen on the event loop thread. The loading check and the
loading flag assignment have no ``await`` between them, so they need no lock.
Download and XML parsing run in a worker thread.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Protocol

import anyio

from lucidlookup.pipeline.fetcher import (
    FetchError,
    FetchTimeout,
    RateLimited,
    UpstreamError,
    UpstreamUnreachable,
)
from lucidlookup.pipeline.mirror import MirrorError, SnapshotMirror
from lucidlookup.pipeline.normalize import ParseError, normalize
from lucidlookup.pipeline.store import LookupStore, utc_now
from lucidlookup.pipeline.types import Record, Snapshot

logger = logging.getLogger(__name__)

MAX_BACKOFF_S = 60.0


class DocumentSource(Protocol):
    def fetch(self) -> bytes: ...


class CacheUnavailableError(RuntimeError):
    """The store is empty and could not be filled."""


class RefreshTrigger(str, Enum):
    MANUAL = "manual"
    ADMIN = "admin"
    LAZY = "lazy"
    SCHEDULED = "scheduled"
    STARTUP = "startup"


class RefreshStatus(str, Enum):
    REFRESHED = "refreshed"
    SKIPPED_FRESH = "skipped_fresh"
    SKIPPED_BUSY = "skipped_busy"
    FAILED = "failed"


@dataclass(frozen=True)
class RefreshOutcome:
    status: RefreshStatus
    trigger: RefreshTrigger
    at: datetime
    entries: int
    duration_s: float | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "trigger": self.trigger.value,
            "at": self.at.isoformat(),
            "entries": self.entries,
            "durationSeconds": self.duration_s,
            "error": self.error,
        }


def is_transient(error: FetchError) -> bool:
    if isinstance(error, (FetchTimeout, UpstreamUnreachable, RateLimited)):
        return True
    return isinstance(error, UpstreamError) and error.status_code >= 500


class RefreshCoordinator:
    def __init__(
        self,
        *,
        store: LookupStore,
        fetcher: DocumentSource,
        mirror: SnapshotMirror,
        ttl: timedelta,
        max_retries: int = 0,
        backoff_s: float = 5.0,
        clock: Callable[[], datetime] = utc_now,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._mirror = mirror
        self._ttl = ttl
        self._max_retries = max_retries
        self._backoff_s = backoff_s
        self._clock = clock
        self._sleep_fn = sleep_fn
        self._inflight: asyncio.Task[RefreshOutcome] | None = None
        self._background: set[asyncio.Task[RefreshOutcome]] = set()
        self._last_outcome: RefreshOutcome | None = None

    @property
    def store(self) -> LookupStore:
        return self._store

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    @property
    def last_outcome(self) -> RefreshOutcome | None:
        return self._last_outcome

    @property
    def fetcher(self) -> DocumentSource:
        return self._fetcher

    @property
    def mirror(self) -> SnapshotMirror:
        return self._mirror

    def restore(self) -> bool:
        """Install the disk copy, if there is a readable one. Called once at startup."""
        try:
            snapshot = self._mirror.load()
        except MirrorError as e:
            logger.warning("Ignoring unreadable cache file: %s", e)
            return False
        if snapshot is None:
            logger.info("No cache file at %s", self._mirror.path)
            return False
        self._store.install(snapshot)
        return True

    def is_due(self, min_age: timedelta | None = None) -> bool:
        age = self._store.age()
        if age is None:
            return True
        return age >= (min_age if min_age is not None else self._ttl)

    def _skip(self, status: RefreshStatus, trigger: RefreshTrigger) -> RefreshOutcome:
        return RefreshOutcome(status=status, trigger=trigger, at=self._clock(), entries=self._store.size)

    def _check_guards(
        self, *, force: bool, trigger: RefreshTrigger, min_age: timedelta | None
    ) -> RefreshOutcome | None:
        if not force and not self.is_due(min_age):
            age = self._store.age()
            logger.info("Cache still fresh (%.1fh old), skipping %s refresh", age.total_seconds() / 3600, trigger.value)
            return self._skip(RefreshStatus.SKIPPED_FRESH, trigger)
        if self._store.is_loading():
            logger.info("Refresh already running, ignoring %s trigger", trigger.value)
            return self._skip(RefreshStatus.SKIPPED_BUSY, trigger)
        return None

    def _begin(self, trigger: RefreshTrigger) -> asyncio.Task[RefreshOutcome]:
        self._store.set_loading(True)
        task = asyncio.create_task(self._run(trigger))
        self._inflight = task
        return task

    async def refresh(
        self,
        *,
        force: bool = False,
        trigger: RefreshTrigger = RefreshTrigger.MANUAL,
        min_age: timedelta | None = None,
    ) -> RefreshOutcome:
        """Run a refresh and wait for it.

        Non-forced refreshes are skipped while the cache is younger than
        ``min_age`` (default: the TTL). A refresh requested while another one is
        loading is skipped. Fetch and parse errors are raised to the caller after
        the loading flag has been cleared.
        """
        skipped = self._check_guards(force=force, trigger=trigger, min_age=min_age)
        if skipped is not None:
            return skipped
        task = self._begin(trigger)
        # The refresh keeps running if the awaiting request goes away.
        return await asyncio.shield(task)

    def start_background_refresh(
        self, *, force: bool = True, trigger: RefreshTrigger = RefreshTrigger.ADMIN
    ) -> bool:
        """Start a refresh without waiting for it. Returns False if none was started."""
        if self._check_guards(force=force, trigger=trigger, min_age=None) is not None:
            return False
        task = self._begin(trigger)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return True

    def _on_background_done(self, task: asyncio.Task[RefreshOutcome]) -> None:
        self._background.discard(task)
        if task.cancelled():
            logger.warning("Background refresh was cancelled")
            return
        if task.exception() is not None:
            logger.warning("Background refresh failed, still serving %d cached entries", self._store.size)

    async def ensure_loaded(self) -> None:
        """Fill an empty store before answering a lookup.

        Waits for a refresh that is already running instead of starting a second
        download. An empty snapshot that is still within its TTL is accepted as
        is (upstream delivered no entries).
        """
        if not self._store.is_empty():
            return
        if self._store.fetched_at is not None and not self.is_due():
            return
        try:
            inflight = self._inflight
            if inflight is not None:
                logger.info("Cache empty, waiting for running refresh")
                await asyncio.shield(inflight)
            else:
                logger.info("Cache empty, starting refresh")
                await self.refresh(force=True, trigger=RefreshTrigger.LAZY)
        except (FetchError, ParseError) as e:
            raise CacheUnavailableError(f"Cache not available: {e}") from e
        if self._store.fetched_at is None:
            raise CacheUnavailableError("Cache not available, no snapshot has been loaded")

    async def wait_idle(self) -> None:
        tasks = [t for t in (self._inflight, *self._background) if t is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, trigger: RefreshTrigger) -> RefreshOutcome:
        started = time.monotonic()
        logger.info("Starting %s refresh", trigger.value)
        try:
            records = await anyio.to_thread.run_sync(self._download_and_parse)
            snapshot = Snapshot.build(records, self._clock())
            self._store.install(snapshot)
            try:
                await anyio.to_thread.run_sync(self._mirror.save, snapshot)
            except MirrorError as e:
                logger.error("Keeping in-memory cache, disk copy not written: %s", e)
            outcome = RefreshOutcome(
                status=RefreshStatus.REFRESHED,
                trigger=trigger,
                at=snapshot.fetched_at or self._clock(),
                entries=len(snapshot),
                duration_s=round(time.monotonic() - started, 3),
            )
            logger.info("Refresh complete: %d entries in %.1fs", outcome.entries, outcome.duration_s)
            self._last_outcome = outcome
            return outcome
        except Exception as e:
            expected = isinstance(e, (FetchError, ParseError))
            logger.error("Refresh (%s) failed: %s", trigger.value, e, exc_info=not expected)
            self._last_outcome = RefreshOutcome(
                status=RefreshStatus.FAILED,
                trigger=trigger,
                at=self._clock(),
                entries=self._store.size,
                duration_s=round(time.monotonic() - started, 3),
                error=str(e),
            )
            raise
        finally:
            self._store.set_loading(False)
            self._inflight = None

    def _download_and_parse(self) -> list[Record]:
        raw = self._fetch_with_retry()
        return normalize(raw)

    def _fetch_with_retry(self) -> bytes:
        attempt = 0
        while True:
            try:
                return self._fetcher.fetch()
            except FetchError as e:
                if attempt >= self._max_retries or not is_transient(e):
                    raise
                delay = self._retry_delay(e, attempt)
                if delay > MAX_BACKOFF_S:
                    logger.warning("Upstream asked to wait %.0fs, not retrying", delay)
                    raise
                attempt += 1
                logger.warning(
                    "Fetch failed (%s), retry %d/%d in %.1fs", e.kind, attempt, self._max_retries, delay
                )
                self._sleep_fn(delay)

    def _retry_delay(self, error: FetchError, attempt: int) -> float:
        if isinstance(error, RateLimited) and error.retry_after_s is not None:
            return error.retry_after_s
        return min(MAX_BACKOFF_S, self._backoff_s * (1 << attempt))
