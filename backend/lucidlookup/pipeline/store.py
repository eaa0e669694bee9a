from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from lucidlookup.pipeline.types import EMPTY_SNAPSHOT, Record, Snapshot, lookup_key


def utc_now() -> datetime:
    return datetime.now(UTC)


class LookupStore:
    """In-memory lookup table holding exactly one live Snapshot.

    Readers call ``lookup``; only the refresh coordinator calls ``install`` and
    ``set_loading``. Installing is a single reference assignment, so a reader
    sees either the previous table or the new one, never a mix.
    """

    def __init__(self, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock
        self._snapshot: Snapshot = EMPTY_SNAPSHOT
        self._loading = False

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def size(self) -> int:
        return len(self._snapshot)

    @property
    def fetched_at(self) -> datetime | None:
        return self._snapshot.fetched_at

    def lookup(self, raw_query: str) -> Record | None:
        return self._snapshot.get(lookup_key(raw_query))

    def install(self, snapshot: Snapshot) -> None:
        self._snapshot = snapshot

    def is_empty(self) -> bool:
        return len(self._snapshot) == 0

    def age(self) -> timedelta | None:
        fetched_at = self._snapshot.fetched_at
        if fetched_at is None:
            return None
        return self._clock() - fetched_at

    def is_loading(self) -> bool:
        return self._loading

    def set_loading(self, loading: bool) -> None:
        self._loading = loading
