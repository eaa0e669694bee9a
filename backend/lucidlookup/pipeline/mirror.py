"""Disk copy of the lookup table, rewritten after every successful refresh."""
from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from lucidlookup.pipeline.io import read_json, write_json_atomic
from lucidlookup.pipeline.types import Record, Snapshot

logger = logging.getLogger(__name__)


class MirrorError(OSError):
    pass


class MirrorReadError(MirrorError):
    pass


class MirrorWriteError(MirrorError):
    pass


def to_epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def from_epoch_ms(value: int | float) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=UTC)


def snapshot_to_document(snapshot: Snapshot) -> dict[str, Any]:
    return {
        "lastUpdate": to_epoch_ms(snapshot.fetched_at) if snapshot.fetched_at else None,
        "count": len(snapshot),
        "data": [[key, record.to_dict()] for key, record in snapshot.entries.items()],
    }


def document_to_snapshot(doc: Any) -> Snapshot:
    if not isinstance(doc, dict) or not isinstance(doc.get("data"), list):
        raise MirrorReadError("Cache file has no 'data' list")
    entries: dict[str, Record] = {}
    for item in doc["data"]:
        if not isinstance(item, list) or len(item) != 2 or not isinstance(item[1], dict):
            raise MirrorReadError(f"Invalid cache entry: {item!r:.200}")
        key, payload = item
        try:
            entries[str(key)] = Record.from_dict(payload)
        except (TypeError, ValueError) as e:
            raise MirrorReadError(f"Invalid cache entry {key!r:.50}: {e}") from e
    last_update = doc.get("lastUpdate")
    try:
        fetched_at = from_epoch_ms(last_update) if isinstance(last_update, (int, float)) else None
    except (ValueError, OverflowError, OSError) as e:
        raise MirrorReadError(f"Invalid lastUpdate {last_update!r}: {e}") from e
    return Snapshot.from_entries(entries, fetched_at)


class SnapshotMirror:
    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def save(self, snapshot: Snapshot) -> None:
        try:
            write_json_atomic(self._path, snapshot_to_document(snapshot))
        except OSError as e:
            raise MirrorWriteError(f"Could not write cache file {self._path}: {e}") from e
        logger.info("Saved %d entries to %s", len(snapshot), self._path)

    def load(self) -> Snapshot | None:
        """Read the mirror back. Returns None when no cache file exists yet."""
        if not self._path.exists():
            return None
        try:
            doc = read_json(self._path)
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MirrorReadError(f"Could not read cache file {self._path}: {e}") from e
        snapshot = document_to_snapshot(doc)
        logger.info("Loaded %d entries from %s", len(snapshot), self._path)
        return snapshot
