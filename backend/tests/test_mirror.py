"""Tests for the disk mirror of the lookup table."""
from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from lucidlookup.pipeline.mirror import MirrorReadError, MirrorWriteError, SnapshotMirror, to_epoch_ms
from lucidlookup.pipeline.types import Record, Snapshot


def test_save_writes_documented_layout(mirror: SnapshotMirror, snapshot_factory) -> None:
    snapshot = snapshot_factory(count=2)
    mirror.save(snapshot)

    doc = json.loads(mirror.path.read_text(encoding="utf-8"))
    assert doc["lastUpdate"] == to_epoch_ms(snapshot.fetched_at)
    assert doc["count"] == 2
    assert doc["data"][0] == [
        "DE00000",
        {
            "registration_number": "DE00000",
            "company_name": "Company 0",
            "vat_number": "",
            "tax_number": "",
            "address": "",
            "city": "",
            "postal_code": "",
        },
    ]


def test_load_restores_saved_snapshot(mirror: SnapshotMirror, snapshot_factory) -> None:
    snapshot = snapshot_factory(count=5)
    mirror.save(snapshot)

    loaded = mirror.load()
    assert loaded is not None
    assert dict(loaded.entries) == dict(snapshot.entries)
    assert loaded.fetched_at == snapshot.fetched_at


def test_save_overwrites_previous_file(mirror: SnapshotMirror, snapshot_factory) -> None:
    mirror.save(snapshot_factory(count=5))
    mirror.save(snapshot_factory(count=1, prefix="X"))

    loaded = mirror.load()
    assert loaded is not None
    assert list(loaded.entries) == ["X00000"]
    assert not mirror.path.with_name(mirror.path.name + ".tmp").exists()


def test_load_missing_file_returns_none(tmp_path: Path) -> None:
    assert SnapshotMirror(tmp_path / "missing.json").load() is None


def test_load_reads_file_written_by_previous_service(tmp_path: Path) -> None:
    path = tmp_path / "lucid-cache.json"
    path.write_text(
        json.dumps(
            {
                "lastUpdate": 1735689600000,
                "count": 1,
                "data": [["DE1", {"registration_number": "de1", "company_name": "Legacy GmbH"}]],
            }
        ),
        encoding="utf-8",
    )

    loaded = SnapshotMirror(path).load()
    assert loaded is not None
    assert loaded.fetched_at == datetime(2025, 1, 1, tzinfo=UTC)
    assert loaded.get("DE1") == Record(registration_number="de1", company_name="Legacy GmbH")


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        '{"count": 1}',
        '{"data": [["DE1"]]}',
        "[]",
        '{"data": [["DE1", {"company_name": "X"}]]}',
        '{"lastUpdate": 1e30, "data": []}',
        '{"lastUpdate": -1e30, "data": []}',
    ],
)
def test_load_rejects_corrupt_files(tmp_path: Path, content: str) -> None:
    path = tmp_path / "lucid-cache.json"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(MirrorReadError):
        SnapshotMirror(path).load()


def test_save_failure_raises_write_error(tmp_path: Path, snapshot_factory) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file in the way", encoding="utf-8")
    mirror = SnapshotMirror(blocker / "lucid-cache.json")
    with pytest.raises(MirrorWriteError):
        mirror.save(snapshot_factory(count=1))


def test_empty_snapshot_round_trip(mirror: SnapshotMirror) -> None:
    mirror.save(Snapshot())
    loaded = mirror.load()
    assert loaded is not None
    assert len(loaded) == 0
    assert loaded.fetched_at is None
