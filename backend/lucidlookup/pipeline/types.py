from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from types import MappingProxyType
from typing import Any


def lookup_key(value: str) -> str:
    """Normalize a registration number into the key space used for storage and lookup."""
    return value.strip().upper()


@dataclass(frozen=True)
class Record:
    registration_number: str
    company_name: str = ""
    vat_number: str = ""
    tax_number: str = ""
    address: str = ""
    city: str = ""
    postal_code: str = ""

    def to_dict(self) -> dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Record:
        known = {f.name for f in fields(cls)}
        values = {k: "" if v is None else str(v) for k, v in data.items() if k in known}
        return cls(**values)


@dataclass(frozen=True)
class Snapshot:
    """One complete lookup table plus the time it was fetched.

    The mapping is read-only; a new Snapshot replaces an old one wholesale.
    """

    entries: Mapping[str, Record] = field(default_factory=lambda: MappingProxyType({}))
    fetched_at: datetime | None = None

    @classmethod
    def build(cls, records: Iterable[Record], fetched_at: datetime | None) -> Snapshot:
        # Later records overwrite earlier ones that normalize to the same key.
        table: dict[str, Record] = {}
        for record in records:
            table[lookup_key(record.registration_number)] = record
        return cls(entries=MappingProxyType(table), fetched_at=fetched_at)

    @classmethod
    def from_entries(cls, entries: Mapping[str, Record], fetched_at: datetime | None) -> Snapshot:
        return cls(entries=MappingProxyType(dict(entries)), fetched_at=fetched_at)

    def __len__(self) -> int:
        return len(self.entries)

    def get(self, key: str) -> Record | None:
        return self.entries.get(key)


EMPTY_SNAPSHOT = Snapshot()
