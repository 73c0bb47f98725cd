from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, replace
from datetime import UTC, datetime


@dataclass(frozen=True)
class PlayRecord:
    record_id: str
    played_at: datetime
    play_count: int


class RecentlyPlayedLedger:
    """Bounded most-recent-first play history keyed by record id."""

    def __init__(self, *, capacity: int = 50) -> None:
        if capacity < 1:
            raise ValueError("RecentlyPlayedLedger capacity must be at least 1.")
        self._capacity = capacity
        self._records: OrderedDict[str, PlayRecord] = OrderedDict()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._records)

    def record_play(self, record_id: str, *, now: datetime | None = None) -> PlayRecord:
        played_at = now if now is not None else datetime.now(UTC)
        existing = self._records.pop(record_id, None)
        if existing is None:
            record = PlayRecord(record_id=record_id, played_at=played_at, play_count=1)
        else:
            record = replace(existing, played_at=played_at, play_count=existing.play_count + 1)
        self._records[record_id] = record
        self._records.move_to_end(record_id, last=False)
        while len(self._records) > self._capacity:
            self._records.popitem(last=True)
        return record

    def play_count(self, record_id: str) -> int:
        record = self._records.get(record_id)
        return record.play_count if record is not None else 0

    def played_at(self, record_id: str) -> datetime | None:
        record = self._records.get(record_id)
        return record.played_at if record is not None else None

    def entries(self) -> list[PlayRecord]:
        return list(self._records.values())

    def clear(self) -> None:
        self._records.clear()
