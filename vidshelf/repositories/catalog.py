from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import replace
from enum import StrEnum
from typing import Literal

from vidshelf.models.media import PLATFORM_LABELS, CatalogEntry, EntryStatus, PlatformId
from vidshelf.repositories.play_history import RecentlyPlayedLedger

LOGGER = logging.getLogger("vidshelf.catalog")

POPULAR_SCORE_THRESHOLD = 10
PLAY_COUNT_WEIGHT = 10

CatalogListener = Callable[[], None]
PlatformFilter = PlatformId | Literal["all"] | None


class SortKey(StrEnum):
    DEFAULT = "default"
    TITLE_ASC = "title_asc"
    TITLE_DESC = "title_desc"
    DATE_ASC = "date_asc"
    DATE_DESC = "date_desc"
    DURATION_ASC = "duration_asc"
    DURATION_DESC = "duration_desc"
    POPULARITY = "popularity"
    RECENTLY_PLAYED = "recently_played"

    @classmethod
    def parse(cls, raw_value: object) -> SortKey:
        if isinstance(raw_value, SortKey):
            return raw_value
        if isinstance(raw_value, str):
            normalized = raw_value.strip().lower()
            for member in cls:
                if member.value == normalized:
                    return member
        return cls.DEFAULT


def subsequence_match(text: str, term: str) -> bool:
    if not term:
        return True
    position = 0
    for char in text:
        if char == term[position]:
            position += 1
            if position == len(term):
                return True
    return False


def _searchable_fields(entry: CatalogEntry) -> Iterable[str]:
    yield entry.title
    yield entry.description
    yield entry.platform_id.value
    yield from entry.tags
    yield entry.category
    yield entry.author


def _matches_search(entry: CatalogEntry, term: str) -> bool:
    return any(subsequence_match(value.lower(), term) for value in _searchable_fields(entry))


class Catalog:
    def __init__(
        self,
        *,
        ledger: RecentlyPlayedLedger,
        search_min_length: int = 2,
    ) -> None:
        self._ledger = ledger
        self._search_min_length = max(1, int(search_min_length))
        self._entries: list[CatalogEntry] = []
        self._listeners: list[CatalogListener] = []

    @property
    def ledger(self) -> RecentlyPlayedLedger:
        return self._ledger

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> list[CatalogEntry]:
        return list(self._entries)

    def get(self, record_id: str) -> CatalogEntry | None:
        for entry in self._entries:
            if entry.record_id == record_id:
                return entry
        return None

    def set_all(self, entries: Iterable[CatalogEntry]) -> None:
        seen: set[str] = set()
        active: list[CatalogEntry] = []
        dropped = 0
        for entry in entries:
            if not entry.is_active or entry.record_id in seen:
                dropped += 1
                continue
            seen.add(entry.record_id)
            active.append(entry)
        self._entries = active
        LOGGER.info("catalog replaced count=%s dropped=%s", len(active), dropped)
        self._notify()

    def add(self, entry: CatalogEntry) -> None:
        if not entry.is_active:
            raise ValueError(f"Cannot add inactive entry record_id={entry.record_id}.")
        if self.get(entry.record_id) is not None:
            raise ValueError(f"Catalog already contains record_id={entry.record_id}.")
        self._entries.append(entry)
        LOGGER.info("catalog entry added record_id=%s", entry.record_id)
        self._notify()

    def apply_update(
        self,
        record_id: str,
        *,
        view_count: int | None = None,
        status: EntryStatus | None = None,
    ) -> CatalogEntry | None:
        for index, entry in enumerate(self._entries):
            if entry.record_id != record_id:
                continue
            updated = entry
            if view_count is not None:
                updated = replace(updated, view_count=max(0, int(view_count)))
            if status is not None:
                updated = replace(updated, status=status)
            if updated.is_active:
                self._entries[index] = updated
            else:
                del self._entries[index]
                LOGGER.info("catalog entry deactivated record_id=%s", record_id)
            self._notify()
            return updated
        return None

    def subscribe(self, listener: CatalogListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def query(
        self,
        platform_filter: PlatformFilter = None,
        search_term: str | None = None,
        sort_key: SortKey | str = SortKey.DEFAULT,
    ) -> list[CatalogEntry]:
        results = list(self._entries)
        if platform_filter is not None and platform_filter != "all":
            platform = PlatformId.parse(platform_filter)
            results = [entry for entry in results if entry.platform_id is platform]

        term = (search_term or "").strip().lower()
        if len(term) >= self._search_min_length:
            results = [entry for entry in results if _matches_search(entry, term)]

        return self._sort(results, SortKey.parse(sort_key))

    def popularity_score(self, entry: CatalogEntry) -> int:
        return entry.view_count + PLAY_COUNT_WEIGHT * self._ledger.play_count(entry.record_id)

    def is_popular(self, entry: CatalogEntry) -> bool:
        return self.popularity_score(entry) > POPULAR_SCORE_THRESHOLD

    def recommended(self, *, limit: int = 5) -> list[CatalogEntry]:
        return self._sort(list(self._entries), SortKey.POPULARITY)[: max(0, limit)]

    def suggest(self, term: str, *, limit: int = 10) -> list[str]:
        normalized = term.strip().lower()
        if len(normalized) < self._search_min_length:
            return []
        suggestions: list[str] = []
        for entry in self._entries:
            if normalized in entry.title.lower() and entry.title not in suggestions:
                suggestions.append(entry.title)
        for platform, label in PLATFORM_LABELS.items():
            if normalized in label.lower() and any(
                entry.platform_id is platform for entry in self._entries
            ):
                if label not in suggestions:
                    suggestions.append(label)
        return suggestions[: max(0, limit)]

    def _sort(self, entries: list[CatalogEntry], sort_key: SortKey) -> list[CatalogEntry]:
        if sort_key is SortKey.TITLE_ASC:
            return sorted(entries, key=lambda entry: entry.title.casefold())
        if sort_key is SortKey.TITLE_DESC:
            return sorted(entries, key=lambda entry: entry.title.casefold(), reverse=True)
        if sort_key is SortKey.DATE_ASC:
            return sorted(entries, key=lambda entry: entry.created_at)
        if sort_key is SortKey.DATE_DESC:
            return sorted(entries, key=lambda entry: entry.created_at, reverse=True)
        if sort_key is SortKey.DURATION_ASC:
            return sorted(entries, key=lambda entry: entry.duration_seconds)
        if sort_key is SortKey.DURATION_DESC:
            return sorted(entries, key=lambda entry: entry.duration_seconds, reverse=True)
        if sort_key is SortKey.POPULARITY:
            return sorted(entries, key=self.popularity_score, reverse=True)
        if sort_key is SortKey.RECENTLY_PLAYED:
            played: list[CatalogEntry] = []
            unplayed: list[CatalogEntry] = []
            for entry in entries:
                if self._ledger.played_at(entry.record_id) is None:
                    unplayed.append(entry)
                else:
                    played.append(entry)
            played.sort(key=self._played_at_key, reverse=True)
            return played + unplayed
        return entries

    def _played_at_key(self, entry: CatalogEntry) -> float:
        played_at = self._ledger.played_at(entry.record_id)
        return played_at.timestamp() if played_at is not None else 0.0

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                LOGGER.exception("catalog listener failed")


def neighbor(
    entries: Sequence[CatalogEntry],
    record_id: str | None,
    step: int,
) -> CatalogEntry | None:
    if not entries:
        return None
    current_index = next(
        (index for index, entry in enumerate(entries) if entry.record_id == record_id),
        -1,
    )
    if current_index == -1:
        return entries[0] if step >= 0 else entries[-1]
    return entries[(current_index + step) % len(entries)]
