from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from tests.support import make_entry
from vidshelf.models.media import CatalogEntry, EntryStatus, PlatformId
from vidshelf.repositories.catalog import Catalog, SortKey, neighbor, subsequence_match
from vidshelf.repositories.play_history import RecentlyPlayedLedger


def _catalog() -> Catalog:
    return Catalog(ledger=RecentlyPlayedLedger(capacity=50))


def _ids(entries: list[CatalogEntry]) -> list[str]:
    return [entry.record_id for entry in entries]


def test_set_all_drops_inactive_entries_and_notifies() -> None:
    catalog = _catalog()
    notifications: list[int] = []
    unsubscribe = catalog.subscribe(lambda: notifications.append(len(catalog)))

    catalog.set_all(
        [
            make_entry("a"),
            make_entry("b", status=EntryStatus.INACTIVE),
            make_entry("c"),
        ]
    )

    assert _ids(catalog.query()) == ["a", "c"]
    assert notifications == [2]

    unsubscribe()
    catalog.add(make_entry("d"))
    assert notifications == [2]


def test_add_rejects_duplicate_record_ids() -> None:
    catalog = _catalog()
    catalog.add(make_entry("a"))

    with pytest.raises(ValueError):
        catalog.add(make_entry("a", title="Other"))


def test_apply_update_to_inactive_removes_entry() -> None:
    catalog = _catalog()
    catalog.set_all([make_entry("a"), make_entry("b")])

    updated = catalog.apply_update("a", view_count=7)
    assert updated is not None
    assert updated.view_count == 7
    assert catalog.get("a") == updated

    catalog.apply_update("b", status=EntryStatus.INACTIVE)
    assert _ids(catalog.query()) == ["a"]
    assert catalog.apply_update("missing", view_count=1) is None


def test_query_filters_by_platform() -> None:
    catalog = _catalog()
    catalog.set_all(
        [
            make_entry("yt"),
            make_entry("vm", url="https://vimeo.com/123"),
            make_entry("mp4", url="https://example.com/clip.mp4"),
        ]
    )

    assert _ids(catalog.query(PlatformId.VIMEO)) == ["vm"]
    assert _ids(catalog.query("all")) == ["yt", "vm", "mp4"]
    assert _ids(catalog.query(None)) == ["yt", "vm", "mp4"]


def test_search_uses_subsequence_matching_across_fields() -> None:
    catalog = _catalog()
    catalog.set_all(
        [
            make_entry("a", title="Leek and Potato Soup"),
            make_entry("b", title="Microservices", tags=frozenset({"architecture"})),
            make_entry("c", title="Untitled", author="Chef Anna"),
        ]
    )

    assert _ids(catalog.query(search_term="lpsp")) == ["a"]
    assert _ids(catalog.query(search_term="ARCH")) == ["b"]
    assert _ids(catalog.query(search_term="anna")) == ["c"]
    assert _ids(catalog.query(search_term="vimeo")) == []


def test_search_ignores_terms_below_minimum_length() -> None:
    catalog = _catalog()
    catalog.set_all([make_entry("a", title="Alpha"), make_entry("b", title="Beta")])

    assert _ids(catalog.query(search_term="z")) == ["a", "b"]


def test_search_for_unknown_term_returns_nothing() -> None:
    catalog = _catalog()
    catalog.set_all([make_entry(str(index)) for index in range(5)])

    assert catalog.query(None, "zz_no_such_term_zz", SortKey.DEFAULT) == []


def test_sorts_are_stable_for_equal_keys() -> None:
    catalog = _catalog()
    same_day = datetime(2024, 5, 1, tzinfo=UTC)
    catalog.set_all(
        [
            make_entry("a", title="Same", created_at=same_day, duration_label="1:00"),
            make_entry("b", title="same", created_at=same_day, duration_label="unknown"),
            make_entry("c", title="Same", created_at=same_day, duration_label="1:00"),
        ]
    )

    for sort_key in SortKey:
        if sort_key in {SortKey.DURATION_ASC, SortKey.DURATION_DESC}:
            continue
        assert _ids(catalog.query(sort_key=sort_key)) == ["a", "b", "c"], sort_key

    assert _ids(catalog.query(sort_key=SortKey.DURATION_ASC)) == ["b", "a", "c"]
    assert _ids(catalog.query(sort_key=SortKey.DURATION_DESC)) == ["a", "c", "b"]


def test_title_and_date_sorts() -> None:
    catalog = _catalog()
    base = datetime(2024, 1, 1, tzinfo=UTC)
    catalog.set_all(
        [
            make_entry("b", title="banana", created_at=base + timedelta(days=2)),
            make_entry("a", title="Apple", created_at=base + timedelta(days=1)),
            make_entry("c", title="cherry", created_at=base + timedelta(days=3)),
        ]
    )

    assert _ids(catalog.query(sort_key="title_asc")) == ["a", "b", "c"]
    assert _ids(catalog.query(sort_key="title_desc")) == ["c", "b", "a"]
    assert _ids(catalog.query(sort_key="date_asc")) == ["a", "b", "c"]
    assert _ids(catalog.query(sort_key="date_desc")) == ["c", "b", "a"]
    assert _ids(catalog.query(sort_key="not-a-key")) == ["b", "a", "c"]


def test_duration_sort_handles_hours() -> None:
    catalog = _catalog()
    catalog.set_all(
        [
            make_entry("long", duration_label="1:02:03"),
            make_entry("short", duration_label="0:45"),
            make_entry("mid", duration_label="12:00"),
        ]
    )

    assert _ids(catalog.query(sort_key=SortKey.DURATION_ASC)) == ["short", "mid", "long"]


def test_popularity_combines_views_and_recent_plays() -> None:
    catalog = _catalog()
    catalog.set_all(
        [
            make_entry("views", view_count=15),
            make_entry("plays", view_count=0),
            make_entry("quiet", view_count=3),
        ]
    )
    catalog.ledger.record_play("plays")
    catalog.ledger.record_play("plays")

    plays = catalog.get("plays")
    quiet = catalog.get("quiet")
    assert plays is not None
    assert quiet is not None
    assert catalog.popularity_score(plays) == 20
    assert catalog.is_popular(plays) is True
    assert catalog.is_popular(quiet) is False
    assert _ids(catalog.query(sort_key=SortKey.POPULARITY)) == ["plays", "views", "quiet"]
    assert _ids(catalog.recommended(limit=2)) == ["plays", "views"]


def test_recently_played_sort_puts_unplayed_last_in_store_order() -> None:
    catalog = _catalog()
    catalog.set_all([make_entry("a"), make_entry("b"), make_entry("c"), make_entry("d")])
    start = datetime(2024, 1, 1, tzinfo=UTC)
    catalog.ledger.record_play("c", now=start)
    catalog.ledger.record_play("b", now=start + timedelta(minutes=5))

    assert _ids(catalog.query(sort_key=SortKey.RECENTLY_PLAYED)) == ["b", "c", "a", "d"]


def test_neighbor_wraps_around() -> None:
    entries = [make_entry("a"), make_entry("b"), make_entry("c")]

    def _step(record_id: str | None, step: int) -> str | None:
        entry = neighbor(entries, record_id, step)
        return entry.record_id if entry is not None else None

    assert _step("c", 1) == "a"
    assert _step("a", -1) == "c"
    assert _step("b", 1) == "c"
    assert _step("missing", 1) == "a"
    assert _step(None, -1) == "c"
    assert neighbor([], "a", 1) is None


def test_suggest_returns_titles_and_platform_labels() -> None:
    catalog = _catalog()
    catalog.set_all(
        [
            make_entry("a", title="Vim tricks"),
            make_entry("b", url="https://vimeo.com/1", title="Landscape"),
        ]
    )

    assert catalog.suggest("vim") == ["Vim tricks", "Vimeo"]
    assert catalog.suggest("v") == []


def test_subsequence_match() -> None:
    assert subsequence_match("leek and potato", "lkpt") is True
    assert subsequence_match("leek", "kel") is False
    assert subsequence_match("anything", "") is True


def test_ledger_caps_capacity_and_moves_replays_to_front() -> None:
    ledger = RecentlyPlayedLedger(capacity=3)
    for record_id in ["a", "b", "c", "d"]:
        ledger.record_play(record_id)
    ledger.record_play("b")

    assert [record.record_id for record in ledger.entries()] == ["b", "d", "c"]
    assert ledger.play_count("b") == 2
    assert ledger.play_count("a") == 0
    assert ledger.played_at("a") is None
