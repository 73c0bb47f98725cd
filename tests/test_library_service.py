from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from tests.support import FakeHttpSession, FakeResponse, store_record_payload
from vidshelf.models.store_contracts import StoreRecord, StoreRecordFields
from vidshelf.repositories.catalog import Catalog
from vidshelf.repositories.local_cache import LocalCatalogCache
from vidshelf.repositories.play_history import RecentlyPlayedLedger
from vidshelf.services.admission_guard import Availability, AvailabilityChecker, DuplicateGuard
from vidshelf.services.library_service import LibraryService
from vidshelf.services.metadata_service import MetadataEnricher
from vidshelf.services.record_store import StoreMalformedResponseError, StoreUnavailableError


class _FakeStore:
    def __init__(self, records: list[StoreRecord] | None = None) -> None:
        self.records = list(records or [])
        self.list_error: Exception | None = None
        self.insert_error: Exception | None = None
        self.inserted: list[StoreRecordFields] = []
        self.insert_delay = 0.0

    async def list_records(self, *, force_refresh: bool = False) -> list[StoreRecord]:
        _ = force_refresh
        if self.list_error is not None:
            raise self.list_error
        return list(self.records)

    async def insert_record(self, fields: StoreRecordFields) -> StoreRecord:
        if self.insert_delay:
            await asyncio.sleep(self.insert_delay)
        if self.insert_error is not None:
            raise self.insert_error
        self.inserted.append(fields)
        record = StoreRecord(id=f"rec{len(self.inserted)}", record_fields=fields)
        self.records.append(record)
        return record


def _record(record_id: str, url: str, **kwargs: str) -> StoreRecord:
    return StoreRecord.model_validate(store_record_payload(record_id, url=url, **kwargs))


def _service(
    store: _FakeStore,
    *,
    http: FakeHttpSession | None = None,
    cache_path: Path | None = None,
    enricher: MetadataEnricher | None = None,
    store_extended_fields: bool = False,
) -> LibraryService:
    session = http or FakeHttpSession(responder=lambda method, url: FakeResponse(status=200))
    return LibraryService(
        store=store,  # type: ignore[arg-type]
        catalog=Catalog(ledger=RecentlyPlayedLedger()),
        duplicate_guard=DuplicateGuard(),
        availability_checker=AvailabilityChecker(session=session),  # type: ignore[arg-type]
        metadata_enricher=enricher,
        local_cache=LocalCatalogCache(cache_path) if cache_path is not None else None,
        store_extended_fields=store_extended_fields,
    )


def test_refresh_loads_active_records_into_catalog(tmp_path: Path) -> None:
    store = _FakeStore(
        [
            _record("rec1", "https://youtu.be/a", title="Alpha"),
            _record("rec2", "https://vimeo.com/2", title="Beta", status="inactive"),
            StoreRecord.model_validate({"id": "rec3", "fields": {"title": "No url"}}),
        ]
    )
    service = _service(store, cache_path=tmp_path / "cache.json")

    result = asyncio.run(service.refresh())

    assert result.source == "store"
    assert result.entry_count == 2
    assert result.skipped_records == 1
    assert [entry.record_id for entry in service.catalog.query()] == ["rec1"]
    assert (tmp_path / "cache.json").exists()


def test_refresh_falls_back_to_local_cache_when_store_is_down(tmp_path: Path) -> None:
    cache_path = tmp_path / "cache.json"
    LocalCatalogCache(cache_path).save([_record("rec1", "https://youtu.be/a", title="Cached")])
    store = _FakeStore()
    store.list_error = StoreUnavailableError("down", status_code=503, retryable=True)
    service = _service(store, cache_path=cache_path)

    result = asyncio.run(service.refresh())

    assert result.source == "local_cache"
    assert result.cached_at is not None
    assert result.error == "down"
    assert [entry.title for entry in service.catalog.query()] == ["Cached"]


def test_refresh_without_cache_keeps_catalog_and_reports_error() -> None:
    store = _FakeStore([_record("rec1", "https://youtu.be/a")])
    service = _service(store)
    asyncio.run(service.refresh())
    store.list_error = StoreUnavailableError("down", status_code=None, retryable=True)

    result = asyncio.run(service.refresh())

    assert result.source == "empty"
    assert result.entry_count == 1
    assert len(service.catalog) == 1


def test_malformed_store_response_propagates_and_leaves_catalog_unchanged() -> None:
    store = _FakeStore([_record("rec1", "https://youtu.be/a")])
    service = _service(store)
    asyncio.run(service.refresh())
    store.list_error = StoreMalformedResponseError("bad shape")

    with pytest.raises(StoreMalformedResponseError):
        asyncio.run(service.refresh())

    assert [entry.record_id for entry in service.catalog.query()] == ["rec1"]


def test_admit_inserts_and_adds_to_catalog() -> None:
    store = _FakeStore()
    service = _service(store)

    result = asyncio.run(
        service.admit(
            "https://vimeo.com/555",
            title="Mountain timelapse",
            tags=["nature"],
            category="travel",
        )
    )

    assert result.outcome == "admitted"
    assert result.availability is Availability.AVAILABLE
    assert result.entry is not None
    assert result.entry.record_id == "rec1"
    assert result.entry.title == "Mountain timelapse"
    assert result.entry.tags == frozenset({"nature"})
    assert result.entry.category == "travel"
    assert store.inserted[0].video_id == "555"
    assert [entry.record_id for entry in service.catalog.query()] == ["rec1"]


def test_admit_rejects_duplicates_and_invalid_urls() -> None:
    store = _FakeStore()
    service = _service(store)

    first = asyncio.run(service.admit("https://vimeo.com/555", title="Mountain timelapse"))
    again = asyncio.run(service.admit("https://vimeo.com/555", title="Mountain timelapse"))
    near = asyncio.run(service.admit("https://youtu.be/xyz", title="Mountain timelapse!"))
    invalid = asyncio.run(service.admit("   "))

    assert first.outcome == "admitted"
    assert again.outcome == "duplicate"
    assert near.outcome == "duplicate"
    assert invalid.outcome == "invalid"
    assert len(store.inserted) == 1


def test_admit_store_failure_leaves_catalog_untouched_and_allows_retry() -> None:
    store = _FakeStore()
    store.insert_error = StoreUnavailableError("down", status_code=500, retryable=True)
    service = _service(store)

    with pytest.raises(StoreUnavailableError):
        asyncio.run(service.admit("https://vimeo.com/555", title="Mountain timelapse"))
    assert len(service.catalog) == 0

    store.insert_error = None
    retried = asyncio.run(service.admit("https://vimeo.com/555", title="Mountain timelapse"))
    assert retried.outcome == "admitted"


def test_admit_uses_oembed_metadata_when_title_not_given() -> None:
    store = _FakeStore()

    def _respond(method: str, url: str) -> FakeResponse:
        if "oembed" in url:
            return FakeResponse(
                body={"title": "Real Title", "author_name": "Creator", "duration": 125}
            )
        return FakeResponse(status=200)

    http = FakeHttpSession(responder=_respond)
    enricher = MetadataEnricher(session=http)  # type: ignore[arg-type]
    service = _service(store, http=http, enricher=enricher)

    result = asyncio.run(service.admit("https://vimeo.com/777"))

    assert result.entry is not None
    assert result.entry.title == "Real Title"
    assert result.entry.author == "Creator"
    assert result.entry.duration_label == "2:05"


def test_find_unavailable_and_export_entries() -> None:
    store = _FakeStore(
        [
            _record("rec1", "https://youtu.be/ok", video_id="ok", title="Fine"),
            _record("rec2", "https://youtu.be/gone", video_id="gone", title="Removed"),
        ]
    )

    def _respond(method: str, url: str) -> FakeResponse:
        return FakeResponse(status=404 if "/gone/" in url else 200)

    service = _service(store, http=FakeHttpSession(responder=_respond))
    asyncio.run(service.refresh())

    flagged = asyncio.run(service.find_unavailable())
    exported = service.export_entries(search_term="removed")

    assert [item.entry.record_id for item in flagged] == ["rec2"]
    assert [item["id"] for item in exported] == ["rec2"]
    assert exported[0]["platform"] == "youtube"
    assert exported[0]["originalUrl"] == "https://www.youtube.com/watch?v=gone"


def test_concurrent_admissions_of_the_same_url_insert_once() -> None:
    store = _FakeStore()
    store.insert_delay = 0.01
    service = _service(store)

    async def _scenario() -> list[str]:
        results = await asyncio.gather(
            service.admit("https://vimeo.com/555"),
            service.admit("https://vimeo.com/555"),
        )
        return sorted(result.outcome for result in results)

    assert asyncio.run(_scenario()) == ["admitted", "duplicate"]
    assert len(store.inserted) == 1
    assert len(service.catalog) == 1


def test_failed_concurrent_admission_releases_its_reservation() -> None:
    store = _FakeStore()
    store.insert_delay = 0.01
    store.insert_error = StoreUnavailableError("down", status_code=503, retryable=True)
    service = _service(store)

    async def _scenario() -> list[object]:
        return await asyncio.gather(
            service.admit("https://vimeo.com/555"),
            service.admit("https://vimeo.com/555"),
            return_exceptions=True,
        )

    first, second = asyncio.run(_scenario())
    outcomes = [first, second]
    assert sum(isinstance(item, StoreUnavailableError) for item in outcomes) == 1
    assert len(service.catalog) == 0

    store.insert_error = None
    retried = asyncio.run(service.admit("https://vimeo.com/555"))
    assert retried.outcome == "admitted"


def test_extended_fields_are_written_only_when_enabled() -> None:
    plain_store = _FakeStore()
    extended_store = _FakeStore()
    url = "https://youtu.be/abc?t=5"

    async def _scenario() -> None:
        await _service(plain_store).admit(url, title="Plain")
        await _service(extended_store, store_extended_fields=True).admit(url, title="Plain")

    asyncio.run(_scenario())

    plain_payload = plain_store.inserted[0].to_payload()
    assert "originalUrl" not in plain_payload
    assert "uploadDate" not in plain_payload
    assert extended_store.inserted[0].to_payload()["originalUrl"] == url
