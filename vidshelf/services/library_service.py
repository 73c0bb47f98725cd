from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Literal

import structlog

from vidshelf.models.media import PLATFORM_LABELS, CatalogEntry, ClassifiedVideo
from vidshelf.models.store_contracts import StoreRecord, fields_from_video
from vidshelf.repositories.catalog import Catalog, PlatformFilter, SortKey
from vidshelf.repositories.local_cache import LocalCatalogCache
from vidshelf.services.admission_guard import Availability, AvailabilityChecker, DuplicateGuard
from vidshelf.services.metadata_service import MetadataEnricher
from vidshelf.services.record_store import RecordStoreClient, StoreUnavailableError
from vidshelf.services.thumbnails import platform_thumbnail
from vidshelf.services.url_classifier import (
    ClassifierOptions,
    classify,
    download_url,
    original_page_url,
)
from vidshelf.telemetry import TelemetryClient

LOGGER = logging.getLogger("vidshelf.library")

AdmissionOutcome = Literal["admitted", "duplicate", "invalid"]
RefreshSource = Literal["store", "local_cache", "empty"]


@dataclass(frozen=True)
class AdmissionResult:
    outcome: AdmissionOutcome
    video: ClassifiedVideo | None = None
    entry: CatalogEntry | None = None
    availability: Availability | None = None
    message: str | None = None


@dataclass(frozen=True)
class RefreshResult:
    source: RefreshSource
    entry_count: int
    skipped_records: int
    cached_at: datetime | None = None
    error: str | None = None


@dataclass(frozen=True)
class UnavailableEntry:
    entry: CatalogEntry
    availability: Availability


class LibraryService:
    def __init__(
        self,
        *,
        store: RecordStoreClient,
        catalog: Catalog,
        duplicate_guard: DuplicateGuard,
        availability_checker: AvailabilityChecker,
        metadata_enricher: MetadataEnricher | None = None,
        local_cache: LocalCatalogCache | None = None,
        classifier_options: ClassifierOptions | None = None,
        telemetry: TelemetryClient | None = None,
        store_extended_fields: bool = False,
    ) -> None:
        self._store = store
        self._store_extended_fields = store_extended_fields
        self._catalog = catalog
        self._duplicate_guard = duplicate_guard
        self._availability_checker = availability_checker
        self._metadata_enricher = metadata_enricher
        self._local_cache = local_cache
        self._classifier_options = classifier_options
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    @property
    def catalog(self) -> Catalog:
        return self._catalog

    async def refresh(self, *, force: bool = False) -> RefreshResult:
        try:
            records = await self._store.list_records(force_refresh=force)
        except StoreUnavailableError as exc:
            LOGGER.warning(
                "record store unavailable during refresh; trying local cache", exc_info=True
            )
            return self._refresh_from_local_cache(error=str(exc))

        entries, skipped = _entries_from_records(records)
        self._catalog.set_all(entries)
        self._duplicate_guard.seed(self._catalog.entries())
        if self._local_cache is not None:
            self._local_cache.save(records)
        LOGGER.info("catalog refreshed source=store entries=%s skipped=%s", len(entries), skipped)
        return RefreshResult(source="store", entry_count=len(entries), skipped_records=skipped)

    async def admit(
        self,
        url: str,
        *,
        title: str | None = None,
        description: str | None = None,
        tags: list[str] | None = None,
        category: str | None = None,
    ) -> AdmissionResult:
        video = classify(url, self._classifier_options)
        if video is None:
            return AdmissionResult(outcome="invalid", message="A video URL is required.")

        overrides: dict[str, Any] = {}
        if title is not None and title.strip():
            overrides["title"] = title.strip()
        if description is not None and description.strip():
            overrides["description"] = description.strip()
        if overrides:
            video = replace(video, **overrides)

        if self._duplicate_guard.is_duplicate(video, self._catalog.entries(), reserve=True):
            self._telemetry.emit("admission.duplicate", platform=video.platform_id.value)
            return AdmissionResult(
                outcome="duplicate",
                video=video,
                message="This video already exists in the collection.",
            )

        with structlog.contextvars.bound_contextvars(
            platform=video.platform_id.value,
            external_id=video.external_id,
        ):
            try:
                return await self._admit_reserved(
                    video,
                    enrich="title" not in overrides,
                    tags=tags,
                    category=category,
                )
            except BaseException:
                self._duplicate_guard.release(video)
                raise

    async def _admit_reserved(
        self,
        reserved: ClassifiedVideo,
        *,
        enrich: bool,
        tags: list[str] | None,
        category: str | None,
    ) -> AdmissionResult:
        video = reserved
        availability = await self._availability_checker.check(video)
        if availability is not Availability.AVAILABLE:
            LOGGER.warning(
                "admitting video with uncertain availability platform=%s availability=%s",
                video.platform_id.value,
                availability.value,
            )

        if self._metadata_enricher is not None and enrich:
            video = await self._metadata_enricher.enrich(video)

        record = await self._store.insert_record(
            fields_from_video(
                video,
                tags=tags,
                category=category,
                include_extended_fields=self._store_extended_fields,
            )
        )
        with structlog.contextvars.bound_contextvars(record_id=record.id):
            entry = record.to_catalog_entry()
            if entry is None:
                entry = CatalogEntry(
                    record_id=record.id,
                    video=video,
                    duration_label=video.duration_label,
                )
            self._catalog.add(entry)
            self._duplicate_guard.confirm(reserved)
            self._duplicate_guard.remember(video)

            LOGGER.info(
                "video admitted record_id=%s platform=%s availability=%s",
                entry.record_id,
                video.platform_id.value,
                availability.value,
            )
            self._telemetry.emit(
                "admission.admitted",
                record_id=entry.record_id,
                platform=video.platform_id.value,
                availability=availability.value,
            )
            return AdmissionResult(
                outcome="admitted",
                video=video,
                entry=entry,
                availability=availability,
            )

    async def find_unavailable(self, *, limit: int = 20) -> list[UnavailableEntry]:
        flagged: list[UnavailableEntry] = []
        for entry in self._catalog.entries()[: max(0, limit)]:
            availability = await self._availability_checker.check(entry.video)
            if availability is Availability.UNAVAILABLE:
                flagged.append(UnavailableEntry(entry=entry, availability=availability))
        LOGGER.info(
            "availability sweep finished checked=%s unavailable=%s",
            min(max(0, limit), len(self._catalog)),
            len(flagged),
        )
        return flagged

    def export_entries(
        self,
        platform_filter: PlatformFilter = None,
        search_term: str | None = None,
        sort_key: SortKey | str = SortKey.DEFAULT,
    ) -> list[dict[str, object]]:
        return [
            _export_entry(entry)
            for entry in self._catalog.query(platform_filter, search_term, sort_key)
        ]

    def _refresh_from_local_cache(self, *, error: str) -> RefreshResult:
        snapshot = self._local_cache.load() if self._local_cache is not None else None
        if snapshot is None:
            return RefreshResult(
                source="empty",
                entry_count=len(self._catalog),
                skipped_records=0,
                error=error,
            )
        entries, skipped = _entries_from_records(snapshot.records)
        self._catalog.set_all(entries)
        self._duplicate_guard.seed(self._catalog.entries())
        LOGGER.info(
            "catalog refreshed source=local_cache entries=%s saved_at=%s",
            len(entries),
            snapshot.saved_at.isoformat(),
        )
        return RefreshResult(
            source="local_cache",
            entry_count=len(entries),
            skipped_records=skipped,
            cached_at=snapshot.saved_at,
            error=error,
        )


def _entries_from_records(records: list[StoreRecord]) -> tuple[list[CatalogEntry], int]:
    entries: list[CatalogEntry] = []
    skipped = 0
    for record in records:
        entry = record.to_catalog_entry()
        if entry is None:
            LOGGER.debug("store record skipped without url record_id=%s", record.id)
            skipped += 1
            continue
        entries.append(entry)
    return entries, skipped


def _export_entry(entry: CatalogEntry) -> dict[str, object]:
    return {
        "id": entry.record_id,
        "title": entry.title,
        "description": entry.description,
        "platform": entry.platform_id.value,
        "platformLabel": PLATFORM_LABELS.get(entry.platform_id, entry.platform_id.value),
        "originalUrl": original_page_url(entry.video),
        "downloadUrl": download_url(entry.video),
        "embedUrls": list(entry.video.embed_candidates),
        "thumbnail": entry.video.thumbnail_url or platform_thumbnail(entry.video),
        "duration": entry.duration_label,
        "createdAt": entry.created_at.isoformat(),
        "viewCount": entry.view_count,
        "tags": sorted(entry.tags),
        "category": entry.category,
        "author": entry.author,
    }
