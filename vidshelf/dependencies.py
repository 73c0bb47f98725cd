from __future__ import annotations

from dataclasses import dataclass

import aiohttp

from vidshelf.config import AppSettings
from vidshelf.repositories.catalog import Catalog
from vidshelf.repositories.local_cache import LocalCatalogCache
from vidshelf.repositories.play_history import RecentlyPlayedLedger
from vidshelf.services.admission_guard import AvailabilityChecker, DuplicateGuard
from vidshelf.services.library_service import LibraryService
from vidshelf.services.metadata_service import MetadataEnricher
from vidshelf.services.playback_engine import PlaybackEngine, Viewer
from vidshelf.services.record_store import RecordStoreClient
from vidshelf.services.url_classifier import ClassifierOptions
from vidshelf.telemetry import TelemetryClient, build_telemetry_client


@dataclass(frozen=True)
class MediaLibrary:
    settings: AppSettings
    telemetry: TelemetryClient
    store: RecordStoreClient
    ledger: RecentlyPlayedLedger
    catalog: Catalog
    duplicate_guard: DuplicateGuard
    availability_checker: AvailabilityChecker
    metadata_enricher: MetadataEnricher
    library: LibraryService
    playback: PlaybackEngine


def build_library(
    settings: AppSettings,
    http_session: aiohttp.ClientSession,
    viewer: Viewer,
) -> MediaLibrary:
    telemetry = build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )
    store = RecordStoreClient(
        session=http_session,
        table_url=settings.store_table_url,
        api_token=settings.store_api_token,
        http_timeout_seconds=settings.store_http_timeout_seconds,
        retry_count=settings.store_retry_count,
        retry_base_seconds=settings.store_retry_base_seconds,
        retry_max_seconds=settings.store_retry_max_seconds,
        list_cache_ttl_seconds=settings.store_list_cache_ttl_seconds,
        telemetry=telemetry,
    )
    ledger = RecentlyPlayedLedger(capacity=settings.recently_played_capacity)
    catalog = Catalog(ledger=ledger, search_min_length=settings.search_min_length)
    duplicate_guard = DuplicateGuard(
        similarity_threshold=settings.duplicate_similarity_threshold,
        scan_warning_size=settings.duplicate_scan_warning_size,
    )
    availability_checker = AvailabilityChecker(
        session=http_session,
        timeout_seconds=settings.availability_timeout_seconds,
        cache_ttl_seconds=settings.availability_cache_ttl_seconds,
    )
    metadata_enricher = MetadataEnricher(
        session=http_session,
        enabled=settings.metadata_enrichment_enabled,
        http_timeout_seconds=settings.metadata_http_timeout_seconds,
        cache_ttl_seconds=settings.metadata_cache_ttl_seconds,
    )
    local_cache = (
        LocalCatalogCache(settings.catalog_cache_path) if settings.catalog_cache_enabled else None
    )
    library = LibraryService(
        store=store,
        catalog=catalog,
        duplicate_guard=duplicate_guard,
        availability_checker=availability_checker,
        metadata_enricher=metadata_enricher,
        local_cache=local_cache,
        classifier_options=ClassifierOptions(
            embed_origin=settings.embed_origin,
            twitch_parent=settings.twitch_parent,
        ),
        telemetry=telemetry,
        store_extended_fields=settings.store_extended_fields,
    )
    playback = PlaybackEngine(
        viewer=viewer,
        ledger=ledger,
        availability_checker=availability_checker,
        stall_timeout_seconds=settings.playback_stall_timeout_seconds,
        telemetry=telemetry,
    )
    return MediaLibrary(
        settings=settings,
        telemetry=telemetry,
        store=store,
        ledger=ledger,
        catalog=catalog,
        duplicate_guard=duplicate_guard,
        availability_checker=availability_checker,
        metadata_enricher=metadata_enricher,
        library=library,
        playback=playback,
    )
