from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from enum import StrEnum

import aiohttp

from vidshelf.models.media import CatalogEntry, ClassifiedVideo, PlatformId
from vidshelf.services.thumbnails import cdn_thumbnail

LOGGER = logging.getLogger("vidshelf.admission_guard")

_THUMBNAIL_CHECK_PLATFORMS: frozenset[PlatformId] = frozenset(
    {
        PlatformId.YOUTUBE,
        PlatformId.DRIVE,
        PlatformId.VIMEO,
        PlatformId.DAILYMOTION,
    }
)
_DEFINITIVE_MISSING_STATUSES: frozenset[int] = frozenset({404, 410})
_HEAD_UNSUPPORTED_STATUSES: frozenset[int] = frozenset({405, 501})

ClockFn = Callable[[], float]


def edit_distance(first: str, second: str) -> int:
    left = first.lower()
    right = second.lower()
    if len(left) < len(right):
        left, right = right, left
    previous = list(range(len(right) + 1))
    for row, left_char in enumerate(left, start=1):
        current = [row]
        for column, right_char in enumerate(right, start=1):
            substitution = previous[column - 1] + (left_char != right_char)
            current.append(min(previous[column] + 1, current[column - 1] + 1, substitution))
        previous = current
    return previous[-1]


def similarity(first: str, second: str) -> float:
    if not first and not second:
        return 1.0
    if not first or not second:
        return 0.0
    longest = max(len(first), len(second))
    return (longest - edit_distance(first, second)) / float(longest)


def _video_hash(video: ClassifiedVideo) -> tuple[str, str, str]:
    return (
        video.external_id.lower(),
        video.platform_id.value,
        video.title.lower(),
    )


class DuplicateGuard:
    def __init__(
        self,
        *,
        similarity_threshold: float = 0.85,
        scan_warning_size: int = 1000,
    ) -> None:
        self._similarity_threshold = similarity_threshold
        self._scan_warning_size = max(1, int(scan_warning_size))
        self._known_hashes: set[tuple[str, str, str]] = set()
        self._pending: dict[tuple[str, str, str], ClassifiedVideo] = {}

    @property
    def similarity_threshold(self) -> float:
        return self._similarity_threshold

    def seed(self, entries: Iterable[CatalogEntry]) -> None:
        for entry in entries:
            self._known_hashes.add(_video_hash(entry.video))

    def remember(self, video: ClassifiedVideo) -> None:
        self._known_hashes.add(_video_hash(video))

    def confirm(self, video: ClassifiedVideo) -> None:
        video_hash = _video_hash(video)
        self._pending.pop(video_hash, None)
        self._known_hashes.add(video_hash)

    def release(self, video: ClassifiedVideo) -> None:
        self._pending.pop(_video_hash(video), None)

    def is_similar(self, first: ClassifiedVideo, second: ClassifiedVideo) -> bool:
        title_similarity = similarity(first.title, second.title)
        url_similarity = 0.0
        if first.original_url and second.original_url:
            url_similarity = similarity(first.original_url, second.original_url)
        return max(title_similarity, url_similarity) > self._similarity_threshold

    def is_duplicate(
        self,
        candidate: ClassifiedVideo,
        existing_entries: Sequence[CatalogEntry],
        *,
        reserve: bool = False,
    ) -> bool:
        """Check ``candidate`` and claim its hash when it is new.

        With ``reserve`` the hash is held as pending until ``confirm`` or ``release``;
        pending candidates count as duplicates for every later check.
        """
        candidate_hash = _video_hash(candidate)
        if candidate_hash in self._known_hashes or candidate_hash in self._pending:
            LOGGER.warning(
                "duplicate rejected by hash platform=%s external_id=%s",
                candidate.platform_id.value,
                candidate.external_id,
            )
            return True

        if len(existing_entries) > self._scan_warning_size:
            LOGGER.warning(
                "duplicate similarity scan over large catalog entries=%s warning_size=%s",
                len(existing_entries),
                self._scan_warning_size,
            )
        for entry in existing_entries:
            if self.is_similar(candidate, entry.video):
                LOGGER.warning(
                    "duplicate rejected by similarity platform=%s external_id=%s matched_record=%s",
                    candidate.platform_id.value,
                    candidate.external_id,
                    entry.record_id,
                )
                return True
        for pending in self._pending.values():
            if self.is_similar(candidate, pending):
                LOGGER.warning(
                    "duplicate rejected by pending admission platform=%s external_id=%s",
                    candidate.platform_id.value,
                    candidate.external_id,
                )
                return True

        if reserve:
            self._pending[candidate_hash] = candidate
        else:
            self._known_hashes.add(candidate_hash)
        return False


class Availability(StrEnum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class _CachedVerdict:
    availability: Availability
    checked_at: float


class AvailabilityChecker:
    def __init__(
        self,
        *,
        session: aiohttp.ClientSession,
        timeout_seconds: float = 5.0,
        cache_ttl_seconds: int = 60,
        clock: ClockFn | None = None,
    ) -> None:
        self._session = session
        self._timeout_seconds = max(0.01, float(timeout_seconds))
        self._cache_ttl_seconds = max(0, int(cache_ttl_seconds))
        self._clock: ClockFn = clock if clock is not None else time.monotonic
        self._cache: dict[tuple[str, str], _CachedVerdict] = {}

    async def check(self, video: ClassifiedVideo) -> Availability:
        cache_key = (video.platform_id.value, video.external_id)
        cached = self._cache.get(cache_key)
        now = self._clock()
        if cached is not None and now - cached.checked_at < self._cache_ttl_seconds:
            return cached.availability

        availability = await self._check_reachability(video)
        if self._cache_ttl_seconds > 0:
            self._cache[cache_key] = _CachedVerdict(availability=availability, checked_at=now)
        LOGGER.debug(
            "availability checked platform=%s external_id=%s result=%s",
            video.platform_id.value,
            video.external_id,
            availability.value,
        )
        return availability

    async def _check_reachability(self, video: ClassifiedVideo) -> Availability:
        if video.platform_id is PlatformId.DIRECT:
            return await self._check_direct(video.original_url or video.embed_candidates[0])
        if video.platform_id in _THUMBNAIL_CHECK_PLATFORMS:
            thumbnail_url = cdn_thumbnail(video.platform_id, video.external_id, quality="low")
            if thumbnail_url is None:
                return Availability.UNKNOWN
            status = await self._request_status("GET", thumbnail_url)
            return _availability_from_status(status)
        return Availability.UNKNOWN

    async def _check_direct(self, url: str) -> Availability:
        status = await self._request_status("HEAD", url)
        if status is not None and status not in _HEAD_UNSUPPORTED_STATUSES:
            verdict = _availability_from_status(status)
            if verdict is not Availability.UNKNOWN:
                return verdict
        return _availability_from_status(await self._request_status("GET", url))

    async def _request_status(self, method: str, url: str) -> int | None:
        try:
            async with self._session.request(
                method,
                url,
                allow_redirects=True,
                timeout=aiohttp.ClientTimeout(total=self._timeout_seconds),
            ) as response:
                return response.status
        except TimeoutError:
            LOGGER.info("availability check timed out method=%s", method)
            return None
        except aiohttp.ClientError as exc:
            LOGGER.info("availability check failed method=%s error=%s", method, type(exc).__name__)
            return None


def _availability_from_status(status: int | None) -> Availability:
    if status is None:
        return Availability.UNKNOWN
    if 200 <= status < 300:
        return Availability.AVAILABLE
    if status in _DEFINITIVE_MISSING_STATUSES:
        return Availability.UNAVAILABLE
    return Availability.UNKNOWN
