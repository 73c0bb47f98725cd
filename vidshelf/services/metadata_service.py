from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from urllib.parse import urlencode

import aiohttp
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from vidshelf.models.media import (
    DURATION_UNKNOWN,
    ClassifiedVideo,
    PlatformId,
    format_duration_seconds,
)
from vidshelf.services.url_classifier import original_page_url

LOGGER = logging.getLogger("vidshelf.metadata")

_OEMBED_ENDPOINTS: dict[PlatformId, tuple[str, dict[str, str]]] = {
    PlatformId.YOUTUBE: ("https://www.youtube.com/oembed", {"format": "json"}),
    PlatformId.VIMEO: ("https://vimeo.com/api/oembed.json", {}),
    PlatformId.DAILYMOTION: ("https://www.dailymotion.com/services/oembed", {"format": "json"}),
}

ClockFn = Callable[[], float]


class OEmbedResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str | None = None
    description: str | None = None
    author_name: str | None = None
    thumbnail_url: str | None = None
    duration: float | None = None
    upload_date: str | None = None

    @field_validator(
        "title", "description", "author_name", "thumbnail_url", "upload_date", mode="before"
    )
    @classmethod
    def _normalize_text(cls, value: object) -> str | None:
        if not isinstance(value, str):
            return None
        normalized = value.strip()
        return normalized or None


@dataclass(frozen=True)
class _CachedMetadata:
    video: ClassifiedVideo
    fetched_at: float


class MetadataEnricher:
    def __init__(
        self,
        *,
        session: aiohttp.ClientSession,
        enabled: bool = True,
        http_timeout_seconds: float = 10.0,
        cache_ttl_seconds: int = 1800,
        clock: ClockFn | None = None,
    ) -> None:
        self._session = session
        self._enabled = enabled
        self._http_timeout_seconds = max(0.01, float(http_timeout_seconds))
        self._cache_ttl_seconds = max(0, int(cache_ttl_seconds))
        self._clock: ClockFn = clock if clock is not None else time.monotonic
        self._cache: dict[tuple[str, str], _CachedMetadata] = {}

    async def enrich(self, video: ClassifiedVideo) -> ClassifiedVideo:
        if not self._enabled or video.platform_id not in _OEMBED_ENDPOINTS:
            return video

        cache_key = (video.platform_id.value, video.external_id)
        cached = self._cache.get(cache_key)
        now = self._clock()
        if cached is not None and now - cached.fetched_at < self._cache_ttl_seconds:
            return cached.video

        oembed = await self._fetch_oembed(video)
        if oembed is None:
            return video

        enriched = _merge_oembed(video, oembed)
        if self._cache_ttl_seconds > 0:
            self._cache[cache_key] = _CachedMetadata(video=enriched, fetched_at=now)
        LOGGER.info(
            "metadata enriched platform=%s external_id=%s",
            video.platform_id.value,
            video.external_id,
        )
        return enriched

    def clear_cache(self) -> None:
        self._cache.clear()

    async def _fetch_oembed(self, video: ClassifiedVideo) -> OEmbedResponse | None:
        endpoint, extra_params = _OEMBED_ENDPOINTS[video.platform_id]
        query = urlencode({"url": original_page_url(video), **extra_params})
        try:
            async with self._session.get(
                f"{endpoint}?{query}",
                timeout=aiohttp.ClientTimeout(total=self._http_timeout_seconds),
            ) as response:
                if response.status != 200:
                    LOGGER.warning(
                        "oembed lookup rejected platform=%s status=%s",
                        video.platform_id.value,
                        response.status,
                    )
                    return None
                payload = await response.json(content_type=None)
            return OEmbedResponse.model_validate(payload)
        except (TimeoutError, aiohttp.ClientError, ValueError, ValidationError):
            LOGGER.warning(
                "oembed lookup failed platform=%s external_id=%s",
                video.platform_id.value,
                video.external_id,
                exc_info=True,
            )
            return None


def _merge_oembed(video: ClassifiedVideo, oembed: OEmbedResponse) -> ClassifiedVideo:
    duration_label = video.duration_label
    if oembed.duration is not None and oembed.duration > 0:
        duration_label = format_duration_seconds(int(round(oembed.duration)))
    return replace(
        video,
        title=oembed.title or video.title,
        description=oembed.description or video.description,
        author=oembed.author_name or video.author,
        thumbnail_url=oembed.thumbnail_url or video.thumbnail_url,
        duration_label=duration_label or DURATION_UNKNOWN,
        upload_date=oembed.upload_date or video.upload_date,
    )
