from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum


class PlatformId(StrEnum):
    YOUTUBE = "youtube"
    YOUTUBE_PLAYLIST = "youtube_playlist"
    DRIVE = "drive"
    VIMEO = "vimeo"
    DAILYMOTION = "dailymotion"
    FACEBOOK = "facebook"
    INSTAGRAM = "instagram"
    TIKTOK = "tiktok"
    TWITTER = "twitter"
    TWITCH = "twitch"
    STREAMABLE = "streamable"
    DROPBOX = "dropbox"
    PHOTOS = "photos"
    DIRECT = "direct"
    OTHER = "other"

    @classmethod
    def parse(cls, raw_value: object) -> PlatformId:
        if isinstance(raw_value, PlatformId):
            return raw_value
        if isinstance(raw_value, str):
            normalized = raw_value.strip().lower()
            for member in cls:
                if member.value == normalized:
                    return member
        return cls.OTHER


class EntryStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


PLATFORM_LABELS: dict[PlatformId, str] = {
    PlatformId.YOUTUBE: "YouTube",
    PlatformId.YOUTUBE_PLAYLIST: "YouTube Playlist",
    PlatformId.DRIVE: "Google Drive",
    PlatformId.VIMEO: "Vimeo",
    PlatformId.DAILYMOTION: "Dailymotion",
    PlatformId.FACEBOOK: "Facebook",
    PlatformId.INSTAGRAM: "Instagram",
    PlatformId.TIKTOK: "TikTok",
    PlatformId.TWITTER: "Twitter/X",
    PlatformId.TWITCH: "Twitch",
    PlatformId.STREAMABLE: "Streamable",
    PlatformId.DROPBOX: "Dropbox",
    PlatformId.PHOTOS: "Google Photos",
    PlatformId.DIRECT: "Direct Video",
    PlatformId.OTHER: "Other",
}

DURATION_UNKNOWN = "unknown"
_LEGACY_DURATION_SENTINELS: frozenset[str] = frozenset({"", "--:--", DURATION_UNKNOWN})
_DURATION_PATTERN = re.compile(r"^(?:(\d+):(\d{1,2})|(\d+)):(\d{2})$")


@dataclass(frozen=True)
class ClassifiedVideo:
    platform_id: PlatformId
    external_id: str
    embed_candidates: tuple[str, ...]
    thumbnail_url: str
    title: str
    description: str
    original_url: str
    author: str = ""
    duration_label: str = DURATION_UNKNOWN
    upload_date: str = ""

    def __post_init__(self) -> None:
        if not self.embed_candidates:
            raise ValueError("ClassifiedVideo requires at least one embed candidate.")

    @property
    def is_direct_media(self) -> bool:
        return self.platform_id is PlatformId.DIRECT


@dataclass(frozen=True)
class CatalogEntry:
    record_id: str
    video: ClassifiedVideo
    duration_label: str = DURATION_UNKNOWN
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    view_count: int = 0
    tags: frozenset[str] = frozenset()
    category: str = "general"
    author: str = ""
    status: EntryStatus = EntryStatus.ACTIVE

    def __post_init__(self) -> None:
        if not self.record_id:
            raise ValueError("CatalogEntry requires a store-assigned record id.")
        if self.view_count < 0:
            raise ValueError("CatalogEntry view_count must be non-negative.")

    @property
    def platform_id(self) -> PlatformId:
        return self.video.platform_id

    @property
    def title(self) -> str:
        return self.video.title

    @property
    def description(self) -> str:
        return self.video.description

    @property
    def is_active(self) -> bool:
        return self.status is EntryStatus.ACTIVE

    @property
    def duration_seconds(self) -> int:
        return parse_duration_seconds(self.duration_label)


def normalize_duration_label(raw_value: object) -> str:
    if isinstance(raw_value, int | float) and not isinstance(raw_value, bool):
        return format_duration_seconds(int(raw_value))
    if not isinstance(raw_value, str):
        return DURATION_UNKNOWN
    normalized = raw_value.strip()
    if normalized.lower() in _LEGACY_DURATION_SENTINELS:
        return DURATION_UNKNOWN
    if _DURATION_PATTERN.match(normalized) is None:
        return DURATION_UNKNOWN
    return normalized


def parse_duration_seconds(label: str) -> int:
    match = _DURATION_PATTERN.match(label.strip())
    if match is None:
        return 0
    hours_raw, clock_minutes_raw, bare_minutes_raw, seconds_raw = match.groups()
    if hours_raw is not None:
        return int(hours_raw) * 3600 + int(clock_minutes_raw) * 60 + int(seconds_raw)
    return int(bare_minutes_raw) * 60 + int(seconds_raw)


def format_duration_seconds(total_seconds: int) -> str:
    if total_seconds <= 0:
        return DURATION_UNKNOWN
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"
