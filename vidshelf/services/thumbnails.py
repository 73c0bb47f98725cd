from __future__ import annotations

import base64
from typing import Literal

from vidshelf.models.media import PLATFORM_LABELS, ClassifiedVideo, PlatformId

ThumbnailQuality = Literal["low", "medium", "high"]

_PLATFORM_COLORS: dict[PlatformId, str] = {
    PlatformId.YOUTUBE: "#FF0000",
    PlatformId.YOUTUBE_PLAYLIST: "#F10A0B",
    PlatformId.DRIVE: "#4285F4",
    PlatformId.VIMEO: "#1AB7EA",
    PlatformId.DAILYMOTION: "#0066DC",
    PlatformId.FACEBOOK: "#1877F2",
    PlatformId.INSTAGRAM: "#E4405F",
    PlatformId.TIKTOK: "#000000",
    PlatformId.TWITTER: "#1DA1F2",
    PlatformId.TWITCH: "#9146FF",
    PlatformId.STREAMABLE: "#0F90FA",
    PlatformId.DROPBOX: "#0061FF",
    PlatformId.PHOTOS: "#4285F4",
    PlatformId.DIRECT: "#666666",
    PlatformId.OTHER: "#333333",
}
_DRIVE_SIZES: dict[str, str] = {"low": "w200", "medium": "w400", "high": "w800"}


def placeholder_thumbnail(platform_id: PlatformId) -> str:
    color = _PLATFORM_COLORS.get(platform_id, "#333333")
    label = PLATFORM_LABELS.get(platform_id, platform_id.value.title())
    svg = (
        '<svg width="100" height="70" viewBox="0 0 100 70" fill="none" '
        'xmlns="http://www.w3.org/2000/svg">'
        f'<rect width="100" height="70" fill="{color}"/>'
        '<path d="M40 18L64 33L40 48Z" fill="white"/>'
        '<text x="50" y="60" font-family="Arial" font-size="8" fill="white" '
        f'text-anchor="middle">{label}</text>'
        "</svg>"
    )
    encoded = base64.b64encode(svg.encode("utf-8")).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"


def cdn_thumbnail(
    platform_id: PlatformId,
    external_id: str,
    *,
    quality: ThumbnailQuality = "medium",
) -> str | None:
    if platform_id is PlatformId.YOUTUBE:
        variant = "maxresdefault" if quality == "high" else "hqdefault"
        return f"https://img.youtube.com/vi/{external_id}/{variant}.jpg"
    if platform_id is PlatformId.DRIVE:
        return f"https://drive.google.com/thumbnail?id={external_id}&sz={_DRIVE_SIZES[quality]}"
    if platform_id is PlatformId.VIMEO:
        return f"https://vumbnail.com/{external_id}.jpg"
    if platform_id is PlatformId.DAILYMOTION:
        return f"https://www.dailymotion.com/thumbnail/video/{external_id}"
    return None


def platform_thumbnail(video: ClassifiedVideo, *, quality: ThumbnailQuality = "medium") -> str:
    derived = cdn_thumbnail(video.platform_id, video.external_id, quality=quality)
    if derived is not None:
        return derived
    if video.thumbnail_url:
        return video.thumbnail_url
    return placeholder_thumbnail(video.platform_id)
