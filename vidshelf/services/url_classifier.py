from __future__ import annotations

import base64
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import quote, urlsplit

from vidshelf.models.media import ClassifiedVideo, PlatformId
from vidshelf.services.thumbnails import cdn_thumbnail, placeholder_thumbnail

LOGGER = logging.getLogger("vidshelf.classifier")

DIRECT_MEDIA_EXTENSIONS: tuple[str, ...] = (".mp4", ".webm", ".ogg", ".mov", ".mkv", ".flv", ".avi")
_MIME_TYPES: dict[str, str] = {
    "mp4": "video/mp4",
    "webm": "video/webm",
    "ogg": "video/ogg",
    "mov": "video/quicktime",
    "mkv": "video/x-matroska",
    "flv": "video/x-flv",
    "avi": "video/x-msvideo",
}

_YOUTUBE_PLAYLIST_PATTERN = re.compile(r"youtube\.com/playlist\?(?:[^#]*&)?list=([^&?/#]+)")
_YOUTUBE_VIDEO_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"youtube\.com/watch\?(?:[^#]*&)?v=([^&?/#]+)"),
    re.compile(r"youtu\.be/([^&?/#]+)"),
    re.compile(r"youtube(?:-nocookie)?\.com/embed/([^&?/#]+)"),
    re.compile(r"youtube\.com/v/([^&?/#]+)"),
    re.compile(r"youtube\.com/shorts/([^&?/#]+)"),
)
_DRIVE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"drive\.google\.com/file/d/([^/?#]+)"),
    re.compile(r"drive\.google\.com/open\?(?:[^#]*&)?id=([^&#]+)"),
    re.compile(r"drive\.google\.com/uc\?(?:[^#]*&)?id=([^&#]+)"),
)
_VIMEO_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"player\.vimeo\.com/video/(\d+)"),
    re.compile(r"vimeo\.com/(\d+)"),
)
_DAILYMOTION_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"dailymotion\.com/embed/video/([^_?/#]+)"),
    re.compile(r"dailymotion\.com/video/([^_?/#]+)"),
    re.compile(r"dai\.ly/([^_?/#]+)"),
)
_INSTAGRAM_PATTERN = re.compile(r"instagram\.com/(?:p|reel|tv)/([^/?#]+)")
_TWITCH_VIDEO_PATTERN = re.compile(r"twitch\.tv/videos/(\d+)")
_TWITCH_CLIP_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"twitch\.tv/\w+/clip/([^?/#]+)"),
    re.compile(r"clips\.twitch\.tv/([^?/#]+)"),
)
_STREAMABLE_PATTERN = re.compile(r"streamable\.com/(?:[eo]/)?([^?/#]+)")
_DROPBOX_PATTERN = re.compile(r"dropbox\.com/s/([^/?#]+)/([^?#]+)")
_SCHEME_AND_HOST_PATTERN = re.compile(r"^((?:[A-Za-z][A-Za-z0-9+.-]*:)?//)?([^/?#]*)")


@dataclass(frozen=True)
class ClassifierOptions:
    embed_origin: str | None = None
    twitch_parent: str = "localhost"


@dataclass(frozen=True)
class _UrlParts:
    raw: str
    key: str
    host: str
    path: str


_Matcher = Callable[[_UrlParts, ClassifierOptions], ClassifiedVideo | None]

DEFAULT_OPTIONS = ClassifierOptions()


def classify(url: str | None, options: ClassifierOptions | None = None) -> ClassifiedVideo | None:
    if url is None:
        return None
    raw_url = url.strip()
    if not raw_url:
        return None

    resolved_options = options if options is not None else DEFAULT_OPTIONS
    parts = _split_url(raw_url)
    for platform_id in MATCH_ORDER:
        video = _MATCHERS[platform_id](parts, resolved_options)
        if video is not None:
            LOGGER.debug(
                "classified url platform=%s external_id=%s candidates=%s",
                video.platform_id.value,
                video.external_id,
                len(video.embed_candidates),
            )
            return video

    LOGGER.debug("classified url platform=other reason=no_matcher")
    return _build(
        parts,
        PlatformId.OTHER,
        external_id=derive_external_id(parts.raw),
        candidates=[parts.raw],
        title="Custom Video",
        description="Video from unknown source",
        thumbnail="",
    )


def derive_external_id(url: str) -> str:
    return base64.urlsafe_b64encode(url.encode("utf-8")).decode("ascii").rstrip("=")


def original_page_url(video: ClassifiedVideo) -> str:
    if video.platform_id is PlatformId.DRIVE:
        return f"https://drive.google.com/file/d/{video.external_id}/view?usp=sharing"
    if video.platform_id is PlatformId.YOUTUBE_PLAYLIST:
        list_id = video.external_id.removeprefix("playlist-")
        return f"https://www.youtube.com/playlist?list={list_id}"
    if video.platform_id is PlatformId.YOUTUBE:
        return f"https://www.youtube.com/watch?v={video.external_id}"
    return video.original_url


def download_url(video: ClassifiedVideo) -> str:
    if video.platform_id is PlatformId.DRIVE:
        return f"https://drive.google.com/uc?export=download&id={video.external_id}"
    return video.original_url


def media_mime_type(url: str) -> str:
    path = urlsplit(url).path or url
    extension = path.rsplit(".", 1)[-1].lower() if "." in path else ""
    return _MIME_TYPES.get(extension, "video/mp4")


def _split_url(raw_url: str) -> _UrlParts:
    match = _SCHEME_AND_HOST_PATTERN.match(raw_url)
    prefix = match.group(0) if match else ""
    host = (match.group(2) if match else "").lower()
    if "@" in host:
        host = host.rsplit("@", 1)[-1]
    host = host.split(":", 1)[0]
    key = prefix.lower() + raw_url[len(prefix) :]
    remainder = raw_url[len(prefix) :]
    path = urlsplit("//placeholder" + remainder).path if remainder else ""
    return _UrlParts(raw=raw_url, key=key, host=host, path=path)


def _host_matches(host: str, *domains: str) -> bool:
    return any(host == domain or host.endswith(f".{domain}") for domain in domains)


def _first_match(patterns: tuple[re.Pattern[str], ...], key: str) -> str | None:
    for pattern in patterns:
        match = pattern.search(key)
        if match and match.group(1):
            return match.group(1)
    return None


def _build(
    parts: _UrlParts,
    platform_id: PlatformId,
    *,
    external_id: str,
    candidates: list[str],
    title: str,
    description: str | None = None,
    thumbnail: str | None = None,
) -> ClassifiedVideo:
    deduped: list[str] = []
    for candidate in candidates:
        if candidate and candidate not in deduped:
            deduped.append(candidate)
    if thumbnail is None:
        thumbnail = cdn_thumbnail(platform_id, external_id) or placeholder_thumbnail(platform_id)
    return ClassifiedVideo(
        platform_id=platform_id,
        external_id=external_id,
        embed_candidates=tuple(deduped[:5]),
        thumbnail_url=thumbnail,
        title=title,
        description=description if description is not None else title,
        original_url=parts.raw,
    )


def _match_youtube(parts: _UrlParts, options: ClassifierOptions) -> ClassifiedVideo | None:
    if not _host_matches(parts.host, "youtube.com", "youtu.be", "youtube-nocookie.com"):
        return None

    player_params = "autoplay=1&modestbranding=1&rel=0&playsinline=1"
    origin_param = f"&origin={quote(options.embed_origin, safe='')}" if options.embed_origin else ""

    list_match = _YOUTUBE_PLAYLIST_PATTERN.search(parts.key)
    if list_match:
        list_id = list_match.group(1)
        return _build(
            parts,
            PlatformId.YOUTUBE_PLAYLIST,
            external_id=f"playlist-{list_id}",
            candidates=[
                f"https://www.youtube-nocookie.com/embed/videoseries?list={list_id}"
                f"&{player_params}",
                f"https://www.youtube.com/embed/videoseries?list={list_id}"
                f"&{player_params}{origin_param}",
                f"https://www.youtube.com/playlist?list={list_id}",
            ],
            title="YouTube Playlist",
            thumbnail=placeholder_thumbnail(PlatformId.YOUTUBE_PLAYLIST),
        )

    video_id = _first_match(_YOUTUBE_VIDEO_PATTERNS, parts.key)
    if video_id is None:
        return None
    return _build(
        parts,
        PlatformId.YOUTUBE,
        external_id=video_id,
        candidates=[
            f"https://www.youtube-nocookie.com/embed/{video_id}?{player_params}",
            f"https://www.youtube.com/embed/{video_id}?{player_params}{origin_param}",
            f"https://www.youtube.com/embed/{video_id}?autoplay=1&origin=*",
            f"https://www.youtube.com/watch?v={video_id}",
        ],
        title="YouTube Video",
    )


def _match_drive(parts: _UrlParts, options: ClassifierOptions) -> ClassifiedVideo | None:
    _ = options
    if not _host_matches(parts.host, "drive.google.com"):
        return None
    file_id = _first_match(_DRIVE_PATTERNS, parts.key)
    if file_id is None:
        return None
    return _build(
        parts,
        PlatformId.DRIVE,
        external_id=file_id,
        candidates=[
            f"https://drive.google.com/file/d/{file_id}/preview",
            f"https://drive.google.com/file/d/{file_id}/view",
        ],
        title="Google Drive Video",
    )


def _match_vimeo(parts: _UrlParts, options: ClassifierOptions) -> ClassifiedVideo | None:
    _ = options
    if not _host_matches(parts.host, "vimeo.com"):
        return None
    video_id = _first_match(_VIMEO_PATTERNS, parts.key)
    if video_id is None:
        return None
    return _build(
        parts,
        PlatformId.VIMEO,
        external_id=video_id,
        candidates=[
            f"https://player.vimeo.com/video/{video_id}"
            "?autoplay=1&title=0&byline=0&portrait=0&dnt=1",
            f"https://player.vimeo.com/video/{video_id}?autoplay=1",
            f"https://vimeo.com/{video_id}",
        ],
        title="Vimeo Video",
    )


def _match_dailymotion(parts: _UrlParts, options: ClassifierOptions) -> ClassifiedVideo | None:
    _ = options
    if not _host_matches(parts.host, "dailymotion.com", "dai.ly"):
        return None
    video_id = _first_match(_DAILYMOTION_PATTERNS, parts.key)
    if video_id is None:
        return None
    return _build(
        parts,
        PlatformId.DAILYMOTION,
        external_id=video_id,
        candidates=[
            f"https://www.dailymotion.com/embed/video/{video_id}?autoplay=1",
            f"https://dailymotion.com/embed/video/{video_id}",
            f"https://www.dailymotion.com/video/{video_id}",
        ],
        title="Dailymotion Video",
    )


def _match_facebook(parts: _UrlParts, options: ClassifierOptions) -> ClassifiedVideo | None:
    _ = options
    if not _host_matches(parts.host, "facebook.com", "fb.watch"):
        return None
    encoded = quote(parts.raw, safe="")
    plugin_url = f"https://www.facebook.com/plugins/video.php?href={encoded}&show_text=0&autoplay=1"
    return _build(
        parts,
        PlatformId.FACEBOOK,
        external_id=derive_external_id(parts.raw),
        candidates=[f"{plugin_url}&width=500", plugin_url, parts.raw],
        title="Facebook Video",
    )


def _match_instagram(parts: _UrlParts, options: ClassifierOptions) -> ClassifiedVideo | None:
    _ = options
    if not _host_matches(parts.host, "instagram.com"):
        return None
    match = _INSTAGRAM_PATTERN.search(parts.key)
    if match is None:
        return None
    code = match.group(1)
    return _build(
        parts,
        PlatformId.INSTAGRAM,
        external_id=code,
        candidates=[
            f"https://www.instagram.com/p/{code}/embed/",
            f"https://www.instagram.com/reel/{code}/embed/",
            f"https://www.instagram.com/tv/{code}/embed/",
        ],
        title="Instagram Video",
    )


def _match_tiktok(parts: _UrlParts, options: ClassifierOptions) -> ClassifiedVideo | None:
    _ = options
    if not _host_matches(parts.host, "tiktok.com"):
        return None
    video_id = parts.path.rstrip("/").rsplit("/", 1)[-1] if parts.path.strip("/") else ""
    if not video_id:
        return None
    return _build(
        parts,
        PlatformId.TIKTOK,
        external_id=video_id,
        candidates=[
            f"https://www.tiktok.com/embed/v2/{video_id}",
            f"https://www.tiktok.com/embed/{video_id}",
        ],
        title="TikTok Video",
    )


def _match_twitter(parts: _UrlParts, options: ClassifierOptions) -> ClassifiedVideo | None:
    _ = options
    if not _host_matches(parts.host, "twitter.com", "x.com"):
        return None
    encoded = quote(parts.raw, safe="")
    return _build(
        parts,
        PlatformId.TWITTER,
        external_id=derive_external_id(parts.raw),
        candidates=[
            f"https://twitframe.com/show?url={encoded}",
            f"https://platform.twitter.com/embed/Tweet.html?url={encoded}",
            parts.raw,
        ],
        title="Twitter/X Video",
    )


def _match_twitch(parts: _UrlParts, options: ClassifierOptions) -> ClassifiedVideo | None:
    if not _host_matches(parts.host, "twitch.tv"):
        return None
    parents = [options.twitch_parent, "localhost"]

    video_match = _TWITCH_VIDEO_PATTERN.search(parts.key)
    if video_match:
        video_id = video_match.group(1)
        return _build(
            parts,
            PlatformId.TWITCH,
            external_id=video_id,
            candidates=[
                f"https://player.twitch.tv/?video={video_id}&parent={parent}&autoplay=true"
                for parent in parents
            ],
            title="Twitch Video",
        )

    clip_id = _first_match(_TWITCH_CLIP_PATTERNS, parts.key)
    if clip_id is None:
        return None
    return _build(
        parts,
        PlatformId.TWITCH,
        external_id=clip_id,
        candidates=[
            f"https://clips.twitch.tv/embed?clip={clip_id}&parent={parent}&autoplay=true"
            for parent in parents
        ],
        title="Twitch Clip",
    )


def _match_streamable(parts: _UrlParts, options: ClassifierOptions) -> ClassifiedVideo | None:
    _ = options
    if not _host_matches(parts.host, "streamable.com"):
        return None
    match = _STREAMABLE_PATTERN.search(parts.key)
    if match is None:
        return None
    video_id = match.group(1)
    return _build(
        parts,
        PlatformId.STREAMABLE,
        external_id=video_id,
        candidates=[
            f"https://streamable.com/e/{video_id}?autoplay=1",
            f"https://streamable.com/o/{video_id}",
        ],
        title="Streamable Video",
    )


def _match_dropbox(parts: _UrlParts, options: ClassifierOptions) -> ClassifiedVideo | None:
    _ = options
    if not _host_matches(parts.host, "dropbox.com"):
        return None
    match = _DROPBOX_PATTERN.search(parts.key)
    if match is None:
        return None
    share_id, file_name = match.group(1), match.group(2)
    return _build(
        parts,
        PlatformId.DROPBOX,
        external_id=share_id,
        candidates=[
            f"https://www.dropbox.com/s/{share_id}/{file_name}?raw=1",
            f"https://dl.dropboxusercontent.com/s/{share_id}/{file_name}",
        ],
        title="Dropbox Video",
    )


def _match_photos(parts: _UrlParts, options: ClassifierOptions) -> ClassifiedVideo | None:
    _ = options
    if not (
        _host_matches(parts.host, "photos.google.com")
        or (parts.host == "photos.app.goo.gl")
    ):
        return None
    return _build(
        parts,
        PlatformId.PHOTOS,
        external_id=derive_external_id(parts.raw),
        candidates=[parts.raw],
        title="Google Photos",
    )


def _match_direct(parts: _UrlParts, options: ClassifierOptions) -> ClassifiedVideo | None:
    _ = options
    lowered_path = parts.path.lower()
    if not lowered_path.endswith(DIRECT_MEDIA_EXTENSIONS):
        return None
    return _build(
        parts,
        PlatformId.DIRECT,
        external_id=derive_external_id(parts.raw),
        candidates=[parts.raw],
        title="Direct Video",
        description="Direct Video File",
    )


_MATCHERS: dict[PlatformId, _Matcher] = {
    PlatformId.YOUTUBE: _match_youtube,
    PlatformId.DRIVE: _match_drive,
    PlatformId.VIMEO: _match_vimeo,
    PlatformId.DAILYMOTION: _match_dailymotion,
    PlatformId.FACEBOOK: _match_facebook,
    PlatformId.INSTAGRAM: _match_instagram,
    PlatformId.TIKTOK: _match_tiktok,
    PlatformId.TWITTER: _match_twitter,
    PlatformId.TWITCH: _match_twitch,
    PlatformId.STREAMABLE: _match_streamable,
    PlatformId.DROPBOX: _match_dropbox,
    PlatformId.PHOTOS: _match_photos,
    PlatformId.DIRECT: _match_direct,
}

# Host-based matchers must run before the direct-extension check.
MATCH_ORDER: tuple[PlatformId, ...] = (
    PlatformId.YOUTUBE,
    PlatformId.DRIVE,
    PlatformId.VIMEO,
    PlatformId.DAILYMOTION,
    PlatformId.FACEBOOK,
    PlatformId.INSTAGRAM,
    PlatformId.TIKTOK,
    PlatformId.TWITTER,
    PlatformId.TWITCH,
    PlatformId.STREAMABLE,
    PlatformId.DROPBOX,
    PlatformId.PHOTOS,
    PlatformId.DIRECT,
)

# youtube_playlist is produced by the youtube matcher; other is the fallback.
_UNMATCHED_PLATFORMS: frozenset[PlatformId] = frozenset(
    {PlatformId.YOUTUBE_PLAYLIST, PlatformId.OTHER}
)
_missing_matchers = set(PlatformId) - set(_MATCHERS) - _UNMATCHED_PLATFORMS
if _missing_matchers or set(MATCH_ORDER) != set(_MATCHERS):
    raise RuntimeError(
        "URL matcher table is incomplete: "
        f"{sorted(platform.value for platform in _missing_matchers)}"
    )
