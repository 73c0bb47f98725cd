from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from vidshelf.models.media import CatalogEntry, ClassifiedVideo, EntryStatus, PlatformId
from vidshelf.services.url_classifier import classify


@dataclass
class FakeResponse:
    status: int = 200
    body: Any = None
    raw: bytes | None = None

    async def read(self) -> bytes:
        if self.raw is not None:
            return self.raw
        return (await self.text()).encode("utf-8")

    async def text(self) -> str:
        if self.body is None:
            return ""
        if isinstance(self.body, str):
            return self.body
        return json.dumps(self.body)

    async def json(self, content_type: str | None = None) -> Any:
        _ = content_type
        return json.loads(await self.text())


@dataclass
class RecordedCall:
    method: str
    url: str
    kwargs: dict[str, Any]


class _FakeRequestContext:
    def __init__(self, outcome: FakeResponse | BaseException) -> None:
        self._outcome = outcome

    async def __aenter__(self) -> FakeResponse:
        if isinstance(self._outcome, BaseException):
            raise self._outcome
        return self._outcome

    async def __aexit__(self, *exc_info: object) -> None:
        return None


@dataclass
class FakeHttpSession:
    """Replays queued responses (or raises queued exceptions) in call order."""

    outcomes: list[FakeResponse | BaseException] = field(default_factory=list)
    responder: Callable[[str, str], FakeResponse | BaseException] | None = None
    calls: list[RecordedCall] = field(default_factory=list)

    def request(self, method: str, url: str, **kwargs: Any) -> _FakeRequestContext:
        self.calls.append(RecordedCall(method=method, url=url, kwargs=kwargs))
        if self.responder is not None:
            return _FakeRequestContext(self.responder(method, url))
        if not self.outcomes:
            raise AssertionError(f"unexpected request {method} {url}")
        return _FakeRequestContext(self.outcomes.pop(0))

    def get(self, url: str, **kwargs: Any) -> _FakeRequestContext:
        return self.request("GET", url, **kwargs)


async def no_sleep(delay: float) -> None:
    _ = delay


def make_entry(
    record_id: str,
    *,
    title: str | None = None,
    url: str | None = None,
    platform_id: PlatformId | None = None,
    candidates: tuple[str, ...] | None = None,
    duration_label: str = "unknown",
    created_at: datetime | None = None,
    view_count: int = 0,
    tags: frozenset[str] = frozenset(),
    category: str = "general",
    author: str = "",
    status: EntryStatus = EntryStatus.ACTIVE,
) -> CatalogEntry:
    source_url = url or f"https://www.youtube.com/watch?v={record_id}"
    classified = classify(source_url)
    assert classified is not None
    video = ClassifiedVideo(
        platform_id=platform_id or classified.platform_id,
        external_id=classified.external_id,
        embed_candidates=candidates or classified.embed_candidates,
        thumbnail_url=classified.thumbnail_url,
        title=title if title is not None else f"Video {record_id}",
        description=classified.description,
        original_url=classified.original_url,
        author=author,
        duration_label=duration_label,
    )
    return CatalogEntry(
        record_id=record_id,
        video=video,
        duration_label=duration_label,
        created_at=created_at or datetime(2024, 1, 1, tzinfo=UTC),
        view_count=view_count,
        tags=tags,
        category=category,
        author=author,
        status=status,
    )


def store_record_payload(
    record_id: str,
    *,
    url: str,
    title: str = "Stored video",
    platform: str = "youtube",
    video_id: str | None = None,
    status: str = "active",
    **extra: Any,
) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "title": title,
        "type": platform,
        "url": url,
        "status": status,
        "createdAt": "2024-03-01T10:00:00Z",
    }
    if video_id is not None:
        fields["videoId"] = video_id
    fields.update(extra)
    return {"id": record_id, "fields": fields}
