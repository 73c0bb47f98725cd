from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from vidshelf.models.media import (
    DURATION_UNKNOWN,
    CatalogEntry,
    ClassifiedVideo,
    EntryStatus,
    PlatformId,
    normalize_duration_label,
)


def _normalize_optional_text(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if not normalized:
        return None
    return normalized


class StoreRecordFields(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    video_id: str | None = Field(default=None, alias="videoId")
    title: str = ""
    description: str = ""
    platform: PlatformId = Field(default=PlatformId.OTHER, alias="type")
    duration: str = DURATION_UNKNOWN
    url: str = ""
    embed_urls: list[str] = Field(default_factory=list, alias="embedUrls")
    thumbnail: str = ""
    created_at: datetime | None = Field(default=None, alias="createdAt")
    status: EntryStatus = EntryStatus.ACTIVE
    view_count: int = Field(default=0, ge=0, alias="viewCount")
    tags: list[str] = Field(default_factory=list)
    category: str = "general"
    author: str = ""
    original_url: str | None = Field(default=None, alias="originalUrl")
    upload_date: str | None = Field(default=None, alias="uploadDate")

    @field_validator("video_id", "original_url", "upload_date", mode="before")
    @classmethod
    def _normalize_optional_fields(cls, value: object) -> str | None:
        return _normalize_optional_text(value)

    @field_validator(
        "title", "description", "url", "thumbnail", "author", mode="before"
    )
    @classmethod
    def _coerce_text(cls, value: object) -> object:
        if value is None:
            return ""
        return value

    @field_validator("platform", mode="before")
    @classmethod
    def _normalize_platform(cls, value: object) -> PlatformId:
        return PlatformId.parse(value)

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: object) -> EntryStatus:
        if isinstance(value, str) and value.strip().lower() == EntryStatus.INACTIVE.value:
            return EntryStatus.INACTIVE
        return EntryStatus.ACTIVE

    @field_validator("duration", mode="before")
    @classmethod
    def _normalize_duration(cls, value: object) -> str:
        return normalize_duration_label(value)

    @field_validator("category", mode="before")
    @classmethod
    def _normalize_category(cls, value: object) -> str:
        return _normalize_optional_text(value) or "general"

    @field_validator("view_count", mode="before")
    @classmethod
    def _normalize_view_count(cls, value: object) -> object:
        if value is None:
            return 0
        return value

    @field_validator("tags", "embed_urls", mode="before")
    @classmethod
    def _normalize_string_list(cls, value: object) -> object:
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @field_validator("created_at")
    @classmethod
    def _ensure_aware(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class StoreRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(min_length=1)
    record_fields: StoreRecordFields = Field(default_factory=StoreRecordFields, alias="fields")

    def to_catalog_entry(self) -> CatalogEntry | None:
        fields = self.record_fields
        original_url = fields.original_url or fields.url
        candidates = tuple(url for url in fields.embed_urls if url)
        if not candidates and original_url:
            candidates = (original_url,)
        if not candidates:
            return None
        video = ClassifiedVideo(
            platform_id=fields.platform,
            external_id=fields.video_id or self.id,
            embed_candidates=candidates,
            thumbnail_url=fields.thumbnail,
            title=fields.title,
            description=fields.description,
            original_url=original_url,
            author=fields.author,
            duration_label=fields.duration,
            upload_date=fields.upload_date or "",
        )
        return CatalogEntry(
            record_id=self.id,
            video=video,
            duration_label=fields.duration,
            created_at=fields.created_at or datetime.now(UTC),
            view_count=fields.view_count,
            tags=frozenset(tag for tag in fields.tags if tag),
            category=fields.category,
            author=fields.author,
            status=fields.status,
        )


class StoreRecordList(BaseModel):
    model_config = ConfigDict(extra="ignore")

    records: list[StoreRecord]
    offset: str | None = None


class StoreCreateResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    records: list[StoreRecord]

    @model_validator(mode="after")
    def _require_record(self) -> StoreCreateResponse:
        if not self.records:
            raise ValueError("record store returned no created record")
        return self


def fields_from_video(
    video: ClassifiedVideo,
    *,
    tags: list[str] | None = None,
    category: str | None = None,
    view_count: int = 0,
    created_at: datetime | None = None,
    include_extended_fields: bool = False,
) -> StoreRecordFields:
    """Build the fields written for a new record.

    `originalUrl` and `uploadDate` are only written with ``include_extended_fields``;
    tables without those columns reject unknown field names.
    """
    return StoreRecordFields(
        video_id=video.external_id,
        title=video.title,
        description=video.description,
        platform=video.platform_id,
        duration=video.duration_label,
        url=video.embed_candidates[0],
        embed_urls=list(video.embed_candidates),
        thumbnail=video.thumbnail_url,
        created_at=created_at or datetime.now(UTC),
        status=EntryStatus.ACTIVE,
        view_count=view_count,
        tags=list(tags or []),
        category=category or "general",
        author=video.author,
        original_url=video.original_url if include_extended_fields else None,
        upload_date=(video.upload_date or None) if include_extended_fields else None,
    )
