from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from pydantic import ValidationError

from vidshelf.models.store_contracts import StoreRecord, StoreRecordList

LOGGER = logging.getLogger("vidshelf.local_cache")

_CACHE_FORMAT_VERSION = 1


@dataclass(frozen=True)
class CachedSnapshot:
    saved_at: datetime
    records: list[StoreRecord]


class LocalCatalogCache:
    """Advisory on-disk snapshot of the record store listing.

    Never authoritative: missing or damaged files read as an empty cache.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> CachedSnapshot | None:
        if not self._path.exists():
            LOGGER.debug("catalog cache absent path=%s", self._path)
            return None
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            LOGGER.debug("catalog cache unreadable path=%s", self._path, exc_info=True)
            return None
        if not isinstance(raw, dict) or raw.get("version") != _CACHE_FORMAT_VERSION:
            LOGGER.debug("catalog cache has unsupported format path=%s", self._path)
            return None
        try:
            listing = StoreRecordList.model_validate({"records": raw.get("records", [])})
            saved_at = datetime.fromisoformat(str(raw.get("saved_at")))
        except (ValidationError, ValueError):
            LOGGER.debug("catalog cache failed validation path=%s", self._path, exc_info=True)
            return None
        if saved_at.tzinfo is None:
            saved_at = saved_at.replace(tzinfo=UTC)
        return CachedSnapshot(saved_at=saved_at, records=listing.records)

    def save(self, records: list[StoreRecord]) -> None:
        payload = {
            "version": _CACHE_FORMAT_VERSION,
            "saved_at": datetime.now(UTC).isoformat(),
            "records": [
                {"id": record.id, "fields": record.record_fields.to_payload()} for record in records
            ],
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self._path.with_suffix(f"{self._path.suffix}.tmp")
            temp_path.write_text(json.dumps(payload, ensure_ascii=True), encoding="utf-8")
            temp_path.replace(self._path)
        except OSError:
            LOGGER.warning("catalog cache write failed path=%s", self._path, exc_info=True)
            return
        LOGGER.debug("catalog cache saved path=%s count=%s", self._path, len(records))
