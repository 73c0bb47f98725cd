from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = ".vidshelf"
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (
    ("catalog_cache_path", Path("catalog-cache.json")),
    ("log_dir", Path("logs")),
)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = (
    "metadata_enrichment_enabled",
    "catalog_cache_enabled",
    "store_extended_fields",
    "telemetry_enabled",
)


def _default_in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


def _data_dir_default_note(relative_path: Path) -> str:
    return f"Defaults to `${{VIDSHELF_DATA_DIR}}/{relative_path}` when not explicitly set."


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return default
    if not isinstance(value, str):
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _normalize_optional_text(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if normalized:
        return normalized
    return None


class AppSettings(BaseSettings):
    """
    Runtime configuration for the media library core.

    Every option is read from `VIDSHELF_*` environment variables (or `.env`).
    """

    model_config = SettingsConfigDict(
        env_prefix="VIDSHELF_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root directory for the advisory catalog cache and logs.",
    )

    # Record store.
    store_api_url: str = Field(
        default="https://api.airtable.com/v0",
        description="Base URL of the tabular record store API.",
    )
    store_base_id: str | None = Field(
        default=None,
        description="Record store base identifier.",
    )
    store_table_name: str = Field(
        default="Videos",
        description="Table holding the video records.",
    )
    store_api_token: str | None = Field(
        default=None,
        description="Bearer token sent to the record store.",
    )
    store_http_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Per-request timeout for record store calls. Timeouts are not retried.",
    )
    store_retry_count: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries for transient record store failures (429, 5xx, connection).",
    )
    store_retry_base_seconds: float = Field(
        default=1.0,
        ge=0,
        description="First retry delay; doubles on each further retry.",
    )
    store_retry_max_seconds: float = Field(
        default=8.0,
        ge=0,
        description="Upper bound for a single retry delay.",
    )
    store_list_cache_ttl_seconds: int = Field(
        default=600,
        ge=0,
        description="TTL for the in-memory record list cache. 0 disables caching.",
    )
    store_extended_fields: bool = Field(
        default=False,
        description="Also write `originalUrl` and `uploadDate` on new records.",
    )

    # Playback and admission.
    playback_stall_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Time a single embed candidate may stay silent before it counts as failed.",
    )
    availability_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Timeout for a single reachability check.",
    )
    availability_cache_ttl_seconds: int = Field(
        default=60,
        ge=0,
        description="How long an availability verdict is reused for the same video.",
    )
    duplicate_similarity_threshold: float = Field(
        default=0.85,
        gt=0,
        le=1,
        description="Edit-distance similarity above which a title or URL counts as duplicate.",
    )
    duplicate_scan_warning_size: int = Field(
        default=1000,
        ge=1,
        description="Catalog size above which the pairwise duplicate scan logs a warning.",
    )
    metadata_enrichment_enabled: bool = Field(
        default=True,
        description="Look up oEmbed metadata for newly admitted videos.",
    )
    metadata_http_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="HTTP timeout for oEmbed lookups.",
    )
    metadata_cache_ttl_seconds: int = Field(
        default=1800,
        ge=0,
        description="TTL for cached oEmbed results.",
    )

    # Catalog.
    recently_played_capacity: int = Field(
        default=50,
        ge=1,
        description="Capacity of the recently-played ledger.",
    )
    search_min_length: int = Field(
        default=2,
        ge=1,
        description="Search terms shorter than this are ignored.",
    )
    catalog_cache_enabled: bool = Field(
        default=True,
        description="Keep an advisory local snapshot of the record store.",
    )
    catalog_cache_path: Path = Field(
        default=_default_in_data_dir(Path("catalog-cache.json")),
        description=(
            "Advisory catalog snapshot. "
            f"{_data_dir_default_note(Path('catalog-cache.json'))}"
        ),
    )

    # Embeds.
    embed_origin: str | None = Field(
        default=None,
        description="Page origin passed to embeds that require one (e.g. YouTube).",
    )
    twitch_parent: str = Field(
        default="localhost",
        description="Parent host name required by Twitch embeds.",
    )

    # Logging and telemetry.
    log_dir: Path = Field(
        default=_default_in_data_dir(Path("logs")),
        description=f"Directory for log files. {_data_dir_default_note(Path('logs'))}",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level.",
    )
    telemetry_enabled: bool = Field(
        default=False,
        description="Emit playback and admission telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description="Telemetry sink. `log` writes structured events to the telemetry logger.",
    )

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("VIDSHELF_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("VIDSHELF_TELEMETRY_SINK must be set to: none, log.")

    @field_validator("store_api_url", mode="before")
    @classmethod
    def _normalize_store_api_url(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("VIDSHELF_STORE_API_URL must be a string.")
        normalized = value.strip().rstrip("/")
        if not normalized:
            raise ValueError("VIDSHELF_STORE_API_URL must not be empty.")
        return normalized

    @field_validator("store_table_name", "twitch_parent", mode="before")
    @classmethod
    def _normalize_required_text(cls, value: Any, info: ValidationInfo) -> str:
        normalized = _normalize_optional_text(value)
        if normalized is None:
            raise ValueError(f"VIDSHELF_{str(info.field_name).upper()} must not be empty.")
        return normalized

    @field_validator(*_PATH_FIELDS, mode="before")
    @classmethod
    def _normalize_paths(cls, value: Any) -> Any:
        if value is None:
            return None
        return _resolve_path(value)

    @field_validator(*_BOOLEAN_COERCION_FIELDS, mode="before")
    @classmethod
    def _normalize_booleans(cls, value: Any, info: ValidationInfo) -> bool:
        field_name = info.field_name
        assert field_name is not None
        default_value = cls.model_fields[field_name].default
        assert isinstance(default_value, bool)
        return _parse_bool_with_default(value, default=default_value)

    @field_validator("store_base_id", "store_api_token", "embed_origin", mode="before")
    @classmethod
    def _normalize_optional_strings(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)

    @property
    def store_table_url(self) -> str:
        return f"{self.store_api_url}/{self.store_base_id or ''}/{self.store_table_name}"


def _validate_store_configuration(
    *,
    store_base_id: str | None,
    store_api_token: str | None,
) -> None:
    errors: list[str] = []

    if store_base_id is None:
        errors.append("VIDSHELF_STORE_BASE_ID is required to reach the record store.")
    if store_api_token is None:
        errors.append("VIDSHELF_STORE_API_TOKEN is required to reach the record store.")

    if errors:
        bullets = "\n".join(f"- {message}" for message in errors)
        raise ValueError(f"Invalid record store configuration:\n{bullets}")


def _apply_path_defaults(settings: AppSettings) -> AppSettings:
    updates: dict[str, Path] = {}
    for field_name, relative_default in _DATA_DIR_RELATIVE_DEFAULTS:
        if field_name in settings.model_fields_set:
            continue
        updates[field_name] = settings.data_dir / relative_default
    if not updates:
        return settings
    return settings.model_copy(update=updates)


def _resolve_path_fields(settings: AppSettings) -> AppSettings:
    resolved_updates = {
        field_name: _resolve_path(getattr(settings, field_name))
        for field_name in _PATH_FIELDS
    }
    return settings.model_copy(update=resolved_updates)


def load_settings(*, require_store_credentials: bool = True) -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    settings = _resolve_path_fields(settings)

    if require_store_credentials:
        _validate_store_configuration(
            store_base_id=settings.store_base_id,
            store_api_token=settings.store_api_token,
        )

    return settings
