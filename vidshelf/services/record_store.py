from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, cast

import aiohttp
from pydantic import ValidationError

from vidshelf.models.store_contracts import (
    StoreCreateResponse,
    StoreRecord,
    StoreRecordFields,
    StoreRecordList,
)
from vidshelf.telemetry import TelemetryClient

LOGGER = logging.getLogger("vidshelf.record_store")

_MAX_PAGES = 100

SleepFn = Callable[[float], Awaitable[None]]
ClockFn = Callable[[], float]


class RecordStoreError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None, retryable: bool) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class StoreUnavailableError(RecordStoreError):
    pass


class StoreMalformedResponseError(RecordStoreError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=None, retryable=False)


class RecordStoreClient:
    def __init__(
        self,
        *,
        session: aiohttp.ClientSession,
        table_url: str,
        api_token: str | None,
        http_timeout_seconds: float,
        retry_count: int,
        retry_base_seconds: float,
        retry_max_seconds: float,
        list_cache_ttl_seconds: int,
        telemetry: TelemetryClient | None = None,
        sleep: SleepFn | None = None,
        clock: ClockFn | None = None,
    ) -> None:
        self._session = session
        self._table_url = table_url.rstrip("/")
        self._api_token = api_token
        self._http_timeout_seconds = max(0.01, float(http_timeout_seconds))
        self._retry_count = max(0, int(retry_count))
        self._retry_base_seconds = max(0.0, float(retry_base_seconds))
        self._retry_max_seconds = max(self._retry_base_seconds, float(retry_max_seconds))
        self._list_cache_ttl_seconds = max(0, int(list_cache_ttl_seconds))
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._sleep: SleepFn = sleep if sleep is not None else asyncio.sleep
        self._clock: ClockFn = clock if clock is not None else time.monotonic

        self._cached_records: list[StoreRecord] | None = None
        self._cached_at: float | None = None
        self._inflight_list: asyncio.Task[list[StoreRecord]] | None = None

    async def list_records(self, *, force_refresh: bool = False) -> list[StoreRecord]:
        if not force_refresh:
            cached = self._fresh_cached_records()
            if cached is not None:
                LOGGER.debug("record store list served from cache count=%s", len(cached))
                return list(cached)

        inflight = self._inflight_list
        if inflight is None or inflight.done():
            inflight = asyncio.ensure_future(self._fetch_all_records())
            self._inflight_list = inflight
        try:
            records = await asyncio.shield(inflight)
        finally:
            if inflight.done() and self._inflight_list is inflight:
                self._inflight_list = None
        return list(records)

    async def insert_record(self, fields: StoreRecordFields) -> StoreRecord:
        payload: dict[str, object] = {"records": [{"fields": fields.to_payload()}]}
        response = await self._request_json(method="POST", url=self._table_url, payload=payload)
        try:
            created = StoreCreateResponse.model_validate(response)
        except ValidationError as exc:
            raise StoreMalformedResponseError(
                f"Record store create response did not match the expected shape: {exc}"
            ) from exc

        self.invalidate_cache()
        record = created.records[0]
        LOGGER.info("record store insert succeeded record_id=%s", record.id)
        self._telemetry.emit("store.insert", record_id=record.id)
        return record

    def invalidate_cache(self) -> None:
        self._cached_records = None
        self._cached_at = None

    def _fresh_cached_records(self) -> list[StoreRecord] | None:
        if self._cached_records is None or self._cached_at is None:
            return None
        if self._list_cache_ttl_seconds <= 0:
            return None
        if self._clock() - self._cached_at >= self._list_cache_ttl_seconds:
            return None
        return self._cached_records

    async def _fetch_all_records(self) -> list[StoreRecord]:
        records: list[StoreRecord] = []
        offset: str | None = None
        for page_number in range(1, _MAX_PAGES + 1):
            params = {"offset": offset} if offset is not None else None
            response = await self._request_json(
                method="GET",
                url=self._table_url,
                payload=None,
                params=params,
            )
            try:
                page = StoreRecordList.model_validate(response)
            except ValidationError as exc:
                raise StoreMalformedResponseError(
                    f"Record store list response did not match the expected shape: {exc}"
                ) from exc
            records.extend(page.records)
            LOGGER.debug(
                "record store page fetched page=%s records=%s has_more=%s",
                page_number,
                len(page.records),
                page.offset is not None,
            )
            if page.offset is None:
                break
            offset = page.offset
        else:
            LOGGER.warning("record store pagination stopped at page limit pages=%s", _MAX_PAGES)

        self._cached_records = records
        self._cached_at = self._clock()
        LOGGER.info("record store list fetched count=%s", len(records))
        self._telemetry.emit("store.list", record_count=len(records))
        return records

    def _retry_delay_seconds(self, attempt_count: int, *, status_code: int | None) -> float:
        exponent = max(0, attempt_count - 1)
        if status_code == 429:
            exponent += 1
        backoff_seconds = self._retry_base_seconds * (2**exponent)
        return min(self._retry_max_seconds, backoff_seconds)

    async def _request_json(
        self,
        *,
        method: str,
        url: str,
        payload: dict[str, object] | None,
        params: dict[str, str] | None = None,
    ) -> dict[str, object]:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._request_once(
                    method=method,
                    url=url,
                    payload=payload,
                    params=params,
                )
            except StoreUnavailableError as exc:
                if not exc.retryable or attempt > self._retry_count:
                    LOGGER.warning(
                        "record store request failed method=%s attempts=%s status=%s",
                        method,
                        attempt,
                        exc.status_code,
                    )
                    raise
                delay = self._retry_delay_seconds(attempt, status_code=exc.status_code)
                LOGGER.info(
                    "record store request retrying method=%s attempt=%s status=%s delay_seconds=%s",
                    method,
                    attempt,
                    exc.status_code,
                    delay,
                )
                await self._sleep(delay)

    async def _request_once(
        self,
        *,
        method: str,
        url: str,
        payload: dict[str, object] | None,
        params: dict[str, str] | None,
    ) -> dict[str, object]:
        headers: dict[str, str] = {"Accept": "application/json"}
        if payload is not None:
            headers["Content-Type"] = "application/json"
        if self._api_token is not None:
            headers["Authorization"] = f"Bearer {self._api_token}"

        try:
            async with self._session.request(
                method,
                url,
                headers=headers,
                json=payload,
                params=params,
                timeout=aiohttp.ClientTimeout(total=self._http_timeout_seconds),
            ) as response:
                status = response.status
                raw_bytes = await response.read()
        except TimeoutError as exc:
            raise StoreUnavailableError(
                f"Record store request timed out after {self._http_timeout_seconds}s",
                status_code=None,
                retryable=False,
            ) from exc
        except aiohttp.ClientError as exc:
            raise StoreUnavailableError(
                f"Record store request failed: {exc}",
                status_code=None,
                retryable=True,
            ) from exc

        if status < 200 or status >= 300:
            error_body = raw_bytes.decode("utf-8", errors="replace")
            message = _extract_error_message(_decode_json_object(error_body)) or error_body.strip()
            raise StoreUnavailableError(
                f"Record store API request failed: status={status} {message}".rstrip(),
                status_code=status,
                retryable=(status >= 500 or status == 429),
            )

        try:
            raw_body = raw_bytes.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise StoreMalformedResponseError(
                "Record store returned a body that is not valid UTF-8."
            ) from exc
        try:
            parsed = json.loads(raw_body)
        except json.JSONDecodeError as exc:
            raise StoreMalformedResponseError("Record store returned a non-JSON body.") from exc
        if not isinstance(parsed, dict):
            raise StoreMalformedResponseError("Record store returned a non-object JSON body.")
        return cast(dict[str, object], parsed)


def _decode_json_object(raw_body: str) -> dict[str, object]:
    if not raw_body.strip():
        return {}
    try:
        parsed = json.loads(raw_body)
    except json.JSONDecodeError:
        return {}
    if isinstance(parsed, dict):
        return cast(dict[str, object], parsed)
    return {}


def _extract_error_message(payload: dict[str, object]) -> str | None:
    error: Any = payload.get("error")
    if isinstance(error, dict):
        error_dict = cast(dict[str, object], error)
        message = error_dict.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
        error_type = error_dict.get("type")
        if isinstance(error_type, str) and error_type.strip():
            return error_type.strip()
    if isinstance(error, str) and error.strip():
        return error.strip()
    message = payload.get("message")
    if isinstance(message, str) and message.strip():
        return message.strip()
    return None
