from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Literal, Protocol

import structlog

from vidshelf.models.media import CatalogEntry
from vidshelf.repositories.play_history import RecentlyPlayedLedger
from vidshelf.services.admission_guard import Availability, AvailabilityChecker
from vidshelf.telemetry import TelemetryClient

LOGGER = logging.getLogger("vidshelf.playback")

ViewerKind = Literal["embed", "native"]
PlaybackEventKind = Literal[
    "admitting",
    "attempt",
    "embed_attempt_failed",
    "availability_warning",
    "loaded",
    "failed",
    "superseded",
    "completed",
]
PlaybackListener = Callable[["PlaybackEvent"], None]


class PlaybackState(StrEnum):
    ADMITTING = "admitting"
    ATTEMPTING = "attempting"
    LOADED = "loaded"
    FAILED = "failed"
    SUPERSEDED = "superseded"


_TERMINAL_STATES: frozenset[PlaybackState] = frozenset(
    {PlaybackState.LOADED, PlaybackState.FAILED, PlaybackState.SUPERSEDED}
)


class Viewer(Protocol):
    def mount(self, *, session_id: str, candidate_index: int, src: str, kind: ViewerKind) -> None:
        ...

    def teardown(self, *, session_id: str) -> None:
        ...


@dataclass
class PlaybackSession:
    session_id: str
    entry: CatalogEntry
    state: PlaybackState = PlaybackState.ADMITTING
    current_index: int = 0
    started_at: float = field(default_factory=time.monotonic)
    attempted: list[int] = field(default_factory=list)
    availability: Availability | None = None
    terminal_reason: str | None = None
    completed: bool = False

    @property
    def is_live(self) -> bool:
        return self.state not in _TERMINAL_STATES

    @property
    def viewer_kind(self) -> ViewerKind:
        return "native" if self.entry.video.is_direct_media else "embed"


@dataclass(frozen=True)
class PlaybackEvent:
    kind: PlaybackEventKind
    session_id: str
    record_id: str
    candidate_index: int | None = None
    detail: str | None = None


class PlaybackEngine:
    """Walks an entry's embed candidates in order until one loads.

    Viewer signals arrive through ``report_loaded``/``report_error``/``report_completed``
    and are ignored unless they name the live session and its current candidate.
    """

    def __init__(
        self,
        *,
        viewer: Viewer,
        ledger: RecentlyPlayedLedger,
        availability_checker: AvailabilityChecker | None = None,
        stall_timeout_seconds: float = 10.0,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._viewer = viewer
        self._ledger = ledger
        self._availability_checker = availability_checker
        self._stall_timeout_seconds = max(0.001, float(stall_timeout_seconds))
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._listeners: list[PlaybackListener] = []
        self._session: PlaybackSession | None = None
        self._task: asyncio.Task[None] | None = None
        self._signal: asyncio.Future[bool] | None = None
        self._session_ids = itertools.count(1)

    @property
    def current_session(self) -> PlaybackSession | None:
        return self._session

    @property
    def state(self) -> PlaybackState | None:
        return self._session.state if self._session is not None else None

    @property
    def current_index(self) -> int | None:
        return self._session.current_index if self._session is not None else None

    def subscribe(self, listener: PlaybackListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def load(self, entry: CatalogEntry) -> PlaybackSession:
        """Start playing ``entry``. Must be called from inside the running event loop."""
        loop = asyncio.get_running_loop()
        current = self._session
        if current is not None and current.is_live:
            if current.entry.record_id == entry.record_id:
                LOGGER.debug(
                    "playback load ignored for live session session_id=%s record_id=%s",
                    current.session_id,
                    entry.record_id,
                )
                return current
            self._supersede(current)
        elif current is not None and current.state is not PlaybackState.SUPERSEDED:
            self._teardown(current)

        session = PlaybackSession(session_id=f"session-{next(self._session_ids)}", entry=entry)
        self._session = session
        self._signal = None
        self._task = loop.create_task(self._run(session))
        LOGGER.info(
            "playback session started session_id=%s record_id=%s platform=%s candidates=%s",
            session.session_id,
            entry.record_id,
            entry.platform_id.value,
            len(entry.video.embed_candidates),
        )
        self._telemetry.emit(
            "playback.load",
            record_id=entry.record_id,
            platform=entry.platform_id.value,
        )
        return session

    def stop(self) -> None:
        current = self._session
        if current is not None and current.is_live:
            self._supersede(current)

    async def wait_until_settled(self) -> PlaybackSession | None:
        task = self._task
        if task is not None and not task.done():
            await asyncio.wait({task})
        return self._session

    def report_loaded(self, session_id: str, candidate_index: int | None = None) -> None:
        self._resolve_signal(session_id, candidate_index, outcome=True)

    def report_error(self, session_id: str, candidate_index: int | None = None) -> None:
        self._resolve_signal(session_id, candidate_index, outcome=False)

    def report_completed(self, session_id: str) -> None:
        session = self._session
        if session is None or session.session_id != session_id:
            LOGGER.debug("stale completion signal ignored session_id=%s", session_id)
            return
        if session.state is not PlaybackState.LOADED or session.completed:
            return
        session.completed = True
        self._emit(session, "completed", candidate_index=session.current_index)
        self._telemetry.emit("playback.complete", record_id=session.entry.record_id)

    def _resolve_signal(
        self,
        session_id: str,
        candidate_index: int | None,
        *,
        outcome: bool,
    ) -> None:
        session = self._session
        signal = self._signal
        if (
            session is None
            or session.session_id != session_id
            or session.state is not PlaybackState.ATTEMPTING
            or signal is None
            or signal.done()
        ):
            LOGGER.debug(
                "stale viewer signal ignored session_id=%s outcome=%s", session_id, outcome
            )
            return
        if candidate_index is not None and candidate_index != session.current_index:
            LOGGER.debug(
                "stale viewer signal ignored session_id=%s candidate=%s current=%s",
                session_id,
                candidate_index,
                session.current_index,
            )
            return
        signal.set_result(outcome)

    def _supersede(self, session: PlaybackSession) -> None:
        session.state = PlaybackState.SUPERSEDED
        session.terminal_reason = "superseded"
        task = self._task
        if task is not None and not task.done():
            task.cancel()
        self._task = None
        signal = self._signal
        if signal is not None and not signal.done():
            signal.cancel()
        self._signal = None
        self._teardown(session)
        LOGGER.info("playback session superseded session_id=%s", session.session_id)
        self._emit(session, "superseded", candidate_index=session.current_index)

    def _teardown(self, session: PlaybackSession) -> None:
        try:
            self._viewer.teardown(session_id=session.session_id)
        except Exception:
            LOGGER.warning(
                "viewer teardown failed session_id=%s", session.session_id, exc_info=True
            )

    async def _run(self, session: PlaybackSession) -> None:
        with structlog.contextvars.bound_contextvars(
            session_id=session.session_id,
            record_id=session.entry.record_id,
        ):
            await self._walk_candidates(session)

    async def _walk_candidates(self, session: PlaybackSession) -> None:
        entry = session.entry
        video = entry.video
        self._emit(session, "admitting")

        if not video.is_direct_media and self._availability_checker is not None:
            availability = await self._availability_checker.check(video)
            session.availability = availability
            if availability is not Availability.AVAILABLE:
                LOGGER.warning(
                    "playback continuing despite availability record_id=%s availability=%s",
                    entry.record_id,
                    availability.value,
                )
                self._emit(session, "availability_warning", detail=availability.value)

        if not session.is_live:
            return
        session.state = PlaybackState.ATTEMPTING
        candidates = video.embed_candidates[:1] if video.is_direct_media else video.embed_candidates
        loop = asyncio.get_running_loop()
        for index, src in enumerate(candidates):
            session.current_index = index
            session.attempted.append(index)
            signal: asyncio.Future[bool] = loop.create_future()
            self._signal = signal
            self._emit(session, "attempt", candidate_index=index)
            self._telemetry.emit(
                "playback.attempt",
                record_id=entry.record_id,
                candidate_index=index,
            )
            if not session.is_live:
                return

            failure_reason = await self._attempt(session, signal, index=index, src=src)
            if session.state is PlaybackState.SUPERSEDED:
                return
            if failure_reason is None:
                session.state = PlaybackState.LOADED
                session.terminal_reason = "loaded"
                self._signal = None
                self._ledger.record_play(entry.record_id)
                LOGGER.info(
                    "playback loaded session_id=%s record_id=%s candidate=%s",
                    session.session_id,
                    entry.record_id,
                    index,
                )
                self._emit(session, "loaded", candidate_index=index)
                self._telemetry.emit(
                    "playback.loaded",
                    record_id=entry.record_id,
                    candidate_index=index,
                )
                return

            LOGGER.info(
                "embed attempt failed session_id=%s candidate=%s reason=%s",
                session.session_id,
                index,
                failure_reason,
            )
            self._emit(
                session,
                "embed_attempt_failed",
                candidate_index=index,
                detail=failure_reason,
            )

        session.state = PlaybackState.FAILED
        session.terminal_reason = "candidates_exhausted"
        self._signal = None
        LOGGER.warning(
            "playback failed session_id=%s record_id=%s candidates=%s",
            session.session_id,
            entry.record_id,
            len(candidates),
        )
        self._emit(session, "failed", candidate_index=session.current_index)
        self._telemetry.emit(
            "playback.failed",
            record_id=entry.record_id,
            candidate_count=len(candidates),
        )

    async def _attempt(
        self,
        session: PlaybackSession,
        signal: asyncio.Future[bool],
        *,
        index: int,
        src: str,
    ) -> str | None:
        try:
            self._viewer.mount(
                session_id=session.session_id,
                candidate_index=index,
                src=src,
                kind=session.viewer_kind,
            )
        except Exception:
            LOGGER.warning(
                "viewer mount failed session_id=%s candidate=%s",
                session.session_id,
                index,
                exc_info=True,
            )
            return "mount_error"

        try:
            loaded = await asyncio.wait_for(signal, timeout=self._stall_timeout_seconds)
        except TimeoutError:
            return "stall"
        return None if loaded else "error"

    def _emit(
        self,
        session: PlaybackSession,
        kind: PlaybackEventKind,
        *,
        candidate_index: int | None = None,
        detail: str | None = None,
    ) -> None:
        event = PlaybackEvent(
            kind=kind,
            session_id=session.session_id,
            record_id=session.entry.record_id,
            candidate_index=candidate_index,
            detail=detail,
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                LOGGER.exception("playback listener failed kind=%s", kind)
