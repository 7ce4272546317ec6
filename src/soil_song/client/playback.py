"""Playback state machine for one narrated soil story.

The controller owns a single :class:`PlaybackSession` and drives an
:class:`~soil_song.client.transport.AudioTransport`. Position, duration and
the playing/buffering flags follow transport status reports (the poll loop,
or the status read that follows each command); user actions move the state
machine and record only what they asked the transport to do.

Lifecycle::

    idle -> loading -> ready <-> playing <-> paused
               |                    |          |
               +------> error <-----+----------+
                          |
                          +-- auto retry (1 s, 2 s, 4 s) / retry()
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Coroutine, List, Optional, Sequence, Set

from .transport import (
    AppState,
    AudioTransport,
    ConnectivitySource,
    LifecycleSource,
    TransportStatus,
    Unsubscribe,
)

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAYS: tuple[float, ...] = (1.0, 2.0, 4.0)
DEFAULT_POLL_INTERVAL = 0.5

NO_CONNECTION_MESSAGE = (
    "No internet connection. Please check your connection and try again."
)


class PlaybackState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    PLAYING = "playing"
    PAUSED = "paused"
    ERROR = "error"


class PlaybackError(RuntimeError):
    """Base class for playback failures; ``reason`` is user-presentable."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class NoConnectivity(PlaybackError):
    def __init__(self, reason: str = NO_CONNECTION_MESSAGE):
        super().__init__(reason)


class PlaybackLoadError(PlaybackError):
    pass


class PlaybackBusy(PlaybackError):
    pass


class InvalidPlaybackState(PlaybackError):
    pass


_ACTIVE_STATES = (PlaybackState.READY, PlaybackState.PLAYING, PlaybackState.PAUSED)


@dataclass
class PlaybackSession:
    locator: str
    position_millis: int = 0
    duration_millis: int = 0
    is_playing: bool = False
    is_buffering: bool = False
    last_error: Optional[str] = None
    retry_count: int = 0
    updated_at: Optional[float] = None


class PlaybackController:
    """Drive an audio transport through load, play, pause, seek and recovery.

    ``sleep`` is used for retry backoff only. Set ``poll_interval`` to ``None``
    to disable the background poll loop and call :meth:`poll_once` manually.
    """

    def __init__(
        self,
        transport: AudioTransport,
        connectivity: ConnectivitySource,
        lifecycle: Optional[LifecycleSource] = None,
        *,
        poll_interval: Optional[float] = DEFAULT_POLL_INTERVAL,
        retry_delays: Sequence[float] = DEFAULT_RETRY_DELAYS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._transport = transport
        self._connectivity = connectivity
        self._poll_interval = poll_interval
        self._retry_delays = tuple(retry_delays)
        self._sleep = sleep
        self._clock = clock

        self._state = PlaybackState.IDLE
        self._session: Optional[PlaybackSession] = None
        self._transport_loaded = False
        self._captured_position: Optional[int] = None
        self._restoring = False
        self._closed = False
        self._app_state = AppState.ACTIVE

        self._lock = asyncio.Lock()
        self._poll_task: Optional[asyncio.Task[None]] = None
        self._retry_task: Optional[asyncio.Task[None]] = None
        self._event_tasks: Set[asyncio.Task[None]] = set()

        self._unsubscribers: List[Unsubscribe] = [
            connectivity.subscribe(self._on_connectivity_change)
        ]
        if lifecycle is not None:
            self._unsubscribers.append(lifecycle.subscribe(self._on_app_state_change))

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------
    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def session(self) -> Optional[PlaybackSession]:
        return self._session

    @property
    def captured_position(self) -> Optional[int]:
        """Position captured when the app last went to the background."""
        return self._captured_position

    @property
    def is_restoring(self) -> bool:
        return self._restoring

    @property
    def closed(self) -> bool:
        return self._closed

    async def load(self, locator: str) -> None:
        """Load ``locator`` into a fresh session.

        Raises :class:`NoConnectivity` or :class:`PlaybackLoadError` when the
        first attempt fails; automatic retries continue in the background.
        """

        self._ensure_open()
        self._cancel_retry()
        self._session = PlaybackSession(locator=locator)
        self._captured_position = None
        self._ensure_polling()
        async with self._lock:
            await self._attempt_load(0)

    async def retry(self) -> None:
        """Reload the current asset and restart the automatic retry schedule."""

        self._ensure_open()
        session = self._require_session()
        self._cancel_retry()
        session.retry_count = 0
        async with self._lock:
            await self._attempt_load(session.position_millis)

    async def play(self) -> None:
        session = self._check_ready_for_toggle()
        if self._state is PlaybackState.PLAYING:
            return
        async with self._lock:
            session.is_buffering = True
            try:
                await self._transport.play()
                status = await self._transport.get_status()
            except Exception as exc:
                logger.error("Error playing audio: %s", exc)
                self._fail(session, f"Playback error: {exc}")
                raise PlaybackError(f"Playback error: {exc}") from exc
            self._state = PlaybackState.PLAYING
            self._apply_status(status)

    async def pause(self) -> None:
        session = self._check_ready_for_toggle()
        if self._state is not PlaybackState.PLAYING:
            return
        async with self._lock:
            try:
                await self._transport.pause()
                status = await self._transport.get_status()
            except Exception as exc:
                logger.error("Error pausing audio: %s", exc)
                self._fail(session, f"Playback error: {exc}")
                raise PlaybackError(f"Playback error: {exc}") from exc
            self._state = PlaybackState.PAUSED
            self._apply_status(status)

    async def toggle(self) -> None:
        if self._state is PlaybackState.PLAYING:
            await self.pause()
        else:
            await self.play()

    async def seek(self, position_millis: int) -> int:
        """Move to ``position_millis`` clamped to the track; returns the target."""

        self._ensure_open()
        if self._restoring:
            raise PlaybackBusy("Playback is being restored")
        if self._state not in _ACTIVE_STATES:
            raise InvalidPlaybackState(f"Cannot seek while {self._state.value}")
        session = self._require_session()
        target = max(0, min(int(position_millis), session.duration_millis))
        async with self._lock:
            try:
                await self._transport.set_position(target)
            except Exception as exc:
                logger.error("Error seeking audio: %s", exc)
                raise PlaybackError(f"Seek failed: {exc}") from exc
            session.position_millis = target
        return target

    async def poll_once(self) -> None:
        """Read transport status once and fold it into the session."""

        if self._closed or self._session is None:
            return
        if self._state not in _ACTIVE_STATES or self._restoring:
            return
        # Another command owns the transport; its result is newer than ours.
        if self._lock.locked():
            return
        async with self._lock:
            try:
                status = await self._transport.get_status()
            except Exception as exc:
                logger.error("Error getting audio status: %s", exc)
                return
            if self._apply_status(status):
                try:
                    await self._transport.set_position(0)
                except Exception as exc:
                    logger.warning("Could not rewind finished track: %s", exc)

    async def settle(self) -> None:
        """Wait until event handlers and scheduled retries have run."""

        while True:
            pending = [task for task in self._event_tasks if not task.done()]
            if self._retry_task is not None and not self._retry_task.done():
                pending.append(self._retry_task)
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        """Tear down: stop polling and timers, drop listeners, release audio."""

        if self._closed:
            return
        self._closed = True

        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

        tasks = [
            task
            for task in (self._poll_task, self._retry_task, *self._event_tasks)
            if task is not None and not task.done()
        ]
        for task in tasks:
            task.cancel()
        self._poll_task = None
        self._retry_task = None

        if self._state is PlaybackState.PLAYING:
            try:
                await self._transport.pause()
            except Exception as exc:
                logger.warning("Error pausing audio during teardown: %s", exc)

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._event_tasks.clear()

        await self._release_transport()
        self._session = None
        self._state = PlaybackState.IDLE

    # ------------------------------------------------------------------
    # Loading and recovery
    # ------------------------------------------------------------------
    async def _attempt_load(self, position_millis: int) -> None:
        session = self._require_session()
        self._state = PlaybackState.LOADING
        session.is_playing = False
        session.is_buffering = False
        session.last_error = None

        try:
            if not await self._connectivity.is_connected():
                raise NoConnectivity()
            if self._transport_loaded:
                await self._transport.unload()
                self._transport_loaded = False
            status = await self._transport.load(session.locator)
            if not status.is_loaded:
                raise PlaybackLoadError(status.error or "audio did not load")
            self._transport_loaded = True
            if position_millis > 0:
                await self._transport.set_position(position_millis)
        except asyncio.CancelledError:
            raise
        except NoConnectivity as exc:
            self._fail(session, exc.reason)
            raise
        except Exception as exc:
            logger.error("Error loading audio from %s: %s", session.locator, exc)
            reason = f"Error loading audio: {exc}"
            self._fail(session, reason)
            raise PlaybackLoadError(reason) from exc

        if self._closed:
            # close() ran while the load was in flight and saw nothing to unload.
            await self._release_transport()
            return
        if self._session is not session:
            return
        session.duration_millis = status.duration_millis
        session.position_millis = position_millis
        session.updated_at = self._clock()
        self._state = PlaybackState.READY
        logger.info(
            "Loaded %s (%d ms) at %d ms",
            session.locator,
            session.duration_millis,
            position_millis,
        )

    async def _release_transport(self) -> None:
        if not self._transport_loaded:
            return
        self._transport_loaded = False
        try:
            await self._transport.unload()
        except Exception as exc:
            logger.warning("Error unloading audio: %s", exc)

    def _fail(self, session: PlaybackSession, reason: str) -> None:
        if self._session is not session:
            logger.debug("Ignoring failure for replaced session %s", session.locator)
            return
        session.last_error = reason
        session.is_playing = False
        session.is_buffering = False
        self._state = PlaybackState.ERROR
        self._schedule_retry(session)

    def _schedule_retry(self, session: PlaybackSession) -> None:
        if self._closed or self._session is not session:
            return
        if session.retry_count >= len(self._retry_delays):
            logger.warning(
                "Giving up on %s after %d retries", session.locator, session.retry_count
            )
            return
        delay = self._retry_delays[session.retry_count]
        session.retry_count += 1
        logger.info(
            "Retrying audio load in %.1fs (attempt %d/%d)",
            delay,
            session.retry_count,
            len(self._retry_delays),
        )
        self._retry_task = asyncio.create_task(self._retry_after(delay, session))

    async def _retry_after(self, delay: float, session: PlaybackSession) -> None:
        await self._sleep(delay)
        if self._closed or self._session is not session:
            return
        if self._retry_task is asyncio.current_task():
            self._retry_task = None
        async with self._lock:
            try:
                await self._attempt_load(session.position_millis)
            except PlaybackError as exc:
                logger.debug("Automatic retry failed: %s", exc.reason)

    def _cancel_retry(self) -> None:
        if self._retry_task is not None and not self._retry_task.done():
            self._retry_task.cancel()
        self._retry_task = None

    # ------------------------------------------------------------------
    # Status channel
    # ------------------------------------------------------------------
    def _ensure_polling(self) -> None:
        if self._poll_interval is None:
            return
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(self._poll_loop(self._poll_interval))

    async def _poll_loop(self, interval: float) -> None:
        while not self._closed:
            await asyncio.sleep(interval)
            await self.poll_once()

    def _apply_status(self, status: TransportStatus) -> bool:
        """Fold a status report into the session; True when the track finished."""

        session = self._session
        if session is None:
            return False
        if not status.is_loaded:
            if status.error:
                logger.error("Audio transport reported: %s", status.error)
                self._fail(session, f"Playback error: {status.error}")
            return False

        session.position_millis = status.position_millis
        if status.duration_millis:
            session.duration_millis = status.duration_millis
        session.is_playing = status.is_playing
        session.updated_at = self._clock()

        if status.did_just_finish:
            session.position_millis = 0
            session.is_playing = False
            session.is_buffering = False
            self._state = PlaybackState.READY
            return True

        if self._state is PlaybackState.PLAYING:
            session.is_buffering = status.is_buffering
            if not status.is_playing and not status.is_buffering:
                self._state = PlaybackState.PAUSED
        else:
            session.is_buffering = False
            if status.is_playing:
                self._state = PlaybackState.PLAYING
        return False

    # ------------------------------------------------------------------
    # Host events
    # ------------------------------------------------------------------
    def _on_connectivity_change(self, connected: bool) -> None:
        if connected and not self._closed and self._state is PlaybackState.ERROR:
            logger.info("Connectivity restored; retrying audio load")
            self._spawn(self._retry_from_event())

    async def _retry_from_event(self) -> None:
        try:
            await self.retry()
        except PlaybackError as exc:
            logger.warning("Retry after reconnect failed: %s", exc.reason)

    def _on_app_state_change(self, next_state: AppState) -> None:
        previous = self._app_state
        self._app_state = next_state
        if self._closed:
            return
        if previous is AppState.ACTIVE and next_state is not AppState.ACTIVE:
            self._spawn(self._enter_background())
        elif previous is not AppState.ACTIVE and next_state is AppState.ACTIVE:
            if self._session is not None and self._state is not PlaybackState.IDLE:
                self._restoring = True
                self._spawn(self._enter_foreground())

    async def _enter_background(self) -> None:
        async with self._lock:
            session = self._session
            if session is None or self._state not in _ACTIVE_STATES:
                return
            try:
                status = await self._transport.get_status()
                position = (
                    status.position_millis if status.is_loaded else session.position_millis
                )
            except Exception as exc:
                logger.warning("Could not read position before backgrounding: %s", exc)
                position = session.position_millis
            self._captured_position = position
            session.position_millis = position

            if self._state is PlaybackState.PLAYING:
                try:
                    await self._transport.pause()
                except Exception as exc:
                    logger.warning("Error pausing audio for background: %s", exc)
                session.is_playing = False
                session.is_buffering = False
                self._state = PlaybackState.PAUSED
            logger.debug("Backgrounded at %d ms", position)

    async def _enter_foreground(self) -> None:
        try:
            async with self._lock:
                session = self._session
                if session is None or self._state not in _ACTIVE_STATES:
                    return
                try:
                    status = await self._transport.get_status()
                    released = not status.is_loaded
                except Exception as exc:
                    logger.warning("Could not read audio status on resume: %s", exc)
                    released = True
                if not released:
                    return
                position = (
                    self._captured_position
                    if self._captured_position is not None
                    else session.position_millis
                )
                logger.info("Audio was released in background; reloading at %d ms", position)
                try:
                    await self._attempt_load(position)
                except PlaybackError as exc:
                    logger.warning("Reload after resume failed: %s", exc.reason)
        finally:
            self._restoring = False

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._event_tasks.add(task)
        task.add_done_callback(self._event_tasks.discard)

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------
    def _ensure_open(self) -> None:
        if self._closed:
            raise InvalidPlaybackState("Playback controller is closed")

    def _require_session(self) -> PlaybackSession:
        if self._session is None:
            raise InvalidPlaybackState("No audio loaded")
        return self._session

    def _check_ready_for_toggle(self) -> PlaybackSession:
        self._ensure_open()
        if self._restoring:
            raise PlaybackBusy("Playback is being restored")
        if self._state not in _ACTIVE_STATES:
            raise InvalidPlaybackState(f"Cannot toggle playback while {self._state.value}")
        session = self._require_session()
        if session.is_buffering:
            raise PlaybackBusy("Audio is buffering")
        return session


__all__ = [
    "DEFAULT_POLL_INTERVAL",
    "DEFAULT_RETRY_DELAYS",
    "InvalidPlaybackState",
    "NoConnectivity",
    "PlaybackBusy",
    "PlaybackController",
    "PlaybackError",
    "PlaybackLoadError",
    "PlaybackSession",
    "PlaybackState",
]
