"""Interfaces the playback controller drives, plus small in-process adapters.

Hosts bridge their native audio player, network reachability and app
lifecycle notifications onto these interfaces. Subscription callbacks are
invoked on the event loop thread.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, List, Optional, Protocol, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")
Unsubscribe = Callable[[], None]


@dataclass(frozen=True)
class TransportStatus:
    """Snapshot reported by the underlying audio player."""

    is_loaded: bool
    position_millis: int = 0
    duration_millis: int = 0
    is_playing: bool = False
    is_buffering: bool = False
    did_just_finish: bool = False
    error: Optional[str] = None


class AudioTransport(Protocol):
    async def load(self, uri: str) -> TransportStatus: ...

    async def unload(self) -> None: ...

    async def play(self) -> None: ...

    async def pause(self) -> None: ...

    async def set_position(self, position_millis: int) -> None: ...

    async def get_status(self) -> TransportStatus: ...


class AppState(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    BACKGROUND = "background"


class ConnectivitySource(Protocol):
    async def is_connected(self) -> bool: ...

    def subscribe(self, callback: Callable[[bool], None]) -> Unsubscribe: ...


class LifecycleSource(Protocol):
    def subscribe(self, callback: Callable[[AppState], None]) -> Unsubscribe: ...


class EventHub(Generic[T]):
    """Minimal synchronous pub/sub used to forward host events."""

    def __init__(self) -> None:
        self._listeners: List[Callable[[T], None]] = []

    def subscribe(self, callback: Callable[[T], None]) -> Unsubscribe:
        self._listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    def emit(self, value: T) -> None:
        for listener in list(self._listeners):
            listener(value)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)


class LifecycleEvents(EventHub[AppState]):
    """Forward host app-state changes ("active", "inactive", "background")."""


class HttpConnectivity(EventHub[bool]):
    """Reachability check against a known URL.

    ``is_connected`` performs a short HEAD request; hosts with a native
    reachability API should call ``emit`` with its updates.
    """

    def __init__(
        self,
        probe_url: str,
        *,
        timeout: float = 3.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__()
        self._probe_url = probe_url
        self._timeout = timeout
        self._client = http_client or httpx.AsyncClient()
        self._owns_client = http_client is None
        self._last: Optional[bool] = None

    async def is_connected(self) -> bool:
        try:
            await self._client.head(self._probe_url, timeout=self._timeout)
            connected = True
        except httpx.HTTPError as exc:
            logger.debug("Connectivity probe to %s failed: %s", self._probe_url, exc)
            connected = False
        if connected != self._last:
            self._last = connected
            self.emit(connected)
        return connected

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = [
    "AppState",
    "AudioTransport",
    "ConnectivitySource",
    "EventHub",
    "HttpConnectivity",
    "LifecycleEvents",
    "LifecycleSource",
    "TransportStatus",
]
