"""Client-side pieces: the service HTTP client and the playback state machine."""

from .api import ServerUnavailable, SoilSongClient, StoryRequestError
from .playback import (
    InvalidPlaybackState,
    NoConnectivity,
    PlaybackBusy,
    PlaybackController,
    PlaybackError,
    PlaybackSession,
    PlaybackState,
)
from .transport import AppState, LifecycleEvents, TransportStatus

__all__ = [
    "AppState",
    "InvalidPlaybackState",
    "LifecycleEvents",
    "NoConnectivity",
    "PlaybackBusy",
    "PlaybackController",
    "PlaybackError",
    "PlaybackSession",
    "PlaybackState",
    "ServerUnavailable",
    "SoilSongClient",
    "StoryRequestError",
    "TransportStatus",
]
