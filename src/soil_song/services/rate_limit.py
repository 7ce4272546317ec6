"""In-memory fixed-window request limiter keyed by client address."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict

logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = "Too many requests from this IP, please try again later."


@dataclass
class _Window:
    started_at: float
    hits: int = 0


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    remaining: int
    retry_after: int


class RateLimiter:
    """Allow ``max_requests`` per ``window_seconds`` for each key.

    A ``max_requests`` of 0 turns the limiter off. Expired windows are dropped
    lazily when the table grows past ``prune_threshold`` entries.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        prune_threshold: int = 10_000,
    ) -> None:
        self._max = max_requests
        self._window = window_seconds
        self._clock = clock
        self._prune_threshold = prune_threshold
        self._windows: Dict[str, _Window] = {}

    @property
    def enabled(self) -> bool:
        return self._max > 0

    def hit(self, key: str) -> RateDecision:
        """Count one request for ``key`` and report whether it may proceed."""

        if not self.enabled:
            return RateDecision(allowed=True, remaining=0, retry_after=0)

        now = self._clock()
        window = self._windows.get(key)
        if window is None or now - window.started_at >= self._window:
            if len(self._windows) >= self._prune_threshold:
                self._prune(now)
            window = _Window(started_at=now)
            self._windows[key] = window

        window.hits += 1
        if window.hits > self._max:
            retry_after = math.ceil(window.started_at + self._window - now)
            if window.hits == self._max + 1:
                logger.warning("Rate limit exceeded for %s", key)
            return RateDecision(allowed=False, remaining=0, retry_after=max(retry_after, 1))
        return RateDecision(allowed=True, remaining=self._max - window.hits, retry_after=0)

    def _prune(self, now: float) -> None:
        expired = [
            key
            for key, window in self._windows.items()
            if now - window.started_at >= self._window
        ]
        for key in expired:
            del self._windows[key]


__all__ = ["RATE_LIMIT_MESSAGE", "RateDecision", "RateLimiter"]
