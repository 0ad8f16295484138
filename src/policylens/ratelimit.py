"""Sliding-window admission control.

Windows live in a process-local store created per server instance. Under
several server instances the limit is approximate: each instance counts only
the requests it saw itself. Treat the limiter as best-effort abuse protection,
not a global guarantee.
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from policylens.errors import ErrorCode, PolicyLensError

if TYPE_CHECKING:
    from policylens.config import RateLimitSettings
    from policylens.protocols import Clock, WindowStoreProtocol

log = structlog.get_logger()


@dataclass
class RateWindow:
    identifier: str
    timestamps: list[float] = field(default_factory=list)


class InMemoryWindowStore:
    """Dict-backed WindowStoreProtocol. Not shared across processes."""

    def __init__(self) -> None:
        self._windows: dict[str, RateWindow] = {}

    def get(self, identifier: str) -> list[float]:
        window = self._windows.get(identifier)
        return list(window.timestamps) if window is not None else []

    def set(self, identifier: str, timestamps: list[float]) -> None:
        self._windows[identifier] = RateWindow(identifier, list(timestamps))

    def delete(self, identifier: str) -> None:
        self._windows.pop(identifier, None)

    def identifiers(self) -> list[str]:
        return list(self._windows)

    def clear(self) -> None:
        self._windows.clear()


class RateLimiter:
    def __init__(
        self,
        settings: RateLimitSettings,
        store: WindowStoreProtocol | None = None,
        *,
        clock: Clock = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        self._window = settings.window_seconds
        self._max_requests = settings.max_requests
        self._sweep_probability = settings.sweep_probability
        self._store = store if store is not None else InMemoryWindowStore()
        self._clock = clock
        self._rng = rng or random.Random()

    def admit(self, identifier: str) -> None:
        """Record one request for ``identifier`` or raise RATE_LIMITED."""
        now = self._clock()
        live = [t for t in self._store.get(identifier) if now - t < self._window]

        if len(live) >= self._max_requests:
            self._store.set(identifier, live)
            retry_after = max(0.0, live[0] + self._window - now)
            log.info("rate_limited", identifier=identifier, retry_after=round(retry_after, 3))
            raise PolicyLensError(
                code=ErrorCode.RATE_LIMITED,
                message="Rate limit exceeded. Please try again later.",
                suggestion=f"Retry after {retry_after:.0f} seconds.",
                recoverable=True,
                retry_after=round(retry_after, 3),
            )

        live.append(now)
        self._store.set(identifier, live)

        if self._rng.random() < self._sweep_probability:
            self.sweep(now)

    def sweep(self, now: float | None = None) -> int:
        """Drop expired timestamps everywhere; remove empty windows. Returns removed count."""
        now = self._clock() if now is None else now
        removed = 0
        for identifier in self._store.identifiers():
            live = [t for t in self._store.get(identifier) if now - t < self._window]
            if live:
                self._store.set(identifier, live)
            else:
                self._store.delete(identifier)
                removed += 1
        if removed:
            log.debug("rate_limit_sweep", windows_removed=removed)
        return removed

    def close(self) -> None:
        self._store.clear()
