"""Wall-clock wake-ups on the running asyncio loop."""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from policylens.protocols import Clock


class AsyncioScheduler:
    """SchedulerProtocol backed by ``loop.call_later``.

    ``when`` is an epoch timestamp from ``clock``; it is converted to a delay
    at registration time. Past deadlines fire on the next loop iteration.
    """

    def __init__(self, clock: Clock = time.time) -> None:
        self._clock = clock

    def call_at(self, when: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        delay = max(0.0, when - self._clock())
        return asyncio.get_running_loop().call_later(delay, callback)
