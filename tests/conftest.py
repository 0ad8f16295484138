"""Shared test fixtures for the policylens test suite."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import pytest

from policylens.cache import CachePartition
from policylens.config import CacheSettings, InferenceSettings, Settings
from policylens.errors import InferenceError
from policylens.storage import MemoryStorage

if TYPE_CHECKING:
    from collections.abc import Callable

    from policylens.inference import InferenceRequest

T0 = 1_750_000_000.0


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, now: float = T0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class ManualTimer:
    when: float
    callback: Callable[[], None]
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class ManualScheduler:
    """SchedulerProtocol that only fires when the test says so."""

    timers: list[ManualTimer] = field(default_factory=list)

    def call_at(self, when: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(when, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[ManualTimer]:
        return [t for t in self.timers if not t.cancelled]

    def fire_due(self, now: float) -> int:
        due = [t for t in self.pending if t.when <= now]
        for timer in due:
            timer.cancelled = True
            timer.callback()
        return len(due)


class ScriptedInference:
    """InferenceClientProtocol fake replaying canned responses in order.

    A response that is an exception instance is raised instead of returned.
    Once the script runs out, ``default`` is returned.
    """

    def __init__(self, *responses: str | Exception, default: str | Exception = "{}") -> None:
        self.responses = list(responses)
        self.default = default
        self.requests: list[InferenceRequest] = []
        self.closed = False

    async def run(self, request: InferenceRequest) -> str:
        self.requests.append(request)
        response = self.responses.pop(0) if self.responses else self.default
        if isinstance(response, Exception):
            raise response
        return response

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture()
def settings() -> Settings:
    """Settings with in-memory cache storage and configured inference credentials."""
    return Settings(
        cache=CacheSettings(backend="memory"),
        inference=InferenceSettings(account_id="test-account", api_token="test-token"),
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture()
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture()
async def cache(
    storage: MemoryStorage, scheduler: ManualScheduler, clock: FakeClock
) -> CachePartition:
    partition = CachePartition("test-cache", storage, scheduler, clock=clock)
    await partition.open()
    yield partition
    await partition.close()


@pytest.fixture()
def failing_inference() -> ScriptedInference:
    return ScriptedInference(default=InferenceError("model unavailable"))


@pytest.fixture()
def scripted_inference() -> type[ScriptedInference]:
    """The ScriptedInference class, for tests that build their own script."""
    return ScriptedInference
