"""Protocol interfaces for swappable components.

Handlers and AppState reference these protocols, not the concrete
implementations. This allows:
- Tests to use lightweight fakes (fixed clocks, manual timers, scripted models)
- Other backends (e.g. a shared Redis window store) to be swapped in without
  changing handler code
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Iterable

    from policylens.fetcher import FetchedPage
    from policylens.inference import InferenceRequest
    from policylens.models.analysis import ExtractedDocument
    from policylens.models.cache import CacheEntry

Clock = Callable[[], float]


class InferenceClientProtocol(Protocol):
    """Interface for the external language-model service.

    Returns the model's raw text. Raises ``InferenceError`` on any failure.
    """

    async def run(self, request: InferenceRequest) -> str: ...

    async def aclose(self) -> None: ...


class FetcherProtocol(Protocol):
    """Interface for the HTTP document fetcher."""

    async def fetch(self, url: str) -> ExtractedDocument: ...

    async def fetch_page(self, url: str) -> FetchedPage: ...


class StorageProtocol(Protocol):
    """Durable backing for cache partitions.

    Implementations raise ``StorageError`` on backend failures.
    """

    async def load(self, partition: str) -> list[CacheEntry]: ...

    async def upsert(self, partition: str, entry: CacheEntry) -> None: ...

    async def delete(self, partition: str, keys: Iterable[str]) -> None: ...

    async def ping(self) -> None: ...

    async def close(self) -> None: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class SchedulerProtocol(Protocol):
    """Registers one-shot wake-ups at an absolute epoch time."""

    def call_at(self, when: float, callback: Callable[[], None]) -> TimerHandle: ...


class WindowStoreProtocol(Protocol):
    """Holds rate-limit windows: identifier -> admitted timestamps."""

    def get(self, identifier: str) -> list[float]: ...

    def set(self, identifier: str, timestamps: list[float]) -> None: ...

    def delete(self, identifier: str) -> None: ...

    def identifiers(self) -> list[str]: ...

    def clear(self) -> None: ...
