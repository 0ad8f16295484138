"""Application state container.

AppState is created once at server startup (inside the Starlette lifespan)
and passed to every handler. Nothing in here is a distributed-consistency
primitive: the rate-limit windows and the cache mirror belong to this
process only.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx

    from policylens.analyzer import PolicyAnalyzer
    from policylens.cache import CachePartition, CacheStore
    from policylens.config import Settings
    from policylens.protocols import (
        FetcherProtocol,
        InferenceClientProtocol,
        StorageProtocol,
    )
    from policylens.ratelimit import RateLimiter


@dataclass
class AppState:
    """Holds all shared runtime state. Passed to every handler."""

    settings: Settings

    # Fetch & analysis
    http_client: httpx.AsyncClient | None = None
    fetcher: FetcherProtocol | None = None
    inference: InferenceClientProtocol | None = None
    analyzer: PolicyAnalyzer | None = None

    # Cache & admission control
    storage: StorageProtocol | None = None
    cache_store: CacheStore | None = None
    cache: CachePartition | None = None
    rate_limiter: RateLimiter | None = None

    started_at: float = field(default_factory=time.time)
