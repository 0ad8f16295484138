"""Integration test fixtures.

Provides a fully wired AppState: real fetcher (HTTP mocked with respx), real
analyzer over a prompt-routing fake model, in-memory cache storage on a fake
clock and a deterministic rate limiter.
"""

from __future__ import annotations

import json
import random
from typing import TYPE_CHECKING

import pytest

from policylens import prompts
from policylens.analyzer import PolicyAnalyzer
from policylens.cache import CacheStore
from policylens.fetcher import Fetcher, build_http_client
from policylens.ratelimit import RateLimiter
from policylens.state import AppState

if TYPE_CHECKING:
    from policylens.config import Settings
    from policylens.inference import InferenceRequest
    from policylens.storage import MemoryStorage
    from tests.conftest import FakeClock, ManualScheduler

POLICY_HTML = """
<html>
<head><title>Privacy Policy</title><style>p { margin: 0; }</style></head>
<body>
  <nav>Home About us Contact us</nav>
  <h1>Privacy Policy</h1>
  <p>This privacy policy explains the information we collect when you use our service.
  We collect your name, email address and usage data to provide and improve the service.</p>
  <p>You have the right to access, correct and delete your personal data at any time.
  You can exercise your rights by writing to our data protection officer.</p>
  <p>We retain personal data only as long as necessary for the purposes described above.
  We do not sell your personal information to third parties.</p>
  <footer>&copy; 2024 Example Inc. All rights reserved. Cookie settings</footer>
</body>
</html>
"""

GREEN_CHUNK = json.dumps({
    "keyPoints": ["Collects name and email", "Data is not sold"],
    "redFlags": [],
    "compliance": {"gdpr": "compliant", "ccpa": "compliant"},
    "userRights": ["Right to access", "Right to deletion"],
})

SUMMARY = json.dumps({
    "executiveSummary": "A clear policy with strong user rights.",
    "recommendations": ["Review your account data periodically"],
})


class RoutingInference:
    """Answers chunk prompts and summary prompts with fixed bodies."""

    def __init__(self, chunk_response: str = GREEN_CHUNK, summary_response: str = SUMMARY) -> None:
        self.chunk_response = chunk_response
        self.summary_response = summary_response
        self.requests: list[InferenceRequest] = []

    async def run(self, request: InferenceRequest) -> str:
        self.requests.append(request)
        if request.system_prompt == prompts.SUMMARY_SYSTEM:
            return self.summary_response
        return self.chunk_response

    async def aclose(self) -> None:
        return None


@pytest.fixture()
def policy_html() -> str:
    return POLICY_HTML


@pytest.fixture()
def inference() -> RoutingInference:
    return RoutingInference()


@pytest.fixture()
async def app_state(
    settings: Settings,
    inference: RoutingInference,
    storage: MemoryStorage,
    scheduler: ManualScheduler,
    clock: FakeClock,
) -> AppState:
    """Full AppState wired for handler and HTTP-level tests."""
    http_client = build_http_client(settings.fetcher)
    cache_store = CacheStore(storage, scheduler, clock=clock)
    cache = await cache_store.partition(settings.cache.partition)

    state = AppState(
        settings=settings,
        http_client=http_client,
        fetcher=Fetcher(http_client, settings.fetcher),
        inference=inference,
        analyzer=PolicyAnalyzer(inference, settings.analysis, settings.inference),
        storage=storage,
        cache_store=cache_store,
        cache=cache,
        rate_limiter=RateLimiter(settings.rate_limit, rng=random.Random(0)),
    )
    yield state
    await cache_store.close()
    await http_client.aclose()
