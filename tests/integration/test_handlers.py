"""Integration tests for the API handlers.

Tests the full path through each handler: input validation → business logic
→ output serialisation. Uses a real AppState with in-memory fixtures; only
the network (respx) and the language model (a routing fake) are faked.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import respx

from policylens import prompts
from policylens.config import RateLimitSettings
from policylens.errors import ErrorCode, PolicyLensError, StorageError
from policylens.handlers.analyze import handle as analyze_handle
from policylens.handlers.analyze import result_id
from policylens.handlers.detect import handle as detect_handle
from policylens.handlers.health import handle as health_handle
from policylens.handlers.results import handle as results_handle
from policylens.ratelimit import RateLimiter

if TYPE_CHECKING:
    from policylens.state import AppState
    from tests.conftest import FakeClock
    from tests.integration.conftest import RoutingInference

POLICY_URL = "https://example.com/privacy"
CLIENT = "203.0.113.7"


def _mock_policy(html: str, url: str = POLICY_URL) -> respx.Route:
    return respx.get(url).mock(return_value=httpx.Response(200, html=html))


# ---------------------------------------------------------------------------
# POST /api/analyze
# ---------------------------------------------------------------------------


class TestAnalyzeHandler:
    @respx.mock
    async def test_green_policy_end_to_end(
        self, app_state: AppState, policy_html: str, inference: RoutingInference
    ) -> None:
        _mock_policy(policy_html)
        response = await analyze_handle({"url": POLICY_URL, "type": "privacy"}, CLIENT, app_state)

        assert response["success"] is True
        assert response["cached"] is False
        result = response["result"]
        assert result["id"] == result_id(POLICY_URL)
        assert result["url"] == POLICY_URL
        assert result["type"] == "privacy"
        assert result["chunksAnalyzed"] == 1
        assert 0 < result["processedLength"] <= result["contentLength"]
        assert result["riskScores"] == {
            "overall": "green",
            "regulatory": "green",
            "transparency": "green",
            "userRights": "green",
        }
        analysis = result["analysis"]
        assert analysis["executiveSummary"] == "A clear policy with strong user rights."
        assert analysis["keyPoints"] == ["Collects name and email", "Data is not sold"]
        assert analysis["complianceTags"] == {"gdpr": "compliant", "ccpa": "compliant"}
        assert analysis["perChunkFindings"][0]["kind"] == "parsed"
        # One chunk call plus one summary call
        assert len(inference.requests) == 2

    @respx.mock
    async def test_second_call_served_from_cache(
        self, app_state: AppState, policy_html: str, inference: RoutingInference
    ) -> None:
        route = _mock_policy(policy_html)
        first = await analyze_handle({"url": POLICY_URL}, CLIENT, app_state)
        second = await analyze_handle({"url": POLICY_URL}, CLIENT, app_state)

        assert first["cached"] is False
        assert second["cached"] is True
        assert second["result"] == first["result"]
        assert route.call_count == 1
        assert len(inference.requests) == 2

    @respx.mock
    async def test_equivalent_urls_share_cache_entry(
        self, app_state: AppState, policy_html: str
    ) -> None:
        _mock_policy(policy_html)
        await analyze_handle({"url": "HTTPS://Example.com:443/privacy#rights"}, CLIENT, app_state)
        response = await analyze_handle({"url": POLICY_URL}, CLIENT, app_state)
        assert response["cached"] is True

    @respx.mock
    async def test_terms_document_type(
        self, app_state: AppState, policy_html: str, inference: RoutingInference
    ) -> None:
        _mock_policy(policy_html)
        response = await analyze_handle({"url": POLICY_URL, "type": "terms"}, CLIENT, app_state)
        assert response["result"]["type"] == "terms"
        assert "terms policy" in inference.requests[0].system_prompt

    @pytest.mark.parametrize(
        ("body", "code"),
        [
            ({}, ErrorCode.INVALID_REQUEST),
            ({"url": ""}, ErrorCode.INVALID_REQUEST),
            (["https://example.com"], ErrorCode.INVALID_REQUEST),
            ({"url": POLICY_URL, "type": "cookies"}, ErrorCode.INVALID_REQUEST),
            ({"url": POLICY_URL, "options": "fast"}, ErrorCode.INVALID_REQUEST),
            ({"url": "not a url"}, ErrorCode.INVALID_URL),
            ({"url": "ftp://example.com/privacy"}, ErrorCode.INVALID_URL),
            ({"url": "http://192.168.0.1/privacy"}, ErrorCode.INVALID_URL),
        ],
    )
    async def test_invalid_requests(
        self, app_state: AppState, body: object, code: ErrorCode
    ) -> None:
        with pytest.raises(PolicyLensError) as exc_info:
            await analyze_handle(body, CLIENT, app_state)
        assert exc_info.value.code == code
        assert exc_info.value.status_code == 400

    @respx.mock
    async def test_rate_limit_applies_to_cached_results(
        self, app_state: AppState, policy_html: str
    ) -> None:
        _mock_policy(policy_html)
        app_state.rate_limiter = RateLimiter(RateLimitSettings(max_requests=1))

        await analyze_handle({"url": POLICY_URL}, CLIENT, app_state)
        with pytest.raises(PolicyLensError) as exc_info:
            await analyze_handle({"url": POLICY_URL}, CLIENT, app_state)
        assert exc_info.value.code == ErrorCode.RATE_LIMITED
        assert exc_info.value.retry_after is not None

        # Another client is unaffected
        response = await analyze_handle({"url": POLICY_URL}, "198.51.100.1", app_state)
        assert response["cached"] is True

    @respx.mock
    async def test_upstream_failure_is_502_and_not_cached(self, app_state: AppState) -> None:
        respx.get(POLICY_URL).mock(return_value=httpx.Response(404))
        with pytest.raises(PolicyLensError) as exc_info:
            await analyze_handle({"url": POLICY_URL}, CLIENT, app_state)

        error = exc_info.value
        assert error.code == ErrorCode.FETCH_FAILED
        assert error.status_code == 502
        assert error.upstream_status == 404
        assert await app_state.cache.get(POLICY_URL) is None

    @respx.mock
    async def test_model_failure_degrades_instead_of_failing(
        self, app_state: AppState, policy_html: str, inference: RoutingInference
    ) -> None:
        _mock_policy(policy_html)
        inference.chunk_response = "I am unable to produce JSON today."
        inference.summary_response = "Nor a summary."

        response = await analyze_handle({"url": POLICY_URL}, CLIENT, app_state)

        analysis = response["result"]["analysis"]
        assert analysis["perChunkFindings"][0]["kind"] == "degraded"
        assert analysis["executiveSummary"] == prompts.FALLBACK_SUMMARY
        assert analysis["summaryDegraded"] is True
        # No rights were mentioned by any chunk
        assert response["result"]["riskScores"]["userRights"] == "yellow"
        assert response["result"]["riskScores"]["overall"] == "yellow"

    @respx.mock
    async def test_cache_write_failure_still_returns_result(
        self, app_state: AppState, policy_html: str
    ) -> None:
        _mock_policy(policy_html)
        with patch.object(
            app_state.cache, "put", AsyncMock(side_effect=StorageError("disk full"))
        ):
            response = await analyze_handle({"url": POLICY_URL}, CLIENT, app_state)
        assert response["success"] is True
        assert response["cached"] is False

    @respx.mock
    async def test_page_without_usable_text(self, app_state: AppState) -> None:
        _mock_policy("<html><body><script>renderPolicy()</script></body></html>")
        response = await analyze_handle({"url": POLICY_URL}, CLIENT, app_state)
        result = response["result"]
        assert result["chunksAnalyzed"] == 0
        assert result["analysis"]["perChunkFindings"] == []


# ---------------------------------------------------------------------------
# POST /api/detect
# ---------------------------------------------------------------------------


class TestDetectHandler:
    @respx.mock
    async def test_policy_page(self, app_state: AppState, policy_html: str) -> None:
        _mock_policy(policy_html)
        response = await detect_handle({"url": POLICY_URL}, app_state)

        assert response["success"] is True
        assert response["isPolicy"] is True
        assert response["url"] == POLICY_URL
        assert response["contentLength"] == len(policy_html)
        assert any("privacy" in indicator for indicator in response["indicators"])
        assert response["likelyPolicyContent"] is True

    @respx.mock
    async def test_non_policy_page(self, app_state: AppState) -> None:
        _mock_policy("<html><body><h1>Spring sale</h1><p>50% off shoes.</p></body></html>")
        response = await detect_handle({"url": POLICY_URL}, app_state)
        assert response["isPolicy"] is False
        assert response["indicators"] == []
        assert response["likelyPolicyContent"] is False

    @respx.mock
    async def test_upstream_failure_is_400(self, app_state: AppState) -> None:
        respx.get(POLICY_URL).mock(return_value=httpx.Response(500))
        with pytest.raises(PolicyLensError) as exc_info:
            await detect_handle({"url": POLICY_URL}, app_state)
        assert exc_info.value.code == ErrorCode.FETCH_FAILED
        assert exc_info.value.status_code == 400
        assert exc_info.value.message.startswith("Unable to fetch URL")

    @respx.mock
    async def test_non_html_is_400(self, app_state: AppState) -> None:
        respx.get(POLICY_URL).mock(return_value=httpx.Response(200, json={"privacy": "policy"}))
        with pytest.raises(PolicyLensError) as exc_info:
            await detect_handle({"url": POLICY_URL}, app_state)
        assert exc_info.value.status_code == 400

    async def test_missing_url(self, app_state: AppState) -> None:
        with pytest.raises(PolicyLensError) as exc_info:
            await detect_handle({}, app_state)
        assert exc_info.value.code == ErrorCode.INVALID_REQUEST

    async def test_private_url(self, app_state: AppState) -> None:
        with pytest.raises(PolicyLensError) as exc_info:
            await detect_handle({"url": "http://localhost:8080/"}, app_state)
        assert exc_info.value.code == ErrorCode.INVALID_URL


# ---------------------------------------------------------------------------
# GET /api/results
# ---------------------------------------------------------------------------


class TestResultsHandler:
    async def test_requires_id_or_url(self, app_state: AppState) -> None:
        with pytest.raises(PolicyLensError) as exc_info:
            await results_handle({}, app_state)
        assert exc_info.value.code == ErrorCode.INVALID_REQUEST

    async def test_unknown_result_is_404(self, app_state: AppState) -> None:
        with pytest.raises(PolicyLensError) as exc_info:
            await results_handle({"url": POLICY_URL}, app_state)
        assert exc_info.value.code == ErrorCode.NOT_FOUND
        assert exc_info.value.status_code == 404

    @respx.mock
    async def test_lookup_by_url_and_id(
        self, app_state: AppState, policy_html: str, clock: FakeClock
    ) -> None:
        _mock_policy(policy_html)
        analyzed = await analyze_handle({"url": POLICY_URL}, CLIENT, app_state)

        by_url = await results_handle({"url": "https://EXAMPLE.com/privacy"}, app_state)
        by_id = await results_handle({"id": result_id(POLICY_URL)}, app_state)

        assert by_url["result"] == analyzed["result"]
        assert by_id["result"] == analyzed["result"]
        assert by_url["timestamp"] == int(clock.now * 1000)
        ttl_ms = app_state.settings.cache.ttl_minutes * 60 * 1000
        assert by_url["expiresAt"] - by_url["timestamp"] == ttl_ms

    @respx.mock
    async def test_expired_result_is_404(
        self, app_state: AppState, policy_html: str, clock: FakeClock
    ) -> None:
        _mock_policy(policy_html)
        await analyze_handle({"url": POLICY_URL}, CLIENT, app_state)
        clock.advance(app_state.settings.cache.ttl_minutes * 60)

        with pytest.raises(PolicyLensError) as exc_info:
            await results_handle({"url": POLICY_URL}, app_state)
        assert exc_info.value.code == ErrorCode.NOT_FOUND


# ---------------------------------------------------------------------------
# GET /api/health
# ---------------------------------------------------------------------------


class TestHealthHandler:
    async def test_healthy(self, app_state: AppState) -> None:
        health = await health_handle(app_state)
        assert health["status"] == "healthy"
        checks = health["checks"]
        assert checks["inference"] == "available"
        assert checks["storage"] == "available"
        assert checks["cache"]["partition"] == "global-cache"
        assert checks["environment"]["rateLimit"] == {"maxRequests": 10, "windowSeconds": 60}

    async def test_missing_credentials_degrade(self, app_state: AppState) -> None:
        app_state.settings.inference.api_token = ""
        health = await health_handle(app_state)
        assert health["status"] == "degraded"
        assert health["checks"]["inference"] == "unavailable"

    async def test_storage_error_degrades(self, app_state: AppState) -> None:
        with patch.object(
            app_state.storage, "ping", AsyncMock(side_effect=StorageError("db locked"))
        ):
            health = await health_handle(app_state)
        assert health["status"] == "degraded"
        assert health["checks"]["storage"] == "error"

    async def test_unexpected_error_is_unhealthy(self, app_state: AppState) -> None:
        with patch.object(app_state.cache, "stats", side_effect=RuntimeError("boom")):
            health = await health_handle(app_state)
        assert health["status"] == "unhealthy"
        assert health["error"] == "RuntimeError"
