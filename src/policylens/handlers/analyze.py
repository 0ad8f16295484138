"""Handler for POST /api/analyze.

Receives AppState, orchestrates validation / admission / cache lookup /
fetch / chunk / analyze / score / cache insert, and returns a structured
dict. No Starlette imports; server.py handles the HTTP wiring.
"""

from __future__ import annotations

import hashlib
import time
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from policylens import __version__
from policylens.chunker import chunk_text
from policylens.errors import ErrorCode, PolicyLensError, StorageError
from policylens.extractor import strip_boilerplate
from policylens.models.analysis import AnalysisRequest, AnalysisResult
from policylens.models.api import AnalyzeBody
from policylens.scoring import score
from policylens.validation import validate_document_type, validate_policy_url

if TYPE_CHECKING:
    from policylens.state import AppState


def result_id(url: str) -> str:
    """Stable identifier of the analysis for a normalized URL."""
    return hashlib.sha256(url.encode()).hexdigest()[:16]


def parse_request(body: Any) -> AnalysisRequest:
    """Validate a decoded JSON body into an AnalysisRequest."""
    try:
        validated = AnalyzeBody.model_validate(body)
    except ValidationError as exc:
        raise PolicyLensError(
            code=ErrorCode.INVALID_REQUEST,
            message=f"Invalid request body: {exc.errors()[0]['msg']}",
            suggestion='Send a JSON object like {"url": "...", "type": "privacy"}.',
            recoverable=False,
        ) from exc

    if not validated.url:
        raise PolicyLensError(
            code=ErrorCode.INVALID_REQUEST,
            message="URL is required",
            suggestion='Send a JSON object like {"url": "...", "type": "privacy"}.',
            recoverable=False,
        )

    return AnalysisRequest(
        url=validate_policy_url(validated.url),
        document_type=validate_document_type(validated.type),
        options=validated.options,
    )


async def run_analysis(request: AnalysisRequest, state: AppState) -> AnalysisResult:
    """Fetch, chunk, analyze and score one policy. No cache involvement."""
    if state.fetcher is None or state.analyzer is None:
        raise RuntimeError("Analysis components (fetcher, analyzer) not initialized")

    settings = state.settings.analysis
    document = await state.fetcher.fetch(request.url)
    processed = strip_boilerplate(document.plain_text)
    chunks = chunk_text(processed, settings.max_chunk_size, settings.min_chunk_size)

    analysis = await state.analyzer.analyze(chunks, request.document_type)
    risk_scores = score(analysis)

    return AnalysisResult(
        id=result_id(request.url),
        url=request.url,
        document_type=request.document_type,
        content_length=len(document.plain_text),
        processed_length=len(processed),
        chunks_analyzed=len(chunks),
        analysis=analysis,
        risk_scores=risk_scores,
        timestamp=int(time.time() * 1000),
        version=__version__,
    )


async def handle(body: Any, client_id: str, state: AppState) -> dict:
    """Handle an analyze call."""
    log = structlog.get_logger().bind(handler="analyze", client_id=client_id)

    request = parse_request(body)
    log = log.bind(url=request.url, document_type=request.document_type)
    log.info("handler_called")

    if state.rate_limiter is None or state.cache is None:
        raise RuntimeError("Admission components (rate limiter, cache) not initialized")

    state.rate_limiter.admit(client_id)

    cached_entry = await state.cache.get(request.url)
    if cached_entry is not None:
        log.info("cache_hit")
        return {
            "success": True,
            "result": cached_entry.value,
            "cached": True,
            "timestamp": cached_entry.created_at_ms,
        }

    log.info("cache_miss_analyzing")
    result = await run_analysis(request, state)
    value = result.model_dump(mode="json", by_alias=True)

    # Caching is best-effort: the fresh result is returned either way
    try:
        await state.cache.put(
            request.url, value, ttl_seconds=state.settings.cache.ttl_minutes * 60
        )
    except StorageError:
        log.warning("cache_write_error", exc_info=True)

    log.info(
        "analysis_returned",
        overall=result.risk_scores.overall,
        chunks=result.chunks_analyzed,
        degraded_chunks=result.analysis.degraded_chunks,
    )
    return {
        "success": True,
        "result": value,
        "cached": False,
        "timestamp": int(time.time() * 1000),
    }
