"""Handler for POST /api/detect.

Fetches the page and reports which policy phrases its markup contains.
Every failure, including upstream fetch failures, is reported as 400.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from policylens.errors import ErrorCode, PolicyLensError
from policylens.extractor import extract_text_from_html
from policylens.models.api import DetectBody
from policylens.validation import (
    is_likely_policy_content,
    match_policy_indicators,
    validate_policy_url,
)

if TYPE_CHECKING:
    from policylens.state import AppState


async def handle(body: Any, state: AppState) -> dict:
    try:
        validated = DetectBody.model_validate(body)
    except ValidationError as exc:
        raise PolicyLensError(
            code=ErrorCode.INVALID_REQUEST,
            message="Invalid request body",
            suggestion='Send a JSON object like {"url": "..."}.',
        ) from exc
    if not validated.url:
        raise PolicyLensError(
            code=ErrorCode.INVALID_REQUEST,
            message="URL is required",
            suggestion='Send a JSON object like {"url": "..."}.',
        )

    url = validate_policy_url(validated.url)
    log = structlog.get_logger().bind(handler="detect", url=url)
    log.info("handler_called")

    if state.fetcher is None:
        raise RuntimeError("Fetcher not initialized")

    try:
        page = await state.fetcher.fetch_page(url)
    except PolicyLensError as exc:
        raise PolicyLensError(
            code=exc.code,
            message=f"Unable to fetch URL: {exc.message}",
            suggestion=exc.suggestion,
            recoverable=exc.recoverable,
            status_code=400,
            upstream_status=exc.upstream_status,
        ) from exc

    if not page.is_html:
        raise PolicyLensError(
            code=ErrorCode.FETCH_FAILED,
            message="URL does not appear to be an HTML page",
            suggestion="Detection only works on HTML pages.",
            status_code=400,
        )

    indicators = match_policy_indicators(page.html)
    log.info("detect_complete", indicators=len(indicators))
    return {
        "success": True,
        "isPolicy": bool(indicators),
        "url": url,
        "contentLength": len(page.html),
        "indicators": indicators,
        "likelyPolicyContent": is_likely_policy_content(extract_text_from_html(page.html)),
    }
