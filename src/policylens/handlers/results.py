"""Handler for GET /api/results: cached analyses by result id or source URL."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from policylens.errors import ErrorCode, PolicyLensError
from policylens.validation import validate_policy_url

if TYPE_CHECKING:
    from collections.abc import Mapping

    from policylens.models.cache import CacheEntry
    from policylens.state import AppState


async def handle(params: Mapping[str, str], state: AppState) -> dict:
    result_id = params.get("id") or ""
    result_url = params.get("url") or ""
    log = structlog.get_logger().bind(handler="results", id=result_id or None)

    if not result_id and not result_url:
        raise PolicyLensError(
            code=ErrorCode.INVALID_REQUEST,
            message="Either result ID or URL parameter is required",
            suggestion="Call /api/results?url=<policy url> or ?id=<result id>.",
        )

    if state.cache is None:
        raise RuntimeError("Cache not initialized")

    entry: CacheEntry | None = None
    if result_url:
        entry = await state.cache.get(validate_policy_url(result_url))
    if entry is None and result_id:
        entry = await state.cache.find(lambda e: e.value.get("id") == result_id)

    if entry is None:
        log.info("results_miss", url=result_url or None)
        raise PolicyLensError(
            code=ErrorCode.NOT_FOUND,
            message="Result not found in cache",
            suggestion="The analysis may have expired. Run /api/analyze again.",
            recoverable=True,
        )

    log.info("results_hit", url=entry.key)
    return {
        "success": True,
        "result": entry.value,
        "timestamp": entry.created_at_ms,
        "expiresAt": entry.expires_at_ms,
    }
