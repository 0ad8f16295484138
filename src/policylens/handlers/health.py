"""Handler for GET /api/health. Public; never requires extension headers."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

import structlog

from policylens import __version__
from policylens.errors import StorageError

if TYPE_CHECKING:
    from policylens.state import AppState

log = structlog.get_logger()


def _inference_configured(state: AppState) -> bool:
    settings = state.settings.inference
    if state.inference is None or not settings.api_token:
        return False
    return settings.provider != "workers_ai" or bool(settings.account_id)


async def handle(state: AppState) -> dict:
    """Return the health document. ``status`` is healthy, degraded or unhealthy."""
    health: dict = {
        "status": "healthy",
        "timestamp": int(time.time() * 1000),
        "version": __version__,
        "uptimeSeconds": int(time.time() - state.started_at),
        "checks": {},
    }
    checks = health["checks"]

    try:
        if _inference_configured(state):
            checks["inference"] = "available"
        else:
            checks["inference"] = "unavailable"
            health["status"] = "degraded"

        if state.storage is None:
            checks["storage"] = "unavailable"
            health["status"] = "degraded"
        else:
            try:
                await state.storage.ping()
                checks["storage"] = "available"
            except StorageError:
                log.warning("health_storage_error", exc_info=True)
                checks["storage"] = "error"
                health["status"] = "degraded"

        if state.cache is None:
            checks["cache"] = "unavailable"
            health["status"] = "degraded"
        else:
            checks["cache"] = state.cache.stats()

        checks["environment"] = {
            "allowedOrigins": state.settings.server.allowed_origins,
            "cacheTtlMinutes": state.settings.cache.ttl_minutes,
            "rateLimit": {
                "maxRequests": state.settings.rate_limit.max_requests,
                "windowSeconds": state.settings.rate_limit.window_seconds,
            },
        }
    except Exception as exc:
        log.error("health_check_error", exc_info=True)
        health["status"] = "unhealthy"
        health["error"] = type(exc).__name__

    return health
