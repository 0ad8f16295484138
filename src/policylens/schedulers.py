"""Background maintenance coroutine: periodic bulk cache sweep."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from policylens.state import AppState

log = structlog.get_logger()


async def run_maintenance_once(state: AppState) -> None:
    """Sweep cache entries older than the configured max age and prune rate windows."""
    max_age = state.settings.cache.cleanup_max_age_minutes
    if state.cache is not None:
        await state.cache.sweep(max_age)
    if state.rate_limiter is not None:
        state.rate_limiter.sweep()


async def run_cache_cleanup_scheduler(state: AppState) -> None:
    """Repeat maintenance every ``cleanup_interval_minutes`` until cancelled."""
    interval_seconds = state.settings.cache.cleanup_interval_minutes * 60

    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await run_maintenance_once(state)
        except Exception:
            log.warning("maintenance_scheduler_error", exc_info=True)
