"""HTTP server entrypoint.

Responsibilities (and nothing more):
- Configure structlog
- Create AppState via the Starlette lifespan context manager
- Register routes and translate handler results / errors into JSON responses
- Start uvicorn
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import sys
from contextlib import asynccontextmanager, suppress
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import structlog
from starlette.applications import Starlette
from starlette.exceptions import HTTPException
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
from starlette.routing import Route

import policylens.handlers.analyze as h_analyze
import policylens.handlers.detect as h_detect
import policylens.handlers.health as h_health
import policylens.handlers.results as h_results
from policylens import __version__
from policylens.analyzer import PolicyAnalyzer
from policylens.cache import CacheStore
from policylens.config import Settings
from policylens.errors import ErrorCode, PolicyLensError
from policylens.fetcher import Fetcher, build_http_client
from policylens.inference import build_inference_client
from policylens.ratelimit import RateLimiter
from policylens.schedulers import run_cache_cleanup_scheduler
from policylens.state import AppState
from policylens.storage import MemoryStorage, SqliteStorage
from policylens.timers import AsyncioScheduler
from policylens.transport import ExtensionSecurityMiddleware, run_http_server

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable
    from typing import Any

    from starlette.requests import Request

    from policylens.protocols import StorageProtocol

log = structlog.get_logger()

AVAILABLE_ENDPOINTS: list[str] = [
    "POST /api/analyze",
    "POST /api/detect",
    "GET /api/results",
    "GET /api/health",
]


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [*shared_processors, structlog.processors.JSONRenderer()]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


async def _open_storage(settings: Settings) -> StorageProtocol:
    if settings.cache.backend == "memory":
        return MemoryStorage()

    db_path = Path(settings.cache.db_path).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(db_path))
    storage = SqliteStorage(db)
    await storage.init_db()
    return storage


async def build_state(settings: Settings) -> AppState:
    """Create every shared component. The caller owns teardown via close_state()."""
    http_client = build_http_client(settings.fetcher)
    fetcher = Fetcher(http_client, settings.fetcher)
    inference = build_inference_client(settings.inference)
    analyzer = PolicyAnalyzer(inference, settings.analysis, settings.inference)

    storage = await _open_storage(settings)
    cache_store = CacheStore(storage, AsyncioScheduler())
    cache = await cache_store.partition(settings.cache.partition)

    return AppState(
        settings=settings,
        http_client=http_client,
        fetcher=fetcher,
        inference=inference,
        analyzer=analyzer,
        storage=storage,
        cache_store=cache_store,
        cache=cache,
        rate_limiter=RateLimiter(settings.rate_limit),
    )


async def close_state(state: AppState) -> None:
    if state.cache_store is not None:
        await state.cache_store.close()
    if state.rate_limiter is not None:
        state.rate_limiter.close()
    if state.inference is not None:
        await state.inference.aclose()
    if state.http_client is not None:
        await state.http_client.aclose()
    if state.storage is not None:
        await state.storage.close()


def _make_lifespan(
    settings: Settings, injected: AppState | None
) -> Callable[[Starlette], Any]:
    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncGenerator[None, None]:
        """Create and tear down all shared resources for the server's lifetime."""
        log.info("server_starting", version=__version__, cache_backend=settings.cache.backend)

        state = injected if injected is not None else await build_state(settings)
        app.state.app_state = state
        cache_cleanup_task = asyncio.create_task(run_cache_cleanup_scheduler(state))

        log.info(
            "server_started",
            version=__version__,
            host=settings.server.host,
            port=settings.server.port,
            inference_provider=settings.inference.provider,
        )

        try:
            yield
        finally:
            cache_cleanup_task.cancel()
            with suppress(asyncio.CancelledError):
                await cache_cleanup_task
            if injected is None:
                await close_state(state)
            log.info("server_stopping")

    return lifespan


# ---------------------------------------------------------------------------
# Request plumbing
# ---------------------------------------------------------------------------


def _error_response(error: PolicyLensError) -> JSONResponse:
    headers: dict[str, str] = {}
    if error.retry_after is not None:
        headers["Retry-After"] = str(math.ceil(error.retry_after))
    return JSONResponse(error.to_dict(), status_code=error.status_code, headers=headers)


def _client_id(request: Request) -> str:
    forwarded = request.headers.get("cf-connecting-ip") or request.headers.get(
        "x-forwarded-for", ""
    )
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def _read_json(request: Request, max_body_bytes: int) -> Any:
    raw = await request.body()
    # Content-Length is checked by the middleware; chunked bodies are only measurable here
    if len(raw) > max_body_bytes:
        raise PolicyLensError(
            code=ErrorCode.PAYLOAD_TOO_LARGE,
            message="Request too large",
            suggestion=f"Keep request bodies under {max_body_bytes} bytes.",
        )
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise PolicyLensError(
            code=ErrorCode.INVALID_REQUEST,
            message="Invalid JSON body",
            suggestion="Send a well-formed JSON object.",
        ) from exc


async def _dispatch(endpoint: str, call: Callable[[], Awaitable[dict]]) -> JSONResponse:
    try:
        body = await call()
    except PolicyLensError as exc:
        log.warning(
            "request_error",
            endpoint=endpoint,
            code=exc.code,
            message=exc.message,
            recoverable=exc.recoverable,
        )
        return _error_response(exc)
    except Exception:
        log.error("request_unexpected_error", endpoint=endpoint, exc_info=True)
        return _error_response(
            PolicyLensError(
                code=ErrorCode.INTERNAL,
                message="Internal server error",
                suggestion="Try again later.",
                recoverable=True,
            )
        )
    return JSONResponse(body)


def _app_state(request: Request) -> AppState:
    return request.app.state.app_state


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


async def analyze(request: Request) -> JSONResponse:
    state = _app_state(request)

    async def call() -> dict:
        body = await _read_json(request, state.settings.server.max_body_bytes)
        return await h_analyze.handle(body, _client_id(request), state)

    return await _dispatch("analyze", call)


async def detect(request: Request) -> JSONResponse:
    state = _app_state(request)

    async def call() -> dict:
        body = await _read_json(request, state.settings.server.max_body_bytes)
        return await h_detect.handle(body, state)

    return await _dispatch("detect", call)


async def results(request: Request) -> JSONResponse:
    state = _app_state(request)
    return await _dispatch("results", lambda: h_results.handle(request.query_params, state))


async def health(request: Request) -> JSONResponse:
    body = await h_health.handle(_app_state(request))
    return JSONResponse(body, status_code=200 if body["status"] == "healthy" else 503)


async def _http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    if exc.status_code == 404:
        body = PolicyLensError(
            code=ErrorCode.NOT_FOUND,
            message="Endpoint not found",
            suggestion="Use one of the available endpoints.",
        ).to_dict()
        body["availableEndpoints"] = AVAILABLE_ENDPOINTS
        return JSONResponse(body, status_code=404)
    if exc.status_code == 405:
        return _error_response(
            PolicyLensError(code=ErrorCode.METHOD_NOT_ALLOWED, message="Method not allowed")
        )
    return JSONResponse(
        {"success": False, "error": exc.detail, "code": ErrorCode.INTERNAL},
        status_code=exc.status_code,
    )


def create_app(settings: Settings | None = None, *, state: AppState | None = None) -> Starlette:
    """Build the ASGI application.

    With ``state`` given, the app uses it instead of building its own and never
    closes it; ``app.state.app_state`` is set immediately so clients that skip
    the lifespan (httpx's ASGITransport) still see it.
    """
    if settings is None:
        settings = state.settings if state is not None else Settings()

    app = Starlette(
        routes=[
            Route("/api/analyze", analyze, methods=["POST"]),
            Route("/api/detect", detect, methods=["POST"]),
            Route("/api/results", results, methods=["GET"]),
            Route("/api/health", health, methods=["GET"]),
        ],
        middleware=[
            Middleware(
                CORSMiddleware,
                allow_origins=settings.server.allowed_origins,
                allow_methods=["GET", "POST", "OPTIONS"],
                allow_headers=["Content-Type", "X-Extension-Version"],
                max_age=86400,
            ),
            Middleware(ExtensionSecurityMiddleware, settings=settings.server),
        ],
        exception_handlers={HTTPException: _http_exception},
        lifespan=_make_lifespan(settings, state),
    )
    if state is not None:
        app.state.app_state = state
    return app


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    settings = Settings()
    _setup_logging(settings)
    run_http_server(create_app(settings), settings)


if __name__ == "__main__":
    main()
