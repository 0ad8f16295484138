"""HTTP transport and request-gating middleware."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
import uvicorn
from starlette.datastructures import Headers
from starlette.responses import JSONResponse, Response

from policylens.errors import ErrorCode, PolicyLensError
from policylens.validation import validate_extension_request

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Receive, Scope, Send

    from policylens.config import ServerSettings, Settings

log = structlog.get_logger()

ALLOWED_METHODS: frozenset[str] = frozenset({"GET", "HEAD", "POST"})
PUBLIC_PATHS: frozenset[str] = frozenset({"/api/health"})


def _client_ip(scope: Scope, headers: Headers) -> str:
    forwarded = headers.get("cf-connecting-ip") or headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    client = scope.get("client")
    return client[0] if client else "unknown"


class ExtensionSecurityMiddleware:
    """Pure ASGI middleware gating every non-public HTTP request.

    Checks, in order:
    1. Method: bare OPTIONS gets an empty 204; anything but GET/HEAD/POST is 405.
    2. POST bodies: ``application/json`` content type (400) within the size limit (413).
    3. Extension origin and ``X-Extension-Version`` header (403, fails closed).

    CORS preflights never reach this middleware; CORSMiddleware answers them.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        settings: ServerSettings,
        public_paths: frozenset[str] = PUBLIC_PATHS,
    ) -> None:
        self.app = app
        self.settings = settings
        self.public_paths = public_paths

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http":
            rejection = self._check(scope)
            if rejection is not None:
                await rejection(scope, receive, send)
                return

        await self.app(scope, receive, send)

    def _check(self, scope: Scope) -> Response | None:
        method = scope["method"]
        if method == "OPTIONS":
            return Response(status_code=204)
        if method not in ALLOWED_METHODS:
            return _reject(ErrorCode.METHOD_NOT_ALLOWED, "Method not allowed")

        if scope["path"] in self.public_paths:
            return None

        headers = Headers(scope=scope)

        if method == "POST":
            content_type = headers.get("content-type", "")
            if "application/json" not in content_type.lower():
                return _reject(ErrorCode.INVALID_REQUEST, "Content-Type must be application/json")
            try:
                content_length = int(headers.get("content-length", "0"))
            except ValueError:
                return _reject(ErrorCode.INVALID_REQUEST, "Invalid Content-Length header")
            if content_length > self.settings.max_body_bytes:
                return _reject(ErrorCode.PAYLOAD_TOO_LARGE, "Request too large")

        if self.settings.require_extension_header:
            reason = validate_extension_request(headers)
            if reason is not None:
                log.info(
                    "extension_validation_failed",
                    client_ip=_client_ip(scope, headers),
                    path=scope["path"],
                    reason=reason,
                )
                return _reject(ErrorCode.FORBIDDEN, reason)

        return None


def _reject(code: ErrorCode, message: str) -> JSONResponse:
    error = PolicyLensError(code=code, message=message)
    return JSONResponse(error.to_dict(), status_code=error.status_code)


def run_http_server(app: ASGIApp, settings: Settings) -> None:
    """Start the API server under uvicorn."""
    http_log = log.bind(transport="http")
    if not settings.server.require_extension_header:
        http_log.warning("extension_header_check_disabled")

    uvicorn.run(
        app,
        host=settings.server.host,
        port=settings.server.port,
        log_config=None,  # Disable uvicorn's default logging; structlog handles it
    )
