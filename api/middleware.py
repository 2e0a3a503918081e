"""HTTP middleware: request tracing, audit trail, upload size cap and response headers."""

from __future__ import annotations

import os
import time
import uuid
from collections.abc import Callable

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from api.logging_config import (
    get_audit_logger,
    get_performance_logger,
    get_request_logger,
)
from letter_factory.constants import MAX_DOCUMENT_BYTES

request_logger = get_request_logger()
audit_logger = get_audit_logger()
performance_logger = get_performance_logger()

# Uploads carry a document plus multipart framing
MAX_REQUEST_SIZE = MAX_DOCUMENT_BYTES + 1024 * 1024

# Streaming runs legitimately take minutes; only plain requests count as slow
SLOW_REQUEST_MS = 1000

AUDITED_PREFIXES = ("/cases", "/profile")
MUTATING_METHODS = frozenset({"POST", "PUT", "DELETE"})


def _client(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _is_event_stream(response: Response) -> bool:
    return response.headers.get("content-type", "").startswith("text/event-stream")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id and logs it with its outcome and duration.

    A caller-supplied ``X-Request-ID`` is reused so the id can be correlated
    with client-side logs; it is echoed back on the response and used in
    error bodies.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id
        route = f"{request.method} {request.url.path}"

        request_logger.info("[%s] -> %s | client=%s", request_id, route, _client(request))
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        if response.status_code >= 500:
            log = request_logger.error
        elif response.status_code >= 400:
            log = request_logger.warning
        else:
            log = request_logger.info
        log("[%s] <- %s | status=%d | %.1fms", request_id, route, response.status_code, elapsed_ms)

        if elapsed_ms > SLOW_REQUEST_MS and not _is_event_stream(response):
            performance_logger.warning("[%s] Slow request %s took %.1fms", request_id, route, elapsed_ms)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"
        return response


class AuditLoggingMiddleware(BaseHTTPMiddleware):
    """Records changes to cases and the profile, and runs that were refused."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        path = request.url.path
        if not path.startswith(AUDITED_PREFIXES):
            return response

        code = response.status_code
        if code == status.HTTP_429_TOO_MANY_REQUESTS:
            audit_logger.warning("Rate limited %s %s | client=%s", request.method, path, _client(request))
        elif code == status.HTTP_409_CONFLICT:
            audit_logger.warning("Letter busy, run refused: %s %s | client=%s", request.method, path, _client(request))
        elif code < 400 and request.method in MUTATING_METHODS:
            # Bodies are never logged: the profile carries the API key
            audit_logger.info("%s %s | status=%d | client=%s", request.method, path, code, _client(request))
        return response


class PayloadSizeLimitMiddleware(BaseHTTPMiddleware):
    """Rejects uploads whose declared size exceeds the document limit."""

    def __init__(self, app: ASGIApp, max_size: int = MAX_REQUEST_SIZE):
        super().__init__(app)
        self.max_size = max_size

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        declared = request.headers.get("content-length")
        if not declared:
            return await call_next(request)

        try:
            size = int(declared)
        except ValueError:
            audit_logger.warning("Ignoring malformed Content-Length %r | client=%s", declared, _client(request))
            return await call_next(request)

        if size <= self.max_size:
            return await call_next(request)

        audit_logger.warning(
            "Upload of %d bytes to %s refused (limit %d) | client=%s",
            size,
            request.url.path,
            self.max_size,
            _client(request),
        )
        # Raising here would bypass the app's exception handlers
        return JSONResponse(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            content={
                "error": {
                    "code": status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                    "message": f"Upload too large: documents are limited to {self.max_size // (1024 * 1024)}MB",
                    "type": "PayloadTooLarge",
                    "request_id": getattr(request.state, "request_id", "unknown"),
                }
            },
        )


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds hardening headers; case data must never be cached by intermediaries."""

    HEADERS = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Referrer-Policy": "no-referrer",
        "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'; form-action 'none'",
        "Pragma": "no-cache",
    }

    def __init__(self, app: ASGIApp, enable_hsts: bool | None = None):
        super().__init__(app)
        if enable_hsts is None:
            enable_hsts = os.getenv("PRODUCTION_MODE", "").lower() == "true"
        self.enable_hsts = enable_hsts

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        response.headers.update(self.HEADERS)

        # Event streams set their own cache policy
        response.headers.setdefault("Cache-Control", "no-store, no-cache, must-revalidate, private")

        if self.enable_hsts:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response
