"""FastAPI surface for the Rejoinder pipeline."""

from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.logging_config import configure_logging
from api.middleware import (
    AuditLoggingMiddleware,
    PayloadSizeLimitMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)
from orchestrator.exceptions import (
    CaseNotFoundError,
    ClassificationError,
    DocumentConversionError,
    ExtractionError,
    InvalidPayloadError,
    LetterNotFoundError,
    ParseError,
    RejoinderError,
    RequestNotFoundError,
    RunInProgressError,
    ServiceError,
    VersionNotFoundError,
)
from orchestrator.router import configure_service, limiter
from orchestrator.router import router as pipeline_router
from orchestrator.service import PipelineService

# Configure logging first
configure_logging()

logger = logging.getLogger("rejoinder.api")

# First match wins, so subclasses go before their bases
ERROR_STATUS: tuple[tuple[type[RejoinderError], int], ...] = (
    (CaseNotFoundError, 404),
    (LetterNotFoundError, 404),
    (RequestNotFoundError, 404),
    (VersionNotFoundError, 404),
    (RunInProgressError, 409),
    (InvalidPayloadError, 422),
    (DocumentConversionError, 422),
    (ServiceError, 502),
    (ParseError, 502),
    (ExtractionError, 502),
    (ClassificationError, 502),
)


def status_for(exc: RejoinderError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the pipeline service on startup and release it on shutdown."""
    logger.info("Starting Rejoinder API")
    service = PipelineService()
    configure_service(service)
    app.state.pipeline_service = service
    logger.info(
        "Pipeline service initialized (data dir: %s, %d objection categories)",
        service.repository.root,
        len(service.taxonomy),
    )

    yield

    logger.info("Shutting down Rejoinder API")
    configure_service(None)


app = FastAPI(
    title="Rejoinder API",
    description="Turns an opponent's discovery objections into a rebuttal letter.",
    version="0.1.0",
    lifespan=lifespan,
)

# Store startup time for health checks
app.state.startup_time = time.time()

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS configuration (configurable via environment)
cors_origins = os.getenv("CORS_ORIGINS", "").split(",")
cors_origins = [origin.strip() for origin in cors_origins if origin.strip()]

if cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Response-Time-Ms"],
    )

app.add_middleware(GZipMiddleware, minimum_size=1000)

# Order matters - last added is executed first
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(AuditLoggingMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(PayloadSizeLimitMiddleware)


def _error_body(request: Request, code: int, message: object, error_type: str, **extra: object) -> dict:
    return {
        "error": {
            "code": code,
            "message": message,
            "type": error_type,
            **extra,
            "request_id": getattr(request.state, "request_id", "unknown"),
        }
    }


@app.exception_handler(RejoinderError)
async def rejoinder_exception_handler(request: Request, exc: RejoinderError) -> JSONResponse:
    """Map pipeline errors onto HTTP status codes."""
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("Request failed with %s: %s", type(exc).__name__, exc.message)
    return JSONResponse(
        status_code=status_code,
        content=_error_body(request, status_code, exc.message, type(exc).__name__, details=exc.details),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return standardized JSON error responses."""
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, exc.status_code, exc.detail, "HTTPException"),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return standardized validation error responses."""
    errors = []
    for error in exc.errors():
        location = " -> ".join(str(loc) for loc in error["loc"])
        errors.append({"field": location, "message": error["msg"]})

    return JSONResponse(
        status_code=422,
        content=_error_body(request, 422, "Validation error", "RequestValidationError", details=errors[:10]),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected errors gracefully."""
    request_id = getattr(request.state, "request_id", "unknown")
    logger.exception("Unhandled exception: %s | request_id=%s", exc, request_id)
    return JSONResponse(
        status_code=500,
        content=_error_body(request, 500, "Internal server error", "InternalError"),
    )


app.include_router(pipeline_router, tags=["rejoinder"])


@app.get("/health", tags=["system"])
async def healthcheck() -> dict[str, str]:
    """Basic health check for load balancers and monitoring."""
    return {"status": "healthy"}


@app.get("/health/live", tags=["system"])
async def liveness_probe() -> dict[str, str]:
    return {"status": "alive"}


@app.get("/health/ready", tags=["system"])
async def readiness_probe(request: Request) -> dict:
    """Readiness probe: the service is up and its data directory is writable."""
    service = getattr(request.app.state, "pipeline_service", None)
    checks: dict[str, bool] = {"pipeline": service is not None}
    if service is not None:
        checks["storage"] = os.access(service.repository.root, os.W_OK)
        checks["taxonomy"] = len(service.taxonomy) > 0

    startup_time = getattr(request.app.state, "startup_time", time.time())
    uptime_seconds = time.time() - startup_time

    return {
        "status": "ready" if all(checks.values()) else "not_ready",
        "uptime_seconds": round(uptime_seconds, 2),
        "checks": checks,
    }


def run() -> None:
    """Serve the API with uvicorn (``rejoinder-api``)."""
    import uvicorn

    uvicorn.run(app, host=os.getenv("REJOINDER_HOST", "127.0.0.1"), port=int(os.getenv("REJOINDER_PORT", "8000")))


if __name__ == "__main__":
    run()
