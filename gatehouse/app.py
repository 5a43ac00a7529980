from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gatehouse.api.error_handling import apply_response_headers, register_exception_handlers
from gatehouse.api.routes import router
from gatehouse.config import get_settings
from gatehouse.logging import get_logger, set_correlation_id

logger = get_logger(__name__)

__version__ = "0.1.0"

_settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the runtime on startup; flush pending OTP mail on shutdown."""
    from gatehouse.service.runtime import get_runtime

    runtime = get_runtime()
    logger.info("app_started", version=__version__)

    yield

    try:
        await runtime.shutdown()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error_type=type(exc).__name__, error=str(exc))


app = FastAPI(title="Gatehouse", version=__version__, lifespan=lifespan)


app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_allow_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
    max_age=3600,
)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag each request with a correlation ID.

    The ID comes from ``X-Request-ID`` when the client sends one and is echoed
    back in the response header and in error bodies. Security headers are
    stamped here as well; the 500 handler applies the same set itself.
    """
    client_request_id = request.headers.get("X-Request-ID")
    correlation_id = set_correlation_id(client_request_id[:128] if client_request_id else None)
    response = await call_next(request)
    return apply_response_headers(response, correlation_id)


register_exception_handlers(app)
app.include_router(router)


@app.get("/healthz", tags=["ops"])
async def health() -> Dict[str, Any]:
    return {"status": "ok", "version": __version__}
