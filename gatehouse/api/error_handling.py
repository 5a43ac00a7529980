from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from gatehouse.api.schemas import ErrorBody
from gatehouse.logging import get_correlation_id, get_logger
from gatehouse.service.errors import ServiceError
from gatehouse.storage.errors import ConstraintViolation

logger = get_logger(__name__)

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    # tokens and profiles must never sit in shared caches
    "Cache-Control": "no-store",
}


def apply_response_headers(response, correlation_id: str | None = None):
    """Stamp the correlation ID and security headers onto ``response``."""
    if correlation_id:
        response.headers["X-Request-ID"] = correlation_id
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


_STATUS_TO_CODE = {
    400: "validation_error",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    500: "server_error",
}


def _error_code_for_status(status_code: int) -> str:
    if status_code >= 500:
        return "server_error"
    return _STATUS_TO_CODE.get(status_code, "validation_error")


def _error_response(
    status_code: int,
    message: str,
    details: Any = None,
    code: str | None = None,
) -> JSONResponse:
    """Build the single error body shape every failure is rendered with."""
    body = ErrorBody(
        message=message,
        code=code or _error_code_for_status(status_code),
        details=details or None,
        request_id=get_correlation_id(),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True))


def _first_validation_message(errors: list[dict]) -> str:
    if not errors:
        return "Invalid request"
    first = errors[0]
    message = str(first.get("msg") or "Invalid request")
    # pydantic prefixes messages raised from validators
    if message.startswith("Value error, "):
        message = message[len("Value error, ") :]
    location = [str(part) for part in first.get("loc", ()) if part != "body"]
    if first.get("type") == "missing" and location:
        return f"{location[-1]} is required"
    return message


def register_exception_handlers(app: FastAPI) -> None:
    """Install handlers translating service, storage and validation failures."""

    @app.exception_handler(ConstraintViolation)
    async def handle_constraint_violation(request: Request, exc: ConstraintViolation):
        logger.warning(
            "constraint_violation",
            path=request.url.path,
            method=request.method,
            message=exc.message,
            detail=exc.detail,
        )
        return _error_response(400, exc.message, exc.detail, code="conflict")

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
        )
        # internal detail stays in the logs
        details = None if exc.status_code >= 500 else exc.detail
        return _error_response(exc.status_code, exc.message, details, code=exc.error_code)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = _first_validation_message(errors)
        logger.warning(
            "request_validation_failed",
            path=request.url.path,
            method=request.method,
            error_count=len(errors),
            fields=[".".join(str(p) for p in e.get("loc", ())) for e in errors],
        )
        details = [
            {"loc": [str(p) for p in e.get("loc", ())], "type": e.get("type")}
            for e in errors
        ]
        return _error_response(400, message, details, code="validation_error")

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "http error"
        if exc.status_code >= 500:
            logger.error(
                "http_error",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
                message=message,
            )
        return _error_response(exc.status_code, message)

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
        )
        # runs in ServerErrorMiddleware, outside the app's http middlewares
        response = _error_response(500, "Internal server error", code="server_error")
        return apply_response_headers(response, get_correlation_id())
