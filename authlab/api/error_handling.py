from __future__ import annotations

from datetime import datetime, timezone
from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from authlab.api.schemas import ErrorResponse
from authlab.logging import get_logger
from authlab.service.errors import (
    AuthenticationError,
    AuthorizationDeniedError,
    ServiceError,
)

logger = get_logger(__name__)

# Client-facing messages; exception text never reaches the response body
_MESSAGES = {
    401: "Authentication failed: Invalid credentials provided.",
    403: "Access denied. You do not have the required permissions to access this resource.",
    500: "An unexpected error occurred. Please try again later.",
}


def _reason_phrase(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Error"


def error_response(request: Request, status_code: int, message: str) -> JSONResponse:
    """Build the structured error body shared by every failure path."""
    body = ErrorResponse(
        timestamp=datetime.now(timezone.utc),
        status=status_code,
        error=_reason_phrase(status_code),
        message=message,
        path=request.url.path,
    )
    headers = None
    if status_code == 401 and request.url.path.startswith("/actuator"):
        headers = {"WWW-Authenticate": 'Basic realm="management"'}
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json"),
        headers=headers,
    )


def service_error_response(request: Request, exc: ServiceError) -> JSONResponse:
    message = _MESSAGES.get(exc.status_code, exc.message)
    return error_response(request, exc.status_code, message)


def unexpected_error_response(request: Request, exc: Exception) -> JSONResponse:
    """Log an unexpected failure and answer with the generic 500 body."""
    logger.exception(
        "unhandled_exception",
        exc_info=exc,
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        error=str(exc),
    )
    return error_response(request, 500, _MESSAGES[500])


def register_exception_handlers(app: FastAPI) -> None:
    """Install the handlers that turn every error into the structured body."""

    @app.exception_handler(AuthenticationError)
    async def handle_authentication_error(request: Request, exc: AuthenticationError):
        request.app.state.runtime.metrics.failed_logins.inc()
        logger.warning(
            "authentication_failed",
            path=request.url.path,
            method=request.method,
            error=exc.message,
        )
        return service_error_response(request, exc)

    @app.exception_handler(AuthorizationDeniedError)
    async def handle_authorization_denied(request: Request, exc: AuthorizationDeniedError):
        logger.warning(
            "authorization_denied",
            path=request.url.path,
            method=request.method,
            error=exc.message,
        )
        return service_error_response(request, exc)

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_type=type(exc).__name__,
            message=exc.message,
            detail=exc.detail,
        )
        return error_response(request, exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        logger.info(
            "request_validation_failed",
            path=request.url.path,
            method=request.method,
            errors=len(exc.errors()),
        )
        return error_response(request, 422, "Request body is invalid.")

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException):
        if exc.status_code >= 500:
            logger.error(
                "http_error",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
            )
        message = exc.detail if isinstance(exc.detail, str) else _reason_phrase(exc.status_code)
        return error_response(request, exc.status_code, message)

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        return unexpected_error_response(request, exc)
