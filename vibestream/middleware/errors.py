"""Global exception handling for the public API."""

from __future__ import annotations

import math
from typing import Any, Mapping

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from vibestream.errors import (
    AppError,
    DependencyError,
    ErrorCode,
    InternalServerError,
    NotFoundError,
    RateLimitedError,
    ValidationAppError,
    to_response,
)
from vibestream.integrations.contracts import FailureKind
from vibestream.logging import get_logger
from vibestream.services.resolver import (
    AllProvidersExhaustedError,
    InvalidRequestError,
    ResolverError,
)

_logger = get_logger(__name__)

_STATUS_CODES: Mapping[int, ErrorCode] = {
    status.HTTP_400_BAD_REQUEST: ErrorCode.VALIDATION_ERROR,
    status.HTTP_404_NOT_FOUND: ErrorCode.NOT_FOUND,
    status.HTTP_405_METHOD_NOT_ALLOWED: ErrorCode.VALIDATION_ERROR,
    status.HTTP_429_TOO_MANY_REQUESTS: ErrorCode.RATE_LIMITED,
    502: ErrorCode.DEPENDENCY_ERROR,
    503: ErrorCode.DEPENDENCY_ERROR,
    504: ErrorCode.DEPENDENCY_ERROR,
}


def _format_validation_field(raw_loc: list[Any]) -> str:
    location: list[str] = [str(part) for part in raw_loc]
    if location and location[0] in {"body", "query", "path", "header", "cookie"}:
        location = location[1:]
    return ".".join(location) if location else ""


def resolver_error_to_app_error(exc: ResolverError) -> AppError:
    """Translate a resolver failure into the API error it is reported as."""

    if isinstance(exc, InvalidRequestError):
        return ValidationAppError(str(exc))
    if isinstance(exc, AllProvidersExhaustedError):
        meta = {
            "operation": exc.operation,
            "kind": exc.last_error_kind.value,
            "attempts": [attempt.as_dict() for attempt in exc.attempts],
        }
        if exc.last_error_kind is FailureKind.NOT_FOUND:
            return NotFoundError("No provider returned a result.", meta=meta)
        if exc.last_error_kind is FailureKind.RATE_LIMITED:
            retry_after = exc.retry_after_s
            return RateLimitedError(
                "All providers are rate limited.",
                retry_after_s=math.ceil(retry_after) if retry_after is not None else None,
                meta=meta,
            )
        return DependencyError("All providers failed.", meta=meta)
    return InternalServerError()


async def _handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields: list[dict[str, str]] = []
    for error in exc.errors():
        raw_loc = error.get("loc", [])
        components = list(raw_loc) if isinstance(raw_loc, (list, tuple)) else [raw_loc]
        location = _format_validation_field(components)
        fields.append({"name": location or "?", "message": error.get("msg", "Invalid input.")})
    return to_response(
        message="Request validation failed.",
        code=ErrorCode.VALIDATION_ERROR,
        status_code=422,
        request_path=request.url.path,
        method=request.method,
        meta={"fields": fields} if fields else None,
    )


async def _handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    status_code = exc.status_code or status.HTTP_500_INTERNAL_SERVER_ERROR
    code = _STATUS_CODES.get(status_code, ErrorCode.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) and exc.detail.strip() else "Request failed."
    return to_response(
        message=message,
        code=code,
        status_code=status_code,
        request_path=request.url.path,
        method=request.method,
        headers=exc.headers,
    )


async def _handle_resolver_error(request: Request, exc: ResolverError) -> JSONResponse:
    error = resolver_error_to_app_error(exc)
    return error.as_response(request_path=request.url.path, method=request.method)


async def _handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    return exc.as_response(request_path=request.url.path, method=request.method)


async def _handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    _logger.exception("Unhandled application error", exc_info=exc)
    error = InternalServerError()
    return error.as_response(request_path=request.url.path, method=request.method)


def setup_exception_handlers(app: FastAPI) -> None:
    """Register the canonical exception handlers for the API."""

    app.add_exception_handler(RequestValidationError, _handle_request_validation)
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)
    app.add_exception_handler(ResolverError, _handle_resolver_error)
    app.add_exception_handler(AppError, _handle_app_error)
    app.add_exception_handler(Exception, _handle_unexpected_error)


__all__ = ["resolver_error_to_app_error", "setup_exception_handlers"]
