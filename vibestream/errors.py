"""Error envelope shared by every HTTP route."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping, MutableMapping
from enum import Enum
from typing import Any
from uuid import uuid4

from fastapi import status
from fastapi.responses import JSONResponse

from vibestream.logging import get_logger


class ErrorCode(str, Enum):
    """Application level error codes exposed via the public API."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMITED = "RATE_LIMITED"
    DEPENDENCY_ERROR = "DEPENDENCY_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


_logger = get_logger(__name__)

_DEBUG_DETAILS = (os.getenv("ERRORS_DEBUG_DETAILS") or "").strip().lower() in {
    "1",
    "true",
    "yes",
    "on",
}


class AppError(Exception):
    """Base exception for API errors rendered with the standard envelope."""

    __slots__ = ("message", "code", "http_status", "meta", "headers")

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        meta: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.http_status = http_status
        self.meta = meta
        self.headers = headers

    def as_response(self, *, request_path: str, method: str) -> JSONResponse:
        return to_response(
            message=self.message,
            code=self.code,
            status_code=self.http_status,
            request_path=request_path,
            method=method,
            meta=self.meta,
            headers=self.headers,
        )


class ValidationAppError(AppError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        meta: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code=ErrorCode.VALIDATION_ERROR,
            http_status=status_code,
            meta=meta,
        )


class NotFoundError(AppError):
    def __init__(
        self, message: str = "Resource not found.", *, meta: Mapping[str, Any] | None = None
    ) -> None:
        super().__init__(
            message=message,
            code=ErrorCode.NOT_FOUND,
            http_status=status.HTTP_404_NOT_FOUND,
            meta=meta,
        )


class RateLimitedError(AppError):
    """Every provider that could answer is currently throttled."""

    def __init__(
        self,
        message: str = "Too many requests.",
        *,
        retry_after_s: int | None = None,
        meta: Mapping[str, Any] | None = None,
    ) -> None:
        payload: dict[str, Any] = dict(meta or {})
        headers: dict[str, str] | None = None
        if retry_after_s is not None:
            payload["retry_after_ms"] = max(0, retry_after_s) * 1000
            headers = {"Retry-After": str(max(0, retry_after_s))}
        super().__init__(
            message=message,
            code=ErrorCode.RATE_LIMITED,
            http_status=status.HTTP_429_TOO_MANY_REQUESTS,
            meta=payload or None,
            headers=headers,
        )


class DependencyError(AppError):
    def __init__(
        self,
        message: str = "Upstream service is unavailable.",
        *,
        status_code: int = status.HTTP_503_SERVICE_UNAVAILABLE,
        meta: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code=ErrorCode.DEPENDENCY_ERROR,
            http_status=status_code,
            meta=meta,
        )


class InternalServerError(AppError):
    def __init__(self, message: str = "An unexpected error occurred.") -> None:
        super().__init__(
            message=message,
            code=ErrorCode.INTERNAL_ERROR,
            http_status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )


def _log_level_for_status(status_code: int) -> int:
    if status_code >= 500 and status_code not in {502, 503, 504}:
        return logging.ERROR
    if status_code in {status.HTTP_429_TOO_MANY_REQUESTS, 502, 503, 504}:
        return logging.WARNING
    return logging.INFO


def to_response(
    *,
    message: str,
    code: ErrorCode,
    status_code: int,
    request_path: str,
    method: str,
    meta: Mapping[str, Any] | None = None,
    headers: Mapping[str, str] | None = None,
) -> JSONResponse:
    """Create an error response with the standard envelope."""

    debug_id = uuid4().hex
    safe_meta = dict(meta) if meta is not None else None
    if _DEBUG_DETAILS:
        safe_meta = safe_meta or {}
        safe_meta.setdefault("debug_id", debug_id)

    payload: MutableMapping[str, Any] = {
        "ok": False,
        "data": None,
        "error": {"code": code.value, "message": message},
    }
    if safe_meta:
        payload["error"]["meta"] = safe_meta

    response = JSONResponse(status_code=status_code, content=payload)
    response.headers["X-Debug-Id"] = debug_id
    for name, value in (headers or {}).items():
        response.headers[name] = value

    _logger.log(
        _log_level_for_status(status_code),
        "API request failed",
        extra={
            "event": "api.error",
            "code": code.value,
            "status": status_code,
            "path": request_path,
            "method": method,
            "debug_id": debug_id,
        },
    )
    return response


__all__ = [
    "AppError",
    "DependencyError",
    "ErrorCode",
    "InternalServerError",
    "NotFoundError",
    "RateLimitedError",
    "ValidationAppError",
    "to_response",
]
