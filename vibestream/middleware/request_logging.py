"""Request identifiers and structured request logging."""

from __future__ import annotations

import time
from typing import Any
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from vibestream.logging import get_logger
from vibestream.logging_events import log_event


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Ensure each request carries a request identifier."""

    def __init__(self, app: ASGIApp, *, header_name: str = "X-Request-ID") -> None:
        super().__init__(app)
        self._header_name = header_name

    async def dispatch(  # type: ignore[override]
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        incoming = request.headers.get(self._header_name, "").strip()
        request_id = incoming or str(uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        if self._header_name not in response.headers:
            response.headers[self._header_name] = request_id
        return response


class APILoggingMiddleware(BaseHTTPMiddleware):
    """Emit one ``api.request`` event per handled request."""

    def __init__(self, app: ASGIApp, *, component: str = "api") -> None:
        super().__init__(app)
        self._logger = get_logger(__name__)
        self._component = component

    async def dispatch(  # type: ignore[override]
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        start = time.perf_counter()
        status_code = 500
        error: Exception | None = None
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        except Exception as exc:
            error = exc
            raise
        finally:
            payload: dict[str, Any] = {
                "component": self._component,
                "status": "ok" if status_code < 400 else "error",
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "duration_ms": round((time.perf_counter() - start) * 1000, 3),
                "entity_id": getattr(request.state, "request_id", None),
            }
            if error is not None:
                payload["error"] = error.__class__.__name__
            log_event(self._logger, "api.request", **payload)


__all__ = ["APILoggingMiddleware", "RequestIDMiddleware"]
