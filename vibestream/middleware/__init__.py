"""Application middleware registration helpers."""

from __future__ import annotations

from fastapi import FastAPI

from .errors import setup_exception_handlers
from .request_logging import APILoggingMiddleware, RequestIDMiddleware


def install_middleware(app: FastAPI) -> None:
    """Install request logging and identifiers plus the error handlers."""

    # Starlette runs the last added middleware first; the request id must exist
    # before the logging middleware reads it.
    app.add_middleware(APILoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    setup_exception_handlers(app)


__all__ = ["install_middleware", "setup_exception_handlers"]
