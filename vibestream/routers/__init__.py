"""HTTP routers exposed by the application."""

from .providers import router as providers_router
from .streams import router as streams_router

__all__ = ["providers_router", "streams_router"]
