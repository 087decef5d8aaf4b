"""Application factory for the stream resolution API."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from vibestream import __version__
from vibestream.config import AppConfig, resolve_app_port
from vibestream.dependencies import get_app_config
from vibestream.integrations.health import ProviderHealthMonitor
from vibestream.integrations.registry import ProviderRegistry
from vibestream.logging import configure_logging, get_logger
from vibestream.middleware import install_middleware
from vibestream.routers import providers_router, streams_router
from vibestream.services.resolver import StreamResolver

logger = get_logger(__name__)

_APP_LISTEN_HOST = "0.0.0.0"


def create_app(
    config: AppConfig | None = None,
    *,
    registry: ProviderRegistry | None = None,
    resolver: StreamResolver | None = None,
) -> FastAPI:
    """Wire configuration, adapters and the resolver into a FastAPI app.

    ``registry`` and ``resolver`` may be supplied to run the routes against
    prepared components instead of live providers.
    """

    app_config = config or get_app_config()
    provider_registry = registry or ProviderRegistry(config=app_config)
    stream_resolver = resolver or StreamResolver.from_config(
        app_config, provider_registry.providers()
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(app_config.logging.level, app_config.logging.log_file)
        logger.info(
            "wiring_summary providers=%s race_top_two=%s",
            list(stream_resolver.provider_names),
            app_config.resolver.race_top_two,
            extra={
                "event": "wiring_summary",
                "providers": list(stream_resolver.provider_names),
                "priorities": {
                    "search": list(app_config.resolver.priorities.search),
                    "trending": list(app_config.resolver.priorities.trending),
                    "playlist": list(app_config.resolver.priorities.playlist),
                    "stream": list(app_config.resolver.priorities.stream),
                },
            },
        )
        try:
            yield
        finally:
            try:
                await provider_registry.shutdown()
            except Exception:
                logger.exception("Failed to shutdown provider registry")
            logger.info("Stream resolver stopped")

    app = FastAPI(title="Vibestream", version=__version__, lifespan=lifespan)
    app.state.config = app_config
    app.state.provider_registry = provider_registry
    app.state.resolver = stream_resolver
    app.state.health_monitor = ProviderHealthMonitor(provider_registry, stream_resolver.state)

    install_middleware(app)
    app.include_router(streams_router)
    app.include_router(providers_router)
    return app


def main() -> None:
    import uvicorn

    uvicorn.run(create_app(), host=_APP_LISTEN_HOST, port=resolve_app_port())


if __name__ == "__main__":  # pragma: no cover
    main()


__all__ = ["create_app", "main"]
