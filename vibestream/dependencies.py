"""FastAPI dependency providers."""

from __future__ import annotations

from functools import lru_cache

from fastapi import Request

from vibestream.config import AppConfig, load_config
from vibestream.integrations.health import ProviderHealthMonitor
from vibestream.integrations.registry import ProviderRegistry
from vibestream.services.resolver import StreamResolver


@lru_cache
def get_app_config() -> AppConfig:
    return load_config()


def get_provider_registry(request: Request) -> ProviderRegistry:
    return request.app.state.provider_registry


def get_resolver(request: Request) -> StreamResolver:
    return request.app.state.resolver


def get_health_monitor(request: Request) -> ProviderHealthMonitor:
    monitor = getattr(request.app.state, "health_monitor", None)
    if isinstance(monitor, ProviderHealthMonitor):
        return monitor
    resolver = get_resolver(request)
    monitor = ProviderHealthMonitor(get_provider_registry(request), resolver.state)
    request.app.state.health_monitor = monitor
    return monitor


__all__ = [
    "get_app_config",
    "get_health_monitor",
    "get_provider_registry",
    "get_resolver",
]
