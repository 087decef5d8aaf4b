"""Registry building provider adapters from configuration."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Mapping

import httpx

from vibestream.config import AppConfig, canonical_name
from vibestream.integrations.base import ProviderAdapter
from vibestream.integrations.innertube_adapter import InnertubeAdapter
from vibestream.integrations.invidious_adapter import InvidiousAdapter
from vibestream.integrations.piped_adapter import PipedAdapter
from vibestream.integrations.youtube_data_adapter import YouTubeDataAdapter
from vibestream.integrations.ytdlp_adapter import ProcessRunner, YtDlpAdapter
from vibestream.logging import get_logger

logger = get_logger(__name__)


_ShutdownCallback = Callable[[], Awaitable[None] | None]


class _AdapterShutdownManager:
    """Run adapter close callbacks once, in registration order."""

    def __init__(self) -> None:
        self._callbacks: list[tuple[str, _ShutdownCallback]] = []
        self._shutdown_started = False

    def register(self, provider: str, callback: _ShutdownCallback) -> None:
        if self._shutdown_started:
            logger.warning(
                "Late registration of provider shutdown callback ignored",
                extra={"event": "provider.shutdown.late_registration", "provider": provider},
            )
            return
        self._callbacks.append((provider, callback))

    async def shutdown(self) -> None:
        if self._shutdown_started:
            return
        self._shutdown_started = True
        try:
            for provider, callback in self._callbacks:
                try:
                    result = callback()
                    if inspect.isawaitable(result):
                        await result
                except Exception:
                    logger.exception(
                        "Error while shutting down provider adapter",
                        extra={"event": "provider.shutdown.error", "provider": provider},
                    )
        finally:
            self._callbacks.clear()


class ProviderRegistry:
    """Factory resolving enabled provider adapters by name."""

    def __init__(
        self,
        *,
        config: AppConfig,
        http_client: httpx.AsyncClient | None = None,
        process_runner: ProcessRunner | None = None,
    ) -> None:
        self._config = config
        self._http_client = http_client
        self._process_runner = process_runner
        self._providers: dict[str, ProviderAdapter] = {}
        self._initialised = False
        self._shutdown_manager = _AdapterShutdownManager()

    @property
    def enabled_names(self) -> tuple[str, ...]:
        return self._config.integrations.enabled

    def initialise(self) -> None:
        if self._initialised:
            return
        for name in self.enabled_names:
            canonical = canonical_name(name)
            if canonical in self._providers:
                continue
            provider = self._build_provider(canonical)
            if provider is None:
                continue
            self._providers[canonical] = provider
            self._register_shutdown_callback(provider)
        self._initialised = True
        logger.info(
            "Provider registry initialised with %s",
            ", ".join(self._providers) or "no providers",
            extra={"event": "provider.registry.initialised"},
        )

    def _build_provider(self, name: str) -> ProviderAdapter | None:
        config = self._config
        timeout_ms = config.integrations.timeout_for(name)
        if name == "youtube":
            return YouTubeDataAdapter(
                api_key=config.youtube.api_key,
                region=config.youtube.region,
                base_url=config.youtube.base_url,
                timeout_ms=timeout_ms,
                client=self._http_client,
            )
        if name == "piped":
            return PipedAdapter(
                instances=config.piped.instances,
                region=config.piped.region,
                timeout_ms=timeout_ms,
                client=self._http_client,
            )
        if name == "invidious":
            return InvidiousAdapter(
                instances=config.invidious.instances,
                region=config.invidious.region,
                timeout_ms=timeout_ms,
                client=self._http_client,
            )
        if name == "innertube":
            return InnertubeAdapter(
                api_key=config.innertube.api_key,
                music_api_key=config.innertube.music_api_key,
                client_version=config.innertube.client_version,
                music_client_version=config.innertube.music_client_version,
                timeout_ms=timeout_ms,
                client=self._http_client,
            )
        if name == "ytdlp":
            return YtDlpAdapter(
                binary=config.ytdlp.binary,
                trending_query=config.ytdlp.trending_query,
                timeout_ms=timeout_ms,
                runner=self._process_runner,
            )
        logger.warning("Unknown provider %r ignored", name)
        return None

    def providers(self) -> Mapping[str, ProviderAdapter]:
        if not self._initialised:
            self.initialise()
        return dict(self._providers)

    def get_provider(self, name: str) -> ProviderAdapter:
        if not self._initialised:
            self.initialise()
        provider = self._providers.get(canonical_name(name))
        if provider is None:
            raise KeyError(f"Provider {name!r} is not enabled")
        return provider

    async def shutdown(self) -> None:
        """Close all registered providers, ignoring repeated calls."""

        await self._shutdown_manager.shutdown()

    def _register_shutdown_callback(self, provider: ProviderAdapter) -> None:
        close_callable = getattr(provider, "aclose", None)
        if close_callable is None or not callable(close_callable):
            return
        self._shutdown_manager.register(provider.name, close_callable)


__all__ = ["ProviderRegistry", "canonical_name"]
