from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any

from vibestream.config import PriorityConfig, load_config
from vibestream.integrations.contracts import (
    FailureKind,
    ProviderResult,
    QualityTier,
    StreamCandidate,
    Track,
)
from vibestream.services.cache import ResolverCache
from vibestream.services.resolver import StreamResolver
from vibestream.services.state import ResolverState
from vibestream.services.stream_selector import StreamSelector


class StubClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.value = start

    def advance(self, seconds: float) -> None:
        self.value += seconds

    def __call__(self) -> float:
        return self.value


Scripted = ProviderResult[Any] | Sequence[ProviderResult[Any]] | None


class StubProvider:
    """Provider returning scripted results and recording every call.

    A sequence of results is consumed one per call; the last one repeats.
    """

    def __init__(
        self,
        name: str,
        *,
        search: Scripted = None,
        trending: Scripted = None,
        playlist: Scripted = None,
        stream: Scripted = None,
        delay: float = 0.0,
    ) -> None:
        self.name = name
        self._scripts: dict[str, list[ProviderResult[Any]]] = {}
        for operation, script in (
            ("search", search),
            ("trending", trending),
            ("get_playlist", playlist),
            ("get_stream", stream),
        ):
            if script is None:
                self._scripts[operation] = [ProviderResult.empty(name)]
            elif isinstance(script, ProviderResult):
                self._scripts[operation] = [script]
            else:
                self._scripts[operation] = list(script)
        self.delay = delay
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.cancelled = False

    def count(self, operation: str | None = None) -> int:
        if operation is None:
            return len(self.calls)
        return sum(1 for name, _ in self.calls if name == operation)

    async def _respond(self, operation: str, *args: Any) -> ProviderResult[Any]:
        self.calls.append((operation, args))
        if self.delay:
            try:
                await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        script = self._scripts[operation]
        if len(script) > 1:
            return script.pop(0)
        return script[0]

    async def search(self, query: str, limit: int) -> ProviderResult[Track]:
        return await self._respond("search", query, limit)

    async def trending(self, limit: int) -> ProviderResult[Track]:
        return await self._respond("trending", limit)

    async def get_playlist(self, playlist_id: str, limit: int) -> ProviderResult[Track]:
        return await self._respond("get_playlist", playlist_id, limit)

    async def get_stream(
        self, track_id: str, quality_hint: QualityTier | None = None
    ) -> ProviderResult[StreamCandidate]:
        return await self._respond("get_stream", track_id, quality_hint)

    async def check_health(self) -> dict[str, Any]:
        return {"status": "ok", "details": {}}


class StubRegistry:
    """Registry double exposing prepared providers to the app factory."""

    def __init__(self, *providers: StubProvider) -> None:
        self._providers = {provider.name: provider for provider in providers}
        self.shutdown_calls = 0

    def providers(self) -> dict[str, StubProvider]:
        return dict(self._providers)

    def get_provider(self, name: str) -> StubProvider:
        try:
            return self._providers[name]
        except KeyError:
            raise KeyError(f"Provider {name!r} is not enabled") from None

    async def shutdown(self) -> None:
        self.shutdown_calls += 1


def make_track(track_id: str, source: str, *, title: str | None = None) -> Track:
    return Track(
        id=track_id,
        title=title or f"Song {track_id}",
        artist="Artist",
        source=source,
        duration=200,
    )


def tracks_result(source: str, *ids: str) -> ProviderResult[Track]:
    return ProviderResult.success(source, [make_track(item, source) for item in ids])


def make_candidate(
    bitrate: int | None,
    *,
    source: str = "piped",
    mime_type: str | None = "audio/webm",
    codec: str | None = "opus",
    url: str | None = None,
    expires_at: float | None = None,
) -> StreamCandidate:
    return StreamCandidate(
        url=url if url is not None else f"https://cdn.example/{source}/{bitrate}",
        mime_type=mime_type,
        source=source,
        bitrate=bitrate,
        codec=codec,
        expires_at=expires_at,
    )


def failure(source: str, kind: FailureKind, *, retry_after_ms: int | None = None) -> ProviderResult[Any]:
    return ProviderResult.failed(source, kind, f"{source} failed", retry_after_ms=retry_after_ms)


def build_resolver(
    providers: Sequence[StubProvider],
    *,
    clock: StubClock,
    race_top_two: bool = False,
    failure_threshold: int = 3,
    max_limit: int = 50,
) -> StreamResolver:
    config = load_config({})
    order = tuple(provider.name for provider in providers)
    priorities = PriorityConfig(search=order, trending=order, playlist=order, stream=order)
    return StreamResolver(
        providers={provider.name: provider for provider in providers},
        priorities=priorities,
        cache=ResolverCache(max_items=64, default_ttl=600, time_func=clock),
        state=ResolverState(
            failure_threshold=failure_threshold,
            window_s=120,
            interval_s=60,
            rate_limit_s=300,
            time_func=clock,
        ),
        cache_config=config.cache,
        selector=StreamSelector.from_config(config.selector),
        max_limit=max_limit,
        race_top_two=race_top_two,
        time_func=clock,
    )
