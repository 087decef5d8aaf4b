"""Fallback orchestration across the configured stream providers.

The resolver walks a static priority list per operation, skips providers that
are cooling down, records failures in :class:`ResolverState` and caches the
first usable answer under a request fingerprint.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Any

from vibestream.config import (
    DEFAULT_MAX_LIMIT,
    AppConfig,
    CacheConfig,
    PriorityConfig,
    canonical_name,
)
from vibestream.integrations.contracts import (
    FailureKind,
    ProviderResult,
    QualityTier,
    StreamCandidate,
    StreamProvider,
    Track,
    TrackReference,
)
from vibestream.logging import get_logger
from vibestream.logging_events import log_event
from vibestream.services.cache import (
    ResolverCache,
    TimeProvider,
    playlist_fingerprint,
    search_fingerprint,
    stream_fingerprint,
    trending_fingerprint,
)
from vibestream.services.state import ResolverState
from vibestream.services.stream_selector import StreamSelectionError, StreamSelector

logger = get_logger(__name__)

DEFAULT_REFERENCE_SEARCH_LIMIT = 5


class ResolverError(RuntimeError):
    """Base class for resolver level failures."""


class InvalidRequestError(ResolverError):
    """Raised when a caller supplied an unusable query, identifier or limit."""


@dataclass(slots=True, frozen=True)
class ProviderAttempt:
    """Outcome of one provider during a single resolution."""

    provider: str
    status: str
    kind: FailureKind | None = None
    message: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "status": self.status,
            "kind": self.kind.value if self.kind else None,
            "message": self.message,
        }


class AllProvidersExhaustedError(ResolverError):
    """Every provider in the priority list was skipped, empty or failed."""

    def __init__(
        self,
        operation: str,
        *,
        attempts: Sequence[ProviderAttempt],
        last_error_kind: FailureKind,
        retry_after_s: float | None = None,
    ) -> None:
        self.operation = operation
        self.attempts = tuple(attempts)
        self.last_error_kind = last_error_kind
        self.retry_after_s = retry_after_s
        tried = ", ".join(f"{item.provider}={item.status}" for item in self.attempts) or "none"
        super().__init__(
            f"All providers exhausted for {operation} ({last_error_kind.value}); tried: {tried}"
        )


@dataclass(slots=True, frozen=True)
class TrackListResult:
    tracks: tuple[Track, ...]
    source: str
    cached: bool = False


@dataclass(slots=True, frozen=True)
class ResolvedStream:
    """Selected candidate together with the tier it was selected for."""

    candidate: StreamCandidate
    tier: QualityTier


@dataclass(slots=True, frozen=True)
class StreamResult:
    url: str
    mime_type: str | None
    bitrate: int | None
    codec: str | None
    title: str | None
    duration: int | None
    source: str
    quality_label: str | None = None
    expires_at: float | None = None
    tier: QualityTier = QualityTier.AUTO
    cached: bool = False

    @classmethod
    def from_resolved(cls, resolved: ResolvedStream, *, cached: bool) -> "StreamResult":
        candidate = resolved.candidate
        return cls(
            url=candidate.url or "",
            mime_type=candidate.mime_type,
            bitrate=candidate.bitrate,
            codec=candidate.codec,
            title=candidate.title,
            duration=candidate.duration,
            source=candidate.source,
            quality_label=candidate.quality_label,
            expires_at=candidate.expires_at,
            tier=resolved.tier,
            cached=cached,
        )


ProviderCall = Callable[[StreamProvider], Awaitable[ProviderResult[Any]]]
Evaluator = Callable[[str, ProviderResult[Any]], Any]


class _UnusablePayload(Exception):
    """Raised by an evaluator when a non-empty payload holds nothing usable."""

    def __init__(self, kind: FailureKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


class StreamResolver:
    """Resolve tracks and playable streams with provider fallback and caching."""

    def __init__(
        self,
        *,
        providers: Mapping[str, StreamProvider],
        priorities: PriorityConfig,
        cache: ResolverCache,
        state: ResolverState,
        cache_config: CacheConfig,
        selector: StreamSelector | None = None,
        max_limit: int = DEFAULT_MAX_LIMIT,
        race_top_two: bool = False,
        time_func: TimeProvider | None = None,
    ) -> None:
        self._providers = dict(providers)
        self._priorities = priorities
        self._cache = cache
        self._state = state
        self._cache_config = cache_config
        self._selector = selector or StreamSelector()
        self._max_limit = max(1, max_limit)
        self._race_top_two = race_top_two
        self._now: TimeProvider = time_func or time.time

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        providers: Mapping[str, StreamProvider],
        *,
        time_func: TimeProvider | None = None,
        state_time_func: TimeProvider | None = None,
    ) -> "StreamResolver":
        cache = ResolverCache(
            max_items=config.cache.max_items,
            default_ttl=config.cache.search_ttl_s,
            time_func=time_func,
        )
        state = ResolverState.from_config(config.cooldown, time_func=state_time_func or time_func)
        return cls(
            providers=providers,
            priorities=config.resolver.priorities,
            cache=cache,
            state=state,
            cache_config=config.cache,
            selector=StreamSelector.from_config(config.selector),
            max_limit=config.resolver.max_limit,
            race_top_two=config.resolver.race_top_two,
            time_func=time_func,
        )

    @property
    def cache(self) -> ResolverCache:
        return self._cache

    @property
    def state(self) -> ResolverState:
        return self._state

    @property
    def provider_names(self) -> tuple[str, ...]:
        return tuple(self._providers)

    async def search(
        self, query: str, limit: int = 20, quality_hint: QualityTier | None = None
    ) -> TrackListResult:
        text = self._require_text(query, "query")
        size = self._clamp_limit(limit)
        return await self._resolve_tracks(
            "search",
            search_fingerprint(text, size),
            lambda provider: provider.search(text, size),
        )

    async def trending(self, limit: int = 20) -> TrackListResult:
        size = self._clamp_limit(limit)
        return await self._resolve_tracks(
            "trending",
            trending_fingerprint(size),
            lambda provider: provider.trending(size),
        )

    async def get_playlist(self, playlist_id: str, limit: int = 50) -> TrackListResult:
        identifier = self._require_text(playlist_id, "playlist_id")
        size = self._clamp_limit(limit)
        return await self._resolve_tracks(
            "playlist",
            playlist_fingerprint(identifier, size),
            lambda provider: provider.get_playlist(identifier, size),
        )

    async def resolve_stream(
        self,
        track_id: str,
        quality: QualityTier | str | None = QualityTier.AUTO,
        *,
        preferred_provider: str | None = None,
    ) -> StreamResult:
        identifier = self._require_text(track_id, "track_id")
        try:
            tier = QualityTier.parse(quality)
        except ValueError as exc:
            raise InvalidRequestError(str(exc)) from exc

        fingerprint = stream_fingerprint(identifier, tier.value)
        started = time.perf_counter()
        cached = await self._cache.get(fingerprint)
        if isinstance(cached, ResolvedStream):
            self._log_resolution("stream", "ok", started, source=cached.candidate.source, cached=True)
            return StreamResult.from_resolved(cached, cached=True)

        def evaluate(provider: str, result: ProviderResult[Any]) -> ResolvedStream:
            try:
                candidate = self._selector.select(result.payload, tier)
            except StreamSelectionError as exc:
                raise _UnusablePayload(FailureKind.INVALID_RESPONSE, str(exc)) from exc
            return ResolvedStream(candidate=candidate, tier=tier)

        source, resolved, attempts = await self._run_chain(
            "stream",
            lambda provider: provider.get_stream(identifier, tier),
            evaluate,
            started=started,
            preferred=preferred_provider,
        )
        ttl = self._stream_ttl(resolved.candidate)
        if ttl > 0:
            await self._cache.set(fingerprint, resolved, ttl=ttl)
        self._log_resolution("stream", "ok", started, source=source, cached=False, attempts=attempts)
        return StreamResult.from_resolved(resolved, cached=False)

    async def resolve(
        self,
        reference: TrackReference,
        quality: QualityTier | str | None = QualityTier.AUTO,
        *,
        limit: int = DEFAULT_REFERENCE_SEARCH_LIMIT,
    ) -> StreamResult:
        """Resolve a reference to a stream; queries use the first search hit."""

        if reference.is_query:
            listing = await self.search(reference.query or "", limit)
            first = listing.tracks[0]
            return await self.resolve_stream(first.id, quality)
        return await self.resolve_stream(
            reference.track_id or "", quality, preferred_provider=reference.provider
        )

    async def invalidate(self, fingerprint: str) -> bool:
        return await self._cache.invalidate(fingerprint)

    async def _resolve_tracks(
        self, operation: str, fingerprint: str, call: ProviderCall
    ) -> TrackListResult:
        started = time.perf_counter()
        cached = await self._cache.get(fingerprint)
        if isinstance(cached, TrackListResult):
            self._log_resolution(operation, "ok", started, source=cached.source, cached=True)
            return replace(cached, cached=True)

        source, tracks, attempts = await self._run_chain(
            operation, call, lambda _provider, result: tuple(result.payload), started=started
        )
        listing = TrackListResult(tracks=tracks, source=source, cached=False)
        await self._cache.set(fingerprint, listing, ttl=self._cache_config.ttl_for(operation))
        self._log_resolution(operation, "ok", started, source=source, cached=False, attempts=attempts)
        return listing

    def _order(self, operation: str, preferred: str | None = None) -> list[str]:
        order = [name for name in self._priorities.for_operation(operation) if name in self._providers]
        if preferred:
            preferred = canonical_name(preferred)
            if preferred in self._providers:
                order = [preferred, *(name for name in order if name != preferred)]
        return order

    async def _run_chain(
        self,
        operation: str,
        call: ProviderCall,
        evaluate: Evaluator,
        *,
        started: float,
        preferred: str | None = None,
    ) -> tuple[str, Any, tuple[ProviderAttempt, ...]]:
        attempts: list[ProviderAttempt] = []
        remaining = self._order(operation, preferred)

        if self._race_top_two:
            leaders: list[str] = []
            while remaining and len(leaders) < 2:
                name = remaining.pop(0)
                if not self._skip_cooling(name, operation, attempts):
                    leaders.append(name)
            if leaders:
                winner = await self._race(leaders, operation, call, evaluate, attempts)
                if winner is not None:
                    return winner[0], winner[1], tuple(attempts)

        for name in remaining:
            if self._skip_cooling(name, operation, attempts):
                continue
            value, attempt = await self._attempt(name, operation, call, evaluate)
            attempts.append(attempt)
            if value is not None:
                return name, value, tuple(attempts)

        kind = self._exhausted_kind(attempts)
        self._log_resolution(
            operation, "error", started, source=None, cached=False, attempts=tuple(attempts), kind=kind
        )
        raise AllProvidersExhaustedError(
            operation,
            attempts=attempts,
            last_error_kind=kind,
            retry_after_s=self._retry_after(attempts) if kind is FailureKind.RATE_LIMITED else None,
        )

    async def _race(
        self,
        leaders: list[str],
        operation: str,
        call: ProviderCall,
        evaluate: Evaluator,
        attempts: list[ProviderAttempt],
    ) -> tuple[str, Any] | None:
        if len(leaders) == 1:
            value, attempt = await self._attempt(leaders[0], operation, call, evaluate)
            attempts.append(attempt)
            return (leaders[0], value) if value is not None else None

        tasks = {
            asyncio.create_task(self._attempt(name, operation, call, evaluate)): name
            for name in leaders
        }
        outcomes: dict[str, ProviderAttempt] = {}
        winner: tuple[str, Any] | None = None
        try:
            pending = set(tasks)
            while pending and winner is None:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in sorted(done, key=lambda item: leaders.index(tasks[item])):
                    value, attempt = task.result()
                    outcomes[tasks[task]] = attempt
                    if value is not None and winner is None:
                        winner = (tasks[task], value)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        for name in leaders:
            attempts.append(outcomes.get(name) or ProviderAttempt(name, "cancelled", None, "lost race"))
        return winner

    async def _attempt(
        self, name: str, operation: str, call: ProviderCall, evaluate: Evaluator
    ) -> tuple[Any | None, ProviderAttempt]:
        provider = self._providers[name]
        result = await call(provider)
        failure = result.failure
        if failure is not None:
            entered = self._state.record_failure(
                name, failure.kind, message=failure.message, retry_after_ms=failure.retry_after_ms
            )
            if entered:
                log_event(
                    logger,
                    "resolver.cooldown",
                    level=logging.WARNING,
                    component="resolver",
                    provider=name,
                    operation=operation,
                    status="entered",
                    meta={
                        "kind": failure.kind.value,
                        "remaining_s": round(self._state.cooldown_remaining(name), 3),
                    },
                )
            return None, ProviderAttempt(name, "error", failure.kind, failure.message)
        if not result.payload:
            return None, ProviderAttempt(name, "empty", None, result.reason)
        try:
            value = evaluate(name, result)
        except _UnusablePayload as exc:
            return None, ProviderAttempt(name, "invalid", exc.kind, str(exc))
        self._state.record_success(name)
        return value, ProviderAttempt(name, "ok")

    def _skip_cooling(self, name: str, operation: str, attempts: list[ProviderAttempt]) -> bool:
        if not self._state.is_cooling_down(name):
            return False
        kind = self._state.last_failure_kind(name)
        attempts.append(ProviderAttempt(name, "skipped", kind, "cooling down"))
        log_event(
            logger,
            "resolver.cooldown",
            component="resolver",
            provider=name,
            operation=operation,
            status="skipped",
            meta={"remaining_s": round(self._state.cooldown_remaining(name), 3)},
        )
        return True

    def _retry_after(self, attempts: Sequence[ProviderAttempt]) -> float | None:
        """Seconds until the first throttled provider leaves its cool-down."""

        remaining = [
            self._state.cooldown_remaining(attempt.provider)
            for attempt in attempts
            if attempt.kind is FailureKind.RATE_LIMITED
        ]
        waits = [value for value in remaining if value > 0]
        return min(waits) if waits else None

    @staticmethod
    def _exhausted_kind(attempts: Sequence[ProviderAttempt]) -> FailureKind:
        for attempt in reversed(attempts):
            if attempt.status == "error" and attempt.kind is not None:
                return attempt.kind
        if any(attempt.status == "invalid" for attempt in attempts):
            return FailureKind.INVALID_RESPONSE
        for attempt in reversed(attempts):
            if attempt.status == "skipped" and attempt.kind is not None:
                return attempt.kind
        return FailureKind.NOT_FOUND

    def _stream_ttl(self, candidate: StreamCandidate) -> float:
        config = self._cache_config
        if candidate.expires_at is None:
            return config.stream_ttl_s
        remaining = candidate.expires_at - self._now() - config.stream_safety_margin_s
        return min(remaining, config.stream_max_ttl_s)

    def _require_text(self, value: str | None, field_name: str) -> str:
        text = " ".join(str(value or "").split())
        if not text:
            raise InvalidRequestError(f"{field_name} must not be empty")
        return text

    def _clamp_limit(self, limit: Any) -> int:
        try:
            size = int(limit)
        except (TypeError, ValueError) as exc:
            raise InvalidRequestError("limit must be an integer") from exc
        return min(max(size, 1), self._max_limit)

    def _log_resolution(
        self,
        operation: str,
        status: str,
        started: float,
        *,
        source: str | None,
        cached: bool,
        attempts: Sequence[ProviderAttempt] = (),
        kind: FailureKind | None = None,
    ) -> None:
        meta: dict[str, object] = {
            "attempts": [f"{item.provider}:{item.status}" for item in attempts],
        }
        if kind is not None:
            meta["kind"] = kind.value
        log_event(
            logger,
            "resolver.resolve",
            level=logging.WARNING if status == "error" else logging.INFO,
            component="resolver",
            operation=operation,
            status=status,
            source=source,
            cached=cached,
            duration_ms=int((time.perf_counter() - started) * 1000),
            meta=meta,
        )


__all__ = [
    "AllProvidersExhaustedError",
    "InvalidRequestError",
    "ProviderAttempt",
    "ResolvedStream",
    "ResolverError",
    "StreamResolver",
    "StreamResult",
    "TrackListResult",
]
