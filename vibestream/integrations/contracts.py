"""Contracts shared by provider adapters and the resolver."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Protocol, TypeVar

T = TypeVar("T")


class QualityTier(str, Enum):
    """Caller requested audio quality preference."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    AUTO = "auto"

    @classmethod
    def parse(cls, value: "str | QualityTier | None") -> "QualityTier":
        if isinstance(value, QualityTier):
            return value
        if value is None:
            return cls.AUTO
        normalized = str(value).strip().lower()
        for tier in cls:
            if tier.value == normalized:
                return tier
        raise ValueError(f"Unknown quality tier {value!r}")


class FailureKind(str, Enum):
    """Classification attached to failed provider calls."""

    TRANSPORT = "transport"
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    INVALID_RESPONSE = "invalid_response"


@dataclass(slots=True, frozen=True)
class TrackReference:
    """Either a free-text query or a provider scoped track identifier."""

    query: str | None = None
    track_id: str | None = None
    provider: str | None = None

    def __post_init__(self) -> None:
        if (self.query is None) == (self.track_id is None):
            raise ValueError("TrackReference requires exactly one of query or track_id")

    @classmethod
    def from_query(cls, text: str) -> "TrackReference":
        return cls(query=text)

    @classmethod
    def from_id(cls, track_id: str, *, provider: str | None = None) -> "TrackReference":
        return cls(track_id=track_id, provider=provider)

    @property
    def is_query(self) -> bool:
        return self.query is not None


@dataclass(slots=True, frozen=True)
class Track:
    """Normalised track metadata produced from one provider payload."""

    id: str
    title: str
    artist: str
    source: str
    thumbnail: str | None = None
    duration: int | None = None


@dataclass(slots=True, frozen=True)
class StreamCandidate:
    """A playable audio URL with the descriptors needed for ranking."""

    url: str | None
    mime_type: str | None
    source: str
    bitrate: int | None = None
    codec: str | None = None
    quality_label: str | None = None
    expires_at: float | None = None
    title: str | None = None
    duration: int | None = None


@dataclass(slots=True, frozen=True)
class ProviderFailure:
    kind: FailureKind
    message: str
    retry_after_ms: int | None = None


@dataclass(slots=True, frozen=True)
class ProviderResult(Generic[T]):
    """Tagged outcome of invoking one adapter operation.

    ``empty`` and ``failure`` are deliberately distinct: only failures feed the
    resolver's cool-down bookkeeping.
    """

    provider: str
    payload: tuple[T, ...] = ()
    failure: ProviderFailure | None = None
    reason: str | None = None

    @classmethod
    def success(cls, provider: str, payload: "list[T] | tuple[T, ...]") -> "ProviderResult[T]":
        items = tuple(payload)
        if not items:
            return cls(provider=provider, reason="no results")
        return cls(provider=provider, payload=items)

    @classmethod
    def empty(cls, provider: str, reason: str = "no results") -> "ProviderResult[T]":
        return cls(provider=provider, reason=reason)

    @classmethod
    def failed(
        cls,
        provider: str,
        kind: FailureKind,
        message: str,
        *,
        retry_after_ms: int | None = None,
    ) -> "ProviderResult[T]":
        return cls(
            provider=provider,
            failure=ProviderFailure(kind=kind, message=message, retry_after_ms=retry_after_ms),
        )

    @property
    def ok(self) -> bool:
        return self.failure is None and bool(self.payload)

    @property
    def is_empty(self) -> bool:
        return self.failure is None and not self.payload

    @property
    def status(self) -> str:
        if self.failure is not None:
            return "error"
        return "ok" if self.payload else "empty"


class ProviderError(RuntimeError):
    """Base exception raised inside adapters when a provider request fails."""

    kind: FailureKind = FailureKind.INVALID_RESPONSE

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        status_code: int | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.cause = cause


class ProviderTimeoutError(ProviderError):
    """Raised when the provider did not respond within the configured timeout."""

    kind = FailureKind.TRANSPORT

    def __init__(self, provider: str, timeout_ms: int, *, cause: Exception | None = None) -> None:
        super().__init__(provider, f"{provider} timed out after {timeout_ms}ms", cause=cause)
        self.timeout_ms = timeout_ms


class ProviderTransportError(ProviderError):
    """Raised on connection failures and upstream 5xx responses."""

    kind = FailureKind.TRANSPORT


class ProviderRateLimitedError(ProviderError):
    """Raised when a provider applied rate limits or quota to the request."""

    kind = FailureKind.RATE_LIMITED

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        retry_after_ms: int | None = None,
        cause: Exception | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(provider, message, status_code=status_code, cause=cause)
        self.retry_after_ms = retry_after_ms


class ProviderNotFoundError(ProviderError):
    """Raised when the provider reported that nothing matched the request."""

    kind = FailureKind.NOT_FOUND


class ProviderInvalidResponseError(ProviderError):
    """Raised when the provider returned a payload that could not be used."""

    kind = FailureKind.INVALID_RESPONSE


class StreamProvider(Protocol):
    """Protocol implemented by every provider adapter."""

    name: str

    async def search(self, query: str, limit: int) -> ProviderResult[Track]:
        """Return tracks matching ``query``."""

    async def trending(self, limit: int) -> ProviderResult[Track]:
        """Return the provider's current trending music."""

    async def get_playlist(self, playlist_id: str, limit: int) -> ProviderResult[Track]:
        """Return the tracks of a provider playlist."""

    async def get_stream(
        self, track_id: str, quality_hint: QualityTier | None = None
    ) -> ProviderResult[StreamCandidate]:
        """Return candidate audio streams for ``track_id``."""


__all__ = [
    "FailureKind",
    "ProviderError",
    "ProviderFailure",
    "ProviderInvalidResponseError",
    "ProviderNotFoundError",
    "ProviderRateLimitedError",
    "ProviderResult",
    "ProviderTimeoutError",
    "ProviderTransportError",
    "QualityTier",
    "StreamCandidate",
    "StreamProvider",
    "Track",
    "TrackReference",
]
