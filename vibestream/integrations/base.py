"""Shared machinery for provider adapters.

Subclasses implement the underscored operations (``_search``, ``_trending``,
``_get_playlist``, ``_get_stream``) and are free to raise :class:`ProviderError`
subclasses or ``httpx`` errors. The public operations wrap them with the
per-call timeout and always return a :class:`ProviderResult`.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping, Sequence
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from time import perf_counter
from typing import Any, TypeVar

import httpx

from vibestream.integrations.contracts import (
    ProviderError,
    ProviderInvalidResponseError,
    ProviderNotFoundError,
    ProviderRateLimitedError,
    ProviderResult,
    ProviderTimeoutError,
    ProviderTransportError,
    QualityTier,
    StreamCandidate,
    Track,
)
from vibestream.logging import get_logger
from vibestream.logging_events import log_event

logger = get_logger(__name__)

T = TypeVar("T")

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)


def parse_retry_after_ms(headers: Mapping[str, str]) -> int | None:
    """Return the ``Retry-After`` hint in milliseconds (seconds or HTTP date)."""

    value = headers.get("Retry-After") if headers else None
    if not value:
        return None
    try:
        return max(0, int(value) * 1000)
    except (TypeError, ValueError):
        pass
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    delta = parsed - datetime.now(UTC)
    return max(0, int(delta.total_seconds() * 1000))


def music_query(query: str) -> str:
    """Bias a free-text query towards music results."""

    text = " ".join(query.split())
    if "music" in text.lower():
        return text
    return f"{text} music"


class ProviderAdapter:
    """Base class implementing the uniform adapter contract."""

    name = "provider"

    def __init__(self, *, timeout_ms: int) -> None:
        self._timeout_ms = max(100, int(timeout_ms))

    @property
    def timeout_ms(self) -> int:
        return self._timeout_ms

    async def search(self, query: str, limit: int) -> ProviderResult[Track]:
        return await self._invoke("search", lambda: self._search(query, limit), limit=limit)

    async def trending(self, limit: int) -> ProviderResult[Track]:
        return await self._invoke("trending", lambda: self._trending(limit), limit=limit)

    async def get_playlist(self, playlist_id: str, limit: int) -> ProviderResult[Track]:
        return await self._invoke(
            "get_playlist", lambda: self._get_playlist(playlist_id, limit), limit=limit
        )

    async def get_stream(
        self, track_id: str, quality_hint: QualityTier | None = None
    ) -> ProviderResult[StreamCandidate]:
        return await self._invoke("get_stream", lambda: self._get_stream(track_id, quality_hint))

    async def _search(self, query: str, limit: int) -> Sequence[Track]:
        return []

    async def _trending(self, limit: int) -> Sequence[Track]:
        return []

    async def _get_playlist(self, playlist_id: str, limit: int) -> Sequence[Track]:
        return []

    async def _get_stream(
        self, track_id: str, quality_hint: QualityTier | None
    ) -> Sequence[StreamCandidate]:
        return []

    async def aclose(self) -> None:
        return None

    async def check_health(self) -> Mapping[str, Any]:
        return {"status": "ok", "details": {"timeout_ms": self._timeout_ms}}

    async def _invoke(
        self,
        operation: str,
        factory: Callable[[], Awaitable[Sequence[T]]],
        *,
        limit: int | None = None,
    ) -> ProviderResult[T]:
        started = perf_counter()
        error: ProviderError
        try:
            payload = await asyncio.wait_for(factory(), self._timeout_ms / 1000)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError as exc:
            error = ProviderTimeoutError(self.name, self._timeout_ms, cause=exc)
        except ProviderError as exc:
            error = exc
        except httpx.TimeoutException as exc:
            error = ProviderTimeoutError(self.name, self._timeout_ms, cause=exc)
        except httpx.HTTPError as exc:
            error = ProviderTransportError(
                self.name, f"{self.name} request failed ({exc.__class__.__name__})", cause=exc
            )
        except Exception as exc:
            logger.exception("Unexpected %s adapter failure during %s", self.name, operation)
            error = ProviderInvalidResponseError(self.name, "unexpected adapter error", cause=exc)
        else:
            items = list(payload)
            if limit is not None:
                items = items[: max(1, limit)]
            result: ProviderResult[T] = ProviderResult.success(self.name, items)
            self._log(operation, result, started)
            return result

        if isinstance(error, ProviderNotFoundError):
            result = ProviderResult.empty(self.name, str(error))
        else:
            result = ProviderResult.failed(
                self.name,
                error.kind,
                str(error),
                retry_after_ms=getattr(error, "retry_after_ms", None),
            )
        self._log(operation, result, started, error)
        return result

    def _log(
        self,
        operation: str,
        result: ProviderResult[Any],
        started: float,
        error: ProviderError | None = None,
    ) -> None:
        duration_ms = int((perf_counter() - started) * 1000)
        meta: dict[str, object] = {"items": len(result.payload)}
        if error is not None:
            meta["error"] = error.__class__.__name__
            meta["kind"] = error.kind.value
            if error.status_code is not None:
                meta["status_code"] = error.status_code
            if isinstance(error, ProviderTimeoutError):
                meta["timeout_ms"] = error.timeout_ms
            if isinstance(error, ProviderRateLimitedError) and error.retry_after_ms is not None:
                meta["retry_after_ms"] = error.retry_after_ms
        log_event(
            logger,
            "api.dependency",
            component="provider_adapter",
            dependency=self.name,
            operation=operation,
            status=result.status,
            duration_ms=duration_ms,
            meta=meta,
        )


class HttpProviderAdapter(ProviderAdapter):
    """Adapter talking JSON over HTTP through an ``httpx.AsyncClient``."""

    def __init__(
        self,
        *,
        timeout_ms: int,
        client: httpx.AsyncClient | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(timeout_ms=timeout_ms)
        seconds = self._timeout_ms / 1000
        self._headers = dict(headers or {})
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(seconds, connect=min(seconds, 5.0)),
            headers=self._headers,
            follow_redirects=True,
        )
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request_json(
        self,
        method: str,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> Any:
        merged_headers = {**self._headers, **(headers or {})}
        kwargs: dict[str, Any] = {"params": params, "headers": merged_headers}
        if json is not None:
            kwargs["json"] = json
        if timeout is not None:
            kwargs["timeout"] = timeout
        response = await self._client.request(method, url, **kwargs)
        self._raise_for_status(response)
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderInvalidResponseError(
                self.name, f"{self.name} returned invalid JSON", cause=exc
            ) from exc

    def _raise_for_status(self, response: httpx.Response) -> None:
        status_code = response.status_code
        if 200 <= status_code < 300:
            return
        if status_code == httpx.codes.TOO_MANY_REQUESTS:
            raise ProviderRateLimitedError(
                self.name,
                f"{self.name} rate limited the request",
                retry_after_ms=parse_retry_after_ms(response.headers),
                status_code=status_code,
            )
        if status_code in {httpx.codes.NOT_FOUND, httpx.codes.GONE}:
            raise ProviderNotFoundError(
                self.name, f"{self.name} returned no results", status_code=status_code
            )
        if status_code >= 500:
            raise ProviderTransportError(
                self.name, f"{self.name} upstream error ({status_code})", status_code=status_code
            )
        raise ProviderInvalidResponseError(
            self.name,
            f"{self.name} responded with an unexpected status ({status_code})",
            status_code=status_code,
        )


class FederatedAdapter(HttpProviderAdapter):
    """HTTP adapter for provider networks served by interchangeable mirrors.

    Requests go to the last healthy instance first and rotate through the
    remaining ones on transport, rate-limit or garbage responses. A ``not
    found`` answer is authoritative and stops the rotation.
    """

    def __init__(
        self,
        *,
        instances: Sequence[str],
        timeout_ms: int,
        client: httpx.AsyncClient | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        normalized = tuple(item.rstrip("/") for item in instances if item and item.strip())
        if not normalized:
            raise ValueError("at least one instance URL is required")
        super().__init__(timeout_ms=timeout_ms, client=client, headers=headers)
        self._instances = normalized
        self._preferred = 0
        # Leave room for at least a second mirror inside the per-call budget.
        attempts = min(len(normalized), 3)
        self._instance_timeout_s = max(0.5, self._timeout_ms / 1000 / attempts)

    @property
    def instances(self) -> tuple[str, ...]:
        return self._instances

    @property
    def current_instance(self) -> str:
        return self._instances[self._preferred]

    async def _fetch_json(
        self, path: str, *, params: Mapping[str, Any] | None = None
    ) -> tuple[Any, str]:
        """GET ``path`` from the mirrors; returns the payload and the serving base URL."""

        count = len(self._instances)
        last_error: ProviderError = ProviderTransportError(self.name, "no instance answered")
        for offset in range(count):
            index = (self._preferred + offset) % count
            base_url = self._instances[index]
            try:
                payload = await self._request_json(
                    "GET", f"{base_url}{path}", params=params, timeout=self._instance_timeout_s
                )
            except ProviderNotFoundError:
                raise
            except ProviderError as exc:
                last_error = exc
            except httpx.TimeoutException as exc:
                last_error = ProviderTimeoutError(
                    self.name, int(self._instance_timeout_s * 1000), cause=exc
                )
            except httpx.HTTPError as exc:
                last_error = ProviderTransportError(
                    self.name, f"{base_url} unreachable ({exc.__class__.__name__})", cause=exc
                )
            else:
                if index != self._preferred:
                    logger.info(
                        "Switching %s instance to %s",
                        self.name,
                        base_url,
                        extra={"event": "provider.instance_rotated", "provider": self.name},
                    )
                    self._preferred = index
                return payload, base_url
            logger.debug("%s instance %s failed: %s", self.name, base_url, last_error)
        raise last_error

    async def check_health(self) -> Mapping[str, Any]:
        return {
            "status": "ok",
            "details": {
                "instance": self.current_instance,
                "instances": len(self._instances),
                "timeout_ms": self._timeout_ms,
            },
        }


__all__ = [
    "BROWSER_USER_AGENT",
    "FederatedAdapter",
    "HttpProviderAdapter",
    "ProviderAdapter",
    "music_query",
    "parse_retry_after_ms",
]
