"""YouTube Data API v3 provider."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

import httpx

from vibestream.config import DEFAULT_YOUTUBE_BASE_URL
from vibestream.integrations.base import HttpProviderAdapter, music_query, parse_retry_after_ms
from vibestream.integrations.contracts import (
    ProviderInvalidResponseError,
    ProviderNotFoundError,
    ProviderRateLimitedError,
    Track,
)
from vibestream.integrations.normalizers import normalize_youtube_tracks, youtube_durations

_MUSIC_CATEGORY_ID = "10"
_MAX_RESULTS = 50
_QUOTA_REASONS = frozenset(
    {"quotaExceeded", "rateLimitExceeded", "dailyLimitExceeded", "userRateLimitExceeded"}
)


def _error_reasons(response: httpx.Response) -> set[str]:
    try:
        payload = response.json()
    except ValueError:
        return set()
    error = payload.get("error") if isinstance(payload, Mapping) else None
    errors = error.get("errors") if isinstance(error, Mapping) else None
    if not isinstance(errors, list):
        return set()
    return {str(item.get("reason")) for item in errors if isinstance(item, Mapping)}


class YouTubeDataAdapter(HttpProviderAdapter):
    """First-party API: authoritative metadata, quota limited, no audio URLs."""

    name = "youtube"

    def __init__(
        self,
        *,
        api_key: str | None,
        timeout_ms: int,
        region: str = "US",
        base_url: str = DEFAULT_YOUTUBE_BASE_URL,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(
            timeout_ms=timeout_ms, client=client, headers={"Accept": "application/json"}
        )
        self._api_key = (api_key or "").strip() or None
        self._region = region.upper()
        self._base_url = base_url.rstrip("/")

    @property
    def configured(self) -> bool:
        return self._api_key is not None

    async def _search(self, query: str, limit: int) -> Sequence[Track]:
        payload = await self._get(
            "search",
            {
                "part": "snippet",
                "type": "video",
                "videoCategoryId": _MUSIC_CATEGORY_ID,
                "q": music_query(query),
                "maxResults": min(limit, _MAX_RESULTS),
            },
        )
        return await self._with_durations(payload)

    async def _trending(self, limit: int) -> Sequence[Track]:
        payload = await self._get(
            "videos",
            {
                "part": "snippet,contentDetails",
                "chart": "mostPopular",
                "videoCategoryId": _MUSIC_CATEGORY_ID,
                "regionCode": self._region,
                "maxResults": min(limit, _MAX_RESULTS),
            },
        )
        return normalize_youtube_tracks(payload, provider=self.name)

    async def _get_playlist(self, playlist_id: str, limit: int) -> Sequence[Track]:
        payload = await self._get(
            "playlistItems",
            {
                "part": "snippet",
                "playlistId": playlist_id,
                "maxResults": min(limit, _MAX_RESULTS),
            },
        )
        return await self._with_durations(payload)

    async def _with_durations(self, payload: Any) -> Sequence[Track]:
        tracks = normalize_youtube_tracks(payload, provider=self.name)
        if not tracks:
            return tracks
        details = await self._get(
            "videos",
            {"part": "contentDetails", "id": ",".join(track.id for track in tracks)},
        )
        return normalize_youtube_tracks(
            payload, provider=self.name, durations=youtube_durations(details)
        )

    async def _get(self, path: str, params: dict[str, Any]) -> Any:
        if self._api_key is None:
            raise ProviderNotFoundError(self.name, "youtube API key is not configured")
        params["key"] = self._api_key
        response = await self._client.get(f"{self._base_url}/{path}", params=params)
        if response.status_code == httpx.codes.FORBIDDEN:
            reasons = _error_reasons(response)
            if reasons & _QUOTA_REASONS:
                raise ProviderRateLimitedError(
                    self.name,
                    "youtube quota exceeded",
                    retry_after_ms=parse_retry_after_ms(response.headers),
                    status_code=response.status_code,
                )
        self._raise_for_status(response)
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderInvalidResponseError(
                self.name, "youtube returned invalid JSON", cause=exc
            ) from exc

    async def check_health(self) -> Mapping[str, Any]:
        if not self.configured:
            return {"status": "degraded", "details": {"reason": "api key missing"}}
        return {"status": "ok", "details": {"region": self._region}}


__all__ = ["YouTubeDataAdapter"]
