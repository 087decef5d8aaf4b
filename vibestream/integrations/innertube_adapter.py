"""Browser-scraping extractor speaking YouTube's internal ``youtubei`` API."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

import httpx

from vibestream.config import (
    DEFAULT_INNERTUBE_API_KEY,
    DEFAULT_INNERTUBE_CLIENT_VERSION,
    DEFAULT_INNERTUBE_MUSIC_API_KEY,
    DEFAULT_INNERTUBE_MUSIC_CLIENT_VERSION,
)
from vibestream.integrations.base import BROWSER_USER_AGENT, HttpProviderAdapter
from vibestream.integrations.contracts import (
    ProviderNotFoundError,
    ProviderRateLimitedError,
    QualityTier,
    StreamCandidate,
    Track,
)
from vibestream.integrations.normalizers import (
    normalize_innertube_player,
    normalize_innertube_search,
)

SEARCH_URL = "https://music.youtube.com/youtubei/v1/search"
PLAYER_URL = "https://www.youtube.com/youtubei/v1/player"

# Restricts YouTube Music search results to songs.
_SONGS_FILTER = "EgWKAQIIAWoKEAMQBBAJEAoQBQ%3D%3D"
_WEB_REMIX_CLIENT_ID = "67"


class InnertubeAdapter(HttpProviderAdapter):
    """Search via YouTube Music and direct audio formats via the player endpoint."""

    name = "innertube"

    def __init__(
        self,
        *,
        timeout_ms: int,
        api_key: str = DEFAULT_INNERTUBE_API_KEY,
        music_api_key: str = DEFAULT_INNERTUBE_MUSIC_API_KEY,
        client_version: str = DEFAULT_INNERTUBE_CLIENT_VERSION,
        music_client_version: str = DEFAULT_INNERTUBE_MUSIC_CLIENT_VERSION,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(
            timeout_ms=timeout_ms,
            client=client,
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                "Accept-Language": "en-US,en;q=0.9",
                "User-Agent": BROWSER_USER_AGENT,
            },
        )
        self._api_key = api_key
        self._music_api_key = music_api_key
        self._client_version = client_version
        self._music_client_version = music_client_version

    @staticmethod
    def _context(client_name: str, version: str) -> dict[str, Any]:
        return {
            "client": {"clientName": client_name, "clientVersion": version, "hl": "en", "gl": "US"}
        }

    async def _search(self, query: str, limit: int) -> Sequence[Track]:
        payload = await self._request_json(
            "POST",
            SEARCH_URL,
            json={
                "context": self._context("WEB_REMIX", self._music_client_version),
                "query": query,
                "params": _SONGS_FILTER,
            },
            headers={
                "X-Goog-Api-Key": self._music_api_key,
                "X-Youtube-Client-Name": _WEB_REMIX_CLIENT_ID,
                "X-Youtube-Client-Version": self._music_client_version,
                "Origin": "https://music.youtube.com",
                "Referer": "https://music.youtube.com/",
            },
        )
        return normalize_innertube_search(payload, provider=self.name)

    async def _get_stream(
        self, track_id: str, quality_hint: QualityTier | None
    ) -> Sequence[StreamCandidate]:
        payload = await self._request_json(
            "POST",
            PLAYER_URL,
            params={"key": self._api_key},
            json={"context": self._context("WEB", self._client_version), "videoId": track_id},
            headers={"Origin": "https://www.youtube.com", "Referer": "https://www.youtube.com/"},
        )
        self._check_playability(payload)
        return normalize_innertube_player(payload, provider=self.name)

    def _check_playability(self, payload: Any) -> None:
        status = payload.get("playabilityStatus") if isinstance(payload, Mapping) else None
        if not isinstance(status, Mapping):
            return
        state = str(status.get("status") or "OK").upper()
        if state == "OK":
            return
        reason = str(status.get("reason") or state)
        if state == "LOGIN_REQUIRED" and "bot" in reason.lower():
            raise ProviderRateLimitedError(self.name, f"innertube blocked the request: {reason}")
        raise ProviderNotFoundError(self.name, f"innertube cannot play {state.lower()}: {reason}")


__all__ = ["InnertubeAdapter", "PLAYER_URL", "SEARCH_URL"]
