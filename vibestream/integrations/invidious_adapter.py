"""Invidious proxy network provider."""

from __future__ import annotations

from collections.abc import Sequence
from urllib.parse import quote

import httpx

from vibestream.config import DEFAULT_INVIDIOUS_INSTANCES
from vibestream.integrations.base import BROWSER_USER_AGENT, FederatedAdapter, music_query
from vibestream.integrations.contracts import QualityTier, StreamCandidate, Track
from vibestream.integrations.normalizers import (
    normalize_invidious_streams,
    normalize_invidious_tracks,
)


class InvidiousAdapter(FederatedAdapter):
    name = "invidious"

    def __init__(
        self,
        *,
        timeout_ms: int,
        instances: Sequence[str] = DEFAULT_INVIDIOUS_INSTANCES,
        region: str = "US",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(
            instances=instances,
            timeout_ms=timeout_ms,
            client=client,
            headers={"Accept": "application/json", "User-Agent": BROWSER_USER_AGENT},
        )
        self._region = region.upper()

    async def _search(self, query: str, limit: int) -> Sequence[Track]:
        payload, base_url = await self._fetch_json(
            "/api/v1/search", params={"q": music_query(query), "type": "video", "page": 1}
        )
        return normalize_invidious_tracks(payload, provider=self.name, base_url=base_url)

    async def _trending(self, limit: int) -> Sequence[Track]:
        payload, base_url = await self._fetch_json(
            "/api/v1/trending", params={"type": "music", "region": self._region}
        )
        return normalize_invidious_tracks(payload, provider=self.name, base_url=base_url)

    async def _get_playlist(self, playlist_id: str, limit: int) -> Sequence[Track]:
        payload, base_url = await self._fetch_json(
            f"/api/v1/playlists/{quote(playlist_id, safe='')}"
        )
        return normalize_invidious_tracks(payload, provider=self.name, base_url=base_url)

    async def _get_stream(
        self, track_id: str, quality_hint: QualityTier | None
    ) -> Sequence[StreamCandidate]:
        payload, base_url = await self._fetch_json(f"/api/v1/videos/{quote(track_id, safe='')}")
        return normalize_invidious_streams(payload, provider=self.name, base_url=base_url)


__all__ = ["InvidiousAdapter"]
