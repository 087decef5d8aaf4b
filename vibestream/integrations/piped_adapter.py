"""Piped proxy network provider."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from urllib.parse import quote

import httpx

from vibestream.config import DEFAULT_PIPED_INSTANCES
from vibestream.integrations.base import FederatedAdapter, music_query
from vibestream.integrations.contracts import QualityTier, StreamCandidate, Track
from vibestream.integrations.normalizers import (
    looks_like_music,
    normalize_piped_streams,
    normalize_piped_tracks,
)


class PipedAdapter(FederatedAdapter):
    """Search, trending, playlists and audio streams through Piped mirrors."""

    name = "piped"

    def __init__(
        self,
        *,
        timeout_ms: int,
        instances: Sequence[str] = DEFAULT_PIPED_INSTANCES,
        region: str = "US",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(
            instances=instances,
            timeout_ms=timeout_ms,
            client=client,
            headers={"Accept": "application/json"},
        )
        self._region = region.upper()

    async def _search(self, query: str, limit: int) -> Sequence[Track]:
        text = music_query(query)
        payload, base_url = await self._fetch_json(
            "/search", params={"q": text, "filter": "music_songs"}
        )
        tracks = normalize_piped_tracks(payload, provider=self.name, base_url=base_url)
        if tracks:
            return tracks
        # Older mirrors do not implement the music filters.
        payload, base_url = await self._fetch_json("/search", params={"q": text, "filter": "videos"})
        return normalize_piped_tracks(payload, provider=self.name, base_url=base_url)

    async def _trending(self, limit: int) -> Sequence[Track]:
        payload, base_url = await self._fetch_json("/trending", params={"region": self._region})
        entries = payload if isinstance(payload, list) else []
        music = [
            entry
            for entry in entries
            if isinstance(entry, Mapping)
            and looks_like_music(entry.get("title"), entry.get("uploaderName"))
        ]
        return normalize_piped_tracks(music, provider=self.name, base_url=base_url)

    async def _get_playlist(self, playlist_id: str, limit: int) -> Sequence[Track]:
        payload, base_url = await self._fetch_json(f"/playlists/{quote(playlist_id, safe='')}")
        return normalize_piped_tracks(payload, provider=self.name, base_url=base_url)

    async def _get_stream(
        self, track_id: str, quality_hint: QualityTier | None
    ) -> Sequence[StreamCandidate]:
        payload, base_url = await self._fetch_json(f"/streams/{quote(track_id, safe='')}")
        return normalize_piped_streams(payload, provider=self.name, base_url=base_url)


__all__ = ["PipedAdapter"]
