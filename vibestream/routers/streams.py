"""Track listing and stream resolution endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Path, Query, status
from pydantic import BaseModel

from vibestream.dependencies import get_resolver
from vibestream.integrations.contracts import QualityTier
from vibestream.services.resolver import StreamResolver, StreamResult, TrackListResult


class TrackItem(BaseModel):
    id: str
    title: str
    artist: str
    thumbnail: str | None = None
    duration: int | None = None
    source: str


class TrackListData(BaseModel):
    tracks: list[TrackItem]
    source: str
    cached: bool


class TrackListResponse(BaseModel):
    ok: bool
    data: TrackListData | None = None
    error: dict | None = None


class StreamData(BaseModel):
    url: str
    mime_type: str | None = None
    bitrate: int | None = None
    codec: str | None = None
    title: str | None = None
    duration: int | None = None
    source: str
    quality: QualityTier
    expires_at: float | None = None
    cached: bool


class StreamResponse(BaseModel):
    ok: bool
    data: StreamData | None = None
    error: dict | None = None


router = APIRouter(tags=["Streams"])


def _track_list_response(result: TrackListResult) -> TrackListResponse:
    tracks = [
        TrackItem(
            id=track.id,
            title=track.title,
            artist=track.artist,
            thumbnail=track.thumbnail,
            duration=track.duration,
            source=track.source,
        )
        for track in result.tracks
    ]
    return TrackListResponse(
        ok=True, data=TrackListData(tracks=tracks, source=result.source, cached=result.cached)
    )


def _stream_response(result: StreamResult) -> StreamResponse:
    return StreamResponse(
        ok=True,
        data=StreamData(
            url=result.url,
            mime_type=result.mime_type,
            bitrate=result.bitrate,
            codec=result.codec,
            title=result.title,
            duration=result.duration,
            source=result.source,
            quality=result.tier,
            expires_at=result.expires_at,
            cached=result.cached,
        ),
    )


@router.get("/search", response_model=TrackListResponse, status_code=status.HTTP_200_OK)
async def search_tracks(
    q: str = Query(..., description="Free text search query"),
    limit: int = Query(20, ge=1, le=200),
    resolver: StreamResolver = Depends(get_resolver),
) -> TrackListResponse:
    return _track_list_response(await resolver.search(q, limit))


@router.get("/trending", response_model=TrackListResponse, status_code=status.HTTP_200_OK)
async def trending_tracks(
    limit: int = Query(20, ge=1, le=200),
    resolver: StreamResolver = Depends(get_resolver),
) -> TrackListResponse:
    return _track_list_response(await resolver.trending(limit))


@router.get(
    "/playlists/{playlist_id}", response_model=TrackListResponse, status_code=status.HTTP_200_OK
)
async def playlist_tracks(
    playlist_id: str = Path(..., min_length=1),
    limit: int = Query(50, ge=1, le=200),
    resolver: StreamResolver = Depends(get_resolver),
) -> TrackListResponse:
    return _track_list_response(await resolver.get_playlist(playlist_id, limit))


@router.get("/streams/{track_id}", response_model=StreamResponse, status_code=status.HTTP_200_OK)
async def resolve_stream(
    track_id: str = Path(..., min_length=1),
    quality: QualityTier = Query(QualityTier.AUTO),
    provider: str | None = Query(None, description="Provider to try first"),
    resolver: StreamResolver = Depends(get_resolver),
) -> StreamResponse:
    result = await resolver.resolve_stream(track_id, quality, preferred_provider=provider)
    return _stream_response(result)


__all__ = ["router"]
