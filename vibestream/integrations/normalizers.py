"""Utility functions for normalising provider payloads into tracks and streams.

Every public function here is total: anything that is not the expected shape
yields an empty list (or ``None`` for scalar helpers) instead of raising.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Mapping
from typing import Any
from urllib.parse import parse_qs, urlparse

from vibestream.integrations.contracts import StreamCandidate, Track

_ISO_DURATION = re.compile(
    r"^P(?:(?P<days>\d+)D)?"
    r"(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$"
)
_CODECS = re.compile(r'codecs="?([^";]+)"?', re.IGNORECASE)
_WATCH_ID = re.compile(r"[?&]v=([^&#]+)")
_TITLE_NOISE = re.compile(
    r"\s*[\(\[][^\)\]]*\b(?:official|lyrics?|audio|video|visuali[sz]er|hd|hq|4k|mv)\b[^\)\]]*[\)\]]",
    re.IGNORECASE,
)
_TOPIC_SUFFIX = " - Topic"
_MUSIC_HINTS = ("music", "official", "audio", "video", "vevo", "records")
_UNKNOWN_ARTIST = "Unknown Artist"


def _coerce_str(value: Any) -> str | None:
    if value is None or isinstance(value, (Mapping, list, tuple)):
        return None
    text = str(value).strip()
    return text or None


def _coerce_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return int(value)
    if isinstance(value, str):
        cleaned = value.strip()
        if cleaned.lstrip("-+").isdigit():
            return int(cleaned)
        try:
            return int(float(cleaned))
        except (ValueError, OverflowError):
            return None
    return None


def _extract_mapping(obj: Any) -> Mapping[str, Any] | None:
    if isinstance(obj, Mapping):
        return obj
    return None


def _iter_sequence(obj: Any) -> Iterable[Any]:
    if isinstance(obj, (list, tuple)):
        return obj
    return ()


def _iter_mappings(obj: Any) -> Iterable[Mapping[str, Any]]:
    for entry in _iter_sequence(obj):
        mapping = _extract_mapping(entry)
        if mapping is not None:
            yield mapping


def _dig(obj: Any, *path: str | int) -> Any:
    current = obj
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, (list, tuple)) or not -len(current) <= key < len(current):
                return None
            current = current[key]
            continue
        mapping = _extract_mapping(current)
        if mapping is None:
            return None
        current = mapping.get(key)
    return current


def parse_duration(value: Any) -> int | None:
    """Return ``value`` as whole seconds.

    Accepts numbers, digit strings, ``"3:45"``/``"1:02:03"`` clock notation and
    ISO-8601 durations such as ``"PT4M13S"``. Zero, negative and unparseable
    values map to ``None``.
    """

    seconds: int | None = None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        seconds = _coerce_int(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if ":" in text:
            parts = text.split(":")
            if len(parts) <= 3 and all(part.strip().isdigit() for part in parts):
                seconds = 0
                for part in parts:
                    seconds = seconds * 60 + int(part)
        elif text.upper().startswith("P"):
            match = _ISO_DURATION.match(text.upper())
            if match is not None:
                days = int(match.group("days") or 0)
                hours = int(match.group("hours") or 0)
                minutes = int(match.group("minutes") or 0)
                secs = float(match.group("seconds") or 0)
                seconds = int(((days * 24 + hours) * 60 + minutes) * 60 + secs)
        else:
            seconds = _coerce_int(text)
    if seconds is None or seconds <= 0:
        return None
    return seconds


def absolutize_url(value: Any, *, base: str | None = None) -> str | None:
    """Return an absolute URL for ``value`` or ``None``.

    Protocol-relative URLs gain ``https:``; root-relative paths are joined to
    ``base`` when one is supplied.
    """

    text = _coerce_str(value)
    if text is None:
        return None
    if text.startswith("//"):
        return f"https:{text}"
    if text.startswith(("https://", "http://")):
        return text
    if text.startswith("/") and base:
        return f"{base.rstrip('/')}{text}"
    return None


def bps_to_kbps(value: Any) -> int | None:
    bits = _coerce_int(value)
    if bits is None or bits <= 0:
        return None
    return max(1, round(bits / 1000))


def codec_from_mime(mime_type: Any) -> str | None:
    """Return the primary codec named in a ``codecs="..."`` mime parameter."""

    text = _coerce_str(mime_type)
    if text is None:
        return None
    match = _CODECS.search(text)
    if match is None:
        return None
    primary = match.group(1).split(",")[0].strip().lower()
    return primary.split(".")[0] or None


def base_mime(mime_type: Any) -> str | None:
    text = _coerce_str(mime_type)
    if text is None:
        return None
    return text.split(";")[0].strip().lower() or None


def expiry_from_url(url: Any) -> float | None:
    """Return the ``expire`` query parameter of a signed stream URL."""

    text = _coerce_str(url)
    if text is None:
        return None
    try:
        query = parse_qs(urlparse(text).query)
    except ValueError:
        return None
    values = query.get("expire")
    if not values:
        return None
    expires = _coerce_int(values[0])
    if expires is None or expires <= 0:
        return None
    return float(expires)


def video_id_from_url(value: Any) -> str | None:
    text = _coerce_str(value)
    if text is None:
        return None
    match = _WATCH_ID.search(text)
    if match is not None:
        return match.group(1)
    if "/" not in text and "?" not in text:
        return text
    return None


def clean_artist(value: Any) -> str | None:
    text = _coerce_str(value)
    if text is None:
        return None
    if text.endswith(_TOPIC_SUFFIX):
        text = text[: -len(_TOPIC_SUFFIX)].strip()
    return text or None


def split_artist_title(raw_title: str, uploader: Any = None) -> tuple[str, str]:
    """Split ``"Artist - Title"`` video titles, dropping ``(Official ...)`` noise."""

    title = _TITLE_NOISE.sub("", raw_title).strip() or raw_title.strip()
    if " - " in title:
        left, right = title.split(" - ", 1)
        if left.strip() and right.strip():
            return left.strip(), right.strip()
    return clean_artist(uploader) or _UNKNOWN_ARTIST, title


def looks_like_music(title: Any, uploader: Any) -> bool:
    haystack = f"{_coerce_str(title) or ''} {_coerce_str(uploader) or ''}".lower()
    return any(hint in haystack for hint in _MUSIC_HINTS)


def _deduplicate(tracks: Iterable[Track]) -> list[Track]:
    seen: set[str] = set()
    unique: list[Track] = []
    for track in tracks:
        if track.id in seen:
            continue
        seen.add(track.id)
        unique.append(track)
    return unique


def _build_track(
    *,
    track_id: Any,
    title: Any,
    artist: Any,
    provider: str,
    thumbnail: str | None,
    duration: Any,
) -> Track | None:
    identifier = _coerce_str(track_id)
    name = _coerce_str(title)
    if identifier is None or name is None:
        return None
    return Track(
        id=identifier,
        title=name,
        artist=clean_artist(artist) or _UNKNOWN_ARTIST,
        source=provider,
        thumbnail=thumbnail,
        duration=parse_duration(duration),
    )


# Piped -------------------------------------------------------------------


def _piped_entries(payload: Any) -> Any:
    mapping = _extract_mapping(payload)
    if mapping is None:
        return payload
    for key in ("items", "relatedStreams", "content"):
        if key in mapping:
            return mapping[key]
    return ()


def normalize_piped_tracks(
    payload: Any, *, provider: str = "piped", base_url: str | None = None
) -> list[Track]:
    """Normalise Piped search, trending or playlist payloads."""

    tracks: list[Track] = []
    for entry in _iter_mappings(_piped_entries(payload)):
        kind = _coerce_str(entry.get("type"))
        if kind is not None and kind != "stream":
            continue
        raw_title = _coerce_str(entry.get("title"))
        uploader = entry.get("uploaderName") or entry.get("uploader")
        artist, title = (
            split_artist_title(raw_title, uploader) if raw_title else (None, None)
        )
        track = _build_track(
            track_id=video_id_from_url(entry.get("url")),
            title=title,
            artist=artist,
            provider=provider,
            thumbnail=absolutize_url(entry.get("thumbnail"), base=base_url),
            duration=entry.get("duration"),
        )
        if track is not None:
            tracks.append(track)
    return _deduplicate(tracks)


def normalize_piped_streams(
    payload: Any, *, provider: str = "piped", base_url: str | None = None
) -> list[StreamCandidate]:
    """Normalise the ``audioStreams`` of a Piped ``/streams/{id}`` payload."""

    mapping = _extract_mapping(payload)
    if mapping is None:
        return []
    title = _coerce_str(mapping.get("title"))
    duration = parse_duration(mapping.get("duration"))
    candidates: list[StreamCandidate] = []
    for entry in _iter_mappings(mapping.get("audioStreams")):
        url = absolutize_url(entry.get("url"), base=base_url)
        mime = _coerce_str(entry.get("mimeType"))
        candidates.append(
            StreamCandidate(
                url=url,
                mime_type=base_mime(mime),
                source=provider,
                bitrate=bps_to_kbps(entry.get("bitrate")),
                codec=(_coerce_str(entry.get("codec")) or codec_from_mime(mime) or "").lower()
                or None,
                quality_label=_coerce_str(entry.get("quality")),
                expires_at=expiry_from_url(url),
                title=title,
                duration=duration,
            )
        )
    return candidates


# Invidious ---------------------------------------------------------------


def _invidious_thumbnail(entry: Mapping[str, Any], base_url: str | None) -> str | None:
    thumbnails = list(_iter_mappings(entry.get("videoThumbnails")))
    preferred = [item for item in thumbnails if item.get("quality") in {"high", "medium"}]
    for item in preferred + thumbnails:
        url = absolutize_url(item.get("url"), base=base_url)
        if url:
            return url
    return None


def normalize_invidious_tracks(
    payload: Any, *, provider: str = "invidious", base_url: str | None = None
) -> list[Track]:
    """Normalise Invidious search, trending or playlist payloads."""

    entries = payload
    mapping = _extract_mapping(payload)
    if mapping is not None:
        entries = mapping.get("videos", ())
    tracks: list[Track] = []
    for entry in _iter_mappings(entries):
        kind = _coerce_str(entry.get("type"))
        if kind is not None and kind != "video":
            continue
        track = _build_track(
            track_id=entry.get("videoId"),
            title=entry.get("title"),
            artist=entry.get("author"),
            provider=provider,
            thumbnail=_invidious_thumbnail(entry, base_url),
            duration=entry.get("lengthSeconds"),
        )
        if track is not None:
            tracks.append(track)
    return _deduplicate(tracks)


def normalize_invidious_streams(
    payload: Any, *, provider: str = "invidious", base_url: str | None = None
) -> list[StreamCandidate]:
    """Normalise audio entries of an Invidious ``/api/v1/videos/{id}`` payload."""

    mapping = _extract_mapping(payload)
    if mapping is None:
        return []
    title = _coerce_str(mapping.get("title"))
    duration = parse_duration(mapping.get("lengthSeconds"))
    candidates: list[StreamCandidate] = []
    for entry in _iter_mappings(mapping.get("adaptiveFormats")):
        mime = _coerce_str(entry.get("type"))
        if mime is None or not mime.lower().startswith("audio/"):
            continue
        url = absolutize_url(entry.get("url"), base=base_url)
        quality = _coerce_str(entry.get("audioQuality"))
        candidates.append(
            StreamCandidate(
                url=url,
                mime_type=base_mime(mime),
                source=provider,
                bitrate=bps_to_kbps(entry.get("bitrate")),
                codec=(_coerce_str(entry.get("encoding")) or codec_from_mime(mime) or "").lower()
                or None,
                quality_label=_audio_quality_label(quality),
                expires_at=expiry_from_url(url),
                title=title,
                duration=duration,
            )
        )
    return candidates


# YouTube Data API --------------------------------------------------------


def _youtube_video_id(entry: Mapping[str, Any]) -> Any:
    # playlistItems carry their own id; the video id lives in resourceId.
    playlist_video = _dig(entry, "snippet", "resourceId", "videoId") or _dig(
        entry, "contentDetails", "videoId"
    )
    if playlist_video is not None:
        return playlist_video
    identifier = entry.get("id")
    if isinstance(identifier, str):
        return identifier
    return _dig(identifier, "videoId")


def _youtube_thumbnail(snippet: Any) -> str | None:
    for size in ("high", "medium", "default"):
        url = absolutize_url(_dig(snippet, "thumbnails", size, "url"))
        if url:
            return url
    return None


def youtube_durations(payload: Any) -> dict[str, int]:
    """Map video ids to seconds from a ``videos?part=contentDetails`` payload."""

    durations: dict[str, int] = {}
    for entry in _iter_mappings(_dig(payload, "items")):
        video_id = _coerce_str(entry.get("id"))
        seconds = parse_duration(_dig(entry, "contentDetails", "duration"))
        if video_id is not None and seconds is not None:
            durations[video_id] = seconds
    return durations


def normalize_youtube_tracks(
    payload: Any,
    *,
    provider: str = "youtube",
    durations: Mapping[str, int] | None = None,
) -> list[Track]:
    """Normalise Data API ``search``, ``videos`` and ``playlistItems`` payloads.

    ``search`` and ``playlistItems`` carry no duration; ``durations`` fills it
    in by video id.
    """

    tracks: list[Track] = []
    for entry in _iter_mappings(_dig(payload, "items")):
        snippet = _extract_mapping(entry.get("snippet")) or {}
        artist = snippet.get("videoOwnerChannelTitle") or snippet.get("channelTitle")
        video_id = _youtube_video_id(entry)
        duration = _dig(entry, "contentDetails", "duration")
        if durations and isinstance(video_id, str) and video_id in durations:
            duration = durations[video_id]
        track = _build_track(
            track_id=video_id,
            title=snippet.get("title"),
            artist=artist,
            provider=provider,
            thumbnail=_youtube_thumbnail(snippet),
            duration=duration,
        )
        if track is not None:
            tracks.append(track)
    return _deduplicate(tracks)


# InnerTube ---------------------------------------------------------------


def _runs_text(node: Any) -> str | None:
    runs = _dig(node, "text", "runs")
    if not isinstance(runs, (list, tuple)):
        return None
    return _coerce_str(_dig(runs, 0, "text"))


def _innertube_item(renderer: Mapping[str, Any], provider: str) -> Track | None:
    video_id = _dig(renderer, "playlistItemData", "videoId") or _dig(
        renderer,
        "overlay",
        "musicItemThumbnailOverlayRenderer",
        "content",
        "musicPlayButtonRenderer",
        "playNavigationEndpoint",
        "watchEndpoint",
        "videoId",
    )
    title = _runs_text(_dig(renderer, "flexColumns", 0, "musicResponsiveListItemFlexColumnRenderer"))
    artist = _runs_text(
        _dig(renderer, "flexColumns", 1, "musicResponsiveListItemFlexColumnRenderer")
    )
    thumbnails = _dig(renderer, "thumbnail", "musicThumbnailRenderer", "thumbnail", "thumbnails")
    thumbnail = absolutize_url(_dig(thumbnails, -1, "url"))
    identifier = _coerce_str(video_id)
    if thumbnail is None and identifier is not None:
        thumbnail = f"https://i.ytimg.com/vi/{identifier}/hqdefault.jpg"
    duration = _runs_text(
        _dig(renderer, "fixedColumns", 0, "musicResponsiveListItemFixedColumnRenderer")
    )
    return _build_track(
        track_id=identifier,
        title=title,
        artist=artist,
        provider=provider,
        thumbnail=thumbnail,
        duration=duration,
    )


def normalize_innertube_search(payload: Any, *, provider: str = "innertube") -> list[Track]:
    """Normalise a YouTube Music ``youtubei/v1/search`` response."""

    sections = _dig(
        payload,
        "contents",
        "tabbedSearchResultsRenderer",
        "tabs",
        0,
        "tabRenderer",
        "content",
        "sectionListRenderer",
        "contents",
    ) or _dig(payload, "continuationContents", "musicShelfContinuation", "contents")
    tracks: list[Track] = []
    for section in _iter_mappings(sections):
        items = _dig(section, "musicShelfRenderer", "contents") or _dig(
            section, "musicCardShelfRenderer", "contents"
        )
        if items is None:
            items = [section]
        for item in _iter_mappings(items):
            renderer = _extract_mapping(item.get("musicResponsiveListItemRenderer"))
            if renderer is None:
                continue
            track = _innertube_item(renderer, provider)
            if track is not None:
                tracks.append(track)
    return _deduplicate(tracks)


def _audio_quality_label(value: str | None) -> str | None:
    if value is None:
        return None
    label = value.upper().removeprefix("AUDIO_QUALITY_").lower()
    return label or None


def normalize_innertube_player(
    payload: Any, *, provider: str = "innertube"
) -> list[StreamCandidate]:
    """Normalise a ``youtubei/v1/player`` response into audio candidates.

    Formats protected by ``signatureCipher`` are kept with ``url=None`` so the
    selector can tell "no audio formats" apart from "no playable audio format".
    """

    streaming = _extract_mapping(_dig(payload, "streamingData"))
    if streaming is None:
        return []
    details = _extract_mapping(_dig(payload, "videoDetails")) or {}
    title = _coerce_str(details.get("title"))
    duration = parse_duration(details.get("lengthSeconds"))
    formats = list(_iter_mappings(streaming.get("adaptiveFormats"))) + list(
        _iter_mappings(streaming.get("formats"))
    )
    candidates: list[StreamCandidate] = []
    for entry in formats:
        mime = _coerce_str(entry.get("mimeType"))
        channels = _coerce_int(entry.get("audioChannels")) or 0
        is_audio = mime is not None and mime.lower().startswith("audio/")
        if not is_audio and channels <= 0:
            continue
        url = absolutize_url(entry.get("url"))
        if url is None and not (entry.get("signatureCipher") or entry.get("cipher")):
            continue
        bitrate = entry.get("averageBitrate") or entry.get("bitrate")
        candidates.append(
            StreamCandidate(
                url=url,
                mime_type=base_mime(mime),
                source=provider,
                bitrate=bps_to_kbps(bitrate),
                codec=codec_from_mime(mime),
                quality_label=_audio_quality_label(_coerce_str(entry.get("audioQuality"))),
                expires_at=expiry_from_url(url),
                title=title,
                duration=duration,
            )
        )
    return candidates


# yt-dlp ------------------------------------------------------------------

_EXT_MIME = {
    "m4a": "audio/mp4",
    "mp4": "audio/mp4",
    "webm": "audio/webm",
    "mp3": "audio/mpeg",
    "ogg": "audio/ogg",
    "opus": "audio/ogg",
}


def _ytdlp_thumbnail(entry: Mapping[str, Any]) -> str | None:
    direct = absolutize_url(entry.get("thumbnail"))
    if direct:
        return direct
    thumbnails = list(_iter_mappings(entry.get("thumbnails")))
    for item in reversed(thumbnails):
        url = absolutize_url(item.get("url"))
        if url:
            return url
    return None


def normalize_ytdlp_tracks(payload: Any, *, provider: str = "ytdlp") -> list[Track]:
    """Normalise ``yt-dlp --dump-single-json`` output for a video or playlist."""

    mapping = _extract_mapping(payload)
    if mapping is None:
        return []
    entries = mapping.get("entries")
    items = list(_iter_mappings(entries)) if entries is not None else [mapping]
    tracks: list[Track] = []
    for entry in items:
        artist = entry.get("artist") or entry.get("uploader") or entry.get("channel")
        track = _build_track(
            track_id=entry.get("id"),
            title=entry.get("track") or entry.get("title"),
            artist=artist,
            provider=provider,
            thumbnail=_ytdlp_thumbnail(entry),
            duration=entry.get("duration"),
        )
        if track is not None:
            tracks.append(track)
    return _deduplicate(tracks)


def normalize_ytdlp_formats(payload: Any, *, provider: str = "ytdlp") -> list[StreamCandidate]:
    """Normalise the audio-only ``formats`` of a single-video yt-dlp payload."""

    mapping = _extract_mapping(payload)
    if mapping is None:
        return []
    title = _coerce_str(mapping.get("title"))
    duration = parse_duration(mapping.get("duration"))
    candidates: list[StreamCandidate] = []
    for entry in _iter_mappings(mapping.get("formats")):
        acodec = _coerce_str(entry.get("acodec"))
        vcodec = _coerce_str(entry.get("vcodec"))
        if acodec in {None, "none"} or vcodec not in {None, "none"}:
            continue
        url = absolutize_url(entry.get("url"))
        ext = (_coerce_str(entry.get("audio_ext")) or _coerce_str(entry.get("ext")) or "").lower()
        bitrate = _coerce_int(entry.get("abr")) or _coerce_int(entry.get("tbr"))
        candidates.append(
            StreamCandidate(
                url=url,
                mime_type=_EXT_MIME.get(ext),
                source=provider,
                bitrate=bitrate if bitrate and bitrate > 0 else None,
                codec=(acodec or "").split(".")[0].lower() or None,
                quality_label=_coerce_str(entry.get("format_note"))
                or _coerce_str(entry.get("format_id")),
                expires_at=expiry_from_url(url),
                title=title,
                duration=duration,
            )
        )
    return candidates


__all__ = [
    "absolutize_url",
    "base_mime",
    "bps_to_kbps",
    "clean_artist",
    "codec_from_mime",
    "expiry_from_url",
    "looks_like_music",
    "normalize_innertube_player",
    "normalize_innertube_search",
    "normalize_invidious_streams",
    "normalize_invidious_tracks",
    "normalize_piped_streams",
    "normalize_piped_tracks",
    "normalize_youtube_tracks",
    "normalize_ytdlp_formats",
    "normalize_ytdlp_tracks",
    "parse_duration",
    "split_artist_title",
    "video_id_from_url",
    "youtube_durations",
]
