from __future__ import annotations

import pytest

from vibestream.integrations.normalizers import (
    absolutize_url,
    bps_to_kbps,
    codec_from_mime,
    expiry_from_url,
    normalize_innertube_player,
    normalize_innertube_search,
    normalize_invidious_streams,
    normalize_invidious_tracks,
    normalize_piped_streams,
    normalize_piped_tracks,
    normalize_youtube_tracks,
    normalize_ytdlp_formats,
    normalize_ytdlp_tracks,
    parse_duration,
    split_artist_title,
    youtube_durations,
)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("3:45", 225),
        ("1:02:03", 3723),
        (215, 215),
        (215.7, 215),
        ("180", 180),
        ("PT4M13S", 253),
        ("PT1H", 3600),
        (0, None),
        (-5, None),
        ("", None),
        ("soon", None),
        (None, None),
        (True, None),
        ({"seconds": 3}, None),
    ],
)
def test_parse_duration(value: object, expected: int | None) -> None:
    assert parse_duration(value) == expected


def test_absolutize_url() -> None:
    assert absolutize_url("//i.ytimg.com/vi/x/hq.jpg") == "https://i.ytimg.com/vi/x/hq.jpg"
    assert absolutize_url("/vi/x/hq.jpg", base="https://yewtu.be/") == "https://yewtu.be/vi/x/hq.jpg"
    assert absolutize_url("/vi/x/hq.jpg") is None
    assert absolutize_url("https://cdn/x") == "https://cdn/x"
    assert absolutize_url(42) is None


def test_stream_field_helpers() -> None:
    assert bps_to_kbps(160_000) == 160
    assert bps_to_kbps("131072") == 131
    assert bps_to_kbps(0) is None
    assert codec_from_mime('audio/webm; codecs="opus"') == "opus"
    assert codec_from_mime('audio/mp4; codecs="mp4a.40.2"') == "mp4a"
    assert codec_from_mime("audio/webm") is None
    assert expiry_from_url("https://rr1.googlevideo.com/videoplayback?expire=1700000000&id=1") == 1700000000.0
    assert expiry_from_url("https://cdn/no-expiry") is None


def test_split_artist_title_strips_noise() -> None:
    assert split_artist_title("Daft Punk - One More Time (Official Video)") == (
        "Daft Punk",
        "One More Time",
    )
    assert split_artist_title("Intro", "Some Band - Topic") == ("Some Band", "Intro")
    assert split_artist_title("Untitled") == ("Unknown Artist", "Untitled")


@pytest.mark.parametrize(
    "payload", [None, "oops", 42, [1, 2], {"items": "nope"}, {"items": [None, "x"]}]
)
def test_track_normalizers_are_total(payload: object) -> None:
    assert normalize_piped_tracks(payload) == []
    assert normalize_invidious_tracks(payload) == []
    assert normalize_youtube_tracks(payload) == []
    assert normalize_innertube_search(payload) == []
    assert normalize_ytdlp_tracks(payload) == []


@pytest.mark.parametrize("payload", [None, "oops", [], {"audioStreams": 3}, {"formats": {}}])
def test_stream_normalizers_are_total(payload: object) -> None:
    assert normalize_piped_streams(payload) == []
    assert normalize_invidious_streams(payload) == []
    assert normalize_innertube_player(payload) == []
    assert normalize_ytdlp_formats(payload) == []


def test_normalize_piped_tracks() -> None:
    payload = {
        "items": [
            {
                "type": "stream",
                "url": "/watch?v=abc123",
                "title": "Nujabes - Feather (Official Audio)",
                "uploaderName": "Nujabes - Topic",
                "thumbnail": "/vi/abc123/hq.jpg",
                "duration": 245,
            },
            {"type": "channel", "url": "/channel/xyz", "name": "Someone"},
            {"type": "stream", "url": "/watch?v=abc123", "title": "Duplicate"},
            {"type": "stream", "url": "/watch?v=missing-title"},
            {"type": "stream", "url": "/watch?v=def456", "title": "Rain", "uploaderName": "Lofi Girl"},
        ]
    }

    tracks = normalize_piped_tracks(payload, base_url="https://pipedapi.kavin.rocks")

    assert [track.id for track in tracks] == ["abc123", "def456"]
    first = tracks[0]
    assert first.title == "Feather"
    assert first.artist == "Nujabes"
    assert first.thumbnail == "https://pipedapi.kavin.rocks/vi/abc123/hq.jpg"
    assert first.duration == 245
    assert first.source == "piped"
    assert tracks[1].artist == "Lofi Girl"


def test_normalize_piped_playlist_uses_related_streams() -> None:
    payload = {"relatedStreams": [{"url": "/watch?v=p1", "title": "A - B", "duration": -1}]}

    tracks = normalize_piped_tracks(payload)

    assert [(track.id, track.artist, track.title, track.duration) for track in tracks] == [
        ("p1", "A", "B", None)
    ]


def test_normalize_piped_streams() -> None:
    payload = {
        "title": "Feather",
        "duration": 245,
        "audioStreams": [
            {
                "url": "https://pipedproxy.example/videoplayback?expire=1700000000",
                "mimeType": "audio/webm",
                "codec": "opus",
                "bitrate": 160_000,
                "quality": "160 kbps",
            },
            {"url": "https://pipedproxy.example/m4a", "mimeType": 'audio/mp4; codecs="mp4a.40.2"', "bitrate": 128_000},
        ],
    }

    candidates = normalize_piped_streams(payload)

    assert [(item.bitrate, item.codec, item.mime_type) for item in candidates] == [
        (160, "opus", "audio/webm"),
        (128, "mp4a", "audio/mp4"),
    ]
    assert candidates[0].expires_at == 1700000000.0
    assert candidates[0].title == "Feather"
    assert candidates[1].expires_at is None


def test_normalize_invidious_tracks_and_streams() -> None:
    tracks = normalize_invidious_tracks(
        [
            {
                "type": "video",
                "videoId": "inv1",
                "title": "Song",
                "author": "Band",
                "lengthSeconds": 200,
                "videoThumbnails": [
                    {"quality": "default", "url": "/vi/inv1/default.jpg"},
                    {"quality": "high", "url": "/vi/inv1/hq.jpg"},
                ],
            },
            {"type": "playlist", "playlistId": "PL1", "title": "Mix"},
        ],
        base_url="https://yewtu.be",
    )
    assert [(track.id, track.thumbnail) for track in tracks] == [
        ("inv1", "https://yewtu.be/vi/inv1/hq.jpg")
    ]

    candidates = normalize_invidious_streams(
        {
            "title": "Song",
            "lengthSeconds": 200,
            "adaptiveFormats": [
                {"type": 'video/mp4; codecs="avc1"', "url": "https://v/1", "bitrate": 900_000},
                {
                    "type": 'audio/webm; codecs="opus"',
                    "url": "https://a/1",
                    "bitrate": "130000",
                    "audioQuality": "AUDIO_QUALITY_MEDIUM",
                },
            ],
        }
    )
    assert len(candidates) == 1
    assert candidates[0].bitrate == 130
    assert candidates[0].codec == "opus"
    assert candidates[0].quality_label == "medium"


def test_normalize_youtube_tracks_handles_all_item_shapes() -> None:
    payload = {
        "items": [
            {
                "id": {"kind": "youtube#video", "videoId": "s1"},
                "snippet": {
                    "title": "Search Hit",
                    "channelTitle": "Artist - Topic",
                    "thumbnails": {"medium": {"url": "https://i.ytimg.com/s1/mq.jpg"}},
                },
            },
            {
                "id": "v1",
                "snippet": {"title": "Trending Hit", "channelTitle": "Label"},
                "contentDetails": {"duration": "PT3M30S"},
            },
            {
                "id": "UExpdGVt",
                "snippet": {
                    "title": "Playlist Item",
                    "videoOwnerChannelTitle": "Owner",
                    "resourceId": {"videoId": "p1"},
                },
            },
        ]
    }

    tracks = normalize_youtube_tracks(payload)

    assert [track.id for track in tracks] == ["s1", "v1", "p1"]
    assert tracks[0].artist == "Artist"
    assert tracks[0].thumbnail == "https://i.ytimg.com/s1/mq.jpg"
    assert tracks[1].duration == 210
    assert tracks[2].artist == "Owner"


def test_youtube_durations_fill_missing_track_durations() -> None:
    details = {
        "items": [
            {"id": "s1", "contentDetails": {"duration": "PT4M5S"}},
            {"id": "p1", "contentDetails": {"duration": "PT1H"}},
            {"id": "live", "contentDetails": {"duration": "P0D"}},
            {"contentDetails": {"duration": "PT10S"}},
            "garbage",
        ]
    }
    payload = {
        "items": [
            {"id": {"videoId": "s1"}, "snippet": {"title": "Search Hit"}},
            {
                "id": "UExpdGVt",
                "snippet": {"title": "Playlist Item", "resourceId": {"videoId": "p1"}},
            },
            {"id": {"videoId": "live"}, "snippet": {"title": "Live Set"}},
        ]
    }

    durations = youtube_durations(details)
    tracks = normalize_youtube_tracks(payload, durations=durations)

    assert durations == {"s1": 245, "p1": 3600}
    assert [(track.id, track.duration) for track in tracks] == [
        ("s1", 245),
        ("p1", 3600),
        ("live", None),
    ]
    assert youtube_durations(None) == {}


def _music_item(video_id: str, title: str, artist: str, duration: str) -> dict:
    def column(text: str) -> dict:
        return {"musicResponsiveListItemFlexColumnRenderer": {"text": {"runs": [{"text": text}]}}}

    return {
        "musicResponsiveListItemRenderer": {
            "playlistItemData": {"videoId": video_id},
            "flexColumns": [column(title), column(artist)],
            "fixedColumns": [
                {"musicResponsiveListItemFixedColumnRenderer": {"text": {"runs": [{"text": duration}]}}}
            ],
        }
    }


def test_normalize_innertube_search() -> None:
    payload = {
        "contents": {
            "tabbedSearchResultsRenderer": {
                "tabs": [
                    {
                        "tabRenderer": {
                            "content": {
                                "sectionListRenderer": {
                                    "contents": [
                                        {
                                            "musicShelfRenderer": {
                                                "contents": [
                                                    _music_item("m1", "Song One", "Singer", "3:05"),
                                                    _music_item("m2", "Song Two", "Singer", "4:00"),
                                                ]
                                            }
                                        }
                                    ]
                                }
                            }
                        }
                    }
                ]
            }
        }
    }

    tracks = normalize_innertube_search(payload)

    assert [(track.id, track.title, track.artist, track.duration) for track in tracks] == [
        ("m1", "Song One", "Singer", 185),
        ("m2", "Song Two", "Singer", 240),
    ]
    assert tracks[0].thumbnail == "https://i.ytimg.com/vi/m1/hqdefault.jpg"


def test_normalize_innertube_player_keeps_ciphered_audio_without_url() -> None:
    payload = {
        "videoDetails": {"title": "Song", "lengthSeconds": "185"},
        "streamingData": {
            "adaptiveFormats": [
                {
                    "mimeType": 'audio/webm; codecs="opus"',
                    "url": "https://rr.googlevideo.com/videoplayback?expire=1700000000",
                    "averageBitrate": 135_000,
                    "audioQuality": "AUDIO_QUALITY_MEDIUM",
                },
                {"mimeType": 'audio/mp4; codecs="mp4a.40.2"', "signatureCipher": "s=abc"},
                {"mimeType": 'video/mp4; codecs="avc1"', "url": "https://video"},
            ]
        },
    }

    candidates = normalize_innertube_player(payload)

    assert len(candidates) == 2
    assert candidates[0].bitrate == 135
    assert candidates[0].expires_at == 1700000000.0
    assert candidates[0].duration == 185
    assert candidates[1].url is None


def test_normalize_ytdlp_tracks_and_formats() -> None:
    listing = {
        "entries": [
            {"id": "y1", "title": "First", "uploader": "Channel", "duration": 120.0},
            {"id": "y2", "title": "Second", "channel": "Other"},
        ]
    }
    assert [track.id for track in normalize_ytdlp_tracks(listing)] == ["y1", "y2"]
    single = normalize_ytdlp_tracks({"id": "solo", "title": "Solo", "artist": "Star"})
    assert single[0].artist == "Star"

    formats = normalize_ytdlp_formats(
        {
            "title": "First",
            "duration": 120,
            "formats": [
                {"format_id": "251", "acodec": "opus", "vcodec": "none", "ext": "webm", "abr": 129.5, "url": "https://a/251"},
                {"format_id": "140", "acodec": "mp4a.40.2", "vcodec": "none", "ext": "m4a", "abr": 128, "url": "https://a/140"},
                {"format_id": "18", "acodec": "mp4a.40.2", "vcodec": "avc1", "ext": "mp4", "url": "https://v/18"},
                {"format_id": "sb0", "acodec": "none", "vcodec": "none", "ext": "mhtml"},
            ],
        }
    )
    assert [(item.codec, item.mime_type, item.bitrate) for item in formats] == [
        ("opus", "audio/webm", 129),
        ("mp4a", "audio/mp4", 128),
    ]
