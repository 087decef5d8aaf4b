from __future__ import annotations

import asyncio
import json
import os
import sys
from collections.abc import Sequence
from pathlib import Path

import pytest

from vibestream.integrations.contracts import FailureKind
from vibestream.integrations.ytdlp_adapter import ProcessOutput, YtDlpAdapter, run_process


class ScriptedRunner:
    """Return a canned process result and remember the argv it was given."""

    def __init__(self, output: ProcessOutput | Exception) -> None:
        self._output = output
        self.commands: list[list[str]] = []

    async def __call__(self, args: Sequence[str]) -> ProcessOutput:
        self.commands.append(list(args))
        if isinstance(self._output, Exception):
            raise self._output
        return self._output


def _ok(payload: object) -> ProcessOutput:
    return ProcessOutput(returncode=0, stdout=json.dumps(payload).encode(), stderr=b"")


def _failed(stderr: str, returncode: int = 1) -> ProcessOutput:
    return ProcessOutput(returncode=returncode, stdout=b"", stderr=stderr.encode())


@pytest.mark.asyncio
async def test_search_runs_flat_ytsearch() -> None:
    runner = ScriptedRunner(
        _ok({"entries": [{"id": "a", "title": "Song", "uploader": "Band", "duration": 200}]})
    )
    adapter = YtDlpAdapter(timeout_ms=5000, binary="yt-dlp", runner=runner)

    result = await adapter.search("  lofi   beats ", 5)

    assert [track.id for track in result.payload] == ["a"]
    assert result.payload[0].source == "ytdlp"
    assert runner.commands == [
        [
            "yt-dlp",
            "--dump-single-json",
            "--no-warnings",
            "--skip-download",
            "--flat-playlist",
            "--",
            "ytsearch5:lofi beats",
        ]
    ]


@pytest.mark.asyncio
async def test_trending_uses_configured_query() -> None:
    runner = ScriptedRunner(_ok({"entries": []}))
    adapter = YtDlpAdapter(timeout_ms=5000, trending_query="weekly charts", runner=runner)

    result = await adapter.trending(10)

    assert result.is_empty
    assert runner.commands[0][-1] == "ytsearch10:weekly charts"


@pytest.mark.asyncio
async def test_playlist_limits_playlist_end() -> None:
    runner = ScriptedRunner(_ok({"entries": [{"id": "p1", "title": "One"}]}))
    adapter = YtDlpAdapter(timeout_ms=5000, runner=runner)

    await adapter.get_playlist("PL abc", 25)

    command = runner.commands[0]
    assert command[command.index("--playlist-end") + 1] == "25"
    assert command[-1] == "https://www.youtube.com/playlist?list=PL%20abc"


@pytest.mark.asyncio
async def test_stream_returns_audio_only_formats() -> None:
    runner = ScriptedRunner(
        _ok(
            {
                "id": "a",
                "title": "Song",
                "duration": 200,
                "formats": [
                    {"acodec": "opus", "vcodec": "none", "ext": "webm", "abr": 160, "url": "https://a/251"},
                    {"acodec": "mp4a.40.2", "vcodec": "avc1", "ext": "mp4", "url": "https://v/18"},
                ],
            }
        )
    )
    adapter = YtDlpAdapter(timeout_ms=5000, runner=runner)

    result = await adapter.get_stream("a")

    assert [(item.codec, item.bitrate) for item in result.payload] == [("opus", 160)]
    assert "--no-playlist" in runner.commands[0]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("stderr", "kind"),
    [
        ("ERROR: [youtube] a: HTTP Error 429: Too Many Requests", FailureKind.RATE_LIMITED),
        ("ERROR: Sign in to confirm you're not a bot", FailureKind.RATE_LIMITED),
        ("ERROR: unable to download webpage: connection reset", FailureKind.TRANSPORT),
        ("", FailureKind.TRANSPORT),
    ],
)
async def test_process_failures_are_classified(stderr: str, kind: FailureKind) -> None:
    adapter = YtDlpAdapter(timeout_ms=5000, runner=ScriptedRunner(_failed(stderr)))

    result = await adapter.search("song", 5)

    assert result.failure is not None
    assert result.failure.kind is kind


@pytest.mark.asyncio
async def test_unavailable_video_is_empty() -> None:
    adapter = YtDlpAdapter(
        timeout_ms=5000, runner=ScriptedRunner(_failed("ERROR: [youtube] x: Video unavailable"))
    )

    result = await adapter.get_stream("x")

    assert result.is_empty
    assert result.failure is None


@pytest.mark.asyncio
async def test_missing_binary_is_transport_failure() -> None:
    adapter = YtDlpAdapter(
        timeout_ms=5000, binary="missing-yt-dlp", runner=ScriptedRunner(FileNotFoundError())
    )

    result = await adapter.search("song", 5)

    assert result.failure is not None
    assert result.failure.kind is FailureKind.TRANSPORT
    assert "missing-yt-dlp" in result.failure.message


@pytest.mark.asyncio
async def test_garbage_output_is_invalid_response() -> None:
    runner = ScriptedRunner(ProcessOutput(returncode=0, stdout=b"[download] 10%", stderr=b""))
    adapter = YtDlpAdapter(timeout_ms=5000, runner=runner)

    result = await adapter.search("song", 5)

    assert result.failure is not None
    assert result.failure.kind is FailureKind.INVALID_RESPONSE


@pytest.mark.asyncio
async def test_health_reports_missing_binary() -> None:
    adapter = YtDlpAdapter(timeout_ms=5000, binary="vibestream-no-such-binary")

    health = await adapter.check_health()

    assert health["status"] == "down"
    assert health["details"]["binary"] == "vibestream-no-such-binary"


_SLEEPER = (
    "import os, sys, time\n"
    "with open(sys.argv[1], 'w') as handle:\n"
    "    handle.write(str(os.getpid()))\n"
    "time.sleep(30)\n"
)


async def _wait_for_pid(pid_file: Path) -> int:
    for _ in range(200):
        if pid_file.exists() and pid_file.read_text().strip():
            return int(pid_file.read_text())
        await asyncio.sleep(0.05)
    raise AssertionError("child process never reported its pid")


@pytest.mark.asyncio
async def test_run_process_collects_output() -> None:
    output = await run_process(
        [sys.executable, "-c", "import sys; print('out'); print('err', file=sys.stderr); sys.exit(3)"]
    )

    assert output.returncode == 3
    assert output.stdout.strip() == b"out"
    assert output.stderr.strip() == b"err"


@pytest.mark.asyncio
async def test_run_process_kills_child_on_timeout(tmp_path: Path) -> None:
    pid_file = tmp_path / "child.pid"
    task = asyncio.ensure_future(run_process([sys.executable, "-c", _SLEEPER, str(pid_file)]))
    pid = await _wait_for_pid(pid_file)

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(task, 0.05)

    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)


@pytest.mark.asyncio
async def test_run_process_kills_child_on_cancellation(tmp_path: Path) -> None:
    pid_file = tmp_path / "child.pid"
    task = asyncio.ensure_future(run_process([sys.executable, "-c", _SLEEPER, str(pid_file)]))
    pid = await _wait_for_pid(pid_file)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)
