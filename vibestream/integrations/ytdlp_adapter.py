"""Command-line extractor provider backed by ``yt-dlp``."""

from __future__ import annotations

import asyncio
import json
import shutil
from collections.abc import Awaitable, Callable, Mapping, Sequence
from contextlib import suppress
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

from vibestream.config import DEFAULT_YTDLP_BINARY, DEFAULT_YTDLP_TRENDING_QUERY
from vibestream.integrations.base import ProviderAdapter
from vibestream.integrations.contracts import (
    ProviderError,
    ProviderInvalidResponseError,
    ProviderNotFoundError,
    ProviderRateLimitedError,
    ProviderTransportError,
    QualityTier,
    StreamCandidate,
    Track,
)
from vibestream.integrations.normalizers import normalize_ytdlp_formats, normalize_ytdlp_tracks
from vibestream.logging import get_logger

logger = get_logger(__name__)

_RATE_LIMIT_MARKERS = ("http error 429", "too many requests", "not a bot")
_NOT_FOUND_MARKERS = (
    "video unavailable",
    "private video",
    "is not available",
    "does not exist",
    "http error 404",
    "this playlist",
)


@dataclass(slots=True, frozen=True)
class ProcessOutput:
    returncode: int
    stdout: bytes
    stderr: bytes


ProcessRunner = Callable[[Sequence[str]], Awaitable[ProcessOutput]]


async def run_process(args: Sequence[str]) -> ProcessOutput:
    """Run ``args`` and collect its output; the child is killed if we are cancelled."""

    process = await asyncio.create_subprocess_exec(
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await process.communicate()
    except asyncio.CancelledError:
        if process.returncode is None:
            with suppress(ProcessLookupError):
                process.kill()
            await process.wait()
        raise
    return ProcessOutput(process.returncode or 0, stdout or b"", stderr or b"")


def _classify_failure(provider: str, returncode: int, stderr: str) -> ProviderError:
    lowered = stderr.lower()
    summary = stderr.strip().splitlines()[-1] if stderr.strip() else f"exit status {returncode}"
    if any(marker in lowered for marker in _RATE_LIMIT_MARKERS):
        return ProviderRateLimitedError(provider, f"yt-dlp was throttled: {summary}")
    if any(marker in lowered for marker in _NOT_FOUND_MARKERS):
        return ProviderNotFoundError(provider, f"yt-dlp found nothing: {summary}")
    return ProviderTransportError(provider, f"yt-dlp failed: {summary}")


class YtDlpAdapter(ProviderAdapter):
    """Thin wrapper around the ``yt-dlp`` CLI."""

    name = "ytdlp"

    def __init__(
        self,
        *,
        timeout_ms: int,
        binary: str = DEFAULT_YTDLP_BINARY,
        trending_query: str = DEFAULT_YTDLP_TRENDING_QUERY,
        runner: ProcessRunner | None = None,
    ) -> None:
        super().__init__(timeout_ms=timeout_ms)
        self._binary = binary
        self._trending_query = trending_query
        self._runner = runner or run_process

    async def _search(self, query: str, limit: int) -> Sequence[Track]:
        text = " ".join(query.split())
        payload = await self._dump(f"ytsearch{limit}:{text}", flat=True)
        return normalize_ytdlp_tracks(payload, provider=self.name)

    async def _trending(self, limit: int) -> Sequence[Track]:
        payload = await self._dump(f"ytsearch{limit}:{self._trending_query}", flat=True)
        return normalize_ytdlp_tracks(payload, provider=self.name)

    async def _get_playlist(self, playlist_id: str, limit: int) -> Sequence[Track]:
        url = f"https://www.youtube.com/playlist?list={quote(playlist_id, safe='')}"
        payload = await self._dump(url, flat=True, playlist_end=limit)
        return normalize_ytdlp_tracks(payload, provider=self.name)

    async def _get_stream(
        self, track_id: str, quality_hint: QualityTier | None
    ) -> Sequence[StreamCandidate]:
        url = f"https://www.youtube.com/watch?v={quote(track_id, safe='')}"
        payload = await self._dump(url, single=True)
        return normalize_ytdlp_formats(payload, provider=self.name)

    def build_command(
        self,
        target: str,
        *,
        flat: bool = False,
        single: bool = False,
        playlist_end: int | None = None,
    ) -> list[str]:
        args = [self._binary, "--dump-single-json", "--no-warnings", "--skip-download"]
        if flat:
            args.append("--flat-playlist")
        if single:
            args.append("--no-playlist")
        if playlist_end is not None:
            args.extend(["--playlist-end", str(max(1, playlist_end))])
        args.extend(["--", target])
        return args

    async def _dump(self, target: str, **options: Any) -> Any:
        args = self.build_command(target, **options)
        logger.debug("Executing yt-dlp command: %s", " ".join(args))
        try:
            output = await self._runner(args)
        except FileNotFoundError as exc:
            raise ProviderTransportError(
                self.name, f"yt-dlp binary {self._binary!r} not found", cause=exc
            ) from exc
        except OSError as exc:
            raise ProviderTransportError(self.name, "yt-dlp could not be started", cause=exc) from exc

        if output.returncode != 0:
            stderr = output.stderr.decode("utf-8", errors="replace")
            raise _classify_failure(self.name, output.returncode, stderr)
        try:
            return json.loads(output.stdout.decode("utf-8", errors="replace"))
        except ValueError as exc:
            raise ProviderInvalidResponseError(
                self.name, "yt-dlp produced invalid JSON", cause=exc
            ) from exc

    async def check_health(self) -> Mapping[str, Any]:
        location = shutil.which(self._binary)
        if location is None:
            return {"status": "down", "details": {"reason": "binary missing", "binary": self._binary}}
        return {"status": "ok", "details": {"binary": location}}


__all__ = ["ProcessOutput", "ProcessRunner", "YtDlpAdapter", "run_process"]
