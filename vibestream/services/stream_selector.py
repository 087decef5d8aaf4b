"""Pick one playable audio stream for a requested quality tier."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from vibestream.config import (
    DEFAULT_BITRATE_FLOOR_KBPS,
    DEFAULT_CODEC_ALLOWLIST,
    DEFAULT_MEDIUM_CEILING_KBPS,
    SelectorConfig,
)
from vibestream.integrations.contracts import QualityTier, StreamCandidate
from vibestream.integrations.normalizers import base_mime

_CONTAINER_PREFERENCE: tuple[str, ...] = ("audio/webm", "audio/mp4")


class StreamSelectionError(RuntimeError):
    """Raised when no candidate can be returned."""


class NoStreamCandidatesError(StreamSelectionError):
    def __init__(self) -> None:
        super().__init__("no stream candidates supplied")


class NoValidStreamError(StreamSelectionError):
    """Candidates existed but none had both a URL and a MIME type."""

    def __init__(self, total: int) -> None:
        super().__init__(f"none of {total} stream candidates is playable")
        self.total = total


def is_playable(candidate: StreamCandidate) -> bool:
    return bool(candidate.url) and base_mime(candidate.mime_type) is not None


@dataclass(slots=True, frozen=True)
class StreamSelector:
    """Ranks candidates by bitrate for a tier and breaks ties deterministically.

    Ties are resolved by position in ``codec_allowlist``, then by container
    (``audio/webm`` before ``audio/mp4``), then by input order. Candidates
    without a bitrate rank below every candidate that has one.
    """

    bitrate_floor_kbps: int = DEFAULT_BITRATE_FLOOR_KBPS
    medium_ceiling_kbps: int = DEFAULT_MEDIUM_CEILING_KBPS
    codec_allowlist: tuple[str, ...] = DEFAULT_CODEC_ALLOWLIST

    @classmethod
    def from_config(cls, config: SelectorConfig) -> "StreamSelector":
        return cls(
            bitrate_floor_kbps=config.bitrate_floor_kbps,
            medium_ceiling_kbps=config.medium_ceiling_kbps,
            codec_allowlist=config.codec_allowlist,
        )

    def select(
        self, candidates: Sequence[StreamCandidate], tier: QualityTier | str | None = None
    ) -> StreamCandidate:
        if not candidates:
            raise NoStreamCandidatesError()
        indexed = [(index, item) for index, item in enumerate(candidates) if is_playable(item)]
        if not indexed:
            raise NoValidStreamError(len(candidates))

        resolved_tier = QualityTier.parse(tier)
        target = self._target_bitrate(
            [item.bitrate for _, item in indexed if item.bitrate is not None], resolved_tier
        )
        pool = [(index, item) for index, item in indexed if item.bitrate == target]
        _, chosen = min(pool, key=lambda pair: self._preference(pair[1], pair[0]))
        return chosen

    def _target_bitrate(self, bitrates: list[int], tier: QualityTier) -> int | None:
        if not bitrates:
            return None
        if tier in (QualityTier.HIGH, QualityTier.AUTO):
            return max(bitrates)
        floor = self.bitrate_floor_kbps
        if tier is QualityTier.LOW:
            adequate = [value for value in bitrates if value >= floor]
            return min(adequate) if adequate else max(bitrates)

        ceiling = max(self.medium_ceiling_kbps, floor)
        within = [value for value in bitrates if floor <= value <= ceiling]
        if within:
            return max(within)
        above = [value for value in bitrates if value > ceiling]
        if above:
            return min(above)
        return max(bitrates)

    def _preference(self, candidate: StreamCandidate, index: int) -> tuple[int, int, int]:
        codec = (candidate.codec or "").lower()
        codec_rank = len(self.codec_allowlist)
        for position, allowed in enumerate(self.codec_allowlist):
            if codec.startswith(allowed):
                codec_rank = position
                break
        mime = base_mime(candidate.mime_type) or ""
        container_rank = (
            _CONTAINER_PREFERENCE.index(mime)
            if mime in _CONTAINER_PREFERENCE
            else len(_CONTAINER_PREFERENCE)
        )
        return codec_rank, container_rank, index


def select_stream(
    candidates: Sequence[StreamCandidate],
    tier: QualityTier | str | None = None,
    *,
    selector: StreamSelector | None = None,
) -> StreamCandidate:
    return (selector or StreamSelector()).select(candidates, tier)


__all__ = [
    "NoStreamCandidatesError",
    "NoValidStreamError",
    "StreamSelectionError",
    "StreamSelector",
    "is_playable",
    "select_stream",
]
