from __future__ import annotations

import pytest

from tests.helpers import StubClock
from vibestream.config import CooldownConfig
from vibestream.integrations.contracts import FailureKind
from vibestream.services.state import ResolverState


def _state(clock: StubClock, **overrides: float) -> ResolverState:
    options = {"failure_threshold": 3, "window_s": 120, "interval_s": 60, "rate_limit_s": 300}
    options.update(overrides)
    return ResolverState(time_func=clock, **options)


def test_threshold_failures_inside_window_start_cooldown(clock: StubClock) -> None:
    state = _state(clock)

    assert state.record_failure("piped", FailureKind.TRANSPORT) is False
    assert state.record_failure("piped", FailureKind.INVALID_RESPONSE) is False
    assert state.record_failure("piped", FailureKind.TRANSPORT) is True

    assert state.is_cooling_down("piped") is True
    assert state.cooldown_remaining("piped") == pytest.approx(60)
    clock.advance(60.5)
    assert state.is_cooling_down("piped") is False


def test_failures_outside_window_do_not_count(clock: StubClock) -> None:
    state = _state(clock)

    state.record_failure("piped", FailureKind.TRANSPORT)
    clock.advance(121)
    state.record_failure("piped", FailureKind.TRANSPORT)
    state.record_failure("piped", FailureKind.TRANSPORT)

    assert state.failure_count("piped") == 2
    assert state.is_cooling_down("piped") is False


def test_success_resets_streak(clock: StubClock) -> None:
    state = _state(clock)

    state.record_failure("piped", FailureKind.TRANSPORT)
    state.record_failure("piped", FailureKind.TRANSPORT)
    state.record_success("piped")
    state.record_failure("piped", FailureKind.TRANSPORT)

    assert state.failure_count("piped") == 1
    assert state.is_cooling_down("piped") is False


def test_rate_limit_cools_down_immediately(clock: StubClock) -> None:
    state = _state(clock)

    assert state.record_failure("youtube", FailureKind.RATE_LIMITED) is True
    assert state.cooldown_remaining("youtube") == pytest.approx(300)


def test_rate_limit_honours_longer_retry_after(clock: StubClock) -> None:
    state = _state(clock)

    state.record_failure("youtube", FailureKind.RATE_LIMITED, retry_after_ms=900_000)

    assert state.cooldown_remaining("youtube") == pytest.approx(900)


def test_unknown_provider_is_healthy(clock: StubClock) -> None:
    state = _state(clock)

    assert state.is_cooling_down("ytdlp") is False
    assert state.failure_count("ytdlp") == 0
    assert state.last_failure_kind("ytdlp") is None


def test_snapshot_and_reset(clock: StubClock) -> None:
    state = ResolverState.from_config(
        CooldownConfig(failure_threshold=1, window_s=120, interval_s=30, rate_limit_s=300),
        time_func=clock,
    )

    state.record_success("piped")
    state.record_failure("piped", FailureKind.TRANSPORT, message="boom")

    snapshot = state.snapshot()["piped"]
    assert snapshot.cooling_down is True
    assert snapshot.cooldown_remaining_s == pytest.approx(30)
    assert snapshot.total_failures == 1
    assert snapshot.total_successes == 1
    assert snapshot.last_failure_kind is FailureKind.TRANSPORT
    assert snapshot.last_failure_message == "boom"

    state.reset("piped")
    assert state.is_cooling_down("piped") is False
    assert state.snapshot(["piped"])["piped"].total_failures == 0


def test_threshold_must_be_positive() -> None:
    with pytest.raises(ValueError):
        ResolverState(failure_threshold=0)
