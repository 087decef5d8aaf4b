"""Per-provider failure bookkeeping and cool-down windows."""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from vibestream.config import CooldownConfig
from vibestream.integrations.contracts import FailureKind
from vibestream.services.cache import TimeProvider


@dataclass(slots=True)
class _ProviderRecord:
    failures: deque[float] = field(default_factory=deque)
    cooldown_until: float = 0.0
    last_failure_kind: FailureKind | None = None
    last_failure_message: str | None = None
    total_failures: int = 0
    total_successes: int = 0


@dataclass(slots=True, frozen=True)
class ProviderStateSnapshot:
    provider: str
    consecutive_failures: int
    total_failures: int
    total_successes: int
    cooling_down: bool
    cooldown_remaining_s: float
    last_failure_kind: FailureKind | None
    last_failure_message: str | None


class ResolverState:
    """Cool-down state shared by every request of one resolver instance.

    A provider enters cool-down after ``failure_threshold`` consecutive failures
    that all fall inside ``window_s`` seconds, or immediately when it reports a
    rate limit. Access is serialised with a lock so the state can be shared by
    concurrent requests and threads.
    """

    def __init__(
        self,
        *,
        failure_threshold: int = 3,
        window_s: float = 120.0,
        interval_s: float = 60.0,
        rate_limit_s: float = 300.0,
        time_func: TimeProvider | None = None,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self._threshold = failure_threshold
        self._window_s = max(0.0, window_s)
        self._interval_s = max(0.0, interval_s)
        self._rate_limit_s = max(0.0, rate_limit_s)
        self._now: TimeProvider = time_func or time.monotonic
        self._records: dict[str, _ProviderRecord] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(
        cls, config: CooldownConfig, *, time_func: TimeProvider | None = None
    ) -> "ResolverState":
        return cls(
            failure_threshold=config.failure_threshold,
            window_s=config.window_s,
            interval_s=config.interval_s,
            rate_limit_s=config.rate_limit_s,
            time_func=time_func,
        )

    def _record(self, provider: str) -> _ProviderRecord:
        record = self._records.get(provider)
        if record is None:
            record = _ProviderRecord()
            self._records[provider] = record
        return record

    def _prune(self, record: _ProviderRecord, now: float) -> None:
        horizon = now - self._window_s
        while record.failures and record.failures[0] < horizon:
            record.failures.popleft()

    def is_cooling_down(self, provider: str) -> bool:
        return self.cooldown_remaining(provider) > 0

    def cooldown_remaining(self, provider: str) -> float:
        with self._lock:
            record = self._records.get(provider)
            if record is None:
                return 0.0
            return max(0.0, record.cooldown_until - self._now())

    def record_success(self, provider: str) -> None:
        with self._lock:
            record = self._record(provider)
            record.failures.clear()
            record.total_successes += 1

    def record_failure(
        self,
        provider: str,
        kind: FailureKind,
        *,
        message: str | None = None,
        retry_after_ms: int | None = None,
    ) -> bool:
        """Record a failed call; returns ``True`` if the provider entered cool-down."""

        with self._lock:
            now = self._now()
            record = self._record(provider)
            record.total_failures += 1
            record.last_failure_kind = kind
            record.last_failure_message = message

            if kind is FailureKind.RATE_LIMITED:
                hint_s = (retry_after_ms or 0) / 1000
                duration = max(self._rate_limit_s, hint_s)
                record.cooldown_until = max(record.cooldown_until, now + duration)
                record.failures.clear()
                return True

            record.failures.append(now)
            self._prune(record, now)
            if len(record.failures) >= self._threshold:
                record.cooldown_until = max(record.cooldown_until, now + self._interval_s)
                record.failures.clear()
                return True
            return False

    def failure_count(self, provider: str) -> int:
        """Consecutive failures currently counted inside the sliding window."""

        with self._lock:
            record = self._records.get(provider)
            if record is None:
                return 0
            self._prune(record, self._now())
            return len(record.failures)

    def last_failure_kind(self, provider: str) -> FailureKind | None:
        with self._lock:
            record = self._records.get(provider)
            return record.last_failure_kind if record is not None else None

    def snapshot(self, providers: Iterable[str] | None = None) -> Mapping[str, ProviderStateSnapshot]:
        with self._lock:
            now = self._now()
            names = list(providers) if providers is not None else sorted(self._records)
            result: dict[str, ProviderStateSnapshot] = {}
            for name in names:
                record = self._records.get(name) or _ProviderRecord()
                self._prune(record, now)
                remaining = max(0.0, record.cooldown_until - now)
                result[name] = ProviderStateSnapshot(
                    provider=name,
                    consecutive_failures=len(record.failures),
                    total_failures=record.total_failures,
                    total_successes=record.total_successes,
                    cooling_down=remaining > 0,
                    cooldown_remaining_s=round(remaining, 3),
                    last_failure_kind=record.last_failure_kind,
                    last_failure_message=record.last_failure_message,
                )
            return result

    def reset(self, provider: str | None = None) -> None:
        with self._lock:
            if provider is None:
                self._records.clear()
            else:
                self._records.pop(provider, None)


__all__ = ["ProviderStateSnapshot", "ResolverState"]
