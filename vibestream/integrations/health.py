"""Provider health evaluation utilities."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from vibestream.integrations.base import ProviderAdapter
from vibestream.integrations.registry import ProviderRegistry
from vibestream.logging import get_logger
from vibestream.logging_events import log_event
from vibestream.services.state import ResolverState

logger = get_logger(__name__)


@dataclass(slots=True, frozen=True)
class ProviderHealth:
    """Health state of a single provider."""

    provider: str
    status: str
    details: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class IntegrationHealth:
    overall: str
    providers: tuple[ProviderHealth, ...]


def _normalise_status(value: str) -> str:
    if not value:
        return "unknown"
    normalised = value.strip().lower()
    if normalised in {"ok", "healthy", "up"}:
        return "ok"
    if normalised in {"degraded", "warning", "partial"}:
        return "degraded"
    if normalised in {"down", "failed", "error"}:
        return "down"
    return normalised


async def _invoke_health(provider: ProviderAdapter) -> ProviderHealth:
    try:
        result = await provider.check_health()
    except Exception as exc:
        logger.warning(
            "Provider health check failed",
            exc_info=exc,
            extra={"provider": provider.name},
        )
        return ProviderHealth(
            provider=provider.name,
            status="down",
            details={"reason": "exception", "error": str(exc)},
        )

    status = _normalise_status(str(result.get("status", "unknown")))
    raw_details = result.get("details")
    details = dict(raw_details) if isinstance(raw_details, Mapping) else {}
    return ProviderHealth(provider=provider.name, status=status, details=details)


def _overall_status(reports: Sequence[ProviderHealth]) -> str:
    if reports and all(report.status == "down" for report in reports):
        return "down"
    if any(report.status in {"down", "degraded"} for report in reports):
        return "degraded"
    return "ok"


class ProviderHealthMonitor:
    """Combine adapter self-checks with the resolver's cool-down bookkeeping.

    A provider that is cooling down is reported as ``degraded`` even when its
    own check succeeds, since the resolver will skip it until the window ends.
    """

    def __init__(self, registry: ProviderRegistry, state: ResolverState | None = None) -> None:
        self._registry = registry
        self._state = state

    def _with_cooldown(self, report: ProviderHealth) -> ProviderHealth:
        if self._state is None:
            return report
        snapshot = self._state.snapshot([report.provider])[report.provider]
        details = dict(report.details)
        details["cooldown"] = {
            "active": snapshot.cooling_down,
            "remaining_s": snapshot.cooldown_remaining_s,
            "consecutive_failures": snapshot.consecutive_failures,
            "total_failures": snapshot.total_failures,
            "last_failure_kind": (
                snapshot.last_failure_kind.value if snapshot.last_failure_kind else None
            ),
        }
        status = report.status
        if snapshot.cooling_down and status == "ok":
            status = "degraded"
        return ProviderHealth(provider=report.provider, status=status, details=details)

    async def check_provider(self, name: str) -> ProviderHealth:
        try:
            provider = self._registry.get_provider(name)
        except KeyError:
            return ProviderHealth(provider=name, status="down", details={"reason": "disabled"})
        report = self._with_cooldown(await _invoke_health(provider))
        log_event(
            logger,
            "integration.health",
            component=f"integration.{provider.name}",
            status=report.status,
            meta={"details": dict(report.details)},
        )
        return report

    async def check_all(self) -> IntegrationHealth:
        providers = list(self._registry.providers().values())
        reports = await asyncio.gather(*(_invoke_health(provider) for provider in providers))
        reports = [self._with_cooldown(report) for report in reports]
        overall = _overall_status(reports)
        log_event(
            logger,
            "integration.health",
            component="integration.aggregate",
            status=overall,
            meta={"providers": [report.provider for report in reports]},
        )
        return IntegrationHealth(overall=overall, providers=tuple(reports))


__all__ = ["IntegrationHealth", "ProviderHealth", "ProviderHealthMonitor"]
