"""Provider diagnostics endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from vibestream.dependencies import get_health_monitor
from vibestream.errors import NotFoundError
from vibestream.integrations.health import ProviderHealth, ProviderHealthMonitor


class ProviderInfo(BaseModel):
    name: str
    status: str
    details: dict[str, Any] | None = None


class ProvidersData(BaseModel):
    overall: str
    providers: list[ProviderInfo]


class ProvidersResponse(BaseModel):
    ok: bool
    data: ProvidersData | None = None
    error: dict | None = None


class ProviderResponse(BaseModel):
    ok: bool
    data: ProviderInfo | None = None
    error: dict | None = None


router = APIRouter(tags=["Providers"])


def _provider_info(report: ProviderHealth) -> ProviderInfo:
    return ProviderInfo(name=report.provider, status=report.status, details=dict(report.details))


@router.get("/providers", response_model=ProvidersResponse, status_code=status.HTTP_200_OK)
async def list_providers(
    monitor: ProviderHealthMonitor = Depends(get_health_monitor),
) -> ProvidersResponse:
    report = await monitor.check_all()
    return ProvidersResponse(
        ok=True,
        data=ProvidersData(
            overall=report.overall,
            providers=[_provider_info(item) for item in report.providers],
        ),
    )


@router.get(
    "/providers/{name}", response_model=ProviderResponse, status_code=status.HTTP_200_OK
)
async def get_provider(
    name: str,
    monitor: ProviderHealthMonitor = Depends(get_health_monitor),
) -> ProviderResponse:
    report = await monitor.check_provider(name)
    if report.details.get("reason") == "disabled":
        raise NotFoundError(f"Provider {name!r} is not enabled.")
    return ProviderResponse(ok=True, data=_provider_info(report))


__all__ = ["router"]
