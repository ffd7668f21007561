from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from psagate.apps.api.deps import get_gateway_state
from psagate.services.gateway import GatewayState
from psagate.services.telemetry import counters_snapshot, external_latency_by_integration, request_stats


router = APIRouter(tags=["health"])

# Latency windows cover the last five minutes.
WINDOW_S = 300


@router.get("/health")
async def health(gateway: GatewayState = Depends(get_gateway_state)) -> dict[str, Any]:
    return {
        "status": "ok",
        "caches": gateway.cache_sizes(),
        "requests": request_stats(WINDOW_S),
        "upstreams": external_latency_by_integration(WINDOW_S),
        "counters": counters_snapshot(),
    }
