from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from psagate.services.upstreams import UpstreamName


logger = logging.getLogger(__name__)


def _list_count(payload: Any) -> int | None:
    if isinstance(payload, list):
        return len(payload)
    if isinstance(payload, dict):
        for key in ("count", "Total", "total", "TotalCount"):
            value = payload.get(key)
            if isinstance(value, int):
                return value
        for key in ("results", "Results", "data"):
            value = payload.get(key)
            if isinstance(value, list):
                return len(value)
    return None


@dataclass(frozen=True)
class SummaryProbe:
    upstream: UpstreamName
    path: str
    params: dict[str, str]
    count: Callable[[Any], int | None] = _list_count


# One cheap read per operational tool, routed through the gateway's own proxy.
PROBES: tuple[SummaryProbe, ...] = (
    SummaryProbe(UpstreamName.MERAKI, "organizations", {}),
    SummaryProbe(UpstreamName.SMILEBACK, "reviews/", {"limit": "200", "ordering": "-rated_on"}),
    SummaryProbe(UpstreamName.CIPP, "ListTenants", {}),
    SummaryProbe(UpstreamName.BACKUPRADAR, "backups", {"Size": "1"}),
)


async def _probe(
    client: httpx.AsyncClient,
    origin: str,
    headers: dict[str, str],
    probe: SummaryProbe,
) -> dict[str, Any] | None:
    try:
        response = await client.get(
            f"{origin}/{probe.upstream.value}/{probe.path}",
            params=probe.params,
            headers=headers,
        )
        payload = response.json() if response.is_success else None
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("integration_summary_failed upstream=%s error=%s", probe.upstream.value, type(exc).__name__)
        return None
    return {
        "connected": True,
        "ok": response.is_success,
        "status": response.status_code,
        "count": probe.count(payload) if payload is not None else None,
    }


async def collect_summaries(
    client: httpx.AsyncClient,
    *,
    origin: str,
    headers: dict[str, str],
    connected: set[str],
    probes: tuple[SummaryProbe, ...] = PROBES,
) -> dict[str, dict[str, Any] | None]:
    """Probe every connected tool concurrently; a failed probe reports ``None``."""
    summary: dict[str, dict[str, Any] | None] = {}
    active = []
    for probe in probes:
        if probe.upstream.value in connected:
            active.append(probe)
        else:
            summary[probe.upstream.value] = {"connected": False, "ok": False, "status": None, "count": None}
    results = await asyncio.gather(*(_probe(client, origin, headers, probe) for probe in active))
    for probe, result in zip(active, results):
        summary[probe.upstream.value] = result
    return summary
