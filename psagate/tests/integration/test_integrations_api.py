from __future__ import annotations

import httpx
import pytest

from psagate.tests.utils.gateway import (
    CW_CONFIG,
    HALO_CONFIG,
    FakeUpstream,
    api_client,
    build_app,
    seed_integration,
    tenant_headers,
)


MERAKI_BASE = "https://api.meraki.com/api/v1"
RADAR_BASE = "https://radar.example.com"


@pytest.mark.asyncio
async def test_summary_probes_connected_tools_only() -> None:
    upstream = FakeUpstream()
    upstream.route("GET", f"{MERAKI_BASE}/organizations", lambda request: httpx.Response(200, json=[{"id": 1}, {"id": 2}]))
    upstream.route("GET", f"{RADAR_BASE}/backups", lambda request: httpx.Response(503, text="down"))
    app, _state = build_app(upstream)
    await seed_integration("meraki", {"apiKey": "mk"})
    await seed_integration("backupradar", {"baseUrl": RADAR_BASE, "apiKey": "br"})

    async with api_client(app) as client:
        response = await client.get("/integrations/summary", headers=tenant_headers())

    assert response.status_code == 200
    body = response.json()
    assert body["meraki"] == {"connected": True, "ok": True, "status": 200, "count": 2}
    assert body["backupradar"] == {"connected": True, "ok": False, "status": 503, "count": None}
    assert body["cipp"] == {"connected": False, "ok": False, "status": None, "count": None}
    assert body["smileback"]["connected"] is False
    radar_call = upstream.calls_to(f"{RADAR_BASE}/backups")[0]
    assert radar_call.url.params["Size"] == "1"


@pytest.mark.asyncio
async def test_summary_requires_tenant() -> None:
    app, _state = build_app(FakeUpstream())
    async with api_client(app) as client:
        response = await client.get("/integrations/summary")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_psa_info_prefers_halo() -> None:
    app, _state = build_app(FakeUpstream())
    async with api_client(app) as client:
        none = await client.get("/psa/info", headers=tenant_headers())
        await seed_integration("connectwise", CW_CONFIG)
        connectwise = await client.get("/psa/info", headers=tenant_headers())
        await seed_integration("halo", HALO_CONFIG)
        halo = await client.get("/psa/info", headers=tenant_headers())
        await seed_integration("halo", HALO_CONFIG, connected=False)
        halo_disconnected = await client.get("/psa/info", headers=tenant_headers())

    assert none.json() == {"kind": None}
    assert connectwise.json() == {"kind": "connectwise"}
    assert halo.json() == {"kind": "halo"}
    assert halo_disconnected.json() == {"kind": "connectwise"}


@pytest.mark.asyncio
async def test_health_reports_cache_sizes_and_upstream_stats() -> None:
    upstream = FakeUpstream()
    upstream.route("GET", f"{MERAKI_BASE}/organizations", lambda request: httpx.Response(200, json=[]))
    app, _state = build_app(upstream)
    await seed_integration("meraki", {"apiKey": "mk"})

    async with api_client(app) as client:
        await client.get("/meraki/organizations", headers=tenant_headers())
        await client.get("/meraki/organizations", headers=tenant_headers())
        response = await client.get("/health")

    body = response.json()
    assert body["status"] == "ok"
    assert body["caches"]["meraki"] == 1
    assert body["caches"]["connectwise"] == 0
    assert body["upstreams"]["meraki"]["calls"] == 1
    assert body["counters"] == {"proxy.meraki.miss": 1, "proxy.meraki.hit": 1}
    # The health request itself is recorded after its response is built.
    assert body["requests"]["requests"] == 2
    assert body["requests"]["server_errors"] == 0
    assert body["requests"]["p95_ms"] is not None
    assert response.headers["X-Request-Id"]
