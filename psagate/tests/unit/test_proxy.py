from __future__ import annotations

import httpx
import pytest

from psagate.core.errors import UpstreamError
from psagate.services.cache_store import CacheStore
from psagate.services.credentials import TokenRequest, UpstreamCredentials
from psagate.services.proxy import (
    CACHE_BYPASS,
    CACHE_HIT,
    CACHE_MISS,
    CACHE_WRITE,
    CachingProxy,
    ProxyRequest,
    wants_bypass,
)
from psagate.services.telemetry import external_latency_by_integration
from psagate.services.token_cache import TokenCache
from psagate.services.upstreams import UpstreamName, get_upstream


BASE = "https://upstream.example.com"
TOKEN_URL = "https://login.example.com/token"

STATIC = UpstreamCredentials(base_url=BASE, headers={"ApiKey": "k"})
OAUTH = UpstreamCredentials(
    base_url=BASE,
    headers={},
    token_request=TokenRequest(url=TOKEN_URL, data={"grant_type": "client_credentials"}),
)


class Recorder:
    def __init__(self, handler) -> None:
        self.handler = handler
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def data_calls(self) -> list[httpx.Request]:
        return [request for request in self.requests if str(request.url) != TOKEN_URL]

    def token_calls(self) -> list[httpx.Request]:
        return [request for request in self.requests if str(request.url) == TOKEN_URL]


def _proxy(recorder: Recorder, name: UpstreamName = UpstreamName.BACKUPRADAR) -> CachingProxy:
    client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    return CachingProxy(get_upstream(name), cache=CacheStore(), tokens=TokenCache(), client=client, ttl_s=60)


def _ok(request: httpx.Request) -> httpx.Response:
    if str(request.url) == TOKEN_URL:
        return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
    return httpx.Response(200, json={"path": request.url.path})


def test_wants_bypass_ignores_falsy_values() -> None:
    assert wants_bypass([("nocache", "1")])
    assert wants_bypass([("NoCache", "true")])
    assert not wants_bypass([("nocache", "false")])
    assert not wants_bypass([("nocache", "0")])
    assert not wants_bypass([("other", "1")])


@pytest.mark.asyncio
async def test_second_get_is_served_from_cache() -> None:
    # Reordered params and a falsy nocache flag still hit the cached entry.
    recorder = Recorder(_ok)
    proxy = _proxy(recorder)
    first = await proxy.forward(
        ProxyRequest("GET", "backups", [("a", "1"), ("b", "2")]), tenant_id="t1", credentials=STATIC
    )
    second = await proxy.forward(
        ProxyRequest("GET", "/backups", [("b", "2"), ("nocache", "false"), ("a", "1")]),
        tenant_id="t1",
        credentials=STATIC,
    )
    assert first.cache_status == CACHE_MISS
    assert second.cache_status == CACHE_HIT
    assert second.body == first.body
    assert len(recorder.data_calls()) == 1
    assert recorder.requests[0].headers["ApiKey"] == "k"


@pytest.mark.asyncio
async def test_cache_is_partitioned_by_tenant() -> None:
    recorder = Recorder(_ok)
    proxy = _proxy(recorder)
    await proxy.forward(ProxyRequest("GET", "backups"), tenant_id="t1", credentials=STATIC)
    other = await proxy.forward(ProxyRequest("GET", "backups"), tenant_id="t2", credentials=STATIC)
    assert other.cache_status == CACHE_MISS
    assert len(recorder.data_calls()) == 2


@pytest.mark.asyncio
async def test_nocache_bypasses_and_refreshes_entry() -> None:
    bodies = iter(["one", "two"])
    recorder = Recorder(lambda request: httpx.Response(200, text=next(bodies)))
    proxy = _proxy(recorder)
    await proxy.forward(ProxyRequest("GET", "backups"), tenant_id="t1", credentials=STATIC)
    bypassed = await proxy.forward(ProxyRequest("GET", "backups", [("nocache", "1")]), tenant_id="t1", credentials=STATIC)
    cached = await proxy.forward(ProxyRequest("GET", "backups"), tenant_id="t1", credentials=STATIC)
    assert bypassed.cache_status == CACHE_BYPASS
    assert bypassed.body == "two"
    assert cached.cache_status == CACHE_HIT
    assert cached.body == "two"


@pytest.mark.asyncio
async def test_failed_get_is_not_cached() -> None:
    recorder = Recorder(lambda request: httpx.Response(404, json={"error": "missing"}))
    proxy = _proxy(recorder)
    first = await proxy.forward(ProxyRequest("GET", "backups/9"), tenant_id="t1", credentials=STATIC)
    second = await proxy.forward(ProxyRequest("GET", "backups/9"), tenant_id="t1", credentials=STATIC)
    assert first.status_code == 404
    assert second.cache_status == CACHE_MISS
    assert len(recorder.data_calls()) == 2


@pytest.mark.asyncio
async def test_successful_write_invalidates_path_for_all_tenants() -> None:
    recorder = Recorder(_ok)
    proxy = _proxy(recorder)
    for tenant in ("t1", "t2"):
        await proxy.forward(ProxyRequest("GET", "backups", [("page", "1")]), tenant_id=tenant, credentials=STATIC)
    write = await proxy.forward(
        ProxyRequest("POST", "backups", body=b'{"a":1}', content_type="application/json"),
        tenant_id="t1",
        credentials=STATIC,
    )
    assert write.cache_status == CACHE_WRITE
    assert recorder.data_calls()[-1].content == b'{"a":1}'
    assert len(proxy.cache) == 0

    after = await proxy.forward(ProxyRequest("GET", "backups", [("page", "1")]), tenant_id="t2", credentials=STATIC)
    assert after.cache_status == CACHE_MISS


@pytest.mark.asyncio
async def test_failed_write_keeps_cache() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(422, json={"error": "bad"})
        return httpx.Response(200, json={})

    proxy = _proxy(Recorder(handler))
    await proxy.forward(ProxyRequest("GET", "backups"), tenant_id="t1", credentials=STATIC)
    write = await proxy.forward(ProxyRequest("POST", "backups", body=b"{}"), tenant_id="t1", credentials=STATIC)
    assert write.status_code == 422
    assert write.cache_status == CACHE_WRITE
    assert len(proxy.cache) == 1


@pytest.mark.asyncio
async def test_bearer_token_is_fetched_once_and_reused() -> None:
    recorder = Recorder(_ok)
    proxy = _proxy(recorder, UpstreamName.HALO)
    await proxy.forward(ProxyRequest("GET", "Client"), tenant_id="t1", credentials=OAUTH)
    await proxy.forward(ProxyRequest("GET", "Asset"), tenant_id="t1", credentials=OAUTH)
    assert len(recorder.token_calls()) == 1
    assert [str(call.url) for call in recorder.data_calls()] == [f"{BASE}/api/Client", f"{BASE}/api/Asset"]
    assert all(call.headers["Authorization"] == "Bearer tok" for call in recorder.data_calls())


@pytest.mark.asyncio
async def test_rejected_token_is_refreshed_exactly_once() -> None:
    # A 401 drops the cached token and the request is retried with a fresh one.
    tokens = iter(["stale", "fresh"])

    def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == TOKEN_URL:
            return httpx.Response(200, json={"access_token": next(tokens), "expires_in": 3600})
        if request.headers["Authorization"] == "Bearer stale":
            return httpx.Response(401, json={"error": "expired"})
        return httpx.Response(200, json={"ok": True})

    recorder = Recorder(handler)
    proxy = _proxy(recorder, UpstreamName.HALO)
    result = await proxy.forward(ProxyRequest("GET", "Client"), tenant_id="t1", credentials=OAUTH)
    assert result.status_code == 200
    assert len(recorder.token_calls()) == 2
    assert len(recorder.data_calls()) == 2
    assert proxy.tokens.get("t1") == "fresh"


@pytest.mark.asyncio
async def test_persistent_401_is_returned_after_one_retry() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == TOKEN_URL:
            return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
        return httpx.Response(401, json={"error": "denied"})

    recorder = Recorder(handler)
    proxy = _proxy(recorder, UpstreamName.HALO)
    result = await proxy.forward(ProxyRequest("GET", "Client"), tenant_id="t1", credentials=OAUTH)
    assert result.status_code == 401
    assert len(recorder.data_calls()) == 2
    assert len(proxy.cache) == 0


@pytest.mark.asyncio
async def test_static_auth_401_is_not_retried() -> None:
    recorder = Recorder(lambda request: httpx.Response(401, json={"error": "bad key"}))
    proxy = _proxy(recorder)
    result = await proxy.forward(ProxyRequest("GET", "backups"), tenant_id="t1", credentials=STATIC)
    assert result.status_code == 401
    assert len(recorder.requests) == 1


@pytest.mark.asyncio
async def test_token_endpoint_failure_raises_upstream_error() -> None:
    recorder = Recorder(lambda request: httpx.Response(400, json={"error": "invalid_client"}))
    proxy = _proxy(recorder, UpstreamName.HALO)
    with pytest.raises(UpstreamError):
        await proxy.forward(ProxyRequest("GET", "Client"), tenant_id="t1", credentials=OAUTH)


@pytest.mark.asyncio
async def test_transport_failure_raises_bad_gateway() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    proxy = _proxy(Recorder(handler))
    with pytest.raises(UpstreamError) as excinfo:
        await proxy.forward(ProxyRequest("GET", "backups"), tenant_id="t1", credentials=STATIC)
    assert excinfo.value.status_code == 502
    stats = external_latency_by_integration(300)
    assert stats["backupradar"]["failures"] == 1


@pytest.mark.asyncio
async def test_cipp_strips_repeated_api_prefix() -> None:
    # Callers may send api/ or not; both forward to one upstream path and one cache key.
    recorder = Recorder(_ok)
    proxy = _proxy(recorder, UpstreamName.CIPP)
    await proxy.forward(ProxyRequest("GET", "api/ListTenants"), tenant_id="t1", credentials=STATIC)
    again = await proxy.forward(ProxyRequest("GET", "ListTenants"), tenant_id="t1", credentials=STATIC)
    assert again.cache_status == CACHE_HIT
    assert str(recorder.requests[0].url) == f"{BASE}/api/ListTenants"
