from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

import httpx

from psagate.core.errors import UpstreamError
from psagate.services.cache_store import NOCACHE_PARAM, CacheStore, build_cache_key
from psagate.services.credentials import TokenRequest, UpstreamCredentials
from psagate.services.telemetry import increment_counter, record_external_call
from psagate.services.token_cache import TokenCache
from psagate.services.upstreams import UpstreamSpec


logger = logging.getLogger(__name__)

CACHE_HIT = "HIT"
CACHE_MISS = "MISS"
CACHE_BYPASS = "BYPASS"
CACHE_WRITE = "WRITE"

_FALSY_FLAGS = {"", "0", "false", "no", "off"}
_BODYLESS_METHODS = {"GET", "HEAD"}


@dataclass(frozen=True)
class ProxyRequest:
    method: str
    path: str
    query: list[tuple[str, str]] = field(default_factory=list)
    body: bytes | None = None
    content_type: str | None = None


@dataclass(frozen=True)
class ProxyResponse:
    status_code: int
    body: str
    content_type: str
    cache_status: str


def wants_bypass(query: list[tuple[str, str]]) -> bool:
    for key, value in query:
        if key.lower() == NOCACHE_PARAM and value.strip().lower() not in _FALSY_FLAGS:
            return True
    return False


async def fetch_access_token(client: httpx.AsyncClient, token_request: TokenRequest) -> tuple[str, float]:
    """Run a token request and return ``(access_token, cacheable_lifetime_s)``."""
    try:
        response = await client.post(token_request.url, data=token_request.data, headers=token_request.headers)
    except httpx.HTTPError as exc:
        raise UpstreamError("Token request failed") from exc
    if not response.is_success:
        logger.warning("proxy_token_request_failed url=%s status=%s", token_request.url, response.status_code)
        raise UpstreamError(response.text or "Token request failed")
    try:
        payload = response.json()
    except ValueError as exc:
        raise UpstreamError("Token response was not JSON") from exc
    access_token = payload.get("access_token") if isinstance(payload, dict) else None
    if not access_token:
        raise UpstreamError("Token response missing access_token")
    try:
        expires_in = float(payload.get("expires_in") or 3600)
    except (TypeError, ValueError):
        expires_in = 3600.0
    return str(access_token), max(0.0, expires_in - token_request.expiry_margin_s)


class CachingProxy:
    """Forward requests for one upstream through its response cache and token cache."""

    def __init__(
        self,
        upstream: UpstreamSpec,
        *,
        cache: CacheStore,
        tokens: TokenCache,
        client: httpx.AsyncClient,
        ttl_s: float,
    ) -> None:
        self.upstream = upstream
        self.cache = cache
        self.tokens = tokens
        self.client = client
        self.ttl_s = ttl_s

    async def forward(
        self,
        request: ProxyRequest,
        *,
        tenant_id: str,
        credentials: UpstreamCredentials,
    ) -> ProxyResponse:
        method = request.method.upper()
        normalized = self.upstream.normalize(request.path)
        scope = tenant_id if self.upstream.tenant_scoped else None
        is_get = method == "GET"
        bypass = is_get and wants_bypass(request.query)
        key = build_cache_key(method, normalized, request.query, tenant_id=scope)

        if is_get and not bypass:
            hit = self.cache.get(key)
            if hit is not None:
                increment_counter(f"proxy.{self.upstream.name.value}.hit")
                return ProxyResponse(
                    status_code=hit.status,
                    body=hit.body,
                    content_type=hit.content_type,
                    cache_status=CACHE_HIT,
                )

        url = self.upstream.target_url(credentials.base_url, normalized, request.query)
        response = await self._send_with_refresh(method, url, request, tenant_id=tenant_id, credentials=credentials)
        body = response.text
        content_type = response.headers.get("content-type") or "application/json"

        if is_get:
            # Bypass skips the read but still refreshes the entry.
            if response.is_success:
                self.cache.set(
                    key,
                    status=response.status_code,
                    body=body,
                    content_type=content_type,
                    normalized_path=normalized,
                    ttl_s=self.ttl_s,
                    tenant_id=scope,
                )
            cache_status = CACHE_BYPASS if bypass else CACHE_MISS
            increment_counter(f"proxy.{self.upstream.name.value}.{cache_status.lower()}")
        else:
            if response.is_success:
                # Writes drop the path in every tenant partition.
                dropped = self.cache.invalidate_by_path(normalized)
                logger.debug(
                    "proxy_cache_invalidated upstream=%s path=%s entries=%s",
                    self.upstream.name.value,
                    normalized,
                    dropped,
                )
            cache_status = CACHE_WRITE

        return ProxyResponse(
            status_code=response.status_code,
            body=body,
            content_type=content_type,
            cache_status=cache_status,
        )

    async def _access_token(self, tenant_id: str, token_request: TokenRequest) -> str:
        cached = self.tokens.get(tenant_id)
        if cached is not None:
            return cached
        access_token, lifetime_s = await fetch_access_token(self.client, token_request)
        self.tokens.set(tenant_id, access_token, lifetime_s)
        return access_token

    async def _send_with_refresh(
        self,
        method: str,
        url: str,
        request: ProxyRequest,
        *,
        tenant_id: str,
        credentials: UpstreamCredentials,
    ) -> httpx.Response:
        # At most one retry, and only after a 401 with a token we may have cached.
        for attempt in range(2):
            headers = dict(credentials.headers)
            if credentials.token_request is not None:
                token = await self._access_token(tenant_id, credentials.token_request)
                headers["Authorization"] = f"Bearer {token}"
            response = await self._send_once(method, url, request, headers)
            if response.status_code == 401 and credentials.uses_token and attempt == 0:
                logger.info(
                    "proxy_token_rejected upstream=%s tenant_id=%s",
                    self.upstream.name.value,
                    tenant_id,
                )
                self.tokens.invalidate(tenant_id)
                continue
            break
        return response

    async def _send_once(
        self,
        method: str,
        url: str,
        request: ProxyRequest,
        headers: dict[str, str],
    ) -> httpx.Response:
        content = None
        if method not in _BODYLESS_METHODS and request.body:
            content = request.body
            headers["Content-Type"] = request.content_type or "application/json"
        start = time.monotonic()
        try:
            response = await self.client.request(method, url, headers=headers, content=content)
        except httpx.HTTPError as exc:
            record_external_call(
                integration=self.upstream.name.value,
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            logger.warning(
                "proxy_upstream_unreachable upstream=%s method=%s error=%s",
                self.upstream.name.value,
                method,
                type(exc).__name__,
            )
            raise UpstreamError(f"{self.upstream.label} request failed") from exc
        record_external_call(
            integration=self.upstream.name.value,
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=response.status_code < 500,
        )
        if response.status_code >= 500:
            logger.warning(
                "proxy_upstream_error upstream=%s method=%s status=%s",
                self.upstream.name.value,
                method,
                response.status_code,
            )
        return response
