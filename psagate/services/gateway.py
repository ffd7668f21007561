from __future__ import annotations

import httpx

from psagate.core.config import Settings, get_settings
from psagate.services.cache_store import CacheStore
from psagate.services.proxy import CachingProxy
from psagate.services.token_cache import TokenCache
from psagate.services.upstreams import UPSTREAMS, UpstreamName


class GatewayState:
    """Process-wide stores for the proxy: one cache and token store per upstream."""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.caches: dict[UpstreamName, CacheStore] = {name: CacheStore() for name in UPSTREAMS}
        self.tokens: dict[UpstreamName, TokenCache] = {
            name: TokenCache(skew_s=self.settings.token_skew_s) for name in UPSTREAMS
        }
        self._owns_client = client is None
        # Centralize upstream timeouts on the shared client.
        self.client = client or httpx.AsyncClient(timeout=self.settings.ext_call_timeout_ms / 1000.0)

    def proxy_for(self, name: UpstreamName) -> CachingProxy:
        upstream = UPSTREAMS[name]
        return CachingProxy(
            upstream,
            cache=self.caches[name],
            tokens=self.tokens[name],
            client=self.client,
            ttl_s=upstream.ttl_s(self.settings),
        )

    def cache_sizes(self) -> dict[str, int]:
        return {name.value: len(cache) for name, cache in self.caches.items()}

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
