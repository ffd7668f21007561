from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable
from urllib.parse import urlencode

from psagate.core.config import Settings
from psagate.services.cache_store import normalize_path


class UpstreamName(str, Enum):
    CONNECTWISE = "connectwise"
    HALO = "halo"
    CIPP = "cipp"
    SMILEBACK = "smileback"
    BACKUPRADAR = "backupradar"
    MERAKI = "meraki"


@dataclass(frozen=True)
class UpstreamSpec:
    name: UpstreamName
    label: str
    # Response header that reports HIT/MISS/BYPASS/WRITE to callers.
    cache_header: str
    ttl_setting: str
    # Credentials are per tenant, so cached bodies must be partitioned by tenant.
    tenant_scoped: bool = True
    # Prefix inserted between the base URL and the forwarded path.
    api_prefix: str = ""
    # Prefix callers may include that is stripped before keying and forwarding.
    strip_prefix: str | None = None

    def ttl_s(self, settings: Settings) -> int:
        return int(getattr(settings, self.ttl_setting))

    def normalize(self, raw_path: str) -> str:
        normalized = normalize_path(raw_path)
        if self.strip_prefix:
            while normalized.startswith(self.strip_prefix):
                normalized = normalized[len(self.strip_prefix):].lstrip("/")
        return normalized

    def target_url(self, base_url: str, normalized_path: str, query: Iterable[tuple[str, str]]) -> str:
        qs = urlencode(list(query))
        url = f"{base_url.rstrip('/')}/{self.api_prefix}{normalized_path}"
        return f"{url}?{qs}" if qs else url


UPSTREAMS: dict[UpstreamName, UpstreamSpec] = {
    UpstreamName.CONNECTWISE: UpstreamSpec(
        name=UpstreamName.CONNECTWISE,
        label="ConnectWise",
        cache_header="x-cw-cache",
        ttl_setting="connectwise_cache_ttl_s",
    ),
    UpstreamName.HALO: UpstreamSpec(
        name=UpstreamName.HALO,
        label="HaloPSA",
        cache_header="x-halo-cache",
        ttl_setting="halo_cache_ttl_s",
        api_prefix="api/",
    ),
    UpstreamName.CIPP: UpstreamSpec(
        name=UpstreamName.CIPP,
        label="CIPP",
        cache_header="x-cipp-cache",
        ttl_setting="cipp_cache_ttl_s",
        api_prefix="api/",
        strip_prefix="api/",
    ),
    UpstreamName.SMILEBACK: UpstreamSpec(
        name=UpstreamName.SMILEBACK,
        label="SmileBack",
        cache_header="x-smileback-cache",
        ttl_setting="smileback_cache_ttl_s",
    ),
    UpstreamName.BACKUPRADAR: UpstreamSpec(
        name=UpstreamName.BACKUPRADAR,
        label="Backup Radar",
        cache_header="x-backupradar-cache",
        ttl_setting="backupradar_cache_ttl_s",
    ),
    UpstreamName.MERAKI: UpstreamSpec(
        name=UpstreamName.MERAKI,
        label="Meraki",
        cache_header="x-meraki-cache",
        ttl_setting="meraki_cache_ttl_s",
    ),
}


def get_upstream(name: UpstreamName | str) -> UpstreamSpec:
    return UPSTREAMS[UpstreamName(name)]
