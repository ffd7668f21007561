from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Callable
from urllib.parse import urlsplit

from sqlalchemy.ext.asyncio import AsyncSession

from psagate.core.config import Settings, get_settings
from psagate.core.errors import DecryptionError, NotConfiguredError
from psagate.persistence.repos.integrations import get_integration
from psagate.services.crypto import CredentialCipher
from psagate.services.upstreams import UpstreamName, get_upstream


logger = logging.getLogger(__name__)

ENCRYPTED_KEY = "__encrypted"

_CIPP_DEFAULT_BASE = "https://cipp.app"
_SMILEBACK_DEFAULT_BASE = "https://app.smileback.io/api/v3"
_MERAKI_DEFAULT_BASE = "https://api.meraki.com/api/v1"


@dataclass(frozen=True)
class TokenRequest:
    """Form POST that yields ``{access_token, expires_in}``."""

    url: str
    data: dict[str, str]
    headers: dict[str, str] = field(default_factory=dict)
    # Seconds subtracted from ``expires_in`` before caching.
    expiry_margin_s: int = 0


@dataclass(frozen=True)
class UpstreamCredentials:
    base_url: str
    headers: dict[str, str] = field(default_factory=dict)
    token_request: TokenRequest | None = None

    @property
    def uses_token(self) -> bool:
        return self.token_request is not None


def sanitize_base_url(raw: Any, fallback: str | None = None) -> str | None:
    """Reduce a configured URL to ``scheme://host/path`` without a trailing slash."""
    if not isinstance(raw, str) or not raw.strip():
        return fallback
    value = raw.strip()
    if "://" not in value:
        value = f"https://{value}"
    parts = urlsplit(value)
    if not parts.netloc:
        return fallback
    return f"{parts.scheme}://{parts.netloc}{parts.path.rstrip('/')}"


def _field(config: dict[str, Any], name: str) -> str | None:
    value = config.get(name)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _basic(user: str, secret: str) -> str:
    raw = f"{user}:{secret}".encode("utf-8")
    return "Basic " + base64.b64encode(raw).decode("ascii")


def _connectwise(config: dict[str, Any], settings: Settings) -> UpstreamCredentials:
    site = sanitize_base_url(config.get("siteUrl"))
    company_id = _field(config, "companyId")
    public_key = _field(config, "publicKey")
    private_key = _field(config, "privateKey")
    client_id = _field(config, "clientId") or settings.cw_client_id
    if not site or not company_id or not public_key or not private_key:
        raise NotConfiguredError("Incomplete ConnectWise credentials")
    headers = {
        "Authorization": _basic(f"{company_id}+{public_key}", private_key),
        "Accept": "application/json",
    }
    if client_id:
        headers["clientId"] = client_id
    return UpstreamCredentials(base_url=f"{site}/v4_6_release/apis/3.0", headers=headers)


def _halo(config: dict[str, Any], settings: Settings) -> UpstreamCredentials:
    base = sanitize_base_url(config.get("baseUrl"))
    client_id = _field(config, "clientId")
    client_secret = _field(config, "clientSecret")
    if not base or not client_id or not client_secret:
        raise NotConfiguredError("Incomplete HaloPSA credentials")
    token = TokenRequest(
        url=f"{base}/auth/token",
        data={
            "grant_type": "client_credentials",
            "client_id": client_id,
            "client_secret": client_secret,
            "scope": "all",
        },
    )
    return UpstreamCredentials(base_url=base, headers={"Accept": "application/json"}, token_request=token)


def _cipp(config: dict[str, Any], settings: Settings) -> UpstreamCredentials:
    base = sanitize_base_url(config.get("baseUrl"), _CIPP_DEFAULT_BASE)
    directory_id = _field(config, "tenantId")
    client_id = _field(config, "clientId")
    client_secret = _field(config, "clientSecret")
    if not directory_id or not client_id or not client_secret:
        raise NotConfiguredError("Incomplete CIPP credentials")
    token = TokenRequest(
        url=f"https://login.microsoftonline.com/{directory_id}/oauth2/v2.0/token",
        data={
            "grant_type": "client_credentials",
            "client_id": client_id,
            "client_secret": client_secret,
            "scope": _field(config, "scope") or f"api://{client_id}/.default",
        },
        expiry_margin_s=60,
    )
    return UpstreamCredentials(base_url=base, headers={"Accept": "application/json"}, token_request=token)


def _smileback(config: dict[str, Any], settings: Settings) -> UpstreamCredentials:
    base = sanitize_base_url(config.get("baseUrl"), _SMILEBACK_DEFAULT_BASE)
    client_id = _field(config, "clientId")
    client_secret = _field(config, "clientSecret")
    username = _field(config, "username")
    password = _field(config, "password")
    if not client_id or not client_secret or not username or not password:
        raise NotConfiguredError("Incomplete SmileBack credentials")
    origin = urlsplit(base)
    token = TokenRequest(
        url=f"{origin.scheme}://{origin.netloc}/api/token/",
        data={
            "grant_type": "password",
            "scope": "read read_recent",
            "username": username,
            "password": password,
        },
        headers={"Authorization": _basic(client_id, client_secret), "Accept": "application/json"},
        expiry_margin_s=30,
    )
    return UpstreamCredentials(base_url=base, headers={"Accept": "application/json"}, token_request=token)


def _backupradar(config: dict[str, Any], settings: Settings) -> UpstreamCredentials:
    base = sanitize_base_url(config.get("baseUrl"))
    api_key = _field(config, "apiKey")
    if not base or not api_key:
        raise NotConfiguredError("Incomplete Backup Radar credentials")
    return UpstreamCredentials(base_url=base, headers={"ApiKey": api_key, "Accept": "application/json"})


def _meraki(config: dict[str, Any], settings: Settings) -> UpstreamCredentials:
    base = sanitize_base_url(config.get("baseUrl"), _MERAKI_DEFAULT_BASE)
    api_key = _field(config, "apiKey")
    if not api_key:
        raise NotConfiguredError("Incomplete Meraki credentials")
    return UpstreamCredentials(
        base_url=base,
        headers={"X-Cisco-Meraki-API-Key": api_key, "Accept": "application/json"},
    )


_BUILDERS: dict[UpstreamName, Callable[[dict[str, Any], Settings], UpstreamCredentials]] = {
    UpstreamName.CONNECTWISE: _connectwise,
    UpstreamName.HALO: _halo,
    UpstreamName.CIPP: _cipp,
    UpstreamName.SMILEBACK: _smileback,
    UpstreamName.BACKUPRADAR: _backupradar,
    UpstreamName.MERAKI: _meraki,
}


class CredentialResolver:
    """Load, decrypt and validate a tenant's stored integration config."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        cipher: CredentialCipher | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._cipher = cipher if cipher is not None else CredentialCipher.from_settings(self._settings)

    async def load_config(self, tenant_id: str, upstream: UpstreamName) -> dict[str, Any]:
        label = get_upstream(upstream).label
        row = await get_integration(self._session, tenant_id, upstream.value)
        if row is None or not row.config or not row.connected:
            raise NotConfiguredError(f"{label} not connected")
        config = row.config
        blob = config.get(ENCRYPTED_KEY) if isinstance(config, dict) else None
        if isinstance(blob, str):
            if self._cipher is None:
                logger.error("credential_key_missing tenant_id=%s slug=%s", tenant_id, upstream.value)
                raise DecryptionError(f"Unable to decrypt {label} credentials")
            return self._cipher.decrypt_json(blob, tenant_id=tenant_id, slug=upstream.value)
        if not isinstance(config, dict):
            raise NotConfiguredError(f"Incomplete {label} credentials")
        return config

    async def resolve(self, tenant_id: str, upstream: UpstreamName) -> UpstreamCredentials:
        config = await self.load_config(tenant_id, upstream)
        return _BUILDERS[upstream](config, self._settings)

    async def is_configured(self, tenant_id: str, upstream: UpstreamName) -> bool:
        try:
            await self.resolve(tenant_id, upstream)
        except NotConfiguredError:
            return False
        return True
