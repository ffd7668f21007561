from __future__ import annotations

import base64
from types import SimpleNamespace

import pytest

from psagate.core.config import get_settings
from psagate.core.errors import DecryptionError, NotConfiguredError
from psagate.services import credentials as credentials_module
from psagate.services.credentials import ENCRYPTED_KEY, CredentialResolver, sanitize_base_url
from psagate.services.crypto import CredentialCipher
from psagate.services.upstreams import UpstreamName


KEY = bytes.fromhex("00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff")


def _stub_rows(monkeypatch: pytest.MonkeyPatch, rows: dict[tuple[str, str], SimpleNamespace]) -> None:
    async def fake_get_integration(session, tenant_id: str, slug: str):
        return rows.get((tenant_id, slug))

    monkeypatch.setattr(credentials_module, "get_integration", fake_get_integration)


def _row(config, connected: bool = True) -> SimpleNamespace:
    return SimpleNamespace(config=config, connected=connected)


def test_sanitize_base_url() -> None:
    assert sanitize_base_url("halo.example.com/") == "https://halo.example.com"
    assert sanitize_base_url(" https://cw.example.com/path/ ") == "https://cw.example.com/path"
    assert sanitize_base_url("", "https://fallback") == "https://fallback"
    assert sanitize_base_url(None) is None


@pytest.mark.asyncio
async def test_connectwise_builds_basic_auth(monkeypatch: pytest.MonkeyPatch) -> None:
    _stub_rows(
        monkeypatch,
        {("t1", "connectwise"): _row({"siteUrl": "cw.example.com", "companyId": "acme", "publicKey": "pub", "privateKey": "priv"})},
    )
    resolved = await CredentialResolver(None, cipher=None).resolve("t1", UpstreamName.CONNECTWISE)
    expected = base64.b64encode(b"acme+pub:priv").decode("ascii")
    assert resolved.base_url == "https://cw.example.com/v4_6_release/apis/3.0"
    assert resolved.headers["Authorization"] == f"Basic {expected}"
    # The vendor clientId falls back to process settings.
    assert resolved.headers["clientId"] == get_settings().cw_client_id
    assert not resolved.uses_token


@pytest.mark.asyncio
async def test_halo_and_cipp_use_token_requests(monkeypatch: pytest.MonkeyPatch) -> None:
    _stub_rows(
        monkeypatch,
        {
            ("t1", "halo"): _row({"baseUrl": "https://halo.example.com/", "clientId": "id", "clientSecret": "secret"}),
            ("t1", "cipp"): _row({"tenantId": "dir-1", "clientId": "app", "clientSecret": "s"}),
        },
    )
    resolver = CredentialResolver(None, cipher=None)
    halo = await resolver.resolve("t1", UpstreamName.HALO)
    assert halo.token_request.url == "https://halo.example.com/auth/token"
    assert halo.token_request.data["scope"] == "all"
    cipp = await resolver.resolve("t1", UpstreamName.CIPP)
    assert cipp.base_url == "https://cipp.app"
    assert cipp.token_request.url == "https://login.microsoftonline.com/dir-1/oauth2/v2.0/token"
    assert cipp.token_request.data["scope"] == "api://app/.default"
    assert cipp.token_request.expiry_margin_s == 60


@pytest.mark.asyncio
async def test_static_key_upstreams(monkeypatch: pytest.MonkeyPatch) -> None:
    _stub_rows(
        monkeypatch,
        {
            ("t1", "backupradar"): _row({"baseUrl": "https://api.backupradar.com", "apiKey": "br"}),
            ("t1", "meraki"): _row({"apiKey": "mk"}),
        },
    )
    resolver = CredentialResolver(None, cipher=None)
    radar = await resolver.resolve("t1", UpstreamName.BACKUPRADAR)
    meraki = await resolver.resolve("t1", UpstreamName.MERAKI)
    assert radar.headers["ApiKey"] == "br"
    assert meraki.base_url == "https://api.meraki.com/api/v1"
    assert meraki.headers["X-Cisco-Meraki-API-Key"] == "mk"


@pytest.mark.asyncio
async def test_missing_or_disconnected_is_not_configured(monkeypatch: pytest.MonkeyPatch) -> None:
    _stub_rows(monkeypatch, {("t1", "halo"): _row({"baseUrl": "https://h"}, connected=False)})
    resolver = CredentialResolver(None, cipher=None)
    with pytest.raises(NotConfiguredError) as excinfo:
        await resolver.resolve("t1", UpstreamName.HALO)
    assert excinfo.value.status_code == 400
    assert not await resolver.is_configured("t1", UpstreamName.MERAKI)


@pytest.mark.asyncio
async def test_incomplete_config_is_not_configured(monkeypatch: pytest.MonkeyPatch) -> None:
    _stub_rows(monkeypatch, {("t1", "connectwise"): _row({"siteUrl": "cw.example.com", "companyId": "acme"})})
    with pytest.raises(NotConfiguredError, match="Incomplete ConnectWise"):
        await CredentialResolver(None, cipher=None).resolve("t1", UpstreamName.CONNECTWISE)


@pytest.mark.asyncio
async def test_encrypted_config_is_decrypted_for_its_tenant_only(monkeypatch: pytest.MonkeyPatch) -> None:
    cipher = CredentialCipher(KEY)
    blob = cipher.encrypt_json({"apiKey": "secret"}, tenant_id="t1", slug="meraki")
    _stub_rows(
        monkeypatch,
        {
            ("t1", "meraki"): _row({ENCRYPTED_KEY: blob}),
            # A blob copied into another tenant's row must not open.
            ("t2", "meraki"): _row({ENCRYPTED_KEY: blob}),
        },
    )
    resolver = CredentialResolver(None, cipher=cipher)
    resolved = await resolver.resolve("t1", UpstreamName.MERAKI)
    assert resolved.headers["X-Cisco-Meraki-API-Key"] == "secret"
    with pytest.raises(DecryptionError):
        await resolver.resolve("t2", UpstreamName.MERAKI)


@pytest.mark.asyncio
async def test_corrupt_blob_raises_decryption_error(monkeypatch: pytest.MonkeyPatch) -> None:
    _stub_rows(monkeypatch, {("t1", "halo"): _row({ENCRYPTED_KEY: "not-base64!!"})})
    with pytest.raises(DecryptionError) as excinfo:
        await CredentialResolver(None, cipher=CredentialCipher(KEY)).resolve("t1", UpstreamName.HALO)
    assert excinfo.value.status_code == 500
