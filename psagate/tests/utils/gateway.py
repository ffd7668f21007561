from __future__ import annotations

import json
from typing import Any, Callable

import httpx
from fastapi import FastAPI

from psagate.apps.api.main import create_app
from psagate.core.config import get_settings
from psagate.domain.models import ProductCatalog
from psagate.persistence.db import SessionLocal
from psagate.persistence.repos.integrations import upsert_integration
from psagate.services.gateway import GatewayState


TENANT_ID = "tenant-a"
OTHER_TENANT_ID = "tenant-b"

CW_SITE = "https://cw.example.com"
CW_BASE = f"{CW_SITE}/v4_6_release/apis/3.0"
HALO_BASE = "https://halo.example.com"

CW_CONFIG = {
    "siteUrl": CW_SITE,
    "companyId": "acme",
    "publicKey": "pub",
    "privateKey": "priv",
}
HALO_CONFIG = {"baseUrl": HALO_BASE, "clientId": "halo-id", "clientSecret": "halo-secret"}


def tenant_headers(tenant_id: str = TENANT_ID, **extra: str) -> dict[str, str]:
    return {get_settings().auth_tenant_header: tenant_id, **extra}


class FakeUpstream:
    """Route table for httpx.MockTransport that records every upstream call."""

    def __init__(self) -> None:
        self.calls: list[httpx.Request] = []
        self._routes: list[tuple[str, str, Callable[[httpx.Request], httpx.Response]]] = []

    def route(self, method: str, url_prefix: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self._routes.append((method.upper(), url_prefix, handler))

    def calls_to(self, url_prefix: str) -> list[httpx.Request]:
        return [call for call in self.calls if str(call.url).startswith(url_prefix)]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        url = str(request.url)
        # Longest prefix wins so specific routes can shadow general ones.
        candidates = [
            (prefix, handler)
            for method, prefix, handler in self._routes
            if method == request.method and url.startswith(prefix)
        ]
        if not candidates:
            return httpx.Response(404, json={"error": f"no fake route for {request.method} {url}"})
        _prefix, handler = max(candidates, key=lambda item: len(item[0]))
        return handler(request)


def json_body(request: httpx.Request) -> Any:
    return json.loads(request.content or b"null")


def build_app(upstream: FakeUpstream) -> tuple[FastAPI, GatewayState]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    state = GatewayState(settings=get_settings(), client=client)
    return create_app(gateway=state), state


def api_client(app: FastAPI) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


async def seed_integration(
    slug: str,
    config: dict[str, Any],
    *,
    tenant_id: str = TENANT_ID,
    connected: bool = True,
) -> None:
    async with SessionLocal() as session:
        await upsert_integration(session, tenant_id=tenant_id, slug=slug, config=config, connected=connected)
        await session.commit()


async def seed_products(*products: dict[str, Any]) -> None:
    async with SessionLocal() as session:
        for product in products:
            session.add(
                ProductCatalog(
                    slug=product["slug"],
                    name=product["name"],
                    vendor=product.get("vendor"),
                    category=product.get("category"),
                    match_terms=list(product.get("match_terms", [])),
                )
            )
        await session.commit()
