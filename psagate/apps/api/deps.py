from __future__ import annotations

from typing import AsyncGenerator

import httpx
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from psagate.core.config import get_settings
from psagate.core.errors import UnauthenticatedError
from psagate.persistence.db import get_session
from psagate.services.gateway import GatewayState


# Base URL for in-process calls back into this app's own proxy routes.
LOOPBACK_ORIGIN = "http://gateway"
COMPANY_HEADER = "X-Company-Identifier"
_COMPANY_PARAMS = ("companyIdentifier", "CompanyIdentifier")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def get_tenant_id(request: Request) -> str:
    # The identity layer in front of the gateway hands us the resolved tenant.
    value = request.headers.get(get_settings().auth_tenant_header, "").strip()
    if not value:
        raise UnauthenticatedError("Unauthorized")
    return value


def get_gateway_state(request: Request) -> GatewayState:
    return request.app.state.gateway


def resolve_company_identifier(request: Request) -> str | None:
    """Header first, then query string, then the UI's company cookie."""
    candidates = [request.headers.get(COMPANY_HEADER)]
    candidates.extend(request.query_params.get(name) for name in _COMPANY_PARAMS)
    candidates.append(request.cookies.get(get_settings().company_cookie_name))
    for candidate in candidates:
        if candidate and candidate.strip():
            return candidate.strip()
    return None


def forwarded_headers(request: Request) -> dict[str, str]:
    # Loopback calls carry the caller's identity so the proxy resolves the same tenant.
    settings = get_settings()
    headers: dict[str, str] = {}
    for name in (settings.auth_tenant_header, "cookie", "X-Request-Id"):
        value = request.headers.get(name)
        if value:
            headers[name] = value
    return headers


async def get_loopback_client(request: Request) -> AsyncGenerator[httpx.AsyncClient, None]:
    # App errors inside a loopback call come back as 500 responses so adapters can skip that sub-fetch.
    transport = httpx.ASGITransport(app=request.app, raise_app_exceptions=False)
    timeout = get_settings().ext_call_timeout_ms / 1000.0
    async with httpx.AsyncClient(transport=transport, base_url=LOOPBACK_ORIGIN, timeout=timeout) as client:
        yield client
