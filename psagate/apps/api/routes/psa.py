from __future__ import annotations

from typing import Any

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from psagate.apps.api.deps import LOOPBACK_ORIGIN, forwarded_headers, get_db, get_loopback_client, get_tenant_id
from psagate.core.errors import NotConfiguredError
from psagate.providers.psa.base import PsaAdapter, PsaAdapterContext, PsaKind
from psagate.providers.psa.registry import get_adapter
from psagate.services.scan import detect_psa_kind


router = APIRouter(prefix="/psa", tags=["psa"])

# Shorter queries would list most of the PSA.
MIN_QUERY_LENGTH = 2


async def _detect(db: AsyncSession, tenant_id: str) -> PsaKind | None:
    try:
        return await detect_psa_kind(db, tenant_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while reading PSA settings") from exc


async def _connected_adapter(db: AsyncSession, tenant_id: str) -> PsaAdapter:
    kind = await _detect(db, tenant_id)
    if kind is None:
        raise NotConfiguredError("No PSA connected")
    return get_adapter(kind)


def _lookup_context(request: Request, client: httpx.AsyncClient) -> PsaAdapterContext:
    return PsaAdapterContext(origin=LOOPBACK_ORIGIN, headers=forwarded_headers(request), client=client)


@router.get("/info")
async def psa_info(
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, str | None]:
    kind = await _detect(db, tenant_id)
    return {"kind": kind.value if kind else None}


@router.get("/clients")
async def search_clients(
    request: Request,
    q: str = "",
    page_size: int = Query(default=25, alias="pageSize", ge=1, le=1000),
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    client: httpx.AsyncClient = Depends(get_loopback_client),
) -> dict[str, Any]:
    query = q.strip()
    if len(query) < MIN_QUERY_LENGTH:
        return {"items": []}
    adapter = await _connected_adapter(db, tenant_id)
    companies = await adapter.search_companies(_lookup_context(request, client), query, page_size=page_size)
    return {"items": [company.to_dict() for company in companies]}


@router.get("/client/resolve")
async def resolve_client(
    request: Request,
    identifier: str = "",
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    client: httpx.AsyncClient = Depends(get_loopback_client),
) -> dict[str, str]:
    identifier = identifier.strip()
    if not identifier:
        return {}
    adapter = await _connected_adapter(db, tenant_id)
    name = await adapter.resolve_company_name(_lookup_context(request, client), identifier)
    return {"name": name} if name else {}
