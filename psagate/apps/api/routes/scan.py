from __future__ import annotations

from typing import Any

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from psagate.apps.api.deps import (
    LOOPBACK_ORIGIN,
    forwarded_headers,
    get_db,
    get_loopback_client,
    get_tenant_id,
    resolve_company_identifier,
)
from psagate.core.errors import BadInputError
from psagate.providers.psa.base import PsaAdapterContext
from psagate.services.scan import run_scan


router = APIRouter(tags=["scan"])


@router.get("/scan")
async def scan(
    request: Request,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    client: httpx.AsyncClient = Depends(get_loopback_client),
) -> dict[str, Any]:
    company_identifier = resolve_company_identifier(request)
    if company_identifier is None:
        raise BadInputError("No company selected. Use the picker, or pass ?companyIdentifier=ACME.")
    ctx = PsaAdapterContext(
        origin=LOOPBACK_ORIGIN,
        headers=forwarded_headers(request),
        company_identifier=company_identifier,
        client=client,
    )
    try:
        return await run_scan(db, ctx, tenant_id=tenant_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while scanning") from exc
