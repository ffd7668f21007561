from __future__ import annotations

from typing import Any

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from psagate.apps.api.deps import LOOPBACK_ORIGIN, forwarded_headers, get_db, get_loopback_client, get_tenant_id
from psagate.persistence.repos.integrations import list_connected_slugs
from psagate.services.summaries import collect_summaries


router = APIRouter(prefix="/integrations", tags=["integrations"])


@router.get("/summary")
async def integrations_summary(
    request: Request,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    client: httpx.AsyncClient = Depends(get_loopback_client),
) -> dict[str, Any]:
    try:
        connected = await list_connected_slugs(db, tenant_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while listing integrations") from exc
    return await collect_summaries(
        client,
        origin=LOOPBACK_ORIGIN,
        headers=forwarded_headers(request),
        connected=connected,
    )
