from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from psagate.domain.models import TenantIntegration


async def get_integration(session: AsyncSession, tenant_id: str, slug: str) -> TenantIntegration | None:
    # Ensure tenant scoping so one tenant can never read another tenant's credentials.
    result = await session.execute(
        select(TenantIntegration).where(
            TenantIntegration.tenant_id == tenant_id,
            TenantIntegration.slug == slug,
        )
    )
    return result.scalar_one_or_none()


async def list_connected_slugs(session: AsyncSession, tenant_id: str) -> set[str]:
    result = await session.execute(
        select(TenantIntegration.slug).where(
            TenantIntegration.tenant_id == tenant_id,
            TenantIntegration.connected.is_(True),
        )
    )
    return set(result.scalars().all())


async def upsert_integration(
    session: AsyncSession,
    *,
    tenant_id: str,
    slug: str,
    config: dict,
    connected: bool = True,
) -> TenantIntegration:
    # Fetch first to keep tenant scoping explicit and avoid cross-tenant upserts.
    row = await get_integration(session, tenant_id, slug)
    if row is None:
        row = TenantIntegration(tenant_id=tenant_id, slug=slug, config=config, connected=connected)
        session.add(row)
    else:
        row.config = config
        row.connected = connected
    await session.flush()
    return row
