from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from psagate.domain.models import ProductMatchExclusion
from psagate.domain.signals import MatchExclusion


async def list_exclusions_for_company(
    session: AsyncSession, tenant_id: str, company_identifier: str
) -> list[MatchExclusion]:
    result = await session.execute(
        select(ProductMatchExclusion)
        .where(
            ProductMatchExclusion.tenant_id == tenant_id,
            ProductMatchExclusion.company_identifier == company_identifier,
        )
        .order_by(ProductMatchExclusion.id)
    )
    return [
        MatchExclusion(
            company_identifier=row.company_identifier,
            entity_type=row.entity_type,
            entity_id=row.entity_id,
        )
        for row in result.scalars().all()
    ]


async def add_exclusion(
    session: AsyncSession,
    *,
    tenant_id: str,
    company_identifier: str,
    entity_type: str,
    entity_id: int,
    reason: str | None = None,
) -> bool:
    """Insert an exclusion; an existing identical exclusion is a no-op (returns False)."""
    try:
        async with session.begin_nested():
            session.add(
                ProductMatchExclusion(
                    tenant_id=tenant_id,
                    company_identifier=company_identifier,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    reason=reason,
                )
            )
        return True
    except IntegrityError:
        return False


async def remove_exclusion(
    session: AsyncSession,
    *,
    tenant_id: str,
    company_identifier: str,
    entity_type: str,
    entity_id: int,
) -> int:
    result = await session.execute(
        delete(ProductMatchExclusion).where(
            ProductMatchExclusion.tenant_id == tenant_id,
            ProductMatchExclusion.company_identifier == company_identifier,
            ProductMatchExclusion.entity_type == entity_type,
            ProductMatchExclusion.entity_id == entity_id,
        )
    )
    return result.rowcount or 0
