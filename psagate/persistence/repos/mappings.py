from __future__ import annotations

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from psagate.domain.models import ProductEntityMapping
from psagate.domain.signals import EntityMapping


def _scope(tenant_id: str, company_identifier: str, entity_type: str, entity_id: int):
    return (
        ProductEntityMapping.tenant_id == tenant_id,
        ProductEntityMapping.company_identifier == company_identifier,
        ProductEntityMapping.entity_type == entity_type,
        ProductEntityMapping.entity_id == entity_id,
    )


async def list_mappings_for_company(
    session: AsyncSession, tenant_id: str, company_identifier: str
) -> list[EntityMapping]:
    result = await session.execute(
        select(ProductEntityMapping)
        .where(
            ProductEntityMapping.tenant_id == tenant_id,
            ProductEntityMapping.company_identifier == company_identifier,
        )
        .order_by(ProductEntityMapping.id)
    )
    return [
        EntityMapping(
            company_identifier=row.company_identifier,
            entity_type=row.entity_type,
            entity_id=row.entity_id,
            product_slug=row.product_slug,
        )
        for row in result.scalars().all()
    ]


async def set_mapping(
    session: AsyncSession,
    *,
    tenant_id: str,
    company_identifier: str,
    entity_type: str,
    entity_id: int,
    product_slug: str,
) -> bool:
    """Pin an entity to a product; returns True when a new row was created."""
    scope = _scope(tenant_id, company_identifier, entity_type, entity_id)
    result = await session.execute(
        update(ProductEntityMapping)
        .where(*scope)
        .values(product_slug=product_slug, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        return False
    try:
        async with session.begin_nested():
            session.add(
                ProductEntityMapping(
                    tenant_id=tenant_id,
                    company_identifier=company_identifier,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    product_slug=product_slug,
                )
            )
        return True
    except IntegrityError:
        # Another writer pinned it first; last writer wins.
        await session.execute(
            update(ProductEntityMapping)
            .where(*scope)
            .values(product_slug=product_slug, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        return False


async def remove_mapping(
    session: AsyncSession,
    *,
    tenant_id: str,
    company_identifier: str,
    entity_type: str,
    entity_id: int,
) -> int:
    result = await session.execute(
        delete(ProductEntityMapping).where(
            *_scope(tenant_id, company_identifier, entity_type, entity_id)
        )
    )
    return result.rowcount or 0
