from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from psagate.domain.models import ProductCatalog
from psagate.domain.signals import CatalogProduct


def to_catalog_product(row: ProductCatalog) -> CatalogProduct:
    return CatalogProduct(
        id=row.id,
        slug=row.slug,
        name=row.name,
        vendor=row.vendor,
        category=row.category,
        description=row.description,
        match_terms=tuple(row.match_terms or ()),
    )


async def list_catalog(session: AsyncSession) -> list[CatalogProduct]:
    # Order by id: the matcher breaks ties by catalog order, so it must be stable.
    result = await session.execute(select(ProductCatalog).order_by(ProductCatalog.id))
    return [to_catalog_product(row) for row in result.scalars().all()]


async def get_by_slug(session: AsyncSession, slug: str) -> ProductCatalog | None:
    result = await session.execute(select(ProductCatalog).where(ProductCatalog.slug == slug))
    return result.scalar_one_or_none()
