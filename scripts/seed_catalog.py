from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass

from sqlalchemy import select

from psagate.domain.models import ProductCatalog
from psagate.persistence.db import SessionLocal


@dataclass(frozen=True)
class SeedProduct:
    slug: str
    name: str
    vendor: str
    category: str
    match_terms: tuple[str, ...]
    description: str | None = None


# Order matters: the matcher breaks ties by catalog id.
SEED_PRODUCTS: tuple[SeedProduct, ...] = (
    SeedProduct("veeam", "Veeam Backup & Replication", "Veeam", "Backup", ("veeam", "vbr", "veeam backup")),
    SeedProduct("datto", "Datto BCDR", "Datto", "Backup", ("datto", "siris", "alto", "datto bcdr")),
    SeedProduct("meraki", "Cisco Meraki", "Cisco", "Networking", ("meraki", "mx", "mr", "ms")),
    SeedProduct("m365", "Microsoft 365", "Microsoft", "Productivity", ("microsoft 365", "m365", "office 365", "o365")),
    SeedProduct("sentinelone", "SentinelOne", "SentinelOne", "Security", ("sentinelone", "s1", "sentinel one")),
    SeedProduct("huntress", "Huntress", "Huntress", "Security", ("huntress", "managed edr")),
    SeedProduct("backupradar", "Backup Radar", "Backup Radar", "Monitoring", ("backup radar", "backupradar")),
    SeedProduct("smileback", "SmileBack", "SmileBack", "CSAT", ("smileback", "csat")),
)


async def seed_catalog() -> int:
    async with SessionLocal() as session:
        result = await session.execute(select(ProductCatalog))
        existing = {row.slug: row for row in result.scalars().all()}
        created = 0
        for product in SEED_PRODUCTS:
            row = existing.get(product.slug)
            if row is None:
                session.add(
                    ProductCatalog(
                        slug=product.slug,
                        name=product.name,
                        vendor=product.vendor,
                        category=product.category,
                        description=product.description,
                        match_terms=list(product.match_terms),
                    )
                )
                created += 1
            else:
                # Refresh seed-owned fields only; terms added later by hand are kept.
                row.name = product.name
                row.vendor = product.vendor
                row.category = product.category
                row.match_terms = list(dict.fromkeys([*(row.match_terms or []), *product.match_terms]))
        await session.commit()
    print(f"Seeded catalog: {created} created, {len(SEED_PRODUCTS) - created} refreshed.")
    return 0


def main() -> int:
    # Surface clear failures and exit non-zero so CI/dev scripts can detect issues.
    try:
        return asyncio.run(seed_catalog())
    except Exception as exc:  # noqa: BLE001 - surface any setup or DB errors
        print(f"seed_catalog failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
