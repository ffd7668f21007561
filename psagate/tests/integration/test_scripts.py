from __future__ import annotations

import argparse
import json

import pytest
from sqlalchemy import select

from psagate.core.config import get_settings
from psagate.domain.models import ProductCatalog, TenantIntegration
from psagate.persistence.db import SessionLocal
from psagate.services.credentials import ENCRYPTED_KEY
from psagate.services.crypto import CredentialCipher
from scripts.encrypt_credentials import _store
from scripts.seed_catalog import SEED_PRODUCTS, seed_catalog


@pytest.mark.asyncio
async def test_seed_catalog_is_idempotent_and_keeps_manual_terms() -> None:
    assert await seed_catalog() == 0
    async with SessionLocal() as session:
        veeam = (await session.execute(select(ProductCatalog).where(ProductCatalog.slug == "veeam"))).scalar_one()
        veeam.match_terms = [*veeam.match_terms, "backup & replication"]
        await session.commit()

    assert await seed_catalog() == 0

    async with SessionLocal() as session:
        rows = (await session.execute(select(ProductCatalog).order_by(ProductCatalog.id))).scalars().all()
    assert [row.slug for row in rows] == [product.slug for product in SEED_PRODUCTS]
    assert "backup & replication" in rows[0].match_terms


@pytest.mark.asyncio
async def test_encrypt_credentials_stores_sealed_config() -> None:
    args = argparse.Namespace(
        tenant="tenant-a",
        slug="meraki",
        config=json.dumps({"apiKey": "mk"}),
        disconnected=False,
    )
    assert await _store(args) == 0

    async with SessionLocal() as session:
        row = (await session.execute(select(TenantIntegration))).scalar_one()
    assert row.connected is True
    assert set(row.config) == {ENCRYPTED_KEY}
    cipher = CredentialCipher.from_settings(get_settings())
    assert cipher.decrypt_json(row.config[ENCRYPTED_KEY], tenant_id="tenant-a", slug="meraki") == {"apiKey": "mk"}
