from __future__ import annotations

import logging
from collections import Counter
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from psagate.core.errors import NotConfiguredError
from psagate.domain.signals import KIND_ADDITION, KIND_CONFIGURATION, CatalogProduct, Signal
from psagate.persistence.repos.catalog import list_catalog
from psagate.persistence.repos.exclusions import list_exclusions_for_company
from psagate.persistence.repos.integrations import list_connected_slugs
from psagate.persistence.repos.mappings import list_mappings_for_company
from psagate.persistence.repos.overrides import list_overrides_for_company
from psagate.providers.psa.base import PsaAdapter, PsaAdapterContext, PsaKind
from psagate.providers.psa.registry import get_adapter
from psagate.services.matching import MatchedSignal, MatchReport, match


logger = logging.getLogger(__name__)


async def detect_psa_kind(session: AsyncSession, tenant_id: str) -> PsaKind | None:
    # Halo wins when a tenant has both PSAs connected.
    connected = await list_connected_slugs(session, tenant_id)
    if PsaKind.HALO.value in connected:
        return PsaKind.HALO
    if PsaKind.CONNECTWISE.value in connected:
        return PsaKind.CONNECTWISE
    return None


def _matched_entry(item: MatchedSignal) -> dict[str, Any]:
    entry = item.signal.to_dict()
    entry["hit"] = item.product.slug
    entry["reason"] = item.reason
    return entry


def _bucket(entries: list[tuple[str, dict[str, Any]]]) -> dict[str, list[dict[str, Any]]]:
    buckets: dict[str, list[dict[str, Any]]] = {"additions": [], "configurations": []}
    for kind, entry in entries:
        buckets["configurations" if kind == KIND_CONFIGURATION else "additions"].append(entry)
    return buckets


def build_scan_response(
    *,
    company_identifier: str,
    psa: PsaKind,
    catalog: list[CatalogProduct],
    meta: dict[str, int],
    report: MatchReport,
) -> dict[str, Any]:
    per_product: dict[str, Counter[str]] = {}
    for item in report.matched:
        per_product.setdefault(item.product.slug, Counter())[item.signal.kind] += 1

    # Detected products keep catalog order.
    products = []
    for product in catalog:
        counts = per_product.get(product.slug)
        if not counts:
            continue
        entry = product.to_dict()
        entry["matchCounts"] = {
            "additions": counts.get(KIND_ADDITION, 0),
            "configurations": counts.get(KIND_CONFIGURATION, 0),
        }
        products.append(entry)

    return {
        "companyIdentifier": company_identifier,
        "psa": psa.value,
        "products": products,
        "counts": {
            "agreements": int(meta.get("agreements", 0)),
            "additions": int(meta.get("additions", 0)),
            "configurations": int(meta.get("configurations", 0)),
            "matched": len(report.matched),
            "unmatched": len(report.unmatched),
        },
        "matched": _bucket([(item.signal.kind, _matched_entry(item)) for item in report.matched]),
        "unmatched": _bucket([(signal.kind, signal.to_dict()) for signal in report.unmatched]),
    }


async def run_scan(
    session: AsyncSession,
    ctx: PsaAdapterContext,
    *,
    tenant_id: str,
    adapter: PsaAdapter | None = None,
) -> dict[str, Any]:
    """Fetch the company's PSA entities and match them against the catalog."""
    if adapter is None:
        kind = await detect_psa_kind(session, tenant_id)
        if kind is None:
            raise NotConfiguredError("No PSA connected")
        adapter = get_adapter(kind)

    company = ctx.company_identifier
    # Read everything the matcher needs before the adapter starts its loopback calls.
    catalog = await list_catalog(session)
    overrides = await list_overrides_for_company(session, tenant_id, company)
    exclusions = await list_exclusions_for_company(session, tenant_id, company)
    mappings = await list_mappings_for_company(session, tenant_id, company)

    result = await adapter.fetch_company_entities(ctx)
    signals: list[Signal] = adapter.extract_signals(result)
    report = match(
        signals,
        catalog,
        overrides,
        exclusions,
        company_identifier=company,
        entity_mappings=mappings,
    )
    logger.info(
        "scan_completed tenant_id=%s company=%s psa=%s signals=%s matched=%s unmatched=%s excluded=%s",
        tenant_id,
        company,
        adapter.kind.value,
        len(signals),
        len(report.matched),
        len(report.unmatched),
        len(report.excluded),
    )
    return build_scan_response(
        company_identifier=company,
        psa=adapter.kind,
        catalog=catalog,
        meta=result.meta,
        report=report,
    )
