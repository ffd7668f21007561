from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Literal

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from psagate.domain.models import ProductMatchOverride
from psagate.domain.signals import MatchOverride


OverrideMode = Literal["append", "replace"]


@dataclass(frozen=True)
class OverrideWriteResult:
    mode: OverrideMode
    created: bool
    terms: tuple[str, ...]


def clean_terms(raw: Any) -> list[str]:
    """Accept a list or a comma-separated string; trim, lower-case, de-duplicate."""
    if isinstance(raw, str):
        items: Iterable[Any] = raw.split(",")
    elif isinstance(raw, (list, tuple)):
        items = raw
    else:
        return []
    cleaned: list[str] = []
    for item in items:
        if not isinstance(item, str):
            continue
        value = item.strip().lower()
        if value and value not in cleaned:
            cleaned.append(value)
    return cleaned


def normalize_company(value: str | None) -> str | None:
    # Blank company identifiers mean tenant-wide.
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _merge(existing: Iterable[str] | None, new: Iterable[str]) -> list[str]:
    merged = list(existing or [])
    for term in new:
        if term not in merged:
            merged.append(term)
    return merged


def _scope(tenant_id: str, product_slug: str, company_identifier: str | None):
    company_clause = (
        ProductMatchOverride.company_identifier.is_(None)
        if company_identifier is None
        else ProductMatchOverride.company_identifier == company_identifier
    )
    return (
        ProductMatchOverride.tenant_id == tenant_id,
        ProductMatchOverride.product_slug == product_slug,
        company_clause,
    )


async def get_override(
    session: AsyncSession,
    tenant_id: str,
    product_slug: str,
    company_identifier: str | None,
    *,
    for_update: bool = False,
) -> ProductMatchOverride | None:
    # Core updates bypass the identity map; always reload the row's current terms.
    stmt = (
        select(ProductMatchOverride)
        .where(*_scope(tenant_id, product_slug, company_identifier))
        .execution_options(populate_existing=True)
    )
    if for_update:
        # Lock the row so concurrent appends serialize their read-merge-write.
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_overrides_for_company(
    session: AsyncSession, tenant_id: str, company_identifier: str
) -> list[MatchOverride]:
    # Tenant-wide rows plus rows scoped to this company only.
    result = await session.execute(
        select(ProductMatchOverride)
        .where(
            ProductMatchOverride.tenant_id == tenant_id,
            or_(
                ProductMatchOverride.company_identifier.is_(None),
                ProductMatchOverride.company_identifier == company_identifier,
            ),
        )
        .order_by(ProductMatchOverride.id)
    )
    return [
        MatchOverride(
            product_slug=row.product_slug,
            terms=tuple(row.terms or ()),
            company_identifier=row.company_identifier,
        )
        for row in result.scalars().all()
    ]


async def _try_insert(
    session: AsyncSession,
    *,
    tenant_id: str,
    product_slug: str,
    company_identifier: str | None,
    terms: list[str],
) -> bool:
    # Insert inside a savepoint so a unique-key race leaves the outer transaction usable.
    try:
        async with session.begin_nested():
            session.add(
                ProductMatchOverride(
                    tenant_id=tenant_id,
                    product_slug=product_slug,
                    company_identifier=company_identifier,
                    terms=terms,
                )
            )
        return True
    except IntegrityError:
        return False


async def _set_terms(
    session: AsyncSession,
    tenant_id: str,
    product_slug: str,
    company_identifier: str | None,
    terms: list[str],
) -> int:
    result = await session.execute(
        update(ProductMatchOverride)
        .where(*_scope(tenant_id, product_slug, company_identifier))
        .values(terms=terms, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def upsert_override(
    session: AsyncSession,
    *,
    tenant_id: str,
    product_slug: str,
    company_identifier: str | None,
    terms: list[str],
    mode: OverrideMode = "append",
) -> OverrideWriteResult:
    """Append-or-replace the override terms for one (tenant, product, company) key.

    Callers commit. Both modes tolerate a concurrent first insert for the same
    key by falling back to an update instead of surfacing the duplicate.
    """
    company_identifier = normalize_company(company_identifier)

    if mode == "replace":
        if await _set_terms(session, tenant_id, product_slug, company_identifier, terms):
            return OverrideWriteResult(mode=mode, created=False, terms=tuple(terms))
        if await _try_insert(
            session,
            tenant_id=tenant_id,
            product_slug=product_slug,
            company_identifier=company_identifier,
            terms=terms,
        ):
            return OverrideWriteResult(mode=mode, created=True, terms=tuple(terms))
        await _set_terms(session, tenant_id, product_slug, company_identifier, terms)
        return OverrideWriteResult(mode=mode, created=False, terms=tuple(terms))

    existing = await get_override(
        session, tenant_id, product_slug, company_identifier, for_update=True
    )
    if existing is None:
        if await _try_insert(
            session,
            tenant_id=tenant_id,
            product_slug=product_slug,
            company_identifier=company_identifier,
            terms=terms,
        ):
            return OverrideWriteResult(mode=mode, created=True, terms=tuple(terms))
        # Lost the insert race: merge into the row the other writer created.
        existing = await get_override(
            session, tenant_id, product_slug, company_identifier, for_update=True
        )

    merged = _merge(existing.terms if existing is not None else None, terms)
    await _set_terms(session, tenant_id, product_slug, company_identifier, merged)
    return OverrideWriteResult(mode=mode, created=False, terms=tuple(merged))
