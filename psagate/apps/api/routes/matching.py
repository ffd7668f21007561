from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from psagate.apps.api.deps import get_db, get_tenant_id
from psagate.core.errors import BadInputError
from psagate.domain.signals import KIND_ADDITION, KIND_CONFIGURATION
from psagate.persistence.repos import exclusions as exclusions_repo
from psagate.persistence.repos import mappings as mappings_repo
from psagate.persistence.repos import overrides as overrides_repo
from psagate.persistence.repos.catalog import get_by_slug


router = APIRouter(prefix="/matching", tags=["matching"])

ENTITY_TYPES = {KIND_ADDITION, KIND_CONFIGURATION}


class OverrideRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_slug: str | None = Field(default=None, alias="productSlug")
    terms: list[str] | str | None = None
    company_identifier: str | None = Field(default=None, alias="companyIdentifier")
    mode: Literal["append", "replace"] = "append"


class ExclusionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    company_identifier: str | None = Field(default=None, alias="companyIdentifier")
    entity_type: str | None = Field(default=None, alias="entityType")
    entity_id: int | None = Field(default=None, alias="entityId")
    reason: str | None = None


class MappingRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    company_identifier: str | None = Field(default=None, alias="companyIdentifier")
    entity_type: str | None = Field(default=None, alias="entityType")
    entity_id: int | None = Field(default=None, alias="entityId")
    product_slug: str | None = Field(default=None, alias="productSlug")


def _entity_key(company_identifier: str | None, entity_type: str | None, entity_id: int | None) -> tuple[str, str, int]:
    company = (company_identifier or "").strip()
    if not company or not entity_type or entity_id is None:
        raise BadInputError("Missing fields")
    if entity_type not in ENTITY_TYPES:
        raise BadInputError(f"Unsupported entityType: {entity_type}")
    return company, entity_type, entity_id


@router.post("/override")
async def write_override(
    payload: OverrideRequest,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    product_slug = (payload.product_slug or "").strip()
    if not product_slug:
        raise BadInputError("productSlug required")
    terms = overrides_repo.clean_terms(payload.terms)
    if not terms:
        raise BadInputError("At least one term required")
    try:
        result = await overrides_repo.upsert_override(
            db,
            tenant_id=tenant_id,
            product_slug=product_slug,
            company_identifier=payload.company_identifier,
            terms=terms,
            mode=payload.mode,
        )
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise HTTPException(status_code=500, detail="Database error while saving override") from exc
    outcome = "created" if result.created else "updated"
    return {"ok": True, "mode": result.mode, outcome: True}


@router.post("/exclusions")
async def add_exclusion(
    payload: ExclusionRequest,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, bool]:
    company, entity_type, entity_id = _entity_key(
        payload.company_identifier, payload.entity_type, payload.entity_id
    )
    try:
        # Duplicate exclusions are a no-op.
        await exclusions_repo.add_exclusion(
            db,
            tenant_id=tenant_id,
            company_identifier=company,
            entity_type=entity_type,
            entity_id=entity_id,
            reason=payload.reason,
        )
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise HTTPException(status_code=500, detail="Database error while saving exclusion") from exc
    return {"ok": True}


@router.delete("/exclusions")
async def remove_exclusion(
    companyIdentifier: str | None = None,
    entityType: str | None = None,
    entityId: int | None = None,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, bool]:
    company, entity_type, entity_id = _entity_key(companyIdentifier, entityType, entityId)
    try:
        await exclusions_repo.remove_exclusion(
            db,
            tenant_id=tenant_id,
            company_identifier=company,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise HTTPException(status_code=500, detail="Database error while removing exclusion") from exc
    return {"ok": True}


@router.post("/mappings")
async def set_mapping(
    payload: MappingRequest,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, bool]:
    company, entity_type, entity_id = _entity_key(
        payload.company_identifier, payload.entity_type, payload.entity_id
    )
    product_slug = (payload.product_slug or "").strip()
    if not product_slug:
        raise BadInputError("productSlug required")
    try:
        if await get_by_slug(db, product_slug) is None:
            raise BadInputError(f"Unknown product: {product_slug}")
        created = await mappings_repo.set_mapping(
            db,
            tenant_id=tenant_id,
            company_identifier=company,
            entity_type=entity_type,
            entity_id=entity_id,
            product_slug=product_slug,
        )
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise HTTPException(status_code=500, detail="Database error while saving mapping") from exc
    return {"ok": True, "created" if created else "updated": True}


@router.delete("/mappings")
async def remove_mapping(
    companyIdentifier: str | None = None,
    entityType: str | None = None,
    entityId: int | None = None,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, bool]:
    company, entity_type, entity_id = _entity_key(companyIdentifier, entityType, entityId)
    try:
        await mappings_repo.remove_mapping(
            db,
            tenant_id=tenant_id,
            company_identifier=company,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise HTTPException(status_code=500, detail="Database error while removing mapping") from exc
    return {"ok": True}
