from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# JSONB on Postgres, plain JSON elsewhere (SQLite in tests).
JsonType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


class ProductCatalog(Base):
    __tablename__ = "product_catalog"

    # Global catalog; rows are shared by every tenant.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(64), unique=True)
    name: Mapped[str] = mapped_column(String(120))
    vendor: Mapped[str | None] = mapped_column(String(120), nullable=True)
    category: Mapped[str | None] = mapped_column(String(80), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    match_terms: Mapped[list[str]] = mapped_column(JsonType, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class ProductMatchOverride(Base):
    __tablename__ = "product_match_overrides"
    __table_args__ = (
        # NULL company means tenant-wide; NULLs must collide so there is one tenant-wide row.
        Index(
            "uq_override_tenant_product_company",
            "tenant_id",
            "product_slug",
            "company_identifier",
            unique=True,
            postgresql_nulls_not_distinct=True,
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), index=True)
    product_slug: Mapped[str] = mapped_column(String(64))
    company_identifier: Mapped[str | None] = mapped_column(String(120), nullable=True)
    terms: Mapped[list[str]] = mapped_column(JsonType, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class ProductMatchExclusion(Base):
    __tablename__ = "product_match_exclusions"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "company_identifier",
            "entity_type",
            "entity_id",
            name="uq_exclusion_tenant_company_entity",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), index=True)
    company_identifier: Mapped[str] = mapped_column(String(120))
    # "addition" | "configuration"
    entity_type: Mapped[str] = mapped_column(String(20))
    entity_id: Mapped[int] = mapped_column(Integer)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class ProductEntityMapping(Base):
    __tablename__ = "product_entity_mappings"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "company_identifier",
            "entity_type",
            "entity_id",
            name="uq_mapping_tenant_company_entity",
        ),
    )

    # Pins one raw PSA entity to one catalog product for a company.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), index=True)
    company_identifier: Mapped[str] = mapped_column(String(120))
    entity_type: Mapped[str] = mapped_column(String(20))
    entity_id: Mapped[int] = mapped_column(Integer)
    product_slug: Mapped[str] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class TenantIntegration(Base):
    __tablename__ = "tenant_integrations"
    __table_args__ = (
        UniqueConstraint("tenant_id", "slug", name="uq_tenant_integration"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), index=True)
    # connectwise | halo | cipp | smileback | backupradar | meraki
    slug: Mapped[str] = mapped_column(String(64))
    # Either plain credential fields or {"__encrypted": "<blob>"}.
    config: Mapped[dict[str, Any]] = mapped_column(JsonType, default=dict)
    connected: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
