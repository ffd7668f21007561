"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "product_catalog",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("slug", sa.String(64), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("vendor", sa.String(120), nullable=True),
        sa.Column("category", sa.String(80), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("match_terms", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("slug", name="uq_product_catalog_slug"),
    )

    op.create_table(
        "product_match_overrides",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        # Avoid index=True here because we create explicit indexes below.
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("product_slug", sa.String(64), nullable=False),
        sa.Column("company_identifier", sa.String(120), nullable=True),
        sa.Column("terms", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_product_match_overrides_tenant_id", "product_match_overrides", ["tenant_id"])
    # A NULL company is the tenant-wide row; NULLS NOT DISTINCT keeps it unique (Postgres 15+).
    op.create_index(
        "uq_override_tenant_product_company",
        "product_match_overrides",
        ["tenant_id", "product_slug", "company_identifier"],
        unique=True,
        postgresql_nulls_not_distinct=True,
    )

    op.create_table(
        "product_match_exclusions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("company_identifier", sa.String(120), nullable=False),
        sa.Column("entity_type", sa.String(20), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "tenant_id",
            "company_identifier",
            "entity_type",
            "entity_id",
            name="uq_exclusion_tenant_company_entity",
        ),
    )
    op.create_index("ix_product_match_exclusions_tenant_id", "product_match_exclusions", ["tenant_id"])

    op.create_table(
        "product_entity_mappings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("company_identifier", sa.String(120), nullable=False),
        sa.Column("entity_type", sa.String(20), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("product_slug", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "tenant_id",
            "company_identifier",
            "entity_type",
            "entity_id",
            name="uq_mapping_tenant_company_entity",
        ),
    )
    op.create_index("ix_product_entity_mappings_tenant_id", "product_entity_mappings", ["tenant_id"])

    op.create_table(
        "tenant_integrations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("slug", sa.String(64), nullable=False),
        sa.Column("config", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("connected", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("tenant_id", "slug", name="uq_tenant_integration"),
    )
    op.create_index("ix_tenant_integrations_tenant_id", "tenant_integrations", ["tenant_id"])


def downgrade() -> None:
    op.drop_index("ix_tenant_integrations_tenant_id", table_name="tenant_integrations")
    op.drop_table("tenant_integrations")
    op.drop_index("ix_product_entity_mappings_tenant_id", table_name="product_entity_mappings")
    op.drop_table("product_entity_mappings")
    op.drop_index("ix_product_match_exclusions_tenant_id", table_name="product_match_exclusions")
    op.drop_table("product_match_exclusions")
    op.drop_index("uq_override_tenant_product_company", table_name="product_match_overrides")
    op.drop_index("ix_product_match_overrides_tenant_id", table_name="product_match_overrides")
    op.drop_table("product_match_overrides")
    op.drop_table("product_catalog")
