"""add contract templates

Revision ID: 0002_contract_templates
Revises: 0001_init
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0002_contract_templates"
down_revision = "0001_init"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "contract_templates",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("contract_type", sa.String(), nullable=False, server_default="CUSTOM"),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("variables", sa.JSON(), nullable=False),
        sa.Column("sections", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("metadata_json", sa.JSON(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("tenant_id", "name", name="uq_contract_templates_tenant_name"),
    )
    op.create_index("ix_contract_templates_tenant_id", "contract_templates", ["tenant_id"])
    op.create_index(
        "ix_contract_templates_tenant_category", "contract_templates", ["tenant_id", "category"]
    )


def downgrade() -> None:
    op.drop_index("ix_contract_templates_tenant_category", table_name="contract_templates")
    op.drop_index("ix_contract_templates_tenant_id", table_name="contract_templates")
    op.drop_table("contract_templates")
