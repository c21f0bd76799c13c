"""Initial schema: shops and filter_queries.

Revision ID: 001
Revises: (none)
Create Date: 2026-02-12
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # --- shops ---
    op.create_table(
        "shops",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("domain", sa.String(255), nullable=False),
        sa.Column("enabled", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("query_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("product_types", sa.Text(), server_default="[]", nullable=False),
        sa.Column("vendors", sa.Text(), server_default="[]", nullable=False),
        sa.Column("tags", sa.Text(), server_default="[]", nullable=False),
        sa.Column("price_range", sa.Text(), server_default="{}", nullable=False),
        sa.Column("variant_options", sa.Text(), server_default="[]", nullable=False),
        sa.Column("taxonomy_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "taxonomy_invalidated",
            sa.Boolean(),
            server_default=sa.text("false"),
            nullable=False,
        ),
        sa.Column("taxonomy_invalidated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_unique_constraint("uq_shops_domain", "shops", ["domain"])

    # --- filter_queries ---
    op.create_table(
        "filter_queries",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "shop_id",
            UUID(as_uuid=True),
            sa.ForeignKey("shops.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_query", sa.Text(), nullable=False),
        sa.Column("filters_returned", sa.Text(), nullable=True),
        sa.Column("latency_ms", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index(
        "idx_filter_queries_shop_created", "filter_queries", ["shop_id", "created_at"]
    )


def downgrade() -> None:
    op.drop_index("idx_filter_queries_shop_created", table_name="filter_queries")
    op.drop_table("filter_queries")
    op.drop_table("shops")
