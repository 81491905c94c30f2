# ruff: noqa: I001
"""Fuel products and price interval records.

Revision ID: 0001_fp_core
Revises: None
Create Date: 2025-10-02
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_fp_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

# SQLite only autoincrements an INTEGER PRIMARY KEY.
_ID_TYPE = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    # fp_products
    op.create_table(
        "fp_products",
        sa.Column("code", sa.String(), primary_key=True),
        sa.Column("label", sa.String(), nullable=False, unique=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    # fp_price_records
    op.create_table(
        "fp_price_records",
        sa.Column("id", _ID_TYPE, primary_key=True, autoincrement=True),
        sa.Column(
            "product_code",
            sa.String(),
            sa.ForeignKey("fp_products.code", name="fk_fp_price_records_product"),
            nullable=False,
        ),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("valid_to", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_open", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.String(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("updated_by", sa.String(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("price > 0", name="ck_fp_price_records_price_positive"),
        sa.CheckConstraint(
            "(is_open AND valid_to IS NULL) OR (NOT is_open AND valid_to IS NOT NULL)",
            name="ck_fp_price_records_open_iff_no_end",
        ),
    )

    # At most one open interval per product
    op.create_index(
        "uq_fp_price_records_one_open",
        "fp_price_records",
        ["product_code"],
        unique=True,
        postgresql_where=sa.text("is_open"),
        sqlite_where=sa.text("is_open = 1"),
    )
    op.create_index(
        "ix_fp_price_records_product_from",
        "fp_price_records",
        ["product_code", "valid_from"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_fp_price_records_product_from", table_name="fp_price_records")
    op.drop_index("uq_fp_price_records_one_open", table_name="fp_price_records")
    op.drop_table("fp_price_records")
    op.drop_table("fp_products")
