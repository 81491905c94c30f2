# ruff: noqa: I001
"""Append-only edit log for price records.

Revision ID: 0002_fp_price_edits
Revises: 0001_fp_core
Create Date: 2025-10-02
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0002_fp_price_edits"
down_revision: str | None = "0001_fp_core"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_ID_TYPE = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "fp_price_edits",
        sa.Column("id", _ID_TYPE, primary_key=True, autoincrement=True),
        sa.Column(
            "record_id",
            _ID_TYPE,
            sa.ForeignKey("fp_price_records.id", name="fk_fp_price_edits_record"),
            nullable=False,
        ),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=False),
        sa.Column("actor_email", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("changes", sa.JSON(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column(
            "related_record_id",
            _ID_TYPE,
            sa.ForeignKey("fp_price_records.id", name="fk_fp_price_edits_related"),
            nullable=True,
        ),
        sa.CheckConstraint(
            "action in ('created','updated','closed')",
            name="ck_fp_price_edits_action",
        ),
    )
    op.create_index("ix_fp_price_edits_record_id", "fp_price_edits", ["record_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_fp_price_edits_record_id", table_name="fp_price_edits")
    op.drop_table("fp_price_edits")
