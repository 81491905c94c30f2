# ruff: noqa: I001
"""Per-station, per-year invoice number counters.

Revision ID: 0003_fp_invoice_counters
Revises: 0002_fp_price_edits
Create Date: 2025-10-20
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0003_fp_invoice_counters"
down_revision: str | None = "0002_fp_price_edits"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "fp_invoice_counters",
        sa.Column("vat_number", sa.String(), primary_key=True),
        sa.Column("year", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("last_sequence", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("last_sequence >= 0", name="ck_fp_invoice_counters_sequence"),
    )


def downgrade() -> None:
    op.drop_table("fp_invoice_counters")
