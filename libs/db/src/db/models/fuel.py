from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
    text,
    true,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements an ``INTEGER PRIMARY KEY`` (rowid alias).
_ID_TYPE = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    pass


# ---------------------------
# Reference: fp_products
# ---------------------------


class FpProduct(Base):
    __tablename__ = "fp_products"

    # Opaque product identifier handed to receipts (``product_id``). Derived
    # from the label on first use unless the operator supplies one.
    code: Mapped[str] = mapped_column(String, primary_key=True)
    # Case-insensitive uniqueness is enforced by the service layer, which
    # matches labels on a whitespace-collapsed, lower-cased form.
    label: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


# ---------------------------
# Core: fp_price_records
# ---------------------------


class FpPriceRecord(Base):
    __tablename__ = "fp_price_records"

    id: Mapped[int] = mapped_column(_ID_TYPE, primary_key=True, autoincrement=True)
    product_code: Mapped[str] = mapped_column(
        String, ForeignKey("fp_products.code"), nullable=False
    )
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # NULL means the interval is still open (in effect "through now").
    valid_to: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_open: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=true())
    created_by: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_by: Mapped[str | None] = mapped_column(String, nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("price > 0", name="ck_fp_price_records_price_positive"),
        CheckConstraint(
            "(is_open AND valid_to IS NULL) OR (NOT is_open AND valid_to IS NOT NULL)",
            name="ck_fp_price_records_open_iff_no_end",
        ),
        # At most one open interval per product. The ledger also serializes
        # writers on the product row; this index is the backstop for races.
        Index(
            "uq_fp_price_records_one_open",
            "product_code",
            unique=True,
            postgresql_where=text("is_open"),
            sqlite_where=text("is_open = 1"),
        ),
        Index("ix_fp_price_records_product_from", "product_code", "valid_from"),
    )


# ---------------------------
# Audit: fp_price_edits (append-only)
# ---------------------------


class FpPriceEdit(Base):
    __tablename__ = "fp_price_edits"

    id: Mapped[int] = mapped_column(_ID_TYPE, primary_key=True, autoincrement=True)
    record_id: Mapped[int] = mapped_column(
        _ID_TYPE, ForeignKey("fp_price_records.id"), nullable=False, index=True
    )
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    actor_id: Mapped[str] = mapped_column(String, nullable=False)
    actor_email: Mapped[str | None] = mapped_column(String, nullable=True)
    action: Mapped[str] = mapped_column(String, nullable=False)
    # List of {"field", "old_value", "new_value"} objects; values are strings.
    changes: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    # For ``closed`` entries: the interval that superseded this one.
    related_record_id: Mapped[int | None] = mapped_column(
        _ID_TYPE, ForeignKey("fp_price_records.id"), nullable=True
    )

    __table_args__ = (
        CheckConstraint(
            "action in ('created','updated','closed')",
            name="ck_fp_price_edits_action",
        ),
    )


# ---------------------------
# Invoicing: fp_invoice_counters
# ---------------------------


class FpInvoiceCounter(Base):
    __tablename__ = "fp_invoice_counters"

    # One row per station VAT number and calendar year; invoice ids are
    # EV-<vat_number>-<year>-<last_sequence zero-padded to 4>.
    vat_number: Mapped[str] = mapped_column(String, primary_key=True)
    year: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    last_sequence: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("last_sequence >= 0", name="ck_fp_invoice_counters_sequence"),
    )


__all__ = [
    "Base",
    "FpProduct",
    "FpPriceRecord",
    "FpPriceEdit",
    "FpInvoiceCounter",
]
