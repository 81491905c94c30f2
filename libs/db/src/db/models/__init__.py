"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the fuel price ledger and invoice counter models used by
``fuel_invoicing``.
"""

from .fuel import Base, FpInvoiceCounter, FpPriceEdit, FpPriceRecord, FpProduct

__all__ = [
    "Base",
    "FpProduct",
    "FpPriceRecord",
    "FpPriceEdit",
    "FpInvoiceCounter",
]
