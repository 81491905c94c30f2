"""db: shared database library (SQLAlchemy/Alembic).

Public exports
--------------
- ``Base`` and ``metadata`` for Alembic autogenerate/targeting
- ORM models in ``db.models.fuel`` (re-exported for convenience)
- Engine/session helpers in ``db.client``
"""

from __future__ import annotations

from .models.fuel import Base, FpInvoiceCounter, FpPriceEdit, FpPriceRecord, FpProduct

# Re-export SQLAlchemy metadata for Alembic's env.py
metadata = Base.metadata

__all__ = [
    "Base",
    "metadata",
    "FpProduct",
    "FpPriceRecord",
    "FpPriceEdit",
    "FpInvoiceCounter",
]
