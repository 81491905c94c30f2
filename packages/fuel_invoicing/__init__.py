"""Public interface for the ``fuel_invoicing`` package.

Symbol re-exports only. The resolver, keyword index and aggregator are pure and
importable without a database; the ledger and :mod:`fuel_invoicing.api` need
the ``db`` package and a ``DATABASE_URL``.
"""

from .access import AccessPolicy, Actor, allow_identities, policy_from_env, require_roles
from .aggregate import Invoice, LineItem, build_invoice
from .errors import (
    AggregationError,
    InvoiceNumberError,
    LedgerAuthorizationError,
    LedgerConflictError,
    LedgerError,
    LedgerFailure,
    LedgerNotFoundError,
    LedgerValidationError,
)
from .keywords import KeywordIndex, build_keyword_index
from .models import (
    Confidence,
    EditLogEntry,
    MatchDetails,
    PriceRecord,
    ReceiptInput,
    ResolutionMethod,
    ResolvedReceipt,
)
from .parsing import receipt_from_ocr
from .resolver import override_product, resolve_receipt, resolve_receipts

__all__ = [
    "AccessPolicy",
    "Actor",
    "allow_identities",
    "policy_from_env",
    "require_roles",
    "Invoice",
    "LineItem",
    "build_invoice",
    "AggregationError",
    "InvoiceNumberError",
    "LedgerAuthorizationError",
    "LedgerConflictError",
    "LedgerError",
    "LedgerFailure",
    "LedgerNotFoundError",
    "LedgerValidationError",
    "KeywordIndex",
    "build_keyword_index",
    "Confidence",
    "EditLogEntry",
    "MatchDetails",
    "PriceRecord",
    "ReceiptInput",
    "ResolutionMethod",
    "ResolvedReceipt",
    "receipt_from_ocr",
    "override_product",
    "resolve_receipt",
    "resolve_receipts",
]
