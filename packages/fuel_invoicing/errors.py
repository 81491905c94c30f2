"""Typed failures raised by the price ledger and invoice numbering.

Every ledger error carries a :class:`LedgerFailure` ``reason`` so callers (the
CLI, or a UI) can show a precise correction hint without parsing messages.
Errors are raised before any write, so a failed call leaves no partial state.
"""

from __future__ import annotations

from enum import StrEnum


class LedgerFailure(StrEnum):
    NON_POSITIVE_PRICE = "non_positive_price"
    INVALID_PRICE = "invalid_price"
    INVALID_DATE = "invalid_date"
    INVALID_LABEL = "invalid_label"
    INVALID_FIELD = "invalid_field"
    INVALID_RANGE = "invalid_range"
    OVERLAPPING_INTERVAL = "overlapping_interval"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"


class LedgerError(Exception):
    """Base class for ledger failures."""

    def __init__(self, reason: LedgerFailure, message: str) -> None:
        super().__init__(message)
        self.reason = reason


class LedgerValidationError(LedgerError, ValueError):
    """Input rejected by validation (price, date, label, field, range)."""


class LedgerAuthorizationError(LedgerError, PermissionError):
    """Caller is not allowed to mutate the ledger."""

    def __init__(self, message: str) -> None:
        super().__init__(LedgerFailure.UNAUTHORIZED, message)


class LedgerNotFoundError(LedgerError, LookupError):
    """Referenced price record does not exist."""

    def __init__(self, message: str) -> None:
        super().__init__(LedgerFailure.NOT_FOUND, message)


class LedgerConflictError(LedgerError):
    """Write would leave two open intervals for one product."""

    def __init__(self, message: str) -> None:
        super().__init__(LedgerFailure.CONFLICT, message)


class AggregationError(ValueError):
    """Receipts handed to the invoice aggregator violate its input contract."""

    def __init__(self, message: str, *, positions: list[int]) -> None:
        super().__init__(message)
        self.positions = positions


class InvoiceNumberError(ValueError):
    """VAT number or year cannot form an invoice id."""


__all__ = [
    "LedgerFailure",
    "LedgerError",
    "LedgerValidationError",
    "LedgerAuthorizationError",
    "LedgerNotFoundError",
    "LedgerConflictError",
    "AggregationError",
    "InvoiceNumberError",
]
