"""Public orchestration for the ``fuel_invoicing`` package.

Each function opens its own ``db.client.session_scope`` (commit on success,
rollback on error) around the ledger service, or loads one ledger snapshot and
hands it to the pure resolver. Use :mod:`fuel_invoicing.ledger` directly when a
caller needs to compose several ledger operations in one transaction.
"""

from __future__ import annotations

import builtins
from collections.abc import Callable, Iterable, Mapping
from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Any

from .access import AccessPolicy, Actor, policy_from_env
from .aggregate import DEFAULT_VAT_RATE, Invoice, build_invoice
from .models import PriceRecord, ResolvedReceipt
from .parsing import receipt_from_ocr, utc_today
from .resolver import resolve_receipts
from .review import Selector, review_resolved_receipts

# DB imports are local to each function so the pure resolver can be imported
# without a configured database.


def record_new_price(
    *,
    actor: Actor,
    product_label: str,
    price: Any,
    valid_from: Any,
    reason: str | None = None,
    product_id: str | None = None,
    policy: AccessPolicy | None = None,
    database_url: str | None = None,
) -> PriceRecord:
    """Open a new price interval in its own transaction.

    ``policy`` defaults to :func:`fuel_invoicing.access.policy_from_env`.
    """

    from db.client import session_scope

    from .ledger import open_new_interval

    with session_scope(database_url=database_url) as session:
        return open_new_interval(
            session,
            actor=actor,
            policy=policy or policy_from_env(),
            product_label=product_label,
            price=price,
            valid_from=valid_from,
            reason=reason,
            product_id=product_id,
        )


def correct_price(
    *,
    actor: Actor,
    record_id: int,
    changes: Mapping[str, Any],
    reason: str | None = None,
    policy: AccessPolicy | None = None,
    database_url: str | None = None,
) -> PriceRecord:
    from db.client import session_scope

    from .ledger import edit_interval

    with session_scope(database_url=database_url) as session:
        return edit_interval(
            session,
            actor=actor,
            policy=policy or policy_from_env(),
            record_id=record_id,
            changes=changes,
            reason=reason,
        )


def list_current_prices(*, database_url: str | None = None) -> list[PriceRecord]:
    from db.client import session_scope

    from .ledger import current_intervals

    with session_scope(database_url=database_url) as session:
        return current_intervals(session)


def price_history(product_id: str, *, database_url: str | None = None) -> list[PriceRecord]:
    from db.client import session_scope

    from .ledger import intervals_for_product

    with session_scope(database_url=database_url) as session:
        return intervals_for_product(session, product_id)


def load_ledger_snapshot(*, database_url: str | None = None) -> list[PriceRecord]:
    from db.client import session_scope

    from .ledger import load_snapshot

    with session_scope(database_url=database_url) as session:
        return load_snapshot(session)


def resolve_ocr_payloads(
    payloads: Iterable[Mapping[str, Any]],
    *,
    records: Iterable[PriceRecord] | None = None,
    today: date | None = None,
    database_url: str | None = None,
) -> list[ResolvedReceipt]:
    """Normalize raw OCR payloads and resolve them against one ledger snapshot.

    ``records`` skips the database read when the caller already holds a
    snapshot.
    """

    ref = today or utc_today()
    snapshot = list(records) if records is not None else load_ledger_snapshot(
        database_url=database_url
    )
    receipts = [receipt_from_ocr(p, today=ref) for p in payloads]
    return resolve_receipts(receipts, snapshot, today=ref)


def issue_invoice_id(
    vat_number: str, *, year: int | None = None, database_url: str | None = None
) -> str:
    """Reserve the next ``EV-<VAT>-YYYY-NNNN`` id; ``year`` defaults to the UTC year."""

    from db.client import session_scope

    from .invoice_ids import next_invoice_id

    with session_scope(database_url=database_url) as session:
        return next_invoice_id(session, vat_number, year or utc_today().year)


def invoice_from_ocr_payloads(
    payloads: Iterable[Mapping[str, Any]],
    *,
    review: bool = False,
    selector: Selector | None = None,
    print_fn: Callable[..., None] = builtins.print,
    today: date | None = None,
    vat_rate: Decimal = DEFAULT_VAT_RATE,
    vat_number: str | None = None,
    database_url: str | None = None,
) -> tuple[list[ResolvedReceipt], Invoice]:
    """Resolve OCR payloads, optionally review the unresolved ones, then aggregate.

    With ``vat_number`` the invoice is numbered for that station in the year of
    ``today``. A number is only reserved once aggregation succeeded.

    Raises :class:`fuel_invoicing.errors.AggregationError` when receipts are
    still unresolved after review.
    """

    ref = today or utc_today()
    snapshot = load_ledger_snapshot(database_url=database_url)
    resolved = resolve_ocr_payloads(payloads, records=snapshot, today=ref)
    if review:
        resolved = review_resolved_receipts(
            resolved, snapshot, selector=selector, print_fn=print_fn
        )
    invoice = build_invoice(resolved, vat_rate=vat_rate)
    if vat_number:
        invoice_id = issue_invoice_id(vat_number, year=ref.year, database_url=database_url)
        invoice = replace(invoice, invoice_id=invoice_id)
    return resolved, invoice


__all__ = [
    "record_new_price",
    "correct_price",
    "list_current_prices",
    "price_history",
    "load_ledger_snapshot",
    "resolve_ocr_payloads",
    "issue_invoice_id",
    "invoice_from_ocr_payloads",
]
