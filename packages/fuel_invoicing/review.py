"""Interactive review of receipts the resolver could not place.

Receipts at ``low`` or ``flagged`` confidence are shown one at a time and the
operator picks the product; the choice is applied with
:func:`fuel_invoicing.resolver.override_product` against that product's
current price record. Accepted receipts pass through untouched.
"""

from __future__ import annotations

import builtins
from collections.abc import Callable, Iterable, Sequence

from .keywords import KeywordIndex
from .logging_setup import get_logger
from .models import PriceRecord, ResolvedReceipt
from .resolver import most_recent_record, override_product

logger = get_logger("fuel_invoicing.review")

type Selector = Callable[[Sequence[str], str], str | None]


def current_record_by_label(records: Iterable[PriceRecord]) -> dict[str, PriceRecord]:
    """Map each product's current label to its current record.

    The open record wins; a product with no open record falls back to its most
    recent one by ``valid_from``. Labels are ordered alphabetically.
    """

    snapshot = list(records)
    chosen: dict[str, PriceRecord] = {}
    for pid in sorted({r.product_id for r in snapshot}):
        open_records = [r for r in snapshot if r.product_id == pid and r.is_open]
        rec = open_records[0] if open_records else most_recent_record(snapshot, pid)
        if rec is not None:
            chosen[rec.product_label] = rec
    return dict(sorted(chosen.items(), key=lambda kv: kv[0].lower()))


def _fmt_receipt(pos: int, total: int, resolved: ResolvedReceipt) -> str:
    r = resolved.receipt
    parts = [
        f"rate={r.rate or '?'}",
        f"volume={r.volume or '?'}",
        f"amount={r.amount or '?'}",
        f"date={r.date or '?'}",
    ]
    if r.product_text:
        parts.append(f"text={r.product_text!r}")
    return f"Receipt {pos + 1}/{total} [{resolved.confidence}]: " + ", ".join(parts)


def _default_selector(choices: Sequence[str], default: str) -> str | None:
    from .term_ui import select_product

    return select_product(choices, default=default)


def review_resolved_receipts(
    resolved: Iterable[ResolvedReceipt],
    records: Iterable[PriceRecord],
    *,
    selector: Selector | None = None,
    print_fn: Callable[..., None] = builtins.print,
) -> list[ResolvedReceipt]:
    """Ask the operator to place every receipt that needs attention.

    Parameters
    ----------
    selector:
        Injection point for tests; receives ``(product_labels, default_label)``
        and returns the chosen label or ``None`` to leave the receipt flagged.
        Defaults to the prompt_toolkit selector in :mod:`fuel_invoicing.term_ui`.
    print_fn:
        Function used to print output. Defaults to ``builtins.print``.

    Returns
    -------
    list[ResolvedReceipt]
        Same length and order as ``resolved``.
    """

    items = list(resolved)
    by_label = current_record_by_label(records)
    choose = selector or _default_selector
    pending = [i for i, item in enumerate(items) if item.needs_attention]
    if not pending:
        return items
    if not by_label:
        print_fn("No fuel prices recorded; receipts stay flagged.")
        return items

    index = KeywordIndex.from_records(by_label.values())
    labels = list(by_label)
    final = list(items)
    for pos in pending:
        item = items[pos]
        print_fn(_fmt_receipt(pos, len(items), item))
        guess = index.best_match(item.receipt.product_text or "")
        default = index.labels[guess[0]] if guess else ""
        picked = choose(labels, default)
        if picked is None:
            print_fn("Skipped; receipt stays flagged.")
            continue
        record = by_label.get(picked)
        if record is None:
            print_fn(f"Unknown product {picked!r}; receipt stays flagged.")
            continue
        final[pos] = override_product(item, record)
        logger.info("receipt %d assigned to %s by review", pos, record.product_id)
        print_fn(f"Assigned {final[pos].display_name}.")
    return final


__all__ = ["Selector", "current_record_by_label", "review_resolved_receipts"]
