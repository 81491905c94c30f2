"""Receipt resolution engine.

Maps one noisy OCR receipt to a fuel product and price record, or declines to
guess. Three strategies run in a fixed order and the first one that clears its
bar wins:

1. interval match: rate and date scored against every price record
   (``0.7 * price accuracy + 0.3 * date accuracy``); ``> 0.8`` is ``high``,
   ``> 0.6`` is ``medium``; both end the search.
2. text match: keyword ratio of the receipt's product text against the
   keyword index; ``> 0.7`` resolves to the product's most recent record at
   ``medium``.
3. manual review: always succeeds with ``flagged`` and no product.

The engine is a pure function of ``(receipt, records, index, today)``: no I/O,
no retained state, and it never raises on malformed receipt content.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from .keywords import KeywordIndex
from .logging_setup import get_logger
from .models import (
    Confidence,
    MatchDetails,
    PriceRecord,
    ReceiptInput,
    ResolutionMethod,
    ResolvedReceipt,
)
from .parsing import days_outside, parse_positive_decimal, parse_receipt_date, utc_today

logger = get_logger("fuel_invoicing.resolver")

PRICE_WEIGHT = 0.7
DATE_WEIGHT = 0.3
HIGH_THRESHOLD = 0.8
MEDIUM_THRESHOLD = 0.6
TEXT_THRESHOLD = 0.7
DATE_DECAY_DAYS = 30


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class IntervalScore:
    record: PriceRecord
    price_accuracy: float
    date_accuracy: float

    @property
    def composite(self) -> float:
        return PRICE_WEIGHT * self.price_accuracy + DATE_WEIGHT * self.date_accuracy


def price_accuracy(rate: Decimal, price: Decimal) -> float:
    """``max(0, 1 - |rate - price| / price)``."""

    return max(0.0, 1.0 - float(abs(rate - price) / price))


def date_accuracy(receipt_date: date, record: PriceRecord, *, today: date) -> float:
    """1.0 inside the record's validity, decaying linearly to 0 at 30 days out.

    An open record is valid through ``today``.
    """

    end = record.ends_on or today
    outside = days_outside(receipt_date, record.starts_on, end)
    if outside == 0:
        return 1.0
    return max(0.0, 1.0 - outside / DATE_DECAY_DAYS)


def score_record(
    rate: Decimal, receipt_date: date, record: PriceRecord, *, today: date
) -> IntervalScore:
    return IntervalScore(
        record=record,
        price_accuracy=price_accuracy(rate, record.price),
        date_accuracy=date_accuracy(receipt_date, record, today=today),
    )


def most_recent_record(records: Iterable[PriceRecord], product_id: str) -> PriceRecord | None:
    """The product's record with the latest ``valid_from``, open or closed."""

    candidates = [r for r in records if r.product_id == product_id]
    if not candidates:
        return None
    return max(candidates, key=lambda r: (r.valid_from, r.id))


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class _Context:
    records: tuple[PriceRecord, ...]
    index: KeywordIndex
    today: date


type Strategy = Callable[[ReceiptInput, _Context], ResolvedReceipt | None]


def _attach(
    receipt: ReceiptInput,
    confidence: Confidence,
    method: ResolutionMethod,
    record: PriceRecord,
    details: MatchDetails,
) -> ResolvedReceipt:
    return ResolvedReceipt(
        receipt=receipt,
        confidence=confidence,
        method=method,
        product_id=record.product_id,
        product_label=record.product_label,
        match_details=details,
    )


def match_by_interval(receipt: ReceiptInput, ctx: _Context) -> ResolvedReceipt | None:
    rate = parse_positive_decimal(receipt.rate)
    receipt_date = parse_receipt_date(receipt.date, today=ctx.today)
    if rate is None or receipt_date is None:
        logger.debug("interval match skipped: rate=%r date=%r", receipt.rate, receipt.date)
        return None

    best: IntervalScore | None = None
    for record in ctx.records:
        scored = score_record(rate, receipt_date, record, today=ctx.today)
        if scored.composite > (best.composite if best else 0.0):
            best = scored
    if best is None:
        return None

    score = best.composite
    if score > HIGH_THRESHOLD:
        confidence = Confidence.HIGH
    elif score > MEDIUM_THRESHOLD:
        confidence = Confidence.MEDIUM
    else:
        logger.debug("interval match low: best=%.4f record=%s", score, best.record.id)
        return None

    logger.debug("interval match %s: score=%.4f record=%s", confidence, score, best.record.id)
    return _attach(
        receipt,
        confidence,
        ResolutionMethod.INTERVAL_MATCH,
        best.record,
        MatchDetails(
            matched_price_entry=best.record,
            price_match_accuracy=best.price_accuracy,
            date_match_accuracy=best.date_accuracy,
        ),
    )


def match_by_text(receipt: ReceiptInput, ctx: _Context) -> ResolvedReceipt | None:
    text = (receipt.product_text or "").strip()
    if not text:
        return None

    found = ctx.index.best_match(text)
    if found is None:
        return None
    product_id, ratio = found
    record = most_recent_record(ctx.records, product_id)
    if record is None or ratio <= TEXT_THRESHOLD:
        logger.debug("text match low: product=%s ratio=%.4f", product_id, ratio)
        return None

    logger.debug("text match: product=%s ratio=%.4f record=%s", product_id, ratio, record.id)
    return _attach(
        receipt,
        Confidence.MEDIUM,
        ResolutionMethod.TEXT_MATCH,
        record,
        MatchDetails(matched_price_entry=record, text_match_confidence=ratio),
    )


def flag_for_review(receipt: ReceiptInput, ctx: _Context) -> ResolvedReceipt:
    return ResolvedReceipt(
        receipt=receipt,
        confidence=Confidence.FLAGGED,
        method=ResolutionMethod.MANUAL_REVIEW,
    )


STRATEGIES: tuple[Strategy, ...] = (match_by_interval, match_by_text, flag_for_review)


def first_resolved(
    strategies: Sequence[Strategy], receipt: ReceiptInput, ctx: _Context
) -> ResolvedReceipt:
    for strategy in strategies:
        outcome = strategy(receipt, ctx)
        if outcome is not None:
            return outcome
    raise RuntimeError("no strategy produced a result; the last one must always succeed")


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------


def _as_receipt(receipt: ReceiptInput | Mapping[str, Any]) -> ReceiptInput:
    if isinstance(receipt, ReceiptInput):
        return receipt
    return ReceiptInput.model_validate(dict(receipt))


def _context(
    records: Iterable[PriceRecord], index: KeywordIndex | None, today: date | None
) -> _Context:
    ordered = tuple(sorted(records, key=lambda r: (r.valid_from, r.id)))
    return _Context(
        records=ordered,
        index=index if index is not None else KeywordIndex.from_records(ordered),
        today=today or utc_today(),
    )


def resolve_receipt(
    receipt: ReceiptInput | Mapping[str, Any],
    records: Iterable[PriceRecord],
    index: KeywordIndex | None = None,
    *,
    today: date | None = None,
) -> ResolvedReceipt:
    """Resolve one receipt against a ledger snapshot.

    ``records`` may come in any order. ``index`` defaults to one derived from
    ``records``. ``today`` fixes the evaluation date (open intervals run
    through it and two-digit years use its century); it defaults to the current
    UTC date.
    """

    return first_resolved(STRATEGIES, _as_receipt(receipt), _context(records, index, today))


def resolve_receipts(
    receipts: Iterable[ReceiptInput | Mapping[str, Any]],
    records: Iterable[PriceRecord],
    index: KeywordIndex | None = None,
    *,
    today: date | None = None,
) -> list[ResolvedReceipt]:
    """Resolve many receipts against one snapshot (index built once)."""

    ctx = _context(records, index, today)
    return [first_resolved(STRATEGIES, _as_receipt(r), ctx) for r in receipts]


def override_product(resolved: ResolvedReceipt, record: PriceRecord) -> ResolvedReceipt:
    """Record a human's product choice for a receipt.

    Whatever the automated path produced, the result is ``manual-review`` at
    ``medium`` confidence attached to ``record``.
    """

    return ResolvedReceipt(
        receipt=resolved.receipt,
        confidence=Confidence.MEDIUM,
        method=ResolutionMethod.MANUAL_REVIEW,
        product_id=record.product_id,
        product_label=record.product_label,
        match_details=MatchDetails(matched_price_entry=record),
    )


__all__ = [
    "IntervalScore",
    "price_accuracy",
    "date_accuracy",
    "score_record",
    "most_recent_record",
    "match_by_interval",
    "match_by_text",
    "flag_for_review",
    "STRATEGIES",
    "first_resolved",
    "resolve_receipt",
    "resolve_receipts",
    "override_product",
]
