"""Turn resolved receipts into VAT-exclusive invoice lines.

Receipt amounts and rates are VAT-inclusive. Each accepted receipt contributes
``amount / rate`` litres and ``amount / (1 + vat)`` of VAT-exclusive value to
the line of its product; lines keep the order in which products first appear.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from .errors import AggregationError
from .logging_setup import get_logger
from .models import ACCEPTED_CONFIDENCE, ResolvedReceipt
from .parsing import parse_decimal, parse_positive_decimal

logger = get_logger("fuel_invoicing.aggregate")

DEFAULT_VAT_RATE = Decimal("0.18")
_QTY = Decimal("0.000001")
_CENTS = Decimal("0.01")


def _round(value: Decimal, step: Decimal) -> Decimal:
    return value.quantize(step, rounding=ROUND_HALF_UP)


@dataclass(frozen=True, slots=True)
class LineItem:
    product_id: str
    description: str
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal
    receipt_count: int


@dataclass(frozen=True, slots=True)
class Invoice:
    lines: tuple[LineItem, ...]
    subtotal: Decimal
    vat: Decimal
    total: Decimal
    vat_rate: Decimal = DEFAULT_VAT_RATE
    # Assigned when the invoice is issued for a station (see invoice_ids).
    invoice_id: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "invoice_id": self.invoice_id,
            "lines": [
                {
                    "product_id": line.product_id,
                    "description": line.description,
                    "quantity": f"{line.quantity:.6f}",
                    "unit_price": f"{line.unit_price:.6f}",
                    "amount": f"{line.amount:.2f}",
                    "receipt_count": line.receipt_count,
                }
                for line in self.lines
            ],
            "subtotal": f"{self.subtotal:.2f}",
            "vat": f"{self.vat:.2f}",
            "total": f"{self.total:.2f}",
        }


@dataclass(slots=True)
class _Accumulator:
    description: str
    quantity: Decimal = Decimal(0)
    amount: Decimal = Decimal(0)
    last_rate: Decimal = Decimal(0)
    count: int = 0


def build_invoice(
    receipts: Iterable[ResolvedReceipt], *, vat_rate: Decimal = DEFAULT_VAT_RATE
) -> Invoice:
    """Aggregate accepted receipts into one line per product.

    Every receipt must carry a product at ``high`` or ``medium`` confidence (a
    human override counts as ``medium``) with a positive rate and a numeric
    amount. Otherwise :class:`AggregationError` is raised naming the offending
    0-based positions; nothing is aggregated partially.
    """

    divisor = Decimal(1) + vat_rate
    lines: dict[str, _Accumulator] = {}
    rejected: list[int] = []

    for pos, resolved in enumerate(receipts):
        rate = parse_positive_decimal(resolved.receipt.rate)
        amount = parse_decimal(resolved.receipt.amount)
        if (
            resolved.confidence not in ACCEPTED_CONFIDENCE
            or resolved.product_id is None
            or rate is None
            or amount is None
        ):
            rejected.append(pos)
            continue
        acc = lines.get(resolved.product_id)
        if acc is None:
            acc = lines[resolved.product_id] = _Accumulator(
                description=resolved.product_label or resolved.product_id
            )
        acc.quantity += amount / rate
        acc.amount += amount / divisor
        acc.last_rate = rate
        acc.count += 1

    if rejected:
        raise AggregationError(
            f"{len(rejected)} receipt(s) are not resolved to a product with a usable "
            f"rate and amount: positions {rejected}",
            positions=rejected,
        )

    items = tuple(
        LineItem(
            product_id=pid,
            description=acc.description,
            quantity=_round(acc.quantity, _QTY),
            unit_price=_round(acc.last_rate / divisor, _QTY),
            amount=_round(acc.amount, _CENTS),
            receipt_count=acc.count,
        )
        for pid, acc in lines.items()
    )
    subtotal = sum((item.amount for item in items), Decimal(0))
    vat = _round(subtotal * vat_rate, _CENTS)
    logger.debug("built invoice: %d line(s), subtotal=%s", len(items), subtotal)
    return Invoice(
        lines=items,
        subtotal=_round(subtotal, _CENTS),
        vat=vat,
        total=_round(subtotal, _CENTS) + vat,
        vat_rate=vat_rate,
    )


__all__ = ["DEFAULT_VAT_RATE", "LineItem", "Invoice", "build_invoice"]
