"""Fuel price interval ledger.

The single source of truth for "what did product P cost on date D". Each
product owns a sequence of non-overlapping price intervals; at most one of
them is open (no end date) at any time. Every mutation appends an entry to the
``fp_price_edits`` log and records are never deleted, only end-dated.

All functions take an SQLAlchemy ``Session`` and leave committing to the caller
(``db.client.session_scope``). Mutations check authorization, then validate
every input, and only then write, so a rejected call leaves the database as it
found it.

Concurrency: writers lock the product row (``SELECT ... FOR UPDATE``) before
reading the open interval, so "close the previous interval, insert the new
one" is a read-modify-write scoped to one product. The partial unique index
``uq_fp_price_records_one_open`` is the backstop; losing that race surfaces as
:class:`LedgerConflictError`.
"""

from __future__ import annotations

import re
from collections import defaultdict
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from db.models.fuel import FpPriceEdit, FpPriceRecord, FpProduct
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .access import AccessPolicy, Actor
from .errors import (
    LedgerAuthorizationError,
    LedgerConflictError,
    LedgerFailure,
    LedgerNotFoundError,
    LedgerValidationError,
)
from .logging_setup import get_logger
from .models import EditAction, EditLogEntry, FieldChange, PriceRecord, Product
from .parsing import parse_timestamp

logger = get_logger("fuel_invoicing.ledger")

EDITABLE_FIELDS: tuple[str, ...] = ("price", "valid_from", "valid_to")
CLOSE_GAP = timedelta(milliseconds=1)
_OPEN_END = datetime.max.replace(tzinfo=UTC)
_CENTS = Decimal("0.01")
_SLUG_RE = re.compile(r"[^a-z0-9]+")


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def normalize_label(label: str) -> str:
    """Trim and collapse internal whitespace; case is preserved."""

    return " ".join(label.split())


def product_code_for(label: str) -> str:
    """Derive a stable product code from a label (``"Petrol 95"`` → ``petrol-95``)."""

    return _SLUG_RE.sub("-", normalize_label(label).lower()).strip("-")


def _authorize(actor: Actor, policy: AccessPolicy) -> None:
    if not policy(actor):
        raise LedgerAuthorizationError(f"actor {actor.id!r} is not allowed to modify fuel prices")


def _validate_label(raw: Any) -> str:
    label = normalize_label(raw) if isinstance(raw, str) else ""
    if not label or not product_code_for(label):
        raise LedgerValidationError(LedgerFailure.INVALID_LABEL, "product label is required")
    return label


def _coerce_price(raw: Any) -> Decimal:
    if isinstance(raw, bool) or raw is None:
        raise LedgerValidationError(LedgerFailure.INVALID_PRICE, f"invalid price: {raw!r}")
    try:
        if isinstance(raw, str):
            value = Decimal(raw.strip().replace(",", ""))
        else:
            value = Decimal(str(raw))
    except InvalidOperation as exc:
        raise LedgerValidationError(
            LedgerFailure.INVALID_PRICE, f"invalid price: {raw!r}"
        ) from exc
    if not value.is_finite():
        raise LedgerValidationError(LedgerFailure.INVALID_PRICE, f"invalid price: {raw!r}")
    # Stored with two decimals; a value that rounds to zero is not a price.
    try:
        value = value.quantize(_CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise LedgerValidationError(
            LedgerFailure.INVALID_PRICE, f"invalid price: {raw!r}"
        ) from exc
    if value <= 0:
        raise LedgerValidationError(
            LedgerFailure.NON_POSITIVE_PRICE, f"price must be positive, got {raw!r}"
        )
    return value


def _coerce_timestamp(raw: Any, field: str) -> datetime:
    ts = parse_timestamp(raw)
    if ts is None:
        raise LedgerValidationError(LedgerFailure.INVALID_DATE, f"invalid {field}: {raw!r}")
    return ts


def _utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; stored values are always UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _aware(value: datetime | None) -> datetime | None:
    return _utc(value) if value is not None else None


def _now(now: datetime | None) -> datetime:
    return _aware(now) or datetime.now(UTC)


def _span(row: FpPriceRecord) -> tuple[datetime, datetime]:
    return _utc(row.valid_from), _aware(row.valid_to) or _OPEN_END


def _overlaps(a: tuple[datetime, datetime], b: tuple[datetime, datetime]) -> bool:
    return a[0] <= b[1] and b[0] <= a[1]


def _fmt_value(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return f"{value:.2f}"
    return str(value)


# ---------------------------------------------------------------------------
# Row → snapshot mapping
# ---------------------------------------------------------------------------


def _edit_to_entry(row: FpPriceEdit) -> EditLogEntry:
    return EditLogEntry(
        timestamp=_utc(row.occurred_at),
        actor_id=row.actor_id,
        actor_email=row.actor_email,
        action=EditAction(row.action),
        changes=tuple(
            FieldChange(
                field=str(c.get("field")),
                old_value=c.get("old_value"),
                new_value=c.get("new_value"),
            )
            for c in (row.changes or [])
        ),
        reason=row.reason,
        related_record_id=row.related_record_id,
    )


def _history_by_record(
    session: Session, record_ids: Iterable[int]
) -> dict[int, tuple[EditLogEntry, ...]]:
    ids = list(record_ids)
    if not ids:
        return {}
    rows = (
        session.execute(
            select(FpPriceEdit).where(FpPriceEdit.record_id.in_(ids)).order_by(FpPriceEdit.id)
        )
        .scalars()
        .all()
    )
    grouped: dict[int, list[EditLogEntry]] = defaultdict(list)
    for row in rows:
        grouped[row.record_id].append(_edit_to_entry(row))
    return {rid: tuple(entries) for rid, entries in grouped.items()}


def _to_record(
    row: FpPriceRecord, label: str, history: tuple[EditLogEntry, ...]
) -> PriceRecord:
    start, _ = _span(row)
    return PriceRecord(
        id=row.id,
        product_id=row.product_code,
        product_label=label,
        price=Decimal(row.price).quantize(_CENTS, rounding=ROUND_HALF_UP),
        valid_from=start,
        valid_to=_aware(row.valid_to),
        is_open=bool(row.is_open),
        history=history,
    )


def _query_records(session: Session, *conditions: Any) -> list[PriceRecord]:
    stmt = select(FpPriceRecord, FpProduct.label).join(
        FpProduct, FpProduct.code == FpPriceRecord.product_code
    )
    if conditions:
        stmt = stmt.where(*conditions)
    rows = session.execute(stmt).all()
    history = _history_by_record(session, (rec.id for rec, _ in rows))
    return [_to_record(rec, label, history.get(rec.id, ())) for rec, label in rows]


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def current_intervals(session: Session) -> list[PriceRecord]:
    """All open intervals (at most one per product), ordered by product code."""

    records = _query_records(session, FpPriceRecord.is_open.is_(True))
    return sorted(records, key=lambda r: r.product_id)


def intervals_for_product(session: Session, product_id: str) -> list[PriceRecord]:
    """Every interval of one product, most recent ``valid_from`` first."""

    records = _query_records(session, FpPriceRecord.product_code == product_id)
    return sorted(records, key=lambda r: (r.valid_from, r.id), reverse=True)


def load_snapshot(session: Session) -> list[PriceRecord]:
    """Every interval of every product, open and closed, for the resolver."""

    return sorted(_query_records(session), key=lambda r: (r.valid_from, r.id))


def get_interval(session: Session, record_id: int) -> PriceRecord:
    records = _query_records(session, FpPriceRecord.id == record_id)
    if not records:
        raise LedgerNotFoundError(f"price record not found: {record_id!r}")
    return records[0]


def list_products(session: Session) -> list[Product]:
    rows = session.execute(select(FpProduct).order_by(FpProduct.code)).scalars().all()
    return [Product(code=r.code, label=r.label) for r in rows]


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


def _select_product_by_label(label: str):
    return (
        select(FpProduct)
        .where(func.lower(FpProduct.label) == label.lower())
        .with_for_update()
    )


def _lock_product(
    session: Session, *, label: str, product_id: str | None, now: datetime
) -> FpProduct:
    """Return the product row for ``label`` locked for update, creating it if new."""

    row = session.execute(_select_product_by_label(label)).scalars().first()
    if row is not None:
        if product_id and row.code != product_id:
            raise LedgerValidationError(
                LedgerFailure.INVALID_LABEL,
                f"label {label!r} already belongs to product {row.code!r}",
            )
        return row

    code = product_id or product_code_for(label)
    taken = session.execute(select(FpProduct).where(FpProduct.code == code)).scalars().first()
    if taken is not None:
        raise LedgerValidationError(
            LedgerFailure.INVALID_LABEL,
            f"product code {code!r} already belongs to label {taken.label!r}",
        )

    try:
        session.add(FpProduct(code=code, label=label, created_at=now))
        session.flush()
    except IntegrityError:
        # Another operator created the same product concurrently; use theirs.
        session.rollback()
        row = session.execute(_select_product_by_label(label)).scalars().first()
        if row is None:
            raise
        return row

    logger.info("created product %s (%s)", code, label)
    return session.execute(_select_product_by_label(label)).scalars().one()


def open_new_interval(
    session: Session,
    *,
    actor: Actor,
    policy: AccessPolicy,
    product_label: str,
    price: Any,
    valid_from: Any,
    reason: str | None = None,
    product_id: str | None = None,
    now: datetime | None = None,
) -> PriceRecord:
    """Record a new price for a product, closing its currently open interval.

    The previous open interval (if any) ends at ``valid_from - 1ms`` and gets a
    ``closed`` log entry pointing at the new record. ``valid_from`` must be
    strictly later than every boundary already recorded for the product so the
    product's intervals can never overlap.

    Raises
    ------
    LedgerAuthorizationError
        ``policy`` rejected ``actor``.
    LedgerValidationError
        Non-positive/unparsable price, unparsable date, empty label, or a
        ``valid_from`` that would overlap existing intervals.
    LedgerConflictError
        A concurrent writer opened an interval for the same product first.
    """

    _authorize(actor, policy)
    label = _validate_label(product_label)
    amount = _coerce_price(price)
    start = _coerce_timestamp(valid_from, "valid_from")
    ts = _now(now)

    product = _lock_product(session, label=label, product_id=product_id, now=ts)
    existing = (
        session.execute(select(FpPriceRecord).where(FpPriceRecord.product_code == product.code))
        .scalars()
        .all()
    )
    boundaries = [
        b for row in existing for b in (_aware(row.valid_from), _aware(row.valid_to)) if b
    ]
    if boundaries and start <= max(boundaries):
        raise LedgerValidationError(
            LedgerFailure.OVERLAPPING_INTERVAL,
            f"valid_from {start.isoformat()} must be after {max(boundaries).isoformat()} "
            f"for product {product.code!r}",
        )

    previous = [row for row in existing if row.is_open]
    created = FpPriceRecord(
        product_code=product.code,
        price=amount,
        valid_from=start,
        valid_to=None,
        is_open=True,
        created_by=actor.id,
        created_at=ts,
    )
    try:
        for row in previous:
            row.valid_to = start - CLOSE_GAP
            row.is_open = False
            row.updated_by = actor.id
            row.updated_at = ts
        session.flush()
        session.add(created)
        session.flush()
    except IntegrityError as exc:
        session.rollback()
        raise LedgerConflictError(
            f"another open interval was recorded for product {product.code!r}; retry"
        ) from exc

    session.add(
        FpPriceEdit(
            record_id=created.id,
            occurred_at=ts,
            actor_id=actor.id,
            actor_email=actor.email,
            action=EditAction.CREATED.value,
            reason=reason or "New price entry",
        )
    )
    for row in previous:
        session.add(
            FpPriceEdit(
                record_id=row.id,
                occurred_at=ts,
                actor_id=actor.id,
                actor_email=actor.email,
                action=EditAction.CLOSED.value,
                reason=f"Closed due to new price starting {start.date().isoformat()}",
                related_record_id=created.id,
            )
        )
    session.flush()

    logger.info(
        "opened interval %s for %s at %s from %s (closed: %s)",
        created.id,
        product.code,
        amount,
        start.isoformat(),
        [row.id for row in previous] or "none",
    )
    return get_interval(session, created.id)


def edit_interval(
    session: Session,
    *,
    actor: Actor,
    policy: AccessPolicy,
    record_id: int,
    changes: Mapping[str, Any],
    reason: str | None = None,
    now: datetime | None = None,
) -> PriceRecord:
    """Apply a partial correction to one interval and log the field diff.

    Editable fields are ``price``, ``valid_from`` and ``valid_to``. A non-null
    ``valid_to`` closes the interval; an explicit ``valid_to=None`` re-opens it,
    which is refused while another interval of the product is open. The result
    must not overlap any other interval of the same product.
    """

    _authorize(actor, policy)
    unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
    if unknown:
        raise LedgerValidationError(
            LedgerFailure.INVALID_FIELD,
            f"unsupported field(s): {', '.join(unknown)}; editable: {', '.join(EDITABLE_FIELDS)}",
        )

    updates: dict[str, Any] = {}
    if "price" in changes:
        updates["price"] = _coerce_price(changes["price"])
    if "valid_from" in changes:
        updates["valid_from"] = _coerce_timestamp(changes["valid_from"], "valid_from")
    if "valid_to" in changes:
        raw_to = changes["valid_to"]
        updates["valid_to"] = None if raw_to is None else _coerce_timestamp(raw_to, "valid_to")
    ts = _now(now)

    row = (
        session.execute(
            select(FpPriceRecord).where(FpPriceRecord.id == record_id).with_for_update()
        )
        .scalars()
        .first()
    )
    if row is None:
        raise LedgerNotFoundError(f"price record not found: {record_id!r}")
    # Serialize with open_new_interval on the same product.
    session.execute(
        select(FpProduct).where(FpProduct.code == row.product_code).with_for_update()
    ).scalars().first()

    current: dict[str, Any] = {
        "price": Decimal(row.price).quantize(_CENTS, rounding=ROUND_HALF_UP),
        "valid_from": _aware(row.valid_from),
        "valid_to": _aware(row.valid_to),
    }
    merged = {**current, **updates}
    if merged["valid_to"] is not None and merged["valid_to"] < merged["valid_from"]:
        raise LedgerValidationError(
            LedgerFailure.INVALID_RANGE, "valid_to must not be earlier than valid_from"
        )

    siblings = (
        session.execute(
            select(FpPriceRecord).where(
                FpPriceRecord.product_code == row.product_code,
                FpPriceRecord.id != row.id,
            )
        )
        .scalars()
        .all()
    )
    if merged["valid_to"] is None and any(s.is_open for s in siblings):
        raise LedgerConflictError(
            f"product {row.product_code!r} already has an open interval; close it first"
        )
    span = (merged["valid_from"], merged["valid_to"] or _OPEN_END)
    clashing = [s.id for s in siblings if _overlaps(span, _span(s))]
    if clashing:
        raise LedgerValidationError(
            LedgerFailure.OVERLAPPING_INTERVAL,
            f"edited interval would overlap interval(s) {clashing}",
        )

    diff = [
        FieldChange(field=f, old_value=_fmt_value(current[f]), new_value=_fmt_value(merged[f]))
        for f in EDITABLE_FIELDS
        if f in updates and current[f] != merged[f]
    ]

    try:
        row.price = merged["price"]
        row.valid_from = merged["valid_from"]
        row.valid_to = merged["valid_to"]
        row.is_open = merged["valid_to"] is None
        row.updated_by = actor.id
        row.updated_at = ts
        session.flush()
    except IntegrityError as exc:
        session.rollback()
        raise LedgerConflictError(
            f"concurrent change to product {row.product_code!r}; retry"
        ) from exc

    session.add(
        FpPriceEdit(
            record_id=row.id,
            occurred_at=ts,
            actor_id=actor.id,
            actor_email=actor.email,
            action=EditAction.UPDATED.value,
            changes=[
                {"field": c.field, "old_value": c.old_value, "new_value": c.new_value}
                for c in diff
            ],
            reason=reason or "Price correction",
        )
    )
    session.flush()

    logger.info(
        "edited interval %s (%s): %s",
        row.id,
        row.product_code,
        ", ".join(c.field for c in diff) or "no field changes",
    )
    return get_interval(session, row.id)


__all__ = [
    "EDITABLE_FIELDS",
    "CLOSE_GAP",
    "normalize_label",
    "product_code_for",
    "current_intervals",
    "intervals_for_product",
    "load_snapshot",
    "get_interval",
    "list_products",
    "open_new_interval",
    "edit_interval",
]
