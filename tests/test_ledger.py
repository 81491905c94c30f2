from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from db.client import session_scope
from db.models.fuel import FpPriceEdit, FpPriceRecord, FpProduct
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from fuel_invoicing.access import Actor, deny_all
from fuel_invoicing.errors import (
    LedgerAuthorizationError,
    LedgerConflictError,
    LedgerFailure,
    LedgerNotFoundError,
    LedgerValidationError,
)
from fuel_invoicing.ledger import (
    current_intervals,
    edit_interval,
    get_interval,
    intervals_for_product,
    list_products,
    load_snapshot,
    open_new_interval,
    product_code_for,
)
from fuel_invoicing.models import EditAction
from tests.helpers.db import seed_price_record

NOW = datetime(2025, 6, 15, 9, 0, tzinfo=UTC)


def _open(session, operator, policy, label, price, valid_from, **kw):
    return open_new_interval(
        session,
        actor=operator,
        policy=policy,
        product_label=label,
        price=price,
        valid_from=valid_from,
        now=NOW,
        **kw,
    )


def _counts(db_url: str) -> tuple[int, int, int]:
    with session_scope(database_url=db_url) as s:
        return (
            s.scalar(select(func.count()).select_from(FpProduct)),
            s.scalar(select(func.count()).select_from(FpPriceRecord)),
            s.scalar(select(func.count()).select_from(FpPriceEdit)),
        )


# ---- open_new_interval -------------------------------------------------------


def test_first_price_creates_product_and_open_interval(db_url, operator, policy):
    with session_scope(database_url=db_url) as s:
        rec = _open(s, operator, policy, "  Petrol   95 ", "350.00", "2025-05-01", reason="Launch")

    assert rec.product_id == "petrol-95"
    assert rec.product_label == "Petrol 95"
    assert rec.price == Decimal("350.00")
    assert rec.valid_from == datetime(2025, 5, 1, tzinfo=UTC)
    assert rec.valid_to is None and rec.is_open
    [entry] = rec.history
    assert entry.action == EditAction.CREATED
    assert entry.actor_id == "op-1"
    assert entry.actor_email == "operator@station.example"
    assert entry.reason == "Launch"
    assert entry.timestamp == NOW


def test_new_price_closes_previous_interval_one_millisecond_earlier(db_url, operator, policy):
    with session_scope(database_url=db_url) as s:
        first = _open(s, operator, policy, "Petrol 95", "350", "2025-05-01")
        second = _open(s, operator, policy, "petrol 95", "365", "2025-06-01")

    assert second.product_id == first.product_id
    with session_scope(database_url=db_url) as s:
        closed = get_interval(s, first.id)
        current = current_intervals(s)

    assert not closed.is_open
    assert closed.valid_to == datetime(2025, 6, 1, tzinfo=UTC) - timedelta(milliseconds=1)
    assert [r.id for r in current] == [second.id]

    actions = [e.action for e in closed.history]
    assert actions == [EditAction.CREATED, EditAction.CLOSED]
    closing = closed.history[-1]
    assert closing.related_record_id == second.id
    assert closing.reason == "Closed due to new price starting 2025-06-01"
    assert second.history[0].reason == "New price entry"


def test_each_product_keeps_at_most_one_open_interval(db_url, operator, policy):
    with session_scope(database_url=db_url) as s:
        _open(s, operator, policy, "Petrol 95", "350", "2025-05-01")
        _open(s, operator, policy, "Diesel", "300", "2025-05-01")
        _open(s, operator, policy, "Petrol 95", "365", "2025-06-01")
        _open(s, operator, policy, "Petrol 95", "370", "2025-06-10")

    with session_scope(database_url=db_url) as s:
        current = current_intervals(s)
        history = intervals_for_product(s, "petrol-95")
        products = list_products(s)

    assert [(r.product_id, r.price) for r in current] == [
        ("diesel", Decimal("300.00")),
        ("petrol-95", Decimal("370.00")),
    ]
    assert [r.price for r in history] == [Decimal("370.00"), Decimal("365.00"), Decimal("350.00")]
    assert [p.code for p in products] == ["diesel", "petrol-95"]


def test_intervals_of_a_product_never_overlap(db_url, operator, policy):
    starts = ["2025-01-01", "2025-01-15", "2025-02-01T06:00:00", "2025-03-01", "2025-03-02"]
    with session_scope(database_url=db_url) as s:
        for i, start in enumerate(starts):
            _open(s, operator, policy, "Petrol 92", str(300 + i), start)

    with session_scope(database_url=db_url) as s:
        records = sorted(intervals_for_product(s, "petrol-92"), key=lambda r: r.valid_from)

    for earlier, later in zip(records, records[1:], strict=False):
        assert earlier.valid_to is not None
        assert earlier.valid_to < later.valid_from
    assert sum(r.is_open for r in records) == 1


def test_start_not_after_existing_boundary_is_rejected(db_url, operator, policy):
    with session_scope(database_url=db_url) as s:
        _open(s, operator, policy, "Petrol 95", "350", "2025-05-01")
        _open(s, operator, policy, "Petrol 95", "365", "2025-06-01")
    before = _counts(db_url)

    for start in ("2025-06-01", "2025-05-15"):
        with pytest.raises(LedgerValidationError) as excinfo:
            with session_scope(database_url=db_url) as s:
                _open(s, operator, policy, "Petrol 95", "360", start)
        assert excinfo.value.reason == LedgerFailure.OVERLAPPING_INTERVAL

    assert _counts(db_url) == before


@pytest.mark.parametrize(
    ("price", "valid_from", "label", "reason"),
    [
        ("0", "2025-05-01", "Petrol 95", LedgerFailure.NON_POSITIVE_PRICE),
        ("-5", "2025-05-01", "Petrol 95", LedgerFailure.NON_POSITIVE_PRICE),
        ("0.004", "2025-05-01", "Petrol 95", LedgerFailure.NON_POSITIVE_PRICE),
        ("abc", "2025-05-01", "Petrol 95", LedgerFailure.INVALID_PRICE),
        ("350", "not a date", "Petrol 95", LedgerFailure.INVALID_DATE),
        ("350", "2025-05-01", "   ", LedgerFailure.INVALID_LABEL),
    ],
)
def test_invalid_input_is_rejected_without_writes(
    db_url, operator, policy, price, valid_from, label, reason
):
    with pytest.raises(LedgerValidationError) as excinfo:
        with session_scope(database_url=db_url) as s:
            _open(s, operator, policy, label, price, valid_from)
    assert excinfo.value.reason == reason
    assert isinstance(excinfo.value, ValueError)
    assert _counts(db_url) == (0, 0, 0)


def test_unauthorized_actor_cannot_write(db_url, policy):
    intruder = Actor(id="someone-else")
    with pytest.raises(LedgerAuthorizationError) as excinfo:
        with session_scope(database_url=db_url) as s:
            _open(s, intruder, policy, "Petrol 95", "350", "2025-05-01")
    assert excinfo.value.reason == LedgerFailure.UNAUTHORIZED
    assert isinstance(excinfo.value, PermissionError)
    assert _counts(db_url) == (0, 0, 0)


def test_authorization_is_checked_before_validation(db_url, operator):
    with pytest.raises(LedgerAuthorizationError):
        with session_scope(database_url=db_url) as s:
            _open(s, operator, deny_all, "Petrol 95", "-1", "garbage")


def test_explicit_product_id_is_used_for_new_products(db_url, operator, policy):
    with session_scope(database_url=db_url) as s:
        rec = _open(s, operator, policy, "Petrol 95", "350", "2025-05-01", product_id="P95")
    assert rec.product_id == "P95"

    with pytest.raises(LedgerValidationError) as excinfo:
        with session_scope(database_url=db_url) as s:
            _open(s, operator, policy, "Petrol 95", "360", "2025-06-01", product_id="OTHER")
    assert excinfo.value.reason == LedgerFailure.INVALID_LABEL


def test_product_code_for_slugifies_labels():
    assert product_code_for("Petrol 95") == "petrol-95"
    assert product_code_for("  Super  Diesel (Euro 4) ") == "super-diesel-euro-4"


def test_partial_index_rejects_second_open_record(db_url):
    seed_price_record(
        database_url=db_url,
        product_code="p95",
        label="Petrol 95",
        price="350",
        valid_from=datetime(2025, 5, 1, tzinfo=UTC),
    )
    with pytest.raises(IntegrityError):
        seed_price_record(
            database_url=db_url,
            product_code="p95",
            label="Petrol 95",
            price="365",
            valid_from=datetime(2025, 6, 1, tzinfo=UTC),
        )


# ---- edit_interval -----------------------------------------------------------


def _two_intervals(db_url, operator, policy):
    with session_scope(database_url=db_url) as s:
        first = _open(s, operator, policy, "Petrol 95", "350", "2025-05-01")
        second = _open(s, operator, policy, "Petrol 95", "365", "2025-06-01")
    return first, second


def test_edit_price_records_field_diff(db_url, operator, policy):
    _, second = _two_intervals(db_url, operator, policy)
    with session_scope(database_url=db_url) as s:
        edited = edit_interval(
            s,
            actor=operator,
            policy=policy,
            record_id=second.id,
            changes={"price": "364.50"},
            now=NOW,
        )

    assert edited.price == Decimal("364.50")
    assert edited.is_open
    update = edited.history[-1]
    assert update.action == EditAction.UPDATED
    assert update.reason == "Price correction"
    assert [(c.field, c.old_value, c.new_value) for c in update.changes] == [
        ("price", "365.00", "364.50")
    ]


def test_edit_valid_to_closes_and_clearing_it_reopens(db_url, operator, policy):
    _, second = _two_intervals(db_url, operator, policy)
    end = datetime(2025, 6, 30, 23, 59, 59, tzinfo=UTC)
    with session_scope(database_url=db_url) as s:
        closed = edit_interval(
            s, actor=operator, policy=policy, record_id=second.id, changes={"valid_to": end}
        )
    assert not closed.is_open and closed.valid_to == end

    with session_scope(database_url=db_url) as s:
        reopened = edit_interval(
            s,
            actor=operator,
            policy=policy,
            record_id=second.id,
            changes={"valid_to": None},
            reason="Closed by mistake",
        )
    assert reopened.is_open and reopened.valid_to is None
    last = reopened.history[-1]
    assert last.reason == "Closed by mistake"
    assert last.changes[0].field == "valid_to"
    assert last.changes[0].new_value is None


def test_reopening_while_another_interval_is_open_conflicts(db_url, operator, policy):
    first, _ = _two_intervals(db_url, operator, policy)
    before = _counts(db_url)
    with pytest.raises(LedgerConflictError) as excinfo:
        with session_scope(database_url=db_url) as s:
            edit_interval(
                s, actor=operator, policy=policy, record_id=first.id, changes={"valid_to": None}
            )
    assert excinfo.value.reason == LedgerFailure.CONFLICT
    assert _counts(db_url) == before


def test_edit_that_would_overlap_a_sibling_is_rejected(db_url, operator, policy):
    first, _ = _two_intervals(db_url, operator, policy)
    with pytest.raises(LedgerValidationError) as excinfo:
        with session_scope(database_url=db_url) as s:
            edit_interval(
                s,
                actor=operator,
                policy=policy,
                record_id=first.id,
                changes={"valid_to": "2025-06-05"},
            )
    assert excinfo.value.reason == LedgerFailure.OVERLAPPING_INTERVAL

    with session_scope(database_url=db_url) as s:
        unchanged = get_interval(s, first.id)
    assert unchanged.valid_to == datetime(2025, 6, 1, tzinfo=UTC) - timedelta(milliseconds=1)
    assert len(unchanged.history) == 2


@pytest.mark.parametrize(
    ("changes", "reason"),
    [
        ({"price": "0"}, LedgerFailure.NON_POSITIVE_PRICE),
        ({"price": "0.004"}, LedgerFailure.NON_POSITIVE_PRICE),
        ({"valid_from": "soon"}, LedgerFailure.INVALID_DATE),
        ({"valid_to": "2025-04-01"}, LedgerFailure.INVALID_RANGE),
        ({"product": "Diesel"}, LedgerFailure.INVALID_FIELD),
    ],
)
def test_invalid_edits_are_rejected(db_url, operator, policy, changes, reason):
    first, _ = _two_intervals(db_url, operator, policy)
    before = _counts(db_url)
    with pytest.raises(LedgerValidationError) as excinfo:
        with session_scope(database_url=db_url) as s:
            edit_interval(s, actor=operator, policy=policy, record_id=first.id, changes=changes)
    assert excinfo.value.reason == reason
    assert _counts(db_url) == before


def test_editing_unknown_record_is_not_found(db_url, operator, policy):
    with pytest.raises(LedgerNotFoundError):
        with session_scope(database_url=db_url) as s:
            edit_interval(s, actor=operator, policy=policy, record_id=999, changes={"price": 1})


def test_unauthorized_edit_is_rejected(db_url, operator, policy):
    first, _ = _two_intervals(db_url, operator, policy)
    with pytest.raises(LedgerAuthorizationError):
        with session_scope(database_url=db_url) as s:
            edit_interval(
                s,
                actor=Actor(id="guest"),
                policy=policy,
                record_id=first.id,
                changes={"price": "1"},
            )


# ---- snapshots ---------------------------------------------------------------


def test_snapshot_includes_closed_and_open_records_in_order(db_url, operator, policy):
    with session_scope(database_url=db_url) as s:
        _open(s, operator, policy, "Diesel", "300", "2025-05-02")
        _open(s, operator, policy, "Petrol 95", "350", "2025-05-01")
        _open(s, operator, policy, "Petrol 95", "365", "2025-06-01")

    with session_scope(database_url=db_url) as s:
        first = load_snapshot(s)
    with session_scope(database_url=db_url) as s:
        second = load_snapshot(s)

    assert first == second
    assert [(r.product_id, str(r.price), r.is_open) for r in first] == [
        ("petrol-95", "350.00", False),
        ("diesel", "300.00", True),
        ("petrol-95", "365.00", True),
    ]
    assert all(r.valid_from.tzinfo is not None for r in first)
