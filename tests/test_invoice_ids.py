from __future__ import annotations

from datetime import date

import pytest
from db.client import session_scope
from db.models.fuel import FpInvoiceCounter

from fuel_invoicing.api import invoice_from_ocr_payloads, issue_invoice_id
from fuel_invoicing.errors import AggregationError, InvoiceNumberError
from fuel_invoicing.invoice_ids import (
    InvoiceNumber,
    clean_vat_number,
    current_invoice_count,
    next_invoice_id,
    parse_invoice_id,
)
from tests.helpers.db import seed_price_record
from tests.helpers.records import utc


def test_ids_count_up_per_vat_number_and_year(db_url):
    with session_scope(database_url=db_url) as s:
        assert next_invoice_id(s, "123456789", 2025) == "EV-123456789-2025-0001"
        assert next_invoice_id(s, "123456789", 2025) == "EV-123456789-2025-0002"
        assert next_invoice_id(s, "987654321", 2025) == "EV-987654321-2025-0001"
        assert next_invoice_id(s, "123456789", 2026) == "EV-123456789-2026-0001"

    with session_scope(database_url=db_url) as s:
        assert current_invoice_count(s, "123456789", 2025) == 2
        assert current_invoice_count(s, "123456789", 2024) == 0
        assert next_invoice_id(s, "123456789", 2025) == "EV-123456789-2025-0003"


def test_counter_rows_survive_between_sessions(db_url):
    issue_invoice_id("123456789", year=2025, database_url=db_url)
    issue_invoice_id("123456789", year=2025, database_url=db_url)

    with session_scope(database_url=db_url) as s:
        row = s.get(FpInvoiceCounter, ("123456789", 2025))
        assert row is not None
        assert row.last_sequence == 2


def test_rolled_back_transaction_releases_the_number(db_url):
    with pytest.raises(RuntimeError):
        with session_scope(database_url=db_url) as s:
            next_invoice_id(s, "123456789", 2025)
            raise RuntimeError("printing failed")

    assert issue_invoice_id("123456789", year=2025, database_url=db_url).endswith("-0001")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("123456789", "123456789"),
        (" 123456789 - 7000 ", "123456789"),
        ("vat/ab 12", "VATAB12"),
        ("LK-1234", "LK-1234"),
    ],
)
def test_clean_vat_number(raw, expected):
    assert clean_vat_number(raw) == expected


@pytest.mark.parametrize("raw", ["", "   ", "- 7000", "///", None])
def test_unusable_vat_numbers_are_rejected(raw):
    with pytest.raises(InvoiceNumberError):
        clean_vat_number(raw)


def test_invalid_year_is_rejected(db_url):
    with pytest.raises(InvoiceNumberError):
        with session_scope(database_url=db_url) as s:
            next_invoice_id(s, "123456789", 25)


def test_parse_invoice_id_splits_hyphenated_vat_numbers():
    assert parse_invoice_id("EV-LK-1234-2025-0042") == InvoiceNumber("LK-1234", 2025, 42)
    assert str(InvoiceNumber("LK-1234", 2025, 42)) == "EV-LK-1234-2025-0042"
    assert parse_invoice_id("INV-2025-0001") is None
    assert parse_invoice_id("EV-123-25-0001") is None


def test_invoice_is_numbered_only_after_it_aggregates(db_url):
    seed_price_record(
        database_url=db_url,
        product_code="diesel",
        label="Diesel",
        price="300.00",
        valid_from=utc(2025, 5, 1),
    )
    today = date(2025, 6, 15)

    with pytest.raises(AggregationError):
        invoice_from_ocr_payloads(
            [{"rate": "9999", "price": "100", "date": "10/06/2025"}],
            today=today,
            vat_number="123456789",
            database_url=db_url,
        )

    _resolved, invoice = invoice_from_ocr_payloads(
        [{"rate": "300", "price": "1500", "date": "10/06/2025"}],
        today=today,
        vat_number="123456789",
        database_url=db_url,
    )
    assert invoice.invoice_id == "EV-123456789-2025-0001"
    assert invoice.to_dict()["invoice_id"] == "EV-123456789-2025-0001"


def test_invoice_without_vat_number_has_no_id(db_url):
    _resolved, invoice = invoice_from_ocr_payloads([], today=date(2025, 6, 15), database_url=db_url)
    assert invoice.invoice_id is None
