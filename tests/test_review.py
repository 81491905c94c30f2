from __future__ import annotations

from fuel_invoicing.models import Confidence, ResolutionMethod
from fuel_invoicing.resolver import resolve_receipts
from fuel_invoicing.review import current_record_by_label, review_resolved_receipts
from tests.helpers.records import TODAY, make_record, sample_ledger, utc


def _resolved():
    return resolve_receipts(
        [
            {"rate": "365", "date": "10-06-25"},
            {"rate": "", "date": "10-06-25", "productText": "DIESEL"},
            {"rate": "9999", "date": "10-06-25"},
        ],
        sample_ledger(),
        today=TODAY,
    )


def test_current_record_prefers_open_then_most_recent():
    records = sample_ledger() + [
        make_record(9, "kerosene", "Kerosene", "200", utc(2025, 1, 1), utc(2025, 1, 31)),
        make_record(10, "kerosene", "Kerosene", "210", utc(2025, 2, 1), utc(2025, 2, 28)),
    ]
    by_label = current_record_by_label(records)
    assert list(by_label) == ["Diesel", "Kerosene", "Petrol 92", "Petrol 95"]
    assert by_label["Petrol 95"].id == 2
    assert by_label["Kerosene"].id == 10


def test_review_assigns_selected_products_and_keeps_order():
    resolved = _resolved()
    assert [r.confidence for r in resolved] == [
        Confidence.HIGH,
        Confidence.FLAGGED,
        Confidence.FLAGGED,
    ]
    prompts: list[tuple[list[str], str]] = []
    answers = iter(["Diesel", "Petrol 92"])

    def selector(choices, default):
        prompts.append((list(choices), default))
        return next(answers)

    printed: list[str] = []
    final = review_resolved_receipts(
        resolved, sample_ledger(), selector=selector, print_fn=printed.append
    )

    assert final[0] is resolved[0]
    assert [(r.product_id, r.method) for r in final[1:]] == [
        ("diesel", ResolutionMethod.MANUAL_REVIEW),
        ("petrol-92", ResolutionMethod.MANUAL_REVIEW),
    ]
    assert all(r.confidence == Confidence.MEDIUM for r in final[1:])
    # Keyword guess pre-fills the prompt when the receipt has product text.
    assert prompts[0] == (["Diesel", "Petrol 92", "Petrol 95"], "Diesel")
    assert prompts[1][1] == ""
    assert any(line.startswith("Receipt 2/3 [flagged]") for line in printed)
    assert "Assigned Petrol 92 (Rs. 309.00/L)." in printed


def test_skipped_receipts_stay_flagged():
    final = review_resolved_receipts(
        _resolved(), sample_ledger(), selector=lambda c, d: None, print_fn=lambda *_: None
    )
    assert [r.confidence for r in final] == [
        Confidence.HIGH,
        Confidence.FLAGGED,
        Confidence.FLAGGED,
    ]


def test_nothing_to_review_never_prompts():
    resolved = _resolved()[:1]

    def selector(choices, default):
        raise AssertionError("selector should not be called")

    assert review_resolved_receipts(resolved, sample_ledger(), selector=selector) == resolved


def test_empty_ledger_leaves_receipts_flagged():
    resolved = resolve_receipts([{"rate": "365", "date": "10-06-25"}], [], today=TODAY)
    printed: list[str] = []
    final = review_resolved_receipts(
        resolved, [], selector=lambda c, d: "Diesel", print_fn=printed.append
    )
    assert final[0].confidence == Confidence.FLAGGED
    assert printed == ["No fuel prices recorded; receipts stay flagged."]
