"""Number and date parsing shared by the ledger, the resolver and OCR intake.

Two families of helpers live here:

- strict-ish parsers used by the resolver and the ledger
  (:func:`parse_decimal`, :func:`parse_receipt_date`, :func:`parse_timestamp`)
  which return ``None`` instead of raising on bad input;
- OCR intake normalization (:func:`normalize_receipt_date`,
  :func:`receipt_from_ocr`) which turns whatever date text the OCR step found
  into the canonical ``DD-MM-YY`` receipt format and flags failures for review.

Two-digit years are always expanded with the century of the evaluation date
(``today``), never the century of the receipt itself.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import UTC, date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any

from .models import ReceiptInput

# A number starts at a digit, so the dot of a glued currency marker such as
# "Rs.350.00" is never read as a decimal point.
_NUMBER_RE = re.compile(r"[-+]?\d+(?:\.\d+)?")

_MONTHS: dict[str, int] = {
    "jan": 1,
    "january": 1,
    "feb": 2,
    "february": 2,
    "mar": 3,
    "march": 3,
    "apr": 4,
    "april": 4,
    "may": 5,
    "jun": 6,
    "june": 6,
    "jul": 7,
    "july": 7,
    "aug": 8,
    "august": 8,
    "sep": 9,
    "sept": 9,
    "september": 9,
    "oct": 10,
    "october": 10,
    "nov": 11,
    "november": 11,
    "dec": 12,
    "december": 12,
}

_DAY_MONTHNAME_YEAR_RE = re.compile(r"^(\d{1,2})[\s\-/.]*([A-Za-z]{3,9})[\s\-/.]*(\d{2,4})$")
_MONTHNAME_DAY_YEAR_RE = re.compile(r"^([A-Za-z]{3,9})[\s\-/.]*(\d{1,2})[\s,]*(\d{2,4})$")
_NUMERIC_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4})$"),  # DD/MM/YYYY or MM/DD/YYYY
    re.compile(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{2})$"),  # DD/MM/YY or MM/DD/YY
    re.compile(r"^(\d{4})[/\-.](\d{1,2})[/\-.](\d{1,2})$"),  # YYYY/MM/DD
    re.compile(r"^(\d{2})(\d{2})(\d{4})$"),  # DDMMYYYY
    re.compile(r"^(\d{2})(\d{2})(\d{2})$"),  # DDMMYY
)


# ---------------------------------------------------------------------------
# Numbers
# ---------------------------------------------------------------------------


def parse_decimal(raw: Any) -> Decimal | None:
    """Return the first number found in ``raw`` as a ``Decimal``.

    Thousands separators and surrounding noise such as currency markers
    (``"Rs. 1,250.00"``) or units (``"12.5 L"``) are ignored. Returns ``None``
    when no finite number is present.
    """

    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, Decimal):
        return raw if raw.is_finite() else None
    if isinstance(raw, (int, float)):
        try:
            d = Decimal(str(raw))
        except InvalidOperation:
            return None
        return d if d.is_finite() else None

    s = str(raw).strip().replace(",", "")
    m = _NUMBER_RE.search(s)
    if m is None:
        return None
    try:
        return Decimal(m.group(0))
    except InvalidOperation:
        return None


def parse_positive_decimal(raw: Any) -> Decimal | None:
    d = parse_decimal(raw)
    if d is None or d <= 0:
        return None
    return d


def clean_numeric_text(raw: Any) -> str:
    """Normalize an OCR numeric field to plain decimal text when possible."""

    d = parse_decimal(raw)
    if d is None:
        return "" if raw is None else str(raw).strip()
    return format(d.normalize() if d == d.to_integral_value() else d, "f")


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------


def utc_today() -> date:
    return datetime.now(UTC).date()


def expand_two_digit_year(year: int, *, today: date) -> int:
    """Map ``0..99`` onto the century of ``today``; larger years pass through."""

    if year >= 100:
        return year
    return (today.year // 100) * 100 + year


def parse_receipt_date(raw: str | None, *, today: date | None = None) -> date | None:
    """Parse a canonical receipt date (``DD-MM-YY``; ``DD-MM-YYYY`` also accepted).

    Returns ``None`` for anything that is not a real calendar date.
    """

    if not raw:
        return None
    parts = [p.strip() for p in raw.strip().split("-")]
    if len(parts) != 3 or not all(p.isdecimal() for p in parts):
        return None
    day, month, year = (int(p) for p in parts)
    year = expand_two_digit_year(year, today=today or utc_today())
    try:
        return date(year, month, day)
    except ValueError:
        return None


def format_receipt_date(d: date) -> str:
    return d.strftime("%d-%m-%y")


def days_outside(d: date, start: date, end: date) -> int:
    """Whole days from ``d`` to the nearer edge of ``[start, end]`` (0 inside)."""

    if d < start:
        return (start - d).days
    if d > end:
        return (d - end).days
    return 0


def parse_timestamp(raw: Any) -> datetime | None:
    """Coerce a ``date``, ``datetime`` or ISO string into an aware UTC datetime.

    A plain date means midnight UTC of that day. Naive datetimes are taken to be
    UTC already (SQLite hands them back that way).
    """

    if isinstance(raw, datetime):
        if raw.tzinfo is None:
            return raw.replace(tzinfo=UTC)
        return raw.astimezone(UTC)
    if isinstance(raw, date):
        return datetime.combine(raw, time.min, tzinfo=UTC)
    if not isinstance(raw, str):
        return None
    s = raw.strip()
    if not s:
        return None
    try:
        return datetime.combine(date.fromisoformat(s), time.min, tzinfo=UTC)
    except ValueError:
        pass
    try:
        return parse_timestamp(datetime.fromisoformat(s))
    except ValueError:
        return None


def _safe_date(year: int, month: int, day: int) -> date | None:
    if not 1900 < year < 2100:
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _parse_named_month(text: str, *, today: date) -> date | None:
    m = _DAY_MONTHNAME_YEAR_RE.match(text)
    if m:
        day_s, month_s, year_s = m.groups()
    else:
        m = _MONTHNAME_DAY_YEAR_RE.match(text)
        if not m:
            return None
        month_s, day_s, year_s = m.groups()
    month = _MONTHS.get(month_s.lower())
    if month is None:
        return None
    year = expand_two_digit_year(int(year_s), today=today)
    return _safe_date(year, month, int(day_s))


def _parse_numeric(text: str, *, today: date) -> date | None:
    cleaned = re.sub(r"[^\d/\-.]", "", text)
    for pattern in _NUMERIC_PATTERNS:
        m = pattern.match(cleaned)
        if not m:
            continue
        p1, p2, p3 = m.groups()
        if len(p1) == 4:
            candidates = [(int(p1), int(p2), int(p3))]
        else:
            year = int(p3) if len(p3) == 4 else expand_two_digit_year(int(p3), today=today)
            # Day-first wins; month-first only when day-first is impossible.
            candidates = [(year, int(p2), int(p1)), (year, int(p1), int(p2))]
        for year, month, day in candidates:
            parsed = _safe_date(year, month, day)
            if parsed is not None:
                return parsed
    return None


def normalize_receipt_date(raw: str | None, *, today: date | None = None) -> tuple[str, bool]:
    """Turn free-form OCR date text into ``(DD-MM-YY, needs_review)``.

    Tries month-name forms (``22-MAY-2025``, ``MAY 22, 2025``), then numeric
    forms (day-first before month-first), then ISO. When nothing parses, or the
    input is empty, today's date is returned with ``needs_review=True``.
    """

    ref = today or utc_today()
    text = (raw or "").strip()
    if text:
        parsed = _parse_named_month(text, today=ref) or _parse_numeric(text, today=ref)
        if parsed is None:
            ts = parse_timestamp(text)
            if ts is not None and 1900 < ts.year < 2100:
                parsed = ts.date()
        if parsed is not None:
            return format_receipt_date(parsed), False
    return format_receipt_date(ref), True


def receipt_from_ocr(payload: Mapping[str, Any], *, today: date | None = None) -> ReceiptInput:
    """Build a :class:`ReceiptInput` from a raw OCR payload.

    Volume and amount are cleaned to plain decimal text; the rate is kept as
    extracted. The date is normalized and ``needs_review`` is raised when the
    date could not be read (an upstream ``needsReview`` flag is preserved).
    """

    date_text, date_needs_review = normalize_receipt_date(
        payload.get("date") if isinstance(payload.get("date"), str) else None,
        today=today,
    )
    upstream_review = bool(payload.get("needs_review") or payload.get("needsReview"))
    amount = payload.get("amount", payload.get("price"))
    return ReceiptInput.model_validate(
        {
            "rate": payload.get("rate"),
            "volume": clean_numeric_text(payload.get("volume")),
            "amount": clean_numeric_text(amount),
            "date": date_text,
            "product_text": payload.get("product_text", payload.get("productText")),
            "needs_review": upstream_review or date_needs_review,
        }
    )


__all__ = [
    "parse_decimal",
    "parse_positive_decimal",
    "clean_numeric_text",
    "utc_today",
    "expand_two_digit_year",
    "parse_receipt_date",
    "format_receipt_date",
    "days_outside",
    "parse_timestamp",
    "normalize_receipt_date",
    "receipt_from_ocr",
]
