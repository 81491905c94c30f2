"""Sequential invoice numbers of the form ``EV-<VAT>-YYYY-NNNN``.

Each station VAT number has one counter per calendar year in
``fp_invoice_counters``. Issuing a number locks the counter row
(``SELECT ... FOR UPDATE``), increments it and formats the new value, so two
invoices never share a number. Like the ledger, functions take a ``Session``
and leave committing to the caller.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, datetime

from db.models.fuel import FpInvoiceCounter
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import InvoiceNumberError
from .logging_setup import get_logger

logger = get_logger("fuel_invoicing.invoice_ids")

INVOICE_PREFIX = "EV"
# Branch suffix printed after some station VAT numbers ("123456789 - 7000").
_BRANCH_SUFFIX_RE = re.compile(r"\s*-\s*7000\s*$")
_VAT_JUNK_RE = re.compile(r"[^A-Za-z0-9-]")
_INVOICE_ID_RE = re.compile(rf"^{INVOICE_PREFIX}-([A-Z0-9-]+)-(\d{{4}})-(\d{{4,}})$")


@dataclass(frozen=True, slots=True)
class InvoiceNumber:
    vat_number: str
    year: int
    sequence: int

    def __str__(self) -> str:
        return format_invoice_id(self.vat_number, self.year, self.sequence)


def clean_vat_number(raw: str) -> str:
    """Uppercase ``raw`` and keep letters, digits and hyphens only."""

    cleaned = _VAT_JUNK_RE.sub("", _BRANCH_SUFFIX_RE.sub("", raw or "").strip())
    if not cleaned.strip("-"):
        raise InvoiceNumberError(f"invalid VAT number: {raw!r}")
    return cleaned.upper()


def _check_year(year: int) -> int:
    if isinstance(year, bool) or not isinstance(year, int) or not 1000 <= year <= 9999:
        raise InvoiceNumberError(f"invalid invoice year: {year!r}")
    return year


def format_invoice_id(vat_number: str, year: int, sequence: int) -> str:
    return f"{INVOICE_PREFIX}-{vat_number}-{year:04d}-{sequence:04d}"


def parse_invoice_id(invoice_id: str) -> InvoiceNumber | None:
    """Split an invoice id into its parts; ``None`` when it is not well-formed.

    The VAT number may itself contain hyphens; the year and sequence are the
    last two groups.
    """

    m = _INVOICE_ID_RE.match(invoice_id or "")
    if m is None:
        return None
    return InvoiceNumber(vat_number=m.group(1), year=int(m.group(2)), sequence=int(m.group(3)))


def _select_counter(vat_number: str, year: int):
    return (
        select(FpInvoiceCounter)
        .where(FpInvoiceCounter.vat_number == vat_number, FpInvoiceCounter.year == year)
        .with_for_update()
    )


def current_invoice_count(session: Session, vat_number: str, year: int) -> int:
    """Number of invoices issued so far for ``vat_number`` in ``year``."""

    vat = clean_vat_number(vat_number)
    row = session.execute(
        select(FpInvoiceCounter.last_sequence).where(
            FpInvoiceCounter.vat_number == vat, FpInvoiceCounter.year == _check_year(year)
        )
    ).scalar_one_or_none()
    return row or 0


def next_invoice_id(
    session: Session, vat_number: str, year: int, *, now: datetime | None = None
) -> str:
    """Reserve and return the next invoice id for ``vat_number`` in ``year``."""

    vat = clean_vat_number(vat_number)
    _check_year(year)
    ts = now or datetime.now(UTC)

    row = session.execute(_select_counter(vat, year)).scalars().first()
    if row is None:
        try:
            session.add(FpInvoiceCounter(vat_number=vat, year=year, last_sequence=0, updated_at=ts))
            session.flush()
        except IntegrityError:
            # Another writer opened this year's counter first; continue from theirs.
            session.rollback()
        row = session.execute(_select_counter(vat, year)).scalars().one()

    row.last_sequence += 1
    row.updated_at = ts
    session.flush()

    invoice_id = format_invoice_id(vat, year, row.last_sequence)
    logger.info("issued invoice id %s", invoice_id)
    return invoice_id


__all__ = [
    "INVOICE_PREFIX",
    "InvoiceNumber",
    "clean_vat_number",
    "format_invoice_id",
    "parse_invoice_id",
    "current_invoice_count",
    "next_invoice_id",
]
