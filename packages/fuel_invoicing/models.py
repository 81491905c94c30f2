"""Data models for the fuel price ledger and the receipt resolver.

Ledger-side types (:class:`PriceRecord`, :class:`EditLogEntry`) are frozen
snapshots read from the database; the resolver never sees ORM rows. Receipt
input from OCR is a validated pydantic DTO that tolerates any string content:
numbers and dates are only interpreted later by the resolver.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Confidence(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    FLAGGED = "flagged"


class ResolutionMethod(StrEnum):
    INTERVAL_MATCH = "interval-match"
    TEXT_MATCH = "text-match"
    MANUAL_REVIEW = "manual-review"


class EditAction(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    CLOSED = "closed"


# Confidence tiers that may be accepted without a human picking the product.
ACCEPTED_CONFIDENCE: frozenset[Confidence] = frozenset({Confidence.HIGH, Confidence.MEDIUM})


# ---------------------------------------------------------------------------
# Ledger snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FieldChange:
    """One field-level difference recorded by an ``updated`` edit.

    Values are stored in their string form (ISO dates, plain decimals) so the
    log stays JSON-friendly.
    """

    field: str
    old_value: str | None
    new_value: str | None


@dataclass(frozen=True, slots=True)
class EditLogEntry:
    timestamp: datetime
    actor_id: str
    action: EditAction
    actor_email: str | None = None
    changes: tuple[FieldChange, ...] = ()
    reason: str | None = None
    related_record_id: int | None = None


@dataclass(frozen=True, slots=True)
class Product:
    code: str
    label: str


@dataclass(frozen=True, slots=True)
class PriceRecord:
    """A price validity interval for one fuel product.

    ``valid_from`` and ``valid_to`` are timezone-aware UTC timestamps, both
    inclusive. ``valid_to is None`` means the interval is open and counts as
    valid through "now".
    """

    id: int
    product_id: str
    product_label: str
    price: Decimal
    valid_from: datetime
    valid_to: datetime | None = None
    is_open: bool = True
    history: tuple[EditLogEntry, ...] = ()

    @property
    def starts_on(self) -> date:
        return self.valid_from.date()

    @property
    def ends_on(self) -> date | None:
        return self.valid_to.date() if self.valid_to is not None else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_label": self.product_label,
            "price": f"{self.price:.2f}",
            "valid_from": self.valid_from.isoformat(),
            "valid_to": self.valid_to.isoformat() if self.valid_to is not None else None,
            "is_open": self.is_open,
        }


# ---------------------------------------------------------------------------
# Receipts
# ---------------------------------------------------------------------------


class ReceiptInput(BaseModel):
    """Noisy extraction from one photographed receipt.

    Accepts the OCR payload spelling (``price`` for the amount, camelCase
    ``productText`` / ``needsReview``) as well as the snake_case field names.
    Numeric scalars are coerced to strings; nothing is parsed here.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    rate: str = ""
    volume: str = ""
    amount: str = Field(default="", validation_alias=AliasChoices("amount", "price"))
    date: str = ""
    product_text: str | None = Field(
        default=None, validation_alias=AliasChoices("product_text", "productText")
    )
    needs_review: bool = Field(
        default=False, validation_alias=AliasChoices("needs_review", "needsReview")
    )

    @field_validator("rate", "volume", "amount", "date", mode="before")
    @classmethod
    def _coerce_text(cls, v: Any) -> Any:
        if v is None:
            return ""
        if isinstance(v, (int, float, Decimal)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("product_text", mode="before")
    @classmethod
    def _blank_product_text(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v


@dataclass(frozen=True, slots=True)
class MatchDetails:
    matched_price_entry: PriceRecord | None = None
    price_match_accuracy: float | None = None
    date_match_accuracy: float | None = None
    text_match_confidence: float | None = None

    def to_dict(self) -> dict[str, Any]:
        entry = self.matched_price_entry
        return {
            "matched_price_entry": entry.to_dict() if entry is not None else None,
            "price_match_accuracy": self.price_match_accuracy,
            "date_match_accuracy": self.date_match_accuracy,
            "text_match_confidence": self.text_match_confidence,
        }


@dataclass(frozen=True, slots=True)
class ResolvedReceipt:
    """A receipt plus the resolver's (or a human's) product decision.

    ``high``/``medium`` always carry a product and the matched price entry;
    ``flagged`` never carries a product. A human override is recorded as
    ``manual-review`` at ``medium`` confidence.
    """

    receipt: ReceiptInput
    confidence: Confidence
    method: ResolutionMethod
    product_id: str | None = None
    product_label: str | None = None
    match_details: MatchDetails | None = None

    def __post_init__(self) -> None:
        if self.confidence in ACCEPTED_CONFIDENCE:
            entry = self.match_details.matched_price_entry if self.match_details else None
            if self.product_id is None or entry is None:
                raise ValueError(
                    f"{self.confidence} confidence requires a product and a matched price entry"
                )
        if self.confidence == Confidence.FLAGGED and self.product_id is not None:
            raise ValueError("flagged receipts cannot carry a product")

    @property
    def needs_attention(self) -> bool:
        return self.confidence not in ACCEPTED_CONFIDENCE

    @property
    def display_name(self) -> str | None:
        entry = self.match_details.matched_price_entry if self.match_details else None
        if entry is None:
            return None
        return f"{entry.product_label} (Rs. {entry.price:.2f}/L)"

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.receipt.model_dump(),
            "product_id": self.product_id,
            "product_label": self.product_label,
            "confidence": str(self.confidence),
            "method": str(self.method),
            "match_details": self.match_details.to_dict() if self.match_details else None,
        }


__all__ = [
    "Confidence",
    "ResolutionMethod",
    "EditAction",
    "ACCEPTED_CONFIDENCE",
    "FieldChange",
    "EditLogEntry",
    "Product",
    "PriceRecord",
    "ReceiptInput",
    "MatchDetails",
    "ResolvedReceipt",
]
