"""Keyword index: product label → tokens a receipt might use for that product.

The index is derived from the ledger's products (open and historical) with a
closed rule table of domain synonyms. It is deterministic and explainable on
purpose; there is no learned component. Extend it by passing a longer rule
table, not by adding fuzzy matching.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import NamedTuple

from .models import PriceRecord


class KeywordRule(NamedTuple):
    """When ``trigger`` is a substring of the lowercase label, add ``tokens``."""

    trigger: str
    tokens: tuple[str, ...]


DEFAULT_RULES: tuple[KeywordRule, ...] = (
    KeywordRule("petrol", ("petrol", "gasoline", "gas", "unleaded")),
    KeywordRule("diesel", ("diesel", "gasoil")),
    KeywordRule("95", ("95", "octane 95", "ron 95")),
    KeywordRule("92", ("92", "octane 92", "ron 92")),
    KeywordRule("super", ("super", "premium")),
)


def keywords_for_label(label: str, rules: Sequence[KeywordRule] = DEFAULT_RULES) -> tuple[str, ...]:
    """Return the de-duplicated token set for ``label`` (insertion ordered)."""

    base = " ".join(label.split()).lower()
    tokens: dict[str, None] = {base: None} if base else {}
    for rule in rules:
        if rule.trigger in base:
            for tok in rule.tokens:
                tokens.setdefault(tok, None)
    return tuple(tokens)


@dataclass(frozen=True, slots=True)
class KeywordIndex:
    """Immutable ``product_id → tokens`` mapping with its labels."""

    tokens_by_product: Mapping[str, tuple[str, ...]]
    labels: Mapping[str, str]

    @classmethod
    def from_records(
        cls,
        records: Iterable[PriceRecord],
        *,
        rules: Sequence[KeywordRule] = DEFAULT_RULES,
    ) -> KeywordIndex:
        """Build the index from every product appearing in ``records``.

        A product's label is taken from its most recent record by
        ``valid_from`` so a relabelled product is matched by its current name.
        """

        latest: dict[str, PriceRecord] = {}
        for rec in records:
            seen = latest.get(rec.product_id)
            if seen is None or (rec.valid_from, rec.id) > (seen.valid_from, seen.id):
                latest[rec.product_id] = rec
        labels = {pid: latest[pid].product_label for pid in sorted(latest)}
        tokens = {pid: keywords_for_label(label, rules) for pid, label in labels.items()}
        return cls(tokens_by_product=tokens, labels=labels)

    def __len__(self) -> int:
        return len(self.tokens_by_product)

    def match_ratio(self, product_id: str, text: str) -> float:
        """Share of the product's tokens found as substrings of ``text``."""

        tokens = self.tokens_by_product.get(product_id) or ()
        if not tokens:
            return 0.0
        lowered = text.lower()
        hits = sum(1 for tok in tokens if tok in lowered)
        return hits / len(tokens)

    def best_match(self, text: str) -> tuple[str, float] | None:
        """Return ``(product_id, ratio)`` with the highest non-zero ratio.

        Ties keep the first product in code order.
        """

        best: tuple[str, float] | None = None
        for pid in self.tokens_by_product:
            ratio = self.match_ratio(pid, text)
            if ratio > (best[1] if best else 0.0):
                best = (pid, ratio)
        return best


def build_keyword_index(
    records: Iterable[PriceRecord], *, rules: Sequence[KeywordRule] = DEFAULT_RULES
) -> KeywordIndex:
    return KeywordIndex.from_records(records, rules=rules)


__all__ = [
    "KeywordRule",
    "DEFAULT_RULES",
    "keywords_for_label",
    "KeywordIndex",
    "build_keyword_index",
]
