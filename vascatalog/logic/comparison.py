"""On-demand cross-supplier comparison with name-based dedup."""

from __future__ import annotations

import logging
import re
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from sqlalchemy.engine import Engine
from sqlalchemy.sql import text

from vascatalog.db.session import load_json
from vascatalog.logic.best_offers import normalize_provider

logger = logging.getLogger(__name__)

_SUFFIX_RE = re.compile(
    r"""
    (?:^|[\s\-:]+)
    (?:
        r\s?\d+(?:[.,]\d{1,2})?       # R50, R 50.00
      | \d+(?:[.,]\d{1,2})?\s?zar     # 50 ZAR
      | e-?voucher
      | voucher
      | gift\s?card
      | digital
    )
    \s*$
    """,
    re.IGNORECASE | re.VERBOSE,
)

COMPARISON_SQL = """
    SELECT pv.id, pv.product_id, s.code AS supplier_code, p.name AS product_name,
           pv.supplier_product_id, pv.vas_type, pv.provider, pv.commission,
           pv.min_amount, pv.max_amount, pv.denominations, pv.is_promotional,
           pv.promotional_discount
    FROM product_variants pv
    JOIN products p ON p.id = pv.product_id
    JOIN suppliers s ON s.id = pv.supplier_id
    WHERE pv.vas_type = :vas_type AND pv.status = 'active'
      AND p.status = 'active' AND s.is_active = :active
    ORDER BY pv.id
"""


def normalize_product_name(name: str) -> str:
    """Strip trailing denomination and voucher wording so "Acme R50" and "Acme Gift Card" match."""
    current = re.sub(r"\s+", " ", (name or "").strip().lower())
    while True:
        stripped = _SUFFIX_RE.sub("", current).strip()
        if stripped == current or not stripped:
            return stripped or current
        current = stripped


def is_likely_voucher(vas_type: str, name: str) -> bool:
    lower = (name or "").lower()
    return vas_type == "voucher" or "voucher" in lower or "gift card" in lower


@dataclass(slots=True)
class Deal:
    variant_id: int
    product_id: int
    supplier_code: str
    product_name: str
    supplier_product_id: str
    vas_type: str
    provider: str
    commission: float
    min_amount: int | None = None
    max_amount: int | None = None
    denominations: list[int] = field(default_factory=list)
    is_promotional: bool = False
    promotional_discount: float | None = None

    @property
    def min_price(self) -> int:
        if self.denominations:
            return min(self.denominations)
        return self.min_amount if self.min_amount is not None else 0

    def accepts(self, amount: int) -> bool:
        if amount in self.denominations:
            return True
        return (
            self.min_amount is not None
            and self.max_amount is not None
            and self.min_amount <= amount <= self.max_amount
        )

    @property
    def group_key(self) -> tuple[str, str, str]:
        if is_likely_voucher(self.vas_type, self.product_name):
            return (self.vas_type, "name", normalize_product_name(self.product_name))
        return (self.vas_type, "id", self.supplier_product_id)


@dataclass(slots=True)
class Recommendation:
    type: str
    title: str
    description: str
    reason: str
    supplier_code: str
    variant_id: int | None = None


@dataclass(slots=True)
class Comparison:
    vas_type: str
    amount: int | None
    best_deals: list[Deal]
    promotional_offers: list[Deal]
    recommendations: list[Recommendation]
    supplier_counts: dict[str, int]


def rank_offers(deals: Iterable[Deal], supplier_priority: Mapping[str, int]) -> list[Deal]:
    """Commission descending, then cheapest entry price, then supplier priority, then variant id."""
    unknown = max(supplier_priority.values(), default=0) + 1
    return sorted(
        deals,
        key=lambda d: (-d.commission, d.min_price, supplier_priority.get(d.supplier_code, unknown), d.variant_id),
    )


def group_offers(deals: Iterable[Deal]) -> dict[tuple[str, str, str], list[Deal]]:
    groups: dict[tuple[str, str, str], list[Deal]] = defaultdict(list)
    for deal in deals:
        groups[deal.group_key].append(deal)
    return dict(groups)


def build_recommendations(
    best_deals: list[Deal], promotional_offers: list[Deal], supplier_counts: Mapping[str, int]
) -> list[Recommendation]:
    recommendations: list[Recommendation] = []
    if best_deals:
        best = best_deals[0]
        recommendations.append(
            Recommendation(
                type="best_value",
                title="Best Value Deal",
                description=f"{best.product_name} from {best.supplier_code}",
                reason=f"Highest commission ({best.commission:g}%)",
                supplier_code=best.supplier_code,
                variant_id=best.variant_id,
            )
        )
    if promotional_offers:
        promo = promotional_offers[0]
        recommendations.append(
            Recommendation(
                type="promotional",
                title="Limited Time Offer",
                description=f"{promo.product_name} from {promo.supplier_code}",
                reason=f"{promo.promotional_discount or 0:g}% discount available",
                supplier_code=promo.supplier_code,
                variant_id=promo.variant_id,
            )
        )
    counts = sorted(supplier_counts.items(), key=lambda item: item[1], reverse=True)
    if len(counts) > 1 and counts[0][1] > counts[1][1]:
        leader, top = counts[0]
        others = ", ".join(f"{count} from {code}" for code, count in counts[1:])
        recommendations.append(
            Recommendation(
                type="availability",
                title="Wide Selection",
                description=f"{leader} offers more options",
                reason=f"{top} products vs {others}",
                supplier_code=leader,
            )
        )
    return recommendations


def _deal_from_row(row: Mapping[str, Any]) -> Deal:
    return Deal(
        variant_id=row["id"],
        product_id=row["product_id"],
        supplier_code=row["supplier_code"],
        product_name=row["product_name"],
        supplier_product_id=row["supplier_product_id"],
        vas_type=row["vas_type"],
        provider=row["provider"],
        commission=float(row["commission"] or 0),
        min_amount=row["min_amount"],
        max_amount=row["max_amount"],
        denominations=load_json(row["denominations"], []) or [],
        is_promotional=bool(row["is_promotional"]),
        promotional_discount=float(row["promotional_discount"]) if row["promotional_discount"] is not None else None,
    )


class ComparisonService:
    def __init__(self, engine: Engine, supplier_priority: Mapping[str, int]) -> None:
        self.engine = engine
        self.supplier_priority = dict(supplier_priority)

    def load_deals(self, vas_type: str, amount: int | None = None, provider: str | None = None) -> list[Deal]:
        with self.engine.connect() as conn:
            rows = conn.execute(text(COMPARISON_SQL), {"vas_type": vas_type, "active": True}).mappings().all()
        deals = [_deal_from_row(row) for row in rows]
        if provider:
            wanted = normalize_provider(provider).lower()
            deals = [d for d in deals if normalize_provider(d.provider).lower() == wanted]
        if amount is not None:
            deals = [d for d in deals if d.accepts(amount)]
        return deals

    def compare(self, vas_type: str, amount: int | None = None, provider: str | None = None) -> Comparison:
        deals = self.load_deals(vas_type, amount, provider)
        winners = [rank_offers(group, self.supplier_priority)[0] for group in group_offers(deals).values()]
        best_deals = rank_offers(winners, self.supplier_priority)
        promotional = sorted(
            (d for d in deals if d.is_promotional),
            key=lambda d: (-(d.promotional_discount or 0), d.variant_id),
        )
        supplier_counts = dict(Counter(d.supplier_code for d in deals))
        logger.info(
            "Compared %s %s deals across %s suppliers: %s logical products",
            len(deals),
            vas_type,
            len(supplier_counts),
            len(best_deals),
        )
        return Comparison(
            vas_type=vas_type,
            amount=amount,
            best_deals=best_deals,
            promotional_offers=promotional,
            recommendations=build_recommendations(best_deals, promotional, supplier_counts),
            supplier_counts=supplier_counts,
        )
