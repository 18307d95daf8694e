"""Variable-first filter.

Every variant in a ``(brand, product type)`` group is classified as an open
amount (``variable``) or a fixed denomination (``fixed``) by an ordered list
of named rules, first match wins. When a group holds at least one variable
variant, its fixed variants are suppressed: set ``inactive`` and flagged
``suppressed`` so a later run can restore them. Utility types and
subscription brands are never suppressed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.sql import text

from vascatalog.db.session import load_json
from vascatalog.ingest.fields import RANGE_MARKERS
from vascatalog.utils.dates import utc_now

logger = logging.getLogger(__name__)

VARIABLE = "variable"
FIXED = "fixed"

EXEMPT_PRODUCT_TYPES = {"electricity", "bill_payment"}
SUBSCRIPTION_BRAND_KEYWORDS = (
    "netflix",
    "dstv",
    "showmax",
    "apple tv",
    "disney",
    "xbox game pass",
    "playstation now",
    "ps now",
    "crunchyroll",
    "intercape",
)
VARIABLE_NAME_KEYWORDS = (
    "variable",
    "open value",
    "open amount",
    "custom",
    "any amount",
    "any value",
    "flexi",
    "flexible",
    "voucher +",
)


@dataclass(slots=True)
class VariantShape:
    id: int
    product_id: int
    name: str
    price_type: str = FIXED
    price_type_override: str | None = None
    min_amount: int | None = None
    max_amount: int | None = None
    denominations: list[int] = field(default_factory=list)
    constraints: dict[str, Any] = field(default_factory=dict)
    status: str = "active"
    suppressed: bool = False


@dataclass(frozen=True, slots=True)
class Rule:
    name: str
    predicate: Callable[[VariantShape], bool]
    verdict: str


def _is_range_marked(shape: VariantShape) -> bool:
    constraints = shape.constraints or {}
    marker = str(constraints.get("type") or "").lower()
    return marker in RANGE_MARKERS or constraints.get("variable") is True or constraints.get("isVariable") is True


def _has_variable_keyword(shape: VariantShape) -> bool:
    name = (shape.name or "").lower()
    return any(keyword in name for keyword in VARIABLE_NAME_KEYWORDS)


RULES: tuple[Rule, ...] = (
    Rule("override_variable", lambda v: v.price_type_override == VARIABLE, VARIABLE),
    Rule("override_fixed", lambda v: v.price_type_override == FIXED, FIXED),
    Rule("already_variable", lambda v: v.price_type == VARIABLE, VARIABLE),
    Rule("denomination_picker", lambda v: len(set(v.denominations or [])) >= 2, FIXED),
    Rule(
        "single_price_point",
        lambda v: v.min_amount is not None and v.min_amount == v.max_amount,
        FIXED,
    ),
    Rule("range_metadata", _is_range_marked, VARIABLE),
    Rule("variable_keyword", _has_variable_keyword, VARIABLE),
    Rule(
        "genuine_span",
        lambda v: v.min_amount is not None and v.max_amount is not None and v.min_amount < v.max_amount,
        VARIABLE,
    ),
)


def classify_with_rule(shape: VariantShape, rules: Iterable[Rule] = RULES) -> tuple[str, str]:
    """Return ``(verdict, rule name)``. Never raises; unknown shapes are fixed."""
    for rule in rules:
        try:
            matched = rule.predicate(shape)
        except Exception:
            logger.warning("Rule %s failed on variant %s; treating as fixed", rule.name, shape.id, exc_info=True)
            return FIXED, "error"
        if matched:
            return rule.verdict, rule.name
    return FIXED, "default"


def classify_variant(shape: VariantShape) -> str:
    return classify_with_rule(shape)[0]


def is_exempt_group(product_type: str, brand_name: str | None, brand_category: str | None = None) -> bool:
    if product_type in EXEMPT_PRODUCT_TYPES:
        return True
    if (brand_category or "").lower() == "subscription":
        return True
    lower = (brand_name or "").lower()
    return any(keyword in lower for keyword in SUBSCRIPTION_BRAND_KEYWORDS)


@dataclass(slots=True)
class VariantChange:
    variant_id: int
    price_type: str
    status: str
    suppressed: bool


@dataclass(slots=True)
class GroupPlan:
    exempt: bool
    verdicts: dict[int, tuple[str, str]]
    changes: list[VariantChange]

    @property
    def has_variable(self) -> bool:
        return any(verdict == VARIABLE for verdict, _ in self.verdicts.values())


def plan_group(
    product_type: str,
    brand_name: str | None,
    variants: list[VariantShape],
    *,
    brand_category: str | None = None,
) -> GroupPlan:
    """Decide verdicts and visibility for one group without touching the database."""
    verdicts = {v.id: classify_with_rule(v) for v in variants}
    exempt = is_exempt_group(product_type, brand_name, brand_category)
    suppress = not exempt and any(verdict == VARIABLE for verdict, _ in verdicts.values())
    changes: list[VariantChange] = []
    for variant in variants:
        verdict = verdicts[variant.id][0]
        if suppress and verdict == FIXED:
            status, suppressed = "inactive", True
        elif variant.suppressed:
            status, suppressed = "active", False
        else:
            status, suppressed = variant.status, False
        if (verdict, status, suppressed) != (variant.price_type, variant.status, variant.suppressed):
            changes.append(VariantChange(variant.id, verdict, status, suppressed))
    return GroupPlan(exempt=exempt, verdicts=verdicts, changes=changes)


@dataclass(slots=True)
class ClassifierStats:
    groups: int = 0
    exempt_groups: int = 0
    variable_variants: int = 0
    fixed_variants: int = 0
    suppressed_variants: int = 0
    restored_variants: int = 0
    deactivated_products: int = 0
    reactivated_products: int = 0


class PriceClassifier:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def apply(self, groups: Iterable[tuple[int, str]]) -> ClassifierStats:
        stats = ClassifierStats()
        touched = sorted(set(groups))
        for brand_id, product_type in touched:
            with self.engine.begin() as conn:
                self._apply_group(conn, brand_id, product_type, stats)
        with self.engine.begin() as conn:
            for brand_id, product_type in touched:
                self._sync_product_status(conn, brand_id, product_type, stats)
        logger.info(
            "Classified %s groups: %s variable, %s fixed, %s suppressed, %s restored",
            stats.groups,
            stats.variable_variants,
            stats.fixed_variants,
            stats.suppressed_variants,
            stats.restored_variants,
        )
        return stats

    def _apply_group(self, conn: Connection, brand_id: int, product_type: str, stats: ClassifierStats) -> None:
        brand = conn.execute(
            text("SELECT name, category FROM product_brands WHERE id = :id"), {"id": brand_id}
        ).one_or_none()
        variants = self._load_group(conn, brand_id, product_type)
        if not variants:
            return
        plan = plan_group(
            product_type,
            brand.name if brand else None,
            variants,
            brand_category=brand.category if brand else None,
        )
        stats.groups += 1
        stats.exempt_groups += int(plan.exempt)
        for verdict, _ in plan.verdicts.values():
            if verdict == VARIABLE:
                stats.variable_variants += 1
            else:
                stats.fixed_variants += 1
        previous = {v.id: v for v in variants}
        now = utc_now()
        for change in plan.changes:
            was = previous[change.variant_id]
            if change.suppressed and not was.suppressed:
                stats.suppressed_variants += 1
            elif was.suppressed and not change.suppressed:
                stats.restored_variants += 1
            conn.execute(
                text(
                    """
                    UPDATE product_variants
                    SET price_type = :price_type, status = :status, suppressed = :suppressed, updated_at = :now
                    WHERE id = :id
                    """
                ),
                {
                    "price_type": change.price_type,
                    "status": change.status,
                    "suppressed": change.suppressed,
                    "now": now,
                    "id": change.variant_id,
                },
            )

    def _load_group(self, conn: Connection, brand_id: int, product_type: str) -> list[VariantShape]:
        rows = conn.execute(
            text(
                """
                SELECT pv.id, pv.product_id, p.name, pv.price_type, pv.price_type_override,
                       pv.min_amount, pv.max_amount, pv.denominations, pv.constraints,
                       pv.status, pv.suppressed
                FROM product_variants pv
                JOIN products p ON p.id = pv.product_id
                WHERE p.brand_id = :brand_id AND p.type = :product_type
                  AND p.status != 'discontinued'
                  AND (pv.status = 'active' OR pv.suppressed = :suppressed)
                ORDER BY pv.id
                """
            ),
            {"brand_id": brand_id, "product_type": product_type, "suppressed": True},
        ).mappings()
        return [
            VariantShape(
                id=row["id"],
                product_id=row["product_id"],
                name=row["name"],
                price_type=row["price_type"] or FIXED,
                price_type_override=row["price_type_override"],
                min_amount=row["min_amount"],
                max_amount=row["max_amount"],
                denominations=load_json(row["denominations"], []) or [],
                constraints=load_json(row["constraints"], {}) or {},
                status=row["status"],
                suppressed=bool(row["suppressed"]),
            )
            for row in rows
        ]

    def _sync_product_status(self, conn: Connection, brand_id: int, product_type: str, stats: ClassifierStats) -> None:
        params = {"brand_id": brand_id, "product_type": product_type, "now": utc_now()}
        deactivated = conn.execute(
            text(
                """
                UPDATE products SET status = 'inactive', updated_at = :now
                WHERE brand_id = :brand_id AND type = :product_type AND status = 'active'
                  AND NOT EXISTS (
                    SELECT 1 FROM product_variants pv
                    WHERE pv.product_id = products.id AND pv.status = 'active'
                  )
                """
            ),
            params,
        )
        reactivated = conn.execute(
            text(
                """
                UPDATE products SET status = 'active', updated_at = :now
                WHERE brand_id = :brand_id AND type = :product_type AND status = 'inactive'
                  AND EXISTS (
                    SELECT 1 FROM product_variants pv
                    WHERE pv.product_id = products.id AND pv.status = 'active'
                  )
                """
            ),
            params,
        )
        stats.deactivated_products += deactivated.rowcount
        stats.reactivated_products += reactivated.rowcount
