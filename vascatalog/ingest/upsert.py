"""Normalized persistence of supplier products."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.sql import text

from vascatalog.db.session import dump_json, json_param, load_json
from vascatalog.ingest.models import PRODUCT_TYPES, RawProductRecord, Supplier
from vascatalog.utils.dates import utc_now

logger = logging.getLogger(__name__)

UTILITY_TYPES = {"airtime", "data", "electricity", "bill_payment"}


class MalformedRecordError(ValueError):
    """An upstream record that cannot be mapped onto the catalog invariants."""


@dataclass(slots=True)
class Pricing:
    min_amount: int
    max_amount: int
    denominations: list[int]


@dataclass(slots=True)
class UpsertOutcome:
    brand_id: int
    product_id: int
    variant_id: int
    product_type: str
    created: bool
    decommissioned: bool


def normalize_brand_name(name: str) -> str:
    return re.sub(r"\s+", " ", name.strip().lower())


def brand_category(product_type: str) -> str:
    if product_type == "voucher":
        return "entertainment"
    if product_type in UTILITY_TYPES:
        return "utilities"
    return "other"


def is_open_span(min_amount: int | None, max_amount: int | None, denominations: list[int] | None) -> bool:
    if len(set(denominations or [])) >= 2:
        return False
    return min_amount is not None and max_amount is not None and min_amount < max_amount


def normalize_pricing(record: RawProductRecord) -> Pricing:
    """Fill in missing bounds and reject records that break ``min <= max``."""
    denominations = sorted({d for d in record.denominations if d and d > 0})
    min_amount = record.min_amount if record.min_amount and record.min_amount > 0 else None
    max_amount = record.max_amount if record.max_amount and record.max_amount > 0 else None
    if min_amount is None:
        min_amount = denominations[0] if denominations else max_amount
    if max_amount is None:
        max_amount = denominations[-1] if denominations else min_amount
    if min_amount is None or max_amount is None:
        raise MalformedRecordError(f"{record.supplier_product_id}: no usable amount")
    if min_amount > max_amount:
        raise MalformedRecordError(
            f"{record.supplier_product_id}: min_amount {min_amount} exceeds max_amount {max_amount}"
        )
    return Pricing(min_amount=min_amount, max_amount=max_amount, denominations=denominations)


def _validate(record: RawProductRecord) -> None:
    if not record.supplier_product_id:
        raise MalformedRecordError("record has no supplier product id")
    if not record.name or not record.brand:
        raise MalformedRecordError(f"{record.supplier_product_id}: missing name or brand")
    if record.product_type not in PRODUCT_TYPES:
        raise MalformedRecordError(f"{record.supplier_product_id}: unknown product type {record.product_type!r}")


class ProductUpsertEngine:
    """Writes one upstream record as brand, product and variant rows.

    Every ``sync_one`` call is its own transaction, so a failure rolls back
    only that product. Pricing is overwritten on every sync; ``price_type``
    and ``price_type_override`` belong to the classifier and the operator.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def sync_one(
        self, record: RawProductRecord, supplier: Supplier, *, synced_at: datetime | None = None
    ) -> UpsertOutcome:
        _validate(record)
        pricing = normalize_pricing(record)
        now = synced_at or utc_now()
        with self.engine.begin() as conn:
            brand_id = self._ensure_brand(conn, record, now)
            product_id, created, decommissioned = self._ensure_product(conn, brand_id, record, supplier, now)
            variant_id = self._ensure_variant(conn, product_id, record, supplier, pricing, now)
        if decommissioned:
            logger.info("%s product %s discontinued upstream", supplier.code, record.supplier_product_id)
        return UpsertOutcome(
            brand_id=brand_id,
            product_id=product_id,
            variant_id=variant_id,
            product_type=record.product_type,
            created=created,
            decommissioned=decommissioned,
        )

    def refresh_pricing(self, record: RawProductRecord, supplier: Supplier, *, synced_at: datetime | None = None) -> bool:
        """Pricing-only update of a known variant. Unknown variants are left for the daily sweep.

        Amounts that would move a variant between a price point and an open
        span are not written here: that flips its classification, which only
        the daily sweep reruns. Commission and promotion still refresh.
        """
        pricing = normalize_pricing(record)
        now = synced_at or utc_now()
        params = {
            "min_amount": pricing.min_amount,
            "max_amount": pricing.max_amount,
            "denominations": dump_json(pricing.denominations),
            "commission": record.commission,
            "is_promotional": record.is_promotional,
            "promotional_discount": record.promotional_discount,
            "now": now,
            "supplier_id": supplier.id,
            "supplier_product_id": record.supplier_product_id,
        }
        with self.engine.begin() as conn:
            stored = conn.execute(
                text(
                    """
                    SELECT min_amount, max_amount, denominations FROM product_variants
                    WHERE supplier_id = :supplier_id AND supplier_product_id = :supplier_product_id
                    """
                ),
                params,
            ).mappings().first()
            if stored is None:
                return False
            amounts = f"""
                      min_amount = :min_amount,
                      max_amount = :max_amount,
                      denominations = {json_param(conn, "denominations")},"""
            if is_open_span(stored["min_amount"], stored["max_amount"], load_json(stored["denominations"], [])) != (
                is_open_span(pricing.min_amount, pricing.max_amount, pricing.denominations)
            ):
                logger.info(
                    "%s %s: price shape changed; amounts wait for the daily sweep",
                    supplier.code,
                    record.supplier_product_id,
                )
                amounts = ""
            conn.execute(
                text(
                    f"""
                    UPDATE product_variants SET{amounts}
                      commission = :commission,
                      is_promotional = :is_promotional,
                      promotional_discount = :promotional_discount,
                      last_synced_at = :now,
                      updated_at = :now
                    WHERE supplier_id = :supplier_id AND supplier_product_id = :supplier_product_id
                    """
                ),
                params,
            )
        return True

    def _ensure_brand(self, conn: Connection, record: RawProductRecord, now: datetime) -> int:
        normalized = normalize_brand_name(record.brand)
        existing = conn.execute(
            text("SELECT id FROM product_brands WHERE normalized_name = :normalized_name"),
            {"normalized_name": normalized},
        ).scalar_one_or_none()
        if existing:
            return existing
        result = conn.execute(
            text(
                """
                INSERT INTO product_brands (name, normalized_name, category, is_active, created_at, updated_at)
                VALUES (:name, :normalized_name, :category, :is_active, :now, :now)
                RETURNING id
                """
            ),
            {
                "name": record.brand.strip(),
                "normalized_name": normalized,
                "category": brand_category(record.product_type),
                "is_active": True,
                "now": now,
            },
        )
        return int(result.scalar_one())

    def _ensure_product(
        self, conn: Connection, brand_id: int, record: RawProductRecord, supplier: Supplier, now: datetime
    ) -> tuple[int, bool, bool]:
        status = _product_status(record)
        existing = conn.execute(
            text(
                """
                SELECT id, status FROM products
                WHERE supplier_id = :supplier_id AND supplier_product_id = :supplier_product_id
                """
            ),
            {"supplier_id": supplier.id, "supplier_product_id": record.supplier_product_id},
        ).one_or_none()
        if existing:
            product_id, previous_status = existing
            conn.execute(
                text(
                    """
                    UPDATE products SET brand_id = :brand_id, name = :name, type = :type,
                      status = :status, updated_at = :now
                    WHERE id = :id
                    """
                ),
                {
                    "brand_id": brand_id,
                    "name": record.name,
                    "type": record.product_type,
                    "status": status,
                    "now": now,
                    "id": product_id,
                },
            )
            decommissioned = status == "discontinued" and previous_status != "discontinued"
            return int(product_id), False, decommissioned
        result = conn.execute(
            text(
                """
                INSERT INTO products (supplier_id, brand_id, supplier_product_id, name, type, status, created_at, updated_at)
                VALUES (:supplier_id, :brand_id, :supplier_product_id, :name, :type, :status, :now, :now)
                RETURNING id
                """
            ),
            {
                "supplier_id": supplier.id,
                "brand_id": brand_id,
                "supplier_product_id": record.supplier_product_id,
                "name": record.name,
                "type": record.product_type,
                "status": status,
                "now": now,
            },
        )
        return int(result.scalar_one()), True, False

    def _ensure_variant(
        self,
        conn: Connection,
        product_id: int,
        record: RawProductRecord,
        supplier: Supplier,
        pricing: Pricing,
        now: datetime,
    ) -> int:
        params = {
            "product_id": product_id,
            "supplier_id": supplier.id,
            "supplier_product_id": record.supplier_product_id,
            "vas_type": record.product_type,
            "provider": record.provider,
            "min_amount": pricing.min_amount,
            "max_amount": pricing.max_amount,
            "denominations": dump_json(pricing.denominations),
            "commission": record.commission,
            "is_promotional": record.is_promotional,
            "promotional_discount": record.promotional_discount,
            "constraints": dump_json(record.constraints),
            "metadata": dump_json(record.metadata),
            "status": "active" if _product_status(record) == "active" else "inactive",
            "now": now,
        }
        existing = conn.execute(
            text(
                """
                SELECT id FROM product_variants
                WHERE product_id = :product_id AND supplier_id = :supplier_id
                  AND supplier_product_id = :supplier_product_id
                """
            ),
            params,
        ).scalar_one_or_none()
        denominations = json_param(conn, "denominations")
        constraints = json_param(conn, "constraints")
        metadata = json_param(conn, "metadata")
        if existing:
            conn.execute(
                text(
                    f"""
                    UPDATE product_variants SET
                      vas_type = :vas_type, provider = :provider,
                      min_amount = :min_amount, max_amount = :max_amount,
                      denominations = {denominations}, commission = :commission,
                      is_promotional = :is_promotional, promotional_discount = :promotional_discount,
                      constraints = {constraints}, metadata = {metadata},
                      status = :status, suppressed = :suppressed,
                      last_synced_at = :now, updated_at = :now
                    WHERE id = :id
                    """
                ),
                {**params, "suppressed": False, "id": existing},
            )
            return existing
        result = conn.execute(
            text(
                f"""
                INSERT INTO product_variants (
                  product_id, supplier_id, supplier_product_id, vas_type, provider,
                  min_amount, max_amount, denominations, commission, is_promotional,
                  promotional_discount, constraints, metadata, status, suppressed,
                  last_synced_at, created_at, updated_at
                )
                VALUES (
                  :product_id, :supplier_id, :supplier_product_id, :vas_type, :provider,
                  :min_amount, :max_amount, {denominations}, :commission, :is_promotional,
                  :promotional_discount, {constraints}, {metadata}, :status, :suppressed,
                  :now, :now, :now
                )
                RETURNING id
                """
            ),
            {**params, "suppressed": False},
        )
        return int(result.scalar_one())


def _product_status(record: RawProductRecord) -> str:
    if record.discontinued:
        return "discontinued"
    return "active" if record.is_active else "inactive"
