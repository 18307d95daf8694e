"""Materialized best offer per (vas type, provider, denomination)."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.sql import text

from vascatalog.db.session import dump_json, json_param, load_json
from vascatalog.ingest.fields import provider_key
from vascatalog.utils.dates import epoch_millis, utc_now

logger = logging.getLogger(__name__)

NORMALIZE_PROVIDER = {
    "cellc": "CellC",
    "vodacom": "Vodacom",
    "mtn": "MTN",
    "telkom": "Telkom",
    "eeziairtime": "eeziAirtime",
    "global": "Global",
    "globalairtime": "Global",
    "globaldata": "Global",
    "dstv": "DStv",
}

ACTIVE_VARIANTS_SQL = """
    SELECT pv.id AS product_variant_id, pv.product_id, pv.supplier_id, s.code AS supplier_code,
           p.name AS product_name, pv.supplier_product_id, pv.vas_type, pv.provider,
           pv.commission, pv.denominations, pv.min_amount, pv.max_amount
    FROM product_variants pv
    JOIN products p ON p.id = pv.product_id
    JOIN suppliers s ON s.id = pv.supplier_id
    WHERE pv.status = 'active' AND p.status = 'active' AND s.is_active = :active
      AND COALESCE(pv.price_type_override, pv.price_type) != 'variable'
    ORDER BY COALESCE(pv.commission, 0) DESC, pv.id
"""


def normalize_provider(provider: str | None) -> str:
    """Canonical provider name; spellings that differ only in case share one key."""
    if not provider or not provider.strip():
        return "Unknown"
    known = NORMALIZE_PROVIDER.get(provider_key(provider))
    if known:
        return known
    return " ".join(provider.split()).title()


@dataclass(slots=True)
class BestOffer:
    vas_type: str
    provider: str
    denomination_cents: int
    product_variant_id: int
    product_id: int
    supplier_id: int
    supplier_code: str
    product_name: str
    supplier_product_id: str
    commission: float
    denominations: list[int]
    min_amount: int | None
    max_amount: int | None
    catalog_version: int | None = None


@dataclass(slots=True)
class RefreshResult:
    rows_affected: int
    catalog_version: int


def denomination_set(row: Mapping[str, Any]) -> list[int]:
    denominations = [d for d in load_json(row["denominations"], []) or [] if isinstance(d, int) and d > 0]
    if denominations:
        return sorted(set(denominations))
    min_amount, max_amount = row["min_amount"], row["max_amount"]
    if min_amount is not None and min_amount == max_amount:
        return [min_amount]
    return []


def select_best_offers(rows: Iterable[Mapping[str, Any]]) -> list[BestOffer]:
    """Keep the first variant seen per key; rows arrive sorted by commission descending."""
    best: dict[tuple[str, str, int], BestOffer] = {}
    for row in rows:
        provider = normalize_provider(row["provider"])
        denominations = denomination_set(row)
        for denomination in denominations:
            key = (row["vas_type"], provider, denomination)
            if key in best:
                continue
            best[key] = BestOffer(
                vas_type=row["vas_type"],
                provider=provider,
                denomination_cents=denomination,
                product_variant_id=row["product_variant_id"],
                product_id=row["product_id"],
                supplier_id=row["supplier_id"],
                supplier_code=row["supplier_code"],
                product_name=row["product_name"],
                supplier_product_id=row["supplier_product_id"],
                commission=float(row["commission"] or 0),
                denominations=denominations,
                min_amount=row["min_amount"],
                max_amount=row["max_amount"],
            )
    return list(best.values())


class BestOfferMaterializer:
    """Rebuilds ``vas_best_offers`` in a single transaction.

    The delete, the insert of every winner and the audit row commit together,
    so readers see either the previous table or the new one.
    """

    def __init__(self, engine: Engine, *, refreshed_by: str | None = None) -> None:
        self.engine = engine
        self.refreshed_by = refreshed_by or os.environ.get("REFRESH_JOB_NAME", "catalog-sync")

    def rebuild(self) -> RefreshResult:
        with self.engine.begin() as conn:
            rows = conn.execute(text(ACTIVE_VARIANTS_SQL), {"active": True}).mappings().all()
            offers = select_best_offers(rows)
            version = self._next_version(conn)
            conn.execute(text("DELETE FROM vas_best_offers"))
            self._insert_offers(conn, offers, version)
            self._write_audit(conn, len(offers), version)
        logger.info("Best offers rebuilt: %s rows, version %s", len(offers), version)
        return RefreshResult(rows_affected=len(offers), catalog_version=version)

    def _next_version(self, conn: Connection) -> int:
        last = conn.execute(text("SELECT MAX(catalog_version) FROM catalog_refresh_audit")).scalar()
        return max(epoch_millis(), int(last or 0) + 1)

    def _insert_offers(self, conn: Connection, offers: list[BestOffer], version: int) -> None:
        if not offers:
            return
        now = utc_now()
        conn.execute(
            text(
                f"""
                INSERT INTO vas_best_offers (
                  vas_type, provider, denomination_cents, product_variant_id, product_id,
                  supplier_id, supplier_code, product_name, supplier_product_id, commission,
                  denominations, min_amount, max_amount, catalog_version, created_at
                )
                VALUES (
                  :vas_type, :provider, :denomination_cents, :product_variant_id, :product_id,
                  :supplier_id, :supplier_code, :product_name, :supplier_product_id, :commission,
                  {json_param(conn, "denominations")}, :min_amount, :max_amount, :catalog_version, :created_at
                )
                """
            ),
            [
                {
                    "vas_type": offer.vas_type,
                    "provider": offer.provider,
                    "denomination_cents": offer.denomination_cents,
                    "product_variant_id": offer.product_variant_id,
                    "product_id": offer.product_id,
                    "supplier_id": offer.supplier_id,
                    "supplier_code": offer.supplier_code,
                    "product_name": offer.product_name,
                    "supplier_product_id": offer.supplier_product_id,
                    "commission": offer.commission,
                    "denominations": dump_json(offer.denominations),
                    "min_amount": offer.min_amount,
                    "max_amount": offer.max_amount,
                    "catalog_version": version,
                    "created_at": now,
                }
                for offer in offers
            ],
        )

    def _write_audit(self, conn: Connection, rows_affected: int, version: int) -> None:
        conn.execute(
            text(
                """
                INSERT INTO catalog_refresh_audit (refreshed_at, refreshed_by, vas_type, rows_affected, catalog_version)
                VALUES (:refreshed_at, :refreshed_by, :vas_type, :rows_affected, :catalog_version)
                """
            ),
            {
                "refreshed_at": utc_now(),
                "refreshed_by": self.refreshed_by,
                "vas_type": "all",
                "rows_affected": rows_affected,
                "catalog_version": version,
            },
        )


def _offer_from_row(row: Mapping[str, Any]) -> BestOffer:
    return BestOffer(
        vas_type=row["vas_type"],
        provider=row["provider"],
        denomination_cents=row["denomination_cents"],
        product_variant_id=row["product_variant_id"],
        product_id=row["product_id"],
        supplier_id=row["supplier_id"],
        supplier_code=row["supplier_code"],
        product_name=row["product_name"],
        supplier_product_id=row["supplier_product_id"],
        commission=float(row["commission"] or 0),
        denominations=load_json(row["denominations"], []) or [],
        min_amount=row["min_amount"],
        max_amount=row["max_amount"],
        catalog_version=row["catalog_version"],
    )


def list_best_offers(engine: Engine, vas_type: str | None = None, provider: str | None = None) -> list[BestOffer]:
    clauses = []
    params: dict[str, Any] = {}
    if vas_type:
        clauses.append("vas_type = :vas_type")
        params["vas_type"] = vas_type
    if provider:
        clauses.append("provider = :provider")
        params["provider"] = normalize_provider(provider)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    with engine.connect() as conn:
        rows = conn.execute(
            text(f"SELECT * FROM vas_best_offers {where} ORDER BY vas_type, provider, denomination_cents"),
            params,
        ).mappings()
        return [_offer_from_row(row) for row in rows]


def get_best_offer(engine: Engine, vas_type: str, provider: str, denomination_cents: int) -> BestOffer | None:
    with engine.connect() as conn:
        row = conn.execute(
            text(
                """
                SELECT * FROM vas_best_offers
                WHERE vas_type = :vas_type AND provider = :provider AND denomination_cents = :denomination_cents
                """
            ),
            {
                "vas_type": vas_type,
                "provider": normalize_provider(provider),
                "denomination_cents": denomination_cents,
            },
        ).mappings().one_or_none()
    return _offer_from_row(row) if row else None
