"""Catalog sync orchestration: daily sweep and frequent price refresh."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable

import httpx
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql import text

from vascatalog.ingest.auth import SupplierAuthError, SupplierUnavailableError
from vascatalog.ingest.models import PriceRefreshStats, RawProductRecord, Supplier, SupplierAdapter, SyncStats
from vascatalog.ingest.upsert import MalformedRecordError, ProductUpsertEngine
from vascatalog.logic.best_offers import BestOfferMaterializer
from vascatalog.logic.classifier import PriceClassifier
from vascatalog.logic.notifications import NotificationEvent, catalog_changed_event, sync_error_event
from vascatalog.utils.dates import frequent_interval_minutes, next_daily_sweep, utc_now

logger = logging.getLogger(__name__)

VAS_CATEGORIES = ("airtime", "data", "electricity", "voucher", "bill_payment")
DEFAULT_CATEGORY_TIMEOUT = 120.0

CATEGORY_ERRORS = (
    asyncio.TimeoutError,
    httpx.HTTPError,
    SupplierAuthError,
    SupplierUnavailableError,
    ValueError,
)
RECORD_ERRORS = (MalformedRecordError, SQLAlchemyError)

AdapterFactory = Callable[[Supplier], SupplierAdapter | None]
Publisher = Callable[[NotificationEvent], None]


class SweepKind(str, Enum):
    DAILY = "daily"
    FREQUENT = "frequent"


@dataclass(slots=True)
class SweepState:
    enabled: bool = True
    frequent_enabled: bool = True
    running: SweepKind | None = None
    last_daily: SyncStats | None = None
    last_frequent: PriceRefreshStats | None = None


def _log_publish(event: NotificationEvent) -> None:
    logger.info("Notification %s: %s", event.kind, event.message)


class CatalogSyncService:
    """Owns the sweep lifecycle.

    Scheduled runs and manual triggers go through the same coroutines. At
    most one sweep of either kind runs at a time; a second request while one
    is in flight is dropped with a warning.
    """

    def __init__(
        self,
        engine: Engine,
        adapter_factory: AdapterFactory,
        *,
        publish: Publisher | None = None,
        categories: Iterable[str] = VAS_CATEGORIES,
        upsert: ProductUpsertEngine | None = None,
        classifier: PriceClassifier | None = None,
        materializer: BestOfferMaterializer | None = None,
        category_timeout: float = DEFAULT_CATEGORY_TIMEOUT,
        enabled: bool = True,
        frequent_enabled: bool = True,
    ) -> None:
        self.engine = engine
        self.adapter_factory = adapter_factory
        self.publish = publish or _log_publish
        self.categories = tuple(categories)
        self.upsert = upsert or ProductUpsertEngine(engine)
        self.classifier = classifier or PriceClassifier(engine)
        self.materializer = materializer or BestOfferMaterializer(engine)
        self.category_timeout = category_timeout
        self.state = SweepState(enabled=enabled, frequent_enabled=frequent_enabled)
        self._guard = threading.Lock()

    def start(self) -> None:
        self.state.enabled = True
        logger.info("Catalog sync schedule started")

    def stop(self) -> None:
        self.state.enabled = False
        logger.info("Catalog sync schedule stopped")

    def get_status(self) -> dict[str, Any]:
        state = self.state
        return {
            "enabled": state.enabled,
            "frequentEnabled": state.frequent_enabled,
            "running": state.running.value if state.running else None,
            "nextDailySweep": next_daily_sweep().isoformat() if state.enabled else None,
            "frequentIntervalMinutes": frequent_interval_minutes(),
            "lastDailySweep": state.last_daily.as_dict() if state.last_daily else None,
            "lastFrequentRefresh": state.last_frequent.as_dict() if state.last_frequent else None,
        }

    def trigger_daily_sweep(self) -> SyncStats | None:
        return asyncio.run(self.run_daily_sweep())

    def trigger_frequent_update(self) -> PriceRefreshStats | None:
        return asyncio.run(self.run_frequent_refresh())

    async def run_scheduled(self, kind: SweepKind) -> SyncStats | PriceRefreshStats | None:
        if not self.state.enabled:
            logger.info("Catalog sync stopped; skipping scheduled %s run", kind.value)
            return None
        if kind is SweepKind.FREQUENT:
            if not self.state.frequent_enabled:
                logger.info("Frequent refresh disabled; skipping")
                return None
            return await self.run_frequent_refresh()
        return await self.run_daily_sweep()

    async def run_daily_sweep(self) -> SyncStats | None:
        if not self._guard.acquire(blocking=False):
            logger.warning("Sweep already running (%s); daily sweep not started", self._running_label())
            return None
        self.state.running = SweepKind.DAILY
        stats = SyncStats(started_at=utc_now())
        failure: Exception | None = None
        logger.info("Daily catalog sweep started")
        try:
            await self._sweep_suppliers(stats)
        except Exception as exc:
            stats.errors += 1
            failure = exc
            logger.exception("Daily catalog sweep failed")
        finally:
            stats.finished_at = utc_now()
            self.state.last_daily = stats
            self.state.running = None
            self._guard.release()
        logger.info(
            "Daily catalog sweep finished: %s products (%s new, %s updated, %s decommissioned), %s errors",
            stats.total_products,
            stats.new_products,
            stats.updated_products,
            stats.decommissioned_products,
            stats.errors,
        )
        if failure is not None:
            self._publish(sync_error_event("Daily catalog sweep failed", failure, stats.as_dict()))
        elif stats.has_catalog_changes:
            self._publish(catalog_changed_event(stats))
        return stats

    async def run_frequent_refresh(self) -> PriceRefreshStats | None:
        if not self._guard.acquire(blocking=False):
            logger.warning("Sweep already running (%s); price refresh not started", self._running_label())
            return None
        self.state.running = SweepKind.FREQUENT
        stats = PriceRefreshStats(started_at=utc_now())
        failure: Exception | None = None
        try:
            await self._refresh_suppliers(stats)
        except Exception as exc:
            stats.errors += 1
            failure = exc
            logger.exception("Frequent price refresh failed")
        finally:
            stats.finished_at = utc_now()
            self.state.last_frequent = stats
            self.state.running = None
            self._guard.release()
        logger.info(
            "Price refresh finished: %s refreshed, %s unknown, %s errors",
            stats.refreshed_variants,
            stats.unknown_variants,
            stats.errors,
        )
        if failure is not None:
            self._publish(sync_error_event("Frequent price refresh failed", failure, stats.as_dict()))
        return stats

    def _running_label(self) -> str:
        running = self.state.running
        return running.value if running else "unknown"

    def _load_suppliers(self) -> list[Supplier]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                text("SELECT id, code, name, is_active FROM suppliers WHERE is_active = :active ORDER BY id"),
                {"active": True},
            ).all()
        return [Supplier(id=row.id, code=row.code, name=row.name, is_active=bool(row.is_active)) for row in rows]

    async def _sweep_suppliers(self, stats: SyncStats) -> None:
        for supplier in self._load_suppliers():
            await self._with_supplier(supplier, stats, self._sync_supplier)

        if stats.touched_groups:
            try:
                self.classifier.apply(stats.touched_groups)
            except SQLAlchemyError:
                stats.errors += 1
                logger.exception("Price classification failed")
        try:
            result = self.materializer.rebuild()
        except SQLAlchemyError:
            stats.errors += 1
            logger.exception("Best offer rebuild failed; previous table kept")
        else:
            stats.catalog_version = result.catalog_version

    async def _refresh_suppliers(self, stats: PriceRefreshStats) -> None:
        for supplier in self._load_suppliers():
            await self._with_supplier(supplier, stats, self._refresh_supplier)

    async def _with_supplier(
        self,
        supplier: Supplier,
        stats: SyncStats | PriceRefreshStats,
        work: Callable[[SupplierAdapter, Supplier, Any], Awaitable[None]],
    ) -> None:
        """Run one supplier's pass. Any failure in it costs one error and the next supplier still runs."""
        try:
            adapter = self.adapter_factory(supplier)
        except Exception:
            stats.errors += 1
            stats.skipped_suppliers.append(supplier.code)
            logger.exception("Could not build adapter for %s; skipping supplier", supplier.code)
            return
        if adapter is None:
            logger.warning("No adapter configured for %s; skipping", supplier.code)
            stats.skipped_suppliers.append(supplier.code)
            return
        try:
            if not await self._healthy(adapter, supplier):
                stats.errors += 1
                stats.skipped_suppliers.append(supplier.code)
                return
            await work(adapter, supplier, stats)
        except Exception:
            stats.errors += 1
            logger.exception("%s pass aborted; continuing with next supplier", supplier.code)
        finally:
            try:
                await adapter.close()
            except Exception:
                logger.warning("%s adapter close failed", supplier.code, exc_info=True)

    async def _healthy(self, adapter: SupplierAdapter, supplier: Supplier) -> bool:
        try:
            health = await asyncio.wait_for(adapter.health_check(), timeout=self.category_timeout)
        except asyncio.TimeoutError:
            logger.error("%s health check timed out; skipping supplier", supplier.code)
            return False
        except Exception:
            logger.exception("%s health check raised; skipping supplier", supplier.code)
            return False
        if not health.healthy:
            logger.error("%s unhealthy (%s); skipping supplier", supplier.code, health.error)
            return False
        return True

    async def _fetch(
        self, adapter: SupplierAdapter, supplier: Supplier, category: str
    ) -> list[RawProductRecord] | None:
        try:
            return await asyncio.wait_for(adapter.fetch_catalog(category), timeout=self.category_timeout)
        except CATEGORY_ERRORS as exc:
            logger.warning("%s %s catalog fetch failed: %s", supplier.code, category, exc)
            return None

    async def _sync_supplier(self, adapter: SupplierAdapter, supplier: Supplier, stats: SyncStats) -> None:
        synced_at = utc_now()
        for category in self.categories:
            records = await self._fetch(adapter, supplier, category)
            if records is None:
                stats.errors += 1
                continue
            for record in records:
                try:
                    outcome = self.upsert.sync_one(record, supplier, synced_at=synced_at)
                except RECORD_ERRORS as exc:
                    stats.errors += 1
                    logger.warning("%s %s: skipped record: %s", supplier.code, record.supplier_product_id, exc)
                    continue
                stats.total_products += 1
                if outcome.created:
                    stats.new_products += 1
                else:
                    stats.updated_products += 1
                if outcome.decommissioned:
                    stats.decommissioned_products += 1
                stats.touched_groups.add((outcome.brand_id, outcome.product_type))
            logger.info("%s %s: %s records processed", supplier.code, category, len(records))

    async def _refresh_supplier(
        self, adapter: SupplierAdapter, supplier: Supplier, stats: PriceRefreshStats
    ) -> None:
        synced_at = utc_now()
        for category in self.categories:
            records = await self._fetch(adapter, supplier, category)
            if records is None:
                stats.errors += 1
                continue
            for record in records:
                try:
                    refreshed = self.upsert.refresh_pricing(record, supplier, synced_at=synced_at)
                except RECORD_ERRORS as exc:
                    stats.errors += 1
                    logger.warning("%s %s: price refresh failed: %s", supplier.code, record.supplier_product_id, exc)
                    continue
                if refreshed:
                    stats.refreshed_variants += 1
                else:
                    stats.unknown_variants += 1

    def _publish(self, event: NotificationEvent) -> None:
        try:
            self.publish(event)
        except Exception:
            logger.exception("Failed to publish %s notification", event.kind)
