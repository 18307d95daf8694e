"""Catalog sweep job entry points."""

from __future__ import annotations

import asyncio
import functools
import logging
import os

from dotenv import load_dotenv

from vascatalog.db.session import create_engine_from_env
from vascatalog.ingest import load_supplier_settings
from vascatalog.ingest.flash import FlashAdapter
from vascatalog.ingest.mobilemart import MobileMartAdapter
from vascatalog.ingest.models import PriceRefreshStats, Supplier, SupplierAdapter, SyncStats
from vascatalog.logic.notifications import NotificationEvent
from vascatalog.logic.orchestrator import CatalogSyncService, SweepKind

logger = logging.getLogger(__name__)

ADAPTERS = {
    "FLASH": FlashAdapter,
    "MOBILEMART": MobileMartAdapter,
}


def _env_flag(name: str, default: bool = True) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def build_adapter(supplier: Supplier) -> SupplierAdapter | None:
    """Build a fresh adapter for one run; ``None`` when the supplier is unknown or unconfigured."""
    adapter_cls = ADAPTERS.get(supplier.code)
    settings = load_supplier_settings().get(supplier.code)
    if adapter_cls is None or settings is None:
        logger.warning("No adapter or settings registered for supplier %s", supplier.code)
        return None
    return adapter_cls.from_env(settings)


def publish_notification(event: NotificationEvent) -> None:
    from vascatalog.jobs.celery_app import deliver_notification_task

    deliver_notification_task.delay(event.as_dict())


@functools.lru_cache(maxsize=1)
def get_service() -> CatalogSyncService:
    load_dotenv()
    return CatalogSyncService(
        create_engine_from_env(),
        build_adapter,
        publish=publish_notification,
        category_timeout=float(os.environ.get("CATEGORY_TIMEOUT_SECONDS", "120")),
        enabled=_env_flag("CATALOG_SYNC_ENABLED"),
        frequent_enabled=_env_flag("CATALOG_SYNC_FREQUENT_ENABLED"),
    )


def run_daily_sweep() -> SyncStats | None:
    return asyncio.run(get_service().run_scheduled(SweepKind.DAILY))


def run_frequent_refresh() -> PriceRefreshStats | None:
    return asyncio.run(get_service().run_scheduled(SweepKind.FREQUENT))
