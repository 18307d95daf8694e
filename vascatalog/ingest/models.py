"""Ingestion data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from vascatalog.ingest.fields import provider_key

PRODUCT_TYPES = ("airtime", "data", "electricity", "voucher", "bill_payment")


@dataclass(slots=True)
class Supplier:
    id: int
    code: str
    name: str
    is_active: bool = True


@dataclass(slots=True)
class SupplierSettings:
    code: str
    name: str
    priority: int
    default_commission: float = 0.0
    commission_rates: dict[str, float] = field(default_factory=dict)

    def commission_for(self, provider: str | None) -> float:
        if provider:
            key = provider_key(provider)
            if key in self.commission_rates:
                return float(self.commission_rates[key])
        return float(self.default_commission)


@dataclass(slots=True)
class RawProductRecord:
    """One upstream product in the common shape every adapter maps into."""

    supplier_product_id: str
    name: str
    brand: str
    product_type: str
    provider: str
    min_amount: int | None = None
    max_amount: int | None = None
    denominations: list[int] = field(default_factory=list)
    commission: float = 0.0
    is_promotional: bool = False
    promotional_discount: float | None = None
    is_active: bool = True
    discontinued: bool = False
    constraints: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class HealthStatus:
    status: str
    error: str | None = None

    @property
    def healthy(self) -> bool:
        return self.status == "healthy"


@dataclass(slots=True)
class SyncStats:
    """Counters for one daily sweep."""

    total_products: int = 0
    new_products: int = 0
    updated_products: int = 0
    decommissioned_products: int = 0
    errors: int = 0
    skipped_suppliers: list[str] = field(default_factory=list)
    touched_groups: set[tuple[int, str]] = field(default_factory=set)
    catalog_version: int | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def has_catalog_changes(self) -> bool:
        return self.new_products + self.decommissioned_products > 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "totalProducts": self.total_products,
            "newProducts": self.new_products,
            "updatedProducts": self.updated_products,
            "decommissionedProducts": self.decommissioned_products,
            "errors": self.errors,
            "skippedSuppliers": list(self.skipped_suppliers),
            "catalogVersion": self.catalog_version,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass(slots=True)
class PriceRefreshStats:
    """Counters for one frequent price refresh, kept apart from the daily sweep."""

    refreshed_variants: int = 0
    unknown_variants: int = 0
    errors: int = 0
    skipped_suppliers: list[str] = field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "refreshedVariants": self.refreshed_variants,
            "unknownVariants": self.unknown_variants,
            "errors": self.errors,
            "skippedSuppliers": list(self.skipped_suppliers),
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
        }


class SupplierAdapter(Protocol):
    code: str

    async def health_check(self) -> HealthStatus: ...

    async def fetch_catalog(self, category: str) -> list[RawProductRecord]: ...

    async def close(self) -> None: ...
