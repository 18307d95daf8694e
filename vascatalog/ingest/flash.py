"""Flash partner API adapter."""

from __future__ import annotations

import logging
import os
from typing import Any, Mapping

from vascatalog.ingest.auth import OAuthSession, SupplierAuthError, SupplierUnavailableError
from vascatalog.ingest.fields import (
    cents_list,
    first_present,
    is_active,
    is_discontinued,
    range_constraints,
    to_float,
    to_int,
)
from vascatalog.ingest.models import HealthStatus, RawProductRecord, SupplierSettings

logger = logging.getLogger(__name__)

DEFAULT_FLASH_URL = "https://api.flashswitch.flash-group.com"
API_VERSION = "v4"


def map_flash_category(category: str | None) -> str:
    if not category:
        return "airtime"
    c = category.lower()
    if "electricity" in c or "utility" in c or "prepaid" in c:
        return "electricity"
    if "data" in c:
        return "data"
    if "bill" in c or "payment" in c:
        return "bill_payment"
    if any(word in c for word in ("voucher", "gaming", "streaming", "entertainment", "international")):
        return "voucher"
    return "airtime"


class FlashClient(OAuthSession):
    supplier_code = "FLASH"

    def __init__(
        self,
        consumer_key: str,
        consumer_secret: str,
        *,
        base_url: str = DEFAULT_FLASH_URL,
        **kwargs: Any,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        super().__init__(f"{self.base_url}/{API_VERSION}", **kwargs)
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret

    async def _request_token(self) -> tuple[str, int]:
        data = await self._post_token(
            f"{self.base_url}/token",
            data={"grant_type": "client_credentials"},
            auth=(self.consumer_key, self.consumer_secret),
        )
        token = data.get("access_token")
        expires_in = to_int(data.get("expires_in"))
        if not token or not expires_in:
            raise SupplierAuthError("Invalid token response from Flash API")
        return token, expires_in

    async def request_json(self, method: str, path: str, **kwargs: Any) -> Any:
        data = await super().request_json(method, path, **kwargs)
        if isinstance(data, dict) and data.get("responseCode") not in (None, 0):
            raise SupplierUnavailableError(
                f"Flash API error: {data.get('responseMessage', 'Unknown error')} (code {data['responseCode']})"
            )
        return data


class FlashAdapter:
    code = "FLASH"

    def __init__(self, client: FlashClient, *, account_number: str, settings: SupplierSettings) -> None:
        self.client = client
        self.account_number = account_number
        self.settings = settings
        self._products: list[Mapping[str, Any]] | None = None

    @classmethod
    def from_env(cls, settings: SupplierSettings) -> "FlashAdapter | None":
        key = os.environ.get("FLASH_CONSUMER_KEY")
        secret = os.environ.get("FLASH_CONSUMER_SECRET")
        account = os.environ.get("FLASH_ACCOUNT_NUMBER")
        if not (key and secret and account):
            logger.info("Flash credentials not configured; adapter disabled")
            return None
        client = FlashClient(
            key,
            secret,
            base_url=os.environ.get("FLASH_API_URL", DEFAULT_FLASH_URL),
            timeout=float(os.environ.get("SUPPLIER_TIMEOUT_SECONDS", "30")),
        )
        return cls(client, account_number=account, settings=settings)

    async def close(self) -> None:
        self._products = None
        await self.client.close()

    async def health_check(self) -> HealthStatus:
        return await self.client.health_check()

    async def _load_products(self) -> list[Mapping[str, Any]]:
        """Flash serves every category from one list; download it once per run."""
        if self._products is None:
            data = await self.client.request_json("GET", f"/accounts/{self.account_number}/products")
            items = data.get("products", []) if isinstance(data, dict) else data
            if not isinstance(items, list):
                raise SupplierUnavailableError("Flash catalog response has no product list")
            self._products = [item for item in items if isinstance(item, Mapping)]
            logger.info("Flash product list loaded: %s items", len(self._products))
        return self._products

    async def fetch_catalog(self, category: str) -> list[RawProductRecord]:
        items = await self._load_products()
        records = [self.map_product(item) for item in items if map_flash_category(_category(item)) == category]
        logger.info("Flash returned %s %s products", len(records), category)
        return records

    def map_product(self, raw: Mapping[str, Any]) -> RawProductRecord:
        """Map one Flash product; amounts are already in cents upstream."""
        denominations = cents_list(raw.get("denominations"))
        if not denominations and to_int(raw.get("amount")):
            denominations = [to_int(raw["amount"])]
        name = str(first_present(raw, "productName", "name", "description", default="Flash Product"))
        provider = str(first_present(raw, "vendor", "provider", "network", "brand", "contentCreator", default=name))
        commission = to_float(raw.get("commission"))
        return RawProductRecord(
            supplier_product_id=str(first_present(raw, "productCode", "id", "code", default="")),
            name=name,
            brand=provider,
            product_type=map_flash_category(_category(raw)),
            provider=provider,
            min_amount=to_int(first_present(raw, "minimumAmount", "minAmount")),
            max_amount=to_int(first_present(raw, "maximumAmount", "maxAmount")),
            denominations=denominations,
            commission=commission if commission is not None else self.settings.commission_for(provider),
            is_promotional=bool(raw.get("isPromotional", False)),
            promotional_discount=to_float(raw.get("promotionalDiscount")),
            is_active=is_active(raw),
            discontinued=is_discontinued(raw),
            constraints=range_constraints(raw),
            metadata={
                "flash_product_code": raw.get("productCode"),
                "flash_category": _category(raw),
            },
        )


def _category(raw: Mapping[str, Any]) -> str | None:
    value = first_present(raw, "category", "type", "productType")
    return str(value) if value is not None else None


__all__ = ["FlashAdapter", "FlashClient", "map_flash_category"]
