"""MobileMart Fulcrum API adapter."""

from __future__ import annotations

import logging
import os
from typing import Any, Mapping

from vascatalog.ingest.auth import OAuthSession, SupplierAuthError, SupplierUnavailableError
from vascatalog.ingest.fields import (
    first_present,
    is_active,
    is_discontinued,
    rands_to_cents,
    range_constraints,
    to_float,
    to_int,
)
from vascatalog.ingest.models import HealthStatus, RawProductRecord, SupplierSettings

logger = logging.getLogger(__name__)

DEFAULT_MOBILEMART_URL = "https://uat.fulcrumswitch.com"
DEFAULT_TOKEN_EXPIRY = 3600
DEFAULT_MIN_AMOUNT = 500
DEFAULT_MAX_AMOUNT = 100000

# Internal product type -> Fulcrum path segment
VAS_PATHS = {
    "airtime": "airtime",
    "data": "data",
    "electricity": "utility",
    "voucher": "voucher",
    "bill_payment": "bill-payment",
}
PINLESS_TYPES = {"airtime", "data"}


class MobileMartClient(OAuthSession):
    supplier_code = "MOBILEMART"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        base_url: str = DEFAULT_MOBILEMART_URL,
        token_url: str | None = None,
        **kwargs: Any,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        super().__init__(self.base_url, **kwargs)
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url or f"{self.base_url}/connect/token"

    async def _request_token(self) -> tuple[str, int]:
        data = await self._post_token(
            self.token_url,
            data={
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
        )
        token = first_present(data, "access_token", "token", "accessToken")
        if not token:
            raise SupplierAuthError("Invalid token response from MobileMart API")
        expires_in = to_int(first_present(data, "expires_in", "expires", "expiresIn")) or DEFAULT_TOKEN_EXPIRY
        return str(token), expires_in


class MobileMartAdapter:
    code = "MOBILEMART"

    def __init__(self, client: MobileMartClient, *, settings: SupplierSettings) -> None:
        self.client = client
        self.settings = settings

    @classmethod
    def from_env(cls, settings: SupplierSettings) -> "MobileMartAdapter | None":
        client_id = os.environ.get("MOBILEMART_CLIENT_ID")
        client_secret = os.environ.get("MOBILEMART_CLIENT_SECRET")
        if not (client_id and client_secret):
            logger.info("MobileMart credentials not configured; adapter disabled")
            return None
        client = MobileMartClient(
            client_id,
            client_secret,
            base_url=os.environ.get("MOBILEMART_API_URL", DEFAULT_MOBILEMART_URL),
            token_url=os.environ.get("MOBILEMART_TOKEN_URL"),
            timeout=float(os.environ.get("SUPPLIER_TIMEOUT_SECONDS", "30")),
        )
        return cls(client, settings=settings)

    async def close(self) -> None:
        await self.client.close()

    async def health_check(self) -> HealthStatus:
        return await self.client.health_check()

    async def fetch_catalog(self, category: str) -> list[RawProductRecord]:
        segment = VAS_PATHS.get(category)
        if segment is None:
            return []
        data = await self.client.request_json("GET", f"/api/v1/{segment}/products")
        items = data.get("products", data.get("data")) if isinstance(data, dict) else data
        if not isinstance(items, list):
            raise SupplierUnavailableError(f"MobileMart {category} response has no product list")
        if category in PINLESS_TYPES:
            items = [item for item in items if isinstance(item, Mapping) and item.get("pinned") is False]
        records = [self.map_product(item, category) for item in items if isinstance(item, Mapping)]
        logger.info("MobileMart returned %s %s products", len(records), category)
        return records

    def map_product(self, raw: Mapping[str, Any], category: str) -> RawProductRecord:
        """Map one MobileMart product. Fulcrum quotes rands; everything stored is cents."""
        name = str(first_present(raw, "productName", "name", default="MobileMart Product"))
        provider = str(first_present(raw, "contentCreator", "provider", default=name))
        amount = rands_to_cents(raw.get("amount"))
        if raw.get("fixedAmount") and amount and category != "bill_payment":
            min_amount = max_amount = amount
            denominations = [amount]
        else:
            min_amount = rands_to_cents(raw.get("minimumAmount")) or DEFAULT_MIN_AMOUNT
            max_amount = rands_to_cents(raw.get("maximumAmount")) or DEFAULT_MAX_AMOUNT
            denominations = []
        commission = to_float(raw.get("commission"))
        return RawProductRecord(
            supplier_product_id=str(first_present(raw, "merchantProductId", "id", default="")),
            name=name,
            brand=provider,
            product_type=category,
            provider=provider,
            min_amount=min_amount,
            max_amount=max_amount,
            denominations=denominations,
            commission=commission if commission is not None else self.settings.commission_for(provider),
            is_promotional=bool(raw.get("isPromotional", False)),
            promotional_discount=to_float(raw.get("promotionalDiscount")),
            is_active=is_active(raw),
            discontinued=is_discontinued(raw),
            constraints=range_constraints(raw),
            metadata={
                "mobilemart_merchant_product_id": raw.get("merchantProductId"),
                "mobilemart_content_creator": raw.get("contentCreator"),
                "mobilemart_pinned": raw.get("pinned"),
                "mobilemart_fixed_amount": raw.get("fixedAmount"),
            },
        )
