"""Client-credential token handling shared by the supplier adapters."""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from vascatalog.ingest.models import HealthStatus
from vascatalog.utils.rate_limit import RateLimiter
from vascatalog.utils.retry import retry_async

logger = logging.getLogger(__name__)

TOKEN_REFRESH_BUFFER = 300


class SupplierAuthError(RuntimeError):
    """The supplier refused or could not issue an access token."""


class SupplierUnavailableError(RuntimeError):
    """The supplier answered, but not with a usable catalog."""


class OAuthSession:
    """Bearer-token session against one supplier API.

    Subclasses implement ``_request_token`` for their own token endpoint.
    Tokens are cached until ``TOKEN_REFRESH_BUFFER`` seconds before expiry; a
    401/403 on a data call drops the token and retries the call once.
    """

    supplier_code = "SUPPLIER"

    def __init__(
        self,
        api_url: str,
        *,
        session: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        rate_limiter: RateLimiter | None = None,
        retry_delay: float = 1.0,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.session = session or httpx.AsyncClient(timeout=timeout)
        self.timeout = timeout
        self._rate_limiter = rate_limiter or RateLimiter()
        self._retry_delay = retry_delay
        self._access_token: str | None = None
        self._token_expiry: float | None = None

    async def close(self) -> None:
        await self.session.aclose()

    def token_valid(self) -> bool:
        return bool(self._access_token) and self._token_expiry is not None and time.monotonic() < self._token_expiry

    def invalidate_token(self) -> None:
        self._access_token = None
        self._token_expiry = None

    async def access_token(self) -> str:
        if not self.token_valid():
            token, expires_in = await self._request_token()
            self._access_token = token
            self._token_expiry = time.monotonic() + max(expires_in - TOKEN_REFRESH_BUFFER, 0)
            logger.info("%s: obtained new access token", self.supplier_code)
        return self._access_token  # type: ignore[return-value]

    async def _request_token(self) -> tuple[str, int]:  # pragma: no cover - abstract
        raise NotImplementedError

    async def health_check(self) -> HealthStatus:
        try:
            await self.access_token()
        except (SupplierAuthError, httpx.HTTPError) as exc:
            return HealthStatus(status="unhealthy", error=str(exc))
        return HealthStatus(status="healthy")

    async def request_json(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._send(method, path, **kwargs)
        if response.status_code in {401, 403}:
            logger.warning("%s: %s on %s, refreshing token", self.supplier_code, response.status_code, path)
            self.invalidate_token()
            response = await self._send(method, path, **kwargs)
        response.raise_for_status()
        return response.json()

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        token = await self.access_token()
        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        await self._rate_limiter.wait(self.supplier_code)
        send = retry_async(self.session.request, base_delay=self._retry_delay)
        return await send(method, f"{self.api_url}{path}", headers=headers, timeout=self.timeout, **kwargs)

    async def _post_token(self, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self.session.post(url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise SupplierAuthError(f"{self.supplier_code} token request failed: {exc}") from exc
        if not isinstance(data, dict):
            raise SupplierAuthError(f"{self.supplier_code} token response is not an object")
        return data
