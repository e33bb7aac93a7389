"""
Commerce platform REST client.

Thin aiohttp wrapper over the store API (``/v1/{store_id}/...``). It handles
authentication headers, rate limiting, retries of transient failures and
page iteration. Revoked or missing tokens surface as
``ReconnectionRequiredError`` and are never retried.
"""

import asyncio
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional

import aiohttp

from store_rag.config.settings import settings
from store_rag.errors import CommerceAPIError, ReconnectionRequiredError
from store_rag.integrations import StoreCredentials
from store_rag.utils.async_utils import AsyncRateLimiter, AsyncRetry
from store_rag.utils.logger import get_logger

logger = get_logger(__name__)


class TransientCommerceError(CommerceAPIError):
    """429 and 5xx responses; safe to retry."""


def _format_since(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class CommercePlatformClient:
    """
    Async client for one connected store.

    Examples:
        >>> async with CommercePlatformClient(credentials) as client:
        ...     async for page in client.iter_pages("products", per_page=200):
        ...         ...
    """

    def __init__(self,
                 credentials: StoreCredentials,
                 base_url: Optional[str] = None,
                 session: Optional[aiohttp.ClientSession] = None,
                 rate_limiter: Optional[AsyncRateLimiter] = None,
                 max_attempts: int = 3,
                 retry_base_delay: float = 1.0,
                 timeout: Optional[float] = None):
        if not credentials.access_token:
            raise ReconnectionRequiredError(credentials.store_id)

        self.credentials = credentials
        self.base_url = f"{(base_url or settings.commerce_api_base_url).rstrip('/')}/{credentials.api_store_id}"
        self._session = session
        self._owns_session = session is None
        self.timeout = aiohttp.ClientTimeout(total=timeout or settings.commerce_request_timeout)
        self.rate_limiter = rate_limiter or AsyncRateLimiter(rate=settings.commerce_requests_per_second, per=1.0)
        self.retry = AsyncRetry(
            max_attempts=max_attempts,
            base_delay=retry_base_delay,
            max_delay=30.0,
            exceptions=(aiohttp.ClientError, asyncio.TimeoutError, TransientCommerceError),
        )
        self.logger = get_logger(__name__, store_id=credentials.store_id)

    @property
    def headers(self) -> Dict[str, str]:
        return {
            'Authentication': f"bearer {self.credentials.access_token}",
            'User-Agent': settings.commerce_user_agent,
            'Content-Type': 'application/json',
        }

    async def __aenter__(self) -> "CommercePlatformClient":
        if self._session is None:
            self._session = aiohttp.ClientSession(headers=self.headers, timeout=self.timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def _request(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET ``path``; returns parsed JSON, or None for 404."""
        if self._session is None:
            raise RuntimeError("CommercePlatformClient must be used as an async context manager")

        url = f"{self.base_url}/{path.lstrip('/')}"
        query = {k: v for k, v in (params or {}).items() if v is not None}

        async def attempt() -> Any:
            async with self.rate_limiter:
                async with self._session.get(url, params=query, headers=self.headers) as response:
                    if response.status in (401, 403):
                        self.logger.warning("Commerce API rejected credentials", status=response.status)
                        raise ReconnectionRequiredError(self.credentials.store_id)
                    if response.status == 404:
                        return None
                    if response.status == 429 or response.status >= 500:
                        raise TransientCommerceError(response.status, f"Commerce API returned {response.status}", url)
                    if response.status >= 400:
                        body = await response.text()
                        raise CommerceAPIError(response.status, f"Commerce API error {response.status}: {body[:200]}", url)
                    return await response.json(content_type=None)

        return await self.retry.call(attempt)

    async def get_store(self) -> Optional[Dict[str, Any]]:
        return await self._request("store")

    async def get_products(self, page: int = 1, per_page: Optional[int] = None,
                           updated_at_min: Optional[datetime] = None) -> List[Dict[str, Any]]:
        return await self._request("products", {
            'page': page,
            'per_page': per_page or settings.products_page_size,
            'updated_at_min': _format_since(updated_at_min),
        }) or []

    async def get_orders(self, page: int = 1, per_page: Optional[int] = None,
                         updated_at_min: Optional[datetime] = None,
                         created_at_min: Optional[datetime] = None) -> List[Dict[str, Any]]:
        return await self._request("orders", {
            'page': page,
            'per_page': per_page or settings.default_page_size,
            'updated_at_min': _format_since(updated_at_min),
            'created_at_min': _format_since(created_at_min),
        }) or []

    async def get_customers(self, page: int = 1, per_page: Optional[int] = None,
                            updated_at_min: Optional[datetime] = None) -> List[Dict[str, Any]]:
        return await self._request("customers", {
            'page': page,
            'per_page': per_page or settings.default_page_size,
            'updated_at_min': _format_since(updated_at_min),
        }) or []

    async def iter_pages(self, resource: str, per_page: int, max_pages: Optional[int] = None,
                         **filters: Any) -> AsyncIterator[List[Dict[str, Any]]]:
        """
        Yield pages of ``resource`` until a short page, an empty page, a 404
        past the end, or ``max_pages``.
        """
        fetchers = {
            'products': self.get_products,
            'orders': self.get_orders,
            'customers': self.get_customers,
        }
        if resource not in fetchers:
            raise ValueError(f"Unknown resource: {resource}")

        max_pages = max_pages or settings.max_pages
        for page in range(1, max_pages + 1):
            items = await fetchers[resource](page=page, per_page=per_page, **filters)
            if not items:
                return
            yield items
            if len(items) < per_page:
                return

        self.logger.warning("Page cap reached", resource=resource, max_pages=max_pages)
