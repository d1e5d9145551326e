"""Async client for the Dolibarr ERP REST API."""

from typing import Any

import httpx
import structlog

from catalog_sync.config import Settings, get_settings
from catalog_sync.exceptions import ErpApiError, ErpNotFoundError

logger = structlog.get_logger()


class ErpClient:
    """Authenticated read-only access to the ERP catalog endpoints.

    Every method raises ``ErpNotFoundError`` on HTTP 404 and ``ErpApiError``
    on any other failure. No retries are attempted.
    """

    def __init__(self, http: httpx.AsyncClient):
        self.http = http

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ErpClient":
        settings = settings or get_settings()
        http = httpx.AsyncClient(
            base_url=settings.erp_api_base_url,
            headers={"DOLAPIKEY": settings.erp_api_key, "Accept": "application/json"},
            timeout=settings.erp_api_timeout,
            transport=transport,
        )
        return cls(http)

    async def close(self) -> None:
        await self.http.aclose()

    async def _request(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        try:
            response = await self.http.get(endpoint, params=params)
        except httpx.TimeoutException as e:
            logger.error("ERP API request timed out", endpoint=endpoint, error=str(e))
            raise ErpApiError(
                f"ERP API request timed out - Endpoint: {endpoint}", endpoint=endpoint
            ) from e
        except httpx.HTTPError as e:
            logger.error("ERP API request error", endpoint=endpoint, error=str(e))
            raise ErpApiError(
                f"ERP API request error - Endpoint: {endpoint}: {e}", endpoint=endpoint
            ) from e

        if response.status_code == 404:
            raise ErpNotFoundError(
                f"ERP resource not found - Endpoint: {endpoint}",
                endpoint=endpoint,
                status_code=404,
            )
        if response.is_error:
            try:
                data = response.json()
            except ValueError:
                data = {"message": response.text}
            raise ErpApiError(
                f"ERP API request failed: {response.status_code} - Endpoint: {endpoint}",
                endpoint=endpoint,
                status_code=response.status_code,
                data=data,
            )
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def fetch_categories(self, page: int, page_size: int) -> list[dict[str, Any]]:
        """Fetch one page of categories (Dolibarr pages are zero based)."""
        result = await self._request(
            "/categories", {"limit": page_size, "page": page, "type": "product"}
        )
        return result or []

    async def fetch_products(self, page: int, page_size: int) -> list[dict[str, Any]]:
        """Fetch one page of products sorted by reference."""
        result = await self._request(
            "/products",
            {"sortfield": "t.ref", "sortorder": "ASC", "limit": page_size, "page": page},
        )
        return result or []

    async def fetch_product_by_id(self, external_id: str) -> dict[str, Any]:
        """Fetch a product with its attached documents as ``photos``."""
        product = await self._request(f"/products/{external_id}") or {}
        try:
            documents = await self._request(
                "/documents", {"modulepart": "product", "id": external_id}
            )
        except ErpNotFoundError:
            documents = []
        product["photos"] = documents or []
        return product

    async def fetch_product_variants(self, external_id: str) -> list[dict[str, Any]]:
        result = await self._request(f"/products/{external_id}/variants")
        return result or []

    async def fetch_product_stock(self, external_id: str) -> dict[str, Any]:
        result = await self._request(f"/products/{external_id}/stock")
        return result or {}

    async def fetch_product_categories(self, external_id: str) -> list[dict[str, Any]]:
        result = await self._request(f"/categories/object/product/{external_id}")
        return result or []
