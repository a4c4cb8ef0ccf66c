"""
ShipStation REST API client.

Covers order upserts, shipment listing and store lookup. Authentication is
HTTP Basic with the API key/secret pair. A 429 response is honored by
waiting for Retry-After and retrying that request once.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import aiohttp
from aiohttp import BasicAuth, ClientTimeout

from app.api.v1.schemas.shipstation_schemas import ShipStationOrder, ShipStationShipment, ShipStationStore
from app.core.config import Settings, get_settings
from app.core.logging_config import log_api_call
from app.utils.error_handler import RateLimitException, ShipStationAPIException

logger = logging.getLogger(__name__)

# Maximum page size accepted by the shipments endpoint
SHIPMENTS_PAGE_SIZE = 500


class ShipStationClient:
    """
    Client for the ShipStation v1 REST API.
    """

    def __init__(self, settings: Optional[Settings] = None):
        """Initialize the ShipStation client."""
        self.settings = settings or get_settings()
        self.api_base_url = self.settings.SHIPSTATION_API_BASE_URL.rstrip("/")
        self.auth = BasicAuth(self.settings.SHIPSTATION_API_KEY, self.settings.SHIPSTATION_API_SECRET)

        self.session: Optional[aiohttp.ClientSession] = None
        self.stats = {"requests": 0, "rate_limited": 0}

    async def _get_http_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=ClientTimeout(total=self.settings.SHIPSTATION_REQUEST_TIMEOUT),
                auth=self.auth,
                headers={"Content-Type": "application/json", "Accept": "application/json"},
            )
        return self.session

    async def close(self):
        """Close the HTTP session."""
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None

    def _parse_retry_after(self, value: Optional[str]) -> int:
        try:
            return max(int(value), 0) if value is not None else self.settings.SHIPSTATION_DEFAULT_RETRY_AFTER
        except ValueError:
            return self.settings.SHIPSTATION_DEFAULT_RETRY_AFTER

    async def _send(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Any] = None,
    ) -> Any:
        """Issue one request; raises RateLimitException on 429."""
        url = f"{self.api_base_url}{endpoint}"
        http = await self._get_http_session()
        self.stats["requests"] += 1
        start_time = time.time()

        try:
            async with http.request(method, url, params=params, json=json_body) as response:
                log_api_call(method, url, response.status, time.time() - start_time, service="shipstation")

                if response.status == 429:
                    retry_after = self._parse_retry_after(response.headers.get("Retry-After"))
                    raise RateLimitException(
                        f"ShipStation rate limit exceeded, retry after {retry_after}s",
                        retry_after=retry_after,
                        endpoint=endpoint,
                    )

                if response.status >= 400:
                    error_text = await response.text()
                    raise ShipStationAPIException(
                        f"ShipStation API error: {response.status} - {error_text[:300]}",
                        api_response_code=response.status,
                        endpoint=endpoint,
                    )

                text = await response.text()
                if not text.strip():
                    return {}
                return await response.json(content_type=None)

        except asyncio.TimeoutError as e:
            raise ShipStationAPIException("ShipStation request timed out", endpoint=endpoint) from e
        except aiohttp.ClientError as e:
            raise ShipStationAPIException(f"ShipStation network error: {e}", endpoint=endpoint) from e
        except ValueError as e:
            raise ShipStationAPIException(f"Invalid JSON from ShipStation: {e}", endpoint=endpoint) from e

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Any] = None,
    ) -> Any:
        """
        Make an authenticated request, honoring one 429 wait-and-retry.

        The rate-limit retry is not part of any generic retry budget; a second
        consecutive 429 propagates as RateLimitException.
        """
        try:
            return await self._send(method, endpoint, params, json_body)
        except RateLimitException as e:
            self.stats["rate_limited"] += 1
            logger.warning(f"⏳ ShipStation rate limited on {endpoint}, waiting {e.retry_after}s")
            await asyncio.sleep(e.retry_after)
            return await self._send(method, endpoint, params, json_body)

    # === ORDERS ===

    async def create_order(self, order: ShipStationOrder) -> Dict[str, Any]:
        """Create or update an order (upsert by orderKey)."""
        return await self._request("POST", "/orders/createorder", json_body=order.to_payload())

    async def create_orders(self, orders: List[ShipStationOrder]) -> Dict[str, Any]:
        """Create or update multiple orders in one call."""
        return await self._request("POST", "/orders/createorders", json_body=[o.to_payload() for o in orders])

    async def get_order(self, order_id: int) -> Dict[str, Any]:
        return await self._request("GET", f"/orders/{order_id}")

    # === SHIPMENTS ===

    async def list_shipments(
        self,
        order_number: Optional[str] = None,
        create_date_start: Optional[str] = None,
        create_date_end: Optional[str] = None,
    ) -> List[ShipStationShipment]:
        """
        List shipments with optional filters, walking every result page.

        Returns:
            List[ShipStationShipment]: Shipments across all pages
        """
        filters = {
            key: value
            for key, value in {
                "orderNumber": order_number,
                "createDateStart": create_date_start,
                "createDateEnd": create_date_end,
            }.items()
            if value
        }

        shipments: List[ShipStationShipment] = []
        page = 1
        while True:
            params = {**filters, "page": page, "pageSize": SHIPMENTS_PAGE_SIZE}
            data = await self._request("GET", "/shipments", params=params)
            shipments.extend(ShipStationShipment.model_validate(item) for item in (data.get("shipments") or []))

            total_pages = data.get("pages") or 1
            if page >= total_pages:
                break
            page += 1

        if page > 1:
            logger.debug(f"Fetched {len(shipments)} shipments across {page} pages")
        return shipments

    async def get_shipment_by_order_number(self, order_number: str) -> Optional[ShipStationShipment]:
        shipments = await self.list_shipments(order_number=order_number)
        return shipments[0] if shipments else None

    # === STORES ===

    async def list_stores(self) -> List[ShipStationStore]:
        data = await self._request("GET", "/stores")
        if not isinstance(data, list):
            return []
        return [ShipStationStore.model_validate(item) for item in data]

    async def get_store_by_name(self, store_name: str) -> Optional[ShipStationStore]:
        """
        Find a store by name (case-insensitive).

        Returns:
            ShipStationStore or None if no store matches
        """
        wanted = store_name.strip().lower()
        for store in await self.list_stores():
            if store.storeName.strip().lower() == wanted:
                return store
        return None

    def get_statistics(self) -> Dict[str, Any]:
        return dict(self.stats)


# Singleton instance for global use
_shipstation_client: Optional[ShipStationClient] = None


def get_shipstation_client() -> ShipStationClient:
    """
    Get or create the shared ShipStation client.

    Returns:
        ShipStationClient: Shared client instance
    """
    global _shipstation_client
    if _shipstation_client is None:
        _shipstation_client = ShipStationClient()
    return _shipstation_client


async def close_shipstation_client():
    """Close the shared ShipStation client."""
    global _shipstation_client
    if _shipstation_client is not None:
        await _shipstation_client.close()
        _shipstation_client = None
