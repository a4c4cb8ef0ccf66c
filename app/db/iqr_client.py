"""
IQ Reseller (IQR) API client.

Handles session management and the API calls used by the connector:
paginated sales-order retrieval and tracking writeback through the
sales-order user-defined fields endpoint.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import aiohttp
from aiohttp import ClientTimeout
from pydantic import ValidationError

from app.api.v1.schemas.iqr_schemas import (
    IQRLineItem,
    IQROrder,
    IQRRawOrder,
    IQRSession,
    IQRTrackingUpdate,
    ShippingAddress,
)
from app.core.config import Settings, get_settings
from app.core.logging_config import log_api_call
from app.utils.error_handler import IQRAPIException, IQRAuthenticationException
from app.utils.order_filters import filter_by_status, filter_by_window
from app.utils.single_flight import SingleFlight

logger = logging.getLogger(__name__)

SESSION_ENDPOINT = "/api/IntegrationAPI/Session"
ORDERS_ENDPOINT = "/webapi.svc/SO/JSON/GetSOs"
TRACKING_ENDPOINT = "/webapi.svc/SO/UDFS/JSON"
SESSION_HEADER = "iqr-session-token"


def normalize_raw_order(raw: IQRRawOrder, default_country: str = "US") -> IQROrder:
    """
    Derive the normalized order from the raw IQR shape.

    Args:
        raw: Order as returned by GetSOs
        default_country: Country used when the order has none

    Returns:
        IQROrder: Normalized order keeping `raw` for traceability
    """
    line_items = [
        IQRLineItem(
            sku=detail.item,
            name=(detail.description or "").strip() or detail.item,
            quantity=detail.quantity,
            unit_price=detail.unitprice,
            weight=None,
        )
        for detail in raw.details
    ]

    return IQROrder(
        order_id=str(raw.so),
        order_number=str(raw.so),
        order_date=raw.saledate,
        customer_name=raw.shiptocompany or raw.clientid or "",
        customer_email=raw.shiptoemail or None,
        shipping_address=ShippingAddress(
            street1=raw.shiptoaddress1 or "",
            street2=raw.shiptoaddress2 or raw.shiptoaddress3 or None,
            city=raw.shiptocity or "",
            state=raw.shiptostate or "",
            postal_code=raw.shiptopostalcode or "",
            country=raw.shiptocountry or default_country,
            phone=raw.shiptophone or None,
        ),
        line_items=line_items,
        status=(raw.status or "").strip(),
        raw=raw,
    )


class IQRClient:
    """
    Client for the IQ Reseller integration API.

    Session tokens are cached until 90% of their advertised lifetime and
    concurrent authentication attempts share a single in-flight request.
    """

    def __init__(self, settings: Optional[Settings] = None):
        """Initialize the IQR client."""
        self.settings = settings or get_settings()
        self.api_key = self.settings.IQR_API_KEY
        self.auth_url = self.settings.IQR_AUTH_URL.rstrip("/")
        self.api_base_url = self.settings.IQR_API_BASE_URL.rstrip("/")

        self.session: Optional[aiohttp.ClientSession] = None
        self._iqr_session: Optional[IQRSession] = None
        self._auth_flight: SingleFlight[None] = SingleFlight("iqr_authentication")

        self.stats = {
            "auth_requests": 0,
            "reauthentications": 0,
            "requests": 0,
            "error_pages": 0,
        }

    async def _get_http_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=ClientTimeout(total=self.settings.IQR_REQUEST_TIMEOUT),
                headers={
                    "Content-Type": "application/json",
                    "Content-Encoding": "UTF8",
                    "Accept": "application/json",
                },
            )
        return self.session

    async def close(self):
        """Close the HTTP session."""
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None

    # === SESSION MANAGEMENT ===

    def is_session_valid(self) -> bool:
        return self._iqr_session is not None and self._iqr_session.is_valid(datetime.now(timezone.utc))

    @property
    def session_token(self) -> Optional[str]:
        return self._iqr_session.token if self._iqr_session else None

    async def authenticate(self) -> None:
        """
        Ensure a valid session exists.

        Returns immediately while the cached token is valid; otherwise every
        concurrent caller awaits the same authentication request.

        Raises:
            IQRAuthenticationException: If IQR rejects the API key or is unreachable
        """
        if self.is_session_valid():
            return
        await self._auth_flight.do(self._create_session)

    async def _create_session(self) -> None:
        if self.is_session_valid():
            return

        url = f"{self.auth_url}{SESSION_ENDPOINT}"
        http = await self._get_http_session()
        self.stats["auth_requests"] += 1
        start_time = time.time()

        logger.info("🔑 Authenticating with IQR API...")
        try:
            async with http.post(url, json={"APIToken": self.api_key}) as response:
                log_api_call("POST", url, response.status, time.time() - start_time, service="iqr")

                if response.status >= 400:
                    error_text = await response.text()
                    raise IQRAuthenticationException(
                        f"IQR authentication failed: {response.status} {error_text[:200]}",
                        api_response_code=response.status,
                    )

                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise IQRAuthenticationException(f"IQR authentication request failed: {e}") from e
        except ValueError as e:
            raise IQRAuthenticationException(f"Invalid IQR authentication response: {e}") from e

        token = data.get("Data") if isinstance(data, dict) else None
        if not token:
            raise IQRAuthenticationException("IQR authentication response did not include a session token")

        self._iqr_session = IQRSession(
            token=str(token),
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=self.settings.iqr_session_lifetime_seconds),
        )
        logger.info("✅ IQR session created and cached")

    def _invalidate_session(self, token: Optional[str] = None) -> None:
        # Only drop the token that was rejected; a concurrent caller may already hold a fresh one
        if self._iqr_session and (token is None or self._iqr_session.token == token):
            self._iqr_session = None

    async def refresh_session(self) -> None:
        """Force a new session, used during long paginated fetches."""
        self._invalidate_session()
        await self.authenticate()

    async def end_session(self) -> None:
        """
        End the current session server-side and clear local state.

        Failures are logged and never raised: a failed logout must not
        fail the surrounding operation. A pending authentication is awaited
        first so the session it creates is ended too.
        """
        if self._auth_flight.in_flight:
            await self._auth_flight.wait()

        if self._iqr_session is None:
            return

        token = self._iqr_session.token
        self._iqr_session = None
        url = f"{self.auth_url}{SESSION_ENDPOINT}"

        try:
            http = await self._get_http_session()
            start_time = time.time()
            async with http.delete(
                url, headers={"Authorization": f"Bearer {token}", SESSION_HEADER: token}
            ) as response:
                log_api_call("DELETE", url, response.status, time.time() - start_time, service="iqr")
                if response.status >= 400:
                    logger.warning(f"⚠️ IQR session end returned {response.status}")
                else:
                    logger.info("IQR session ended")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"⚠️ Failed to end IQR session: {e}")

    # === REQUESTS ===

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Any] = None,
    ) -> Any:
        """
        Make an authenticated API request.

        A 401 triggers exactly one re-authentication and retry; a second 401
        surfaces as IQRAuthenticationException.

        Raises:
            IQRAPIException: On timeout, transport errors and non-401 error statuses
            IQRAuthenticationException: When the session cannot be (re)established
        """
        await self.authenticate()

        url = f"{self.api_base_url}{endpoint}"
        http = await self._get_http_session()
        reauthenticated = False

        while True:
            token = self.session_token
            if token is None:
                await self.authenticate()
                token = self.session_token

            self.stats["requests"] += 1
            start_time = time.time()

            try:
                async with http.request(
                    method, url, params=params, json=json_body, headers={SESSION_HEADER: token or ""}
                ) as response:
                    log_api_call(method, url, response.status, time.time() - start_time, service="iqr")

                    if response.status == 401:
                        if reauthenticated:
                            raise IQRAuthenticationException(
                                "IQR rejected the session after re-authentication", api_response_code=401
                            )
                        logger.info("🔑 IQR session expired (401), re-authenticating...")
                        self.stats["reauthentications"] += 1
                        self._invalidate_session(token)
                        reauthenticated = True
                        await self.authenticate()
                        continue

                    if response.status >= 400:
                        error_text = await response.text()
                        raise IQRAPIException(
                            f"IQR API error: {response.status} {error_text[:200]}",
                            api_response_code=response.status,
                            endpoint=endpoint,
                        )

                    return await response.json(content_type=None)

            except asyncio.TimeoutError as e:
                raise IQRAPIException(
                    "Request timeout - IQR API took too long to respond", endpoint=endpoint
                ) from e
            except aiohttp.ClientError as e:
                raise IQRAPIException(f"IQR network error: {e}", endpoint=endpoint) from e
            except ValueError as e:
                raise IQRAPIException(f"Invalid JSON from IQR: {e}", endpoint=endpoint) from e

    # === ORDERS ===

    def _parse_page(self, data: Any, page: int) -> List[IQRRawOrder]:
        if isinstance(data, dict):
            data = data.get("Data") or []
        if not isinstance(data, list):
            return []

        orders = []
        for item in data:
            try:
                orders.append(IQRRawOrder.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping malformed IQR order on page {page}: {e.error_count()} validation errors")
        return orders

    async def get_orders(
        self,
        status: Optional[str] = None,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> List[IQROrder]:
        """
        Fetch every sales order visible upstream.

        Pages are walked from 0 up to IQR_MAX_PAGE. Fetching stops early once
        IQR_MAX_EMPTY_PAGES consecutive pages come back empty. Pages that fail
        are logged and skipped without counting as empty. The session is
        refreshed every IQR_SESSION_REFRESH_PAGES pages.

        Args:
            status: Optional status to keep (case-insensitive)
            from_date: Optional inclusive lower bound on sale date
            to_date: Optional inclusive upper bound on sale date

        Returns:
            List[IQROrder]: Normalized orders (order not guaranteed)
        """
        settings = self.settings
        raw_orders: List[IQRRawOrder] = []
        consecutive_empty_pages = 0
        error_pages = 0

        logger.info(f"📥 Fetching IQR sales orders (pages 0-{settings.IQR_MAX_PAGE})...")

        for page in range(settings.IQR_MAX_PAGE + 1):
            if consecutive_empty_pages >= settings.IQR_MAX_EMPTY_PAGES:
                logger.debug(f"Stopping at page {page}: {consecutive_empty_pages} consecutive empty pages")
                break

            if page > 0 and page % settings.IQR_SESSION_REFRESH_PAGES == 0:
                logger.info(f"🔑 Page {page}: refreshing IQR session to prevent expiry")
                await self.refresh_session()

            try:
                data = await self._request(
                    "GET",
                    ORDERS_ENDPOINT,
                    params={"Page": page, "PageSize": settings.IQR_PAGE_SIZE, "SortBy": 0},
                )
            except IQRAPIException as e:
                # Known intermittent failures on specific pages: skip, do not count as empty
                error_pages += 1
                self.stats["error_pages"] += 1
                logger.warning(f"⚠️ IQR page {page} failed (skipping): {e.message[:100]}")
                continue

            page_orders = self._parse_page(data, page)
            if not page_orders:
                consecutive_empty_pages += 1
                continue

            consecutive_empty_pages = 0
            raw_orders.extend(page_orders)

            if page % 100 == 0:
                logger.info(f"Page {page}: {len(raw_orders)} orders so far")

        logger.info(f"✅ IQR fetch complete: {len(raw_orders)} orders, {error_pages} error pages skipped")

        orders = [normalize_raw_order(raw, settings.DEFAULT_COUNTRY_CODE) for raw in raw_orders]

        if status:
            orders = filter_by_status(orders, [status])

        if from_date or to_date:
            orders = filter_by_window(orders, from_date, to_date)

        return orders

    # === TRACKING ===

    async def update_order_tracking(self, update: IQRTrackingUpdate) -> None:
        """
        Write tracking data into the order's user-defined fields.

        userdefined1-4 hold tracking number, carrier, shipping method and ship date.
        """
        logger.info(f"📮 Updating tracking for IQR order {update.order_id}")

        await self._request(
            "POST",
            TRACKING_ENDPOINT,
            json_body={
                "sos": [
                    {
                        "soid": update.order_id,
                        "userdefined1": update.tracking_number,
                        "userdefined2": update.carrier,
                        "userdefined3": update.shipping_method,
                        "userdefined4": update.ship_date,
                    }
                ]
            },
        )

        logger.info(f"✅ Tracking updated for IQR order {update.order_id}")

    def get_statistics(self) -> Dict[str, Any]:
        return {**self.stats, "session_valid": self.is_session_valid()}


# Singleton instance for global use
_iqr_client: Optional[IQRClient] = None


def get_iqr_client() -> IQRClient:
    """
    Get or create the shared IQR client.

    Returns:
        IQRClient: Shared client instance
    """
    global _iqr_client
    if _iqr_client is None:
        _iqr_client = IQRClient()
    return _iqr_client


async def close_iqr_client():
    """Close the shared IQR client."""
    global _iqr_client
    if _iqr_client is not None:
        await _iqr_client.close()
        _iqr_client = None
