"""Kroger public API adapter.

Fetches digital coupons and promotions from the Kroger API using the OAuth2
client-credentials flow.
Documentation: https://developer.kroger.com/reference/
"""

import asyncio
import time
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional

import httpx
import structlog

from grocery_deals.config import settings
from grocery_deals.core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    NetworkError,
    SourceFetchError,
)
from grocery_deals.models.enums import DealType, StoreChain
from grocery_deals.scrapers.base import BaseAPIAdapter, CanonicalDeal
from grocery_deals.scrapers.utils.normalizer import (
    calculate_discount_percentage,
    round_cents,
    to_decimal,
)
from grocery_deals.scrapers.utils.rate_limiter import FixedWindowRateLimiter
from grocery_deals.scrapers.utils.retry import http_retrying


logger = structlog.get_logger()

_BOGO_DISCOUNT = Decimal("50")


def _parse_date(raw: str) -> datetime:
    """Parse the API's ISO-8601 timestamps into aware UTC datetimes."""
    parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class KrogerAdapter(BaseAPIAdapter):
    """Kroger API adapter for digital coupons and weekly promotions.

    Requires KROGER_CLIENT_ID and KROGER_CLIENT_SECRET. The bearer token and
    the request window are per instance; one adapter should be shared by
    everything that talks to Kroger so the rate limit holds.
    """

    store_chain = StoreChain.KROGER

    AUTH_PATH = "/connect/oauth2/token"
    AUTH_SCOPE = "product.compact"
    TOKEN_EXPIRY_BUFFER_SECONDS = 60
    PAGE_LIMIT = 50
    RATE_LIMIT_WINDOW_SECONDS = 60.0

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        rate_limiter: Optional[FixedWindowRateLimiter] = None,
        base_url: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
        retry_wait=None,
        timeout: float = 30.0,
    ):
        """Initialize the Kroger adapter.

        Args:
            client_id: OAuth2 client id, defaults to settings.KROGER_CLIENT_ID
            client_secret: OAuth2 client secret, defaults to settings.KROGER_CLIENT_SECRET
            http_client: Optional injected httpx.AsyncClient
            rate_limiter: Optional injected request governor
            base_url: API root, defaults to settings.KROGER_API_BASE_URL
            clock: Monotonic clock used for token expiry
            retry_wait: tenacity wait strategy for transport retries
            timeout: Per-request timeout in seconds

        Raises:
            ConfigurationError: If credentials are missing
        """
        super().__init__(http_client=http_client)
        self.client_id = client_id if client_id is not None else settings.KROGER_CLIENT_ID
        self.client_secret = (
            client_secret if client_secret is not None else settings.KROGER_CLIENT_SECRET
        )
        if not self.client_id or not self.client_secret:
            raise ConfigurationError("Kroger API credentials not found in environment variables")

        self.base_url = (base_url or settings.KROGER_API_BASE_URL).rstrip("/")
        self.rate_limiter = rate_limiter or FixedWindowRateLimiter(
            max_requests=settings.KROGER_RATE_LIMIT_PER_MINUTE,
            window_seconds=self.RATE_LIMIT_WINDOW_SECONDS,
        )
        self._owns_client = http_client is None
        self._timeout = timeout
        self._clock = clock
        self._retry_wait = retry_wait
        self._access_token: Optional[str] = None
        self._token_expires_at: Optional[float] = None
        self._auth_lock = asyncio.Lock()

    @property
    def source_url(self) -> str:
        return self.base_url

    def _get_client(self) -> httpx.AsyncClient:
        if self.http_client is None:
            self.http_client = httpx.AsyncClient(
                timeout=self._timeout,
                headers={"Accept": "application/json"},
            )
        return self.http_client

    async def aclose(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._owns_client and self.http_client is not None:
            await self.http_client.aclose()
            self.http_client = None

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def _token_is_valid(self) -> bool:
        return (
            self._access_token is not None
            and self._token_expires_at is not None
            and self._clock() < self._token_expires_at
        )

    def invalidate_token(self) -> None:
        """Drop the cached token so the next call re-authenticates."""
        self._access_token = None
        self._token_expires_at = None

    async def _authenticate(self) -> None:
        """Exchange client credentials for a bearer token.

        Raises:
            AuthenticationError: If the exchange fails for any reason
        """
        client = self._get_client()
        try:
            response = await client.post(
                f"{self.base_url}{self.AUTH_PATH}",
                auth=(self.client_id, self.client_secret),
                data={"grant_type": "client_credentials", "scope": self.AUTH_SCOPE},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=10.0,
            )
            response.raise_for_status()
            payload = response.json()
            token = payload["access_token"]
            expires_in = float(payload.get("expires_in", 0))
        except (httpx.HTTPError, KeyError, ValueError, TypeError) as e:
            logger.error("kroger_authentication_failed", error=str(e))
            raise AuthenticationError("Kroger") from e

        self._access_token = token
        self._token_expires_at = self._clock() + expires_in - self.TOKEN_EXPIRY_BUFFER_SECONDS
        logger.info("kroger_token_refreshed", expires_in=expires_in)

    async def _ensure_valid_token(self) -> str:
        """Authenticate lazily: on first use or once the cached token expired."""
        async with self._auth_lock:
            if not self._token_is_valid():
                await self._authenticate()
            return self._access_token

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def _send(self, path: str, params: Dict[str, Any]) -> httpx.Response:
        """Send one GET through the governor, re-authenticating once on 401."""
        client = self._get_client()
        url = f"{self.base_url}{path}"

        await self.rate_limiter.acquire()
        token = await self._ensure_valid_token()
        response = await client.get(url, params=params, headers={"Authorization": f"Bearer {token}"})

        if response.status_code == 401:
            logger.warning("kroger_token_rejected", path=path)
            self.invalidate_token()
            token = await self._ensure_valid_token()
            await self.rate_limiter.acquire()
            response = await client.get(
                url, params=params, headers={"Authorization": f"Bearer {token}"}
            )
            if response.status_code == 401:
                raise AuthenticationError("Kroger", "rejected a freshly issued token")

        return response

    async def _call_api(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Call a Kroger endpoint and return the decoded JSON body.

        Transport errors and timeouts are retried with exponential backoff.

        Raises:
            AuthenticationError: If credentials are rejected
            NetworkError: If the API stays unreachable after retries
            SourceFetchError: On error statuses or a body that is not JSON
        """
        try:
            async for attempt in http_retrying(wait=self._retry_wait):
                with attempt:
                    response = await self._send(path, params)
        except httpx.TransportError as e:
            logger.error("kroger_api_network_error", path=path, error=str(e))
            raise NetworkError("Kroger", str(e) or type(e).__name__) from e

        if response.is_error:
            logger.error(
                "kroger_api_http_error",
                path=path,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise SourceFetchError("Kroger", f"HTTP {response.status_code} from {path}")

        try:
            return response.json()
        except ValueError as e:
            raise SourceFetchError("Kroger", f"invalid JSON from {path}") from e

    def _list_params(self, location_id: Optional[str], limit: int = PAGE_LIMIT) -> Dict[str, Any]:
        params: Dict[str, Any] = {"filter.limit": limit}
        if location_id:
            params["filter.locationId"] = location_id
        return params

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    async def fetch_digital_coupons(self, location_id: Optional[str] = None) -> List[CanonicalDeal]:
        """Fetch digital coupons, optionally scoped to a Kroger location id."""
        data = await self._call_api("/coupons", self._list_params(location_id))
        try:
            deals = [self._transform_coupon(coupon) for coupon in data["data"]]
        except (KeyError, TypeError, ValueError, InvalidOperation) as e:
            logger.error("kroger_coupon_response_malformed", error=str(e))
            raise SourceFetchError("Kroger", f"malformed coupon response: {e}") from e

        logger.info("kroger_coupons_fetched", count=len(deals))
        return deals

    async def fetch_promotions(self, location_id: Optional[str] = None) -> List[CanonicalDeal]:
        """Fetch promotions, expanding each into one deal per line item."""
        data = await self._call_api("/promotions", self._list_params(location_id))
        try:
            deals = [
                deal
                for promotion in data["data"]
                for deal in self._transform_promotion(promotion)
            ]
        except (KeyError, TypeError, ValueError, InvalidOperation) as e:
            logger.error("kroger_promotion_response_malformed", error=str(e))
            raise SourceFetchError("Kroger", f"malformed promotion response: {e}") from e

        logger.info("kroger_promotions_fetched", count=len(deals))
        return deals

    async def fetch_deals(self, location_id: Optional[str] = None) -> List[CanonicalDeal]:
        """Fetch coupons and promotions concurrently.

        Either endpoint may fail without losing the other's results. If both
        fail there is nothing to return, so the coupon error is raised.
        """
        coupons, promotions = await asyncio.gather(
            self.fetch_digital_coupons(location_id),
            self.fetch_promotions(location_id),
            return_exceptions=True,
        )

        deals: List[CanonicalDeal] = []
        for label, outcome in (("coupons", coupons), ("promotions", promotions)):
            if isinstance(outcome, BaseException):
                logger.error("kroger_endpoint_failed", endpoint=label, error=str(outcome))
            else:
                deals.extend(outcome)

        if isinstance(coupons, BaseException) and isinstance(promotions, BaseException):
            raise coupons

        logger.info("kroger_fetch_complete", total_deals=len(deals))
        return deals

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    def _transform_coupon(self, coupon: Dict[str, Any]) -> CanonicalDeal:
        """Map a coupon to a deal, deriving prices from the coupon value type."""
        minimum_purchase = coupon.get("minimumPurchase")
        original = to_decimal(minimum_purchase or 0)
        value = to_decimal(coupon.get("value", 0))
        value_type = coupon.get("valueType")

        sale = original
        discount = Decimal("0")
        deal_type = DealType.COUPON

        if value_type == "DOLLAR_OFF":
            sale = max(Decimal("0"), original - value)
            discount = value / original * 100 if original > 0 else Decimal("0")
        elif value_type == "PERCENT_OFF":
            discount = value
            sale = original * (1 - value / 100)
        elif value_type == "BOGO":
            deal_type = DealType.BOGO
            discount = _BOGO_DISCOUNT
            sale = original * Decimal("0.5")

        image_url = None
        images = coupon.get("images") or []
        if images:
            image_url = next(
                (s.get("url") for s in images[0].get("sizes", []) if s.get("size") == "medium"),
                None,
            )

        return CanonicalDeal(
            external_id=f"kroger-coupon-{coupon['couponId']}",
            store_chain=self.store_chain,
            title=coupon.get("shortDescription") or coupon.get("description") or "",
            description=coupon.get("description") or "",
            original_price=original,
            sale_price=sale,
            discount_percentage=round_cents(discount),
            deal_type=deal_type,
            valid_from=_parse_date(coupon["startDate"]),
            valid_until=_parse_date(coupon["endDate"]),
            category=coupon.get("categoryName") or "General",
            item_ids=[item["upc"] for item in coupon.get("items") or []],
            restrictions=f"Minimum purchase: ${original:.2f}" if minimum_purchase else None,
            image_url=image_url,
            source_url=self.source_url,
        )

    def _transform_promotion(self, promotion: Dict[str, Any]) -> List[CanonicalDeal]:
        """Expand a promotion into one deal per UPC line item."""
        deal_type = DealType.BOGO if promotion.get("promotionType") == "BOGO" else DealType.DISCOUNT
        valid_from = _parse_date(promotion["startDate"])
        valid_until = _parse_date(promotion["endDate"])
        headline = promotion.get("shortDescription") or promotion.get("description") or ""

        deals = []
        for item in promotion.get("items", []):
            original = to_decimal(item["price"]["regular"])
            sale = to_decimal(item["price"]["promo"])
            deals.append(
                CanonicalDeal(
                    external_id=f"kroger-promo-{promotion['promotionId']}-{item['upc']}",
                    store_chain=self.store_chain,
                    title=item.get("description") or "",
                    description=f"{headline} - {item.get('brand', '')} {item.get('size', '')}".strip(),
                    original_price=original,
                    sale_price=sale,
                    discount_percentage=calculate_discount_percentage(original, sale),
                    deal_type=deal_type,
                    valid_from=valid_from,
                    valid_until=valid_until,
                    category="General",
                    item_ids=[item["upc"]],
                    source_url=self.source_url,
                )
            )
        return deals

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    async def health_check(self) -> bool:
        """Authenticate and make a one-item coupon request.

        Returns:
            True if the API answered, False otherwise
        """
        try:
            await self._call_api("/coupons", {"filter.limit": 1})
            logger.info("kroger_health_check_passed")
            return True
        except Exception as e:
            logger.error("kroger_health_check_failed", error=str(e))
            return False

    def get_rate_limit_status(self) -> Dict[str, Any]:
        """Current request count, window start and per-window maximum."""
        return self.rate_limiter.status()
