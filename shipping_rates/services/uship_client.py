"""
uShip LTL Connect API Client

LTL freight quoting through uShip's LTL Connect API. Authentication is a
single API key sent in the X-USHIP-API-KEY header (no OAuth).

All external API calls are logged; failures raise UShipAPIError.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx

from shipping_rates.core.config import settings
from shipping_rates.core.exceptions import FreightRateError, ProviderNotConfiguredError

logger = logging.getLogger(__name__)

USHIP_API_URL = "https://api.uship.com"

LTL_QUOTES_PATH = "/v2/ltl/quotes"

DEFAULT_TIMEOUT_SECONDS = 30.0

# Handling units
HANDLING_UNIT_PALLET_48X40 = "Pallets48x40Inches"

# Location types
LOCATION_BUSINESS_WITH_DOCK = "BusinessWithLoadingDockOrForklift"
LOCATION_BUSINESS_WITHOUT_DOCK = "BusinessWithoutLoadingDockOrForklift"
LOCATION_RESIDENCE = "Residence"

# Accessorials
ACCESSORIAL_PICKUP_LIFTGATE = "PickupLiftgateRequired"
ACCESSORIAL_DELIVERY_LIFTGATE = "DeliveryLiftgateRequired"
ACCESSORIAL_DELIVERY_INSIDE = "DeliveryInside"
ACCESSORIAL_HAZMAT = "Hazmat"


@dataclass
class UShipCredentials:
    """uShip API credentials."""
    api_key: str
    base_url: str = USHIP_API_URL


@dataclass
class UShipItem:
    """One handling unit in an LTL quote request."""
    weight: float
    length: float
    width: float
    height: float
    description: str = "Commercial goods"
    handling_unit: str = HANDLING_UNIT_PALLET_48X40
    quantity: int = 1

    def to_uship_format(self) -> Dict:
        return {
            "handlingUnit": self.handling_unit,
            "quantity": self.quantity,
            "height": round(self.height, 2),
            "width": round(self.width, 2),
            "length": round(self.length, 2),
            "weight": round(self.weight, 2),
            "description": self.description,
        }


@dataclass
class UShipQuoteRequest:
    """LTL Connect quote request."""
    items: List[UShipItem]
    origin_postal_code: str
    destination_postal_code: str
    earliest_pickup_date: str
    latest_pickup_date: str
    origin_location_type: str = LOCATION_BUSINESS_WITH_DOCK
    destination_location_type: str = LOCATION_BUSINESS_WITHOUT_DOCK
    origin_address: Optional[str] = None
    origin_city: Optional[str] = None
    origin_state: Optional[str] = None
    destination_address: Optional[str] = None
    destination_city: Optional[str] = None
    destination_state: Optional[str] = None
    accessorials: List[str] = field(default_factory=list)

    def to_uship_format(self) -> Dict:
        request = {
            "items": [item.to_uship_format() for item in self.items],
            "originPostalCode": self.origin_postal_code,
            "originLocationType": self.origin_location_type,
            "destinationPostalCode": self.destination_postal_code,
            "destinationLocationType": self.destination_location_type,
            "earliestPickupDate": self.earliest_pickup_date,
            "latestPickupDate": self.latest_pickup_date,
        }

        optional = {
            "originAddress": self.origin_address,
            "originCity": self.origin_city,
            "originState": self.origin_state,
            "destinationAddress": self.destination_address,
            "destinationCity": self.destination_city,
            "destinationState": self.destination_state,
        }
        request.update({k: v for k, v in optional.items() if v})

        if self.accessorials:
            request["quoteRequestAccessorials"] = list(self.accessorials)

        return request


@dataclass
class UShipQuote:
    """One carrier quote from the LTL Connect response."""
    carrier_id: str
    carrier_name: str
    price_total: float
    service_type: Optional[str] = None
    transit_days: Optional[int] = None
    estimated_delivery_date: Optional[str] = None
    guaranteed_delivery: bool = False
    quote_id: Optional[str] = None

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> Optional["UShipQuote"]:
        """Parse one quote; None when its price is missing, unparseable or not positive."""
        carrier_name = data.get("carrierName") or "LTL Carrier"
        price = data.get("price") or {}
        try:
            total = float(price.get("total"))
        except (TypeError, ValueError):
            logger.warning(f"Dropping {carrier_name} LTL quote with unparseable price {price.get('total')!r}")
            return None
        if total <= 0:
            logger.warning(f"Dropping {carrier_name} LTL quote with non-positive price {total}")
            return None

        return cls(
            carrier_id=str(data.get("carrierId") or ""),
            carrier_name=carrier_name,
            price_total=total,
            service_type=data.get("serviceType"),
            transit_days=data.get("transitDays") or None,
            estimated_delivery_date=data.get("estimatedDeliveryDate"),
            guaranteed_delivery=bool(data.get("guaranteedDelivery")),
            quote_id=data.get("quoteId"),
        )


class UShipAPIError(FreightRateError):
    """uShip API error with details."""

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict] = None):
        super().__init__(message, provider="uship", code=code, details=details or {})


def default_pickup_dates(now: Optional[datetime] = None) -> Tuple[str, str]:
    """Pickup window 3 to 5 days out, as ISO timestamps without fractions."""
    now = now or datetime.now(timezone.utc)
    earliest = (now + timedelta(days=3)).replace(microsecond=0, tzinfo=None)
    latest = (now + timedelta(days=5)).replace(microsecond=0, tzinfo=None)
    return earliest.isoformat(), latest.isoformat()


class UShipClient:
    """
    uShip LTL Connect API Client.

    Pass `http_client` to share a connection pool or to inject a transport
    in tests; otherwise one is created lazily and closed by close().
    """

    def __init__(
        self,
        credentials: UShipCredentials,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.credentials = credentials
        self.timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "UShipClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def _make_request(self, method: str, path: str, data: Optional[Dict] = None) -> Dict:
        """Make authenticated API request."""
        client = await self._get_http_client()
        url = f"{self.credentials.base_url.rstrip('/')}{path}"

        headers = {
            "Content-Type": "application/json",
            "X-USHIP-API-KEY": self.credentials.api_key,
        }

        try:
            response = await client.request(method.upper(), url, json=data, headers=headers)
        except httpx.RequestError as e:
            logger.error(f"uShip API request failed: {e}")
            raise UShipAPIError(message=f"Network error: {e}", code="NETWORK_ERROR")

        logger.debug(f"uShip API {method} {path} -> {response.status_code}")

        if response.status_code >= 400:
            error_msg = f"uShip API error: {response.status_code}"
            error_data: Dict = {}
            try:
                error_data = response.json()
                detail = (
                    error_data.get("message")
                    or error_data.get("error_description")
                    or error_data.get("error")
                )
                if detail:
                    error_msg = f"uShip: {detail}"
            except ValueError:
                error_data = {"raw": response.text[:500]}
                error_msg = f"uShip API error: {response.status_code} - {response.text[:200]}"

            logger.error(error_msg)
            raise UShipAPIError(
                message=error_msg,
                code=str(response.status_code),
                details=error_data,
            )

        if not response.content:
            return {}

        try:
            return response.json()
        except ValueError:
            raise UShipAPIError(message="uShip returned a non-JSON response", code="BAD_RESPONSE")

    async def get_quotes(self, request: UShipQuoteRequest) -> List[UShipQuote]:
        """
        Request LTL quotes.

        Returns:
            Carrier quotes with a usable price, in the order uShip returned them
        """
        data = await self._make_request("POST", LTL_QUOTES_PATH, request.to_uship_format())
        if not isinstance(data, dict):
            raise UShipAPIError(message="uShip returned an unexpected response", code="BAD_RESPONSE")

        status = data.get("status")
        if status == "Failed":
            raise UShipAPIError(
                message="uShip: quote request failed",
                code="QUOTE_FAILED",
                details={"messages": data.get("messages")},
            )

        parsed = (UShipQuote.from_response(q) for q in data.get("quotes") or [] if isinstance(q, dict))
        quotes = [q for q in parsed if q is not None]
        logger.info(f"uShip returned {len(quotes)} LTL quotes")
        return quotes


def get_uship_client(http_client: Optional[httpx.AsyncClient] = None) -> UShipClient:
    """
    Build a client from settings.

    Raises:
        ProviderNotConfiguredError: USHIP_API_KEY is not set
    """
    if not settings.USHIP_API_KEY:
        raise ProviderNotConfiguredError(
            "uShip API key not configured. Set USHIP_API_KEY.",
            provider="uship",
        )
    return UShipClient(
        UShipCredentials(api_key=settings.USHIP_API_KEY, base_url=settings.USHIP_API_BASE),
        http_client=http_client,
    )
