"""
EasyPost API Client

Small-parcel rate shopping through the EasyPost REST API:
- HTTP Basic auth with the API key as username
- POST /beta/rates returns rates from every connected carrier
  without creating a Shipment object

All external API calls are logged; failures raise EasyPostAPIError.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from shipping_rates.core.config import settings
from shipping_rates.core.exceptions import ParcelRateError, ProviderNotConfiguredError

logger = logging.getLogger(__name__)

EASYPOST_API_URL = "https://api.easypost.com"

RATES_PATH = "/beta/rates"

DEFAULT_TIMEOUT_SECONDS = 30.0


@dataclass
class EasyPostCredentials:
    """EasyPost API credentials."""
    api_key: str
    base_url: str = EASYPOST_API_URL


@dataclass
class EasyPostAddress:
    """Address structure for EasyPost APIs."""
    zip: str
    street1: str = ""
    city: str = ""
    state: str = ""
    country: str = "US"
    residential: Optional[bool] = None

    def to_easypost_format(self) -> Dict:
        address = {
            "street1": self.street1,
            "city": self.city,
            "state": self.state,
            "zip": self.zip,
            "country": self.country,
        }
        if self.residential is not None:
            address["residential"] = self.residential
        return address


@dataclass
class EasyPostParcel:
    """Parcel dimensions; EasyPost wants inches and whole ounces."""
    length: float
    width: float
    height: float
    weight_oz: int

    def to_easypost_format(self) -> Dict:
        return {
            "length": round(self.length, 2),
            "width": round(self.width, 2),
            "height": round(self.height, 2),
            "weight": self.weight_oz,
        }


@dataclass
class EasyPostRate:
    """One rate from the beta/rates response."""
    carrier: str
    service: str
    rate: str
    currency: str = "USD"
    delivery_days: Optional[int] = None
    delivery_date: Optional[str] = None
    delivery_date_guaranteed: bool = False

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "EasyPostRate":
        return cls(
            carrier=data.get("carrier") or "",
            service=data.get("service") or "",
            rate=str(data.get("rate", "0")),
            currency=data.get("currency") or "USD",
            delivery_days=data.get("delivery_days"),
            delivery_date=data.get("delivery_date"),
            delivery_date_guaranteed=bool(data.get("delivery_date_guaranteed")),
        )


class EasyPostAPIError(ParcelRateError):
    """EasyPost API error with details."""

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict] = None):
        super().__init__(message, provider="easypost", code=code, details=details or {})


class EasyPostClient:
    """
    EasyPost API Client.

    Pass `http_client` to share a connection pool or to inject a transport
    in tests; otherwise one is created lazily and closed by close().
    """

    def __init__(
        self,
        credentials: EasyPostCredentials,
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
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
            )
            self._owns_client = True
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "EasyPostClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def _make_request(self, method: str, path: str, data: Optional[Dict] = None) -> Dict:
        """Make authenticated API request."""
        client = await self._get_http_client()
        url = f"{self.credentials.base_url.rstrip('/')}{path}"

        try:
            response = await client.request(
                method.upper(),
                url,
                json=data,
                auth=(self.credentials.api_key, ""),
                headers={"Content-Type": "application/json"},
            )
        except httpx.RequestError as e:
            logger.error(f"EasyPost API request failed: {e}")
            raise EasyPostAPIError(message=f"Network error: {e}", code="NETWORK_ERROR")

        logger.debug(f"EasyPost API {method} {path} -> {response.status_code}")

        if response.status_code >= 400:
            error_msg = f"EasyPost API error: {response.status_code}"
            error_data: Dict = {}
            try:
                error_data = response.json()
                error = error_data.get("error") or {}
                if isinstance(error, dict) and error.get("message"):
                    error_msg = f"EasyPost: {error['message']}"
            except ValueError:
                error_data = {"raw": response.text[:500]}
                error_msg = f"EasyPost API error: {response.status_code} - {response.text[:200]}"

            logger.error(error_msg)
            raise EasyPostAPIError(
                message=error_msg,
                code=str(response.status_code),
                details=error_data,
            )

        try:
            return response.json()
        except ValueError:
            raise EasyPostAPIError(message="EasyPost returned a non-JSON response", code="BAD_RESPONSE")

    async def get_rates(
        self,
        from_address: EasyPostAddress,
        to_address: EasyPostAddress,
        parcel: EasyPostParcel,
    ) -> List[EasyPostRate]:
        """
        Rate-shop a parcel across all connected carriers.

        Returns:
            Every rate EasyPost returned, unfiltered
        """
        payload = {
            "shipment": {
                "from_address": from_address.to_easypost_format(),
                "to_address": to_address.to_easypost_format(),
                "parcel": parcel.to_easypost_format(),
            }
        }

        data = await self._make_request("POST", RATES_PATH, payload)

        for message in data.get("messages") or []:
            logger.info(
                f"EasyPost carrier message: {message.get('carrier')} "
                f"{message.get('type')} - {message.get('message')}"
            )

        rates = [EasyPostRate.from_response(r) for r in data.get("rates") or []]
        logger.info(f"EasyPost returned {len(rates)} rates")
        return rates


def get_easypost_client(http_client: Optional[httpx.AsyncClient] = None) -> EasyPostClient:
    """
    Build a client from settings.

    Raises:
        ProviderNotConfiguredError: neither the production nor testing key is set
    """
    api_key = settings.easypost_api_key
    if not api_key:
        raise ProviderNotConfiguredError(
            "EasyPost API key not configured. Set EASYPOST_PRODUCTION_API_KEY or EASYPOST_TESTING_API_KEY.",
            provider="easypost",
        )
    return EasyPostClient(
        EasyPostCredentials(api_key=api_key, base_url=settings.EASYPOST_API_BASE),
        http_client=http_client,
    )
