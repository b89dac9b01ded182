"""
Parcel rates via EasyPost.

Only two services are offered to customers: USPS Ground Advantage and
UPS Ground (EasyPost reports UPS as either `ups` or `upsdap`). Everything
else EasyPost returns is dropped, and the survivors are renamed to fixed
display names.
"""
import logging
import re
from typing import Callable, Collection, List, Optional

from shipping_rates.core.config import settings
from shipping_rates.core.exceptions import RateProviderError
from shipping_rates.modules.shipping.carriers.base import (
    AddressInput,
    BaseRateProvider,
    ProviderCode,
    RateQuote,
    ShipmentDimensions,
)
from shipping_rates.modules.shipping.domain import StepResult
from shipping_rates.modules.shipping.units import pounds_to_ounces
from shipping_rates.services.easypost_client import (
    EasyPostAddress,
    EasyPostClient,
    EasyPostParcel,
    EasyPostRate,
    get_easypost_client,
)

logger = logging.getLogger(__name__)

USPS = "USPS"
UPS = "UPS"

# EasyPost carrier code -> display carrier
CARRIER_ALIASES = {
    "usps": USPS,
    "ups": UPS,
    "upsdap": UPS,
}

# display carrier -> (service test, display service, method)
SERVICE_ALLOW_LIST = {
    USPS: (lambda service: "groundadvantage" in service, "Ground Advantage", "usps_ground_advantage"),
    UPS: (lambda service: service == "ground", "Ground", "ups_ground"),
}


def _squash(value: str) -> str:
    return re.sub(r"[^a-z0-9]", "", value.lower())


def normalize_parcel_rate(rate: EasyPostRate) -> Optional[RateQuote]:
    """
    Map one EasyPost rate onto the allow-list.

    Returns:
        RateQuote with display names, or None when the carrier/service is
        not offered or the price is unusable
    """
    carrier = CARRIER_ALIASES.get(rate.carrier.strip().lower())
    if carrier is None:
        return None

    matches, display_service, method = SERVICE_ALLOW_LIST[carrier]
    if not matches(_squash(rate.service)):
        return None

    try:
        price = float(rate.rate)
    except (TypeError, ValueError):
        logger.warning(f"Dropping {carrier} {rate.service} rate with unparseable price {rate.rate!r}")
        return None

    return RateQuote(
        method=method,
        carrier=carrier,
        service=display_service,
        rate=price,
        transit_days=rate.delivery_days,
        delivery_date=rate.delivery_date,
        guaranteed=rate.delivery_date_guaranteed,
    )


class ParcelRateProvider(BaseRateProvider):
    """Small-parcel rates for USPS and UPS through one EasyPost call."""

    def __init__(
        self,
        client: Optional[EasyPostClient] = None,
        client_factory: Callable[[], EasyPostClient] = get_easypost_client,
    ):
        self._client = client
        self._client_factory = client_factory

    @property
    def provider_code(self) -> ProviderCode:
        return ProviderCode.EASYPOST

    @property
    def provider_name(self) -> str:
        return "EasyPost"

    @property
    def is_configured(self) -> bool:
        return self._client is not None or bool(settings.easypost_api_key)

    async def get_rates(
        self,
        origin: AddressInput,
        destination: AddressInput,
        shipment: ShipmentDimensions,
        carriers: Collection[str] = (USPS, UPS),
    ) -> List[RateQuote]:
        """
        Allow-listed parcel quotes; [] on any error (logged, not raised).

        Args:
            carriers: Display carriers the cart is eligible for
        """
        return (await self.fetch(origin, destination, shipment, carriers)).value

    async def fetch(
        self,
        origin: AddressInput,
        destination: AddressInput,
        shipment: ShipmentDimensions,
        carriers: Collection[str] = (USPS, UPS),
    ) -> StepResult[List[RateQuote]]:
        """Same as get_rates, but says why when the list is empty."""
        try:
            raw_rates = await self._request(origin, destination, shipment)
        except RateProviderError as e:
            logger.error(f"EasyPost rate error: {e.message}")
            return StepResult(value=[], warnings=[f"Parcel rates unavailable: {e.message}"])

        quotes = []
        for rate in raw_rates:
            quote = normalize_parcel_rate(rate)
            if quote is None or quote.carrier not in carriers:
                continue
            quotes.append(quote)

        logger.info(f"Parcel rates: {len(quotes)} of {len(raw_rates)} EasyPost rates offered")
        return StepResult(value=quotes)

    async def _request(
        self,
        origin: AddressInput,
        destination: AddressInput,
        shipment: ShipmentDimensions,
    ) -> List[EasyPostRate]:
        from_address = EasyPostAddress(
            street1=origin.street,
            city=origin.city,
            state=origin.state,
            zip=origin.postal_code,
            country=origin.country_code,
        )
        to_address = EasyPostAddress(
            street1=destination.street,
            city=destination.city,
            state=destination.state,
            zip=destination.postal_code,
            country=destination.country_code,
            residential=destination.residential,
        )
        parcel = EasyPostParcel(
            length=shipment.length,
            width=shipment.width,
            height=shipment.height,
            weight_oz=pounds_to_ounces(shipment.weight_lbs),
        )

        if self._client is not None:
            return await self._client.get_rates(from_address, to_address, parcel)

        async with self._client_factory() as client:
            return await client.get_rates(from_address, to_address, parcel)

    async def close(self):
        if self._client is not None:
            await self._client.close()
