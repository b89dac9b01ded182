"""
LTL freight rates: uShip LTL Connect first, static fallback table second.

Live quotes reflect real carrier capacity, so the table is only consulted
when the API is not configured, fails, or returns nothing. The order is
never reversed.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from shipping_rates.core.config import settings
from shipping_rates.core.exceptions import FreightFallbackError, RateProviderError
from shipping_rates.modules.shipping.carriers.base import (
    FREIGHT_FALLBACK_METHOD,
    AddressInput,
    BaseRateProvider,
    FreightAccessorials,
    ProviderCode,
    RateQuote,
    RateSource,
    ShipmentDimensions,
)
from shipping_rates.modules.shipping.ltl_fallback import (
    LtlAccessorials,
    LtlFallbackQuote,
    get_ltl_fallback_quote,
)
from shipping_rates.services.uship_client import (
    ACCESSORIAL_DELIVERY_INSIDE,
    ACCESSORIAL_DELIVERY_LIFTGATE,
    ACCESSORIAL_HAZMAT,
    ACCESSORIAL_PICKUP_LIFTGATE,
    LOCATION_BUSINESS_WITH_DOCK,
    LOCATION_BUSINESS_WITHOUT_DOCK,
    LOCATION_RESIDENCE,
    UShipClient,
    UShipItem,
    UShipQuote,
    UShipQuoteRequest,
    default_pickup_dates,
    get_uship_client,
)

logger = logging.getLogger(__name__)

MAX_LIVE_QUOTES = 3
MISSING_STATE_ERROR = "Destination state is required for freight quotes. Please contact us for pricing."


def apply_markup(price: float, markup: float) -> float:
    """Price with a fractional markup applied, rounded to cents."""
    return round(price * (1 + markup), 2)


@dataclass
class FreightQuoteResult:
    """Outcome of a freight quote attempt."""
    quotes: List[RateQuote] = field(default_factory=list)
    source: Optional[RateSource] = None
    error: Optional[str] = None
    requires_contact: bool = False
    fallback: Optional[LtlFallbackQuote] = None

    @property
    def cheapest(self) -> Optional[RateQuote]:
        return min(self.quotes, key=lambda q: q.rate) if self.quotes else None


def build_ltl_request(
    origin: AddressInput,
    destination: AddressInput,
    shipment: ShipmentDimensions,
    accessorials: FreightAccessorials,
    description: str = "Commercial goods",
    now: Optional[datetime] = None,
) -> UShipQuoteRequest:
    """
    One 48x40 pallet from our dock to the destination.

    The origin always has a loading dock; the destination is a residence or
    a business without one.
    """
    earliest, latest = default_pickup_dates(now)

    requested = []
    if accessorials.liftgate_pickup:
        requested.append(ACCESSORIAL_PICKUP_LIFTGATE)
    if accessorials.liftgate_delivery:
        requested.append(ACCESSORIAL_DELIVERY_LIFTGATE)
    if accessorials.inside_delivery:
        requested.append(ACCESSORIAL_DELIVERY_INSIDE)
    if accessorials.hazmat:
        requested.append(ACCESSORIAL_HAZMAT)

    return UShipQuoteRequest(
        items=[
            UShipItem(
                weight=shipment.weight_lbs,
                length=shipment.length,
                width=shipment.width,
                height=shipment.height,
                description=description,
            )
        ],
        origin_address=origin.street or None,
        origin_postal_code=origin.postal_code,
        origin_city=origin.city or None,
        origin_state=origin.state or None,
        origin_location_type=LOCATION_BUSINESS_WITH_DOCK,
        destination_address=destination.street or None,
        destination_postal_code=destination.postal_code,
        destination_city=destination.city or None,
        destination_state=destination.state or None,
        destination_location_type=(
            LOCATION_RESIDENCE if accessorials.residential_delivery else LOCATION_BUSINESS_WITHOUT_DOCK
        ),
        earliest_pickup_date=earliest,
        latest_pickup_date=latest,
        accessorials=requested,
    )


def normalize_freight_quote(quote: UShipQuote, markup: float) -> RateQuote:
    return RateQuote(
        method=f"ltl_{quote.carrier_id}",
        carrier=quote.carrier_name,
        service=quote.service_type or "LTL Freight",
        rate=apply_markup(quote.price_total, markup),
        transit_days=quote.transit_days,
        delivery_date=quote.estimated_delivery_date,
        guaranteed=quote.guaranteed_delivery,
    )


def fallback_rate_quote(fallback: LtlFallbackQuote) -> RateQuote:
    return RateQuote(
        method=FREIGHT_FALLBACK_METHOD,
        carrier="LTL Freight",
        service=f"Standard Freight ({fallback.zone_description})",
        rate=fallback.total_rate,
        transit_days=fallback.transit_days_estimate,
        guaranteed=False,
    )


class FreightRateProvider(BaseRateProvider):
    """LTL quotes from uShip with the static table behind it."""

    def __init__(
        self,
        client: Optional[UShipClient] = None,
        client_factory: Callable[[], UShipClient] = get_uship_client,
        markup: Optional[float] = None,
        description: Optional[str] = None,
    ):
        self._client = client
        self._client_factory = client_factory
        self.markup = settings.SHIPPING_LTL_MARKUP if markup is None else markup
        self.description = description or settings.SHIPPING_FREIGHT_DESCRIPTION

    @property
    def provider_code(self) -> ProviderCode:
        return ProviderCode.USHIP

    @property
    def provider_name(self) -> str:
        return "uShip LTL Connect"

    @property
    def is_configured(self) -> bool:
        return self._client is not None or bool(settings.USHIP_API_KEY)

    async def get_freight_rates(
        self,
        origin: AddressInput,
        destination: AddressInput,
        shipment: ShipmentDimensions,
        accessorials: Optional[FreightAccessorials] = None,
        description: Optional[str] = None,
    ) -> FreightQuoteResult:
        """
        Quote freight: live API first, then the fallback table.

        Args:
            description: Commodity description; defaults to SHIPPING_FREIGHT_DESCRIPTION

        Returns:
            FreightQuoteResult; `error` is set only when neither source
            produced a quote
        """
        accessorials = accessorials or FreightAccessorials()
        api_error = None

        if self.is_configured:
            try:
                live = await self._live_quotes(
                    origin, destination, shipment, accessorials, description or self.description
                )
            except RateProviderError as e:
                logger.error(f"uShip LTL rate error: {e.message}")
                api_error = e.message
            else:
                if live:
                    return FreightQuoteResult(quotes=live, source=RateSource.API)
                logger.info("uShip returned no LTL quotes, trying fallback table")

        return self.quote_fallback(destination, shipment, accessorials, api_error)

    async def _live_quotes(
        self,
        origin: AddressInput,
        destination: AddressInput,
        shipment: ShipmentDimensions,
        accessorials: FreightAccessorials,
        description: str,
    ) -> List[RateQuote]:
        request = build_ltl_request(origin, destination, shipment, accessorials, description)

        if self._client is not None:
            raw = await self._client.get_quotes(request)
        else:
            async with self._client_factory() as client:
                raw = await client.get_quotes(request)

        top = sorted(raw, key=lambda q: q.price_total)[:MAX_LIVE_QUOTES]
        return [normalize_freight_quote(q, self.markup) for q in top]

    def quote_fallback(
        self,
        destination: AddressInput,
        shipment: ShipmentDimensions,
        accessorials: FreightAccessorials,
        api_error: Optional[str] = None,
    ) -> FreightQuoteResult:
        """Static table quote. `api_error` is reported if the table cannot price it either."""
        if not destination.state:
            logger.error("Cannot use fallback LTL rates - destination state not provided")
            return FreightQuoteResult(error=api_error or MISSING_STATE_ERROR, requires_contact=True)

        # Origin is always our dock, so no pickup liftgate
        table_accessorials = LtlAccessorials(
            liftgate_pickup=False,
            liftgate_delivery=accessorials.liftgate_delivery,
            residential_delivery=accessorials.residential_delivery,
            inside_delivery=accessorials.inside_delivery,
            hazmat=accessorials.hazmat,
        )

        try:
            fallback = get_ltl_fallback_quote(destination.state, shipment.weight_lbs, table_accessorials)
        except FreightFallbackError as e:
            logger.warning(f"Fallback LTL rate error: {e.message}")
            # Manual-quote instructions take precedence over API errors
            error = e.message if (e.requires_contact or not api_error) else api_error
            return FreightQuoteResult(error=error, requires_contact=e.requires_contact)

        logger.info(f"Using fallback LTL rates for zone {fallback.zone}")
        return FreightQuoteResult(
            quotes=[fallback_rate_quote(fallback)],
            source=RateSource.FALLBACK,
            fallback=fallback,
        )

    async def close(self):
        if self._client is not None:
            await self._client.close()
