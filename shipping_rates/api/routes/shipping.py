"""
Shipping rate API routes

Provides endpoints for:
- Cart rates (warehouse, cart profile, ranked shipping options)
- LTL freight quotes for an explicit weight/size
- Fallback freight table preview

Only malformed requests return errors; provider problems come back as
warnings on a successful response.
"""
import logging

from fastapi import APIRouter, Depends, Query

from shipping_rates.api.deps import get_aggregator, get_freight_provider
from shipping_rates.core.exceptions import FreightFallbackError, ShippingValidationError
from shipping_rates.modules.shipping.carriers.base import AddressInput, FreightAccessorials, ShipmentDimensions
from shipping_rates.modules.shipping.carriers.uship import FreightRateProvider
from shipping_rates.modules.shipping.ltl_fallback import LtlAccessorials, get_ltl_fallback_quote
from shipping_rates.services.rate_aggregator import ShippingRateAggregator, format_markup
from shipping_rates.schemas.shipping import (
    CartRatesRequest,
    CartRatesResponse,
    EndpointDescription,
    LtlFallbackResponse,
    LtlRatesRequest,
    LtlRatesResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shipping", tags=["shipping"])


# ==================== Cart Rates ====================


@router.get("/cart-rates", response_model=EndpointDescription)
async def describe_cart_rates():
    """Self-description of the cart-rates endpoint."""
    return EndpointDescription(
        endpoint="shipping/cart-rates",
        description="Get shipping options for a cart, choosing the ship-from warehouse automatically",
        methods=["POST"],
        expected_payload={
            "items": "array (required) - [{product_id, quantity}]",
            "destination_zip": "string (required) - 5-digit ZIP or ZIP+4",
            "destination_city": "string (optional)",
            "destination_state": "string (optional) - 2-letter state, needed for fallback freight rates",
            "destination_address": "string (optional)",
            "residential": "boolean (optional) - delivery to a residence",
        },
        notes=[
            "Ships from the nearest warehouse holding stock for every stocked item",
            "Carts over 150 lbs or 48 in on any side are quoted as LTL freight",
            "LTL rates include the configured markup",
            "Local pickup is listed first when available",
        ],
    )


@router.post(
    "/cart-rates",
    response_model=CartRatesResponse,
    response_model_exclude_unset=True,
)
async def get_cart_rates(
    request: CartRatesRequest,
    aggregator: ShippingRateAggregator = Depends(get_aggregator),
):
    """
    Shipping options for a cart.

    Returns the ship-from warehouse, ranked shipping methods (pickup first),
    the aggregate cart profile and any warnings.
    """
    result = await aggregator.quote(request.to_domain())
    return result.to_dict()


# ==================== LTL Freight ====================


@router.post("/ltl-rates", response_model=LtlRatesResponse)
async def get_ltl_rates(
    request: LtlRatesRequest,
    provider: FreightRateProvider = Depends(get_freight_provider),
):
    """LTL freight quotes for an explicit shipment (live API, then fallback table)."""
    origin = AddressInput(
        postal_code=request.from_zip,
        street=request.from_address or "",
        city=request.from_city or "",
        state=request.from_state or "",
    )
    destination = AddressInput(
        postal_code=request.to_zip,
        street=request.to_address or "",
        city=request.to_city or "",
        state=request.to_state or "",
        residential=request.residential_delivery,
    )
    shipment = ShipmentDimensions(
        weight_lbs=request.weight_lbs,
        length=request.length_in,
        width=request.width_in,
        height=request.height_in,
    )
    accessorials = FreightAccessorials(
        liftgate_pickup=request.liftgate_pickup,
        liftgate_delivery=request.liftgate_delivery,
        residential_delivery=request.residential_delivery,
        inside_delivery=request.inside_delivery,
        hazmat=request.hazmat,
    )

    result = await provider.get_freight_rates(
        origin, destination, shipment, accessorials, description=request.description
    )
    cheapest = result.cheapest

    return LtlRatesResponse(
        source=result.source.value if result.source else None,
        quote_count=len(result.quotes),
        quotes=[q.to_dict() for q in result.quotes],
        cheapest=cheapest.to_dict() if cheapest else None,
        markup=format_markup(provider.markup),
        error=result.error,
        requires_contact=result.requires_contact,
    )


@router.get("/ltl-fallback", response_model=LtlFallbackResponse)
async def preview_ltl_fallback(
    state: str = Query(..., min_length=2, max_length=2, description="2-letter destination state"),
    weight_lbs: float = Query(..., description="Shipment weight in pounds"),
    liftgate_delivery: bool = False,
    residential_delivery: bool = False,
    inside_delivery: bool = False,
    hazmat: bool = False,
):
    """Full fallback table breakdown for a destination state and weight."""
    accessorials = LtlAccessorials(
        liftgate_delivery=liftgate_delivery,
        residential_delivery=residential_delivery,
        inside_delivery=inside_delivery,
        hazmat=hazmat,
    )
    try:
        quote = get_ltl_fallback_quote(state, weight_lbs, accessorials)
    except FreightFallbackError as e:
        raise ShippingValidationError(e.message, details={"requires_contact": e.requires_contact})

    return LtlFallbackResponse(state=state.upper(), weight_lbs=weight_lbs, **quote.to_dict())
