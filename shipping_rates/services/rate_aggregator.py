"""
Shipping Rate Aggregator

Top-level cart quoting pipeline:

    INIT -> PROFILE_COMPUTED -> WAREHOUSE_SELECTED -> RATES_REQUESTED
         -> RATES_MERGED -> DONE

Only an invalid request aborts. Every collaborator failure (catalog,
warehouse lookup, parcel or freight provider, timeouts) is converted into
a warning and the pipeline continues with whatever it has.

Usage:
    aggregator = get_rate_aggregator()
    result = await aggregator.quote(request)
"""
import asyncio
import enum
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from shipping_rates.core.config import settings
from shipping_rates.core.exceptions import ShippingValidationError
from shipping_rates.modules.shipping.carriers.base import (
    PICKUP_METHOD,
    AddressInput,
    FreightAccessorials,
    RateQuote,
    RateSource,
    ShipmentDimensions,
)
from shipping_rates.modules.shipping.carriers.easypost import UPS, USPS, ParcelRateProvider
from shipping_rates.modules.shipping.carriers.uship import FreightQuoteResult, FreightRateProvider
from shipping_rates.modules.shipping.domain import (
    CartLine,
    ProductShippingAttributes,
    RateRequest,
    StepResult,
    WarehouseLocation,
)
from shipping_rates.modules.shipping.profile import (
    ProfileThresholds,
    ShippingProfile,
    calculate_shipping_profile,
)
from shipping_rates.modules.shipping.warehouse_selector import WarehouseSelection, WarehouseSelector

logger = logging.getLogger(__name__)

ZIP_PATTERN = re.compile(r"^\d{5}(-\d{4})?$")

PARCEL_NOT_CONFIGURED_WARNING = "Parcel shipping rates unavailable - shipping API not configured."
CATALOG_UNAVAILABLE_WARNING = "Product catalog unavailable; shipping estimated from default package sizes."


class QuoteState(str, enum.Enum):
    INIT = "INIT"
    PROFILE_COMPUTED = "PROFILE_COMPUTED"
    WAREHOUSE_SELECTED = "WAREHOUSE_SELECTED"
    RATES_REQUESTED = "RATES_REQUESTED"
    RATES_MERGED = "RATES_MERGED"
    DONE = "DONE"


class ProductCatalog(Protocol):
    """Product lookups the aggregator needs."""

    async def get_products(self, product_ids: Iterable[str]) -> Dict[str, ProductShippingAttributes]: ...

    async def get_parents(self, skus: Iterable[str]) -> Dict[str, ProductShippingAttributes]: ...


@dataclass
class ShippingQuote:
    """Everything the cart-rates endpoint returns."""
    warehouse: WarehouseLocation
    shipping_methods: List[RateQuote]
    profile: ShippingProfile
    free_shipping_note: Optional[str] = None
    ltl_markup: Optional[str] = None
    ltl_rate_source: Optional[RateSource] = None
    warnings: List[str] = field(default_factory=list)
    state: QuoteState = QuoteState.DONE

    def to_dict(self) -> Dict:
        data = {
            "success": True,
            "ship_from_warehouse": {
                "name": self.warehouse.display_name,
                "city": self.warehouse.city,
                "state": self.warehouse.state,
                "zip": self.warehouse.zip,
            },
            "shipping_methods": [q.to_dict() for q in self.shipping_methods],
            "cart_shipping_profile": self.profile.to_dict(),
            "free_shipping_note": self.free_shipping_note,
            "ltl_markup": self.ltl_markup,
            "ltl_rate_source": self.ltl_rate_source.value if self.ltl_rate_source else None,
        }
        if self.warnings:
            data["warnings"] = list(self.warnings)
        return data


# =============================================================================
# Pure helpers
# =============================================================================

def consolidate_lines(items: Sequence[CartLine]) -> List[CartLine]:
    """Sum quantities of repeated products, keeping first-seen order."""
    totals: Dict[str, int] = {}
    for item in items:
        totals[item.product_id] = totals.get(item.product_id, 0) + item.quantity
    return [CartLine(product_id=pid, quantity=qty) for pid, qty in totals.items()]


def default_products(lines: Iterable[CartLine]) -> Dict[str, ProductShippingAttributes]:
    """Placeholder products sized from the default package dimensions."""
    return {
        line.product_id: ProductShippingAttributes(
            product_id=line.product_id,
            sku=line.product_id,
            title="Unknown Product",
        )
        for line in lines
    }


def validate_rate_request(request: RateRequest) -> None:
    """
    Structural checks; the only failures surfaced to the caller.

    Raises:
        ShippingValidationError
    """
    if not request.items:
        raise ShippingValidationError("items array is required and must not be empty", field="items")
    if not request.destination_zip:
        raise ShippingValidationError("destination_zip is required", field="destination_zip")
    if not ZIP_PATTERN.match(request.destination_zip):
        raise ShippingValidationError(
            "Invalid destination_zip format. Use 5-digit ZIP",
            field="destination_zip",
        )
    for item in request.items:
        if not item.product_id:
            raise ShippingValidationError("Each item requires a product_id", field="items")
        if item.quantity < 1:
            raise ShippingValidationError(
                f"Quantity for {item.product_id} must be at least 1",
                field="items",
            )


def pickup_quote(warehouse: WarehouseLocation) -> RateQuote:
    return RateQuote(
        method=PICKUP_METHOD,
        carrier="Will Call",
        service=f"Local Pickup - {warehouse.city or 'Warehouse'}, {warehouse.state or ''}",
        rate=0.0,
        transit_days=0,
    )


def _sort_key(quote: RateQuote) -> Tuple:
    return (0 if quote.is_pickup else 1, quote.rate, quote.carrier, quote.service, quote.method)


def merge_rate_quotes(quotes: Iterable[RateQuote]) -> List[RateQuote]:
    """
    Dedup on (method, carrier, service) keeping the cheapest, then sort by
    rate with pickup pinned first. Ties break on carrier, service, method,
    so the result does not depend on input order.
    """
    best: Dict[Tuple[str, str, str], RateQuote] = {}
    for quote in quotes:
        key = (quote.method, quote.carrier, quote.service)
        current = best.get(key)
        if current is None or _sort_key(quote) < _sort_key(current):
            best[key] = quote
    return sorted(best.values(), key=_sort_key)


def free_shipping_note(residential: bool, threshold: float) -> Optional[str]:
    """Informational only; whether the order qualifies is decided at checkout."""
    if residential:
        return None
    return f"Free shipping available on orders over ${threshold:,.0f} to commercial addresses"


def format_markup(markup: float) -> str:
    return f"{markup * 100:g}%"


# =============================================================================
# Aggregator
# =============================================================================

class ShippingRateAggregator:
    """
    Cart shipping quote orchestration.

    Collaborators are injected so each one can be replaced in tests.
    """

    def __init__(
        self,
        catalog: ProductCatalog,
        warehouse_selector: WarehouseSelector,
        parcel_provider: ParcelRateProvider,
        freight_provider: FreightRateProvider,
        thresholds: Optional[ProfileThresholds] = None,
        provider_timeout: Optional[float] = None,
        free_shipping_threshold: Optional[float] = None,
    ):
        self.catalog = catalog
        self.warehouse_selector = warehouse_selector
        self.parcel_provider = parcel_provider
        self.freight_provider = freight_provider
        self.thresholds = thresholds or ProfileThresholds.from_settings(settings)
        self.provider_timeout = provider_timeout or settings.SHIPPING_PROVIDER_TIMEOUT_SECONDS
        self.free_shipping_threshold = (
            settings.SHIPPING_FREE_SHIPPING_THRESHOLD
            if free_shipping_threshold is None else free_shipping_threshold
        )

    def _transition(self, state: QuoteState, detail: str = "") -> QuoteState:
        logger.debug(f"Rate quote -> {state.value}{': ' + detail if detail else ''}")
        return state

    async def quote(self, request: RateRequest) -> ShippingQuote:
        """
        Produce a ranked list of shipping options for a cart.

        Raises:
            ShippingValidationError: the request is structurally invalid or
                none of its products exist
        """
        state = self._transition(QuoteState.INIT)
        validate_rate_request(request)

        lines = consolidate_lines(request.items)
        warnings: List[str] = []

        profile_result, selection = await asyncio.gather(
            self._resolve_profile(lines),
            self.warehouse_selector.select(lines, request.destination_zip[:5]),
            return_exceptions=True,
        )
        if isinstance(profile_result, ShippingValidationError) or (
            isinstance(profile_result, BaseException) and not isinstance(profile_result, Exception)
        ):
            raise profile_result
        if isinstance(profile_result, Exception):
            logger.error(f"Cart profile failed, using default package sizes: {profile_result!r}")
            profile_result = self._default_profile(lines)
        if isinstance(selection, BaseException):
            # The selector degrades on its own; this is a programming error upstream
            logger.error(f"Warehouse selector raised: {selection}")
            selection = WarehouseSelection(
                warehouse=self.warehouse_selector.default_warehouse,
                strategy="default_error",
                warnings=["Warehouse lookup failed; shipping from the default warehouse."],
            )

        profile = profile_result.value
        warnings.extend(profile_result.warnings)
        state = self._transition(
            QuoteState.PROFILE_COMPUTED,
            f"{profile.total_weight:.2f} lbs, freight={profile.requires_freight}, "
            f"eligibility={profile.eligibility_source.value}",
        )

        warehouse = selection.warehouse
        warnings.extend(selection.warnings)
        state = self._transition(
            QuoteState.WAREHOUSE_SELECTED,
            f"{warehouse.display_name} ({selection.strategy})",
        )

        should_get_parcel = profile.parcel_eligible and not profile.requires_freight and not profile.has_hazmat
        should_get_freight = profile.requires_freight or profile.has_oversized

        origin = AddressInput(
            postal_code=warehouse.zip or settings.DEFAULT_WAREHOUSE_ZIP,
            street=warehouse.street or "",
            city=warehouse.city or "",
            state=warehouse.state or "",
            country_code=warehouse.country or "US",
        )
        destination = AddressInput(
            postal_code=request.destination_zip,
            street=request.destination_address or "",
            city=request.destination_city or "",
            state=request.destination_state or "",
            residential=request.residential,
        )
        shipment = ShipmentDimensions(
            weight_lbs=profile.total_weight,
            length=profile.max_length,
            width=profile.max_width,
            height=profile.stacked_height,
        )

        quotes: List[RateQuote] = []
        if profile.pickup_available and warehouse.is_pickup_location:
            quotes.append(pickup_quote(warehouse))

        parcel_quotes, freight_result = await self._request_rates(
            should_get_parcel,
            should_get_freight,
            profile,
            origin,
            destination,
            shipment,
            request.residential,
            warnings,
        )
        quotes.extend(parcel_quotes)
        quotes.extend(freight_result.quotes)
        state = self._transition(
            QuoteState.RATES_REQUESTED,
            f"parcel={should_get_parcel} ({len(parcel_quotes)}), "
            f"freight={should_get_freight} ({len(freight_result.quotes)})",
        )

        methods = merge_rate_quotes(quotes)
        if not methods and profile.requires_freight and warehouse.is_pickup_location:
            # Local pickup is still physically possible
            methods = [pickup_quote(warehouse)]
        state = self._transition(QuoteState.RATES_MERGED, f"{len(methods)} methods")

        if should_get_freight and freight_result.error and not freight_result.quotes:
            logger.error(f"LTL freight rates unavailable: {freight_result.error}")
            warnings.append(f"LTL freight: {freight_result.error}")

        if profile.used_fallback_detection:
            skus = ", ".join(p.sku for p in profile.products_without_flags)
            logger.error(f"Products missing carrier flags, using fallback detection: {skus}")
            warnings.append(f"Product shipping configuration incomplete: {skus}")

        result = ShippingQuote(
            warehouse=warehouse,
            shipping_methods=methods,
            profile=profile,
            free_shipping_note=free_shipping_note(request.residential, self.free_shipping_threshold),
            ltl_markup=format_markup(self.freight_provider.markup) if should_get_freight else None,
            ltl_rate_source=freight_result.source,
            warnings=warnings,
        )
        result.state = self._transition(QuoteState.DONE, f"{len(warnings)} warnings")
        return result

    async def _resolve_profile(self, lines: List[CartLine]) -> StepResult[ShippingProfile]:
        """Look up products (and parents) and build the cart profile."""
        warnings: List[str] = []

        try:
            products = await self.catalog.get_products(line.product_id for line in lines)
        except Exception as e:
            logger.error(f"Product catalog unavailable, using default package sizes: {e!r}")
            warnings.append(CATALOG_UNAVAILABLE_WARNING)
            products = default_products(lines)

        found = [(products[line.product_id], line.quantity) for line in lines if line.product_id in products]
        missing = [line.product_id for line in lines if line.product_id not in products]

        if not found:
            raise ShippingValidationError("No valid products found", field="items")
        if missing:
            logger.warning(f"Skipping unknown products: {', '.join(missing)}")
            warnings.append(f"Products not found and skipped: {', '.join(missing)}")

        parent_skus = {product.parent_sku for product, _ in found if product.inherits_shipping}
        parents: Dict[str, ProductShippingAttributes] = {}
        if parent_skus:
            try:
                parents = await self.catalog.get_parents(parent_skus)
            except Exception as e:
                logger.error(f"Parent product lookup failed: {e!r}")
                warnings.append("Parent product data unavailable; variants use their own shipping data.")

        profile = calculate_shipping_profile(found, parents, self.thresholds)
        return StepResult(value=profile, warnings=warnings)

    def _default_profile(self, lines: List[CartLine]) -> StepResult[ShippingProfile]:
        products = default_products(lines)
        found = [(products[line.product_id], line.quantity) for line in lines]
        return StepResult(
            value=calculate_shipping_profile(found, {}, self.thresholds),
            warnings=[CATALOG_UNAVAILABLE_WARNING],
        )

    async def _request_rates(
        self,
        should_get_parcel: bool,
        should_get_freight: bool,
        profile: ShippingProfile,
        origin: AddressInput,
        destination: AddressInput,
        shipment: ShipmentDimensions,
        residential: bool,
        warnings: List[str],
    ) -> Tuple[List[RateQuote], FreightQuoteResult]:
        """Parcel and freight run concurrently; both are joined before merging."""
        parcel_quotes: List[RateQuote] = []
        freight_result = FreightQuoteResult()

        call_parcel = should_get_parcel and self.parcel_provider.is_configured
        if should_get_parcel and not call_parcel:
            logger.error("Parcel shipping required but EasyPost API key not configured")
            warnings.append(PARCEL_NOT_CONFIGURED_WARNING)

        accessorials = FreightAccessorials(
            liftgate_pickup=False,
            liftgate_delivery=profile.requires_liftgate or residential,
            residential_delivery=residential,
            hazmat=profile.has_hazmat,
        )

        carriers = [c for c, ok in ((USPS, profile.usps_eligible), (UPS, profile.ups_eligible)) if ok]

        async def no_parcel() -> StepResult[List[RateQuote]]:
            return StepResult(value=[])

        async def no_freight() -> FreightQuoteResult:
            return FreightQuoteResult()

        parcel_call = (
            self.parcel_provider.fetch(origin, destination, shipment, carriers)
            if call_parcel else no_parcel()
        )
        freight_call = (
            self.freight_provider.get_freight_rates(origin, destination, shipment, accessorials)
            if should_get_freight else no_freight()
        )

        parcel_outcome, freight_outcome = await asyncio.gather(
            asyncio.wait_for(parcel_call, self.provider_timeout),
            asyncio.wait_for(freight_call, self.provider_timeout),
            return_exceptions=True,
        )

        if isinstance(parcel_outcome, BaseException):
            warnings.append(self._provider_failure("Parcel rates", parcel_outcome))
        else:
            parcel_quotes = parcel_outcome.value
            warnings.extend(parcel_outcome.warnings)

        if isinstance(freight_outcome, BaseException):
            reason = self._provider_failure("Freight quote", freight_outcome)
            # The static table needs no I/O, so it still applies
            freight_result = self.freight_provider.quote_fallback(destination, shipment, accessorials, reason)
        else:
            freight_result = freight_outcome

        return parcel_quotes, freight_result

    def _provider_failure(self, label: str, error: BaseException) -> str:
        if isinstance(error, asyncio.TimeoutError):
            logger.error(f"{label} timed out after {self.provider_timeout:g}s")
            return f"{label} timed out"
        logger.error(f"{label} failed: {error}", exc_info=error)
        return f"{label} unavailable: {error}"


def get_rate_aggregator() -> ShippingRateAggregator:
    """Aggregator wired to the database catalog and the configured providers."""
    from shipping_rates.services.catalog import CatalogStore, default_warehouse_from_settings

    catalog = CatalogStore()
    return ShippingRateAggregator(
        catalog=catalog,
        warehouse_selector=WarehouseSelector(
            stock_store=catalog,
            default_warehouse=default_warehouse_from_settings(),
            concurrency=settings.SHIPPING_STOCK_LOOKUP_CONCURRENCY,
        ),
        parcel_provider=ParcelRateProvider(),
        freight_provider=FreightRateProvider(),
    )
