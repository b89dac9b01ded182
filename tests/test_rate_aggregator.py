"""
Tests for the cart rate aggregation pipeline.
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from conftest import InMemoryStockStore, make_bare_product, make_product
from shipping_rates.core.exceptions import CatalogUnavailableError, ShippingValidationError
from shipping_rates.modules.shipping.carriers.base import RateQuote, RateSource
from shipping_rates.modules.shipping.carriers.easypost import UPS, USPS
from shipping_rates.modules.shipping.carriers.uship import FreightQuoteResult, FreightRateProvider
from shipping_rates.modules.shipping.domain import CartLine, RateRequest, StepResult
from shipping_rates.modules.shipping.warehouse_selector import WarehouseSelector
from shipping_rates.services.rate_aggregator import (
    PARCEL_NOT_CONFIGURED_WARNING,
    QuoteState,
    ShippingRateAggregator,
    consolidate_lines,
    format_markup,
    free_shipping_note,
    merge_rate_quotes,
    pickup_quote,
    validate_rate_request,
)


def freight_fallback_quote(rate: float = 425.5) -> RateQuote:
    return RateQuote(
        method="freight_fallback",
        carrier="LTL Freight",
        service="Standard Freight (New England (local))",
        rate=rate,
        transit_days=2,
    )


@pytest.fixture
def aggregator(mock_catalog, warehouse_selector, mock_parcel_provider, mock_freight_provider):
    return ShippingRateAggregator(
        catalog=mock_catalog,
        warehouse_selector=warehouse_selector,
        parcel_provider=mock_parcel_provider,
        freight_provider=mock_freight_provider,
        provider_timeout=1.0,
        free_shipping_threshold=2500,
    )


class TestRequestValidation:

    def test_empty_items(self):
        with pytest.raises(ShippingValidationError) as exc_info:
            validate_rate_request(RateRequest(items=[], destination_zip="02144"))
        assert exc_info.value.message == "items array is required and must not be empty"

    def test_missing_zip(self):
        with pytest.raises(ShippingValidationError) as exc_info:
            validate_rate_request(RateRequest(items=[CartLine("p1")], destination_zip=""))
        assert exc_info.value.message == "destination_zip is required"

    @pytest.mark.parametrize("zip_code", ["2144", "021444", "ABCDE", "02144-12"])
    def test_bad_zip_format(self, zip_code):
        with pytest.raises(ShippingValidationError) as exc_info:
            validate_rate_request(RateRequest(items=[CartLine("p1")], destination_zip=zip_code))
        assert exc_info.value.message.startswith("Invalid destination_zip format")

    def test_zero_quantity(self):
        with pytest.raises(ShippingValidationError) as exc_info:
            validate_rate_request(RateRequest(items=[CartLine("p1", 0)], destination_zip="02144"))
        assert exc_info.value.message == "Quantity for p1 must be at least 1"

    def test_zip_plus_four_accepted(self):
        validate_rate_request(RateRequest(items=[CartLine("p1")], destination_zip="02144-1234"))


class TestMergeRateQuotes:

    def test_pickup_first_then_by_rate(self, usps_ground_quote, ups_ground_quote, acton_warehouse):
        pickup = pickup_quote(acton_warehouse)

        merged = merge_rate_quotes([ups_ground_quote, usps_ground_quote, pickup])

        assert [q.method for q in merged] == ["pickup", "usps_ground_advantage", "ups_ground"]

    def test_dedup_keeps_cheapest(self, ups_ground_quote):
        cheaper = RateQuote(method="ups_ground", carrier="UPS", service="Ground", rate=9.99)

        merged = merge_rate_quotes([ups_ground_quote, cheaper])

        assert len(merged) == 1
        assert merged[0].rate == 9.99

    def test_merge_is_idempotent(self, usps_ground_quote, ups_ground_quote):
        once = merge_rate_quotes([ups_ground_quote, usps_ground_quote, freight_fallback_quote()])
        twice = merge_rate_quotes(once)

        assert twice == once

    def test_equal_rates_order_independent(self):
        a = RateQuote(method="ltl_a", carrier="Alpha", service="LTL Freight", rate=100)
        b = RateQuote(method="ltl_b", carrier="Beta", service="LTL Freight", rate=100)

        assert merge_rate_quotes([a, b]) == merge_rate_quotes([b, a])

    def test_pickup_quote_shape(self, acton_warehouse):
        quote = pickup_quote(acton_warehouse)

        assert quote.carrier == "Will Call"
        assert quote.service == "Local Pickup - Acton, MA"
        assert quote.rate == 0.0
        assert quote.transit_days == 0


class TestHelpers:

    def test_consolidate_lines(self):
        lines = consolidate_lines([CartLine("a", 1), CartLine("b", 2), CartLine("a", 3)])

        assert lines == [CartLine("a", 4), CartLine("b", 2)]

    def test_free_shipping_note(self):
        assert free_shipping_note(False, 2500) == (
            "Free shipping available on orders over $2,500 to commercial addresses"
        )
        assert free_shipping_note(True, 2500) is None

    def test_format_markup(self):
        assert format_markup(0.25) == "25%"
        assert format_markup(0.125) == "12.5%"


class TestParcelCarts:

    @pytest.mark.asyncio
    async def test_small_cart_gets_parcel_rates(
        self, aggregator, mock_catalog, mock_parcel_provider, mock_freight_provider,
        usps_ground_quote, ups_ground_quote,
    ):
        mock_catalog.products = {"p1": make_product("p1", weight=2.5)}
        mock_parcel_provider.fetch.return_value = StepResult(value=[ups_ground_quote, usps_ground_quote])

        result = await aggregator.quote(RateRequest(items=[CartLine("p1", 1)], destination_zip="02144"))

        assert [q.method for q in result.shipping_methods] == ["usps_ground_advantage", "ups_ground"]
        assert result.warehouse.id == "acton"
        assert result.state is QuoteState.DONE
        assert result.ltl_markup is None
        assert result.ltl_rate_source is None
        assert result.warnings == []
        mock_freight_provider.get_freight_rates.assert_not_called()

        carriers = mock_parcel_provider.fetch.call_args.args[3]
        assert carriers == [USPS, UPS]

    @pytest.mark.asyncio
    async def test_two_item_parcel_cart(
        self, aggregator, mock_catalog, mock_parcel_provider, usps_ground_quote, ups_ground_quote
    ):
        mock_catalog.products = {
            "a": make_product("a", weight=5),
            "b": make_product("b", weight=3),
        }
        mock_parcel_provider.fetch.return_value = StepResult(value=[usps_ground_quote, ups_ground_quote])

        result = await aggregator.quote(RateRequest(
            items=[CartLine("a", 1), CartLine("b", 1)],
            destination_zip="02144",
        ))

        profile = result.to_dict()["cart_shipping_profile"]
        assert profile["requires_ltl"] is False
        assert profile["total_weight_lbs"] == 8.0
        assert len(result.shipping_methods) == 2
        assert not any(q.method.startswith("ltl_") or q.method == "freight_fallback"
                       for q in result.shipping_methods)

    @pytest.mark.asyncio
    async def test_pickup_listed_first(self, aggregator, mock_catalog, mock_parcel_provider, usps_ground_quote):
        mock_catalog.products = {"p1": make_product("p1", ships_pickup=True)}
        mock_parcel_provider.fetch.return_value = StepResult(value=[usps_ground_quote])

        result = await aggregator.quote(RateRequest(items=[CartLine("p1", 1)], destination_zip="02144"))

        assert result.shipping_methods[0].method == "pickup"
        assert result.shipping_methods[1].method == "usps_ground_advantage"

    @pytest.mark.asyncio
    async def test_parcel_not_configured_warns(self, aggregator, mock_catalog, mock_parcel_provider):
        mock_catalog.products = {"p1": make_product("p1")}
        mock_parcel_provider.is_configured = False

        result = await aggregator.quote(RateRequest(items=[CartLine("p1", 1)], destination_zip="02144"))

        mock_parcel_provider.fetch.assert_not_called()
        assert result.shipping_methods == []
        assert PARCEL_NOT_CONFIGURED_WARNING in result.warnings

    @pytest.mark.asyncio
    async def test_parcel_provider_warnings_passed_through(self, aggregator, mock_catalog, mock_parcel_provider):
        mock_catalog.products = {"p1": make_product("p1")}
        mock_parcel_provider.fetch.return_value = StepResult(
            value=[], warnings=["Parcel rates unavailable: EasyPost: bad key"]
        )

        result = await aggregator.quote(RateRequest(items=[CartLine("p1", 1)], destination_zip="02144"))

        assert result.warnings == ["Parcel rates unavailable: EasyPost: bad key"]

    @pytest.mark.asyncio
    async def test_parcel_timeout_becomes_warning(self, aggregator, mock_catalog, mock_parcel_provider):
        mock_catalog.products = {"p1": make_product("p1")}

        async def slow_fetch(*args, **kwargs):
            await asyncio.sleep(5)

        mock_parcel_provider.fetch = slow_fetch
        aggregator.provider_timeout = 0.05

        result = await aggregator.quote(RateRequest(items=[CartLine("p1", 1)], destination_zip="02144"))

        assert result.shipping_methods == []
        assert result.warnings == ["Parcel rates timed out"]

    @pytest.mark.asyncio
    async def test_hazmat_cart_skips_parcel(self, aggregator, mock_catalog, mock_parcel_provider):
        mock_catalog.products = {"p1": make_product("p1", is_hazmat=True, hazmat_class="3")}

        result = await aggregator.quote(RateRequest(items=[CartLine("p1", 1)], destination_zip="02144"))

        mock_parcel_provider.fetch.assert_not_called()
        assert result.profile.has_hazmat is True

    @pytest.mark.asyncio
    async def test_repeated_lines_consolidated(self, aggregator, mock_catalog):
        mock_catalog.products = {"p1": make_product("p1", weight=1)}

        result = await aggregator.quote(RateRequest(
            items=[CartLine("p1", 2), CartLine("p1", 3)],
            destination_zip="02144",
        ))

        assert result.profile.total_item_count == 5
        assert result.profile.total_weight == 5


class TestFreightCarts:

    @pytest.mark.asyncio
    async def test_heavy_cart_gets_freight_not_parcel(
        self, aggregator, mock_catalog, mock_parcel_provider, mock_freight_provider
    ):
        mock_catalog.products = {
            "p1": make_product("p1", weight=200, ships_usps=False, ships_ups=False, ships_freight=True)
        }
        mock_freight_provider.get_freight_rates.return_value = FreightQuoteResult(
            quotes=[freight_fallback_quote()],
            source=RateSource.FALLBACK,
        )

        result = await aggregator.quote(RateRequest(
            items=[CartLine("p1", 1)],
            destination_zip="02144",
            destination_state="MA",
        ))

        mock_parcel_provider.fetch.assert_not_called()
        assert [q.method for q in result.shipping_methods] == ["freight_fallback"]
        assert result.ltl_markup == "25%"
        assert result.ltl_rate_source is RateSource.FALLBACK
        assert result.to_dict()["ltl_rate_source"] == "fallback"

        accessorials = mock_freight_provider.get_freight_rates.call_args.args[3]
        assert accessorials.liftgate_delivery is True
        assert accessorials.liftgate_pickup is False

    @pytest.mark.asyncio
    async def test_residential_delivery_requests_liftgate(self, aggregator, mock_catalog, mock_freight_provider):
        mock_catalog.products = {"p1": make_product("p1", length=60)}

        await aggregator.quote(RateRequest(
            items=[CartLine("p1", 1)],
            destination_zip="02144",
            destination_state="MA",
            residential=True,
        ))

        accessorials = mock_freight_provider.get_freight_rates.call_args.args[3]
        assert accessorials.residential_delivery is True
        assert accessorials.liftgate_delivery is True

    @pytest.mark.asyncio
    async def test_hawaii_without_api_requires_contact(self, mock_catalog, warehouse_selector, mock_parcel_provider):
        mock_catalog.products = {"p1": make_product("p1", weight=200, ships_usps=False, ships_ups=False)}
        aggregator = ShippingRateAggregator(
            catalog=mock_catalog,
            warehouse_selector=warehouse_selector,
            parcel_provider=mock_parcel_provider,
            freight_provider=FreightRateProvider(markup=0.25),
        )

        result = await aggregator.quote(RateRequest(
            items=[CartLine("p1", 1)],
            destination_zip="96813",
            destination_state="HI",
        ))

        assert (
            "LTL freight: Shipping to Hawaii requires a custom quote. Please contact us for pricing."
            in result.warnings
        )
        # Local pickup remains the only option
        assert [q.method for q in result.shipping_methods] == ["pickup"]
        assert result.ltl_rate_source is None

    @pytest.mark.asyncio
    async def test_real_fallback_table_priced(self, mock_catalog, warehouse_selector, mock_parcel_provider):
        mock_catalog.products = {"p1": make_product("p1", weight=200)}
        aggregator = ShippingRateAggregator(
            catalog=mock_catalog,
            warehouse_selector=warehouse_selector,
            parcel_provider=mock_parcel_provider,
            freight_provider=FreightRateProvider(markup=0.25),
        )

        result = await aggregator.quote(RateRequest(
            items=[CartLine("p1", 1)],
            destination_zip="02144",
            destination_state="MA",
        ))

        freight = result.shipping_methods[0]
        assert freight.method == "freight_fallback"
        # zone A, 200 lbs, liftgate delivery: (275 + 55 + 55 + 40) * 1.15
        assert freight.rate == pytest.approx(488.75)
        assert result.ltl_rate_source is RateSource.FALLBACK

    @pytest.mark.asyncio
    async def test_freight_exception_still_tries_table(self, aggregator, mock_catalog, mock_freight_provider):
        mock_catalog.products = {"p1": make_product("p1", weight=200)}
        mock_freight_provider.get_freight_rates = AsyncMock(side_effect=RuntimeError("boom"))
        mock_freight_provider.quote_fallback.return_value = FreightQuoteResult(
            quotes=[freight_fallback_quote()],
            source=RateSource.FALLBACK,
        )

        result = await aggregator.quote(RateRequest(
            items=[CartLine("p1", 1)],
            destination_zip="02144",
            destination_state="MA",
        ))

        assert mock_freight_provider.quote_fallback.call_args.args[3] == "Freight quote unavailable: boom"
        assert [q.method for q in result.shipping_methods] == ["freight_fallback"]
        assert result.warnings == []

    @pytest.mark.asyncio
    async def test_freight_failure_without_pickup_location(
        self, mock_catalog, default_warehouse, dallas_warehouse, mock_parcel_provider, mock_freight_provider
    ):
        mock_catalog.products = {"p1": make_product("p1", weight=300)}
        mock_freight_provider.get_freight_rates.return_value = FreightQuoteResult(error="uShip: outage")
        aggregator = ShippingRateAggregator(
            catalog=mock_catalog,
            warehouse_selector=WarehouseSelector(InMemoryStockStore([dallas_warehouse]), default_warehouse),
            parcel_provider=mock_parcel_provider,
            freight_provider=mock_freight_provider,
        )

        result = await aggregator.quote(RateRequest(items=[CartLine("p1", 1)], destination_zip="75001"))

        assert result.shipping_methods == []
        assert result.warnings == ["LTL freight: uShip: outage"]


class TestCatalogDegradation:

    @pytest.mark.asyncio
    async def test_no_products_found_is_invalid(self, aggregator):
        with pytest.raises(ShippingValidationError) as exc_info:
            await aggregator.quote(RateRequest(items=[CartLine("ghost", 1)], destination_zip="02144"))

        assert exc_info.value.message == "No valid products found"

    @pytest.mark.asyncio
    async def test_unknown_products_skipped(self, aggregator, mock_catalog):
        mock_catalog.products = {"p1": make_product("p1")}

        result = await aggregator.quote(RateRequest(
            items=[CartLine("p1", 1), CartLine("ghost", 2)],
            destination_zip="02144",
        ))

        assert result.profile.total_item_count == 1
        assert "Products not found and skipped: ghost" in result.warnings

    @pytest.mark.asyncio
    async def test_catalog_outage_uses_default_packages(self, aggregator, mock_catalog, mock_parcel_provider):
        mock_catalog.get_products = AsyncMock(side_effect=CatalogUnavailableError("Product lookup failed"))

        result = await aggregator.quote(RateRequest(items=[CartLine("p1", 2)], destination_zip="02144"))

        assert result.profile.total_weight == 2.0
        assert result.profile.used_fallback_detection is True
        assert "Product catalog unavailable; shipping estimated from default package sizes." in result.warnings
        assert "Product shipping configuration incomplete: p1" in result.warnings
        assert result.shipping_methods[0].method == "pickup"
        assert mock_parcel_provider.fetch.call_args.args[3] == [UPS]

    @pytest.mark.asyncio
    async def test_raw_connection_error_uses_default_packages(self, aggregator, mock_catalog):
        mock_catalog.get_products = AsyncMock(
            side_effect=ConnectionRefusedError(111, "Connect call failed")
        )

        result = await aggregator.quote(RateRequest(items=[CartLine("p1")], destination_zip="02144"))

        assert result.state is QuoteState.DONE
        assert result.profile.total_weight == 1.0
        assert "Product catalog unavailable; shipping estimated from default package sizes." in result.warnings
        assert result.shipping_methods[0].method == "pickup"

    @pytest.mark.asyncio
    async def test_unexpected_profile_error_uses_default_packages(self, aggregator):
        aggregator._resolve_profile = AsyncMock(side_effect=RuntimeError("bad row"))

        result = await aggregator.quote(RateRequest(items=[CartLine("p1", 3)], destination_zip="02144"))

        assert result.state is QuoteState.DONE
        assert result.profile.total_weight == 3.0
        assert result.warnings[0] == "Product catalog unavailable; shipping estimated from default package sizes."

    @pytest.mark.asyncio
    async def test_parent_lookup_timeout_warns(self, aggregator, mock_catalog):
        mock_catalog.products = {
            "v1": make_product("v1", parent_sku="PARENT", inherit_from_parent=True)
        }
        mock_catalog.get_parents = AsyncMock(side_effect=asyncio.TimeoutError())

        result = await aggregator.quote(RateRequest(items=[CartLine("v1", 1)], destination_zip="02144"))

        assert result.state is QuoteState.DONE
        assert "Parent product data unavailable; variants use their own shipping data." in result.warnings

    @pytest.mark.asyncio
    async def test_parent_lookup_failure_warns(self, aggregator, mock_catalog):
        mock_catalog.products = {
            "v1": make_product("v1", parent_sku="PARENT", inherit_from_parent=True)
        }
        mock_catalog.get_parents = AsyncMock(side_effect=CatalogUnavailableError("Parent product lookup failed"))

        result = await aggregator.quote(RateRequest(items=[CartLine("v1", 1)], destination_zip="02144"))

        assert "Parent product data unavailable; variants use their own shipping data." in result.warnings

    @pytest.mark.asyncio
    async def test_variant_inherits_parent_flags(self, aggregator, mock_catalog, mock_parcel_provider):
        mock_catalog.products = {
            "v1": make_bare_product("v1", weight=None, parent_sku="PARENT", inherit_from_parent=True)
        }
        mock_catalog.parents = {"PARENT": make_product("parent", sku="PARENT", weight=3.0, ships_usps=False)}

        result = await aggregator.quote(RateRequest(items=[CartLine("v1", 1)], destination_zip="02144"))

        assert result.profile.total_weight == 3.0
        assert result.profile.used_fallback_detection is False
        assert mock_parcel_provider.fetch.call_args.args[3] == [UPS]

    @pytest.mark.asyncio
    async def test_unflagged_products_warn(self, aggregator, mock_catalog):
        mock_catalog.products = {"a": make_bare_product("a")}

        result = await aggregator.quote(RateRequest(items=[CartLine("a", 1)], destination_zip="02144"))

        assert result.warnings == ["Product shipping configuration incomplete: SKU-a"]


class TestQuoteSerialization:

    @pytest.mark.asyncio
    async def test_to_dict(self, aggregator, mock_catalog, mock_parcel_provider, usps_ground_quote):
        mock_catalog.products = {"p1": make_product("p1")}
        mock_parcel_provider.fetch.return_value = StepResult(value=[usps_ground_quote])

        data = (await aggregator.quote(RateRequest(items=[CartLine("p1", 1)], destination_zip="02144"))).to_dict()

        assert data["success"] is True
        assert data["ship_from_warehouse"] == {
            "name": "Acton, MA",
            "city": "Acton",
            "state": "MA",
            "zip": "01720",
        }
        assert data["shipping_methods"][0]["rate"] == 8.45
        assert data["free_shipping_note"].startswith("Free shipping available")
        assert "warnings" not in data
