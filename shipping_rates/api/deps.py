"""
API dependencies
"""
from shipping_rates.modules.shipping.carriers.uship import FreightRateProvider
from shipping_rates.services.rate_aggregator import ShippingRateAggregator, get_rate_aggregator


def get_aggregator() -> ShippingRateAggregator:
    """Rate aggregator wired to the database catalog and live providers"""
    return get_rate_aggregator()


def get_freight_provider() -> FreightRateProvider:
    return FreightRateProvider()
