from shipping_rates.models.product import StorefrontProduct
from shipping_rates.models.warehouse import Warehouse, ProductWarehouseStock

__all__ = [
    "StorefrontProduct",
    "Warehouse",
    "ProductWarehouseStock",
]
