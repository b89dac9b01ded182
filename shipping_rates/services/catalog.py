"""
Catalog Store

Read-only access to products, warehouses and per-warehouse stock.

Each query opens its own short-lived session: an AsyncSession cannot run
statements concurrently, and the warehouse selector fans stock lookups
out in parallel. Database failures surface as CatalogUnavailableError.
"""
import asyncio
import logging
from typing import Callable, Dict, Iterable, List

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shipping_rates.core.config import settings
from shipping_rates.core.database import AsyncSessionLocal
from shipping_rates.core.exceptions import CatalogUnavailableError
from shipping_rates.models import ProductWarehouseStock, StorefrontProduct, Warehouse
from shipping_rates.modules.shipping.domain import ProductShippingAttributes, WarehouseLocation
from shipping_rates.modules.shipping.units import to_inches, to_pounds

logger = logging.getLogger(__name__)

# Driver connect failures surface as OSError or timeouts, not SQLAlchemyError
DB_ERRORS = (SQLAlchemyError, OSError, asyncio.TimeoutError)


def product_to_attributes(product: StorefrontProduct) -> ProductShippingAttributes:
    """Catalog row -> shipping attributes in pounds and inches."""
    dim_uom = product.shipping_dimension_uom
    return ProductShippingAttributes(
        product_id=product.id,
        sku=product.sku,
        title=product.title,
        weight=to_pounds(product.shipping_weight, product.shipping_weight_uom),
        length=to_inches(product.shipping_length, dim_uom),
        width=to_inches(product.shipping_width, dim_uom),
        height=to_inches(product.shipping_height, dim_uom),
        ships_usps=product.ships_usps,
        ships_ups=product.ships_ups,
        ships_freight=product.ships_ltl,
        ships_pickup=product.ships_pickup,
        is_hazmat=product.hazmat_flag,
        hazmat_class=product.hazmat_class,
        is_oversized=product.oversized_flag,
        parent_sku=product.variant_of,
        inherit_from_parent=bool(product.inherit_shipping_from_parent),
    )


def warehouse_to_location(warehouse: Warehouse) -> WarehouseLocation:
    return WarehouseLocation(
        id=warehouse.id,
        display_name=warehouse.display_name,
        street=warehouse.street1,
        city=warehouse.city,
        state=warehouse.state,
        zip=warehouse.zip,
        country=warehouse.country or "US",
        latitude=warehouse.latitude,
        longitude=warehouse.longitude,
        is_pickup_location=bool(warehouse.is_pickup_location),
        is_active=bool(warehouse.is_active),
    )


def default_warehouse_from_settings() -> WarehouseLocation:
    """The built-in ship-from location used when none are configured."""
    return WarehouseLocation(
        id=settings.DEFAULT_WAREHOUSE_ID,
        display_name=settings.DEFAULT_WAREHOUSE_NAME,
        street=settings.DEFAULT_WAREHOUSE_STREET,
        city=settings.DEFAULT_WAREHOUSE_CITY,
        state=settings.DEFAULT_WAREHOUSE_STATE,
        zip=settings.DEFAULT_WAREHOUSE_ZIP,
        country=settings.DEFAULT_WAREHOUSE_COUNTRY,
        latitude=settings.DEFAULT_WAREHOUSE_LATITUDE,
        longitude=settings.DEFAULT_WAREHOUSE_LONGITUDE,
        is_pickup_location=settings.DEFAULT_WAREHOUSE_IS_PICKUP,
    )


class CatalogStore:
    """
    Catalog, warehouse and stock queries.

    Satisfies the StockStore protocol used by the warehouse selector.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession] = AsyncSessionLocal):
        self.session_factory = session_factory

    async def get_products(self, product_ids: Iterable[str]) -> Dict[str, ProductShippingAttributes]:
        """Products by id; ids with no catalog row are simply absent."""
        ids = list(dict.fromkeys(product_ids))
        if not ids:
            return {}

        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(StorefrontProduct).where(StorefrontProduct.id.in_(ids))
                )
                rows = result.scalars().all()
        except DB_ERRORS as e:
            logger.error(f"Product lookup failed: {e}")
            raise CatalogUnavailableError("Product lookup failed", operation="get_products") from e

        return {row.id: product_to_attributes(row) for row in rows}

    async def get_parents(self, skus: Iterable[str]) -> Dict[str, ProductShippingAttributes]:
        """Parent products keyed by SKU."""
        wanted = [sku for sku in dict.fromkeys(skus) if sku]
        if not wanted:
            return {}

        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(StorefrontProduct).where(StorefrontProduct.sku.in_(wanted))
                )
                rows = result.scalars().all()
        except DB_ERRORS as e:
            logger.error(f"Parent product lookup failed: {e}")
            raise CatalogUnavailableError("Parent product lookup failed", operation="get_parents") from e

        return {row.sku: product_to_attributes(row) for row in rows}

    async def list_active_warehouses(self) -> List[WarehouseLocation]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(Warehouse).where(Warehouse.is_active.is_(True)).order_by(Warehouse.id)
                )
                rows = result.scalars().all()
        except DB_ERRORS as e:
            logger.error(f"Warehouse lookup failed: {e}")
            raise CatalogUnavailableError("Warehouse lookup failed", operation="list_active_warehouses") from e

        return [warehouse_to_location(row) for row in rows]

    async def has_any_stock_record(self, product_id: str) -> bool:
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(ProductWarehouseStock.warehouse_id)
                    .where(ProductWarehouseStock.product_id == product_id)
                    .limit(1)
                )
                return result.first() is not None
        except DB_ERRORS as e:
            logger.error(f"Stock record lookup failed for {product_id}: {e}")
            raise CatalogUnavailableError("Stock lookup failed", operation="has_any_stock_record") from e

    async def get_stock_quantity(self, product_id: str, warehouse_id: str) -> int:
        """Available quantity; 0 when the warehouse has no row for the product."""
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(ProductWarehouseStock.qty_available).where(
                        ProductWarehouseStock.product_id == product_id,
                        ProductWarehouseStock.warehouse_id == warehouse_id,
                    )
                )
                qty = result.scalar_one_or_none()
        except DB_ERRORS as e:
            logger.error(f"Stock quantity lookup failed for {product_id}@{warehouse_id}: {e}")
            raise CatalogUnavailableError("Stock lookup failed", operation="get_stock_quantity") from e

        return int(qty or 0)
