"""
Warehouse Selector

Picks the ship-from location for a cart:
1. No active warehouses -> the configured default
2. Items with no stock record anywhere are drop-ship and impose no constraint
3. Nearest warehouse holding enough stock of every stock-tracked item
4. Nothing qualifies (or everything is drop-ship) -> nearest regardless of stock
5. Any lookup failure -> the configured default, with a warning

Selection never fails a quote; it always resolves to some warehouse.
"""
import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from shipping_rates.modules.shipping.domain import CartLine, WarehouseLocation
from shipping_rates.modules.shipping.geo import warehouse_distance

logger = logging.getLogger(__name__)


class StockStore(Protocol):
    """Read-only warehouse and stock queries the selector needs."""

    async def list_active_warehouses(self) -> List[WarehouseLocation]: ...

    async def has_any_stock_record(self, product_id: str) -> bool: ...

    async def get_stock_quantity(self, product_id: str, warehouse_id: str) -> int: ...


# Strategy names reported with each selection
STRATEGY_DEFAULT_UNCONFIGURED = "default_unconfigured"
STRATEGY_NEAREST_WITH_STOCK = "nearest_with_stock"
STRATEGY_NEAREST_DROPSHIP = "nearest_dropship"
STRATEGY_NEAREST_ANY = "nearest_any"
STRATEGY_DEFAULT_ERROR = "default_error"


@dataclass
class WarehouseSelection:
    """The chosen warehouse and how it was chosen."""
    warehouse: WarehouseLocation
    strategy: str
    distance_miles: Optional[float] = None
    warnings: List[str] = field(default_factory=list)


class WarehouseSelector:
    """
    Nearest-warehouse-with-stock search.

    The default warehouse is injected at construction; it is returned when
    nothing is configured or when any lookup fails.
    """

    def __init__(
        self,
        stock_store: StockStore,
        default_warehouse: WarehouseLocation,
        concurrency: int = 8,
    ):
        self.stock_store = stock_store
        self.default_warehouse = default_warehouse
        self.concurrency = max(1, concurrency)

    async def select(self, items: Sequence[CartLine], destination_zip: str) -> WarehouseSelection:
        """
        Select the ship-from warehouse for a cart.

        Args:
            items: Cart lines (product id + quantity)
            destination_zip: Destination ZIP code

        Returns:
            WarehouseSelection, never None
        """
        try:
            return await self._select(items, destination_zip)
        except Exception as e:
            logger.error(f"Warehouse selection failed, using default warehouse: {e}")
            return WarehouseSelection(
                warehouse=self.default_warehouse,
                strategy=STRATEGY_DEFAULT_ERROR,
                warnings=[f"Warehouse lookup failed; shipping from {self.default_warehouse.display_name}."],
            )

    async def _select(self, items: Sequence[CartLine], destination_zip: str) -> WarehouseSelection:
        warehouses = await self.stock_store.list_active_warehouses()
        if not warehouses:
            logger.info("No warehouses configured, using default")
            return WarehouseSelection(
                warehouse=self.default_warehouse,
                strategy=STRATEGY_DEFAULT_UNCONFIGURED,
            )

        semaphore = asyncio.Semaphore(self.concurrency)

        tracked = await self._stock_tracked_items(items, semaphore)
        if not tracked:
            logger.info("All items are dropship/MTO - selecting nearest warehouse")
            return self._nearest(warehouses, destination_zip, STRATEGY_NEAREST_DROPSHIP)

        stocked = await self._warehouses_with_stock(warehouses, tracked, semaphore)
        if not stocked:
            logger.info("No warehouse has all stocked items, using nearest warehouse")
            return self._nearest(warehouses, destination_zip, STRATEGY_NEAREST_ANY)

        selection = self._nearest(stocked, destination_zip, STRATEGY_NEAREST_WITH_STOCK)
        logger.info(
            f"Best warehouse: {selection.warehouse.display_name} "
            f"({_format_miles(selection.distance_miles)})"
        )
        return selection

    async def _stock_tracked_items(
        self,
        items: Sequence[CartLine],
        semaphore: asyncio.Semaphore,
    ) -> List[CartLine]:
        """Items with at least one stock record anywhere; the rest are drop-ship."""

        async def check(item: CartLine) -> bool:
            async with semaphore:
                return await self.stock_store.has_any_stock_record(item.product_id)

        flags = await asyncio.gather(*(check(item) for item in items))

        tracked = []
        for item, has_record in zip(items, flags):
            if has_record:
                tracked.append(item)
            else:
                logger.debug(f"Item {item.product_id} has no stock records - treating as dropship/MTO")
        return tracked

    async def _warehouses_with_stock(
        self,
        warehouses: Sequence[WarehouseLocation],
        tracked: Sequence[CartLine],
        semaphore: asyncio.Semaphore,
    ) -> List[WarehouseLocation]:
        """Warehouses holding at least the requested quantity of every tracked item."""

        async def check(warehouse: WarehouseLocation, item: CartLine) -> Tuple[str, bool]:
            async with semaphore:
                available = await self.stock_store.get_stock_quantity(item.product_id, warehouse.id)
            return warehouse.id, (available or 0) >= item.quantity

        results = await asyncio.gather(
            *(check(warehouse, item) for warehouse in warehouses for item in tracked)
        )

        passing: Dict[str, bool] = {warehouse.id: True for warehouse in warehouses}
        for warehouse_id, ok in results:
            passing[warehouse_id] = passing[warehouse_id] and ok

        return [warehouse for warehouse in warehouses if passing[warehouse.id]]

    def _nearest(
        self,
        warehouses: Sequence[WarehouseLocation],
        destination_zip: str,
        strategy: str,
    ) -> WarehouseSelection:
        # min() keeps the first of equally distant warehouses
        distance, warehouse = min(
            ((warehouse_distance(w, destination_zip), w) for w in warehouses),
            key=lambda pair: pair[0],
        )
        return WarehouseSelection(
            warehouse=warehouse,
            strategy=strategy,
            distance_miles=None if math.isinf(distance) else distance,
        )


def _format_miles(distance: Optional[float]) -> str:
    return "distance unknown" if distance is None else f"{distance:.0f} miles"
