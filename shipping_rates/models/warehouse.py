"""
Warehouse and per-warehouse stock models (read-only to the rate engine)
"""
from sqlalchemy import Column, String, Float, Boolean, Integer, Index

from shipping_rates.core.database import Base


class Warehouse(Base):
    __tablename__ = "warehouses"
    __table_args__ = (
        Index("ix_warehouses_active", "is_active"),
    )

    id = Column(String, primary_key=True)
    erpnext_name = Column(String, nullable=True)
    display_name = Column(String, nullable=False)

    street1 = Column(String, nullable=True)
    city = Column(String, nullable=True)
    state = Column(String(2), nullable=True)
    zip = Column(String(10), nullable=True)
    country = Column(String(2), default="US")
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    is_pickup_location = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class ProductWarehouseStock(Base):
    """
    Stock of one product in one warehouse.

    A product with no rows here at all is drop-ship / made-to-order.
    """
    __tablename__ = "product_warehouse_stock"
    __table_args__ = (
        Index("ix_product_warehouse_stock_product", "product_id"),
    )

    product_id = Column(String, primary_key=True)
    warehouse_id = Column(String, primary_key=True)
    qty_available = Column(Integer, default=0, nullable=False)
