"""
Storefront product model (read-only to the rate engine)

Only the shipping-related columns are mapped. Carrier flags are nullable:
NULL means "not configured", which is distinct from an explicit False and
drives variant inheritance and fallback carrier detection.
"""
from sqlalchemy import Column, String, Float, Boolean, Index

from shipping_rates.core.database import Base


class StorefrontProduct(Base):
    __tablename__ = "storefront_products"
    __table_args__ = (
        Index("ix_storefront_products_sku", "sku"),
        Index("ix_storefront_products_variant_of", "variant_of"),
    )

    id = Column(String, primary_key=True)
    sku = Column(String, nullable=True)
    title = Column(String, nullable=True)

    # Shipping weight/dimensions in the unit given by the *_uom columns
    shipping_weight = Column(Float, nullable=True)
    shipping_weight_uom = Column(String(10), nullable=True)  # lb, oz, kg, g
    shipping_length = Column(Float, nullable=True)
    shipping_width = Column(Float, nullable=True)
    shipping_height = Column(Float, nullable=True)
    shipping_dimension_uom = Column(String(10), nullable=True)  # in, ft, cm, mm

    # Carrier eligibility
    ships_usps = Column(Boolean, nullable=True)
    ships_ups = Column(Boolean, nullable=True)
    ships_ltl = Column(Boolean, nullable=True)
    ships_pickup = Column(Boolean, nullable=True)

    # Handling
    hazmat_flag = Column(Boolean, nullable=True)
    hazmat_class = Column(String(20), nullable=True)
    oversized_flag = Column(Boolean, nullable=True)

    # Variant linkage: variant_of holds the parent SKU
    variant_of = Column(String, nullable=True)
    inherit_shipping_from_parent = Column(Boolean, default=False)
