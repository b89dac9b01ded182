"""
Carrier-agnostic domain types for the rate engine.

These are plain dataclasses so the profile calculator, warehouse selector
and aggregator never depend on ORM rows or provider payloads.
"""
from dataclasses import dataclass, field
from typing import Generic, List, Optional, TypeVar

T = TypeVar("T")


@dataclass
class CartLine:
    """One requested product and quantity."""
    product_id: str
    quantity: int = 1


@dataclass
class RateRequest:
    """A cart rate request after schema validation."""
    items: List[CartLine]
    destination_zip: str
    destination_city: Optional[str] = None
    destination_state: Optional[str] = None
    destination_address: Optional[str] = None
    residential: bool = False


@dataclass
class ProductShippingAttributes:
    """
    Shipping attributes of one catalog product, normalized to lb / in.

    None means "not set"; variants resolve unset values from their parent.
    """
    product_id: str
    sku: Optional[str] = None
    title: Optional[str] = None
    weight: Optional[float] = None
    length: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None
    ships_usps: Optional[bool] = None
    ships_ups: Optional[bool] = None
    ships_freight: Optional[bool] = None
    ships_pickup: Optional[bool] = None
    is_hazmat: Optional[bool] = None
    hazmat_class: Optional[str] = None
    is_oversized: Optional[bool] = None
    parent_sku: Optional[str] = None
    inherit_from_parent: bool = False

    @property
    def inherits_shipping(self) -> bool:
        return bool(self.inherit_from_parent and self.parent_sku)


@dataclass
class WarehouseLocation:
    """A ship-from location."""
    id: str
    display_name: str
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[str] = "US"
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    is_pickup_location: bool = False
    is_active: bool = True


@dataclass
class StepResult(Generic[T]):
    """
    Outcome of one pipeline step: a usable value plus any warnings.

    Steps never raise for collaborator failures; they return a degraded
    value and say why in `warnings`.
    """
    value: T
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.warnings
