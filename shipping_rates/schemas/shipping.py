"""
Shipping rate schemas

Pydantic models for the cart-rates, ltl-rates and ltl-fallback endpoints.
"""
import re
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from shipping_rates.modules.shipping.domain import CartLine, RateRequest

ZIP_RE = re.compile(r"^\d{5}(-\d{4})?$")
STATE_RE = re.compile(r"^[A-Za-z]{2}$")


def _validate_zip(v: Optional[str], name: str) -> Optional[str]:
    if v is None:
        return v
    v = v.strip()
    if not ZIP_RE.match(v):
        raise ValueError(f"Invalid {name} format. Use 5-digit ZIP (e.g., \"01720\")")
    return v


def _validate_state(v: Optional[str]) -> Optional[str]:
    if v is None or v.strip() == "":
        return None
    v = v.strip()
    if not STATE_RE.match(v):
        raise ValueError("State must be a 2-letter US state code")
    return v.upper()


# ==================== Cart Rates ====================


class CartItemRequest(BaseModel):
    """One cart line."""
    product_id: Union[str, int]
    quantity: int = 1

    @field_validator("product_id")
    @classmethod
    def product_id_to_str(cls, v):
        v = str(v).strip()
        if not v:
            raise ValueError("product_id is required")
        return v

    @field_validator("quantity")
    @classmethod
    def validate_quantity(cls, v):
        if v < 1:
            raise ValueError("quantity must be at least 1")
        return v


class CartRatesRequest(BaseModel):
    """Request shipping options for a cart."""
    items: List[CartItemRequest]
    destination_zip: str
    destination_city: Optional[str] = Field(None, max_length=100)
    destination_state: Optional[str] = None
    destination_address: Optional[str] = Field(None, max_length=200)
    residential: bool = False

    @field_validator("items")
    @classmethod
    def validate_items(cls, v):
        if not v:
            raise ValueError("items array is required and must not be empty")
        return v

    @field_validator("destination_zip")
    @classmethod
    def validate_destination_zip(cls, v):
        return _validate_zip(v, "destination_zip")

    @field_validator("destination_state")
    @classmethod
    def validate_destination_state(cls, v):
        return _validate_state(v)

    def to_domain(self) -> RateRequest:
        return RateRequest(
            items=[CartLine(product_id=str(i.product_id), quantity=i.quantity) for i in self.items],
            destination_zip=self.destination_zip,
            destination_city=self.destination_city,
            destination_state=self.destination_state,
            destination_address=self.destination_address,
            residential=self.residential,
        )


class ShipFromWarehouseResponse(BaseModel):
    name: str
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None


class ShippingMethodResponse(BaseModel):
    """A single shipping option."""
    method: str
    carrier: str
    service: str
    rate: float
    transit_days: Optional[int] = None
    delivery_date: Optional[str] = None
    guaranteed: bool = False


class FallbackProductResponse(BaseModel):
    sku: str
    title: str


class CartShippingProfileResponse(BaseModel):
    """Aggregate cart shape and carrier eligibility."""
    total_weight_lbs: float
    total_length_in: float
    total_width_in: float
    total_height_in: float
    total_items: int
    requires_ltl: bool
    ltl_flagged: bool = False
    requires_liftgate: bool
    has_hazmat: bool
    hazmat_classes: List[str] = []
    has_oversized: bool
    pickup_available: bool
    usps_eligible: bool
    ups_eligible: bool
    eligibility_source: str
    eligibility_reason: Optional[str] = None
    used_fallback_detection: bool
    fallback_products: List[FallbackProductResponse] = []


class CartRatesResponse(BaseModel):
    """Ranked shipping options for a cart."""
    success: bool = True
    ship_from_warehouse: ShipFromWarehouseResponse
    shipping_methods: List[ShippingMethodResponse]
    cart_shipping_profile: CartShippingProfileResponse
    free_shipping_note: Optional[str] = None
    ltl_markup: Optional[str] = None
    ltl_rate_source: Optional[str] = None
    warnings: Optional[List[str]] = None


# ==================== LTL Freight ====================


class LtlRatesRequest(BaseModel):
    """Quote freight for an explicit weight and size."""
    from_zip: str
    from_city: Optional[str] = None
    from_state: Optional[str] = None
    from_address: Optional[str] = None
    to_zip: str
    to_city: Optional[str] = None
    to_state: Optional[str] = None
    to_address: Optional[str] = None
    weight_lbs: float = Field(..., gt=0)
    length_in: float = Field(..., gt=0)
    width_in: float = Field(..., gt=0)
    height_in: float = Field(..., gt=0)
    description: Optional[str] = Field(None, max_length=200)
    liftgate_pickup: bool = False
    liftgate_delivery: bool = False
    residential_delivery: bool = False
    inside_delivery: bool = False
    hazmat: bool = False

    @field_validator("from_zip")
    @classmethod
    def validate_from_zip(cls, v):
        return _validate_zip(v, "from_zip")

    @field_validator("to_zip")
    @classmethod
    def validate_to_zip(cls, v):
        return _validate_zip(v, "to_zip")

    @field_validator("from_state", "to_state")
    @classmethod
    def validate_states(cls, v):
        return _validate_state(v)


class LtlRatesResponse(BaseModel):
    success: bool = True
    source: Optional[str] = None
    quote_count: int
    quotes: List[ShippingMethodResponse]
    cheapest: Optional[ShippingMethodResponse] = None
    markup: str
    error: Optional[str] = None
    requires_contact: bool = False
    note: str = "LTL rates are estimates. Final price confirmed at booking."


class LtlFallbackResponse(BaseModel):
    """Full fallback table breakdown."""
    success: bool = True
    state: str
    weight_lbs: float
    zone: str
    zone_description: str
    base_rate: float
    fuel_surcharge: float
    accessorial_fees: float
    accessorial_breakdown: Dict[str, float]
    insurance: float
    subtotal: float
    buffer: float
    total_rate: float
    transit_days_estimate: Optional[int] = None
    is_fallback_rate: bool = True


class EndpointDescription(BaseModel):
    status: str = "ok"
    endpoint: str
    description: str
    methods: List[str]
    expected_payload: Dict[str, Any]
    notes: List[str] = []
