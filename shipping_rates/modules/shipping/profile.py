"""
Cart Shipping Profile

Aggregates the physical shape and carrier eligibility of a whole cart:
- Variants inheriting shipping data resolve each unset attribute from the
  parent product, then from a hard default
- Weight and heights accumulate per unit; length/width take the max,
  which is how a pallet is built
- Parcel carriers need every item to allow them (AND); freight, pickup,
  hazmat and oversized are triggered by any one item (OR)
- When no item carries any carrier flag, eligibility is inferred from
  weight and size instead of blocking checkout

Values are kept unrounded; rounding happens in to_dict().
"""
import enum
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from shipping_rates.modules.shipping.domain import ProductShippingAttributes

logger = logging.getLogger(__name__)

DEFAULT_WEIGHT_LBS = 1.0
DEFAULT_LENGTH_IN = 12.0
DEFAULT_WIDTH_IN = 12.0
DEFAULT_HEIGHT_IN = 6.0


class EligibilitySource(str, enum.Enum):
    """Where the carrier eligibility of a profile came from."""
    EXPLICIT = "explicit"  # product carrier flags
    INFERRED = "inferred"  # weight/size heuristic, flags absent


@dataclass(frozen=True)
class ProfileThresholds:
    """Cut-offs that decide freight, liftgate and inferred parcel eligibility."""
    freight_weight_lbs: float = 150.0
    freight_dimension_in: float = 48.0
    liftgate_weight_lbs: float = 100.0
    inferred_parcel_max_weight_lbs: float = 70.0
    inferred_parcel_max_dimension_in: float = 48.0

    @classmethod
    def from_settings(cls, settings) -> "ProfileThresholds":
        return cls(
            freight_weight_lbs=settings.SHIPPING_LTL_WEIGHT_THRESHOLD_LBS,
            freight_dimension_in=settings.SHIPPING_LTL_DIMENSION_THRESHOLD_IN,
            liftgate_weight_lbs=settings.SHIPPING_LIFTGATE_WEIGHT_THRESHOLD_LBS,
        )


@dataclass
class ProductWithoutFlags:
    sku: str
    title: str


@dataclass
class ShippingProfile:
    """Aggregate shipping profile of a cart."""
    total_weight: float = 0.0
    max_length: float = 0.0
    max_width: float = 0.0
    stacked_height: float = 0.0
    total_item_count: int = 0
    requires_freight: bool = False
    requires_liftgate: bool = False
    has_hazmat: bool = False
    hazmat_classes: List[str] = field(default_factory=list)
    has_oversized: bool = False
    pickup_available: bool = False
    freight_flagged: bool = False
    usps_eligible: bool = False
    ups_eligible: bool = False
    eligibility_source: EligibilitySource = EligibilitySource.EXPLICIT
    eligibility_reason: Optional[str] = None
    products_without_flags: List[ProductWithoutFlags] = field(default_factory=list)

    @property
    def used_fallback_detection(self) -> bool:
        return self.eligibility_source is EligibilitySource.INFERRED

    @property
    def parcel_eligible(self) -> bool:
        return self.usps_eligible or self.ups_eligible

    def to_dict(self) -> Dict:
        """Presentation form; the only place values are rounded."""
        return {
            "total_weight_lbs": round(self.total_weight, 2),
            "total_length_in": round(self.max_length, 2),
            "total_width_in": round(self.max_width, 2),
            "total_height_in": round(self.stacked_height, 2),
            "total_items": self.total_item_count,
            "requires_ltl": self.requires_freight,
            "ltl_flagged": self.freight_flagged,
            "requires_liftgate": self.requires_liftgate,
            "has_hazmat": self.has_hazmat,
            "hazmat_classes": list(self.hazmat_classes),
            "has_oversized": self.has_oversized,
            "pickup_available": self.pickup_available,
            "usps_eligible": self.usps_eligible,
            "ups_eligible": self.ups_eligible,
            "eligibility_source": self.eligibility_source.value,
            "eligibility_reason": self.eligibility_reason,
            "used_fallback_detection": self.used_fallback_detection,
            "fallback_products": [
                {"sku": p.sku, "title": p.title} for p in self.products_without_flags
            ],
        }


@dataclass
class ResolvedAttributes:
    """Effective shipping attributes of one line after inheritance and defaults."""
    weight: float
    length: float
    width: float
    height: float
    ships_usps: bool
    ships_ups: bool
    ships_freight: bool
    ships_pickup: bool
    is_hazmat: bool
    hazmat_class: Optional[str]
    is_oversized: bool

    @property
    def has_any_carrier_flag(self) -> bool:
        return self.ships_usps or self.ships_ups or self.ships_freight or self.ships_pickup


def resolve_attributes(
    product: ProductShippingAttributes,
    parents: Mapping[str, ProductShippingAttributes],
) -> ResolvedAttributes:
    """
    Resolve `variant value ?? parent value ?? default` for every attribute.

    The parent is only consulted for variants flagged to inherit; a missing
    parent record simply skips that step.
    """
    parent = parents.get(product.parent_sku) if product.inherits_shipping else None

    def pick(name: str, default):
        value = getattr(product, name)
        if value is None and parent is not None:
            value = getattr(parent, name)
        return default if value is None else value

    return ResolvedAttributes(
        weight=float(pick("weight", DEFAULT_WEIGHT_LBS)),
        length=float(pick("length", DEFAULT_LENGTH_IN)),
        width=float(pick("width", DEFAULT_WIDTH_IN)),
        height=float(pick("height", DEFAULT_HEIGHT_IN)),
        ships_usps=bool(pick("ships_usps", False)),
        ships_ups=bool(pick("ships_ups", False)),
        ships_freight=bool(pick("ships_freight", False)),
        ships_pickup=bool(pick("ships_pickup", False)),
        is_hazmat=bool(pick("is_hazmat", False)),
        hazmat_class=pick("hazmat_class", None),
        is_oversized=bool(pick("is_oversized", False)),
    )


def calculate_shipping_profile(
    lines: Sequence[Tuple[ProductShippingAttributes, int]],
    parents: Optional[Mapping[str, ProductShippingAttributes]] = None,
    thresholds: Optional[ProfileThresholds] = None,
) -> ShippingProfile:
    """
    Build the aggregate shipping profile for (product, quantity) pairs.

    Args:
        lines: Products with their requested quantities
        parents: Parent products keyed by SKU, for variants that inherit
        thresholds: Freight/liftgate cut-offs (defaults: 150 lb, 48 in, 100 lb)

    Returns:
        ShippingProfile with eligibility tagged EXPLICIT or INFERRED
    """
    parents = parents or {}
    thresholds = thresholds or ProfileThresholds()
    profile = ShippingProfile()

    all_usps = True
    all_ups = True

    for product, quantity in lines:
        attrs = resolve_attributes(product, parents)

        profile.total_weight += attrs.weight * quantity
        profile.max_length = max(profile.max_length, attrs.length)
        profile.max_width = max(profile.max_width, attrs.width)
        profile.stacked_height += attrs.height * quantity
        profile.total_item_count += quantity

        if not attrs.has_any_carrier_flag:
            profile.products_without_flags.append(ProductWithoutFlags(
                sku=product.sku or "unknown",
                title=product.title or "Unknown Product",
            ))

        all_usps = all_usps and attrs.ships_usps
        all_ups = all_ups and attrs.ships_ups

        profile.freight_flagged = profile.freight_flagged or attrs.ships_freight
        profile.pickup_available = profile.pickup_available or attrs.ships_pickup
        profile.has_oversized = profile.has_oversized or attrs.is_oversized
        if attrs.is_hazmat:
            profile.has_hazmat = True
            if attrs.hazmat_class and attrs.hazmat_class not in profile.hazmat_classes:
                profile.hazmat_classes.append(attrs.hazmat_class)

    dim_limit = thresholds.freight_dimension_in
    profile.requires_freight = (
        profile.total_weight > thresholds.freight_weight_lbs
        or profile.max_length > dim_limit
        or profile.max_width > dim_limit
        or profile.stacked_height > dim_limit
        or profile.has_oversized
    )
    profile.requires_liftgate = (
        profile.has_oversized or profile.total_weight > thresholds.liftgate_weight_lbs
    )

    if lines and len(profile.products_without_flags) == len(lines):
        _apply_inferred_eligibility(profile, thresholds)
    else:
        profile.usps_eligible = all_usps and bool(lines)
        profile.ups_eligible = all_ups and bool(lines)

    return profile


def _apply_inferred_eligibility(profile: ShippingProfile, thresholds: ProfileThresholds) -> None:
    """No product has carrier flags yet: guess from weight and size."""
    skus = ", ".join(p.sku for p in profile.products_without_flags)
    logger.warning(f"No carrier flags set on products, using auto-detection: {skus}")

    limit = thresholds.inferred_parcel_max_dimension_in
    fits_parcel = (
        profile.total_weight <= thresholds.inferred_parcel_max_weight_lbs
        and profile.max_length <= limit
        and profile.max_width <= limit
        and profile.stacked_height <= limit
        and not profile.has_hazmat
    )

    # USPS size limits are too strict to guess safely
    profile.usps_eligible = False
    profile.ups_eligible = fits_parcel and not profile.requires_freight
    profile.pickup_available = True
    profile.eligibility_source = EligibilitySource.INFERRED
    profile.eligibility_reason = f"carrier flags missing on all products ({skus})"
