"""
LTL Fallback Rates

Static zone/weight rate table used when live freight quoting is
unavailable. Covers the 48 contiguous states plus DC, priced from the
Acton, MA warehouse (zone A). Alaska, Hawaii and Puerto Rico always need
a manual quote.

Price = base rate + 20% fuel + accessorials + insurance, plus a 15% buffer
for carrier rate variation.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from shipping_rates.core.exceptions import FreightFallbackError

logger = logging.getLogger(__name__)

CONTIGUOUS_ZONES = ("A", "B", "C", "D", "E")

ZONE_DESCRIPTIONS: Dict[str, str] = {
    "A": "New England (local)",
    "B": "Mid-Atlantic",
    "C": "Southeast / Near Midwest",
    "D": "Central / South Central",
    "E": "West / Mountain",
    "PR": "Puerto Rico",
    "HI": "Hawaii",
    "AK": "Alaska",
}

_ZONE_STATES: Dict[str, Tuple[str, ...]] = {
    "A": ("MA", "ME", "NH", "RI", "VT"),
    "B": ("CT", "DC", "DE", "MD", "NJ", "NY", "PA"),
    "C": ("AL", "FL", "GA", "IN", "KY", "MI", "MS", "NC", "OH", "SC", "TN", "VA", "WV"),
    "D": ("AR", "IA", "IL", "KS", "LA", "MN", "MO", "ND", "NE", "OK", "SD", "TX", "WI"),
    "E": ("AZ", "CA", "CO", "ID", "MT", "NM", "NV", "OR", "UT", "WA", "WY"),
    "AK": ("AK",),
    "HI": ("HI",),
    "PR": ("PR",),
}

STATE_TO_ZONE: Dict[str, str] = {
    state: zone for zone, states in _ZONE_STATES.items() for state in states
}

# (max lbs, {zone: base rate}); a weight uses the first bracket it fits under
BASE_RATE_TABLE: List[Tuple[int, Dict[str, int]]] = [
    (99, {"A": 200, "B": 225, "C": 250, "D": 300, "E": 350}),
    (249, {"A": 275, "B": 300, "C": 325, "D": 375, "E": 425}),
    (499, {"A": 325, "B": 375, "C": 400, "D": 450, "E": 525}),
    (749, {"A": 375, "B": 450, "C": 500, "D": 550, "E": 650}),
    (999, {"A": 425, "B": 525, "C": 600, "D": 675, "E": 800}),
    (1499, {"A": 500, "B": 625, "C": 725, "D": 825, "E": 975}),
    (1999, {"A": 600, "B": 750, "C": 875, "D": 1000, "E": 1175}),
    (2499, {"A": 725, "B": 900, "C": 1050, "D": 1200, "E": 1400}),
    (2999, {"A": 850, "B": 1050, "C": 1225, "D": 1400, "E": 1625}),
    (3499, {"A": 975, "B": 1200, "C": 1400, "D": 1600, "E": 1875}),
    (3999, {"A": 1100, "B": 1350, "C": 1575, "D": 1800, "E": 2100}),
    (4499, {"A": 1225, "B": 1500, "C": 1750, "D": 2000, "E": 2350}),
    (4999, {"A": 1350, "B": 1650, "C": 1925, "D": 2200, "E": 2575}),
]

MAX_WEIGHT_FOR_AUTO_QUOTE = 4999

ACCESSORIAL_FEES: Dict[str, int] = {
    "liftgate_pickup": 55,
    "liftgate_delivery": 55,
    "residential_pickup": 65,
    "residential_delivery": 65,
    "inside_pickup": 85,
    "inside_delivery": 85,
    "limited_access_pickup": 75,
    "limited_access_delivery": 75,
    "appointment_required": 25,
    "sort_and_segregate": 35,
    "hazmat": 150,
}

FUEL_SURCHARGE_PERCENT = 0.20
BASIC_INSURANCE_FEE = 40
RATE_BUFFER_PERCENT = 0.15

TRANSIT_DAYS_BY_ZONE: Dict[str, int] = {"A": 2, "B": 3, "C": 4, "D": 5, "E": 6}


@dataclass
class LtlAccessorials:
    """Optional services that add flat fees to a fallback quote."""
    liftgate_pickup: bool = False
    liftgate_delivery: bool = False
    residential_pickup: bool = False
    residential_delivery: bool = False
    inside_pickup: bool = False
    inside_delivery: bool = False
    limited_access_pickup: bool = False
    limited_access_delivery: bool = False
    appointment_required: bool = False
    sort_and_segregate: bool = False
    hazmat: bool = False

    def selected(self) -> List[str]:
        return [name for name in ACCESSORIAL_FEES if getattr(self, name)]


@dataclass
class LtlFallbackQuote:
    """Priced fallback quote with its full breakdown."""
    zone: str
    zone_description: str
    base_rate: float
    fuel_surcharge: float
    accessorial_fees: float
    accessorial_breakdown: Dict[str, float] = field(default_factory=dict)
    insurance: float = BASIC_INSURANCE_FEE
    subtotal: float = 0.0
    buffer: float = 0.0
    total_rate: float = 0.0
    transit_days_estimate: Optional[int] = None
    is_fallback_rate: bool = True

    def to_dict(self) -> Dict:
        return {
            "zone": self.zone,
            "zone_description": self.zone_description,
            "base_rate": self.base_rate,
            "fuel_surcharge": self.fuel_surcharge,
            "accessorial_fees": self.accessorial_fees,
            "accessorial_breakdown": dict(self.accessorial_breakdown),
            "insurance": self.insurance,
            "subtotal": self.subtotal,
            "buffer": self.buffer,
            "total_rate": self.total_rate,
            "transit_days_estimate": self.transit_days_estimate,
            "is_fallback_rate": self.is_fallback_rate,
        }


def _label(name: str) -> str:
    return name.replace("_", " ").title()


def get_zone_for_state(state: Optional[str]) -> Optional[str]:
    """Zone code for a 2-letter state, or None when unknown."""
    if not state:
        return None
    return STATE_TO_ZONE.get(state.strip().upper())


def is_state_supported(state: Optional[str]) -> bool:
    """Whether the table can quote this state automatically."""
    return get_zone_for_state(state) in CONTIGUOUS_ZONES


def get_ltl_fallback_quote(
    destination_state: str,
    weight_lbs: float,
    accessorials: Optional[LtlAccessorials] = None,
) -> LtlFallbackQuote:
    """
    Price a freight shipment from the static table.

    Args:
        destination_state: 2-letter state code
        weight_lbs: Total shipment weight
        accessorials: Optional services to add

    Returns:
        LtlFallbackQuote

    Raises:
        FreightFallbackError: unknown state, non-contiguous destination, or a
            weight outside what the table covers. `requires_contact` tells the
            caller whether a manual quote is the way forward.
    """
    accessorials = accessorials or LtlAccessorials()

    zone = get_zone_for_state(destination_state)
    if zone is None:
        raise FreightFallbackError(
            f"Unknown state: {destination_state}. Please provide a valid 2-letter US state code.",
            requires_contact=False,
        )

    if zone not in CONTIGUOUS_ZONES:
        raise FreightFallbackError(
            f"Shipping to {ZONE_DESCRIPTIONS[zone]} requires a custom quote. Please contact us for pricing.",
            requires_contact=True,
        )

    if weight_lbs <= 0:
        raise FreightFallbackError("Weight must be greater than 0 lbs.", requires_contact=False)

    if weight_lbs > MAX_WEIGHT_FOR_AUTO_QUOTE:
        raise FreightFallbackError(
            f"Shipments over {MAX_WEIGHT_FOR_AUTO_QUOTE} lbs require a custom quote. Please contact us for pricing.",
            requires_contact=True,
        )

    base_rate = next(rates[zone] for max_lbs, rates in BASE_RATE_TABLE if weight_lbs <= max_lbs)
    fuel_surcharge = round(base_rate * FUEL_SURCHARGE_PERCENT, 2)

    breakdown = {_label(name): ACCESSORIAL_FEES[name] for name in accessorials.selected()}
    accessorial_fees = sum(breakdown.values())

    subtotal = base_rate + fuel_surcharge + accessorial_fees + BASIC_INSURANCE_FEE
    buffer = round(subtotal * RATE_BUFFER_PERCENT, 2)
    total_rate = round(subtotal + buffer, 2)

    logger.info(
        f"LTL fallback quote: zone {zone}, {weight_lbs:.1f} lbs -> ${total_rate:.2f}"
    )

    return LtlFallbackQuote(
        zone=zone,
        zone_description=ZONE_DESCRIPTIONS[zone],
        base_rate=base_rate,
        fuel_surcharge=fuel_surcharge,
        accessorial_fees=accessorial_fees,
        accessorial_breakdown=breakdown,
        insurance=BASIC_INSURANCE_FEE,
        subtotal=round(subtotal, 2),
        buffer=buffer,
        total_rate=total_rate,
        transit_days_estimate=TRANSIT_DAYS_BY_ZONE.get(zone),
    )
