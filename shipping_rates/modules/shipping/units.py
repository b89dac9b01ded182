"""
Unit normalization for catalog shipping data.

The catalog stores a weight UOM and a dimension UOM next to the raw
numbers; the rate engine works in pounds and inches only.
"""
import logging
from typing import Optional

logger = logging.getLogger(__name__)

# Multipliers into pounds
WEIGHT_TO_POUNDS = {
    "lb": 1.0,
    "lbs": 1.0,
    "pound": 1.0,
    "pounds": 1.0,
    "oz": 1 / 16,
    "ounce": 1 / 16,
    "ounces": 1 / 16,
    "kg": 2.20462262,
    "kgs": 2.20462262,
    "kilogram": 2.20462262,
    "g": 0.00220462262,
    "gram": 0.00220462262,
}

# Multipliers into inches
LENGTH_TO_INCHES = {
    "in": 1.0,
    "inch": 1.0,
    "inches": 1.0,
    "ft": 12.0,
    "foot": 12.0,
    "feet": 12.0,
    "cm": 1 / 2.54,
    "centimeter": 1 / 2.54,
    "mm": 1 / 25.4,
    "millimeter": 1 / 25.4,
    "m": 39.3700787,
    "meter": 39.3700787,
}


def _convert(value: Optional[float], uom: Optional[str], table: dict, kind: str) -> Optional[float]:
    if value is None:
        return None
    if not uom:
        return float(value)

    key = uom.strip().lower().rstrip(".")
    factor = table.get(key)
    if factor is None:
        logger.warning(f"Unknown {kind} UOM '{uom}', treating value as already normalized")
        return float(value)
    return float(value) * factor


def to_pounds(value: Optional[float], uom: Optional[str]) -> Optional[float]:
    """Convert a weight to pounds. None stays None; a missing UOM means pounds."""
    return _convert(value, uom, WEIGHT_TO_POUNDS, "weight")


def to_inches(value: Optional[float], uom: Optional[str]) -> Optional[float]:
    """Convert a length to inches. None stays None; a missing UOM means inches."""
    return _convert(value, uom, LENGTH_TO_INCHES, "dimension")


def pounds_to_ounces(pounds: float) -> int:
    """Whole ounces, as parcel rate APIs expect."""
    return round(pounds * 16)
