"""
Approximate geography for warehouse selection.

ZIP codes are bucketed by their 3-digit prefix to a representative
coordinate; distances are great-circle miles. Unmapped prefixes yield an
infinite distance so the warehouse sorts last instead of failing.
"""
import math
from dataclasses import dataclass
from typing import Dict, Optional

from shipping_rates.modules.shipping.domain import WarehouseLocation

EARTH_RADIUS_MILES = 3959.0


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float


# 3-digit ZIP prefix -> approximate coordinate
ZIP_PREFIX_COORDINATES: Dict[str, Coordinates] = {
    "017": Coordinates(42.48, -71.43),   # Acton, MA
    "018": Coordinates(42.36, -71.06),   # Boston north
    "021": Coordinates(42.36, -71.06),   # Boston
    "100": Coordinates(40.71, -74.01),   # New York
    "191": Coordinates(39.95, -75.17),   # Philadelphia
    "303": Coordinates(33.75, -84.39),   # Atlanta
    "330": Coordinates(25.76, -80.19),   # Miami
    "482": Coordinates(42.33, -83.05),   # Detroit
    "551": Coordinates(44.95, -93.09),   # St. Paul
    "606": Coordinates(41.88, -87.63),   # Chicago
    "631": Coordinates(38.63, -90.20),   # St. Louis
    "750": Coordinates(32.78, -96.80),   # Dallas
    "770": Coordinates(29.76, -95.37),   # Houston
    "802": Coordinates(39.74, -104.99),  # Denver
    "841": Coordinates(40.76, -111.89),  # Salt Lake City
    "852": Coordinates(33.45, -112.07),  # Phoenix
    "900": Coordinates(34.05, -118.24),  # Los Angeles
    "941": Coordinates(37.77, -122.42),  # San Francisco
    "972": Coordinates(45.52, -122.68),  # Portland, OR
    "981": Coordinates(47.61, -122.33),  # Seattle
}


def get_zip_coordinates(zip_code: Optional[str]) -> Optional[Coordinates]:
    """Approximate coordinate for a ZIP code, or None when the prefix is unknown."""
    if not zip_code or len(zip_code.strip()) < 3:
        return None
    return ZIP_PREFIX_COORDINATES.get(zip_code.strip()[:3])


def haversine_miles(origin: Coordinates, destination: Coordinates) -> float:
    """Great-circle distance in miles."""
    d_lat = math.radians(destination.lat - origin.lat)
    d_lng = math.radians(destination.lng - origin.lng)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(origin.lat))
        * math.cos(math.radians(destination.lat))
        * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_MILES * c


def warehouse_coordinates(warehouse: WarehouseLocation) -> Optional[Coordinates]:
    """Warehouse lat/lng when both are set, otherwise its ZIP prefix."""
    if warehouse.latitude is not None and warehouse.longitude is not None:
        return Coordinates(warehouse.latitude, warehouse.longitude)
    return get_zip_coordinates(warehouse.zip)


def warehouse_distance(warehouse: WarehouseLocation, destination_zip: str) -> float:
    """Miles from warehouse to destination ZIP; math.inf if either end is unknown."""
    destination = get_zip_coordinates(destination_zip)
    if destination is None:
        return math.inf

    origin = warehouse_coordinates(warehouse)
    if origin is None:
        return math.inf

    return haversine_miles(origin, destination)
