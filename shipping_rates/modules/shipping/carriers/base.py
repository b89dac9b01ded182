"""
Base Rate Provider Interface

Every external rate source maps its own response shape into RateQuote;
provider-specific field names never leave the adapter.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional


class ProviderCode(str, Enum):
    EASYPOST = "easypost"
    USHIP = "uship"


class RateSource(str, Enum):
    """Where freight prices came from."""
    API = "api"
    FALLBACK = "fallback"


# =============================================================================
# Provider-Agnostic Data Classes
# =============================================================================

@dataclass
class AddressInput:
    """Origin or destination of a rate request."""
    postal_code: str
    street: str = ""
    city: str = ""
    state: str = ""
    country_code: str = "US"
    residential: bool = False


@dataclass
class ShipmentDimensions:
    """Aggregate shipment size; pounds and inches, unrounded."""
    weight_lbs: float
    length: float
    width: float
    height: float


@dataclass
class FreightAccessorials:
    """Extra services requested on a freight shipment."""
    liftgate_pickup: bool = False
    liftgate_delivery: bool = False
    residential_delivery: bool = False
    inside_delivery: bool = False
    hazmat: bool = False


@dataclass
class RateQuote:
    """Normalized shipping option returned to the caller."""
    method: str
    carrier: str
    service: str
    rate: float
    transit_days: Optional[int] = None
    delivery_date: Optional[str] = None
    guaranteed: bool = False

    @property
    def is_pickup(self) -> bool:
        return self.method == PICKUP_METHOD

    def to_dict(self) -> Dict:
        return {
            "method": self.method,
            "carrier": self.carrier,
            "service": self.service,
            "rate": round(self.rate, 2),
            "transit_days": self.transit_days,
            "delivery_date": self.delivery_date,
            "guaranteed": self.guaranteed,
        }


PICKUP_METHOD = "pickup"
FREIGHT_FALLBACK_METHOD = "freight_fallback"


# =============================================================================
# Base Rate Provider Interface
# =============================================================================

class BaseRateProvider(ABC):
    """
    Abstract base class for external rate providers.

    Providers never raise for upstream failures; they log and return an
    empty or degraded result so the caller can continue with other sources.
    """

    @property
    @abstractmethod
    def provider_code(self) -> ProviderCode:
        """Return the provider code enum value."""
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the human-readable provider name."""
        pass

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """Whether credentials for the live API are present."""
        pass

    async def close(self):
        """Release HTTP resources. Default: nothing to release."""
        pass
