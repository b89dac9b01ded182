"""
Shipping Rates Exception Hierarchy

All exceptions include code, message, and details for logging and debugging.

Exception Hierarchy:
    ShippingRatesError
    ├── ShippingValidationError      (only error surfaced to API callers)
    ├── CatalogError
    │   └── CatalogUnavailableError
    └── RateProviderError
        ├── ProviderNotConfiguredError
        ├── ParcelRateError
        └── FreightRateError
            └── FreightFallbackError
"""
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


class ShippingRatesError(Exception):
    """
    Base exception for all shipping rate errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging
        severity: P0-P3 severity level
    """

    default_code: str = "SHIPPING_RATES_ERROR"
    default_severity: str = "P2"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[str] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.severity = severity or self.default_severity
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


# =============================================================================
# REQUEST ERRORS
# =============================================================================

class ShippingValidationError(ShippingRatesError):
    """Structurally invalid rate request. Returned to the caller as a 400."""
    default_code = "SHIPPING_VALIDATION_FAILED"
    default_severity = "P3"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details["field"] = field
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# CATALOG / STOCK ERRORS
# =============================================================================

class CatalogError(ShippingRatesError):
    """Base exception for catalog, warehouse and stock lookups."""
    default_code = "CATALOG_ERROR"
    default_severity = "P1"


class CatalogUnavailableError(CatalogError):
    """The catalog store could not be queried."""
    default_code = "CATALOG_UNAVAILABLE"

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details["operation"] = operation
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# RATE PROVIDER ERRORS
# =============================================================================

class RateProviderError(ShippingRatesError):
    """Base exception for external rate provider failures."""
    default_code = "RATE_PROVIDER_ERROR"
    default_severity = "P1"

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details["provider"] = provider
        super().__init__(message, details=details, **kwargs)


class ProviderNotConfiguredError(RateProviderError):
    """Provider credentials are missing."""
    default_code = "RATE_PROVIDER_NOT_CONFIGURED"
    default_severity = "P2"


class ParcelRateError(RateProviderError):
    """Failed to get small-parcel rates."""
    default_code = "PARCEL_RATE_FAILED"


class FreightRateError(RateProviderError):
    """Failed to get LTL freight rates."""
    default_code = "FREIGHT_RATE_FAILED"


class FreightFallbackError(FreightRateError):
    """Static fallback table cannot price this shipment."""
    default_code = "FREIGHT_FALLBACK_UNAVAILABLE"
    default_severity = "P3"

    def __init__(
        self,
        message: str,
        requires_contact: bool = False,
        **kwargs
    ):
        self.requires_contact = requires_contact
        details = kwargs.pop("details", {})
        details["requires_contact"] = requires_contact
        super().__init__(message, provider="fallback_table", details=details, **kwargs)
