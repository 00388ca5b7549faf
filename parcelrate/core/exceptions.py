"""
parcelrate Exception Hierarchy

Every error carries a code, message, and details so the API layer and logs
can report it without string parsing.

Exception Hierarchy:
    ParcelRateError
    ├── CarrierError
    │   ├── CredentialError
    │   ├── ProviderResponseError
    │   ├── ProviderUnreachableError
    │   └── RequestConstructionError
    └── ShippingResolutionError
        ├── ZoneNotApplicableError
        ├── MethodNotFoundError
        └── RateUnavailableError
"""
from typing import Optional, Dict, Any


class ParcelRateError(Exception):
    """
    Base exception for all parcelrate errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging
        severity: P0-P3 severity level
    """

    default_code: str = "PARCELRATE_ERROR"
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
# CARRIER ERRORS
# =============================================================================

class CarrierError(ParcelRateError):
    """Base exception for external carrier failures."""
    default_code = "CARRIER_ERROR"
    default_severity = "P2"

    def __init__(self, message: str, carrier_id: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        details.setdefault("carrier_id", carrier_id)
        self.carrier_id = carrier_id
        super().__init__(message, details=details, **kwargs)


class CredentialError(CarrierError):
    """OAuth token could not be obtained."""
    default_code = "CARRIER_AUTH_FAILED"
    default_severity = "P1"


class ProviderResponseError(CarrierError):
    """The carrier answered with a non-success status or an unusable body."""
    default_code = "CARRIER_BAD_RESPONSE"

    def __init__(
        self,
        message: str,
        carrier_id: Optional[str] = None,
        status_code: Optional[int] = None,
        body: Any = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "status_code": status_code,
            "body": body,
        })
        self.status_code = status_code
        self.body = body
        super().__init__(message, carrier_id=carrier_id, details=details, **kwargs)


class ProviderUnreachableError(CarrierError):
    """Request was sent but no response came back (timeout, DNS, reset)."""
    default_code = "CARRIER_UNREACHABLE"


class RequestConstructionError(CarrierError):
    """The outbound request could not be built or sent."""
    default_code = "CARRIER_REQUEST_INVALID"


# =============================================================================
# INTERNAL RATE RESOLUTION ERRORS
# =============================================================================

class ShippingResolutionError(ParcelRateError):
    """Base exception for zone / method / rate resolution."""
    default_code = "SHIPPING_RESOLUTION_ERROR"
    default_severity = "P3"


class ZoneNotApplicableError(ShippingResolutionError):
    """No active zone covers the postal code."""
    default_code = "SHIPPING_NOT_AVAILABLE"

    def __init__(self, postal_code: str, **kwargs):
        details = kwargs.pop("details", {})
        details["postal_code"] = postal_code
        self.postal_code = postal_code
        super().__init__(
            kwargs.pop("message", "Shipping not available for this location"),
            details=details,
            **kwargs
        )


class MethodNotFoundError(ShippingResolutionError):
    """No active shipping method matches the id or code."""
    default_code = "SHIPPING_METHOD_NOT_FOUND"

    def __init__(self, method_ref: str, **kwargs):
        details = kwargs.pop("details", {})
        details["method"] = method_ref
        self.method_ref = method_ref
        super().__init__(
            kwargs.pop("message", f"Shipping method not found: {method_ref}"),
            details=details,
            **kwargs
        )


class RateUnavailableError(ShippingResolutionError):
    """Zones matched but every rate row was filtered out."""
    default_code = "SHIPPING_RATE_UNAVAILABLE"

    def __init__(self, method_ref: str, postal_code: str, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"method": method_ref, "postal_code": postal_code})
        self.method_ref = method_ref
        self.postal_code = postal_code
        super().__init__(
            kwargs.pop("message", f"No rate available for {method_ref} to {postal_code}"),
            details=details,
            **kwargs
        )
