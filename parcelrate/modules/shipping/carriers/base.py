"""
Carrier Capability Contract

Every carrier adapter implements CarrierAdapter and speaks only the
carrier-agnostic types below. The aggregation layer never sees a
provider wire format.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from enum import Enum
from typing import List, Optional, Any, Dict

from parcelrate.modules.shipping.carriers.units import WEIGHT_UNITS, DIMENSION_UNITS


# =============================================================================
# Carrier-Agnostic Data Classes
# =============================================================================

@dataclass
class Address:
    """Postal address used as origin or destination."""
    name: str
    address_line1: str
    city: str
    state: str
    postal_code: str
    country_code: str = "US"
    address_line2: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    residential: bool = False

    REQUIRED_FIELDS = ("name", "address_line1", "city", "state", "postal_code", "country_code")

    def missing_fields(self) -> List[str]:
        return [f for f in self.REQUIRED_FIELDS if not (getattr(self, f) or "").strip()]

    def validate(self) -> None:
        missing = self.missing_fields()
        if missing:
            raise ValueError(f"Address is missing required fields: {', '.join(missing)}")


@dataclass
class Weight:
    value: float
    unit: str = "lb"  # kg, lb, oz

    def __post_init__(self):
        self.unit = self.unit.lower()
        if self.unit not in WEIGHT_UNITS:
            raise ValueError(f"Unsupported weight unit: {self.unit}")
        if self.value is None or self.value <= 0:
            raise ValueError("Weight must be positive")


@dataclass
class Dimensions:
    length: float
    width: float
    height: float
    unit: str = "in"  # cm, in

    def __post_init__(self):
        self.unit = self.unit.lower()
        if self.unit not in DIMENSION_UNITS:
            raise ValueError(f"Unsupported dimension unit: {self.unit}")


@dataclass
class PackageDetails:
    """One parcel in a shipment."""
    weight: Weight
    dimensions: Optional[Dimensions] = None
    declared_value: Optional[float] = None
    description: Optional[str] = None
    requires_signature: bool = False
    is_insured: bool = False
    insurance_amount: Optional[float] = None


@dataclass
class RateRequest:
    """Request for quotes on a shipment."""
    origin: Address
    destination: Address
    packages: List[PackageDetails]
    ship_date: Optional[date] = None
    service_type: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.packages:
            raise ValueError("At least one package is required")


@dataclass
class RateBreakdown:
    base_rate: float = 0.0
    taxes: float = 0.0
    fees: Dict[str, float] = field(default_factory=dict)
    discounts: Dict[str, float] = field(default_factory=dict)


@dataclass
class RateResponse:
    """A single priced service offered by a carrier."""
    carrier_id: str
    carrier_name: str
    service_code: str
    service_name: str
    total_amount: float
    currency: str = "USD"
    service_type: Optional[str] = None
    estimated_days: Optional[int] = None  # None = carrier gave no transit estimate
    estimated_delivery_date: Optional[datetime] = None
    rate_details: RateBreakdown = field(default_factory=RateBreakdown)
    carrier_specific_data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["estimated_delivery_date"] = (
            self.estimated_delivery_date.isoformat() if self.estimated_delivery_date else None
        )
        return data


@dataclass
class ServiceOption:
    code: str
    name: str


@dataclass
class ShipmentRequest(RateRequest):
    """Request to buy a label for a quoted service."""
    service_code: str = ""
    rate_id: Optional[str] = None
    label_format: str = "PDF"  # PDF, PNG, ZPL
    paper_size: Optional[str] = None
    customs_info: Optional[Dict[str, Any]] = None


@dataclass
class ShipmentResponse:
    carrier_id: str
    carrier_name: str
    tracking_number: str
    shipment_id: str = ""
    label_url: Optional[str] = None
    label_data: Optional[str] = None  # Base64 encoded
    total_amount: float = 0.0
    currency: str = "USD"
    estimated_delivery_date: Optional[datetime] = None
    carrier_specific_data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TrackingRequest:
    tracking_number: str
    carrier_code: Optional[str] = None


class TrackingStatus(str, Enum):
    """Normalized tracking status shared by all carriers."""
    UNKNOWN = "unknown"
    PRE_TRANSIT = "pre_transit"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    AVAILABLE_FOR_PICKUP = "available_for_pickup"
    RETURN_TO_SENDER = "return_to_sender"
    FAILURE = "failure"
    CANCELLED = "cancelled"
    ERROR = "error"
    EXCEPTION = "exception"
    PICKUP = "pickup"
    MANIFEST = "manifest"


@dataclass
class Coordinates:
    latitude: float
    longitude: float


@dataclass
class TrackingEvent:
    """A single tracking scan."""
    timestamp: datetime
    status: TrackingStatus
    description: str
    location: Optional[str] = None
    coordinates: Optional[Coordinates] = None


@dataclass
class TrackingResponse:
    """Full tracking information."""
    tracking_number: str
    carrier_id: str
    carrier_name: str
    status: TrackingStatus
    estimated_delivery_date: Optional[datetime] = None
    actual_delivery_date: Optional[datetime] = None
    events: List[TrackingEvent] = field(default_factory=list)
    carrier_specific_data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AddressValidationResult:
    is_valid: bool
    normalized_address: Optional[Address] = None
    messages: List[str] = field(default_factory=list)


@dataclass
class CancelResult:
    success: bool
    message: str


# =============================================================================
# Carrier Interface
# =============================================================================

class CarrierAdapter(ABC):
    """
    Abstract base class for all shipping carriers.

    Adapters hold a CarrierHTTPClient for transport, auth and error
    translation; this class only fixes the capability set.
    """

    @property
    @abstractmethod
    def carrier_id(self) -> str:
        """Stable registry key, e.g. "ups"."""
        pass

    @property
    @abstractmethod
    def carrier_name(self) -> str:
        """Return the human-readable carrier name."""
        pass

    @abstractmethod
    async def get_supported_services(self) -> List[ServiceOption]:
        pass

    @abstractmethod
    async def get_rates(self, request: RateRequest) -> List[RateResponse]:
        """
        Get shipping rates from the carrier.

        Returns:
            List of RateResponse objects, one per offered service

        Raises:
            CarrierError: on any provider or transport failure
        """
        pass

    @abstractmethod
    async def create_shipment(self, request: ShipmentRequest) -> ShipmentResponse:
        pass

    @abstractmethod
    async def track_shipment(self, request: TrackingRequest) -> TrackingResponse:
        """
        Get tracking information for a shipment.

        Raises:
            CarrierError: if the carrier does not know the number or the call fails
        """
        pass

    @abstractmethod
    async def validate_address(self, address: Address) -> AddressValidationResult:
        pass

    @abstractmethod
    async def cancel_shipment(self, shipment_id: str) -> CancelResult:
        pass

    async def close(self) -> None:
        """Release network resources."""
        return None

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.carrier_id}>"
