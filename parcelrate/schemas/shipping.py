"""
Shipping Schemas

Pydantic models for the shipping API. Converters at the bottom turn
request models into the carrier-agnostic dataclasses.
"""
from datetime import date, datetime
from typing import Optional, List, Dict, Any, Literal
from pydantic import BaseModel, Field, field_validator

from parcelrate.modules.shipping.carriers.base import (
    Address,
    Dimensions,
    PackageDetails,
    RateRequest,
    Weight,
)


# ==================== Address Schemas ====================


class AddressSchema(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    address_line1: str = Field(..., min_length=1, max_length=100)
    address_line2: Optional[str] = Field(None, max_length=100)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=50)
    postal_code: str = Field(..., min_length=1, max_length=20)
    country_code: str = Field("US", min_length=2, max_length=2)
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[str] = Field(None, max_length=100)
    residential: bool = False

    @field_validator("country_code")
    @classmethod
    def validate_country_code(cls, v):
        return v.upper()

    def to_address(self) -> Address:
        return Address(**self.model_dump())


# ==================== Package Schemas ====================


class WeightSchema(BaseModel):
    value: float = Field(..., gt=0)
    unit: Literal["kg", "lb", "oz"] = "lb"


class DimensionsSchema(BaseModel):
    length: float = Field(..., gt=0)
    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)
    unit: Literal["cm", "in"] = "in"


class PackageSchema(BaseModel):
    weight: WeightSchema
    dimensions: Optional[DimensionsSchema] = None
    declared_value: Optional[float] = Field(None, ge=0)
    description: Optional[str] = Field(None, max_length=255)
    requires_signature: bool = False
    is_insured: bool = False
    insurance_amount: Optional[float] = Field(None, ge=0)

    def to_package(self) -> PackageDetails:
        return PackageDetails(
            weight=Weight(self.weight.value, self.weight.unit),
            dimensions=Dimensions(**self.dimensions.model_dump()) if self.dimensions else None,
            declared_value=self.declared_value,
            description=self.description,
            requires_signature=self.requires_signature,
            is_insured=self.is_insured,
            insurance_amount=self.insurance_amount,
        )


# ==================== Carrier Rate Schemas ====================


class CarrierRateRequest(BaseModel):
    """Carrier quote request. origin defaults to the configured warehouse."""
    origin: Optional[AddressSchema] = None
    destination: AddressSchema
    packages: List[PackageSchema] = Field(..., min_length=1)
    ship_date: Optional[date] = None
    service_type: Optional[str] = None
    options: Dict[str, Any] = Field(default_factory=dict)
    carrier_ids: Optional[List[str]] = None


class BestRateRequest(CarrierRateRequest):
    criterion: Optional[Literal["price", "time", "value"]] = None


class RateBreakdownSchema(BaseModel):
    base_rate: float = 0.0
    taxes: float = 0.0
    fees: Dict[str, float] = Field(default_factory=dict)
    discounts: Dict[str, float] = Field(default_factory=dict)


class CarrierRateResponse(BaseModel):
    carrier_id: str
    carrier_name: str
    service_code: str
    service_name: str
    service_type: Optional[str] = None
    total_amount: float
    currency: str
    estimated_days: Optional[int] = None
    estimated_delivery_date: Optional[datetime] = None
    rate_details: RateBreakdownSchema
    carrier_specific_data: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        from_attributes = True


class CarrierRateListResponse(BaseModel):
    rates: List[CarrierRateResponse]
    errors: Dict[str, str]


class CarrierOption(BaseModel):
    id: str
    name: str


# ==================== Tracking Schemas ====================


class TrackRequest(BaseModel):
    tracking_number: str = Field(..., min_length=1, max_length=50)


class TrackingEventResponse(BaseModel):
    timestamp: datetime
    status: str
    description: str
    location: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class TrackingResponse(BaseModel):
    tracking_number: str
    carrier_id: str
    carrier_name: str
    status: str
    estimated_delivery_date: Optional[datetime] = None
    actual_delivery_date: Optional[datetime] = None
    events: List[TrackingEventResponse] = []
    carrier_specific_data: Dict[str, Any] = Field(default_factory=dict)


# ==================== Internal Rate Schemas ====================


class EtaResponse(BaseModel):
    days: int
    estimated_delivery_date: datetime


class ShippingMethodResponse(BaseModel):
    id: str
    name: str
    code: str
    description: Optional[str] = None
    base_rate: float
    estimated_days: int
    display_order: int = 0

    class Config:
        from_attributes = True


class AvailableMethodResponse(BaseModel):
    id: str
    name: str
    code: str
    description: str
    rate: float
    estimated_days: int
    display_order: int
    eta: EtaResponse
    applied_rate_id: Optional[str] = None


class CalculateShippingRequest(BaseModel):
    postal_code: str = Field(..., min_length=1, max_length=20)
    weight: Optional[float] = Field(None, gt=0)
    order_value: Optional[float] = Field(None, ge=0)
    product_categories: Optional[List[str]] = None
    customer_group: Optional[str] = None
    strict: bool = False


class InternalRateResponse(BaseModel):
    id: str
    name: str
    code: str
    description: str
    base_rate: float
    estimated_days: int
    eta: EtaResponse
    applied_rate_id: Optional[str] = None
    used_fallback: bool = False


# ==================== Converters ====================


def build_rate_request(payload: CarrierRateRequest, default_origin: Address) -> RateRequest:
    return RateRequest(
        origin=payload.origin.to_address() if payload.origin else default_origin,
        destination=payload.destination.to_address(),
        packages=[pkg.to_package() for pkg in payload.packages],
        ship_date=payload.ship_date,
        service_type=payload.service_type,
        options=payload.options,
    )
