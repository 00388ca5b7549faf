"""
Shared fixtures for parcelrate tests.
"""
import os

# Set test environment before anything imports settings
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = ""
for _key in ("UPS_CLIENT_ID", "UPS_CLIENT_SECRET", "FEDEX_CLIENT_ID", "FEDEX_CLIENT_SECRET"):
    os.environ[_key] = ""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from parcelrate.core.config import Settings
from parcelrate.models.shipping import ShippingMethod, ShippingRate, ShippingZone
from parcelrate.modules.shipping.carriers.base import (
    Address,
    AddressValidationResult,
    CancelResult,
    CarrierAdapter,
    PackageDetails,
    RateRequest,
    RateResponse,
    ServiceOption,
    ShipmentRequest,
    ShipmentResponse,
    TrackingRequest,
    TrackingResponse,
    TrackingStatus,
    Weight,
)


# ==================== Settings ====================


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        CARRIER_QUOTE_TIMEOUT_SECONDS=1.0,
        RATE_AGGREGATION_BUDGET_SECONDS=2.0,
    )


# ==================== Addresses & requests ====================


@pytest.fixture
def origin_address() -> Address:
    return Address(
        name="Parcelrate Warehouse",
        address_line1="100 Commerce Way",
        city="Atlanta",
        state="GA",
        postal_code="30301",
        phone="4045550100",
    )


@pytest.fixture
def destination_address() -> Address:
    return Address(
        name="John Doe",
        address_line1="123 Main St",
        address_line2="Apt 4B",
        city="New York",
        state="NY",
        postal_code="10001",
        email="john@example.com",
        residential=True,
    )


@pytest.fixture
def rate_request(origin_address, destination_address) -> RateRequest:
    return RateRequest(
        origin=origin_address,
        destination=destination_address,
        packages=[PackageDetails(weight=Weight(2.5, "lb"))],
    )


# ==================== Fake carrier ====================


def make_rate(carrier_id: str, amount: float, days: Optional[int] = None, service: str = "GROUND") -> RateResponse:
    return RateResponse(
        carrier_id=carrier_id,
        carrier_name=carrier_id.upper(),
        service_code=service,
        service_name=f"{carrier_id.upper()} {service}",
        total_amount=amount,
        estimated_days=days,
    )


class FakeCarrier(CarrierAdapter):
    """In-memory adapter; rates, errors and delays are set per test."""

    def __init__(
        self,
        carrier_id: str,
        rates: Optional[List[RateResponse]] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
        tracking: Optional[TrackingResponse] = None,
    ):
        self._id = carrier_id
        self.rates = rates or []
        self.error = error
        self.delay = delay
        self.tracking = tracking
        self.rate_calls = 0
        self.closed = False

    @property
    def carrier_id(self) -> str:
        return self._id

    @property
    def carrier_name(self) -> str:
        return self._id.upper()

    async def get_supported_services(self) -> List[ServiceOption]:
        return [ServiceOption(code="GROUND", name="Ground")]

    async def get_rates(self, request: RateRequest) -> List[RateResponse]:
        self.rate_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return list(self.rates)

    async def create_shipment(self, request: ShipmentRequest) -> ShipmentResponse:
        raise NotImplementedError

    async def track_shipment(self, request: TrackingRequest) -> TrackingResponse:
        if self.tracking is None:
            raise LookupError(f"{self._id} does not know {request.tracking_number}")
        return self.tracking

    async def validate_address(self, address: Address) -> AddressValidationResult:
        return AddressValidationResult(is_valid=True, normalized_address=address)

    async def cancel_shipment(self, shipment_id: str) -> CancelResult:
        return CancelResult(success=True, message="cancelled")

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_carrier_factory() -> Callable[..., FakeCarrier]:
    return FakeCarrier


def make_tracking(carrier_id: str, tracking_number: str = "1Z999") -> TrackingResponse:
    return TrackingResponse(
        tracking_number=tracking_number,
        carrier_id=carrier_id,
        carrier_name=carrier_id.upper(),
        status=TrackingStatus.IN_TRANSIT,
    )


# ==================== HTTP mocking ====================


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.requests: List[httpx.Request] = []

        def _record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(_record)


def json_response(status_code: int, body: Any) -> httpx.Response:
    return httpx.Response(status_code, content=json.dumps(body).encode(), headers={"Content-Type": "application/json"})


def token_response(token: str = "test-token", expires_in: int = 3600) -> httpx.Response:
    return json_response(200, {"access_token": token, "token_type": "Bearer", "expires_in": expires_in})


# ==================== Shipping tables ====================


def make_zone(
    zone_id: str,
    priority: int = 0,
    regions: Optional[List[Dict[str, str]]] = None,
    patterns: Optional[List[str]] = None,
    ranges: Optional[List[str]] = None,
    excluded: Optional[List[str]] = None,
) -> ShippingZone:
    return ShippingZone(
        id=zone_id,
        name=zone_id.title(),
        code=zone_id.upper(),
        regions=regions or [],
        pincode_patterns=patterns or [],
        pincode_ranges=ranges or [],
        excluded_pincodes=excluded or [],
        is_active=True,
        priority=priority,
    )


def make_method(
    method_id: str,
    code: str,
    base_rate: float = 10.0,
    estimated_days: int = 3,
    display_order: int = 0,
) -> ShippingMethod:
    return ShippingMethod(
        id=method_id,
        name=code.title(),
        code=code,
        description=f"{code.title()} shipping",
        base_rate=base_rate,
        estimated_days=estimated_days,
        is_active=True,
        display_order=display_order,
    )


def make_shipping_rate(
    rate_id: str,
    method_id: str,
    zone_id: str,
    rate: float,
    conditions: Optional[Dict[str, Any]] = None,
    **limits,
) -> ShippingRate:
    return ShippingRate(
        id=rate_id,
        shipping_method_id=method_id,
        shipping_zone_id=zone_id,
        rate=rate,
        conditions=conditions,
        is_active=True,
        **limits,
    )


class InMemoryShippingRepository:
    """ShippingRepository over plain lists, filtered the way the SQL one is."""

    def __init__(self, zones=None, methods=None, rates=None):
        self.zones = list(zones or [])
        self.methods = list(methods or [])
        self.rates = list(rates or [])

    async def list_active_zones(self):
        return sorted((z for z in self.zones if z.is_active), key=lambda z: -z.priority)

    async def list_active_methods(self):
        return sorted(
            (m for m in self.methods if m.is_active),
            key=lambda m: (m.estimated_days, m.display_order),
        )

    async def get_method_by_id(self, method_id):
        return next((m for m in self.methods if m.is_active and m.id == method_id), None)

    async def get_method_by_code(self, code):
        return next((m for m in self.methods if m.is_active and m.code == code), None)

    async def list_active_rates(self, method_id, zone_ids):
        return [
            r for r in self.rates
            if r.is_active and r.shipping_method_id == method_id and r.shipping_zone_id in zone_ids
        ]


@pytest.fixture
def mock_db():
    """Mock AsyncSession."""
    db = AsyncMock()
    db.execute = AsyncMock()
    db.add = MagicMock()
    return db
