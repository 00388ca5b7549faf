"""
FedEx Carrier Implementation

FedEx REST APIs with OAuth client-credentials:
- Rate quotes (LIST and ACCOUNT rates, transit times)
- Ship
- Track by tracking number
- Address resolve
- Cancel
"""
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx

from parcelrate.core.exceptions import ProviderResponseError
from parcelrate.modules.shipping.carriers.base import (
    Address,
    AddressValidationResult,
    CancelResult,
    CarrierAdapter,
    Coordinates,
    PackageDetails,
    RateBreakdown,
    RateRequest,
    RateResponse,
    ServiceOption,
    ShipmentRequest,
    ShipmentResponse,
    TrackingEvent,
    TrackingRequest,
    TrackingResponse,
    TrackingStatus,
)
from parcelrate.modules.shipping.carriers.http import (
    CarrierHTTPClient,
    DEFAULT_TIMEOUT_SECONDS,
    DEFAULT_TOKEN_BUFFER_SECONDS,
)
from parcelrate.modules.shipping.carriers.units import convert_weight

logger = logging.getLogger(__name__)

FEDEX_PRODUCTION_URL = "https://apis.fedex.com"
FEDEX_SANDBOX_URL = "https://apis-sandbox.fedex.com"

OAUTH_TOKEN_PATH = "/oauth/token"
RATING_PATH = "/rate/v1/rates/quotes"
SHIPPING_PATH = "/ship/v1/shipments"
TRACKING_PATH = "/track/v1/trackingnumbers"
ADDRESS_VALIDATION_PATH = "/address/v1/addresses/resolve"
CANCEL_PATH = "/ship/v1/shipments/cancel"

FEDEX_SERVICE_CODES = {
    "FEDEX_GROUND": "FedEx Ground",
    "FEDEX_EXPRESS_SAVER": "FedEx Express Saver",
    "FEDEX_2_DAY": "FedEx 2Day",
    "FEDEX_2_DAY_AM": "FedEx 2Day A.M.",
    "PRIORITY_OVERNIGHT": "FedEx Priority Overnight",
    "STANDARD_OVERNIGHT": "FedEx Standard Overnight",
    "FIRST_OVERNIGHT": "FedEx First Overnight",
    "INTERNATIONAL_ECONOMY": "FedEx International Economy",
    "INTERNATIONAL_PRIORITY": "FedEx International Priority",
}

FEDEX_TRANSIT_DAYS = {
    "ONE_DAY": 1,
    "TWO_DAYS": 2,
    "THREE_DAYS": 3,
    "FOUR_DAYS": 4,
    "FIVE_DAYS": 5,
    "SIX_DAYS": 6,
    "SEVEN_DAYS": 7,
    "EIGHT_DAYS": 8,
    "NINE_DAYS": 9,
    "TEN_DAYS": 10,
}

FEDEX_STATUS_MAP = {
    "AA": TrackingStatus.PRE_TRANSIT,
    "CA": TrackingStatus.CANCELLED,
    "DD": TrackingStatus.DELIVERED,
    "DE": TrackingStatus.DELIVERED,
    "DL": TrackingStatus.DELIVERED,
    "ED": TrackingStatus.OUT_FOR_DELIVERY,
    "EO": TrackingStatus.OUT_FOR_DELIVERY,
    "OD": TrackingStatus.OUT_FOR_DELIVERY,
}
FEDEX_STATUS_MAP.update({
    code: TrackingStatus.IN_TRANSIT
    for code in (
        "AC", "AD", "AF", "AP", "AR", "AX", "CH", "DP", "DR", "DS", "DY",
        "EA", "EP", "FD", "HL", "IT", "LO", "OC", "OF", "OX", "PF", "PL",
        "PM", "PU", "PX", "SE", "SF", "SP", "TR",
    )
})

# FedEx takes KG or LB; ounces are sent as pounds
FEDEX_WEIGHT_UNITS = {"kg": "KG", "lb": "LB"}
FEDEX_MIN_WEIGHT = 0.01
FEDEX_DIMENSION_UNITS = {"cm": "CM", "in": "IN"}

FEDEX_LABEL_TYPES = {"PDF": "PDF", "PNG": "PNG", "ZPL": "ZPLII"}


def fedex_service_name(code: Optional[str]) -> str:
    return FEDEX_SERVICE_CODES.get(code or "", code or "")


def fedex_tracking_status(code: Optional[str]) -> TrackingStatus:
    return FEDEX_STATUS_MAP.get((code or "").upper(), TrackingStatus.UNKNOWN)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable FedEx timestamp: {value}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _scan_coordinates(coords: Any) -> Optional[Coordinates]:
    if not isinstance(coords, dict):
        return None
    latitude = coords.get("latitude")
    longitude = coords.get("longitude")
    if latitude is None or longitude is None:
        return None
    return Coordinates(latitude, longitude)


def _fedex_error_message(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    errors = body.get("errors") or []
    if errors:
        return errors[0].get("message") or errors[0].get("code")
    return None


class FedExCarrier(CarrierAdapter):
    """FedEx carrier implementation."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        account_number: str = "",
        use_sandbox: bool = False,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        token_buffer_seconds: int = DEFAULT_TOKEN_BUFFER_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.account_number = account_number
        self.use_sandbox = use_sandbox
        self.http = CarrierHTTPClient(
            carrier_id=self.carrier_id,
            carrier_name=self.carrier_name,
            base_url=FEDEX_SANDBOX_URL if use_sandbox else FEDEX_PRODUCTION_URL,
            fetch_token=self._fetch_token,
            timeout=timeout,
            token_buffer_seconds=token_buffer_seconds,
            error_message=_fedex_error_message,
            transport=transport,
        )

    @property
    def carrier_id(self) -> str:
        return "fedex"

    @property
    def carrier_name(self) -> str:
        return "FedEx"

    async def close(self) -> None:
        await self.http.close()

    async def _fetch_token(self):
        return await self.http.fetch_oauth_token(
            OAUTH_TOKEN_PATH,
            data={
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
        )

    async def get_supported_services(self) -> List[ServiceOption]:
        return [ServiceOption(code=code, name=name) for code, name in FEDEX_SERVICE_CODES.items()]

    # ==================== Formatting ====================

    def format_address(self, address: Address) -> Dict[str, Any]:
        lines = [address.address_line1]
        if address.address_line2:
            lines.append(address.address_line2)
        return {
            "address": {
                "streetLines": lines,
                "city": address.city,
                "stateOrProvinceCode": address.state,
                "postalCode": address.postal_code,
                "countryCode": address.country_code,
                "residential": address.residential,
            },
            "contact": {
                "personName": address.name,
                "phoneNumber": address.phone or "",
                "emailAddress": address.email or "",
            },
        }

    def format_package(self, package: PackageDetails, sequence: int) -> Dict[str, Any]:
        weight_unit = package.weight.unit
        weight_value = package.weight.value
        if weight_unit not in FEDEX_WEIGHT_UNITS:
            weight_value = convert_weight(weight_value, weight_unit, "lb")
            weight_unit = "lb"

        item: Dict[str, Any] = {
            "weight": {
                "units": FEDEX_WEIGHT_UNITS[weight_unit],
                "value": max(round(weight_value, 2), FEDEX_MIN_WEIGHT),
            },
            "groupPackageCount": 1,
            "sequenceNumber": sequence,
        }

        if package.dimensions:
            dims = package.dimensions
            item["dimensions"] = {
                "length": dims.length,
                "width": dims.width,
                "height": dims.height,
                "units": FEDEX_DIMENSION_UNITS[dims.unit],
            }

        if package.declared_value:
            item["declaredValue"] = {"amount": package.declared_value, "currency": "USD"}

        if package.requires_signature:
            item["packageSpecialServices"] = {
                "specialServiceTypes": ["SIGNATURE_OPTION"],
                "signatureOptionType": "DIRECT",
            }

        return item

    def build_rate_request(self, request: RateRequest) -> Dict[str, Any]:
        requested_shipment: Dict[str, Any] = {
            "shipper": self.format_address(request.origin),
            "recipient": self.format_address(request.destination),
            "pickupType": "DROPOFF_AT_FEDEX_LOCATION",
            "rateRequestType": ["LIST", "ACCOUNT"],
            "requestedPackageLineItems": [
                self.format_package(pkg, index + 1) for index, pkg in enumerate(request.packages)
            ],
        }
        if request.ship_date:
            requested_shipment["shipDateStamp"] = request.ship_date.strftime("%Y-%m-%d")
        if request.service_type:
            requested_shipment["serviceType"] = request.service_type

        return {
            "accountNumber": {"value": self.account_number},
            "rateRequestControlParameters": {
                "returnTransitTimes": True,
                "servicesNeededOnRateFailure": True,
            },
            "requestedShipment": requested_shipment,
        }

    # ==================== Rating ====================

    async def get_rates(self, request: RateRequest) -> List[RateResponse]:
        payload = self.build_rate_request(request)
        response = await self.http.request("POST", RATING_PATH, json=payload)
        return self.parse_rate_response(response)

    def parse_rate_response(self, response: Dict[str, Any], now: Optional[datetime] = None) -> List[RateResponse]:
        now = now or datetime.now(timezone.utc)
        details = (response.get("output") or {}).get("rateReplyDetails") or []

        rates = []
        for detail in details:
            rated = detail.get("ratedShipmentDetails") or []
            if not rated:
                continue
            rate_info = rated[0]
            service_type = detail.get("serviceType", "")

            estimated_days = None
            delivery_date = None
            commit = detail.get("commit") or {}
            delivery_timestamp = _parse_timestamp(commit.get("deliveryTimestamp")) \
                or _parse_timestamp((commit.get("dateDetail") or {}).get("dayFormat"))
            if delivery_timestamp:
                delivery_date = delivery_timestamp
                estimated_days = max(0, math.ceil((delivery_timestamp - now).total_seconds() / 86400))
            elif commit.get("transitTime") in FEDEX_TRANSIT_DAYS:
                estimated_days = FEDEX_TRANSIT_DAYS[commit["transitTime"]]
                delivery_date = now + timedelta(days=estimated_days)

            fees: Dict[str, float] = {}
            surcharges = (rate_info.get("shipmentRateDetail") or {}).get("surCharges") or []
            for surcharge in surcharges:
                key = surcharge.get("type", "other")
                fees[key] = fees.get(key, 0.0) + float(surcharge.get("amount") or 0)
            discounts = {}
            if rate_info.get("totalDiscounts"):
                discounts["total"] = float(rate_info["totalDiscounts"])

            rates.append(RateResponse(
                carrier_id=self.carrier_id,
                carrier_name=self.carrier_name,
                service_type=service_type,
                service_code=service_type,
                service_name=fedex_service_name(service_type),
                total_amount=float(rate_info.get("totalNetCharge") or 0),
                currency=rate_info.get("currency") or "USD",
                estimated_days=estimated_days,
                estimated_delivery_date=delivery_date,
                rate_details=RateBreakdown(
                    base_rate=float(rate_info.get("totalBaseCharge") or 0),
                    taxes=float(rate_info.get("totalTaxes") or 0),
                    fees=fees,
                    discounts=discounts,
                ),
                carrier_specific_data={
                    "rate_type": rate_info.get("rateType"),
                    "rate_zone": detail.get("rateZone"),
                },
            ))

        return rates

    # ==================== Shipping ====================

    async def create_shipment(self, request: ShipmentRequest) -> ShipmentResponse:
        label_type = FEDEX_LABEL_TYPES.get(request.label_format.upper(), "PDF")
        payload = {
            "accountNumber": {"value": self.account_number},
            "labelResponseOptions": "LABEL",
            "requestedShipment": {
                "shipper": self.format_address(request.origin),
                "recipients": [self.format_address(request.destination)],
                "pickupType": "DROPOFF_AT_FEDEX_LOCATION",
                "serviceType": request.service_code or request.service_type or "FEDEX_GROUND",
                "packagingType": "YOUR_PACKAGING",
                "shippingChargesPayment": {"paymentType": "SENDER"},
                "labelSpecification": {
                    "imageType": label_type,
                    "labelStockType": request.paper_size or "PAPER_85X11_TOP_HALF_LABEL",
                },
                "requestedPackageLineItems": [
                    self.format_package(pkg, index + 1) for index, pkg in enumerate(request.packages)
                ],
            },
        }
        if request.customs_info:
            payload["requestedShipment"]["customsClearanceDetail"] = request.customs_info

        response = await self.http.request("POST", SHIPPING_PATH, json=payload)
        return self.parse_shipment_response(response)

    def parse_shipment_response(self, response: Dict[str, Any]) -> ShipmentResponse:
        output = response.get("output") or {}
        shipments = output.get("transactionShipments") or []
        result = shipments[0] if shipments else (output.get("shipmentResults") or {})
        if not result:
            raise ProviderResponseError(
                "Invalid shipment response from FedEx",
                carrier_id=self.carrier_id,
                body=response,
            )

        pieces = result.get("pieceResponses") or []
        documents = (pieces[0].get("packageDocuments") or pieces[0].get("labelDocuments") or []) if pieces else []
        document = documents[0] if documents else {}
        rating = ((result.get("completedShipmentDetail") or {}).get("shipmentRating") or {})
        rate_details = rating.get("shipmentRateDetails") or [{}]
        operational = (result.get("completedShipmentDetail") or {}).get("operationalDetail") or {}

        return ShipmentResponse(
            carrier_id=self.carrier_id,
            carrier_name=self.carrier_name,
            tracking_number=result.get("masterTrackingNumber") or result.get("trackingNumber", ""),
            shipment_id=output.get("transactionId") or response.get("transactionId", ""),
            label_url=document.get("url"),
            label_data=document.get("encodedLabel"),
            total_amount=float(rate_details[0].get("totalNetCharge") or 0),
            currency=rate_details[0].get("currency") or "USD",
            estimated_delivery_date=_parse_timestamp(operational.get("deliveryDate")),
            carrier_specific_data={
                "service_type": result.get("serviceType", ""),
                "packaging_type": result.get("packagingType", ""),
            },
        )

    # ==================== Tracking ====================

    async def track_shipment(self, request: TrackingRequest) -> TrackingResponse:
        response = await self.http.request(
            "POST",
            TRACKING_PATH,
            json={
                "includeDetailedScans": True,
                "trackingInfo": [{
                    "trackingNumberInfo": {"trackingNumber": request.tracking_number},
                }],
            },
        )
        return self.parse_tracking_response(response, request.tracking_number)

    def parse_tracking_response(self, response: Dict[str, Any], tracking_number: str) -> TrackingResponse:
        complete = (response.get("output") or {}).get("completeTrackResults") or []
        results = (complete[0].get("trackResults") or []) if complete else []
        if not results:
            raise ProviderResponseError(
                f"FedEx has no tracking information for {tracking_number}",
                carrier_id=self.carrier_id,
                body=response,
            )

        result = results[0]
        # FedEx reports unknown numbers as a result carrying an error block
        if result.get("error") and not result.get("latestStatusDetail"):
            raise ProviderResponseError(
                f"FedEx tracking error: {result['error'].get('message', 'unknown tracking number')}",
                carrier_id=self.carrier_id,
                body=response,
            )

        status = fedex_tracking_status((result.get("latestStatusDetail") or {}).get("code"))

        events = []
        for scan in result.get("scanEvents") or []:
            timestamp = _parse_timestamp(scan.get("date"))
            if timestamp is None and scan.get("date") and scan.get("time"):
                timestamp = _parse_timestamp(f"{scan['date']}T{scan['time']}")
            location = scan.get("scanLocation")
            if isinstance(location, dict):
                location = ", ".join(
                    part for part in (location.get("city"), location.get("stateOrProvinceCode"), location.get("countryCode")) if part
                ) or None
            events.append(TrackingEvent(
                timestamp=timestamp or datetime.now(timezone.utc),
                status=fedex_tracking_status(scan.get("eventCode")),
                description=scan.get("eventDescription", ""),
                location=location,
                coordinates=_scan_coordinates(scan.get("coordinates")),
            ))

        estimated = None
        actual = None
        for entry in result.get("dateAndTimes") or []:
            if entry.get("type") == "ESTIMATED_DELIVERY":
                estimated = _parse_timestamp(entry.get("dateTime"))
            elif entry.get("type") == "ACTUAL_DELIVERY":
                actual = _parse_timestamp(entry.get("dateTime"))

        weights = ((result.get("packageDetails") or {}).get("weightAndDimensions") or {}).get("weight") or [{}]

        return TrackingResponse(
            tracking_number=(result.get("trackingNumberInfo") or {}).get("trackingNumber")
            or result.get("trackingNumber")
            or tracking_number,
            carrier_id=self.carrier_id,
            carrier_name=self.carrier_name,
            status=status,
            estimated_delivery_date=estimated,
            actual_delivery_date=actual,
            events=events,
            carrier_specific_data={
                "service_type": (result.get("serviceDetail") or {}).get("type"),
                "package_weight": weights[0].get("value"),
                "package_weight_unit": weights[0].get("unit"),
            },
        )

    # ==================== Address Validation ====================

    async def validate_address(self, address: Address) -> AddressValidationResult:
        lines = [address.address_line1]
        if address.address_line2:
            lines.append(address.address_line2)

        response = await self.http.request(
            "POST",
            ADDRESS_VALIDATION_PATH,
            json={
                "addressesToValidate": [{
                    "address": {
                        "streetLines": lines,
                        "city": address.city,
                        "stateOrProvinceCode": address.state,
                        "postalCode": address.postal_code,
                        "countryCode": address.country_code,
                    }
                }]
            },
        )
        return self.parse_address_response(response, address)

    def parse_address_response(self, response: Dict[str, Any], address: Address) -> AddressValidationResult:
        resolved = (response.get("output") or {}).get("resolvedAddresses") or []
        if not resolved:
            return AddressValidationResult(is_valid=False, messages=["No address validation result returned"])

        result = resolved[0]
        customer_messages = result.get("customerMessages") or []
        is_valid = any(msg.get("code") == "SUCCESS" for msg in customer_messages)
        messages = [msg.get("message", "") for msg in customer_messages if msg.get("message")]

        normalized = None
        source = result.get("resolvedAddress") or result
        lines = source.get("streetLinesToken") or source.get("streetLines") or []
        if lines:
            normalized = Address(
                name=address.name,
                address_line1=lines[0],
                address_line2=lines[1] if len(lines) > 1 else None,
                city=source.get("city", ""),
                state=source.get("stateOrProvinceCode", ""),
                postal_code=source.get("postalCode", ""),
                country_code=source.get("countryCode", address.country_code),
                phone=address.phone,
                email=address.email,
                residential=bool(source.get("residential")) or source.get("classification") == "RESIDENTIAL",
            )

        return AddressValidationResult(is_valid=is_valid, normalized_address=normalized, messages=messages)

    # ==================== Cancel ====================

    async def cancel_shipment(self, shipment_id: str) -> CancelResult:
        response = await self.http.request(
            "PUT",
            f"{CANCEL_PATH}/{shipment_id}",
            json={
                "accountNumber": {"value": self.account_number},
                "trackingNumber": shipment_id,
            },
        )
        output = response.get("output") or {}
        return CancelResult(
            success=bool(output.get("cancelledShipment", output.get("success", False))),
            message=output.get("message") or "No message returned",
        )
