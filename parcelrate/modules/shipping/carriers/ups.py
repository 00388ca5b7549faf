"""
UPS Carrier Implementation

OAuth 2.0 client-credentials against the UPS REST APIs:
- Rating (Shop or single service)
- Shipping (label purchase)
- Tracking
- Address Validation (street level)
- Void
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx

from parcelrate.core.exceptions import ProviderResponseError
from parcelrate.modules.shipping.carriers.base import (
    Address,
    AddressValidationResult,
    CancelResult,
    CarrierAdapter,
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

# UPS API URLs
UPS_PRODUCTION_URL = "https://onlinetools.ups.com"
UPS_SANDBOX_URL = "https://wwwcie.ups.com"

OAUTH_TOKEN_PATH = "/security/v1/oauth/token"
RATING_PATH = "/api/rating/v1/Rate"
SHIPPING_PATH = "/api/shipments/v1/ship"
TRACKING_PATH = "/api/track/v1/details"
ADDRESS_VALIDATION_PATH = "/api/addressvalidation/v1/1"  # 1 = street level validation
VOID_PATH = "/api/shipments/v1/void/cancel"

PACKAGING_CUSTOMER_SUPPLIED = "02"

UPS_SERVICE_CODES = {
    "01": "UPS Next Day Air",
    "02": "UPS 2nd Day Air",
    "03": "UPS Ground",
    "07": "UPS Worldwide Express",
    "08": "UPS Worldwide Expedited",
    "11": "UPS Standard",
    "12": "UPS 3 Day Select",
    "13": "UPS Next Day Air Saver",
    "14": "UPS Next Day Air Early",
    "54": "UPS Worldwide Express Plus",
    "59": "UPS 2nd Day Air A.M.",
    "65": "UPS Saver",
}

# Keyed by the first character of the UPS status type/code
UPS_STATUS_MAP = {
    "D": TrackingStatus.DELIVERED,
    "I": TrackingStatus.IN_TRANSIT,
    "X": TrackingStatus.FAILURE,
    "P": TrackingStatus.PRE_TRANSIT,
    "M": TrackingStatus.PRE_TRANSIT,
    "O": TrackingStatus.OUT_FOR_DELIVERY,
}

# UPS accepts only these; ounces are sent as pounds
UPS_WEIGHT_UNITS = {"kg": "KGS", "lb": "LBS"}
UPS_DIMENSION_UNITS = {"cm": "CM", "in": "IN"}
UPS_MIN_WEIGHT = 0.1  # smallest value the one-decimal weight field can carry


def ups_service_name(code: Optional[str]) -> str:
    return UPS_SERVICE_CODES.get(code or "", code or "")


def ups_tracking_status(code: Optional[str]) -> TrackingStatus:
    if not code:
        return TrackingStatus.UNKNOWN
    return UPS_STATUS_MAP.get(code[0].upper(), TrackingStatus.UNKNOWN)


def _as_list(value: Any) -> List[Any]:
    """UPS returns a bare object where a one-element list is expected."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _money(node: Optional[Dict[str, Any]]) -> float:
    if not node:
        return 0.0
    return float(node.get("MonetaryValue") or 0)


def _parse_ups_date(date_str: Optional[str], time_str: Optional[str] = None) -> Optional[datetime]:
    """UPS dates are YYYYMMDD, times HHMMSS, both UTC."""
    if not date_str or len(date_str) < 8:
        return None
    try:
        if time_str and len(time_str) >= 6:
            return datetime.strptime(f"{date_str[:8]}{time_str[:6]}", "%Y%m%d%H%M%S").replace(tzinfo=timezone.utc)
        return datetime.strptime(date_str[:8], "%Y%m%d").replace(tzinfo=timezone.utc)
    except ValueError:
        logger.warning(f"Unparseable UPS date: {date_str} {time_str or ''}")
        return None


def _ups_error_message(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    errors = body.get("response", {}).get("errors", [])
    if errors:
        return errors[0].get("message")
    return None


class UPSCarrier(CarrierAdapter):
    """
    UPS carrier implementation.

    Rate quotes use RequestOption "Shop" unless the request names a service.
    """

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
            base_url=UPS_SANDBOX_URL if use_sandbox else UPS_PRODUCTION_URL,
            fetch_token=self._fetch_token,
            timeout=timeout,
            token_buffer_seconds=token_buffer_seconds,
            extra_headers=self._transaction_headers,
            error_message=_ups_error_message,
            transport=transport,
        )

    @property
    def carrier_id(self) -> str:
        return "ups"

    @property
    def carrier_name(self) -> str:
        return "UPS"

    async def close(self) -> None:
        await self.http.close()

    async def _fetch_token(self):
        return await self.http.fetch_oauth_token(
            OAUTH_TOKEN_PATH,
            data={"grant_type": "client_credentials"},
            auth=(self.client_id, self.client_secret),
            headers={"x-merchant-id": self.client_id},
        )

    def _transaction_headers(self) -> Dict[str, str]:
        return {
            "transId": f"parcelrate_{datetime.now().strftime('%Y%m%d%H%M%S%f')}",
            "transactionSrc": "parcelrate",
        }

    async def get_supported_services(self) -> List[ServiceOption]:
        return [ServiceOption(code=code, name=name) for code, name in UPS_SERVICE_CODES.items()]

    # ==================== Formatting ====================

    def format_address(self, address: Address) -> Dict[str, Any]:
        """Convert to UPS API format."""
        lines = [address.address_line1]
        if address.address_line2:
            lines.append(address.address_line2)

        formatted = {
            "Name": address.name[:35],  # UPS limit
            "Address": {
                "AddressLine": lines,
                "City": address.city,
                "StateProvinceCode": address.state[:5] if address.state else "",
                "PostalCode": address.postal_code,
                "CountryCode": address.country_code,
            },
            "Phone": {"Number": (address.phone or "")[:15]},
        }
        if address.email:
            formatted["EMailAddress"] = address.email[:50]
        if address.residential:
            formatted["Address"]["ResidentialAddressIndicator"] = ""
        return formatted

    def format_package(self, package: PackageDetails) -> Dict[str, Any]:
        weight_unit = package.weight.unit
        weight_value = package.weight.value
        if weight_unit not in UPS_WEIGHT_UNITS:
            weight_value = convert_weight(weight_value, weight_unit, "lb")
            weight_unit = "lb"

        formatted = {
            "PackagingType": {"Code": PACKAGING_CUSTOMER_SUPPLIED, "Description": "Package"},
            "PackageWeight": {
                "UnitOfMeasurement": {"Code": UPS_WEIGHT_UNITS[weight_unit]},
                "Weight": str(max(round(weight_value, 1), UPS_MIN_WEIGHT)),
            },
        }

        if package.dimensions:
            dims = package.dimensions
            formatted["Dimensions"] = {
                "UnitOfMeasurement": {"Code": UPS_DIMENSION_UNITS[dims.unit]},
                "Length": str(round(dims.length, 1)),
                "Width": str(round(dims.width, 1)),
                "Height": str(round(dims.height, 1)),
            }

        if package.declared_value:
            formatted["PackageServiceOptions"] = {
                "DeclaredValue": {
                    "CurrencyCode": "USD",
                    "MonetaryValue": str(round(package.declared_value, 2)),
                }
            }
        if package.requires_signature:
            formatted.setdefault("PackageServiceOptions", {})["DeliveryConfirmation"] = {"DCISType": "2"}

        return formatted

    def build_rate_request(self, request: RateRequest) -> Dict[str, Any]:
        shipper = self.format_address(request.origin)
        shipper["ShipperNumber"] = self.account_number

        shipment: Dict[str, Any] = {
            "Shipper": shipper,
            "ShipTo": self.format_address(request.destination),
            "ShipFrom": self.format_address(request.origin),
            "Package": [self.format_package(pkg) for pkg in request.packages],
        }

        payload = {
            "RateRequest": {
                "Request": {
                    "RequestOption": "Shop",
                    "TransactionReference": {"CustomerContext": "Rate Request"},
                },
                "Shipment": shipment,
            }
        }

        if request.service_type:
            payload["RateRequest"]["Request"]["RequestOption"] = "Rate"
            shipment["Service"] = {"Code": request.service_type}

        if request.ship_date:
            shipment["DeliveryTimeInformation"] = {
                "PackageBillType": "02",
                "Pickup": {"Date": request.ship_date.strftime("%Y%m%d")},
            }

        return payload

    # ==================== Rating ====================

    async def get_rates(self, request: RateRequest) -> List[RateResponse]:
        payload = self.build_rate_request(request)
        response = await self.http.request("POST", RATING_PATH, json=payload)
        return self.parse_rate_response(response)

    def parse_rate_response(self, response: Dict[str, Any], now: Optional[datetime] = None) -> List[RateResponse]:
        now = now or datetime.now(timezone.utc)
        rated_shipments = _as_list(response.get("RateResponse", {}).get("RatedShipment"))

        rates = []
        for rs in rated_shipments:
            service_code = rs.get("Service", {}).get("Code", "")
            total = rs.get("TotalCharges", {})

            estimated_days = None
            delivery_date = None
            guaranteed = rs.get("GuaranteedDelivery") or {}
            transit = guaranteed.get("BusinessDaysInTransit")
            if transit:
                try:
                    estimated_days = int(transit)
                except (TypeError, ValueError):
                    estimated_days = None
                if estimated_days:
                    delivery_date = now + timedelta(days=estimated_days)

            fees: Dict[str, float] = {}
            for charge in _as_list(rs.get("ItemizedCharges")):
                code = charge.get("Code", "other")
                fees[code] = fees.get(code, 0.0) + _money(charge)
            service_options = _money(rs.get("ServiceOptionsCharges"))
            if service_options:
                fees["service_options"] = service_options

            taxes = sum(_money(tax) for tax in _as_list(rs.get("TaxCharges")))

            rates.append(RateResponse(
                carrier_id=self.carrier_id,
                carrier_name=self.carrier_name,
                service_type=service_code,
                service_code=service_code,
                service_name=ups_service_name(service_code),
                total_amount=_money(total),
                currency=total.get("CurrencyCode", "USD"),
                estimated_days=estimated_days,
                estimated_delivery_date=delivery_date,
                rate_details=RateBreakdown(
                    base_rate=_money(rs.get("TransportationCharges")),
                    taxes=taxes,
                    fees=fees,
                ),
                carrier_specific_data={
                    "guaranteed_delivery": bool(rs.get("GuaranteedDelivery")),
                    "billing_weight": rs.get("BillingWeight", {}).get("Weight"),
                },
            ))

        return rates

    # ==================== Shipping ====================

    async def create_shipment(self, request: ShipmentRequest) -> ShipmentResponse:
        shipper = self.format_address(request.origin)
        shipper["ShipperNumber"] = self.account_number
        label_format = request.label_format.upper()
        payload = {
            "ShipmentRequest": {
                "Request": {"RequestOption": "nonvalidate"},
                "Shipment": {
                    "Shipper": shipper,
                    "ShipTo": self.format_address(request.destination),
                    "ShipFrom": self.format_address(request.origin),
                    "PaymentInformation": {
                        "ShipmentCharge": {
                            "Type": "01",
                            "BillShipper": {"AccountNumber": self.account_number},
                        }
                    },
                    "Service": {"Code": request.service_code or request.service_type or "03"},
                    "Package": [self.format_package(pkg) for pkg in request.packages],
                },
                "LabelSpecification": {
                    "LabelImageFormat": {"Code": "GIF" if label_format in ("PDF", "PNG") else label_format},
                },
            }
        }

        response = await self.http.request("POST", SHIPPING_PATH, json=payload)
        results = response.get("ShipmentResponse", {}).get("ShipmentResults")
        if not results:
            raise ProviderResponseError(
                "Invalid shipment response from UPS",
                carrier_id=self.carrier_id,
                body=response,
            )

        package_results = _as_list(results.get("PackageResults"))
        first_package = package_results[0] if package_results else {}
        tracking_number = first_package.get("TrackingNumber") or results.get("ShipmentIdentificationNumber", "")
        total = results.get("ShipmentCharges", {}).get("TotalCharges", {})

        return ShipmentResponse(
            carrier_id=self.carrier_id,
            carrier_name=self.carrier_name,
            tracking_number=tracking_number,
            shipment_id=results.get("ShipmentIdentificationNumber", ""),
            label_data=first_package.get("ShippingLabel", {}).get("GraphicImage"),
            total_amount=_money(total),
            currency=total.get("CurrencyCode", "USD"),
            carrier_specific_data={
                "service_code": payload["ShipmentRequest"]["Shipment"]["Service"]["Code"],
                "negotiated_rates": bool(results.get("NegotiatedRateCharges")),
            },
        )

    # ==================== Tracking ====================

    async def track_shipment(self, request: TrackingRequest) -> TrackingResponse:
        response = await self.http.request(
            "GET",
            f"{TRACKING_PATH}/{request.tracking_number}",
            params={"locale": "en_US", "returnSignature": "false"},
        )
        return self.parse_tracking_response(response, request.tracking_number)

    def parse_tracking_response(self, response: Dict[str, Any], tracking_number: str) -> TrackingResponse:
        shipments = _as_list(response.get("trackResponse", {}).get("shipment"))
        if not shipments:
            raise ProviderResponseError(
                f"UPS has no tracking information for {tracking_number}",
                carrier_id=self.carrier_id,
                body=response,
            )

        shipment = shipments[0]
        packages = _as_list(shipment.get("package"))
        # Current API nests details under package[]; older payloads do not
        detail = packages[0] if packages else shipment

        current = detail.get("currentStatus") or {}
        status = ups_tracking_status(current.get("type") or current.get("code"))

        events = []
        for activity in _as_list(detail.get("activity")):
            activity_status = activity.get("status") or {}
            address = (activity.get("location") or {}).get("address") or {}
            location = None
            if address.get("city"):
                location = ", ".join(
                    part for part in (address.get("city"), address.get("stateProvince"), address.get("country")) if part
                )
            events.append(TrackingEvent(
                timestamp=_parse_ups_date(activity.get("date"), activity.get("time")) or datetime.now(timezone.utc),
                status=ups_tracking_status(activity_status.get("type") or activity_status.get("code")),
                description=activity_status.get("description", ""),
                location=location,
            ))

        estimated = None
        actual = None
        for entry in _as_list(detail.get("deliveryDate")):
            parsed = _parse_ups_date(entry.get("date"))
            if parsed is None:
                continue
            if entry.get("type") == "DEL" or status == TrackingStatus.DELIVERED:
                actual = parsed
            else:
                estimated = parsed

        weight = detail.get("packageWeight") or shipment.get("packageWeight") or {}
        service = detail.get("service") or shipment.get("service") or {}

        return TrackingResponse(
            tracking_number=detail.get("trackingNumber") or shipment.get("inquiryNumber") or tracking_number,
            carrier_id=self.carrier_id,
            carrier_name=self.carrier_name,
            status=status,
            estimated_delivery_date=estimated,
            actual_delivery_date=actual,
            events=events,
            carrier_specific_data={
                "service_type": service.get("description"),
                "package_weight": weight.get("weight"),
                "package_weight_unit": (weight.get("unitOfMeasurement") or {}).get("code"),
            },
        )

    # ==================== Address Validation ====================

    async def validate_address(self, address: Address) -> AddressValidationResult:
        lines = [address.address_line1]
        if address.address_line2:
            lines.append(address.address_line2)

        request_data = {
            "XAVRequest": {
                "AddressKeyFormat": {
                    "ConsigneeName": address.name,
                    "AddressLine": lines,
                    "PoliticalDivision2": address.city,
                    "PoliticalDivision1": address.state,
                    "PostcodePrimaryLow": address.postal_code,
                    "CountryCode": address.country_code,
                }
            }
        }

        response = await self.http.request("POST", ADDRESS_VALIDATION_PATH, json=request_data)
        return self.parse_address_response(response, address)

    def parse_address_response(self, response: Dict[str, Any], address: Address) -> AddressValidationResult:
        xav = response.get("XAVResponse")
        if not xav:
            return AddressValidationResult(is_valid=False, messages=["No address validation result returned"])

        # UPS signals indicators by key presence with an empty value
        is_valid = "ValidAddressIndicator" in xav
        messages = []
        if "NoCandidatesIndicator" in xav:
            messages.append("No valid address candidates found")
        if "AmbiguousAddressIndicator" in xav:
            messages.append("Address is ambiguous")

        normalized = None
        candidates = _as_list(xav.get("Candidate"))
        if candidates:
            candidate = candidates[0]
            key = candidate.get("AddressKeyFormat", {})
            lines = _as_list(key.get("AddressLine"))
            postal = key.get("PostcodePrimaryLow", "")
            if key.get("PostcodeExtendedLow"):
                postal = f"{postal}-{key['PostcodeExtendedLow']}"
            classification = candidate.get("AddressClassification") or xav.get("AddressClassification") or {}
            normalized = Address(
                name=address.name,
                address_line1=lines[0] if lines else "",
                address_line2=lines[1] if len(lines) > 1 else None,
                city=key.get("PoliticalDivision2", ""),
                state=key.get("PoliticalDivision1", ""),
                postal_code=postal,
                country_code=key.get("CountryCode", address.country_code),
                phone=address.phone,
                email=address.email,
                residential=classification.get("Code") == "2",
            )

        return AddressValidationResult(is_valid=is_valid, normalized_address=normalized, messages=messages)

    # ==================== Void ====================

    async def cancel_shipment(self, shipment_id: str) -> CancelResult:
        response = await self.http.request("DELETE", f"{VOID_PATH}/{shipment_id}")
        status = response.get("VoidShipmentResponse", {}).get("Response", {}).get("ResponseStatus", {})
        return CancelResult(
            success=status.get("Code") == "1",
            message=status.get("Description") or "No message returned",
        )
