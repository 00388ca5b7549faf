"""
Shipping API Routes

Provides endpoints for:
- Carrier rate quoting (all carriers, a subset, or a single best rate)
- Cross-carrier tracking lookup
- Internal zone-based shipping methods and rates

Resolution errors map to 4xx, carrier failures to 502, anything else 500.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from parcelrate.core.exceptions import (
    MethodNotFoundError,
    ParcelRateError,
    ShippingResolutionError,
)
from parcelrate.api.deps import (
    get_default_origin,
    get_multi_carrier_service,
    get_zone_rate_service,
)
from parcelrate.modules.shipping.carriers.base import Address
from parcelrate.modules.shipping.carriers.base import TrackingResponse as TrackingResult
from parcelrate.services.multi_carrier_service import MultiCarrierService
from parcelrate.services.zone_rate_service import ZoneRateService
from parcelrate.schemas.shipping import (
    AvailableMethodResponse,
    BestRateRequest,
    CalculateShippingRequest,
    CarrierOption,
    CarrierRateListResponse,
    CarrierRateRequest,
    CarrierRateResponse,
    InternalRateResponse,
    ShippingMethodResponse,
    TrackRequest,
    TrackingEventResponse,
    TrackingResponse,
    build_rate_request,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shipping", tags=["shipping"])


# ==================== Helper Functions ====================


def error_to_http(e: ParcelRateError) -> HTTPException:
    """Translate a domain error into an HTTP error response."""
    if isinstance(e, MethodNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.to_dict())
    if isinstance(e, ShippingResolutionError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.to_dict())
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.to_dict())


def _rate_request(payload: CarrierRateRequest, default_origin: Address):
    try:
        request = build_rate_request(payload, default_origin)
        request.origin.validate()
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return request


def tracking_to_response(tracking: TrackingResult) -> TrackingResponse:
    return TrackingResponse(
        tracking_number=tracking.tracking_number,
        carrier_id=tracking.carrier_id,
        carrier_name=tracking.carrier_name,
        status=tracking.status.value,
        estimated_delivery_date=tracking.estimated_delivery_date,
        actual_delivery_date=tracking.actual_delivery_date,
        events=[
            TrackingEventResponse(
                timestamp=event.timestamp,
                status=event.status.value,
                description=event.description,
                location=event.location,
                latitude=event.coordinates.latitude if event.coordinates else None,
                longitude=event.coordinates.longitude if event.coordinates else None,
            )
            for event in tracking.events
        ],
        carrier_specific_data=tracking.carrier_specific_data,
    )


# ==================== Carrier Endpoints ====================


@router.get("/carriers", response_model=List[CarrierOption])
async def list_carriers(service: MultiCarrierService = Depends(get_multi_carrier_service)):
    """List configured carriers."""
    return service.get_carrier_options()


@router.post("/carrier-rates", response_model=CarrierRateListResponse)
async def get_carrier_rates(
    payload: CarrierRateRequest,
    service: MultiCarrierService = Depends(get_multi_carrier_service),
    default_origin: Address = Depends(get_default_origin),
):
    """
    Quote all configured carriers, or only carrier_ids when given.

    Carrier failures are reported in errors; the request itself succeeds.
    """
    request = _rate_request(payload, default_origin)

    if payload.carrier_ids is not None:
        result = await service.get_carrier_rates(request, payload.carrier_ids)
    else:
        result = await service.get_all_carrier_rates(request)

    return CarrierRateListResponse(
        rates=[CarrierRateResponse(**rate.to_dict()) for rate in result.rates],
        errors=result.errors,
    )


@router.post("/carrier-rates/best", response_model=CarrierRateResponse)
async def get_best_carrier_rate(
    payload: BestRateRequest,
    service: MultiCarrierService = Depends(get_multi_carrier_service),
    default_origin: Address = Depends(get_default_origin),
):
    """Single best rate by price, time or value."""
    request = _rate_request(payload, default_origin)

    best = await service.get_best_rate(request, payload.criterion)
    if best is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No rates available for this shipment")

    return CarrierRateResponse(**best.to_dict())


@router.post("/track", response_model=TrackingResponse)
async def track_shipment(
    payload: TrackRequest,
    service: MultiCarrierService = Depends(get_multi_carrier_service),
):
    """Look up a tracking number across all carriers."""
    tracking = await service.track_shipment(payload.tracking_number)
    if tracking is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tracking number not found")
    return tracking_to_response(tracking)


# ==================== Internal Rate Endpoints ====================


@router.get("/methods", response_model=List[ShippingMethodResponse])
async def list_shipping_methods(service: ZoneRateService = Depends(get_zone_rate_service)):
    """Active shipping methods, fastest first."""
    methods = await service.list_methods()
    return [ShippingMethodResponse.model_validate(m) for m in methods]


@router.get("/methods/available", response_model=List[AvailableMethodResponse])
async def list_available_methods(
    postal_code: str = Query(..., min_length=1, max_length=20),
    weight: Optional[float] = Query(None, gt=0),
    order_value: Optional[float] = Query(None, ge=0),
    categories: Optional[List[str]] = Query(None),
    customer_group: Optional[str] = Query(None),
    service: ZoneRateService = Depends(get_zone_rate_service),
):
    """Methods with an eligible rate to postal_code."""
    methods = await service.get_available_methods(
        postal_code,
        weight=weight,
        order_value=order_value,
        categories=categories,
        customer_group=customer_group,
    )
    return [AvailableMethodResponse(**m.to_dict()) for m in methods]


@router.post("/methods/{method_ref}/calculate", response_model=InternalRateResponse)
async def calculate_shipping(
    method_ref: str,
    payload: CalculateShippingRequest,
    service: ZoneRateService = Depends(get_zone_rate_service),
):
    """Quote one method (by id or code) to a postal code."""
    try:
        quote = await service.resolve_internal_rate(
            method_ref,
            payload.postal_code,
            weight=payload.weight,
            order_value=payload.order_value,
            categories=payload.product_categories,
            customer_group=payload.customer_group,
            strict=payload.strict,
        )
    except ParcelRateError as e:
        raise error_to_http(e)
    except Exception as e:
        logger.error(f"Failed to calculate shipping for {method_ref}: {e}")
        raise HTTPException(status_code=500, detail="Failed to calculate shipping")

    return InternalRateResponse(**quote.to_dict())
