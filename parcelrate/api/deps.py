"""
API dependencies
"""
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from parcelrate.core.config import Settings, get_settings
from parcelrate.core.database import get_db
from parcelrate.modules.shipping.carriers import CarrierRegistry
from parcelrate.modules.shipping.carriers.base import Address
from parcelrate.services.multi_carrier_service import MultiCarrierService
from parcelrate.services.shipping_repository import SQLAlchemyShippingRepository
from parcelrate.services.zone_rate_service import ZoneRateService


def get_registry(request: Request) -> CarrierRegistry:
    """Registry built in the app lifespan."""
    return request.app.state.carrier_registry


def get_multi_carrier_service(
    registry: CarrierRegistry = Depends(get_registry),
    settings: Settings = Depends(get_settings),
) -> MultiCarrierService:
    return MultiCarrierService(registry, settings)


def get_zone_rate_service(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> ZoneRateService:
    return ZoneRateService(SQLAlchemyShippingRepository(db), config=settings)


def get_default_origin(settings: Settings = Depends(get_settings)) -> Address:
    """Ship-from address used when a rate request omits origin."""
    return Address(
        name=settings.SHIPPING_ORIGIN_NAME,
        address_line1=settings.SHIPPING_ORIGIN_ADDRESS,
        address_line2=settings.SHIPPING_ORIGIN_ADDRESS2 or None,
        city=settings.SHIPPING_ORIGIN_CITY,
        state=settings.SHIPPING_ORIGIN_STATE,
        postal_code=settings.SHIPPING_ORIGIN_ZIP,
        country_code=settings.SHIPPING_ORIGIN_COUNTRY,
        phone=settings.SHIPPING_ORIGIN_PHONE or None,
    )
