"""
Read access to shipping zones, methods and rates.

ZoneRateService depends on the ShippingRepository protocol only, so tests
and non-SQL deployments can hand it any object with these coroutines.
"""
import logging
from typing import List, Optional, Protocol, Sequence

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from parcelrate.models.shipping import ShippingZone, ShippingMethod, ShippingRate

logger = logging.getLogger(__name__)


class ShippingRepository(Protocol):
    async def list_active_zones(self) -> List[ShippingZone]: ...

    async def list_active_methods(self) -> List[ShippingMethod]: ...

    async def get_method_by_id(self, method_id: str) -> Optional[ShippingMethod]: ...

    async def get_method_by_code(self, code: str) -> Optional[ShippingMethod]: ...

    async def list_active_rates(self, method_id: str, zone_ids: Sequence[str]) -> List[ShippingRate]: ...


class SQLAlchemyShippingRepository:
    """ShippingRepository backed by an AsyncSession."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_active_zones(self) -> List[ShippingZone]:
        """Active zones, highest priority first."""
        result = await self.db.execute(
            select(ShippingZone)
            .where(ShippingZone.is_active == True)  # noqa: E712
            .order_by(ShippingZone.priority.desc())
        )
        return list(result.scalars().all())

    async def list_active_methods(self) -> List[ShippingMethod]:
        """Active methods, fastest first."""
        result = await self.db.execute(
            select(ShippingMethod)
            .where(ShippingMethod.is_active == True)  # noqa: E712
            .order_by(ShippingMethod.estimated_days.asc(), ShippingMethod.display_order.asc())
        )
        return list(result.scalars().all())

    async def get_method_by_id(self, method_id: str) -> Optional[ShippingMethod]:
        result = await self.db.execute(
            select(ShippingMethod).where(
                and_(
                    ShippingMethod.id == method_id,
                    ShippingMethod.is_active == True,  # noqa: E712
                )
            )
        )
        return result.scalar_one_or_none()

    async def get_method_by_code(self, code: str) -> Optional[ShippingMethod]:
        result = await self.db.execute(
            select(ShippingMethod).where(
                and_(
                    ShippingMethod.code == code,
                    ShippingMethod.is_active == True,  # noqa: E712
                )
            )
        )
        return result.scalar_one_or_none()

    async def list_active_rates(self, method_id: str, zone_ids: Sequence[str]) -> List[ShippingRate]:
        if not zone_ids:
            return []
        result = await self.db.execute(
            select(ShippingRate).where(
                and_(
                    ShippingRate.shipping_method_id == method_id,
                    ShippingRate.shipping_zone_id.in_(list(zone_ids)),
                    ShippingRate.is_active == True,  # noqa: E712
                )
            )
        )
        return list(result.scalars().all())
