"""
Shipping zone / method / rate tables.

Rows are maintained by the admin side; this service only reads them.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    Column, String, Boolean, DateTime, Float, Integer, Text, JSON,
    ForeignKey, Index
)
from sqlalchemy.orm import relationship

from parcelrate.core.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class ShippingZone(Base):
    """
    Geographic matching rules for a set of postal codes.

    A postal code belongs to the zone if it matches a region row, a regex
    pattern or an inclusive "start-end" range, and is not in
    excluded_pincodes. Priority only orders zones, it never hides one.
    """
    __tablename__ = "shipping_zones"
    __table_args__ = (
        Index("ix_shipping_zones_active_priority", "is_active", "priority"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(100), nullable=False)
    code = Column(String(50), unique=True, nullable=False)
    description = Column(Text, nullable=True)

    countries = Column(JSON, default=list)  # ["IN", "US"]
    regions = Column(JSON, default=list)  # [{"country", "state", "city", "pincode"}]
    pincode_patterns = Column(JSON, default=list)  # regex strings
    pincode_ranges = Column(JSON, default=list)  # ["400000-400099"]
    excluded_pincodes = Column(JSON, default=list)

    is_active = Column(Boolean, default=True, nullable=False)
    priority = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    rates = relationship("ShippingRate", back_populates="zone")

    def __repr__(self):
        return f"<ShippingZone {self.code} priority={self.priority}>"


class ShippingMethod(Base):
    """A named service tier (standard, express, ...) priced by zone rates."""
    __tablename__ = "shipping_methods"
    __table_args__ = (
        Index("ix_shipping_methods_active", "is_active"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(100), nullable=False)
    code = Column(String(50), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    base_rate = Column(Float, default=0.0, nullable=False)
    estimated_days = Column(Integer, default=3, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    display_order = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    rates = relationship("ShippingRate", back_populates="method")

    def __repr__(self):
        return f"<ShippingMethod {self.code}>"


class ShippingRate(Base):
    """
    Price for one (method, zone) pair.

    conditions JSON shape:
        {
            "productCategories": ["books"],
            "customerGroups": ["wholesale"],
            "weekdays": [1, 2, 3, 4, 5],   # 0 = Sunday
            "timeRanges": [{"start": "09:00", "end": "17:00"}]
        }
    An empty or missing list places no restriction.
    """
    __tablename__ = "shipping_rates"
    __table_args__ = (
        Index("ix_shipping_rates_method_zone", "shipping_method_id", "shipping_zone_id"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(100), nullable=True)
    shipping_method_id = Column(String(36), ForeignKey("shipping_methods.id"), nullable=False)
    shipping_zone_id = Column(String(36), ForeignKey("shipping_zones.id"), nullable=False)

    rate = Column(Float, nullable=False)
    min_weight = Column(Float, nullable=True)
    max_weight = Column(Float, nullable=True)
    min_order_value = Column(Float, nullable=True)
    max_order_value = Column(Float, nullable=True)
    conditions = Column(JSON, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    method = relationship("ShippingMethod", back_populates="rates")
    zone = relationship("ShippingZone", back_populates="rates")

    def __repr__(self):
        return f"<ShippingRate {self.shipping_method_id}@{self.shipping_zone_id} {self.rate}>"
