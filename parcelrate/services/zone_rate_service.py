"""
Zone & Internal Rate Resolver

Prices a shipment from the operator's own rate table, without calling any
carrier:

1. Collect every active zone that covers the postal code. Exclusions win
   over any match; priority orders zones but never hides one.
2. Load the method's active rates across all of those zones.
3. Drop rates whose weight, order value or conditions don't fit.
4. The cheapest survivor wins; with none left the method's base rate
   applies (or RateUnavailableError in strict mode).
"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Any, Callable, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

from parcelrate.core.config import Settings, settings as default_settings
from parcelrate.core.exceptions import (
    MethodNotFoundError,
    RateUnavailableError,
    ZoneNotApplicableError,
)
from parcelrate.models.shipping import ShippingMethod, ShippingRate, ShippingZone
from parcelrate.services.eta import EtaCalculator, EtaResult, calculate_eta
from parcelrate.services.shipping_repository import ShippingRepository

logger = logging.getLogger(__name__)


@dataclass
class RateOptions:
    """Shipment facts used to filter rate rows. None means not supplied."""
    weight: Optional[float] = None
    order_value: Optional[float] = None
    product_categories: Optional[List[str]] = None
    customer_group: Optional[str] = None


@dataclass
class InternalRateQuote:
    id: str
    name: str
    code: str
    description: str
    base_rate: float
    estimated_days: int
    eta: EtaResult
    applied_rate_id: Optional[str] = None
    used_fallback: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "description": self.description,
            "base_rate": self.base_rate,
            "estimated_days": self.estimated_days,
            "eta": self.eta.to_dict(),
            "applied_rate_id": self.applied_rate_id,
            "used_fallback": self.used_fallback,
        }


@dataclass
class AvailableMethod:
    id: str
    name: str
    code: str
    description: str
    rate: float
    estimated_days: int
    display_order: int
    eta: EtaResult
    applied_rate_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "description": self.description,
            "rate": self.rate,
            "estimated_days": self.estimated_days,
            "display_order": self.display_order,
            "eta": self.eta.to_dict(),
            "applied_rate_id": self.applied_rate_id,
        }


# =============================================================================
# Zone matching
# =============================================================================

def postal_code_in_range(postal_code: str, postal_range: str, mode: str = "string") -> bool:
    """
    Inclusive "start-end" membership.

    mode "string" compares lexicographically. mode "numeric" compares as
    integers when code and both bounds are all digits, else as strings.
    """
    parts = postal_range.split("-", 1)
    if len(parts) != 2:
        logger.warning(f"Ignoring malformed postal range: {postal_range!r}")
        return False
    start, end = parts[0].strip(), parts[1].strip()

    if mode == "numeric" and postal_code.isdigit() and start.isdigit() and end.isdigit():
        return int(start) <= int(postal_code) <= int(end)
    return start <= postal_code <= end


def _pattern_matches(pattern: str, postal_code: str) -> bool:
    try:
        return re.search(pattern, postal_code) is not None
    except re.error as e:
        logger.warning(f"Ignoring invalid postal pattern {pattern!r}: {e}")
        return False


def zone_matches(zone: ShippingZone, postal_code: str, range_mode: str = "string") -> bool:
    if postal_code in (zone.excluded_pincodes or []):
        return False

    for region in zone.regions or []:
        if isinstance(region, dict) and (region.get("pincode") or region.get("postal_code")) == postal_code:
            return True

    for pattern in zone.pincode_patterns or []:
        if _pattern_matches(pattern, postal_code):
            return True

    for postal_range in zone.pincode_ranges or []:
        if postal_code_in_range(postal_code, postal_range, range_mode):
            return True

    return False


# =============================================================================
# Rate filtering
# =============================================================================

def js_weekday(moment: datetime) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (moment.weekday() + 1) % 7


def _minutes(hhmm: str) -> int:
    hours, minutes = hhmm.strip().split(":")[:2]
    return int(hours) * 60 + int(minutes)


def time_in_ranges(moment: datetime, ranges: Sequence[Dict[str, str]]) -> bool:
    """True if moment's local HH:MM falls in any {start, end} range (inclusive)."""
    now_minutes = moment.hour * 60 + moment.minute
    for time_range in ranges:
        try:
            start = _minutes(time_range["start"])
            end = _minutes(time_range["end"])
        except (KeyError, TypeError, ValueError):
            logger.warning(f"Ignoring malformed time range: {time_range!r}")
            continue
        if start <= end:
            if start <= now_minutes <= end:
                return True
        elif now_minutes >= start or now_minutes <= end:
            # Overnight window, e.g. 22:00-06:00
            return True
    return False


def rate_is_eligible(rate: ShippingRate, options: RateOptions, moment: datetime) -> bool:
    if options.weight is not None:
        if rate.min_weight is not None and options.weight < rate.min_weight:
            return False
        if rate.max_weight is not None and options.weight > rate.max_weight:
            return False

    if options.order_value is not None:
        if rate.min_order_value is not None and options.order_value < rate.min_order_value:
            return False
        if rate.max_order_value is not None and options.order_value > rate.max_order_value:
            return False

    conditions = rate.conditions or {}

    categories = conditions.get("productCategories") or []
    if categories and options.product_categories is not None:
        if not set(categories) & set(options.product_categories):
            return False

    groups = conditions.get("customerGroups") or []
    if groups and options.customer_group:
        if options.customer_group not in groups:
            return False

    weekdays = conditions.get("weekdays") or []
    if weekdays:
        if js_weekday(moment) not in {int(day) for day in weekdays}:
            return False

    time_ranges = conditions.get("timeRanges") or []
    if time_ranges and not time_in_ranges(moment, time_ranges):
        return False

    return True


def _resolve_timezone(name: str) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


# =============================================================================
# Service
# =============================================================================

class ZoneRateService:
    """
    Internal rate resolution over a ShippingRepository.

    Args:
        repository: zone / method / rate reader
        eta_calculator: (postal_code, method_code) -> EtaResult
        config: settings for range mode and local time zone
        clock: returns the current aware datetime; weekday and time-of-day
            conditions are evaluated in SHIPPING_TIMEZONE
    """

    def __init__(
        self,
        repository: ShippingRepository,
        eta_calculator: EtaCalculator = calculate_eta,
        config: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self.eta_calculator = eta_calculator
        self.config = config or default_settings
        self._tz = _resolve_timezone(self.config.SHIPPING_TIMEZONE)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _now(self) -> datetime:
        return self._clock().astimezone(self._tz)

    # ==================== Methods ====================

    async def list_methods(self) -> List[ShippingMethod]:
        return await self.repository.list_active_methods()

    async def get_method(self, method_id: str) -> Optional[ShippingMethod]:
        return await self.repository.get_method_by_id(method_id)

    async def get_method_by_code(self, code: str) -> Optional[ShippingMethod]:
        return await self.repository.get_method_by_code(code)

    async def _lookup_method(self, method_ref: str) -> ShippingMethod:
        method = await self.repository.get_method_by_id(method_ref)
        if method is None:
            method = await self.repository.get_method_by_code(method_ref)
        if method is None:
            raise MethodNotFoundError(method_ref)
        return method

    # ==================== Zones & rates ====================

    async def find_applicable_zones(self, postal_code: str) -> List[ShippingZone]:
        """Every active zone covering postal_code, highest priority first."""
        zones = await self.repository.list_active_zones()
        mode = self.config.ZONE_POSTAL_RANGE_MODE
        return [zone for zone in zones if zone_matches(zone, postal_code, mode)]

    async def find_best_rate(
        self,
        method_id: str,
        zone_ids: Sequence[str],
        options: Optional[RateOptions] = None,
    ) -> Optional[ShippingRate]:
        """Cheapest eligible rate for the method across all zones, or None."""
        options = options or RateOptions()
        rates = await self.repository.list_active_rates(method_id, zone_ids)
        moment = self._now()

        best = None
        for rate in rates:
            if not rate_is_eligible(rate, options, moment):
                continue
            if best is None or rate.rate < best.rate:
                best = rate
        return best

    # ==================== Quotes ====================

    async def resolve_internal_rate(
        self,
        method_ref: str,
        postal_code: str,
        weight: Optional[float] = None,
        order_value: Optional[float] = None,
        categories: Optional[List[str]] = None,
        customer_group: Optional[str] = None,
        strict: bool = False,
    ) -> InternalRateQuote:
        """
        Quote one method to one postal code.

        method_ref may be the method id or its code.

        Raises:
            MethodNotFoundError: no active method with that id or code
            ZoneNotApplicableError: no active zone covers the postal code
            RateUnavailableError: strict=True and every rate was filtered out
        """
        method = await self._lookup_method(method_ref)

        zones = await self.find_applicable_zones(postal_code)
        if not zones:
            raise ZoneNotApplicableError(postal_code)

        options = RateOptions(
            weight=weight,
            order_value=order_value,
            product_categories=categories,
            customer_group=customer_group,
        )
        rate = await self.find_best_rate(method.id, [zone.id for zone in zones], options)

        if rate is None:
            if strict:
                raise RateUnavailableError(method.code, postal_code)
            logger.info(f"No rate row for {method.code} to {postal_code}, using base rate {method.base_rate}")

        return InternalRateQuote(
            id=method.id,
            name=method.name,
            code=method.code,
            description=method.description or "",
            base_rate=rate.rate if rate is not None else method.base_rate,
            estimated_days=method.estimated_days,
            eta=self.eta_calculator(postal_code, method.code),
            applied_rate_id=rate.id if rate is not None else None,
            used_fallback=rate is None,
        )

    async def get_available_methods(
        self,
        postal_code: str,
        weight: Optional[float] = None,
        order_value: Optional[float] = None,
        categories: Optional[List[str]] = None,
        customer_group: Optional[str] = None,
    ) -> List[AvailableMethod]:
        """Methods that have an eligible rate for postal_code, fastest first."""
        zones = await self.find_applicable_zones(postal_code)
        if not zones:
            logger.warning(f"No shipping zones found for postal code {postal_code}")
            return []

        zone_ids = [zone.id for zone in zones]
        options = RateOptions(
            weight=weight,
            order_value=order_value,
            product_categories=categories,
            customer_group=customer_group,
        )

        available = []
        for method in await self.repository.list_active_methods():
            rate = await self.find_best_rate(method.id, zone_ids, options)
            if rate is None:
                continue
            available.append(AvailableMethod(
                id=method.id,
                name=method.name,
                code=method.code,
                description=method.description or "",
                rate=rate.rate,
                estimated_days=method.estimated_days,
                display_order=method.display_order or 0,
                eta=self.eta_calculator(postal_code, method.code),
                applied_rate_id=rate.id,
            ))
        return available
