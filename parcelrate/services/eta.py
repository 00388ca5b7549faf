"""
Delivery ETA estimate for internal shipping methods.

Business days = method base days + a regional adjustment keyed by the
first digit of the postal code. Weekends are skipped; the reported days
are calendar days until the delivery date.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

METHOD_BASE_DAYS = {
    "same_day": 0,
    "overnight": 1,
    "express": 2,
    "standard": 3,
    "economy": 5,
    "international": 7,
}
DEFAULT_METHOD = "standard"

# Metro regions (1, 4) ship fastest; 9 is the most remote
REGION_ADJUSTMENT_DAYS = {
    "1": 0,
    "4": 0,
    "2": 1,
    "3": 1,
    "5": 1,
    "6": 1,
    "7": 2,
    "8": 2,
    "9": 3,
}
DEFAULT_REGION_ADJUSTMENT = 1

# Used when the postal code is missing entirely
FALLBACK_DAYS = 5


@dataclass
class EtaResult:
    days: int
    estimated_delivery_date: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "days": self.days,
            "estimated_delivery_date": self.estimated_delivery_date.isoformat(),
        }


EtaCalculator = Callable[[str, str], EtaResult]


def add_business_days(start: datetime, business_days: int) -> datetime:
    current = start
    added = 0
    while added < business_days:
        current += timedelta(days=1)
        if current.weekday() < 5:  # Mon-Fri
            added += 1
    return current


def calculate_eta(postal_code: str, method_code: str, now: Optional[datetime] = None) -> EtaResult:
    """Estimate delivery for a (postal code, method code) pair."""
    now = now or datetime.now(timezone.utc)
    postal_code = (postal_code or "").strip()

    if not postal_code:
        return EtaResult(days=FALLBACK_DAYS, estimated_delivery_date=now + timedelta(days=FALLBACK_DAYS))

    method = (method_code or "").strip().lower()
    if method not in METHOD_BASE_DAYS:
        logger.debug(f"Unknown shipping method {method_code!r} for ETA, using {DEFAULT_METHOD}")
        method = DEFAULT_METHOD

    business_days = METHOD_BASE_DAYS[method] + REGION_ADJUSTMENT_DAYS.get(postal_code[0], DEFAULT_REGION_ADJUSTMENT)
    delivery = add_business_days(now, business_days)
    return EtaResult(days=(delivery.date() - now.date()).days, estimated_delivery_date=delivery)
