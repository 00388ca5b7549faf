"""
Multi-Carrier Rate Service

- Quotes every registered carrier concurrently
- Captures each carrier's failure in an error map instead of raising
- Returns the combined rate list sorted by price
- Picks a single best rate by price, time or value
- Looks up a tracking number across carriers

Usage:
    service = MultiCarrierService(registry)
    result = await service.get_all_carrier_rates(request)
    best = await service.get_best_rate(request, "time")
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from parcelrate.core.config import Settings, RATE_CRITERIA, settings as default_settings
from parcelrate.modules.shipping.carriers import CarrierRegistry
from parcelrate.modules.shipping.carriers.base import (
    CarrierAdapter,
    RateRequest,
    RateResponse,
    TrackingRequest,
    TrackingResponse,
)

logger = logging.getLogger(__name__)

CARRIER_NOT_FOUND = "carrier not found"


@dataclass
class AggregatedRates:
    """Combined quotes plus per-carrier failures."""
    rates: List[RateResponse] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rates": [rate.to_dict() for rate in self.rates],
            "errors": dict(self.errors),
        }


def select_best_rate(
    rates: Sequence[RateResponse],
    criterion: str = "price",
    time_missing_days: int = 999,
    value_missing_days: int = 5,
) -> Optional[RateResponse]:
    """
    Pick one rate from a list.

    price: cheapest
    time: fewest estimated days; unknown counts as time_missing_days
    value: smallest total_amount * days; unknown or zero days count as value_missing_days

    Ties keep price order.
    """
    criterion = (criterion or "price").lower()
    if criterion not in RATE_CRITERIA:
        raise ValueError(f"Unknown rate criterion: {criterion}")
    if not rates:
        return None

    by_price = sorted(rates, key=lambda r: r.total_amount)

    if criterion == "time":
        return min(
            by_price,
            key=lambda r: r.estimated_days if r.estimated_days is not None else time_missing_days,
        )
    if criterion == "value":
        return min(
            by_price,
            key=lambda r: r.total_amount * (r.estimated_days or value_missing_days),
        )
    return by_price[0]


class MultiCarrierService:
    """
    Service for multi-carrier shipping operations.

    Each carrier call runs as its own task with a per-task timeout; the
    whole fan-out is bounded by an overall budget after which unfinished
    carriers are cancelled and reported as errors.
    """

    def __init__(self, registry: CarrierRegistry, config: Optional[Settings] = None):
        self.registry = registry
        self.config = config or default_settings

    # ==================== Quoting ====================

    async def get_all_carrier_rates(self, request: RateRequest) -> AggregatedRates:
        """Quote every registered carrier. Never raises."""
        return await self._gather_rates(self.registry.all(), request)

    async def get_carrier_rates(self, request: RateRequest, carrier_ids: Sequence[str]) -> AggregatedRates:
        """Quote only the named carriers; unknown ids are reported, not called."""
        adapters: List[CarrierAdapter] = []
        missing: Dict[str, str] = {}
        seen = set()
        for carrier_id in carrier_ids:
            if carrier_id in seen:
                continue
            seen.add(carrier_id)
            adapter = self.registry.get(carrier_id)
            if adapter is None:
                logger.warning(f"Rate request for unregistered carrier: {carrier_id}")
                missing[carrier_id] = CARRIER_NOT_FOUND
            else:
                adapters.append(adapter)

        result = await self._gather_rates(adapters, request)
        result.errors.update(missing)
        return result

    async def get_best_rate(self, request: RateRequest, criterion: Optional[str] = None) -> Optional[RateResponse]:
        criterion = criterion or self.config.SHIPPING_DEFAULT_RATE_CRITERIA
        # Validate before spending carrier calls on it
        select_best_rate([], criterion)
        result = await self.get_all_carrier_rates(request)
        return select_best_rate(
            result.rates,
            criterion,
            time_missing_days=self.config.SHIPPING_TIME_MISSING_DAYS,
            value_missing_days=self.config.SHIPPING_VALUE_MISSING_DAYS,
        )

    async def _quote_one(self, adapter: CarrierAdapter, request: RateRequest) -> List[RateResponse]:
        timeout = self.config.CARRIER_QUOTE_TIMEOUT_SECONDS
        try:
            return await asyncio.wait_for(adapter.get_rates(request), timeout=timeout)
        except asyncio.TimeoutError:
            raise asyncio.TimeoutError(
                f"{adapter.carrier_name} rate request timed out after {timeout:g}s"
            )

    async def _gather_rates(self, adapters: Sequence[CarrierAdapter], request: RateRequest) -> AggregatedRates:
        result = AggregatedRates()
        if not adapters:
            return result

        tasks = {
            asyncio.create_task(self._quote_one(adapter, request)): adapter
            for adapter in adapters
        }
        budget = self.config.RATE_AGGREGATION_BUDGET_SECONDS
        _, pending = await asyncio.wait(tasks, timeout=budget)

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for task, adapter in tasks.items():
            if task in pending or task.cancelled():
                message = f"{adapter.carrier_name} did not respond within the {budget:g}s rate budget"
                logger.warning(message)
                result.errors[adapter.carrier_id] = message
                continue

            error = task.exception()
            if error is not None:
                message = getattr(error, "message", None) or str(error) or error.__class__.__name__
                logger.warning(f"Error getting rates from {adapter.carrier_name}: {message}")
                result.errors[adapter.carrier_id] = message
                continue

            result.rates.extend(task.result())

        result.rates.sort(key=lambda r: r.total_amount)
        logger.info(
            f"Collected {len(result.rates)} rates from {len(adapters) - len(result.errors)} "
            f"of {len(adapters)} carriers"
        )
        return result

    # ==================== Tracking ====================

    async def track_shipment(self, tracking_number: str) -> Optional[TrackingResponse]:
        """Try each carrier in registration order; None if no carrier knows the number."""
        for adapter in self.registry.all():
            try:
                return await adapter.track_shipment(
                    TrackingRequest(tracking_number=tracking_number, carrier_code=adapter.carrier_id)
                )
            except Exception as e:
                logger.debug(f"{adapter.carrier_name} couldn't track {tracking_number}: {e}")

        logger.warning(f"No carrier could track shipment {tracking_number}")
        return None

    # ==================== Discovery ====================

    def get_carrier_options(self) -> List[Dict[str, str]]:
        return self.registry.options()

    # Inbound contract names
    quote_all = get_all_carrier_rates
    quote_from = get_carrier_rates
    best_quote = get_best_rate
    track = track_shipment
