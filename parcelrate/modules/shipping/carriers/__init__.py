"""
Carrier Registry

Built once at application startup from settings and handed to the
services that need it. A carrier whose credentials are not configured is
simply absent from the registry.
"""
import logging
from typing import Callable, Dict, Iterator, List, Optional

from parcelrate.core.config import Settings
from parcelrate.modules.shipping.carriers.base import CarrierAdapter
from parcelrate.modules.shipping.carriers.fedex import FedExCarrier
from parcelrate.modules.shipping.carriers.ups import UPSCarrier

logger = logging.getLogger(__name__)


class CarrierRegistry:
    """Ordered collection of carrier adapters keyed by carrier id."""

    def __init__(self, adapters: Optional[List[CarrierAdapter]] = None):
        self._adapters: Dict[str, CarrierAdapter] = {}
        for adapter in adapters or []:
            self.register(adapter)

    def register(self, adapter: CarrierAdapter) -> None:
        if adapter.carrier_id in self._adapters:
            raise ValueError(f"Carrier already registered: {adapter.carrier_id}")
        self._adapters[adapter.carrier_id] = adapter
        logger.info(f"Registered carrier: {adapter.carrier_id} -> {adapter.__class__.__name__}")

    def all(self) -> List[CarrierAdapter]:
        """All adapters in registration order."""
        return list(self._adapters.values())

    def get(self, carrier_id: str) -> Optional[CarrierAdapter]:
        return self._adapters.get(carrier_id)

    def has(self, carrier_id: str) -> bool:
        return carrier_id in self._adapters

    def ids(self) -> List[str]:
        return list(self._adapters)

    def options(self) -> List[Dict[str, str]]:
        """(id, name) pairs for carrier pickers."""
        return [{"id": a.carrier_id, "name": a.carrier_name} for a in self._adapters.values()]

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            await adapter.close()

    def __len__(self) -> int:
        return len(self._adapters)

    def __iter__(self) -> Iterator[CarrierAdapter]:
        return iter(self.all())

    def __contains__(self, carrier_id: object) -> bool:
        return carrier_id in self._adapters


def _build_ups(settings: Settings) -> Optional[CarrierAdapter]:
    if not settings.ups_configured:
        return None
    return UPSCarrier(
        client_id=settings.UPS_CLIENT_ID,
        client_secret=settings.UPS_CLIENT_SECRET,
        account_number=settings.UPS_ACCOUNT_NUMBER,
        use_sandbox=settings.UPS_USE_SANDBOX,
        timeout=settings.CARRIER_HTTP_TIMEOUT_SECONDS,
        token_buffer_seconds=settings.CARRIER_TOKEN_EXPIRY_BUFFER_SECONDS,
    )


def _build_fedex(settings: Settings) -> Optional[CarrierAdapter]:
    if not settings.fedex_configured:
        return None
    return FedExCarrier(
        client_id=settings.FEDEX_CLIENT_ID,
        client_secret=settings.FEDEX_CLIENT_SECRET,
        account_number=settings.FEDEX_ACCOUNT_NUMBER,
        use_sandbox=settings.FEDEX_USE_SANDBOX,
        timeout=settings.CARRIER_HTTP_TIMEOUT_SECONDS,
        token_buffer_seconds=settings.CARRIER_TOKEN_EXPIRY_BUFFER_SECONDS,
    )


# Registration order is the order tracking lookups try carriers in
CARRIER_BUILDERS: Dict[str, Callable[[Settings], Optional[CarrierAdapter]]] = {
    "ups": _build_ups,
    "fedex": _build_fedex,
}


def build_carrier_registry(settings: Settings) -> CarrierRegistry:
    """Instantiate every carrier that has credentials configured."""
    registry = CarrierRegistry()
    for carrier_id, builder in CARRIER_BUILDERS.items():
        adapter = builder(settings)
        if adapter is None:
            logger.debug(f"Carrier {carrier_id} has no credentials configured, skipping")
            continue
        registry.register(adapter)
    return registry


__all__ = [
    "CarrierRegistry",
    "CARRIER_BUILDERS",
    "build_carrier_registry",
    "CarrierAdapter",
    "UPSCarrier",
    "FedExCarrier",
]
