"""
Tests for multi-carrier rate aggregation, best-rate selection and tracking.
"""
import asyncio

import pytest

from parcelrate.core.config import Settings
from parcelrate.core.exceptions import ProviderResponseError, ProviderUnreachableError
from parcelrate.modules.shipping.carriers import CarrierRegistry
from parcelrate.services.multi_carrier_service import (
    CARRIER_NOT_FOUND,
    AggregatedRates,
    MultiCarrierService,
    select_best_rate,
)
from tests.conftest import FakeCarrier, make_rate, make_tracking


def _service(adapters, settings):
    return MultiCarrierService(CarrierRegistry(adapters), settings)


class TestGetAllCarrierRates:

    @pytest.mark.asyncio
    async def test_rates_merged_and_sorted_by_price(self, rate_request, test_settings):
        service = _service([
            FakeCarrier("ups", rates=[make_rate("ups", 18.0), make_rate("ups", 9.5)]),
            FakeCarrier("fedex", rates=[make_rate("fedex", 12.0)]),
        ], test_settings)

        result = await service.get_all_carrier_rates(rate_request)

        assert [r.total_amount for r in result.rates] == [9.5, 12.0, 18.0]
        assert result.errors == {}

    @pytest.mark.asyncio
    async def test_failing_carrier_is_reported_not_raised(self, rate_request, test_settings):
        service = _service([
            FakeCarrier("ups", error=ProviderResponseError("UPS API error: 500", carrier_id="ups", status_code=500)),
            FakeCarrier("fedex", rates=[make_rate("fedex", 12.0)]),
        ], test_settings)

        result = await service.get_all_carrier_rates(rate_request)

        assert [r.carrier_id for r in result.rates] == ["fedex"]
        assert result.errors == {"ups": "UPS API error: 500"}

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_captured(self, rate_request, test_settings):
        service = _service([FakeCarrier("ups", error=KeyError("RatedShipment"))], test_settings)

        result = await service.get_all_carrier_rates(rate_request)

        assert result.rates == []
        assert "RatedShipment" in result.errors["ups"]

    @pytest.mark.asyncio
    async def test_all_carriers_fail(self, rate_request, test_settings):
        service = _service([
            FakeCarrier("ups", error=ProviderUnreachableError("UPS API timed out", carrier_id="ups")),
            FakeCarrier("fedex", error=ProviderUnreachableError("FedEx API timed out", carrier_id="fedex")),
        ], test_settings)

        result = await service.get_all_carrier_rates(rate_request)

        assert result.rates == []
        assert set(result.errors) == {"ups", "fedex"}

    @pytest.mark.asyncio
    async def test_empty_registry(self, rate_request, test_settings):
        result = await _service([], test_settings).get_all_carrier_rates(rate_request)
        assert result.rates == [] and result.errors == {}

    @pytest.mark.asyncio
    async def test_carriers_are_queried_concurrently(self, rate_request, test_settings):
        service = _service([
            FakeCarrier("ups", rates=[make_rate("ups", 1)], delay=0.3),
            FakeCarrier("fedex", rates=[make_rate("fedex", 2)], delay=0.3),
        ], test_settings)

        loop = asyncio.get_running_loop()
        started = loop.time()
        result = await service.get_all_carrier_rates(rate_request)
        elapsed = loop.time() - started

        assert len(result.rates) == 2
        assert elapsed < 0.55

    @pytest.mark.asyncio
    async def test_slow_carrier_times_out(self, rate_request):
        settings = Settings(_env_file=None, CARRIER_QUOTE_TIMEOUT_SECONDS=0.05, RATE_AGGREGATION_BUDGET_SECONDS=2)
        service = _service([
            FakeCarrier("ups", rates=[make_rate("ups", 1)], delay=1.0),
            FakeCarrier("fedex", rates=[make_rate("fedex", 2)]),
        ], settings)

        result = await service.get_all_carrier_rates(rate_request)

        assert [r.carrier_id for r in result.rates] == ["fedex"]
        assert "timed out" in result.errors["ups"]

    @pytest.mark.asyncio
    async def test_overall_budget_cancels_stragglers(self, rate_request):
        settings = Settings(_env_file=None, CARRIER_QUOTE_TIMEOUT_SECONDS=5, RATE_AGGREGATION_BUDGET_SECONDS=0.05)
        service = _service([
            FakeCarrier("ups", rates=[make_rate("ups", 1)], delay=1.0),
            FakeCarrier("fedex", rates=[make_rate("fedex", 2)]),
        ], settings)

        result = await service.get_all_carrier_rates(rate_request)

        assert [r.carrier_id for r in result.rates] == ["fedex"]
        assert "rate budget" in result.errors["ups"]

    @pytest.mark.asyncio
    async def test_to_dict(self, rate_request, test_settings):
        service = _service([FakeCarrier("ups", rates=[make_rate("ups", 5, days=2)])], test_settings)
        data = (await service.get_all_carrier_rates(rate_request)).to_dict()
        assert data["errors"] == {}
        assert data["rates"][0]["total_amount"] == 5
        assert data["rates"][0]["estimated_days"] == 2


class TestGetCarrierRates:

    @pytest.mark.asyncio
    async def test_unknown_carrier_reported(self, rate_request, test_settings):
        ups = FakeCarrier("ups", rates=[make_rate("ups", 10)])
        fedex = FakeCarrier("fedex", rates=[make_rate("fedex", 8)])
        service = _service([ups, fedex], test_settings)

        result = await service.get_carrier_rates(rate_request, ["ups", "carrierX"])

        assert [r.carrier_id for r in result.rates] == ["ups"]
        assert result.errors == {"carrierX": CARRIER_NOT_FOUND}
        assert fedex.rate_calls == 0

    @pytest.mark.asyncio
    async def test_duplicate_ids_quoted_once(self, rate_request, test_settings):
        ups = FakeCarrier("ups", rates=[make_rate("ups", 10)])
        service = _service([ups], test_settings)

        result = await service.get_carrier_rates(rate_request, ["ups", "ups"])

        assert len(result.rates) == 1
        assert ups.rate_calls == 1

    @pytest.mark.asyncio
    async def test_no_known_carriers(self, rate_request, test_settings):
        result = await _service([], test_settings).get_carrier_rates(rate_request, ["dhl"])
        assert result.rates == []
        assert result.errors == {"dhl": CARRIER_NOT_FOUND}


class TestSelectBestRate:

    def setup_method(self):
        self.cheap_slow = make_rate("ups", 8.0, days=5, service="GROUND")
        self.mid_unknown = make_rate("fedex", 12.0, days=None, service="SAVER")
        self.fast = make_rate("ups", 30.0, days=1, service="AIR")
        self.rates = [self.fast, self.mid_unknown, self.cheap_slow]

    def test_price(self):
        assert select_best_rate(self.rates, "price") is self.cheap_slow

    def test_time(self):
        assert select_best_rate(self.rates, "time") is self.fast

    def test_time_unknown_estimate_ranks_last(self):
        rates = [make_rate("fedex", 5.0, days=None), make_rate("ups", 50.0, days=9)]
        assert select_best_rate(rates, "time").carrier_id == "ups"

    def test_value(self):
        # 8*5=40, 12*5=60 (unknown counts as 5), 30*1=30
        assert select_best_rate(self.rates, "value") is self.fast

    def test_value_treats_zero_days_as_missing(self):
        same_day = make_rate("ups", 10.0, days=0)
        ground = make_rate("fedex", 9.0, days=4)
        # 10*5=50 vs 9*4=36
        assert select_best_rate([same_day, ground], "value") is ground

    def test_ties_keep_price_order(self):
        a = make_rate("ups", 10.0, days=2)
        b = make_rate("fedex", 9.0, days=2)
        assert select_best_rate([a, b], "time") is b

    def test_empty(self):
        assert select_best_rate([], "price") is None

    def test_unknown_criterion(self):
        with pytest.raises(ValueError):
            select_best_rate(self.rates, "cheapest")

    def test_criterion_is_case_insensitive(self):
        assert select_best_rate(self.rates, "TIME") is self.fast


class TestGetBestRate:

    @pytest.mark.asyncio
    async def test_default_criterion_from_settings(self, rate_request):
        settings = Settings(_env_file=None, SHIPPING_DEFAULT_RATE_CRITERIA="time")
        service = _service([
            FakeCarrier("ups", rates=[make_rate("ups", 8.0, days=5), make_rate("ups", 30.0, days=1)]),
        ], settings)

        best = await service.get_best_rate(rate_request)
        assert best.estimated_days == 1

    @pytest.mark.asyncio
    async def test_none_when_every_carrier_fails(self, rate_request, test_settings):
        service = _service([FakeCarrier("ups", error=ProviderResponseError("down", carrier_id="ups"))], test_settings)
        assert await service.get_best_rate(rate_request, "price") is None

    @pytest.mark.asyncio
    async def test_invalid_criterion_skips_carrier_calls(self, rate_request, test_settings):
        ups = FakeCarrier("ups", rates=[make_rate("ups", 8.0)])
        service = _service([ups], test_settings)

        with pytest.raises(ValueError):
            await service.get_best_rate(rate_request, "fastest")
        assert ups.rate_calls == 0

    @pytest.mark.asyncio
    async def test_alias(self, rate_request, test_settings):
        service = _service([FakeCarrier("ups", rates=[make_rate("ups", 8.0)])], test_settings)
        best = await service.best_quote(rate_request, "price")
        assert best.total_amount == 8.0


class TestTrackShipment:

    @pytest.mark.asyncio
    async def test_first_carrier_that_knows_wins(self, test_settings):
        service = _service([
            FakeCarrier("ups"),
            FakeCarrier("fedex", tracking=make_tracking("fedex", "794644790138")),
        ], test_settings)

        result = await service.track_shipment("794644790138")

        assert result.carrier_id == "fedex"

    @pytest.mark.asyncio
    async def test_none_when_no_carrier_knows(self, test_settings):
        service = _service([FakeCarrier("ups"), FakeCarrier("fedex")], test_settings)
        assert await service.track_shipment("nope") is None

    @pytest.mark.asyncio
    async def test_empty_registry(self, test_settings):
        assert await _service([], test_settings).track("1Z") is None


def test_carrier_options(test_settings):
    service = _service([FakeCarrier("ups")], test_settings)
    assert service.get_carrier_options() == [{"id": "ups", "name": "UPS"}]


def test_aggregated_rates_defaults():
    result = AggregatedRates()
    assert result.rates == [] and result.errors == {}
