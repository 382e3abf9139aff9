import asyncio
from datetime import date
from decimal import Decimal

import httpx
import pytest

from conftest import ok_payload
from freight_quote.cache.governor import QuotaGovernor, ResponseCache
from freight_quote.cache.stores import MemoryStore
from freight_quote.clients.provider_client import ProviderGateway
from freight_quote.errors import (
    EstimationFailure,
    MalformedResponse,
    ProviderTimeout,
    ProviderUnavailable,
)
from freight_quote.resolver import QuoteResolver, Resolution, State
from freight_quote.schemas import Cargo, ContainerSpec, Provenance, QuoteRequest, ServiceType
from freight_quote.settings import Settings

ROUTE_WITH_CONTAINER = QuoteRequest(
    service_type=ServiceType.FCL,
    origin="Shanghai, China (CNSHA)",
    destination="Los Angeles, USA (USLAX)",
    cargo=Cargo(description="Furniture", containers=[ContainerSpec(type="40' high cube", quantity=1)]),
)

PLAIN_ROUTE = QuoteRequest(service_type=ServiceType.LCL, origin="Shanghai", destination="Los Angeles")


def _ok(request):
    return httpx.Response(200, json=ok_payload())


@pytest.mark.asyncio
async def test_live_then_cached_resolution(make_gateway, make_estimator):
    gateway, handler = make_gateway(_ok)
    estimator, client = make_estimator()
    resolver = QuoteResolver(gateway, estimator)

    live = await resolver.resolve_detailed(PLAIN_ROUTE)
    cached = await resolver.resolve_detailed(PLAIN_ROUTE)

    assert live.provenance is Provenance.LIVE
    assert [q.provenance for q in live.quotes] == [Provenance.LIVE]
    assert live.trail == [
        State.IDLE, State.CACHE_CHECK, State.CACHE_MISS, State.LIVE_CALL,
        State.LIVE_SUCCESS, State.NORMALIZE, State.CACHE, State.DONE,
    ]
    assert cached.provenance is Provenance.CACHED
    assert cached.trail == [State.IDLE, State.CACHE_CHECK, State.CACHE_HIT, State.DONE]
    assert cached.quotes[0].total_cost == live.quotes[0].total_cost
    assert handler.calls == 1
    client.chat.completions.create.assert_not_awaited()


@pytest.mark.asyncio
async def test_timeout_falls_back_to_estimate(make_gateway, make_estimator):
    async def slow(request):
        await asyncio.sleep(5)
        return httpx.Response(200, json=ok_payload())

    gateway, _ = make_gateway(slow, timeouts_s={"/logistics-explorer": 0.05})
    estimator, _ = make_estimator("2000")
    resolver = QuoteResolver(gateway, estimator)

    res = await resolver.resolve_detailed(PLAIN_ROUTE)

    assert res.provenance is Provenance.ESTIMATED
    assert len(res.quotes) == 1
    quote = res.quotes[0]
    assert quote.provenance is Provenance.ESTIMATED
    assert quote.total_cost == Decimal("2400.00")  # LCL markup 20%
    assert isinstance(res.swallowed[0], ProviderTimeout)
    assert res.trail[-4:] == [State.RECOVERABLE, State.FALLBACK, State.FALLBACK_SUCCESS, State.DONE]


@pytest.mark.asyncio
async def test_malformed_response_surfaces_without_fallback(make_gateway, make_estimator):
    gateway, _ = make_gateway(lambda request: httpx.Response(200, text="not json"))
    estimator, client = make_estimator()
    resolver = QuoteResolver(gateway, estimator)

    with pytest.raises(MalformedResponse):
        await resolver.resolve(PLAIN_ROUTE)
    client.chat.completions.create.assert_not_awaited()


@pytest.mark.asyncio
async def test_quote_without_price_is_malformed_and_not_cached(make_gateway, make_estimator, cache):
    gateway, _ = make_gateway(lambda request: httpx.Response(200, json=ok_payload({"carrier": "MSC"})))
    estimator, _ = make_estimator()
    resolver = QuoteResolver(gateway, estimator)

    with pytest.raises(MalformedResponse):
        await resolver.resolve(PLAIN_ROUTE)
    assert cache.stats()["total_entries"] == 0


@pytest.mark.asyncio
async def test_fallback_failure_surfaces_estimation_error(make_gateway, make_estimator):
    gateway, _ = make_gateway(lambda request: httpx.Response(503))
    estimator, _ = make_estimator("no idea")
    resolver = QuoteResolver(gateway, estimator)

    with pytest.raises(EstimationFailure):
        await resolver.resolve(PLAIN_ROUTE)


@pytest.mark.asyncio
async def test_missing_gateway_is_treated_as_unavailable(make_estimator):
    estimator, _ = make_estimator("1000")
    resolver = QuoteResolver(None, estimator)

    res = await resolver.resolve_detailed(PLAIN_ROUTE)

    assert res.provenance is Provenance.ESTIMATED
    assert isinstance(res.swallowed[0], ProviderUnavailable)


@pytest.mark.asyncio
async def test_parcel_goes_straight_to_estimate_when_endpoint_disabled(make_gateway, make_estimator):
    gateway, handler = make_gateway(_ok)
    estimator, _ = make_estimator("40")
    resolver = QuoteResolver(gateway, estimator)
    request = QuoteRequest(service_type=ServiceType.PARCEL, origin="Berlin", destination="Paris")

    quotes = await resolver.resolve(request)

    assert quotes[0].total_cost == Decimal("50.00")
    assert handler.calls == 0


@pytest.mark.asyncio
async def test_quotes_with_ports_and_container_get_port_costs(make_gateway, make_estimator):
    gateway, _ = make_gateway(_ok)
    estimator, _ = make_estimator()
    resolver = QuoteResolver(gateway, estimator)

    request = ROUTE_WITH_CONTAINER.model_copy(
        update={"arrival_date": date(2025, 3, 1), "pickup_date": date(2025, 3, 9)}
    )
    (quote,) = await resolver.resolve(request)

    assert quote.breakdown_available is True
    costs = quote.port_costs
    assert costs.ocean_freight == Decimal("2000.00")
    assert costs.origin_port_fees.port_code == "CNSHA"
    assert costs.total_minimum == Decimal("3413.00")
    assert costs.demurrage.chargeable_days == 3
    assert costs.savings.pickup_by == date(2025, 3, 6)


@pytest.mark.asyncio
async def test_lowercase_port_codes_still_get_port_costs(make_gateway, make_estimator):
    gateway, _ = make_gateway(_ok)
    estimator, _ = make_estimator()
    resolver = QuoteResolver(gateway, estimator)
    request = ROUTE_WITH_CONTAINER.model_copy(update={"origin": "cnsha", "destination": "uslax"})

    (quote,) = await resolver.resolve(request)

    assert quote.breakdown_available is True
    assert quote.port_costs.origin_port_fees.port_code == "CNSHA"
    assert quote.port_costs.destination_port_fees.port_code == "USLAX"
    assert quote.port_costs.total_minimum == quote.total_cost + Decimal("1413.00")


@pytest.mark.asyncio
async def test_unknown_port_enrichment_is_flagged_estimated(make_gateway, make_estimator):
    gateway, _ = make_gateway(_ok)
    estimator, _ = make_estimator()
    resolver = QuoteResolver(gateway, estimator)
    request = ROUTE_WITH_CONTAINER.model_copy(update={"destination": "Somewhere (ZZZZZ)"})

    (quote,) = await resolver.resolve(request)

    assert quote.port_costs.estimated is True
    assert quote.port_costs.destination_port_fees.success is False
    assert "Port fees are estimated for ports not in our fee table" in quote.notices


@pytest.mark.asyncio
async def test_no_enrichment_without_container_or_port_codes(make_gateway, make_estimator):
    gateway, _ = make_gateway(_ok)
    estimator, _ = make_estimator()
    resolver = QuoteResolver(gateway, estimator)

    (quote,) = await resolver.resolve(PLAIN_ROUTE)

    assert quote.port_costs is None
    assert quote.breakdown_available is False


@pytest.mark.asyncio
async def test_breakdown_failure_degrades_to_notice(make_gateway, make_estimator, monkeypatch):
    from freight_quote import resolver as resolver_mod

    def explode(*args, **kwargs):
        raise ArithmeticError("bad fee table")

    monkeypatch.setattr(resolver_mod, "breakdown_for", explode)
    gateway, _ = make_gateway(_ok)
    estimator, _ = make_estimator()
    resolver = QuoteResolver(gateway, estimator)

    (quote,) = await resolver.resolve(ROUTE_WITH_CONTAINER)

    assert quote.provenance is Provenance.LIVE
    assert quote.breakdown_available is False
    assert "Cost breakdown unavailable" in quote.notices


@pytest.mark.asyncio
async def test_low_quota_adds_notice(clock, make_estimator):
    store = MemoryStore()
    governor = QuotaGovernor(store, monthly_limit=5, warning_threshold=1, clock=clock)
    cache = ResponseCache(store, governor=governor, clock=clock)
    client = httpx.AsyncClient(transport=httpx.MockTransport(_ok))

    gateway = ProviderGateway(cache, base_url="http://proxy.test", client=client)
    estimator, _ = make_estimator()

    res = await QuoteResolver(gateway, estimator).resolve_detailed(PLAIN_ROUTE)

    assert res.quota.warning is True
    assert "Provider quota running low: 1/5 calls used this month" in res.quotes[0].notices


def test_transitions_are_one_way():
    res = Resolution(request=PLAIN_ROUTE)
    with pytest.raises(RuntimeError):
        res.advance(State.DONE)

    res.advance(State.CACHE_CHECK)
    with pytest.raises(RuntimeError):
        res.advance(State.IDLE)
    assert not res.finished


def test_from_settings_wires_in_memory_store_without_database():
    cfg = Settings(DATABASE_URL=None, QUOTA_MONTHLY_LIMIT=20, QUOTA_WARNING_THRESHOLD=10, MARKUP_AIR=0.3)
    resolver = QuoteResolver.from_settings(cfg)

    cache = resolver.gateway.cache
    assert isinstance(cache.store, MemoryStore)
    assert cache.governor.monthly_limit == 20
    assert cache.governor.warning_threshold == 10
    assert resolver.estimator.markups.air == 0.3
    assert resolver.gateway.validator is not None
