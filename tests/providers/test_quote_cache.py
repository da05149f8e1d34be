from __future__ import annotations

import json
from datetime import timedelta
from decimal import Decimal

import httpx
import pytest
import respx

from event_pricing.errors import UpstreamUnavailable
from event_pricing.providers.price_sources.base import PriceSource, PriceTick
from event_pricing.providers.price_sources.binance import BinancePriceSource
from event_pricing.providers.quote_cache import QuoteCache
from tests.helpers.fakes import CountingPriceSource, ManualClock


@pytest.mark.asyncio
async def test_quotes_within_window_are_served_from_cache(
    quote_cache: QuoteCache, price_source: CountingPriceSource, clock: ManualClock
) -> None:
    first = await quote_cache.get_quote("XLM", "USD")
    clock.advance(29)
    second = await quote_cache.get_quote("XLM", "USD")

    assert second is first
    assert price_source.calls == [("XLM", "USD")]


@pytest.mark.asyncio
async def test_keys_are_case_insensitive(quote_cache: QuoteCache, price_source: CountingPriceSource) -> None:
    first = await quote_cache.get_quote("xlm", "usd")
    second = await quote_cache.get_quote("XLM", "USD")

    assert second is first
    assert first.asset == "XLM"
    assert first.currency == "USD"
    assert len(price_source.calls) == 1


@pytest.mark.asyncio
async def test_expired_quote_is_replaced(
    quote_cache: QuoteCache, price_source: CountingPriceSource, clock: ManualClock
) -> None:
    first = await quote_cache.get_quote("XLM", "USD")
    clock.advance(30)
    price_source.set_price("XLM", "USD", Decimal("0.11"))

    second = await quote_cache.get_quote("XLM", "USD")

    assert second is not first
    assert second.price == Decimal("0.11")
    assert second.fetched_at > first.fetched_at
    assert first.price == Decimal("0.10")
    assert len(quote_cache) == 1
    assert quote_cache.peek("XLM", "USD") is second
    assert len(price_source.calls) == 2


@pytest.mark.asyncio
async def test_stale_quote_served_when_refresh_fails(
    quote_cache: QuoteCache, price_source: CountingPriceSource, clock: ManualClock
) -> None:
    first = await quote_cache.get_quote("XLM", "USD")
    clock.advance(45)
    price_source.fail_all = True

    served = await quote_cache.get_quote("XLM", "USD")

    assert served is first
    assert len(price_source.calls) == 2
    assert not quote_cache.is_fresh("XLM", "USD")


@pytest.mark.asyncio
async def test_failure_without_prior_quote_propagates(
    quote_cache: QuoteCache, price_source: CountingPriceSource
) -> None:
    price_source.fail_all = True

    with pytest.raises(UpstreamUnavailable) as excinfo:
        await quote_cache.get_quote("XLM", "USD")

    assert excinfo.value.asset == "XLM"
    assert len(quote_cache) == 0


@pytest.mark.asyncio
async def test_timeout_counts_as_upstream_failure(price_source: CountingPriceSource, clock: ManualClock) -> None:
    cache = QuoteCache(price_source, clock=clock, upstream_timeout=0.01)
    first = await cache.get_quote("XLM", "USD")
    clock.advance(31)
    price_source.delay = 0.5

    assert await cache.get_quote("XLM", "USD") is first
    with pytest.raises(UpstreamUnavailable):
        await cache.get_quote("XLM", "EUR")


@pytest.mark.asyncio
async def test_invalidate_bypasses_freshness_for_all_currencies_of_asset(
    quote_cache: QuoteCache, price_source: CountingPriceSource
) -> None:
    await quote_cache.get_quote("XLM", "USD")
    await quote_cache.get_quote("XLM", "EUR")
    btc = await quote_cache.get_quote("BTC", "USD")

    quote_cache.invalidate({"xlm"})

    assert not quote_cache.is_fresh("XLM", "USD")
    assert not quote_cache.is_fresh("XLM", "EUR")
    assert quote_cache.is_fresh("BTC", "USD")

    await quote_cache.get_quote("XLM", "USD")
    await quote_cache.get_quote("XLM", "EUR")
    assert await quote_cache.get_quote("BTC", "USD") is btc
    assert price_source.calls.count(("XLM", "USD")) == 2
    assert price_source.calls.count(("XLM", "EUR")) == 2
    assert price_source.calls.count(("BTC", "USD")) == 1
    assert quote_cache.is_fresh("XLM", "USD")


@pytest.mark.asyncio
async def test_invalidated_quote_still_used_as_fallback(
    quote_cache: QuoteCache, price_source: CountingPriceSource
) -> None:
    first = await quote_cache.get_quote("XLM", "USD")
    quote_cache.invalidate(["XLM"])
    price_source.failing.add(("XLM", "USD"))

    assert await quote_cache.get_quote("XLM", "USD") is first


@pytest.mark.asyncio
async def test_non_positive_upstream_price_is_rejected(
    quote_cache: QuoteCache, price_source: CountingPriceSource
) -> None:
    price_source.set_price("XLM", "JPY", Decimal("0"))

    with pytest.raises(UpstreamUnavailable):
        await quote_cache.get_quote("XLM", "JPY")
    assert quote_cache.peek("XLM", "JPY") is None


class _BrokenHttpSource(PriceSource):
    name = "broken"

    async def fetch_price(self, asset: str, currency: str) -> PriceTick:
        raise httpx.ConnectError("connection refused")


@pytest.mark.asyncio
async def test_http_errors_are_reported_as_upstream_unavailable(clock: ManualClock) -> None:
    cache = QuoteCache(_BrokenHttpSource(), clock=clock)

    with pytest.raises(UpstreamUnavailable) as excinfo:
        await cache.get_quote("XLM", "USD")

    assert excinfo.value.source == "broken"


@pytest.mark.asyncio
async def test_custom_freshness_window(price_source: CountingPriceSource, clock: ManualClock) -> None:
    cache = QuoteCache(price_source, clock=clock, freshness_window=timedelta(seconds=5))
    await cache.get_quote("XLM", "USD")
    clock.advance(5)
    await cache.get_quote("XLM", "USD")

    assert len(price_source.calls) == 2
    assert cache.keys() == [("XLM", "USD")]


@pytest.mark.asyncio
async def test_stale_quote_served_when_upstream_sends_garbage(
    quote_cache: QuoteCache, price_source: CountingPriceSource, clock: ManualClock
) -> None:
    first = await quote_cache.get_quote("XLM", "USD")
    clock.advance(31)
    price_source.error = json.JSONDecodeError("Expecting value", "<html>maintenance</html>", 0)

    assert await quote_cache.get_quote("XLM", "USD") is first


@pytest.mark.asyncio
async def test_garbage_without_prior_quote_is_upstream_unavailable(
    quote_cache: QuoteCache, price_source: CountingPriceSource
) -> None:
    price_source.error = ValueError("not a number")

    with pytest.raises(UpstreamUnavailable):
        await quote_cache.get_quote("XLM", "USD")


@pytest.mark.asyncio
async def test_non_finite_upstream_price_keeps_stale_quote(
    quote_cache: QuoteCache, price_source: CountingPriceSource, clock: ManualClock
) -> None:
    first = await quote_cache.get_quote("XLM", "USD")
    clock.advance(31)
    price_source.set_price("XLM", "USD", Decimal("NaN"))

    assert await quote_cache.get_quote("XLM", "USD") is first
    assert quote_cache.peek("XLM", "USD") is first


@pytest.mark.asyncio
async def test_binance_maintenance_page_serves_stale_quote(clock: ManualClock) -> None:
    responses = iter([httpx.Response(200, json={"symbol": "XLMUSDT", "price": "0.10"})])

    def ticker(request: httpx.Request) -> httpx.Response:
        return next(responses, httpx.Response(200, text="<html>maintenance</html>"))

    async with httpx.AsyncClient() as client:
        with respx.mock:
            respx.get("https://api.binance.com/api/v3/ticker/price").mock(side_effect=ticker)
            respx.get("https://data-api.binance.vision/api/v3/ticker/price").mock(
                return_value=httpx.Response(200, text="<html>maintenance</html>")
            )
            cache = QuoteCache(BinancePriceSource(client), clock=clock)

            first = await cache.get_quote("XLM", "USD")
            clock.advance(31)
            second = await cache.get_quote("XLM", "USD")

    assert first.price == Decimal("0.10")
    assert second is first
