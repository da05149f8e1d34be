from decimal import Decimal

import pytest

from event_pricing.pricing.calculator import PricingCalculator
from event_pricing.providers.quote_cache import QuoteCache
from tests.helpers.fakes import CountingPriceSource, ManualClock

DEFAULT_PRICES = {
    ("XLM", "USD"): Decimal("0.10"),
    ("XLM", "EUR"): Decimal("0.09"),
    ("XLM", "GBP"): Decimal("0.08"),
    ("BTC", "USD"): Decimal("40000"),
}


@pytest.fixture(scope="function")
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture(scope="function")
def price_source(clock: ManualClock) -> CountingPriceSource:
    return CountingPriceSource(DEFAULT_PRICES, clock=clock)


@pytest.fixture(scope="function")
def quote_cache(price_source: CountingPriceSource, clock: ManualClock) -> QuoteCache:
    return QuoteCache(price_source, clock=clock)


@pytest.fixture(scope="function")
def calculator(quote_cache: QuoteCache) -> PricingCalculator:
    return PricingCalculator(quote_cache)
