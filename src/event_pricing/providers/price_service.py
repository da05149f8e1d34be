from __future__ import annotations

from datetime import timedelta
from typing import Optional, Sequence

import httpx
from loguru import logger

from ..pricing.calculator import PricingCalculator
from .price_feed import PriceFeed, UpdateCallback
from .price_sources.base import PriceSource
from .price_sources.binance import BinancePriceSource
from .price_sources.coingecko import CoinGeckoPriceSource
from .price_sources.fallback import FallbackPriceSource
from .price_sources.synthetic import SyntheticPriceSource
from .quote_cache import DEFAULT_UPSTREAM_TIMEOUT, FRESHNESS_WINDOW, QuoteCache


SOURCE_KINDS = ("synthetic", "coingecko", "binance", "fallback")


def build_price_source(
    kind: str,
    client: httpx.AsyncClient,
    *,
    coingecko_api_key: Optional[str] = None,
    seed: Optional[int] = None,
) -> PriceSource:
    kind_l = kind.lower()
    if kind_l == "synthetic":
        return SyntheticPriceSource(seed=seed)
    if kind_l == "coingecko":
        return CoinGeckoPriceSource(client, api_key=coingecko_api_key)
    if kind_l == "binance":
        return BinancePriceSource(client)
    if kind_l == "fallback":
        return FallbackPriceSource(
            [
                CoinGeckoPriceSource(client, api_key=coingecko_api_key),
                BinancePriceSource(client),
            ]
        )
    raise ValueError(f"Unknown price source '{kind}', expected one of {', '.join(SOURCE_KINDS)}")


class PriceService:
    """Owns the HTTP client, the upstream source and the quote cache built on it."""

    def __init__(
        self,
        *,
        source_kind: str = "synthetic",
        coingecko_api_key: Optional[str] = None,
        upstream_timeout: float = DEFAULT_UPSTREAM_TIMEOUT,
        freshness_window: timedelta = FRESHNESS_WINDOW,
        source: Optional[PriceSource] = None,
    ) -> None:
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(10.0, connect=5.0))
        self.source = source or build_price_source(
            source_kind,
            self._client,
            coingecko_api_key=coingecko_api_key,
        )
        self.cache = QuoteCache(
            self.source,
            freshness_window=freshness_window,
            upstream_timeout=upstream_timeout,
        )
        self.calculator = PricingCalculator(self.cache)

    async def start(self) -> None:
        try:
            await self.source.warmup()
        except Exception as exc:
            logger.debug("Price source warmup {} failed: {}", self.source.name, exc)

    async def close(self) -> None:
        await self.source.close()
        await self._client.aclose()

    def feed(
        self,
        assets: Sequence[str],
        currencies: Sequence[str],
        *,
        interval: float = 30.0,
        on_update: Optional[UpdateCallback] = None,
    ) -> PriceFeed:
        return PriceFeed(self.cache, assets, currencies, interval=interval, on_update=on_update)
