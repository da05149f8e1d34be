from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

import httpx
from loguru import logger

from ..errors import UpstreamUnavailable
from .price_sources.base import PriceSource


FRESHNESS_WINDOW = timedelta(seconds=30)
DEFAULT_UPSTREAM_TIMEOUT = 5.0

CacheKey = Tuple[str, str]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True, frozen=True)
class Quote:
    asset: str
    currency: str
    price: Decimal
    fetched_at: datetime
    source: str
    source_timestamp: Optional[datetime] = None


class QuoteCache:
    """Short-lived quotes per (asset, currency) pair.

    A cached quote younger than the freshness window is served without an
    upstream call. When a refresh fails the previous quote is served as-is;
    only a pair that was never fetched surfaces ``UpstreamUnavailable``.
    Concurrent misses on the same pair are not coalesced.
    """

    def __init__(
        self,
        source: PriceSource,
        *,
        freshness_window: timedelta = FRESHNESS_WINDOW,
        upstream_timeout: Optional[float] = DEFAULT_UPSTREAM_TIMEOUT,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._source = source
        self._freshness_window = freshness_window
        self._upstream_timeout = upstream_timeout
        self._clock = clock
        self._quotes: Dict[CacheKey, Quote] = {}
        self._invalidated: Set[CacheKey] = set()

    @property
    def source(self) -> PriceSource:
        return self._source

    @property
    def freshness_window(self) -> timedelta:
        return self._freshness_window

    async def get_quote(self, asset: str, currency: str) -> Quote:
        key = self._key(asset, currency)
        cached = self._quotes.get(key)
        if cached is not None and self._is_fresh(key, cached):
            logger.debug("Quote cache hit for {}/{}", *key)
            return cached

        try:
            quote = await self._fetch(key)
        except UpstreamUnavailable as exc:
            if cached is None:
                raise
            logger.warning(
                "Serving stale {}/{} quote from {} after refresh failure: {}",
                key[0],
                key[1],
                cached.fetched_at.isoformat(),
                exc,
            )
            return cached

        self._quotes[key] = quote
        self._invalidated.discard(key)
        return quote

    def invalidate(self, assets: Iterable[str]) -> None:
        wanted = {asset.upper() for asset in assets}
        marked = [key for key in self._quotes if key[0] in wanted]
        self._invalidated.update(marked)
        if marked:
            logger.debug("Invalidated {} cached quote(s) for {}", len(marked), ", ".join(sorted(wanted)))

    def peek(self, asset: str, currency: str) -> Optional[Quote]:
        return self._quotes.get(self._key(asset, currency))

    def is_fresh(self, asset: str, currency: str) -> bool:
        key = self._key(asset, currency)
        cached = self._quotes.get(key)
        return cached is not None and self._is_fresh(key, cached)

    def keys(self) -> List[CacheKey]:
        return list(self._quotes)

    def __len__(self) -> int:
        return len(self._quotes)

    async def _fetch(self, key: CacheKey) -> Quote:
        asset, currency = key
        logger.debug("Requesting {}/{} from {}", asset, currency, self._source.name)
        try:
            if self._upstream_timeout is None:
                tick = await self._source.fetch_price(asset, currency)
            else:
                tick = await asyncio.wait_for(
                    self._source.fetch_price(asset, currency),
                    timeout=self._upstream_timeout,
                )
        except asyncio.TimeoutError as exc:
            raise UpstreamUnavailable(
                f"{self._source.name} timed out after {self._upstream_timeout}s for {asset}/{currency}",
                asset=asset,
                currency=currency,
                source=self._source.name,
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(
                f"{self._source.name} request failed for {asset}/{currency}: {exc}",
                asset=asset,
                currency=currency,
                source=self._source.name,
            ) from exc
        except (ValueError, ArithmeticError) as exc:
            raise UpstreamUnavailable(
                f"{self._source.name} sent an unreadable answer for {asset}/{currency}: {exc}",
                asset=asset,
                currency=currency,
                source=self._source.name,
            ) from exc

        if not isinstance(tick.price, Decimal) or not tick.price.is_finite() or tick.price <= 0:
            raise UpstreamUnavailable(
                f"{self._source.name} returned unusable price {tick.price} for {asset}/{currency}",
                asset=asset,
                currency=currency,
                source=self._source.name,
            )

        return Quote(
            asset=asset,
            currency=currency,
            price=tick.price,
            fetched_at=self._clock(),
            source=tick.source,
            source_timestamp=tick.timestamp,
        )

    def _is_fresh(self, key: CacheKey, quote: Quote) -> bool:
        if key in self._invalidated:
            return False
        return self._clock() - quote.fetched_at < self._freshness_window

    @staticmethod
    def _key(asset: str, currency: str) -> CacheKey:
        return asset.upper(), currency.upper()
