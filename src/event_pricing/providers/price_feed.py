from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from loguru import logger

from ..errors import UpstreamUnavailable
from .quote_cache import Quote, QuoteCache, utc_now


Snapshot = Dict[str, Dict[str, Optional[Quote]]]
UpdateCallback = Callable[[Snapshot], Union[None, Awaitable[None]]]

DASHBOARD_ASSETS = ("XLM", "BTC", "ETH")


@dataclass(slots=True, frozen=True)
class MarketOverview:
    currency: str
    prices: Dict[str, Optional[Quote]]
    timestamp: datetime


async def market_overview(
    cache: QuoteCache,
    assets: Sequence[str] = DASHBOARD_ASSETS,
    currency: str = "USD",
) -> MarketOverview:
    prices: Dict[str, Optional[Quote]] = {}
    for asset in assets:
        try:
            prices[asset.upper()] = await cache.get_quote(asset, currency)
        except UpstreamUnavailable as exc:
            logger.warning("Market overview has no {}/{} price: {}", asset.upper(), currency.upper(), exc)
            prices[asset.upper()] = None
    return MarketOverview(currency=currency.upper(), prices=prices, timestamp=utc_now())


class PriceFeed:
    """Refreshes a fixed set of pairs on an interval and reports each snapshot.

    Every cycle invalidates the watched assets first, so quotes are refetched
    even inside the cache's freshness window. A pair whose refresh fails keeps
    its stale quote.
    """

    def __init__(
        self,
        cache: QuoteCache,
        assets: Sequence[str],
        currencies: Sequence[str],
        *,
        interval: float = 30.0,
        on_update: Optional[UpdateCallback] = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._cache = cache
        self._assets: List[str] = [asset.upper() for asset in assets]
        self._currencies: List[str] = [currency.upper() for currency in currencies]
        self._interval = interval
        self._on_update = on_update
        self._task: Optional[asyncio.Task[None]] = None
        self.last_snapshot: Optional[Snapshot] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def refresh(self) -> Snapshot:
        self._cache.invalidate(self._assets)
        snapshot: Snapshot = {}
        for asset in self._assets:
            row: Dict[str, Optional[Quote]] = {}
            for currency in self._currencies:
                try:
                    row[currency] = await self._cache.get_quote(asset, currency)
                except UpstreamUnavailable as exc:
                    logger.warning("Price update for {}/{} failed: {}", asset, currency, exc)
                    row[currency] = None
            snapshot[asset] = row

        self.last_snapshot = snapshot
        if self._on_update is not None:
            await self._notify(snapshot)
        return snapshot

    def start(self) -> None:
        if self.running:
            return
        logger.info(
            "Starting price feed for {} x {} every {}s",
            ",".join(self._assets),
            ",".join(self._currencies),
            self._interval,
        )
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Price feed stopped")

    async def _run(self) -> None:
        while True:
            try:
                await self.refresh()
            except Exception:
                logger.exception("Price update cycle failed, retrying in {}s", self._interval)
            await asyncio.sleep(self._interval)

    async def _notify(self, snapshot: Snapshot) -> None:
        assert self._on_update is not None
        try:
            outcome: Any = self._on_update(snapshot)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:
            logger.error("Price update callback failed: {}", exc)
