from __future__ import annotations

from typing import List, Sequence

from loguru import logger

from ...errors import UpstreamUnavailable
from .base import PriceSource, PriceTick


class FallbackPriceSource(PriceSource):
    """Asks each source in turn and returns the first price it gets."""

    name = "fallback"

    def __init__(self, sources: Sequence[PriceSource]) -> None:
        if not sources:
            raise ValueError("FallbackPriceSource needs at least one source")
        self._sources: List[PriceSource] = list(sources)

    async def warmup(self) -> None:
        for source in self._sources:
            try:
                await source.warmup()
            except UpstreamUnavailable as exc:
                logger.debug("Price source warmup {} failed: {}", source.name, exc)

    async def close(self) -> None:
        for source in self._sources:
            await source.close()

    async def fetch_price(self, asset: str, currency: str) -> PriceTick:
        tried: List[str] = []
        for source in self._sources:
            tried.append(source.name)
            try:
                tick = await source.fetch_price(asset, currency)
            except UpstreamUnavailable as exc:
                logger.debug("Price source {} errored for {}/{}: {}", source.name, asset, currency, exc)
                continue
            if not tick.price.is_finite() or tick.price <= 0:
                logger.debug("Price source {} returned unusable price {}", source.name, tick.price)
                continue
            return tick

        raise UpstreamUnavailable(
            f"No price for {asset.upper()}/{currency.upper()} from {', '.join(tried)}",
            asset=asset.upper(),
            currency=currency.upper(),
            source=self.name,
        )
