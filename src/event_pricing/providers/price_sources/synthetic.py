from __future__ import annotations

import random
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, Mapping, Optional

from loguru import logger

from ...errors import UpstreamUnavailable
from .base import PriceSource, PriceTick


REFERENCE_PRICES: Dict[str, Dict[str, Decimal]] = {
    "XLM": {"USD": Decimal("0.12"), "EUR": Decimal("0.11"), "GBP": Decimal("0.095"), "JPY": Decimal("18.5")},
    "BTC": {"USD": Decimal("43000"), "EUR": Decimal("39500"), "GBP": Decimal("34000"), "JPY": Decimal("6200000")},
    "ETH": {"USD": Decimal("2400"), "EUR": Decimal("2200"), "GBP": Decimal("1900"), "JPY": Decimal("350000")},
    "USDC": {"USD": Decimal("1.0"), "EUR": Decimal("0.92"), "GBP": Decimal("0.79"), "JPY": Decimal("145")},
    "KALE": {"USD": Decimal("0.05"), "EUR": Decimal("0.046"), "GBP": Decimal("0.04"), "JPY": Decimal("7.25")},
}

VOLATILITY: Dict[str, Decimal] = {
    "BTC": Decimal("0.03"),
    "ETH": Decimal("0.04"),
}
DEFAULT_VOLATILITY = Decimal("0.02")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SyntheticPriceSource(PriceSource):
    """Reference price table with random jitter, for demos and offline runs.

    Pairs missing from the table are reported as unavailable rather than
    priced with a made-up default.
    """

    name = "synthetic"

    def __init__(
        self,
        *,
        seed: Optional[int] = None,
        prices: Optional[Mapping[str, Mapping[str, Decimal]]] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        table = prices if prices is not None else REFERENCE_PRICES
        self._prices = {
            asset.upper(): {currency.upper(): Decimal(value) for currency, value in quotes.items()}
            for asset, quotes in table.items()
        }
        for asset, quotes in self._prices.items():
            for currency, value in quotes.items():
                if value <= 0:
                    raise ValueError(f"Reference price for {asset}/{currency} must be positive")
        self._random = random.Random(seed)
        self._clock = clock

    async def fetch_price(self, asset: str, currency: str) -> PriceTick:
        asset_u = asset.upper()
        currency_u = currency.upper()
        base = self._prices.get(asset_u, {}).get(currency_u)
        if base is None:
            logger.debug("Synthetic source has no reference price for {}/{}", asset_u, currency_u)
            raise UpstreamUnavailable(
                f"No synthetic price for {asset_u}/{currency_u}",
                asset=asset_u,
                currency=currency_u,
                source=self.name,
            )

        volatility = VOLATILITY.get(asset_u, DEFAULT_VOLATILITY)
        jitter = Decimal(str(self._random.random())) - Decimal("0.5")
        price = base * (1 + jitter * 2 * volatility)
        return PriceTick(
            asset=asset_u,
            currency=currency_u,
            price=price,
            timestamp=self._clock(),
            source=self.name,
        )
