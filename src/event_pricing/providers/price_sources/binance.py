from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional

import httpx
from loguru import logger

from ...errors import UpstreamUnavailable
from .base import PriceSource, PriceTick


class BinancePriceSource(PriceSource):
    """Spot ticker prices, asked of the main API first and the data mirror second."""

    name = "binance"

    # Binance has no fiat USD books; dollar prices come from the USDT pair.
    _QUOTE_MAP = {
        "USD": "USDT",
        "USDT": "USDT",
        "USDC": "USDC",
        "EUR": "EUR",
        "GBP": "GBP",
        "JPY": "JPY",
    }

    _ENDPOINTS = (
        "https://api.binance.com/api/v3/ticker/price",
        "https://data-api.binance.vision/api/v3/ticker/price",
    )

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def fetch_price(self, asset: str, currency: str) -> PriceTick:
        base = asset.upper()
        quote = currency.upper()
        failures: List[str] = []

        for symbol in self._symbols(base, quote):
            for endpoint in self._ENDPOINTS:
                price = await self._ticker_price(endpoint, symbol, failures)
                if price is not None:
                    return PriceTick(
                        asset=base,
                        currency=quote,
                        price=price,
                        timestamp=datetime.now(timezone.utc),
                        source=self.name,
                    )

        logger.debug("Binance could not price {}/{}: {}", base, quote, "; ".join(failures))
        raise UpstreamUnavailable(
            f"Binance has no usable ticker for {base}/{quote}",
            asset=base,
            currency=quote,
            source=self.name,
        )

    def _symbols(self, base: str, quote: str) -> List[str]:
        mapped = self._QUOTE_MAP.get(quote, quote)
        symbols = [f"{base}{mapped}"]
        if mapped != quote:
            symbols.append(f"{base}{quote}")
        return symbols

    async def _ticker_price(self, endpoint: str, symbol: str, failures: List[str]) -> Optional[Decimal]:
        try:
            response = await self._client.get(endpoint, params={"symbol": symbol})
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            failures.append(f"{symbol} via {endpoint}: {exc}")
            return None
        except ValueError:
            failures.append(f"{symbol} via {endpoint}: body is not JSON")
            return None

        price = self._parse_price(payload.get("price") if isinstance(payload, dict) else None)
        if price is None:
            failures.append(f"{symbol} via {endpoint}: unexpected payload {payload!r}")
        return price

    @staticmethod
    def _parse_price(raw: Any) -> Optional[Decimal]:
        if raw is None or isinstance(raw, bool):
            return None
        try:
            price = Decimal(str(raw))
        except InvalidOperation:
            return None
        if not price.is_finite() or price <= 0:
            return None
        return price
