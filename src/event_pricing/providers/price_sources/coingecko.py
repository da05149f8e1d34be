import asyncio
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import httpx
from loguru import logger

from ...errors import UpstreamUnavailable
from .base import PriceSource, PriceTick


KNOWN_COIN_IDS: Dict[str, str] = {
    "xlm": "stellar",
    "btc": "bitcoin",
    "eth": "ethereum",
    "usdc": "usd-coin",
}


class CoinGeckoPriceSource(PriceSource):
    name = "coingecko"

    BASE_URL = "https://api.coingecko.com/api/v3"

    def __init__(self, client: httpx.AsyncClient, api_key: Optional[str] = None) -> None:
        self._client = client
        self._api_key = api_key
        self._symbol_to_id: Dict[str, str] = dict(KNOWN_COIN_IDS)
        self._lock = asyncio.Lock()

    async def fetch_price(self, asset: str, currency: str) -> PriceTick:
        asset_u = asset.upper()
        currency_u = currency.upper()
        coin_id = await self.get_coin_id(asset)
        if not coin_id:
            raise UpstreamUnavailable(
                f"CoinGecko does not list {asset_u}",
                asset=asset_u,
                currency=currency_u,
                source=self.name,
            )

        currency_lower = currency.lower()
        params = {
            "ids": coin_id,
            "vs_currencies": currency_lower,
            "include_last_updated_at": "true",
        }
        try:
            response = await self._client.get(
                f"{self.BASE_URL}/simple/price",
                params=params,
                headers=self._headers,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("CoinGecko price fetch failed for {} ({}): {}", coin_id, asset_u, exc)
            raise UpstreamUnavailable(
                f"CoinGecko request failed for {asset_u}/{currency_u}",
                asset=asset_u,
                currency=currency_u,
                source=self.name,
            ) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            logger.warning("CoinGecko returned a non-JSON body for {} ({})", coin_id, asset_u)
            raise UpstreamUnavailable(
                f"CoinGecko returned an unreadable body for {asset_u}/{currency_u}",
                asset=asset_u,
                currency=currency_u,
                source=self.name,
            ) from exc

        entry = payload.get(coin_id) if isinstance(payload, dict) else None
        if not isinstance(entry, dict):
            entry = {}
        price = self._decimal_or_none(entry.get(currency_lower))
        if price is None or price <= 0:
            raise UpstreamUnavailable(
                f"CoinGecko returned no {currency_u} price for {asset_u}",
                asset=asset_u,
                currency=currency_u,
                source=self.name,
            )

        timestamp = self._timestamp_or_now(entry.get("last_updated_at"))

        return PriceTick(
            asset=asset_u,
            currency=currency_u,
            price=price,
            timestamp=timestamp,
            source=self.name,
        )

    async def get_coin_id(self, symbol: str) -> Optional[str]:
        symbol_l = symbol.lower()
        coin_id = self._symbol_to_id.get(symbol_l)
        if coin_id:
            return coin_id

        async with self._lock:
            if symbol_l in self._symbol_to_id:
                return self._symbol_to_id[symbol_l]
            coin_id = await self._search_symbol(symbol_l)
            if coin_id:
                self._symbol_to_id[symbol_l] = coin_id
            return coin_id

    async def _search_symbol(self, symbol: str) -> Optional[str]:
        try:
            response = await self._client.get(
                f"{self.BASE_URL}/search",
                params={"query": symbol},
                headers=self._headers,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("CoinGecko search failed for {}: {}", symbol, exc)
            return None

        try:
            payload = response.json()
        except ValueError:
            logger.warning("CoinGecko search returned a non-JSON body for {}", symbol)
            return None

        coins = payload.get("coins") if isinstance(payload, dict) else None
        if not isinstance(coins, list):
            return None
        matched = [
            coin for coin in coins
            if isinstance(coin, dict)
            and str(coin.get("symbol") or "").lower() == symbol
            and coin.get("id")
        ]
        if not matched:
            return None

        def sort_key(coin: Dict[str, Any]) -> tuple[int, str]:
            rank = coin.get("market_cap_rank")
            if not isinstance(rank, int):
                rank = 10**9
            return (rank, str(coin.get("name", "")))

        matched.sort(key=sort_key)
        return matched[0]["id"]

    @staticmethod
    def _timestamp_or_now(value: Any) -> datetime:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            try:
                return datetime.fromtimestamp(value, tz=timezone.utc)
            except (OverflowError, OSError, ValueError):
                pass
        return datetime.now(timezone.utc)

    def _decimal_or_none(self, value: Any) -> Optional[Decimal]:
        if value is None or isinstance(value, bool):
            return None
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError):
            return None
        return result if result.is_finite() else None

    @property
    def _headers(self) -> Dict[str, str]:
        if not self._api_key:
            return {}
        return {"x-cg-demo-api-key": self._api_key}
