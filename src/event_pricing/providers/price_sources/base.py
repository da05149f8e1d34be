from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal


@dataclass(slots=True, frozen=True)
class PriceTick:
    asset: str
    currency: str
    price: Decimal
    timestamp: datetime
    source: str


class PriceSource(ABC):
    name: str

    @abstractmethod
    async def fetch_price(self, asset: str, currency: str) -> PriceTick:
        """Return the current price of ``asset`` in ``currency``.

        Raises ``UpstreamUnavailable`` when the source cannot answer.
        """

    async def warmup(self) -> None:
        """Allow sources to pre-load data if desired."""
        return None

    async def close(self) -> None:
        return None
