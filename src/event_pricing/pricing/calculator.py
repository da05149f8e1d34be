from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, List, Optional, Sequence, Union

from loguru import logger

from ..errors import InvalidArgument, PricingError, UpstreamUnavailable
from ..providers.quote_cache import QuoteCache


VOLATILITY_BUFFER = Decimal("1.05")

ASSET_DISPLAY_DECIMALS: Dict[str, int] = {
    "XLM": 7,
    "KALE": 7,
    "USDC": 7,
    "BTC": 8,
    "ETH": 18,
}
DEFAULT_DISPLAY_DECIMALS = 7

Number = Union[Decimal, int, float, str]


@dataclass(slots=True, frozen=True)
class DemandLevel:
    label: str
    tone: str
    description: str


DEMAND_BANDS = (
    (Decimal("2.0"), DemandLevel("Very High", "destructive", "Peak demand - prices significantly increased")),
    (Decimal("1.5"), DemandLevel("High", "secondary", "High demand - surge pricing active")),
    (Decimal("1.2"), DemandLevel("Moderate", "default", "Moderate demand - slight price increase")),
)
LOW_DEMAND = DemandLevel("Low", "default", "Normal pricing")


@dataclass(slots=True, frozen=True)
class PricingRequest:
    base_price: Decimal
    base_currency: str
    target_asset: str
    demand_multiplier: Decimal = Decimal("1.0")


@dataclass(slots=True, frozen=True)
class PricingResult:
    asset_amount: Decimal
    asset_price: Decimal
    demand_multiplier: Decimal
    base_price: Decimal
    base_currency: str
    target_asset: str
    fiat_value: Decimal
    quote_fetched_at: datetime

    @property
    def display_amount(self) -> Decimal:
        return round_for_display(self.asset_amount, self.target_asset)

    @property
    def demand(self) -> DemandLevel:
        return classify_demand(self.demand_multiplier)


@dataclass(slots=True, frozen=True)
class CurrencyAmount:
    currency: str
    amount: Decimal
    rate: Decimal


def to_decimal(value: Number, field: str) -> Decimal:
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError) as exc:
            raise InvalidArgument(f"{field} must be a number, got {value!r}") from exc
    if not result.is_finite():
        raise InvalidArgument(f"{field} must be finite, got {value!r}")
    return result


def display_decimals(asset: str) -> int:
    return ASSET_DISPLAY_DECIMALS.get(asset.upper(), DEFAULT_DISPLAY_DECIMALS)


def round_for_display(amount: Decimal, asset: str) -> Decimal:
    quant = Decimal(1).scaleb(-display_decimals(asset))
    return amount.quantize(quant, rounding=ROUND_HALF_UP)


def classify_demand(multiplier: Number) -> DemandLevel:
    value = to_decimal(multiplier, "demand_multiplier")
    for threshold, level in DEMAND_BANDS:
        if value >= threshold:
            return level
    return LOW_DEMAND


def build_request(
    base_price: Number,
    base_currency: str,
    target_asset: str,
    demand_multiplier: Number = Decimal("1.0"),
) -> PricingRequest:
    request = PricingRequest(
        base_price=to_decimal(base_price, "base_price"),
        base_currency=base_currency.upper(),
        target_asset=target_asset.upper(),
        demand_multiplier=to_decimal(demand_multiplier, "demand_multiplier"),
    )
    validate_request(request)
    return request


def check_terms(base_price: Decimal, demand_multiplier: Decimal) -> None:
    if base_price <= 0:
        raise InvalidArgument(f"base_price must be positive, got {base_price}")
    if demand_multiplier < 0:
        raise InvalidArgument(f"demand_multiplier must not be negative, got {demand_multiplier}")


def validate_request(request: PricingRequest) -> None:
    check_terms(request.base_price, request.demand_multiplier)
    if not request.base_currency or not request.target_asset:
        raise InvalidArgument("base_currency and target_asset are required")


class PricingCalculator:
    def __init__(self, cache: QuoteCache) -> None:
        self._cache = cache

    @property
    def cache(self) -> QuoteCache:
        return self._cache

    async def compute_asset_amount(self, request: PricingRequest) -> PricingResult:
        """Convert a fiat base price into an amount of ``request.target_asset``.

        The amount is ``base_price / asset_price * demand_multiplier`` plus the
        fixed volatility buffer, kept at full precision. Argument errors are
        raised before the cache is consulted.
        """
        validate_request(request)
        quote = await self._cache.get_quote(request.target_asset, request.base_currency)
        if quote.price <= 0:
            raise InvalidArgument(
                f"Quote for {quote.asset}/{quote.currency} is not positive: {quote.price}"
            )

        raw_amount = request.base_price / quote.price
        surged_amount = raw_amount * request.demand_multiplier
        buffered_amount = surged_amount * VOLATILITY_BUFFER

        logger.debug(
            "Priced {} {} at {} {} (rate {}, demand x{})",
            request.base_price,
            request.base_currency,
            buffered_amount,
            quote.asset,
            quote.price,
            request.demand_multiplier,
        )
        return PricingResult(
            asset_amount=buffered_amount,
            asset_price=quote.price,
            demand_multiplier=request.demand_multiplier,
            base_price=request.base_price,
            base_currency=request.base_currency.upper(),
            target_asset=request.target_asset.upper(),
            fiat_value=request.base_price * request.demand_multiplier * VOLATILITY_BUFFER,
            quote_fetched_at=quote.fetched_at,
        )

    async def expand_to_currencies(
        self,
        asset_amount: Number,
        source_asset: str,
        currencies: Sequence[str],
    ) -> Dict[str, Optional[CurrencyAmount]]:
        """Value ``asset_amount`` in each currency, keyed in input order.

        A currency without a quote maps to ``None``; the others are unaffected.
        """
        amount = to_decimal(asset_amount, "asset_amount")
        ordered: List[str] = []
        for currency in currencies:
            code = currency.upper()
            if code not in ordered:
                ordered.append(code)

        outcomes = await asyncio.gather(
            *(self._cache.get_quote(source_asset, code) for code in ordered),
            return_exceptions=True,
        )

        expanded: Dict[str, Optional[CurrencyAmount]] = {}
        for code, outcome in zip(ordered, outcomes):
            if isinstance(outcome, PricingError):
                logger.warning("No {}/{} quote for currency expansion: {}", source_asset.upper(), code, outcome)
                expanded[code] = None
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            expanded[code] = CurrencyAmount(currency=code, amount=amount * outcome.price, rate=outcome.price)
        return expanded

    async def price_in_assets(
        self,
        base_price: Number,
        base_currency: str,
        demand_multiplier: Number,
        assets: Sequence[str],
    ) -> Dict[str, Optional[PricingResult]]:
        check_terms(
            to_decimal(base_price, "base_price"),
            to_decimal(demand_multiplier, "demand_multiplier"),
        )
        requests: Dict[str, PricingRequest] = {}
        for asset in assets:
            request = build_request(base_price, base_currency, asset, demand_multiplier)
            requests.setdefault(request.target_asset, request)

        outcomes = await asyncio.gather(
            *(self.compute_asset_amount(request) for request in requests.values()),
            return_exceptions=True,
        )

        results: Dict[str, Optional[PricingResult]] = {}
        for asset, outcome in zip(requests, outcomes):
            if isinstance(outcome, (UpstreamUnavailable, InvalidArgument)):
                logger.warning("Cannot price {} in {}: {}", base_currency.upper(), asset, outcome)
                results[asset] = None
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            results[asset] = outcome
        return results
