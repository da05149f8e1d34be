from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Mapping, Optional, Tuple, Union

from tabulate import tabulate

from ..pricing.calculator import CurrencyAmount, PricingResult, display_decimals

CURRENCY_SYMBOLS: Dict[str, str] = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
}
ZERO_DECIMAL_CURRENCIES = {"JPY"}

Numeric = Union[Decimal, int, float]


def format_decimal(value: Numeric, precision: int = 4) -> str:
    dec = value if isinstance(value, Decimal) else Decimal(str(value))
    if dec == 0:
        return "0"
    quant = Decimal(1).scaleb(-precision)
    return format(dec.quantize(quant, rounding=ROUND_HALF_UP), "f")


def _fraction_digits(value: Decimal, currency: str) -> int:
    if currency in ZERO_DECIMAL_CURRENCIES:
        return 0
    if currency == "USD" and abs(value) < 1:
        return 4
    return 2


def format_price(value: Numeric, currency: str = "USD") -> str:
    """Render a fiat amount, e.g. ``$0.1234``, ``€1,250.00`` or ``1,250.00 CHF``."""
    code = currency.upper()
    dec = value if isinstance(value, Decimal) else Decimal(str(value))
    digits = _fraction_digits(dec, code)
    quant = Decimal(1).scaleb(-digits)
    body = format(abs(dec.quantize(quant, rounding=ROUND_HALF_UP)), f",.{digits}f")
    sign = "-" if dec < 0 else ""
    symbol = CURRENCY_SYMBOLS.get(code)
    if symbol:
        return f"{sign}{symbol}{body}"
    return f"{sign}{body} {code}"


def format_price_change(change: Numeric) -> Tuple[str, bool]:
    dec = change if isinstance(change, Decimal) else Decimal(str(change))
    pct = dec.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    is_positive = dec >= 0
    sign = "+" if is_positive else ""
    return f"{sign}{format(pct, '.2f')}%", is_positive


def calculate_price_in_currency(asset_amount: Numeric, asset_price: Numeric, currency: str = "USD") -> str:
    amount = asset_amount if isinstance(asset_amount, Decimal) else Decimal(str(asset_amount))
    price = asset_price if isinstance(asset_price, Decimal) else Decimal(str(asset_price))
    return format_price(amount * price, currency)


def format_currency_table(asset: str, expansion: Mapping[str, Optional[CurrencyAmount]]) -> str:
    headers = ["Currency", "Value", f"Rate (1 {asset.upper()})"]
    rows: List[List[str]] = []
    for currency, entry in expansion.items():
        if entry is None:
            rows.append([currency, "N/A", "N/A"])
            continue
        rows.append([currency, format_price(entry.amount, currency), format_price(entry.rate, currency)])
    return tabulate(rows, headers=headers, tablefmt="github", disable_numparse=True)


def format_pricing_board(results: Mapping[str, Optional[PricingResult]]) -> str:
    headers = ["Asset", "Amount", "Asset Price", "Demand", "Fiat Value"]
    rows: List[List[str]] = []
    for asset, result in results.items():
        if result is None:
            rows.append([asset, "N/A", "N/A", "-", "-"])
            continue
        rows.append(
            [
                asset,
                format_decimal(result.asset_amount, display_decimals(asset)),
                format_price(result.asset_price, result.base_currency),
                f"{result.demand.label} (x{result.demand_multiplier})",
                format_price(result.fiat_value, result.base_currency),
            ]
        )
    return tabulate(rows, headers=headers, tablefmt="github", disable_numparse=True)
