from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from event_pricing.pricing.calculator import CurrencyAmount, PricingResult
from event_pricing.utils.formatting import (
    calculate_price_in_currency,
    format_currency_table,
    format_decimal,
    format_price,
    format_price_change,
    format_pricing_board,
)


def test_format_price_uses_currency_conventions() -> None:
    assert format_price(Decimal("0.12")) == "$0.1200"
    assert format_price(Decimal("1250")) == "$1,250.00"
    assert format_price(Decimal("0.11"), "EUR") == "€0.11"
    assert format_price(Decimal("18.5"), "JPY") == "¥19"
    assert format_price(Decimal("1234.5"), "CHF") == "1,234.50 CHF"
    assert format_price(-3, "gbp") == "-£3.00"


def test_format_price_change() -> None:
    assert format_price_change(Decimal("1.234")) == ("+1.23%", True)
    assert format_price_change(-0.5) == ("-0.50%", False)
    assert format_price_change(0) == ("+0.00%", True)


def test_calculate_price_in_currency() -> None:
    assert calculate_price_in_currency(Decimal("1050"), Decimal("0.10"), "USD") == "$105.00"


def test_format_decimal() -> None:
    assert format_decimal(Decimal("1050.123456789"), 7) == "1050.1234568"
    assert format_decimal(0) == "0"


def test_currency_table_shows_missing_entries() -> None:
    table = format_currency_table(
        "XLM",
        {
            "USD": CurrencyAmount(currency="USD", amount=Decimal("105"), rate=Decimal("0.10")),
            "ZZZ": None,
        },
    )

    lines = table.splitlines()
    assert "Rate (1 XLM)" in lines[0]
    assert "$105.00" in lines[2]
    assert "N/A" in lines[3]


def test_pricing_board_rows() -> None:
    result = PricingResult(
        asset_amount=Decimal("1575"),
        asset_price=Decimal("0.10"),
        demand_multiplier=Decimal("1.5"),
        base_price=Decimal("100"),
        base_currency="USD",
        target_asset="XLM",
        fiat_value=Decimal("157.5"),
        quote_fetched_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
    )

    table = format_pricing_board({"XLM": result, "ETH": None})

    assert "1575.0000000" in table
    assert "High (x1.5)" in table
    assert "$157.50" in table
    assert table.splitlines()[-1].startswith("| ETH")
