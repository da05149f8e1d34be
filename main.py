import asyncio
import os
import sys
from decimal import Decimal

from loguru import logger

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "src")))

from event_pricing.config.settings import config
from event_pricing.errors import PricingError
from event_pricing.pricing.calculator import classify_demand
from event_pricing.providers.price_feed import Snapshot, market_overview
from event_pricing.providers.price_service import PriceService
from event_pricing.utils.formatting import format_currency_table, format_price, format_pricing_board
from event_pricing.utils.logger import setup_logger


USAGE = "usage: python main.py [BASE_PRICE] [DEMAND_MULTIPLIER] [--watch]"


async def run(base_price: Decimal, demand_multiplier: Decimal, watch: bool) -> None:
    service = PriceService(
        source_kind=config.price_source,
        coingecko_api_key=config.coingecko_api_key,
        upstream_timeout=config.upstream_timeout_seconds,
    )
    await service.start()
    base_currency = config.supported_currencies[0]
    try:
        demand = classify_demand(demand_multiplier)
        logger.info("{} demand: {}", demand.label, demand.description)

        board = await service.calculator.price_in_assets(
            base_price, base_currency, demand_multiplier, config.supported_assets
        )
        print(format_pricing_board(board))

        primary = config.supported_assets[0]
        result = board.get(primary)
        if result is not None:
            expansion = await service.calculator.expand_to_currencies(
                result.asset_amount, primary, config.supported_currencies
            )
            print()
            print(format_currency_table(primary, expansion))

        overview = await market_overview(service.cache)
        for asset, quote in overview.prices.items():
            price = format_price(quote.price, overview.currency) if quote else "N/A"
            logger.info("{}: {}", asset, price)

        if not watch:
            return

        def on_update(snapshot: Snapshot) -> None:
            for asset, row in snapshot.items():
                cells = [
                    f"{currency} {format_price(quote.price, currency) if quote else 'N/A'}"
                    for currency, quote in row.items()
                ]
                logger.info("{} | {}", asset, " | ".join(cells))

        feed = service.feed(
            config.supported_assets,
            config.supported_currencies,
            interval=config.refresh_interval_seconds,
            on_update=on_update,
        )
        feed.start()
        try:
            await asyncio.Event().wait()
        finally:
            await feed.stop()
    finally:
        await service.close()


if __name__ == "__main__":
    setup_logger(config.log_level, config.log_dir)

    args = [arg for arg in sys.argv[1:] if not arg.startswith("--")]
    watch = "--watch" in sys.argv[1:]
    try:
        base_price = Decimal(args[0]) if args else Decimal("25")
        demand_multiplier = Decimal(args[1]) if len(args) > 1 else Decimal("1.0")
    except ArithmeticError:
        print(USAGE, file=sys.stderr)
        sys.exit(2)

    logger.info("Pricing {} {} with {} source…", base_price, config.supported_currencies[0], config.price_source)
    try:
        asyncio.run(run(base_price, demand_multiplier, watch))
    except PricingError as exc:
        logger.error("Pricing failed: {}", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
