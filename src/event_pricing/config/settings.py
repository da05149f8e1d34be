import os
from typing import List, Optional

from dotenv import load_dotenv

DEFAULT_ASSETS = "XLM,BTC,ETH,USDC"
DEFAULT_CURRENCIES = "USD,EUR,GBP,JPY"
PRICE_SOURCES = {"synthetic", "coingecko", "binance", "fallback"}


class Config:
    """Loads configuration for the pricing service from the environment."""

    def __init__(self) -> None:
        load_dotenv()

        source = os.getenv("PRICE_SOURCE", "synthetic").lower()
        self.price_source: str = source if source in PRICE_SOURCES else "synthetic"
        self.coingecko_api_key: Optional[str] = self._get_optional_env("COINGECKO_API_KEY")

        self.upstream_timeout_seconds: float = self._get_float_env(
            "UPSTREAM_TIMEOUT_SECONDS", 5.0, minimum=0.5, maximum=30.0
        )
        self.refresh_interval_seconds: float = self._get_float_env(
            "REFRESH_INTERVAL_SECONDS", 30.0, minimum=1.0
        )

        self.supported_assets: List[str] = self._get_list_env("SUPPORTED_ASSETS", DEFAULT_ASSETS)
        self.supported_currencies: List[str] = self._get_list_env("SUPPORTED_CURRENCIES", DEFAULT_CURRENCIES)

        self.log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
        self.log_dir: Optional[str] = self._get_optional_env("LOG_DIR")

    def _get_optional_env(self, var_name: str) -> Optional[str]:
        return os.getenv(var_name) or None

    def _get_float_env(
        self,
        var_name: str,
        default: float,
        *,
        minimum: Optional[float] = None,
        maximum: Optional[float] = None,
    ) -> float:
        try:
            value = float(os.getenv(var_name, str(default)))
        except ValueError:
            return default
        if minimum is not None:
            value = max(minimum, value)
        if maximum is not None:
            value = min(maximum, value)
        return value

    def _get_list_env(self, var_name: str, default: str) -> List[str]:
        raw = os.getenv(var_name) or default
        items = [item.strip().upper() for item in raw.split(",") if item.strip()]
        return items or [item.strip() for item in default.split(",")]


config = Config()
