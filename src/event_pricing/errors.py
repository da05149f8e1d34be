from __future__ import annotations

from typing import Optional


class PricingError(RuntimeError):
    """Base class for errors raised by the pricing core."""


class InvalidArgument(PricingError, ValueError):
    """Raised when a caller supplies input the calculator cannot price."""


class UpstreamUnavailable(PricingError):
    """Raised when no price can be produced for a pair, fresh or stale."""

    def __init__(
        self,
        message: str,
        *,
        asset: Optional[str] = None,
        currency: Optional[str] = None,
        source: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.asset = asset
        self.currency = currency
        self.source = source
