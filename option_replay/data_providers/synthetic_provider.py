"""
Synthetic Market Data Provider

Offline provider for replays without a market data subscription.
Generates a seeded random-walk price series on weekdays and weekly
Friday expiries. Option prices come from Black-Scholes on the generated
series at a fixed volatility, the same way an offline pricing fallback
works when no quote history is available.
"""

import logging
from bisect import bisect_right
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple

import numpy as np

from option_replay.data_providers.base import (
    Bar,
    ChainedDataProvider,
    MarketDataProvider,
    round_half_away,
    round_to_increment,
)
from option_replay.errors import DataUnavailableError
from option_replay.pricing import RISK_FREE_RATE, black_scholes_price

logger = logging.getLogger(__name__)

FRIDAY = 4


class SyntheticDataProvider(ChainedDataProvider):
    """
    Random-walk data for testing strategies without real quotes.

    The same seed always produces the same bars, so synthetic runs are
    reproducible. Option prices are only available for underlyings whose
    bars were generated first.

    Usage:
        provider = SyntheticDataProvider(seed=42, strike_interval=1.0)
        bars = provider.get_bars('SPY', datetime(2024, 1, 1), datetime(2024, 6, 30))
    """

    name = 'synthetic'

    def __init__(
        self,
        seed: Optional[int] = None,
        strike_interval: float = 1.0,
        volatility: float = 0.20,
        secondary: Optional[MarketDataProvider] = None,
    ):
        """
        Args:
            seed: Seed for numpy's random Generator (None = nondeterministic)
            strike_interval: Strike spacing used for rounding (0 = cents)
            volatility: Volatility used to price options off the series
            secondary: Optional fallback provider
        """
        super().__init__(secondary)
        self.seed = seed
        self.strike_interval = strike_interval
        self.volatility = volatility
        self._rng = np.random.default_rng(seed)
        self._generated: Dict[str, List[Bar]] = {}
        self._spans: Dict[str, Tuple[date, date]] = {}

    def get_bars(self, underlying: str, start: datetime, end: datetime) -> List[Bar]:
        key = underlying.upper()
        span = self._spans.get(key)
        if span and span[0] <= start.date() and span[1] >= end.date():
            return [b for b in self._generated[key] if start.date() <= b.day <= end.date()]

        price = 100.0 + float(self._rng.integers(0, 200))
        bars: List[Bar] = []
        current = datetime(start.year, start.month, start.day)
        last = datetime(end.year, end.month, end.day)

        while current <= last:
            if current.weekday() < 5:
                delta = self._rng.normal() * 0.01 * price
                open_px = price
                close_px = price + delta
                high = max(open_px, close_px) + abs(self._rng.normal() * 0.3)
                low = min(open_px, close_px) - abs(self._rng.normal() * 0.3)
                volume = float(1000 + self._rng.integers(0, 5000))
                bars.append(Bar(current, open_px, high, low, close_px, volume))
                price = close_px
            current += timedelta(days=1)

        self._generated[key] = bars
        self._spans[key] = (start.date(), end.date())
        logger.debug("Generated %d synthetic bars for %s", len(bars), underlying)
        return bars

    def get_atm_prices(
        self,
        underlying: str,
        expiration: datetime,
        as_of: datetime,
        spot: float,
    ) -> Tuple[float, float, float]:
        if self.secondary is not None:
            return self.secondary.get_atm_prices(underlying, expiration, as_of, spot)
        strike = round_half_away(spot, 2)
        T = (expiration - as_of).total_seconds() / (365 * 24 * 3600)
        call_price = black_scholes_price(spot, strike, T, RISK_FREE_RATE, self.volatility, 'call')
        put_price = black_scholes_price(spot, strike, T, RISK_FREE_RATE, self.volatility, 'put')
        return strike, call_price, put_price

    def round_to_nearest_strike(
        self,
        underlying: str,
        expiration: datetime,
        as_of: datetime,
        price: float,
    ) -> float:
        if self.strike_interval <= 0:
            return super().round_to_nearest_strike(underlying, expiration, as_of, price)
        return round_to_increment(price, self.strike_interval)

    def get_relevant_expiries(
        self,
        underlying: str,
        start: datetime,
        end: datetime,
    ) -> List[datetime]:
        """Every Friday in [start, end]."""
        if self.secondary is not None:
            return self.secondary.get_relevant_expiries(underlying, start, end)

        first = datetime(start.year, start.month, start.day)
        first += timedelta(days=(FRIDAY - first.weekday()) % 7)
        expiries = []
        current = first
        while current.date() <= end.date():
            expiries.append(current)
            current += timedelta(days=7)
        return expiries

    def get_option_price(
        self,
        underlying: str,
        strike: float,
        expiration: datetime,
        option_type: str,
        as_of: datetime,
    ) -> float:
        """Black-Scholes price off the generated series (secondary first, if any)."""
        if self.secondary is not None:
            return self.secondary.get_option_price(
                underlying, strike, expiration, option_type, as_of
            )

        spot = self._spot_at(underlying, as_of)
        T = (expiration - as_of).total_seconds() / (365 * 24 * 3600)
        return black_scholes_price(spot, strike, T, RISK_FREE_RATE, self.volatility, option_type)

    def _spot_at(self, underlying: str, as_of: datetime) -> float:
        """Close of the last generated bar on or before as_of."""
        bars = self._generated.get(underlying.upper())
        if not bars:
            raise DataUnavailableError(f"no synthetic bars generated for {underlying}")

        days = [b.day for b in bars]
        idx = bisect_right(days, as_of.date()) - 1
        if idx < 0:
            raise DataUnavailableError(
                f"no synthetic bar for {underlying} on or before {as_of:%Y-%m-%d}"
            )
        return bars[idx].close
