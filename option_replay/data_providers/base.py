"""
Market Data Provider Protocol

Defines the single capability the replay core consumes for bars,
option quotes, strike rounding, expiries and earnings dates.
Implementations include Massive/Polygon (HTTP), local files and a
synthetic random-walk generator. Providers may chain to a secondary
provider for anything they cannot serve.
"""

import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import List, Optional, Protocol, Tuple

from option_replay.errors import DataUnavailableError


@dataclass(frozen=True)
class Bar:
    """
    One trading period of OHLCV data for an underlying.

    Bars are produced by providers in ascending date order, unique by date.
    """
    date: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @property
    def day(self) -> date:
        """Calendar date of the bar."""
        return self.date.date()


@dataclass(frozen=True)
class OptionContract:
    """Listed option contract reference data."""
    underlying: str
    expiration: datetime
    strike: float
    option_type: str             # 'call' or 'put'
    ticker: str = ''


class MarketDataProvider(Protocol):
    """
    Protocol for market data used during a replay.

    Implementations:
    - MassiveDataProvider: Polygon-compatible REST API
    - LocalFileDataProvider: CSV files on disk
    - SyntheticDataProvider: Deterministic random walk (seeded)
    """

    def get_bars(self, underlying: str, start: datetime, end: datetime) -> List[Bar]:
        """
        Get daily bars for an underlying.

        Args:
            underlying: Underlying symbol (e.g., 'SPY')
            start: First date (inclusive)
            end: Last date (inclusive)

        Returns:
            Bars in ascending date order (may be empty)
        """
        ...

    def get_option_price(
        self,
        underlying: str,
        strike: float,
        expiration: datetime,
        option_type: str,
        as_of: datetime,
    ) -> float:
        """
        Get an option's price at a point in time.

        Args:
            underlying: Underlying symbol
            strike: Strike price in dollars
            expiration: Expiration date
            option_type: 'call' or 'put'
            as_of: When to price the option

        Returns:
            Option price per share

        Raises:
            ProviderError: If no price is available
        """
        ...

    def get_atm_prices(
        self,
        underlying: str,
        expiration: datetime,
        as_of: datetime,
        spot: float,
    ) -> Tuple[float, float, float]:
        """
        Get the at-the-money strike with its call and put prices.

        Returns:
            (strike, call_price, put_price)
        """
        ...

    def round_to_nearest_strike(
        self,
        underlying: str,
        expiration: datetime,
        as_of: datetime,
        price: float,
    ) -> float:
        """Round a raw price to the nearest listed/valid strike."""
        ...

    def get_relevant_expiries(
        self,
        underlying: str,
        start: datetime,
        end: datetime,
    ) -> List[datetime]:
        """Sorted unique expiration dates listed for the underlying in range."""
        ...

    def get_earnings_dates(self, underlying: str) -> List[datetime]:
        """Reported earnings dates (only needed for earnings_offset scheduling)."""
        ...


class ChainedDataProvider:
    """
    Base class for providers that fall back to a secondary provider.

    Subclasses override the operations they support. Anything else is
    delegated to ``secondary``, or raises DataUnavailableError when
    there is none.
    """

    name = 'base'

    def __init__(self, secondary: Optional[MarketDataProvider] = None):
        self.secondary = secondary

    def _delegate(self, operation: str, *args):
        if self.secondary is None:
            raise DataUnavailableError(
                f"{operation} not available from {self.name} provider"
            )
        return getattr(self.secondary, operation)(*args)

    def get_bars(self, underlying: str, start: datetime, end: datetime) -> List[Bar]:
        return self._delegate('get_bars', underlying, start, end)

    def get_option_price(
        self,
        underlying: str,
        strike: float,
        expiration: datetime,
        option_type: str,
        as_of: datetime,
    ) -> float:
        return self._delegate(
            'get_option_price', underlying, strike, expiration, option_type, as_of
        )

    def get_atm_prices(
        self,
        underlying: str,
        expiration: datetime,
        as_of: datetime,
        spot: float,
    ) -> Tuple[float, float, float]:
        return self._delegate('get_atm_prices', underlying, expiration, as_of, spot)

    def round_to_nearest_strike(
        self,
        underlying: str,
        expiration: datetime,
        as_of: datetime,
        price: float,
    ) -> float:
        # Rounding never fails: without a secondary the raw price is kept
        if self.secondary is None:
            return round_half_away(price, 2)
        return self.secondary.round_to_nearest_strike(underlying, expiration, as_of, price)

    def get_relevant_expiries(
        self,
        underlying: str,
        start: datetime,
        end: datetime,
    ) -> List[datetime]:
        return self._delegate('get_relevant_expiries', underlying, start, end)

    def get_earnings_dates(self, underlying: str) -> List[datetime]:
        return self._delegate('get_earnings_dates', underlying)


def closest(values: List[float], target: float) -> float:
    """Value in a non-empty list closest to target (ties go to the lower value)."""
    ordered = sorted(values)
    best = ordered[0]
    for v in ordered:
        if abs(v - target) < abs(best - target):
            best = v
    return best


def round_half_away(value: float, ndigits: int = 0) -> float:
    """Round half away from zero (2.5 -> 3.0, -2.5 -> -3.0)."""
    scale = 10 ** ndigits
    return math.copysign(math.floor(abs(value) * scale + 0.5) / scale, value)


def round_to_increment(value: float, increment: float) -> float:
    """Round to the nearest multiple of increment, halves away from zero."""
    return round_half_away(value / increment) * increment
