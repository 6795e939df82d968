"""
Massive (Polygon-compatible) Market Data Provider

REST client for daily bars, option contracts and minute-level option
aggregates. Handles per-minute rate limiting (HTTP 429) by sleeping to
the next minute boundary and retrying, and follows next_url pagination
for the contracts reference endpoint.

Usage:
    from option_replay.data_providers.massive_provider import MassiveDataProvider

    provider = MassiveDataProvider(api_key='...')
    bars = provider.get_bars('SPY', datetime(2024, 1, 1), datetime(2024, 6, 30))
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytz
import requests

from option_replay.data_providers.base import (
    Bar,
    ChainedDataProvider,
    MarketDataProvider,
    OptionContract,
    closest,
    round_half_away,
)
from option_replay.errors import ConfigurationError, DataUnavailableError, ProviderError
from option_replay.settings import get_polygon_key

logger = logging.getLogger(__name__)


def option_symbol(underlying: str, expiration: datetime, option_type: str, strike: float) -> str:
    """
    Build the Polygon option ticker for a contract.

    Format: O:<ROOT><YYMMDD><C|P><strike*1000 padded to 8 digits>
    e.g. O:SPY241220C00450000
    """
    type_part = 'P' if option_type.lower() == 'put' else 'C'
    strike_part = str(int(round_half_away(strike * 1000))).zfill(8)
    return f"O:{underlying.upper()}{expiration:%y%m%d}{type_part}{strike_part}"


def strike_multiplier(low: float) -> float:
    """Strike rounding granularity used when probing listed expiries."""
    if low >= 10000:
        return 1000.0
    if low >= 1000:
        return 100.0
    if low >= 100:
        return 10.0
    return 1.0


class MassiveDataProvider(ChainedDataProvider):
    """
    Historical market data over the Massive/Polygon REST API.

    Attributes:
        base_url: API root (default: https://api.polygon.io)
        timeout: Request timeout in seconds
        max_rate_limit_retries: 429 retries before giving up
        timezone: Exchange timezone used to interpret naive datetimes
    """

    DEFAULT_BASE_URL = "https://api.polygon.io"
    BAR_LIMIT = 50000
    CONTRACT_LIMIT = 1000
    QUOTE_WINDOW = timedelta(minutes=5)

    name = 'massive'

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        secondary: Optional[MarketDataProvider] = None,
        earnings_source: Optional[Any] = None,
        timezone: str = 'America/New_York',
        timeout: int = 30,
        max_rate_limit_retries: int = 10,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            api_key: API key (default: POLYGON_API_KEY from environment)
            base_url: API root URL
            secondary: Fallback provider
            earnings_source: Object with get_earnings_dates(symbol)
            timezone: Exchange timezone name
            timeout: Request timeout in seconds
            max_rate_limit_retries: Max consecutive 429 retries per request
            session: Optional requests session
            sleep: Sleep function (injectable for tests)

        Raises:
            ConfigurationError: If no API key is available or timezone is unknown
        """
        super().__init__(secondary)
        self.api_key = api_key or get_polygon_key()
        if not self.api_key:
            raise ConfigurationError("POLYGON_API_KEY not set. Add it to your .env file.")
        try:
            self.timezone = pytz.timezone(timezone)
        except pytz.UnknownTimeZoneError as e:
            raise ConfigurationError(f"unknown timezone: {timezone}") from e

        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip('/')
        self.earnings_source = earnings_source
        self.timeout = timeout
        self.max_rate_limit_retries = max_rate_limit_retries
        self._session = session or requests.Session()
        self._sleep = sleep

    # =========================================================================
    # HTTP
    # =========================================================================

    def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        GET a JSON document, sleeping through per-minute rate limits.

        Raises:
            ProviderError: Network failure, non-429 error status, or too many 429s
        """
        params = dict(params or {})
        params['apiKey'] = self.api_key

        for attempt in range(self.max_rate_limit_retries + 1):
            logger.debug("GET %s", url)
            try:
                response = self._session.get(url, params=params, timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                raise ProviderError(f"request failed: {url}: {e}") from e

            if response.status_code == 429:
                wait = self._seconds_to_next_minute()
                logger.info("Rate limit hit, sleeping %.1fs (attempt %d/%d)",
                            wait, attempt + 1, self.max_rate_limit_retries)
                self._sleep(wait)
                continue

            if response.status_code >= 400:
                raise ProviderError(
                    f"unexpected status code {response.status_code} from {url}: "
                    f"{response.text[:200]}"
                )

            try:
                return response.json()
            except ValueError as e:
                raise ProviderError(f"invalid JSON from {url}: {e}") from e

        raise ProviderError(
            f"rate limited after {self.max_rate_limit_retries} retries: {url}"
        )

    @staticmethod
    def _seconds_to_next_minute() -> float:
        now = datetime.now()
        next_minute = now.replace(second=0, microsecond=0) + timedelta(minutes=1)
        return max((next_minute - now).total_seconds(), 0.0)

    def _to_epoch_ms(self, value: datetime) -> int:
        """Epoch milliseconds, interpreting naive datetimes in the exchange timezone."""
        if value.tzinfo is None:
            value = self.timezone.localize(value)
        return int(value.timestamp() * 1000)

    # =========================================================================
    # Aggregates
    # =========================================================================

    def _get_aggregates(
        self,
        ticker: str,
        multiplier: int,
        timespan: str,
        start: str,
        end: str,
    ) -> List[Bar]:
        url = (f"{self.base_url}/v2/aggs/ticker/{ticker}/range/"
               f"{multiplier}/{timespan}/{start}/{end}")
        payload = self._get(url, {
            'adjusted': 'true',
            'sort': 'asc',
            'limit': self.BAR_LIMIT,
        })

        bars = []
        for row in payload.get('results') or []:
            ts = datetime.fromtimestamp(row['t'] / 1000, tz=pytz.utc)
            local = ts.astimezone(self.timezone).replace(tzinfo=None)
            if timespan == 'day':
                local = datetime(local.year, local.month, local.day)
            bars.append(Bar(
                date=local,
                open=float(row.get('o', 0.0)),
                high=float(row.get('h', 0.0)),
                low=float(row.get('l', 0.0)),
                close=float(row.get('c', 0.0)),
                volume=float(row.get('v', 0.0)),
            ))
        return bars

    def get_bars(self, underlying: str, start: datetime, end: datetime) -> List[Bar]:
        logger.debug("Fetching bars: %s %s -> %s", underlying, f"{start:%Y-%m-%d}", f"{end:%Y-%m-%d}")
        return self._get_aggregates(
            underlying.upper(), 1, 'day', f"{start:%Y-%m-%d}", f"{end:%Y-%m-%d}"
        )

    # =========================================================================
    # Contracts
    # =========================================================================

    def get_contracts(
        self,
        underlying: str,
        strike: float = 0.0,
        expiration: Optional[datetime] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[OptionContract]:
        """
        List option contracts (including expired ones).

        Args:
            underlying: Underlying symbol
            strike: Exact strike filter (0 = all strikes)
            expiration: Exact expiration filter (None = use start/end range)
            start: Expiration range start
            end: Expiration range end

        Returns:
            All matching contracts across result pages
        """
        params: Dict[str, Any] = {
            'underlying_ticker': underlying.upper(),
            'expired': 'true',
            'limit': self.CONTRACT_LIMIT,
        }
        if strike > 0:
            params['strike_price'] = f"{strike:.8g}"
        if expiration is not None:
            params['expiration_date'] = f"{expiration:%Y-%m-%d}"
        else:
            if start is not None:
                params['expiration_date.gte'] = f"{start:%Y-%m-%d}"
            if end is not None:
                params['expiration_date.lte'] = f"{end:%Y-%m-%d}"

        contracts: List[OptionContract] = []
        url: Optional[str] = f"{self.base_url}/v3/reference/options/contracts"
        while url:
            payload = self._get(url, params)
            for row in payload.get('results') or []:
                try:
                    expiry = datetime.strptime(row['expiration_date'], '%Y-%m-%d')
                except (KeyError, TypeError, ValueError):
                    continue
                contracts.append(OptionContract(
                    underlying=row.get('underlying_ticker', underlying.upper()),
                    expiration=expiry,
                    strike=float(row.get('strike_price', 0.0)),
                    option_type=row.get('contract_type', ''),
                    ticker=row.get('ticker', ''),
                ))
            # next_url already carries the query; only the key is re-attached
            url = payload.get('next_url')
            params = {}

        logger.debug("Fetched %d contracts for %s", len(contracts), underlying)
        return contracts

    def get_relevant_expiries(
        self,
        underlying: str,
        start: datetime,
        end: datetime,
    ) -> List[datetime]:
        """
        Expiries listed in [start, end], sampled at two strikes inside the
        underlying's traded range (low + 1/5 and low + 3/5 of the range).
        """
        bars = self.get_bars(underlying, start, end)
        if not bars:
            raise DataUnavailableError(f"no spot data found for {underlying}")

        low = min(b.low for b in bars)
        high = max(b.high for b in bars)
        multiplier = strike_multiplier(low)
        step = (high - low) / 5
        levels = [low + step, low + 3 * step]
        strikes = [round_half_away(level / multiplier) * multiplier for level in levels]

        expiries: Dict[str, datetime] = {}
        for strike in strikes:
            for contract in self.get_contracts(underlying, strike=strike, start=start, end=end):
                expiries[f"{contract.expiration:%Y-%m-%d}"] = contract.expiration

        return [expiries[k] for k in sorted(expiries)]

    # =========================================================================
    # Option prices
    # =========================================================================

    def get_option_price(
        self,
        underlying: str,
        strike: float,
        expiration: datetime,
        option_type: str,
        as_of: datetime,
    ) -> float:
        """
        Last minute close in the 5 minutes before as_of, else the first
        minute open in the 5 minutes after it.
        """
        ticker = option_symbol(underlying, expiration, option_type, strike)
        logger.debug("Option price lookup: %s at %s", ticker, as_of.isoformat())

        before = self._get_aggregates(
            ticker, 1, 'minute',
            str(self._to_epoch_ms(as_of - self.QUOTE_WINDOW)),
            str(self._to_epoch_ms(as_of)),
        )
        if before:
            return before[-1].close

        after = self._get_aggregates(
            ticker, 1, 'minute',
            str(self._to_epoch_ms(as_of)),
            str(self._to_epoch_ms(as_of + self.QUOTE_WINDOW)),
        )
        if after:
            return after[0].open

        raise DataUnavailableError(f"no option bars found for {ticker} at {as_of:%Y-%m-%d %H:%M}")

    def get_atm_prices(
        self,
        underlying: str,
        expiration: datetime,
        as_of: datetime,
        spot: float,
    ) -> Tuple[float, float, float]:
        strike = self.round_to_nearest_strike(underlying, expiration, as_of, spot)
        try:
            call_price = self.get_option_price(underlying, strike, expiration, 'call', as_of)
            put_price = self.get_option_price(underlying, strike, expiration, 'put', as_of)
        except ProviderError:
            if self.secondary is None:
                raise
            logger.debug("ATM quotes unavailable for %s, delegating", underlying)
            return self.secondary.get_atm_prices(underlying, expiration, as_of, spot)
        return strike, call_price, put_price

    def round_to_nearest_strike(
        self,
        underlying: str,
        expiration: datetime,
        as_of: datetime,
        price: float,
    ) -> float:
        """Closest listed strike for the expiration; falls back when none are listed."""
        try:
            contracts = self.get_contracts(underlying, expiration=expiration)
        except ProviderError as e:
            logger.debug("Strike list unavailable for %s: %s", underlying, e)
            contracts = []

        strikes = [c.strike for c in contracts if c.expiration.date() == expiration.date()]
        if strikes:
            return closest(strikes, price)
        return super().round_to_nearest_strike(underlying, expiration, as_of, price)

    def get_earnings_dates(self, underlying: str) -> List[datetime]:
        if self.earnings_source is not None:
            return self.earnings_source.get_earnings_dates(underlying)
        return self._delegate('get_earnings_dates', underlying)
