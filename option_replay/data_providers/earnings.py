"""
Alpha Vantage Earnings Calendar

Fetches reported quarterly earnings dates for earnings_offset entry
scheduling.

Rate Limit: 25 calls/day (free tier). Results are cached per symbol
for the life of the instance.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

import requests

from option_replay.errors import ConfigurationError, ProviderError
from option_replay.settings import get_alphavantage_key

logger = logging.getLogger(__name__)


class AlphaVantageEarnings:
    """
    Earnings dates from the Alpha Vantage EARNINGS endpoint.

    Usage:
        earnings = AlphaVantageEarnings()
        dates = earnings.get_earnings_dates('AAPL')
    """

    BASE_URL = "https://www.alphavantage.co/query"

    def __init__(
        self,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: int = 30,
    ):
        """
        Args:
            api_key: Alpha Vantage key. If None, uses ALPHAVANTAGE_API_KEY
                from the environment via option_replay.settings.
            session: Optional requests session (for connection reuse/testing)
            timeout: Request timeout in seconds

        Raises:
            ConfigurationError: If no API key is available.
        """
        self.api_key = api_key or get_alphavantage_key()
        if not self.api_key:
            raise ConfigurationError(
                "ALPHAVANTAGE_API_KEY not set. Add it to your .env file."
            )
        self._session = session or requests.Session()
        self.timeout = timeout
        self._cache: Dict[str, List[datetime]] = {}

    def get_earnings_dates(self, symbol: str) -> List[datetime]:
        """
        Reported quarterly earnings dates, in API order.

        Entries whose reportedDate cannot be parsed are skipped.

        Raises:
            ProviderError: On HTTP/network failure or an undecodable body
        """
        symbol = symbol.upper()
        if symbol in self._cache:
            return list(self._cache[symbol])

        params = {'function': 'EARNINGS', 'symbol': symbol, 'apikey': self.api_key}
        try:
            response = self._session.get(self.BASE_URL, params=params, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.exceptions.RequestException as e:
            raise ProviderError(f"earnings request failed for {symbol}: {e}") from e
        except ValueError as e:
            raise ProviderError(f"invalid earnings response for {symbol}: {e}") from e

        dates: List[datetime] = []
        for entry in payload.get('quarterlyEarnings', []):
            try:
                dates.append(datetime.strptime(entry.get('reportedDate', ''), '%Y-%m-%d'))
            except (TypeError, ValueError):
                continue

        logger.debug("Fetched %d earnings dates for %s", len(dates), symbol)
        self._cache[symbol] = dates
        return list(dates)
