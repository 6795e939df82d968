"""
Local File Market Data Provider

Serves daily bars and strike intervals from CSV files in a directory:

    <data_dir>/intervals.csv     underlying,interval   (strike spacing)
    <data_dir>/<UNDERLYING>.csv  date,open,high,low,close,volume

Anything else (option quotes, expiries, earnings) is delegated to the
secondary provider.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

import pandas as pd

from option_replay.data_providers.base import (
    Bar,
    ChainedDataProvider,
    MarketDataProvider,
    round_to_increment,
)
from option_replay.errors import ProviderError

logger = logging.getLogger(__name__)

INTERVALS_FILE = 'intervals.csv'
BAR_COLUMNS = ['date', 'open', 'high', 'low', 'close']


class LocalFileDataProvider(ChainedDataProvider):
    """
    CSV-backed provider for bars and strike spacing.

    Usage:
        provider = LocalFileDataProvider('data/', secondary=SyntheticDataProvider(seed=1))
        strike = provider.round_to_nearest_strike('SPY', expiry, as_of, 581.39)
    """

    name = 'local-file'

    def __init__(
        self,
        data_dir: Union[str, Path],
        secondary: Optional[MarketDataProvider] = None,
    ):
        super().__init__(secondary)
        self.data_dir = Path(data_dir)
        self._intervals: Optional[Dict[str, float]] = None

    def get_bars(self, underlying: str, start: datetime, end: datetime) -> List[Bar]:
        path = self.data_dir / f"{underlying.upper()}.csv"
        if not path.exists():
            return self._delegate('get_bars', underlying, start, end)

        try:
            df = pd.read_csv(path)
        except (pd.errors.EmptyDataError, pd.errors.ParserError) as e:
            raise ProviderError(f"unreadable bar file {path}: {e}") from e

        df.columns = [c.strip().lower() for c in df.columns]
        missing = [c for c in BAR_COLUMNS if c not in df.columns]
        if missing:
            raise ProviderError(f"bar file {path} missing columns: {missing}")

        df['date'] = pd.to_datetime(df['date'])
        if 'volume' not in df.columns:
            df['volume'] = 0.0

        mask = (df['date'].dt.date >= start.date()) & (df['date'].dt.date <= end.date())
        df = df.loc[mask].sort_values('date', kind='stable').drop_duplicates('date', keep='first')

        bars = [
            Bar(
                date=row.date.to_pydatetime(),
                open=float(row.open),
                high=float(row.high),
                low=float(row.low),
                close=float(row.close),
                volume=float(row.volume),
            )
            for row in df.itertuples(index=False)
        ]
        logger.debug("Loaded %d bars for %s from %s", len(bars), underlying, path)
        return bars

    def get_interval(self, underlying: str) -> float:
        """
        Strike spacing for an underlying from intervals.csv.

        Returns 0.0 when the file or the underlying is missing.
        """
        if self._intervals is None:
            self._intervals = self._load_intervals()
        return self._intervals.get(underlying.strip().upper(), 0.0)

    def _load_intervals(self) -> Dict[str, float]:
        path = self.data_dir / INTERVALS_FILE
        if not path.exists():
            logger.warning("Intervals file not found: %s", path)
            return {}

        try:
            df = pd.read_csv(path, dtype=str)
        except (pd.errors.EmptyDataError, pd.errors.ParserError) as e:
            logger.error("Could not read %s: %s", path, e)
            return {}

        intervals: Dict[str, float] = {}
        if df.shape[1] < 2:
            return intervals

        for raw_symbol, raw_interval in zip(df.iloc[:, 0], df.iloc[:, 1]):
            if pd.isna(raw_symbol) or pd.isna(raw_interval):
                continue
            try:
                interval = float(str(raw_interval).strip())
            except ValueError:
                continue
            intervals[str(raw_symbol).strip().upper()] = interval
        return intervals

    def round_to_nearest_strike(
        self,
        underlying: str,
        expiration: datetime,
        as_of: datetime,
        price: float,
    ) -> float:
        interval = self.get_interval(underlying)
        if interval > 0:
            return round_to_increment(price, interval)
        logger.debug("No strike interval for %s, deferring to secondary", underlying)
        return super().round_to_nearest_strike(underlying, expiration, as_of, price)
