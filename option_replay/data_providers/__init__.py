"""Market data providers for the replay engine."""

from option_replay.data_providers.base import (
    Bar,
    ChainedDataProvider,
    MarketDataProvider,
    OptionContract,
)
from option_replay.data_providers.local_file_provider import LocalFileDataProvider
from option_replay.data_providers.synthetic_provider import SyntheticDataProvider

__all__ = [
    'Bar',
    'ChainedDataProvider',
    'LocalFileDataProvider',
    'MarketDataProvider',
    'OptionContract',
    'SyntheticDataProvider',
]
