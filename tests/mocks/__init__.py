"""
Mock objects for testing option_replay.
"""

from tests.mocks.mock_market_data import MockMarketDataProvider, make_bars

__all__ = ['MockMarketDataProvider', 'make_bars']
