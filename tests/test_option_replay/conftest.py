"""
Shared fixtures for option_replay tests.

Provides a deterministic in-memory provider, bar builders and a
baseline single-leg config. No fixture touches the network.
"""

import pytest
from datetime import datetime

from option_replay.config import EntryRule, ExitSpec, LegSpec, ReplayConfig, StrategySpec
from tests.mocks.mock_market_data import MockMarketDataProvider, make_bars


@pytest.fixture
def jan_bars():
    """Twenty-two weekday bars from 2024-01-01 (a Monday), all closing at 100."""
    return make_bars(datetime(2024, 1, 1), [100.0] * 22, weekdays_only=True)


@pytest.fixture
def calendar_bars():
    """One bar per calendar day, Jan 1 - Mar 31 2024, closing at 100."""
    return make_bars(datetime(2024, 1, 1), [100.0] * 91)


@pytest.fixture
def mock_provider(jan_bars):
    """Mock provider over jan_bars with a single Jan 31 expiry."""
    return MockMarketDataProvider(bars=jan_bars, expiries=[datetime(2024, 1, 31)])


@pytest.fixture
def short_call_config():
    """
    Sell one ATM call, 30 DTE, opened on 2024-01-01 only.

    No exit rules are set; tests add the ones they need.
    """
    return ReplayConfig(
        underlying='SPY',
        entry=EntryRule(
            mode='daily',
            start=datetime(2024, 1, 1),
            end=datetime(2024, 1, 1),
        ),
        strategy=StrategySpec(
            dte=30,
            legs=[LegSpec(side='sell', option_type='call', strike_rule='ATM')],
        ),
        exit=ExitSpec(),
    )
