"""
Tests for option_replay/engine.py - full replay orchestration against
the in-memory mock provider.
"""

import pytest
from dataclasses import replace
from datetime import datetime

from option_replay.config import EntryRule, ExitSpec, LegSpec
from option_replay.engine import ReplayEngine, ReplayResult
from option_replay.errors import ConfigurationError, DataUnavailableError, ReplayError, SchedulingError
from tests.mocks.mock_market_data import MockMarketDataProvider

JAN_31 = datetime(2024, 1, 31)


def _week_config(config, **exit_kwargs):
    """Daily entries Mon Jan 1 - Fri Jan 5, each closed on its open bar."""
    exit_kwargs.setdefault('max_days_in_trade', 0)
    return replace(
        config,
        entry=EntryRule(mode='daily', start=datetime(2024, 1, 1), end=datetime(2024, 1, 5)),
        exit=ExitSpec(**exit_kwargs),
    )


# =============================================================================
# Credit trade scenario
# =============================================================================

class TestCreditTrade:
    """Short ATM call for 2.50 with a 50% profit target."""

    def test_closes_at_half_the_credit(self, mock_provider, short_call_config):
        mock_provider.add_mock_price(100.0, JAN_31, 'call', 2.50, as_of=datetime(2024, 1, 1))
        mock_provider.add_mock_price(100.0, JAN_31, 'call', 1.26, as_of=datetime(2024, 1, 2))
        mock_provider.add_mock_price(100.0, JAN_31, 'call', 1.25, as_of=datetime(2024, 1, 3))
        config = replace(short_call_config, exit=ExitSpec(profit_target_pct=50.0))

        result = ReplayEngine(config, mock_provider).run()

        assert len(result.trades) == 1
        trade = result.trades[0]
        assert trade.id == 1
        assert trade.open_premium == -250.0
        assert trade.legs[0].strike == 100.0
        assert trade.legs[0].expiration == JAN_31
        assert trade.closed_by == 'profit_target_50.00%'
        assert trade.close_datetime == datetime(2024, 1, 3), "-126 on Jan 2 is only 49.6%"
        assert trade.close_premium == -125.0
        assert trade.pnl == 125.0

    def test_result_metadata(self, mock_provider, short_call_config):
        mock_provider.set_default_price(2.0)
        config = replace(short_call_config, exit=ExitSpec(max_days_in_trade=0))
        result = ReplayEngine(config, mock_provider).run()

        assert isinstance(result, ReplayResult)
        assert result.underlying == 'SPY'
        assert result.scheduled_dates == [datetime(2024, 1, 1)]
        data = result.to_dict()
        assert data['scheduled'] == 1
        assert data['trades'][0]['closed_by'] == 'max_days_0'


# =============================================================================
# Scheduling and ids
# =============================================================================

class TestTradeSequence:
    """Trade ids, skipped dates and max_trades."""

    def test_one_trade_per_scheduled_day(self, mock_provider, short_call_config):
        mock_provider.set_default_price(2.0)
        result = ReplayEngine(_week_config(short_call_config), mock_provider).run()
        assert [t.id for t in result.trades] == [1, 2, 3, 4, 5]
        assert [t.open_datetime.day for t in result.trades] == [1, 2, 3, 4, 5]

    def test_skipped_date_consumes_no_id(self, mock_provider, short_call_config):
        def price(strike, expiration, option_type, as_of):
            if as_of.day == 2:
                raise DataUnavailableError("no quote")
            return 2.0
        mock_provider.set_default_price(price)

        result = ReplayEngine(_week_config(short_call_config), mock_provider).run()

        assert [t.id for t in result.trades] == [1, 2, 3, 4]
        assert [t.open_datetime.day for t in result.trades] == [1, 3, 4, 5]

    @pytest.mark.parametrize('legs', [
        [LegSpec('sell', 'call', 'OTM')],
        [LegSpec('sell', 'call', '{LEG2.STRIKE}+5'), LegSpec('buy', 'call', 'ATM')],
        [LegSpec('sell', 'call', 'ATM'), LegSpec('buy', 'call', '{LEG1.STRIKE}+')],
    ])
    def test_unresolvable_strike_rule_aborts_run(self, mock_provider, short_call_config, legs):
        """A rule that can never resolve fails the run instead of skipping every date."""
        mock_provider.set_default_price(2.0)
        config = _week_config(short_call_config)
        config.strategy.legs = legs
        with pytest.raises(ConfigurationError):
            ReplayEngine(config, mock_provider).run()
        assert mock_provider.calls.get('get_bars', 0) == 0, "Rules are checked before any data is fetched"

    def test_division_by_zero_at_plan_time_aborts_run(self, mock_provider, short_call_config):
        mock_provider.set_default_price(0.0)
        config = _week_config(short_call_config)
        config.strategy.legs = [
            LegSpec('sell', 'call', 'ATM'),
            LegSpec('buy', 'call', '{LEG1.STRIKE}/{LEG1.PREMIUM}'),
        ]
        with pytest.raises(ConfigurationError, match='division by zero'):
            ReplayEngine(config, mock_provider).run()

    def test_max_trades(self, mock_provider, short_call_config):
        mock_provider.set_default_price(2.0)
        config = replace(_week_config(short_call_config), max_trades=2)
        result = ReplayEngine(config, mock_provider).run()
        assert [t.id for t in result.trades] == [1, 2]

    def test_time_of_day_applied(self, mock_provider, short_call_config):
        mock_provider.set_default_price(2.0)
        config = _week_config(short_call_config)
        config.entry.time_of_day = '09:30'
        trade = ReplayEngine(config, mock_provider).run().trades[0]
        assert trade.open_datetime == datetime(2024, 1, 1, 9, 30)
        assert trade.open_datetime.tzinfo is None

    def test_multi_leg_open_premium(self, mock_provider, short_call_config):
        """Sell 1 ATM call at 2.50, buy 2 calls 5 higher at 1.00: -250 + 200."""
        mock_provider.set_default_price(lambda strike, *args: 2.5 if strike == 100.0 else 1.0)
        config = _week_config(short_call_config)
        config.strategy.legs = [
            LegSpec('sell', 'call', 'ATM'),
            LegSpec('buy', 'call', '{LEG1.STRIKE}+5', qty=2),
        ]
        trade = ReplayEngine(config, mock_provider).run().trades[0]
        assert [leg.strike for leg in trade.legs] == [100.0, 105.0]
        assert trade.open_premium == pytest.approx(-50.0)

    def test_expiry_window_covers_dte(self, short_call_config, jan_bars):
        """Expiries are requested past entry end by the longest offset."""
        mock = MockMarketDataProvider(bars=jan_bars, expiries=[datetime(2024, 2, 2)])
        mock.set_default_price(2.0)
        config = replace(short_call_config, exit=ExitSpec(max_days_in_trade=0))
        trade = ReplayEngine(config, mock).run().trades[0]
        assert trade.legs[0].expiration == datetime(2024, 2, 2)


# =============================================================================
# Errors
# =============================================================================

class TestEngineErrors:
    """Run-level failures."""

    def test_no_bars(self, short_call_config):
        mock = MockMarketDataProvider(bars=[], expiries=[JAN_31])
        with pytest.raises(ReplayError, match='no schedule dates'):
            ReplayEngine(short_call_config, mock).run()

    def test_start_after_end(self, mock_provider, short_call_config):
        config = replace(short_call_config, entry=EntryRule(
            start=datetime(2024, 2, 1), end=datetime(2024, 1, 1)))
        with pytest.raises(SchedulingError):
            ReplayEngine(config, mock_provider).run()
        assert mock_provider.calls['get_bars'] == 0, "Range is checked before fetching data"

    def test_invalid_config(self, mock_provider, short_call_config):
        config = replace(short_call_config, max_trades=-1)
        with pytest.raises(ConfigurationError, match='max_trades'):
            ReplayEngine(config, mock_provider).run()

    def test_no_legs(self, mock_provider, short_call_config):
        config = replace(short_call_config)
        config.strategy = replace(config.strategy, legs=[])
        with pytest.raises(ConfigurationError, match='no legs'):
            ReplayEngine(config, mock_provider).run()

    def test_default_range_uses_now(self, mock_provider, short_call_config):
        """Without start/end the last year up to ``now`` is replayed."""
        mock_provider.set_default_price(2.0)
        config = replace(short_call_config, entry=EntryRule(mode='nth_weekday', offsets=[0]),
                         exit=ExitSpec(max_days_in_trade=0))
        result = ReplayEngine(config, mock_provider, now=datetime(2024, 1, 10)).run()
        assert [t.open_datetime.day for t in result.trades] == [1, 8]
