"""
Replay Engine - Top-level Orchestrator

Coordinates a full strategy replay:
1. Fetch daily bars once and compute historical volatility
2. Fetch listed expiries for the run window
3. Resolve the entry schedule
4. Per scheduled date: plan legs, open the trade, simulate to close
5. Return trades ordered by id

A date with no bar, or whose legs cannot be planned, is skipped and
consumes no trade id. Configuration errors (including strike rules
that can never resolve), scheduling errors and bar/expiry fetch
failures abort the run.

Usage:
    from option_replay.engine import ReplayEngine
    from option_replay.config import ReplayConfig

    config = ReplayConfig.from_file('strategies/short_put.json')
    engine = ReplayEngine(config, SyntheticDataProvider(seed=config.seed))
    result = engine.run()
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from option_replay.config import CONTRACT_MULTIPLIER, EntryRule, ReplayConfig
from option_replay.data_providers.base import Bar, MarketDataProvider
from option_replay.errors import (
    ConfigurationError,
    ConvergenceError,
    PlanningError,
    ProviderError,
    ReplayError,
)
from option_replay.planning.planner import check_strategy, plan_strategy
from option_replay.pricing import annualized_volatility
from option_replay.scheduling.scheduler import check_entry, combine_date_time, schedule_dates
from option_replay.simulation.trade import Trade
from option_replay.simulation.trade_simulator import TradeSimulator

logger = logging.getLogger(__name__)

EXPIRY_WINDOW_PADDING_DAYS = 7


@dataclass
class ReplayResult:
    """Trades produced by a replay, ordered by id."""
    trades: List[Trade] = field(default_factory=list)
    underlying: str = ''
    hist_vol: float = 0.0
    scheduled_dates: List[datetime] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'underlying': self.underlying,
            'hist_vol': self.hist_vol,
            'scheduled': len(self.scheduled_dates),
            'trades': [t.to_dict() for t in self.trades],
        }


class ReplayEngine:
    """
    Top-level replay orchestrator.

    Runs sequentially: one trade is planned and simulated to close
    before the next scheduled date is considered.
    """

    def __init__(
        self,
        config: ReplayConfig,
        provider: MarketDataProvider,
        logger: Optional[logging.Logger] = None,
        earnings_source=None,
        now: Optional[datetime] = None,
    ):
        """
        Args:
            config: Replay configuration
            provider: Market data provider (possibly chained)
            logger: Logger handle for this run (defaults to the module logger)
            earnings_source: Object with get_earnings_dates(symbol); the
                provider is used when None
            now: Reference time for default entry ranges
        """
        self._config = config
        self._provider = provider
        self._log = logger or logging.getLogger(__name__)
        self._earnings = earnings_source or provider
        self._now = now

    def run(self) -> ReplayResult:
        """
        Execute the replay.

        Returns:
            ReplayResult with closed trades sorted by id

        Raises:
            ConfigurationError: Invalid config, entry rule or strike rule
                (includes SchedulingError)
            ProviderError: Bars or expiries could not be fetched
            ReplayError: No schedule dates resolved
        """
        config = self._config
        underlying = config.underlying.upper()
        entry = config.entry.with_defaults(self._now, underlying)
        check_entry(entry)

        issues = config.validate()
        if issues:
            raise ConfigurationError("; ".join(issues))
        check_strategy(config.strategy)

        self._log.info("Running replay: %s (%s to %s)", underlying,
                       entry.start.strftime('%Y-%m-%d'), entry.end.strftime('%Y-%m-%d'))

        bars = sorted(self._provider.get_bars(underlying, entry.start, entry.end),
                      key=lambda b: b.date)
        hist_vol = annualized_volatility([b.close for b in bars])
        self._log.info("Historical volatility: %.2f%% (%d bars)", hist_vol * 100, len(bars))

        expiries = self._fetch_expiries(underlying, entry)

        dates = schedule_dates(entry, bars, expiries, self._earnings)
        if not dates:
            raise ReplayError("no schedule dates resolved")
        self._log.info("Scheduled %d entry dates", len(dates))

        trades = self._open_and_simulate(underlying, entry, bars, expiries, dates, hist_vol)
        trades.sort(key=lambda t: t.id)

        self._log.info("Replay complete: %d trades", len(trades))
        return ReplayResult(
            trades=trades,
            underlying=underlying,
            hist_vol=hist_vol,
            scheduled_dates=dates,
        )

    def _fetch_expiries(self, underlying: str, entry: EntryRule) -> List[datetime]:
        """Expiries from entry start through end + longest leg offset + padding."""
        horizon = self._config.strategy.max_offset() + EXPIRY_WINDOW_PADDING_DAYS
        end = entry.end + timedelta(days=max(horizon, 0))
        expiries = self._provider.get_relevant_expiries(underlying, entry.start, end)
        self._log.debug("Fetched %d expiries through %s", len(expiries), end.strftime('%Y-%m-%d'))
        return list(expiries)

    def _open_and_simulate(
        self,
        underlying: str,
        entry: EntryRule,
        bars: List[Bar],
        expiries: List[datetime],
        dates: List[datetime],
        hist_vol: float,
    ) -> List[Trade]:
        config = self._config
        bar_by_day = {b.day: b for b in bars}
        bar_days = [b.day for b in bars]
        simulator = TradeSimulator(config.exit, self._provider, underlying, hist_vol, self._log)

        trades: List[Trade] = []
        next_id = 1

        for day in dates:
            if config.max_trades and len(trades) >= config.max_trades:
                self._log.info("Reached max_trades=%d, stopping", config.max_trades)
                break

            bar = bar_by_day.get(day.date())
            if bar is None:
                self._log.debug("No bar for %s, skipping", day.strftime('%Y-%m-%d'))
                continue

            open_dt = combine_date_time(bar.date, entry.time_of_day, entry.timezone).replace(tzinfo=None)

            try:
                legs = plan_strategy(
                    config.strategy, open_dt, underlying, bar.close, expiries,
                    self._provider, self._log,
                )
            except (PlanningError, ProviderError, ConvergenceError) as e:
                self._log.info("Skipping %s: %s", day.strftime('%Y-%m-%d'), e)
                continue

            open_premium = sum(
                leg.sign * leg.open_premium * leg.qty * CONTRACT_MULTIPLIER for leg in legs
            )
            trade = Trade(
                id=next_id,
                open_datetime=open_dt,
                underlying_at_open=bar.close,
                legs=legs,
                open_premium=open_premium,
            )
            next_id += 1

            simulator.simulate(trade, bars, bar_days)
            trades.append(trade)
            self._log.info(
                "Trade %d opened %s closed %s by %s (pnl %.2f)",
                trade.id, open_dt.strftime('%Y-%m-%d'),
                trade.close_datetime.strftime('%Y-%m-%d'), trade.closed_by, trade.pnl,
            )

        return trades
