"""
Trade Simulator - forward walk for a single opened trade.

Starting at the first bar on or after the open date, each bar:
1. Marks every leg (intrinsic value at/after expiry, otherwise the
   provider quote with a Black-Scholes fallback at historical vol)
2. Updates the trade's high/low premium
3. Evaluates exit rules in priority order
4. Closes as 'expired' once every leg has expired

Running out of bars closes the trade as 'data_end' at the last bar with
the HIGH premium recorded as the close premium. A trade with no bar on
or after its open date closes immediately as 'no_data' at the open
premium.
"""

import logging
from bisect import bisect_left
from datetime import date
from typing import List, Optional, Sequence

from option_replay.config import ExitSpec
from option_replay.data_providers.base import Bar, MarketDataProvider
from option_replay.errors import ProviderError
from option_replay.exits.exit_evaluator import ExitEvaluator
from option_replay.logger import trace
from option_replay.pricing import RISK_FREE_RATE, black_scholes_price, intrinsic_value
from option_replay.simulation.trade import ExitReason, Trade, TradeLeg

logger = logging.getLogger(__name__)

SECONDS_PER_YEAR = 365 * 24 * 3600


class TradeSimulator:
    """
    Bar-by-bar simulation of an open trade until it closes.

    Usage:
        sim = TradeSimulator(config.exit, provider, 'SPY', hist_vol=0.18)
        sim.simulate(trade, bars)
    """

    def __init__(
        self,
        exit_spec: ExitSpec,
        provider: MarketDataProvider,
        underlying: str,
        hist_vol: float,
        log: Optional[logging.Logger] = None,
    ):
        self._provider = provider
        self._underlying = underlying
        self._hist_vol = hist_vol
        self._exit_eval = ExitEvaluator(exit_spec)
        self._log = log or logger

    def simulate(
        self,
        trade: Trade,
        bars: Sequence[Bar],
        bar_days: Optional[List[date]] = None,
    ) -> Trade:
        """
        Walk forward from the trade's open date until it closes.

        Args:
            trade: Freshly opened trade
            bars: Bars sorted ascending by date
            bar_days: Pre-computed calendar dates of ``bars`` (optional)

        Returns:
            The same trade, closed
        """
        if bar_days is None:
            bar_days = [b.day for b in bars]

        start = bisect_left(bar_days, trade.open_datetime.date())
        if start >= len(bars):
            for leg in trade.legs:
                leg.close_premium = leg.open_premium
            trade.close(trade.open_datetime, trade.open_premium,
                        trade.underlying_at_open, ExitReason.NO_DATA.value)
            self._log.debug("Trade %d: no bars on or after open", trade.id)
            return trade

        for bar in bars[start:]:
            prices = [self._leg_price(leg, bar) for leg in trade.legs]
            total = sum(leg.position_value(p) for leg, p in zip(trade.legs, prices))
            trade.update_extremes(total)
            trace(self._log, "Trade %d %s: total %.2f (high %.2f, low %.2f)",
                  trade.id, bar.date.strftime('%Y-%m-%d'), total,
                  trade.high_premium, trade.low_premium)

            result = self._exit_eval.evaluate(trade, bar, total)
            if result.should_exit:
                self._close(trade, bar, total, prices, result.closed_by)
                self._log.debug("Trade %d: %s", trade.id, result.details)
                return trade

            if all(bar.day >= leg.expiration.date() for leg in trade.legs):
                self._close(trade, bar, total, prices, ExitReason.EXPIRED.value)
                return trade

        # Out of data: record the best excursion as the close premium
        last = bars[-1]
        self._close(trade, last, trade.high_premium, prices, ExitReason.DATA_END.value)
        return trade

    def _leg_price(self, leg: TradeLeg, bar: Bar) -> float:
        """Per-share price of a leg at a bar."""
        if bar.day >= leg.expiration.date():
            return intrinsic_value(bar.close, leg.strike, leg.option_type)

        try:
            price = self._provider.get_option_price(
                self._underlying, leg.strike, leg.expiration, leg.option_type, bar.date
            )
        except ProviderError as e:
            trace(self._log, "Quote unavailable for %.2f %s on %s: %s",
                  leg.strike, leg.option_type, bar.date.strftime('%Y-%m-%d'), e)
            price = 0.0

        if price > 0:
            return price

        T = (leg.expiration - bar.date).total_seconds() / SECONDS_PER_YEAR
        return black_scholes_price(
            bar.close, leg.strike, T, RISK_FREE_RATE, self._hist_vol, leg.option_type
        )

    @staticmethod
    def _close(
        trade: Trade,
        bar: Bar,
        premium: float,
        prices: List[float],
        reason: str,
    ) -> None:
        for leg, price in zip(trade.legs, prices):
            leg.close_premium = price
        trade.close(bar.date, premium, bar.close, reason)
