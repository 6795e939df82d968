"""
Results Formatter - summary statistics over a replay.

Turns the engine's ReplayResult into:
- A trades DataFrame (one row per trade, days held included)
- P&L stats: total/average, win rate, average winner/loser,
  profit factor, max drawdown on the cumulative P&L curve
- Counts by closed_by tag and P&L by the weekday a trade opened on

P&L per trade is close premium minus open premium, in dollars.

Usage:
    stats = ResultsFormatter.format(engine.run(), config)
    print(stats.summary())
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pandas as pd

from option_replay.config import ReplayConfig
from option_replay.engine import ReplayResult
from option_replay.simulation.trade import Trade

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ['Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat', 'Sun']


@dataclass
class ReplayResults:
    """Statistics for one replay run, built by ResultsFormatter.format()."""

    # ── Trades ──────────────────────────────────────────────────────
    trades_df: pd.DataFrame = field(default_factory=pd.DataFrame)
    trade_count: int = 0

    # ── P&L ─────────────────────────────────────────────────────────
    total_pnl: float = 0.0
    win_rate: float = 0.0
    avg_pnl: float = 0.0
    avg_winner: float = 0.0
    avg_loser: float = 0.0
    profit_factor: float = 0.0
    max_drawdown: float = 0.0
    avg_days_in_trade: float = 0.0
    equity_curve: pd.Series = field(default_factory=lambda: pd.Series(dtype=float))

    # ── Breakdowns ──────────────────────────────────────────────────
    by_closed_by: Dict[str, int] = field(default_factory=dict)
    by_weekday: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    # ── Run info ────────────────────────────────────────────────────
    hist_vol: float = 0.0
    config_summary: Dict[str, Any] = field(default_factory=dict)

    def summary(self) -> str:
        """Text block printed by the CLI after a run."""
        rule = "=" * 60
        lines = [
            rule,
            "REPLAY RESULTS",
            rule,
            f"Trades:          {self.trade_count}",
            f"Net P&L:         ${self.total_pnl:,.2f}",
            f"Win rate:        {self.win_rate:.1%}",
            f"Mean P&L/trade:  ${self.avg_pnl:,.2f}",
            f"Mean winner:     ${self.avg_winner:,.2f}",
            f"Mean loser:      ${self.avg_loser:,.2f}",
            f"Profit factor:   {self.profit_factor:.2f}",
            f"Max drawdown:    ${self.max_drawdown:,.2f}",
            f"Mean days held:  {self.avg_days_in_trade:.1f}",
            f"Historical vol:  {self.hist_vol:.2%}",
            "",
            "Closed by:",
        ]
        for tag, count in sorted(self.by_closed_by.items(), key=lambda item: -item[1]):
            share = count / self.trade_count if self.trade_count else 0.0
            lines.append(f"  {tag:28s} {count:4d} ({share:6.1%})")

        if self.by_weekday:
            lines += ["", "Opened on:"]
            for name in WEEKDAY_NAMES:
                day = self.by_weekday.get(name)
                if day:
                    lines.append(
                        f"  {name}: {day['count']} trades, {day['win_rate']:.1%} won, "
                        f"net ${day['total_pnl']:,.2f}"
                    )

        lines.append(rule)
        return "\n".join(lines)


class ResultsFormatter:
    """Builds ReplayResults from a ReplayResult."""

    @staticmethod
    def format(
        result: ReplayResult,
        config: Optional[ReplayConfig] = None,
    ) -> ReplayResults:
        """
        Compute summary statistics for a replay.

        Args:
            result: Engine output
            config: Config used for the run (fills config_summary)

        Returns:
            ReplayResults; all-zero stats when there are no trades
        """
        stats = ReplayResults(trade_count=len(result.trades), hist_vol=result.hist_vol)
        if config is not None:
            stats.config_summary = {
                'underlying': config.underlying,
                'entry_mode': config.entry.mode,
                'dte': config.strategy.dte,
                'legs': len(config.strategy.legs),
                'max_trades': config.max_trades,
            }
        if not result.trades:
            return stats

        df = ResultsFormatter._build_trades_df(result.trades)
        stats.trades_df = df

        pnl = df['pnl']
        wins = pnl[pnl > 0]
        losses = pnl[pnl <= 0]
        stats.total_pnl = float(pnl.sum())
        stats.avg_pnl = float(pnl.mean())
        stats.win_rate = len(wins) / len(pnl)
        stats.avg_winner = float(wins.mean()) if len(wins) else 0.0
        stats.avg_loser = float(losses.mean()) if len(losses) else 0.0

        gross_loss = float(-losses.sum())
        stats.profit_factor = float(wins.sum()) / gross_loss if gross_loss > 0 else float('inf')

        equity = pd.Series(pnl.values, index=df['id'].values).cumsum()
        stats.equity_curve = equity
        stats.max_drawdown = float((equity.cummax() - equity).max())

        stats.avg_days_in_trade = float(df['days_in_trade'].mean())
        stats.by_closed_by = {tag: int(n) for tag, n in df['closed_by'].value_counts().items()}
        stats.by_weekday = ResultsFormatter._breakdown_by_weekday(df)

        logger.debug("Formatted %d trades, net P&L %.2f", stats.trade_count, stats.total_pnl)
        return stats

    @staticmethod
    def _build_trades_df(trades: List[Trade]) -> pd.DataFrame:
        df = pd.DataFrame([{
            'id': t.id,
            'open_time': t.open_datetime,
            'close_time': t.close_datetime,
            'open_underlying': t.underlying_at_open,
            'close_underlying': t.underlying_at_close,
            'open_premium': t.open_premium,
            'close_premium': t.close_premium,
            'high_premium': t.high_premium,
            'low_premium': t.low_premium,
            'pnl': t.pnl,
            'closed_by': t.closed_by,
            'legs': len(t.legs),
        } for t in trades])
        df['days_in_trade'] = (df['close_time'].dt.normalize() - df['open_time'].dt.normalize()).dt.days
        return df

    @staticmethod
    def _breakdown_by_weekday(df: pd.DataFrame) -> Dict[str, Dict[str, Any]]:
        """Count, net/mean P&L and win rate by the weekday each trade opened on."""
        grouped = df.groupby(df['open_time'].dt.weekday)['pnl']
        breakdown = {}
        for weekday, pnl in grouped:
            breakdown[WEEKDAY_NAMES[weekday]] = {
                'count': int(len(pnl)),
                'total_pnl': float(pnl.sum()),
                'avg_pnl': float(pnl.mean()),
                'win_rate': float((pnl > 0).mean()),
            }
        return breakdown
