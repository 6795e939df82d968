"""
Replay Exit Condition Evaluator

Evaluates the configured exit rules against a trade's marked premium
and the current bar, in strict priority order. The first rule that
fires wins; remaining rules are skipped.

Priority Order:
1. PROFIT_TARGET   - premium change >= +target %
2. STOP_LOSS       - premium change <= -target %
3. UNDERLYING_MOVE - |close - underlying at open| >= threshold
4. MAX_DAYS        - whole days in trade >= threshold
5. DAYS_TO_EXPIRY  - nearest leg expiry within threshold days

Premium change is (total - open) / max(|open|, 1.0) * 100, so credit
and debit trades are treated symmetrically on the signed change.
"""

import logging
import math
from typing import Optional

from option_replay.config import ExitSpec
from option_replay.data_providers.base import Bar
from option_replay.simulation.trade import ExitReason, Trade

logger = logging.getLogger(__name__)


class ExitEvalResult:
    """Result of exit condition evaluation."""

    __slots__ = ('should_exit', 'reason', 'closed_by', 'details')

    def __init__(
        self,
        should_exit: bool = False,
        reason: Optional[ExitReason] = None,
        closed_by: str = "",
        details: str = "",
    ):
        self.should_exit = should_exit
        self.reason = reason
        self.closed_by = closed_by  # Tag recorded on the trade
        self.details = details


def premium_change_pct(open_premium: float, total: float) -> float:
    """Percent change of the strategy premium relative to max(|open|, 1)."""
    base = max(abs(open_premium), 1.0)
    return (total - open_premium) / base * 100.0


def days_in_trade(trade: Trade, bar: Bar) -> int:
    """Whole calendar days between the trade's open and the bar."""
    return (bar.day - trade.open_datetime.date()).days


def min_days_to_expiry(trade: Trade, bar: Bar) -> Optional[int]:
    """Smallest remaining days-to-expiry across legs (None without legs)."""
    remaining = [
        math.ceil((leg.expiration - bar.date).total_seconds() / 86400.0)
        for leg in trade.legs
    ]
    return min(remaining) if remaining else None


class ExitEvaluator:
    """
    Evaluates exit rules for an open trade.

    Usage:
        evaluator = ExitEvaluator(config.exit)
        result = evaluator.evaluate(trade, bar, total)
        if result.should_exit:
            trade.close(bar.date, total, bar.close, result.closed_by)
    """

    def __init__(self, spec: ExitSpec):
        self._spec = spec

    def evaluate(self, trade: Trade, bar: Bar, total: float) -> ExitEvalResult:
        """
        Evaluate all exit rules for a trade against a bar.

        Args:
            trade: The open trade
            bar: Current bar
            total: Strategy premium marked at this bar

        Returns:
            ExitEvalResult with should_exit=True if any rule fired
        """
        spec = self._spec
        change = premium_change_pct(trade.open_premium, total)

        # ── Priority 1: PROFIT_TARGET ───────────────────────────────
        if spec.profit_target_pct is not None and change >= spec.profit_target_pct:
            return ExitEvalResult(
                True, ExitReason.PROFIT_TARGET,
                ExitReason.PROFIT_TARGET.tag(spec.profit_target_pct),
                f"Premium change {change:.2f}% >= {spec.profit_target_pct:.2f}%",
            )

        # ── Priority 2: STOP_LOSS ───────────────────────────────────
        if spec.stop_loss_pct is not None and change <= -spec.stop_loss_pct:
            return ExitEvalResult(
                True, ExitReason.STOP_LOSS,
                ExitReason.STOP_LOSS.tag(spec.stop_loss_pct),
                f"Premium change {change:.2f}% <= -{spec.stop_loss_pct:.2f}%",
            )

        # ── Priority 3: UNDERLYING_MOVE ─────────────────────────────
        if spec.underlying_move_px is not None:
            move = abs(bar.close - trade.underlying_at_open)
            if move >= spec.underlying_move_px:
                return ExitEvalResult(
                    True, ExitReason.UNDERLYING_MOVE,
                    ExitReason.UNDERLYING_MOVE.tag(spec.underlying_move_px),
                    f"Underlying moved {move:.2f} >= {spec.underlying_move_px:.2f}",
                )

        # ── Priority 4: MAX_DAYS ────────────────────────────────────
        if spec.max_days_in_trade is not None:
            held = days_in_trade(trade, bar)
            if held >= spec.max_days_in_trade:
                return ExitEvalResult(
                    True, ExitReason.MAX_DAYS,
                    ExitReason.MAX_DAYS.tag(spec.max_days_in_trade),
                    f"Held {held} days >= max {spec.max_days_in_trade}",
                )

        # ── Priority 5: DAYS_TO_EXPIRY ──────────────────────────────
        if spec.exit_by_days_to_expiry is not None:
            dte = min_days_to_expiry(trade, bar)
            if dte is not None and dte <= spec.exit_by_days_to_expiry:
                return ExitEvalResult(
                    True, ExitReason.DAYS_TO_EXPIRY,
                    ExitReason.DAYS_TO_EXPIRY.tag(spec.exit_by_days_to_expiry),
                    f"DTE {dte} <= threshold {spec.exit_by_days_to_expiry}",
                )

        return ExitEvalResult(should_exit=False)
