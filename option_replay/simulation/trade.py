"""
Trade records produced by a replay.

A Trade is created once its legs and opening premium are resolved,
mutated only by the trade simulator (premium extremes, close fields),
and treated as final once ``closed_by`` is set.

Premium convention: bought legs add, sold legs subtract, all scaled by
quantity and the 100-share contract multiplier. A negative open premium
is a credit, a positive one a debit.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from option_replay.config import CONTRACT_MULTIPLIER, LegSpec


class ExitReason(str, Enum):
    """
    Reason a trade was closed.

    Threshold rules carry their parameter in the closed_by tag, built
    with tag(): 'profit_target_50.00%', 'stop_loss_100.00%',
    'underlying_move_5.00', 'max_days_10', 'exit_2days_before_expiry'.
    """
    PROFIT_TARGET = "profit_target"
    STOP_LOSS = "stop_loss"
    UNDERLYING_MOVE = "underlying_move"
    MAX_DAYS = "max_days"
    DAYS_TO_EXPIRY = "days_to_expiry"
    EXPIRED = "expired"
    DATA_END = "data_end"
    NO_DATA = "no_data"

    def tag(self, value: Optional[float] = None) -> str:
        """Format the closed_by tag for this reason."""
        if self is ExitReason.PROFIT_TARGET:
            return f"profit_target_{value:.2f}%"
        if self is ExitReason.STOP_LOSS:
            return f"stop_loss_{value:.2f}%"
        if self is ExitReason.UNDERLYING_MOVE:
            return f"underlying_move_{value:.2f}"
        if self is ExitReason.MAX_DAYS:
            return f"max_days_{int(value)}"
        if self is ExitReason.DAYS_TO_EXPIRY:
            return f"exit_{int(value)}days_before_expiry"
        return self.value


@dataclass
class TradeLeg:
    """A resolved leg: concrete strike, expiration and opening premium."""

    spec: LegSpec
    strike: float
    expiration: datetime
    open_premium: float               # Per-share price, sign not applied
    close_premium: Optional[float] = None

    @property
    def sign(self) -> int:
        return self.spec.sign

    @property
    def option_type(self) -> str:
        return self.spec.option_type

    @property
    def qty(self) -> int:
        return self.spec.qty

    def position_value(self, price: float) -> float:
        """Signed dollar value of this leg at a per-share price."""
        return self.sign * price * self.qty * CONTRACT_MULTIPLIER

    def to_dict(self) -> Dict[str, Any]:
        return {
            'side': self.spec.side,
            'option_type': self.spec.option_type,
            'strike_rule': self.spec.strike_rule,
            'qty': self.spec.qty,
            'strike': self.strike,
            'expiration': self.expiration.strftime('%Y-%m-%d'),
            'open_premium': self.open_premium,
            'close_premium': self.close_premium,
        }


@dataclass
class Trade:
    """
    One simulated strategy position from open to close.
    """

    # ── Identity & Open ─────────────────────────────────────────────
    id: int
    open_datetime: datetime
    underlying_at_open: float
    legs: List[TradeLeg] = field(default_factory=list)
    open_premium: float = 0.0

    # ── Excursions (initialized to open premium) ────────────────────
    high_premium: Optional[float] = None
    low_premium: Optional[float] = None

    # ── Close ───────────────────────────────────────────────────────
    close_datetime: Optional[datetime] = None
    underlying_at_close: float = 0.0
    close_premium: float = 0.0
    closed_by: str = ""

    def __post_init__(self):
        if self.high_premium is None:
            self.high_premium = self.open_premium
        if self.low_premium is None:
            self.low_premium = self.open_premium

    @property
    def is_closed(self) -> bool:
        return bool(self.closed_by)

    @property
    def pnl(self) -> float:
        """Close premium minus open premium (credit trades profit when this is positive)."""
        return self.close_premium - self.open_premium

    def update_extremes(self, total: float) -> None:
        """Track the running high/low of the strategy premium."""
        if self.is_closed:
            raise ValueError(f"trade {self.id} is closed ({self.closed_by})")
        self.high_premium = max(self.high_premium, total)
        self.low_premium = min(self.low_premium, total)

    def close(
        self,
        when: datetime,
        premium: float,
        underlying: float,
        reason: str,
    ) -> None:
        """
        Record the close. The trade is final afterwards.

        Raises:
            ValueError: Trade already closed, or reason is empty
        """
        if self.is_closed:
            raise ValueError(f"trade {self.id} already closed by {self.closed_by}")
        if not reason:
            raise ValueError("close reason must not be empty")
        self.close_datetime = when
        self.close_premium = premium
        self.underlying_at_close = underlying
        self.closed_by = reason

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'open_datetime': self.open_datetime.isoformat(),
            'close_datetime': self.close_datetime.isoformat() if self.close_datetime else None,
            'underlying_at_open': self.underlying_at_open,
            'underlying_at_close': self.underlying_at_close,
            'legs': [leg.to_dict() for leg in self.legs],
            'open_premium': self.open_premium,
            'close_premium': self.close_premium,
            'high_premium': self.high_premium,
            'low_premium': self.low_premium,
            'pnl': self.pnl,
            'closed_by': self.closed_by,
        }
