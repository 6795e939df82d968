"""
Replay Configuration

Dataclasses describing a replay run: when to enter (EntryRule), what
to open (StrategySpec / LegSpec), when to exit (ExitSpec) and run-level
settings (ReplayConfig).

ReplayConfig.from_dict() accepts the JSON layout used by strategy
files, where dte/date_match_type/strategy sit at the top level:

    {"underlying": "SPY", "entry": {...}, "dte": 30,
     "strategy": [{"side": "sell", "strike_rule": "ATM"}], "exit": {...}}
"""

import json
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from option_replay.errors import ConfigurationError
from option_replay.scheduling.date_matching import DateMatchType

VALID_SIDES = ('buy', 'sell')
VALID_OPTION_TYPES = ('call', 'put')
VALID_ENTRY_MODES = (
    '', 'daily', 'daily_time', 'nth_weekday', 'nth_month_day',
    'earnings_offset', 'expiry_offset',
)
CONTRACT_MULTIPLIER = 100


def parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse 'YYYY-MM-DD' or ISO-8601 strings into naive datetimes."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith('Z'):
        text = text[:-1]
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise ConfigurationError(f"invalid date: {value!r}") from e
    return parsed.replace(tzinfo=None)


@dataclass
class LegSpec:
    """One option leg as declared in the strategy."""
    side: str = 'buy'                # 'buy' or 'sell'
    option_type: str = 'call'        # 'call' or 'put'
    strike_rule: str = 'ATM'         # ATM, ATM:+10, ATM:-5%, DELTA:0.3, {LEG1.STRIKE}+5
    qty: int = 1                     # Contracts (ratio spreads)
    expiration: int = 0              # DTE override for this leg (0 = strategy default)

    def __post_init__(self):
        self.side = (self.side or 'buy').strip().lower()
        self.option_type = (self.option_type or 'call').strip().lower()
        if self.qty in (None, 0):
            self.qty = 1

    @property
    def sign(self) -> int:
        """+1 for bought legs, -1 for sold legs."""
        return -1 if self.side == 'sell' else 1

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LegSpec':
        return cls(
            side=data.get('side') or 'buy',
            option_type=data.get('option_type') or 'call',
            strike_rule=data.get('strike_rule') or 'ATM',
            qty=int(data.get('qty') or 1),
            expiration=int(data.get('expiration') or 0),
        )


@dataclass
class StrategySpec:
    """Ordered legs plus expiry defaults."""
    dte: int = 30
    date_match_type: DateMatchType = DateMatchType.NEAREST
    legs: List[LegSpec] = field(default_factory=list)

    def __post_init__(self):
        self.date_match_type = DateMatchType.parse(self.date_match_type)

    def max_offset(self) -> int:
        """Largest expiration offset any leg can ask for."""
        offsets = [self.dte] + [leg.expiration for leg in self.legs]
        return max(offsets)


@dataclass
class ExitSpec:
    """
    Exit thresholds. None disables a rule.

    Evaluated in this order: profit target, stop loss, underlying move,
    max days in trade, exit by days to expiry.
    """
    profit_target_pct: Optional[float] = None     # e.g. 50.0 for 50%
    stop_loss_pct: Optional[float] = None         # e.g. 100.0 for 100%
    underlying_move_px: Optional[float] = None    # e.g. 5.0 for a $5 move
    max_days_in_trade: Optional[int] = None       # e.g. 10
    exit_by_days_to_expiry: Optional[int] = None  # e.g. 2

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ExitSpec':
        data = data or {}

        def _float(key):
            value = data.get(key)
            return None if value is None else float(value)

        def _int(key):
            value = data.get(key)
            return None if value is None else int(value)

        return cls(
            profit_target_pct=_float('profit_target_pct'),
            stop_loss_pct=_float('stop_loss_pct'),
            underlying_move_px=_float('underlying_move_px'),
            max_days_in_trade=_int('max_days_in_trade'),
            exit_by_days_to_expiry=_int('exit_by_days_to_expiry'),
        )


@dataclass
class EntryRule:
    """
    When to open trades.

    offsets meaning depends on mode: weekdays (Monday=0) for nth_weekday,
    day numbers for nth_month_day, a single day offset for
    earnings_offset/expiry_offset.
    """
    mode: str = 'daily'
    underlying: str = ''
    offsets: List[int] = field(default_factory=list)
    date_match_type: DateMatchType = DateMatchType.NEAREST
    time_of_day: str = ''             # 'HH:MM', empty = midnight
    timezone: str = 'America/New_York'
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def __post_init__(self):
        self.date_match_type = DateMatchType.parse(self.date_match_type)
        self.mode = (self.mode or 'daily').strip().lower()

    def with_defaults(self, now: Optional[datetime] = None, underlying: str = '') -> 'EntryRule':
        """
        Copy with missing fields filled in.

        start defaults to one year before now, end to now, underlying to
        the run's underlying (or SPY) and timezone to America/New_York.
        A start after end is kept as-is so scheduling can reject it.
        """
        now = now or datetime.now()
        today = datetime(now.year, now.month, now.day)
        return replace(
            self,
            start=self.start or today - timedelta(days=365),
            end=self.end or today,
            underlying=(self.underlying or underlying or 'SPY').upper(),
            timezone=self.timezone or 'America/New_York',
        )

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'EntryRule':
        data = data or {}
        offsets = data.get('offsets')
        if offsets is None:
            offsets = data.get('nth_list') or []
        return cls(
            mode=data.get('mode') or 'daily',
            underlying=data.get('underlying') or '',
            offsets=[int(v) for v in offsets],
            date_match_type=data.get('date_match_type'),
            time_of_day=data.get('time_of_day') or '',
            timezone=data.get('timezone') or 'America/New_York',
            start=parse_datetime(data.get('start') or data.get('start_date')),
            end=parse_datetime(data.get('end') or data.get('end_date')),
        )


@dataclass
class ReplayConfig:
    """
    Master configuration for a replay run.
    """

    # ── Underlying & Entry ─────────────────────────────────────────
    underlying: str = 'SPY'
    entry: EntryRule = field(default_factory=EntryRule)

    # ── Strategy ───────────────────────────────────────────────────
    strategy: StrategySpec = field(default_factory=StrategySpec)

    # ── Exits ──────────────────────────────────────────────────────
    exit: ExitSpec = field(default_factory=ExitSpec)

    # ── Run Limits ─────────────────────────────────────────────────
    max_trades: int = 0               # 0 = unlimited

    # ── Output ─────────────────────────────────────────────────────
    report_dir: str = 'out'

    # ── Reproducibility & Logging ──────────────────────────────────
    seed: Optional[int] = None        # Synthetic provider seed
    verbosity: int = 1                # 0=errors, 1=info, 2=debug, 3=trace

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ReplayConfig':
        """
        Build a ReplayConfig from a parsed strategy JSON document.

        Raises:
            ConfigurationError: On values of the wrong type
        """
        if not isinstance(data, dict):
            raise ConfigurationError("config must be a JSON object")

        try:
            raw_strategy = data.get('strategy') or []
            if isinstance(raw_strategy, dict):
                legs_data = raw_strategy.get('legs') or []
                dte = raw_strategy.get('dte', data.get('dte', 30))
                match_type = raw_strategy.get('date_match_type', data.get('date_match_type'))
            else:
                legs_data = raw_strategy
                dte = data.get('dte', 30)
                match_type = data.get('date_match_type')

            strategy = StrategySpec(
                dte=int(dte if dte is not None else 30),
                date_match_type=match_type,
                legs=[LegSpec.from_dict(leg) for leg in legs_data],
            )

            seed = data.get('seed')
            return cls(
                underlying=(data.get('underlying') or 'SPY').upper(),
                entry=EntryRule.from_dict(data.get('entry')),
                strategy=strategy,
                exit=ExitSpec.from_dict(data.get('exit')),
                max_trades=int(data.get('max_trades') or 0),
                report_dir=data.get('report_dir') or data.get('output_dir') or 'out',
                seed=None if seed in (None, 0) else int(seed),
                verbosity=int(data.get('verbosity', 1)),
            )
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigurationError(f"invalid config: {e}") from e

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> 'ReplayConfig':
        """Load a JSON strategy file."""
        path = Path(path)
        try:
            with open(path) as f:
                data = json.load(f)
        except OSError as e:
            raise ConfigurationError(f"reading config {path}: {e}") from e
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"invalid JSON in {path}: {e}") from e
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation (dates as ISO strings)."""
        data = asdict(self)
        entry = data['entry']
        entry['date_match_type'] = self.entry.date_match_type.value
        entry['start'] = self.entry.start.isoformat() if self.entry.start else None
        entry['end'] = self.entry.end.isoformat() if self.entry.end else None
        data['strategy']['date_match_type'] = self.strategy.date_match_type.value
        return data

    def validate(self) -> List[str]:
        """Validate configuration and return list of issues."""
        issues = []
        if not self.underlying:
            issues.append('No underlying configured')
        if not self.strategy.legs:
            issues.append('Strategy has no legs')
        for i, leg in enumerate(self.strategy.legs, start=1):
            if leg.side not in VALID_SIDES:
                issues.append(f'Leg {i}: invalid side {leg.side!r}')
            if leg.option_type not in VALID_OPTION_TYPES:
                issues.append(f'Leg {i}: invalid option_type {leg.option_type!r}')
            if leg.qty < 1:
                issues.append(f'Leg {i}: qty must be at least 1')
            if not (leg.strike_rule or '').strip():
                issues.append(f'Leg {i}: empty strike_rule')
        if self.entry.mode not in VALID_ENTRY_MODES:
            issues.append(f'Invalid entry mode: {self.entry.mode}')
        for name in ('profit_target_pct', 'stop_loss_pct', 'underlying_move_px',
                     'max_days_in_trade', 'exit_by_days_to_expiry'):
            value = getattr(self.exit, name)
            if value is not None and value < 0:
                issues.append(f'Exit {name} must not be negative')
        if self.max_trades < 0:
            issues.append('max_trades must not be negative')
        if self.entry.start and self.entry.end and self.entry.start > self.entry.end:
            issues.append('entry start must not be after entry end')
        return issues
