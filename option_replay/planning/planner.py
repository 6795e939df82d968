"""
Strategy Planner - resolves leg specs into concrete TradeLegs.

For each leg, in declaration order:
1. Expiration: open date + leg offset (or strategy DTE), snapped onto
   the listed expiries with the strategy's date match policy
2. Strike: ATM, ATM:<+/-n>, ATM:<+/-n%>, DELTA:<v>, or an arithmetic
   expression over earlier legs ({LEG1.STRIKE}, {LEG2.PREMIUM})
3. Premium: provider option price at the open datetime

Planning is all-or-nothing: the first leg that cannot be resolved
fails the whole plan with the originating error.

Usage:
    legs = plan_strategy(config.strategy, open_dt, 'SPY', spot=581.39,
                         expiries=expiries, provider=provider)
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from option_replay.config import LegSpec, StrategySpec
from option_replay.data_providers.base import MarketDataProvider, round_half_away
from option_replay.errors import (
    ConvergenceError,
    ExpirationNotFoundError,
    InvalidStrikeExpressionError,
    LegIndexOutOfRangeError,
    PlanningError,
    UnrecognizedStrikeRuleError,
)
from option_replay.logger import trace
from option_replay.planning.strike_expression import evaluate_expression, leg_refs, parse_expression
from option_replay.pricing import RISK_FREE_RATE, implied_vol_atm, strike_from_delta
from option_replay.scheduling.date_matching import match_date
from option_replay.simulation.trade import TradeLeg

logger = logging.getLogger(__name__)

DAYS_PER_YEAR = 365.25


def resolve_expiration(
    leg: LegSpec,
    strategy: StrategySpec,
    open_datetime: datetime,
    expiries: List[datetime],
) -> datetime:
    """
    Resolve a leg's expiration date.

    Raises:
        ExpirationNotFoundError: No listed expiry matches the policy
    """
    offset = leg.expiration if leg.expiration != 0 else strategy.dte
    target = open_datetime + timedelta(days=offset)
    expiration = match_date(target, expiries, strategy.date_match_type)
    if expiration is None:
        raise ExpirationNotFoundError(
            f"no expiration for {target:%Y-%m-%d} "
            f"({strategy.date_match_type.value}, {len(expiries)} listed)"
        )
    return expiration


def resolve_strike(
    rule: str,
    underlying: str,
    expiration: datetime,
    open_datetime: datetime,
    spot: float,
    resolved: Sequence[TradeLeg],
    provider: MarketDataProvider,
) -> float:
    """
    Resolve a strike rule to a listed strike.

    Args:
        rule: Strike rule (case-insensitive)
        underlying: Underlying symbol
        expiration: The leg's resolved expiration
        open_datetime: Trade open time
        spot: Underlying price at open
        resolved: Legs already resolved in this plan
        provider: Market data provider (strike rounding, ATM quotes)

    Returns:
        Strike rounded by the provider

    Raises:
        UnrecognizedStrikeRuleError: Rule matches no known form
        InvalidStrikeExpressionError: Bad number or malformed expression
        LegIndexOutOfRangeError: Expression references an unresolved leg
        PlanningError: DELTA rule could not solve implied volatility
    """
    text = (rule or '').strip().upper()

    if text == 'ATM':
        raw = spot
    elif text.startswith('ATM:'):
        raw = _atm_offset(text[len('ATM:'):], spot)
    elif text.startswith('DELTA:'):
        raw = _delta_strike(text[len('DELTA:'):], underlying, expiration, open_datetime, spot, provider)
    elif '{LEG' in text:
        raw = evaluate_expression(text, resolved)
    else:
        raise UnrecognizedStrikeRuleError(f"unrecognized strike expression: {rule!r}")

    strike = provider.round_to_nearest_strike(underlying, expiration, open_datetime, raw)
    trace(logger, "Strike rule %s -> raw %.4f -> strike %.2f", text, raw, strike)
    return strike


def _atm_offset(arg: str, spot: float) -> float:
    arg = arg.strip()
    try:
        if arg.endswith('%'):
            pct = float(arg[:-1])
            raw = spot * (1 + pct / 100.0)
        else:
            raw = spot + float(arg)
    except ValueError as e:
        raise InvalidStrikeExpressionError(f"invalid ATM offset: {arg!r}") from e
    return round_half_away(raw, 2)


def _delta_strike(
    arg: str,
    underlying: str,
    expiration: datetime,
    open_datetime: datetime,
    spot: float,
    provider: MarketDataProvider,
) -> float:
    delta = _delta_target(arg)
    atm_strike, call_price, put_price = provider.get_atm_prices(
        underlying, expiration, open_datetime, spot
    )
    T = (expiration - open_datetime).total_seconds() / 86400.0 / DAYS_PER_YEAR

    try:
        iv = implied_vol_atm(spot, atm_strike, T, RISK_FREE_RATE, call_price, put_price)
    except ConvergenceError as e:
        raise PlanningError(f"DELTA:{arg} implied vol failed: {e}") from e

    return strike_from_delta(spot, delta, RISK_FREE_RATE, 0.0, iv, T, is_call=True)


def _delta_target(arg: str) -> float:
    try:
        target = abs(float(arg.strip()))
    except ValueError as e:
        raise InvalidStrikeExpressionError(f"invalid delta value: {arg!r}") from e
    if target > 1:
        target /= 100.0
    if not 0 < target < 1:
        raise InvalidStrikeExpressionError(f"delta {arg!r} outside (0, 1)")
    return target


def check_strike_rule(rule: str, position: int) -> None:
    """
    Check a strike rule without market data.

    Args:
        rule: Strike rule as written in the config
        position: 1-indexed position of the leg the rule belongs to

    Raises:
        UnrecognizedStrikeRuleError: Rule matches no known form
        InvalidStrikeExpressionError: Bad number or malformed expression
        LegIndexOutOfRangeError: Expression references this leg or a later one
    """
    text = (rule or '').strip().upper()

    if text == 'ATM':
        return
    if text.startswith('ATM:'):
        _atm_offset(text[len('ATM:'):], 0.0)
    elif text.startswith('DELTA:'):
        _delta_target(text[len('DELTA:'):])
    elif '{LEG' in text:
        for ref in leg_refs(parse_expression(text)):
            if not 1 <= ref.index < position:
                raise LegIndexOutOfRangeError(
                    f"leg {position}: LEG{ref.index} must refer to an earlier leg"
                )
    else:
        raise UnrecognizedStrikeRuleError(f"unrecognized strike expression: {rule!r}")


def check_strategy(strategy: StrategySpec) -> None:
    """Check every leg's strike rule once, before any date is planned."""
    for position, spec in enumerate(strategy.legs, start=1):
        check_strike_rule(spec.strike_rule, position)


def plan_strategy(
    strategy: StrategySpec,
    open_datetime: datetime,
    underlying: str,
    spot: float,
    expiries: List[datetime],
    provider: MarketDataProvider,
    log: Optional[logging.Logger] = None,
) -> List[TradeLeg]:
    """
    Resolve every leg of a strategy for one open datetime.

    Args:
        strategy: Strategy spec (legs, DTE, match policy)
        open_datetime: Trade open time
        underlying: Underlying symbol
        spot: Underlying price at open
        expiries: Listed expiration dates
        provider: Market data provider
        log: Logger handle (defaults to the module logger)

    Returns:
        One TradeLeg per LegSpec, in order

    Raises:
        PlanningError: A leg's expiration or strike could not be resolved
        ConfigurationError: A strike rule is malformed or unrecognized
        ProviderError: A premium or quote could not be fetched
    """
    log = log or logger
    legs: List[TradeLeg] = []

    for i, spec in enumerate(strategy.legs, start=1):
        expiration = resolve_expiration(spec, strategy, open_datetime, expiries)
        strike = resolve_strike(
            spec.strike_rule, underlying, expiration, open_datetime, spot, legs, provider
        )
        premium = provider.get_option_price(
            underlying, strike, expiration, spec.option_type, open_datetime
        )
        log.debug(
            "Leg %d: %s %d %s %.2f exp %s @ %.2f",
            i, spec.side, spec.qty, spec.option_type, strike,
            expiration.strftime('%Y-%m-%d'), premium,
        )
        legs.append(TradeLeg(spec=spec, strike=strike, expiration=expiration, open_premium=premium))

    return legs
