"""
Option Pricing Math for the Replay Pipeline.

Closed-form European option pricing used to backstop missing market
quotes and to turn a target delta into a strike.

Features:
- Black-Scholes price and vega (intrinsic value when T <= 0 or sigma <= 0)
- Newton-Raphson implied volatility, generic and at-the-money
- Inverse standard normal CDF (Acklam rational approximation)
- Strike from target delta
- Annualized historical volatility from closes

Usage:
    from option_replay.pricing import black_scholes_price, implied_vol_atm

    price = black_scholes_price(S=581.39, K=580, T=30/365, r=0.02, sigma=0.18,
                                option_type='call')
    iv = implied_vol_atm(S=581.39, K=581, T=30/365.25, r=0.02,
                         call_price=9.8, put_price=8.9)
"""

from typing import Literal, Sequence

import numpy as np
from scipy.stats import norm

from option_replay.errors import ConvergenceError

RISK_FREE_RATE = 0.02
TRADING_DAYS_PER_YEAR = 252
DEFAULT_HISTORICAL_VOL = 0.30

# Implied volatility solver parameters
IV_SEED = 0.20
IV_TOLERANCE = 1e-6
IV_MAX_ITERATIONS = 100
IV_MIN_SIGMA = 1e-4
IV_MAX_SIGMA = 5.0
IV_MIN_VEGA = 1e-8

# Acklam inverse normal CDF coefficients
_A = [
    -3.969683028665376e+01,
    2.209460984245205e+02,
    -2.759285104469687e+02,
    1.383577518672690e+02,
    -3.066479806614716e+01,
    2.506628277459239e+00,
]
_B = [
    -5.447609879822406e+01,
    1.615858368580409e+02,
    -1.556989798598866e+02,
    6.680131188771972e+01,
    -1.328068155288572e+01,
]
_C = [
    -7.784894002430293e-03,
    -3.223964580411365e-01,
    -2.400758277161838e+00,
    -2.549732539343734e+00,
    4.374664141464968e+00,
    2.938163982698783e+00,
]
_D = [
    7.784695709041462e-03,
    3.224671290700398e-01,
    2.445134137142996e+00,
    3.754408661907416e+00,
]
_P_LOW = 0.02425
_P_HIGH = 1 - _P_LOW


def intrinsic_value(S: float, K: float, option_type: str = 'call') -> float:
    """Payoff if exercised now: max(0, S-K) for calls, max(0, K-S) for puts."""
    if option_type.lower() == 'put':
        return max(K - S, 0.0)
    return max(S - K, 0.0)


def _d1(S: float, K: float, T: float, r: float, sigma: float) -> float:
    """Calculate d1 for Black-Scholes formula."""
    return (np.log(S / K) + (r + 0.5 * sigma ** 2) * T) / (sigma * np.sqrt(T))


def black_scholes_price(
    S: float,
    K: float,
    T: float,
    r: float,
    sigma: float,
    option_type: Literal['call', 'put'] = 'call',
) -> float:
    """
    Calculate Black-Scholes option price.

    Args:
        S: Spot price of the underlying
        K: Strike price
        T: Time to expiration in years
        r: Risk-free rate (annual, e.g. 0.02)
        sigma: Volatility (annual, e.g. 0.20)
        option_type: 'call' or 'put'

    Returns:
        Theoretical price. Intrinsic value when T <= 0 or sigma <= 0.
    """
    if T <= 0 or sigma <= 0:
        return intrinsic_value(S, K, option_type)

    d1 = _d1(S, K, T, r, sigma)
    d2 = d1 - sigma * np.sqrt(T)

    if option_type.lower() == 'put':
        price = K * np.exp(-r * T) * norm.cdf(-d2) - S * norm.cdf(-d1)
    else:
        price = S * norm.cdf(d1) - K * np.exp(-r * T) * norm.cdf(d2)

    return float(max(price, 0.0))


def black_scholes_vega(S: float, K: float, T: float, r: float, sigma: float) -> float:
    """
    Vega per 1.00 (100%) change in volatility.

    Returns 0 when T <= 0 or sigma <= 0.
    """
    if T <= 0 or sigma <= 0:
        return 0.0
    d1 = _d1(S, K, T, r, sigma)
    return float(S * norm.pdf(d1) * np.sqrt(T))


def implied_volatility(
    market_price: float,
    S: float,
    K: float,
    T: float,
    r: float,
    option_type: Literal['call', 'put'] = 'call',
) -> float:
    """
    Solve for the volatility that reproduces a market price.

    Newton-Raphson seeded at 20%, tolerance 1e-6, at most 100 steps.
    Sigma is clamped to [1e-4, 5.0] after each step.

    Raises:
        ConvergenceError: T <= 0, vega collapsed, or iterations exhausted
    """
    if T <= 0:
        raise ConvergenceError(f"invalid time to expiry: {T}")

    sigma = IV_SEED
    for _ in range(IV_MAX_ITERATIONS):
        diff = black_scholes_price(S, K, T, r, sigma, option_type) - market_price
        if abs(diff) < IV_TOLERANCE:
            return sigma

        vega = black_scholes_vega(S, K, T, r, sigma)
        if vega < IV_MIN_VEGA:
            break

        sigma -= diff / vega
        if sigma <= 0:
            sigma = IV_MIN_SIGMA
        if sigma > IV_MAX_SIGMA:
            sigma = IV_MAX_SIGMA

    raise ConvergenceError(
        f"implied vol did not converge (price={market_price:.4f}, S={S}, K={K}, T={T:.4f})"
    )


def implied_vol_atm(
    S: float,
    K: float,
    T: float,
    r: float,
    call_price: float,
    put_price: float,
) -> float:
    """
    At-the-money implied volatility.

    Targets the average of the call and put prices with the call
    pricing formula, which smooths out quote noise on either side.
    """
    return implied_volatility((call_price + put_price) / 2, S, K, T, r, 'call')


def norm_inv(p: float) -> float:
    """
    Inverse of the standard normal CDF.

    Acklam's rational approximation with separate low-tail, central and
    high-tail forms (relative error around 1e-9).

    Raises:
        ValueError: p not strictly inside (0, 1)
    """
    if p <= 0 or p >= 1:
        raise ValueError(f"norm_inv: p must be in (0, 1), got {p}")

    if p < _P_LOW:
        q = np.sqrt(-2 * np.log(p))
        return float((((((_C[0] * q + _C[1]) * q + _C[2]) * q + _C[3]) * q + _C[4]) * q + _C[5]) /
                     ((((_D[0] * q + _D[1]) * q + _D[2]) * q + _D[3]) * q + 1))

    if p > _P_HIGH:
        q = np.sqrt(-2 * np.log(1 - p))
        return float(-(((((_C[0] * q + _C[1]) * q + _C[2]) * q + _C[3]) * q + _C[4]) * q + _C[5]) /
                     ((((_D[0] * q + _D[1]) * q + _D[2]) * q + _D[3]) * q + 1))

    q = p - 0.5
    r = q * q
    return float((((((_A[0] * r + _A[1]) * r + _A[2]) * r + _A[3]) * r + _A[4]) * r + _A[5]) * q /
                 (((((_B[0] * r + _B[1]) * r + _B[2]) * r + _B[3]) * r + _B[4]) * r + 1))


def strike_from_delta(
    S: float,
    delta: float,
    r: float,
    q: float,
    sigma: float,
    T: float,
    is_call: bool = True,
) -> float:
    """
    Invert the Black-Scholes delta to find the strike for a target delta.

    Args:
        S: Spot price
        delta: Target delta. Sign is ignored; values above 1 are read as
            percentages (30 -> 0.30).
        r: Risk-free rate
        q: Continuous dividend yield
        sigma: Volatility
        T: Time to expiration in years
        is_call: Call delta (True) or put delta (False)

    Returns:
        Raw (unrounded) strike

    Raises:
        ValueError: delta outside (0, 1) after adjusting for dividends
    """
    if T <= 0 or sigma <= 0:
        return float(S)

    target = abs(delta)
    if target > 1:
        target /= 100.0

    p = target * np.exp(q * T)
    if is_call:
        d1 = norm_inv(p)
    else:
        d1 = -norm_inv(p)

    sqrt_t = np.sqrt(T)
    return float(S * np.exp(-d1 * sigma * sqrt_t + (r - q + 0.5 * sigma ** 2) * T))


def annualized_volatility(closes: Sequence[float]) -> float:
    """
    Annualized historical volatility from a series of closes.

    Sample standard deviation (ddof=1) of log returns scaled by
    sqrt(252). Falls back to 30% with fewer than two closes or when the
    sample is too small to produce a finite value.
    """
    if len(closes) < 2:
        return DEFAULT_HISTORICAL_VOL

    prices = np.asarray(closes, dtype=float)
    log_returns = np.diff(np.log(prices))
    if len(log_returns) < 2:
        return DEFAULT_HISTORICAL_VOL

    vol = float(np.std(log_returns, ddof=1) * np.sqrt(TRADING_DAYS_PER_YEAR))
    if not np.isfinite(vol):
        return DEFAULT_HISTORICAL_VOL
    return vol
