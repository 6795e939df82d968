"""
Exception hierarchy for the replay pipeline.

Configuration errors are fatal to a run. They include scheduling
failures and strike rules that can never resolve (unrecognized form,
malformed expression, reference to a leg that is not earlier in the
strategy). Planning, provider and convergence errors raised while
opening a single trade only cause that scheduled date to be skipped.
"""


class ReplayError(Exception):
    """Base class for all option_replay errors."""


class ConfigurationError(ReplayError):
    """Invalid configuration values, files, timezones or time-of-day strings."""


class SchedulingError(ConfigurationError):
    """Entry rule cannot be turned into a schedule (bad range, missing offsets)."""


class PlanningError(ReplayError):
    """A strategy leg could not be resolved for a scheduled date."""


class UnrecognizedStrikeRuleError(ConfigurationError):
    """Strike rule matches none of ATM, ATM:<offset>, DELTA:<v> or a leg expression."""


class InvalidStrikeExpressionError(ConfigurationError):
    """Malformed strike expression (bad token, field, number or division by zero)."""


class LegIndexOutOfRangeError(ConfigurationError):
    """Leg expression references a leg that is not earlier in the strategy."""


class ExpirationNotFoundError(PlanningError):
    """No expiration matches the requested offset under the date match policy."""


class ProviderError(ReplayError):
    """Market data provider request failed."""


class DataUnavailableError(ProviderError):
    """Provider has no data for the request and no secondary to delegate to."""


class ConvergenceError(ReplayError):
    """Implied volatility solver did not converge."""
