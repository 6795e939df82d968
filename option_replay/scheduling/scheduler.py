"""
Entry Scheduler - turns an EntryRule into concrete trade-open dates.

Modes:
    daily           - every calendar day in [start, end]
    nth_weekday     - days whose weekday (Monday=0 .. Sunday=6) is in offsets
    nth_month_day   - the listed day numbers of every month in range
    earnings_offset - earnings date + offsets[0] days
    expiry_offset   - expiry date + offsets[0] days

Every candidate is snapped onto the bar dates with the rule's date
match policy. Unmatched candidates are dropped; the result is sorted
and unique by calendar date.
"""

import calendar
import logging
from datetime import datetime, time, timedelta
from typing import Iterable, List, Optional, Sequence

import pytz

from option_replay.config import EntryRule
from option_replay.data_providers.base import Bar
from option_replay.errors import ConfigurationError, ReplayError, SchedulingError
from option_replay.scheduling.date_matching import match_date

logger = logging.getLogger(__name__)

DAILY_MODES = ('', 'daily', 'daily_time')
OFFSET_MODES = ('nth_weekday', 'nth_month_day', 'earnings_offset', 'expiry_offset')
SUPPORTED_MODES = DAILY_MODES + OFFSET_MODES


def schedule_dates(
    entry: EntryRule,
    bars: Sequence[Bar],
    expiries: Optional[Sequence[datetime]] = None,
    earnings_source=None,
) -> List[datetime]:
    """
    Resolve an entry rule into sorted, unique trading dates.

    Args:
        entry: Entry rule (start/end must already be defaulted)
        bars: Available bars; matched dates are always bar dates
        expiries: Expiration dates (expiry_offset mode)
        earnings_source: Object with get_earnings_dates(symbol)
            (earnings_offset mode)

    Returns:
        Matched bar dates, ascending, one per calendar day

    Raises:
        SchedulingError: start after end, missing offsets, unknown mode,
            or earnings lookup failure
    """
    check_entry(entry)
    start, end = entry.start, entry.end
    mode = (entry.mode or '').strip().lower()

    bar_dates = [b.date for b in bars]

    if mode == 'nth_weekday':
        candidates = _weekday_candidates(start, end, entry.offsets)
    elif mode == 'nth_month_day':
        candidates = _month_day_candidates(start, end, entry.offsets)
    elif mode == 'earnings_offset':
        earnings = _fetch_earnings(entry, earnings_source)
        candidates = _offset_candidates(earnings, entry.offsets[0], start, end)
    elif mode == 'expiry_offset':
        candidates = _offset_candidates(expiries or [], entry.offsets[0], start, end)
    else:
        candidates = _daily_candidates(start, end)

    matched = []
    for candidate in candidates:
        day = match_date(candidate, bar_dates, entry.date_match_type)
        if day is not None:
            matched.append(day)

    matched.sort()
    seen = set()
    result = []
    for day in matched:
        if day.date() not in seen:
            seen.add(day.date())
            result.append(day)

    logger.debug("Scheduled %d dates (%s, %d candidates)", len(result), mode or 'daily', len(candidates))
    return result


def check_entry(entry: EntryRule) -> None:
    """
    Validate an entry rule before any data is fetched.

    Raises:
        SchedulingError: Missing or inverted range, unknown mode, or an
            offset mode without offsets
        ConfigurationError: Unknown timezone or malformed time_of_day
    """
    start, end = entry.start, entry.end
    if start is None or end is None:
        raise SchedulingError("entry rule has no date range; call with_defaults() first")
    if start > end:
        raise SchedulingError(f"invalid date range: start {start} is after end {end}")

    mode = (entry.mode or '').strip().lower()
    if mode not in SUPPORTED_MODES:
        raise SchedulingError(f"unsupported entry mode: {entry.mode}")
    if mode in OFFSET_MODES and not entry.offsets:
        raise SchedulingError(f"{mode} mode requires a non-empty offsets list")

    combine_date_time(start, entry.time_of_day, entry.timezone)


def _daily_candidates(start: datetime, end: datetime) -> List[datetime]:
    out = []
    current = start
    while current <= end:
        out.append(current)
        current += timedelta(days=1)
    return out


def _weekday_candidates(start: datetime, end: datetime, weekdays: Iterable[int]) -> List[datetime]:
    wanted = set(weekdays)
    return [d for d in _daily_candidates(start, end) if d.weekday() in wanted]


def _month_day_candidates(start: datetime, end: datetime, day_numbers: Iterable[int]) -> List[datetime]:
    out = []
    for year in range(start.year, end.year + 1):
        for month in range(1, 13):
            month_len = calendar.monthrange(year, month)[1]
            month_start = datetime(year, month, 1)
            month_end = datetime(year, month, month_len)
            if month_end < start.replace(hour=0, minute=0, second=0, microsecond=0) or month_start > end:
                continue
            for day_num in day_numbers:
                # Skip day numbers that don't exist in this month (Feb 30)
                if day_num < 1 or day_num > month_len:
                    continue
                candidate = datetime(year, month, day_num)
                if start <= candidate <= end:
                    out.append(candidate)
    return out


def _offset_candidates(
    anchors: Iterable[datetime],
    offset: int,
    start: datetime,
    end: datetime,
) -> List[datetime]:
    out = []
    for anchor in anchors:
        candidate = anchor + timedelta(days=offset)
        if start <= candidate <= end:
            out.append(candidate)
    return out


def _fetch_earnings(entry: EntryRule, earnings_source) -> List[datetime]:
    if not entry.underlying:
        raise SchedulingError("earnings_offset mode requires a non-empty underlying")
    if earnings_source is None:
        raise SchedulingError("earnings_offset mode requires an earnings data source")
    try:
        return list(earnings_source.get_earnings_dates(entry.underlying))
    except ReplayError as e:
        raise SchedulingError(f"fetch earnings dates error: {e}") from e


def combine_date_time(day: datetime, time_of_day: str, timezone: str) -> datetime:
    """
    Combine a calendar day with an HH:MM time in a timezone.

    Args:
        day: Date (time component ignored)
        time_of_day: 'HH:MM' (empty = midnight)
        timezone: pytz timezone name (e.g. 'America/New_York', 'EST')

    Returns:
        Timezone-aware datetime

    Raises:
        ConfigurationError: Unknown timezone or malformed time
    """
    try:
        tz = pytz.timezone(timezone)
    except pytz.UnknownTimeZoneError as e:
        raise ConfigurationError(f"invalid timezone: {timezone}") from e

    if time_of_day:
        try:
            parsed = datetime.strptime(time_of_day.strip(), '%H:%M').time()
        except ValueError as e:
            raise ConfigurationError(f"invalid time_of_day format (HH:MM): {time_of_day}") from e
    else:
        parsed = time(0, 0)

    return tz.localize(datetime.combine(day.date(), parsed))
