"""
Date Matching - snap a target date onto a discrete set of dates.

Used to map scheduled entry candidates onto trading days and
expiration offsets onto listed expiries.

Policies:
    exact    - candidate equal to the target
    prior    - latest candidate strictly before the target
    next     - earliest candidate strictly after the target
    nearest  - exact match, else the closer of prior/next (ties -> prior)
"""

from bisect import bisect_left, bisect_right
from datetime import datetime
from enum import Enum
from typing import List, Optional, Union


class DateMatchType(str, Enum):
    """Date matching policy."""
    EXACT = "exact"
    PRIOR = "prior"
    NEXT = "next"
    NEAREST = "nearest"

    @classmethod
    def parse(cls, value: Union[str, 'DateMatchType', None]) -> 'DateMatchType':
        """
        Parse a policy name, case-insensitively.

        Accepts the legacy aliases 'lower' (prior) and 'higher' (next).
        Unrecognized or empty values fall back to NEAREST.
        """
        if isinstance(value, cls):
            return value
        name = (value or '').strip().lower()
        aliases = {'lower': cls.PRIOR, 'higher': cls.NEXT}
        if name in aliases:
            return aliases[name]
        try:
            return cls(name)
        except ValueError:
            return cls.NEAREST


def match_date(
    target: datetime,
    candidates: List[datetime],
    policy: Union[str, DateMatchType, None] = DateMatchType.NEAREST,
) -> Optional[datetime]:
    """
    Match a target against candidate dates under a policy.

    Note: ``candidates`` is sorted in place.

    Args:
        target: Date to match
        candidates: Available dates (any order)
        policy: DateMatchType or its name

    Returns:
        The matched candidate, or None
    """
    if not candidates:
        return None

    policy = DateMatchType.parse(policy)
    candidates.sort()

    left = bisect_left(candidates, target)
    right = bisect_right(candidates, target)
    exact = candidates[left] if left < right else None
    prior = candidates[left - 1] if left > 0 else None
    nxt = candidates[right] if right < len(candidates) else None

    if policy is DateMatchType.EXACT:
        return exact
    if policy is DateMatchType.PRIOR:
        return prior
    if policy is DateMatchType.NEXT:
        return nxt

    if exact is not None:
        return exact
    if prior is None:
        return nxt
    if nxt is None:
        return prior
    if target - prior <= nxt - target:
        return prior
    return nxt
