"""Entry date scheduling and date matching."""

from option_replay.scheduling.date_matching import DateMatchType, match_date

__all__ = ['DateMatchType', 'match_date']
