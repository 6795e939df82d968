"""
Logging setup for the replay pipeline.

Verbosity is expressed as an explicit enum and turned into a
logging.Logger handle that callers pass into the engine, planner and
simulator. Nothing here mutates process-wide logging state beyond
registering the TRACE level name.

Usage:
    from option_replay.logger import Verbosity, create_logger

    log = create_logger(Verbosity.DEBUG)
    engine = ReplayEngine(config, provider, logger=log)
"""

import logging
from enum import IntEnum
from typing import Union

TRACE = 5
logging.addLevelName(TRACE, 'TRACE')

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
LOG_DATEFMT = '%H:%M:%S'


class Verbosity(IntEnum):
    """Replay verbosity, in increasing order of detail."""
    ERROR = 0
    INFO = 1
    DEBUG = 2
    TRACE = 3

    @classmethod
    def parse(cls, value: Union[int, str, 'Verbosity', None]) -> 'Verbosity':
        """
        Coerce a config/CLI value to a Verbosity.

        Accepts ints (0-3) and level names. Anything else falls back
        to INFO.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            name = value.strip().upper()
            if name in cls.__members__:
                return cls[name]
            try:
                value = int(name)
            except ValueError:
                return cls.INFO
        if isinstance(value, int) and not isinstance(value, bool):
            try:
                return cls(value)
            except ValueError:
                return cls.INFO
        return cls.INFO

    def to_logging_level(self) -> int:
        """Map to the stdlib logging level."""
        return {
            Verbosity.ERROR: logging.ERROR,
            Verbosity.INFO: logging.INFO,
            Verbosity.DEBUG: logging.DEBUG,
            Verbosity.TRACE: TRACE,
        }[self]


def create_logger(
    verbosity: Union[int, str, Verbosity] = Verbosity.INFO,
    name: str = 'option_replay',
) -> logging.Logger:
    """
    Create (or reconfigure) a named logger for a replay run.

    Args:
        verbosity: Verbosity enum, int 0-3 or level name
        name: Logger name

    Returns:
        Logger with a single stream handler at the requested level
    """
    level = Verbosity.parse(verbosity).to_logging_level()
    log = logging.getLogger(name)
    log.setLevel(level)

    if not log.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
        log.addHandler(handler)
        log.propagate = False

    return log


def trace(log: logging.Logger, msg: str, *args) -> None:
    """Log at TRACE level."""
    if log.isEnabledFor(TRACE):
        log.log(TRACE, msg, *args)
