"""
Tests for option_replay/logger.py.
"""

import logging
import pytest
from unittest.mock import MagicMock

from option_replay.logger import TRACE, Verbosity, create_logger, trace


class TestVerbosity:
    """Verbosity parsing and level mapping."""

    @pytest.mark.parametrize('value,expected', [
        (0, Verbosity.ERROR),
        (3, Verbosity.TRACE),
        ('debug', Verbosity.DEBUG),
        ('2', Verbosity.DEBUG),
        (Verbosity.INFO, Verbosity.INFO),
        (9, Verbosity.INFO),
        ('loud', Verbosity.INFO),
        (None, Verbosity.INFO),
        (True, Verbosity.INFO),
    ])
    def test_parse(self, value, expected):
        assert Verbosity.parse(value) is expected

    def test_levels(self):
        assert Verbosity.ERROR.to_logging_level() == logging.ERROR
        assert Verbosity.INFO.to_logging_level() == logging.INFO
        assert Verbosity.DEBUG.to_logging_level() == logging.DEBUG
        assert Verbosity.TRACE.to_logging_level() == TRACE
        assert logging.getLevelName(TRACE) == 'TRACE'


class TestCreateLogger:
    def test_level_and_single_handler(self):
        log = create_logger(Verbosity.DEBUG, name='option_replay.test_logger')
        create_logger(Verbosity.ERROR, name='option_replay.test_logger')
        assert log.level == logging.ERROR, "Second call reconfigures the level"
        assert len(log.handlers) == 1
        assert log.propagate is False

    def test_trace_only_when_enabled(self):
        log = MagicMock()
        log.isEnabledFor.return_value = False
        trace(log, "hidden %d", 1)
        log.log.assert_not_called()

        log.isEnabledFor.return_value = True
        trace(log, "shown %d", 2)
        log.log.assert_called_once_with(TRACE, "shown %d", 2)
