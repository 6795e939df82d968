"""
CLI Entry Point for Option Replay

Loads a JSON strategy config, picks a market data provider from the
environment, runs the replay and writes trades.json / trades.csv.
With --rest, serves the same run over HTTP instead.

Usage:
    option-replay --config strategies/short_put.json
    option-replay --config strategies/short_put.json --verbosity 2 --report-dir out/
    python -m option_replay.runners.cli --config strategies/iron_fly.json --rest --port 8080
"""

import argparse
import logging
import sys
from typing import Optional

from option_replay.analytics.report_writer import write_csv, write_json
from option_replay.analytics.results_formatter import ResultsFormatter
from option_replay.config import ReplayConfig
from option_replay.data_providers.base import MarketDataProvider
from option_replay.data_providers.local_file_provider import LocalFileDataProvider
from option_replay.data_providers.synthetic_provider import SyntheticDataProvider
from option_replay.engine import ReplayEngine
from option_replay.errors import ReplayError
from option_replay.logger import Verbosity, create_logger
from option_replay.settings import get_alphavantage_key, get_data_dir, get_polygon_key

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description='Historical options strategy replay',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument('--config', '-c', required=True,
                        help='Path to JSON strategy config')

    # Output
    parser.add_argument('--report-dir', '-o', default=None,
                        help='Report directory (overrides report_dir in config)')
    parser.add_argument('--verbosity', '-v', type=int, choices=[0, 1, 2, 3], default=None,
                        help='0=errors, 1=info, 2=debug, 3=trace (overrides config)')

    # Data source
    parser.add_argument('--data-dir', default=None,
                        help='Directory of local CSV bars/intervals '
                             '(default: OPTION_REPLAY_DATA_DIR)')

    # REST mode
    parser.add_argument('--rest', action='store_true',
                        help='Serve the replay over HTTP instead of running once')
    parser.add_argument('--host', default='127.0.0.1',
                        help='REST bind host (default: 127.0.0.1)')
    parser.add_argument('--port', type=int, default=8080,
                        help='REST bind port (default: 8080)')

    return parser.parse_args(argv)


def build_config(args) -> ReplayConfig:
    """Load the config file and apply CLI overrides."""
    config = ReplayConfig.from_file(args.config)
    if args.report_dir:
        config.report_dir = args.report_dir
    if args.verbosity is not None:
        config.verbosity = args.verbosity
    return config


def setup_provider(config: ReplayConfig, data_dir: Optional[str] = None) -> MarketDataProvider:
    """
    Pick the market data provider chain for a run.

    POLYGON_API_KEY set -> Massive (synthetic secondary for ATM quotes),
    otherwise synthetic seeded with config.seed. A data directory puts
    the local-file provider in front of either.
    """
    provider: MarketDataProvider = SyntheticDataProvider(seed=config.seed)

    if get_polygon_key():
        from option_replay.data_providers.earnings import AlphaVantageEarnings
        from option_replay.data_providers.massive_provider import MassiveDataProvider

        earnings = AlphaVantageEarnings() if get_alphavantage_key() else None
        provider = MassiveDataProvider(secondary=provider, earnings_source=earnings)
    else:
        logger.info("POLYGON_API_KEY not set, using synthetic data (seed=%s)", config.seed)

    data_dir = data_dir or get_data_dir()
    if data_dir:
        provider = LocalFileDataProvider(data_dir, secondary=provider)

    return provider


def run_replay(config: ReplayConfig, data_dir: Optional[str] = None, log=None):
    """Run one replay with a freshly built provider chain."""
    provider = setup_provider(config, data_dir)
    engine = ReplayEngine(config, provider, logger=log)
    return engine.run()


def main(argv=None) -> int:
    """Main entry point. Returns the process exit status."""
    args = parse_args(argv)

    try:
        config = build_config(args)
    except ReplayError as e:
        create_logger(Verbosity.ERROR).error("Config error: %s", e)
        return 1

    log = create_logger(config.verbosity)

    # Validate
    issues = config.validate()
    if issues:
        for issue in issues:
            log.error("Config error: %s", issue)
        return 1

    if args.rest:
        from option_replay.runners.api_server import init_api, run_api

        init_api(config, data_dir=args.data_dir, log=log)
        run_api(host=args.host, port=args.port)
        return 0

    try:
        result = run_replay(config, args.data_dir, log)
        write_json(result, config.report_dir)
        write_csv(result, config.report_dir)
    except (ReplayError, OSError) as e:
        log.error("Replay failed: %s", e)
        return 1

    print(ResultsFormatter.format(result, config).summary())
    print(f"\nReports written to: {config.report_dir}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
