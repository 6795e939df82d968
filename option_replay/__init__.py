"""
Option Replay - Historical Options Strategy Replay

Replays a multi-leg options strategy against historical market data and
produces a deterministic list of simulated trades with their outcomes.

Module Structure:
    config          - ReplayConfig and the entry/strategy/exit rule dataclasses
    settings        - .env loading and API key lookup
    logger          - Verbosity levels and explicit logger handles
    errors          - Exception hierarchy
    pricing         - Black-Scholes, vega, implied vol, strike-from-delta
    scheduling      - Date matching and entry date scheduling
    planning        - Strike expressions and per-leg strategy planning
    simulation      - Trade records and the forward walk simulator
    exits           - Exit rule evaluation in priority order
    engine          - ReplayEngine orchestrator
    data_providers  - MarketDataProvider protocol + implementations
    analytics       - Summary statistics and JSON/CSV reports
    runners         - CLI entry point and REST wrapper
"""

__version__ = '0.1.0'
