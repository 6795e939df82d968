"""
Report Writer - trades.json and trades.csv output.

Both writers are pure functions of the ReplayResult; the output
directory is created if missing.

CSV columns:
    id, open_time, open_underlying, open_premium, close_time,
    close_underlying, close_premium, pnl, strategy_high, strategy_low,
    closed_by, legs_json
"""

import json
import logging
from pathlib import Path
from typing import Union

import pandas as pd

from option_replay.engine import ReplayResult

logger = logging.getLogger(__name__)

JSON_FILENAME = 'trades.json'
CSV_FILENAME = 'trades.csv'

CSV_HEADERS = [
    'id', 'open_time', 'open_underlying', 'open_premium', 'close_time',
    'close_underlying', 'close_premium', 'pnl', 'strategy_high', 'strategy_low',
    'closed_by', 'legs_json',
]


def write_json(result: ReplayResult, out_dir: Union[str, Path]) -> Path:
    """Write the full result as indented JSON. Returns the file path."""
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    path = out / JSON_FILENAME
    with open(path, 'w') as f:
        json.dump(result.to_dict(), f, indent=2)
    logger.info("Wrote %s (%d trades)", path, len(result.trades))
    return path


def write_csv(result: ReplayResult, out_dir: Union[str, Path]) -> Path:
    """Write one row per trade. Returns the file path."""
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    path = out / CSV_FILENAME

    rows = []
    for t in result.trades:
        rows.append({
            'id': t.id,
            'open_time': t.open_datetime.strftime('%Y-%m-%d'),
            'open_underlying': f"{t.underlying_at_open:.2f}",
            'open_premium': f"{t.open_premium:.2f}",
            'close_time': t.close_datetime.strftime('%Y-%m-%d') if t.close_datetime else '',
            'close_underlying': f"{t.underlying_at_close:.2f}",
            'close_premium': f"{t.close_premium:.2f}",
            'pnl': f"{t.pnl:.2f}",
            'strategy_high': f"{t.high_premium:.2f}",
            'strategy_low': f"{t.low_premium:.2f}",
            'closed_by': t.closed_by,
            'legs_json': json.dumps([leg.to_dict() for leg in t.legs], separators=(',', ':')),
        })

    pd.DataFrame(rows, columns=CSV_HEADERS).to_csv(path, index=False)
    logger.info("Wrote %s", path)
    return path
