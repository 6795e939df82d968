"""
Environment loading for option_replay.

Loads the project root .env file (when present) once, then exposes
getters for the API keys and directories the data providers need.

Usage:
    from option_replay.settings import load_config, get_polygon_key

    load_config()
    key = get_polygon_key()
"""

import os
from pathlib import Path
from typing import Optional

# Flag to track if config has been loaded
_CONFIG_LOADED = False


def load_config(force_reload: bool = False, env_path: Optional[Path] = None) -> None:
    """
    Load environment variables from a .env file.

    A missing .env is not an error: the variables may already be set by
    the shell or the hosting platform.

    Args:
        force_reload: If True, reload even if already loaded
        env_path: Explicit .env path (default: project root .env, then cwd)
    """
    global _CONFIG_LOADED

    if _CONFIG_LOADED and not force_reload:
        return

    from dotenv import load_dotenv

    candidates = [env_path] if env_path else [
        Path(__file__).parent.parent / '.env',
        Path.cwd() / '.env',
    ]
    for path in candidates:
        if path and path.exists():
            load_dotenv(path, override=False)
            break

    _CONFIG_LOADED = True


def get_polygon_key() -> Optional[str]:
    """Massive/Polygon API key, or None if not configured."""
    load_config()
    return os.getenv('POLYGON_API_KEY') or None


def get_alphavantage_key() -> Optional[str]:
    """Alpha Vantage API key (earnings calendar), or None if not configured."""
    load_config()
    return os.getenv('ALPHAVANTAGE_API_KEY') or None


def get_data_dir() -> Optional[str]:
    """Directory for the local-file data provider, or None if not configured."""
    load_config()
    return os.getenv('OPTION_REPLAY_DATA_DIR') or None
