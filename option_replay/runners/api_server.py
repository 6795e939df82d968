"""
Option Replay REST API Server

Minimal Flask API exposing the replay for other tools.

Endpoints:
    /health  - Health check
    /run     - Run the loaded config (GET) or a config posted as JSON (POST)

Usage:
    from option_replay.runners.api_server import init_api, run_api

    init_api(config)
    run_api(host='127.0.0.1', port=8080)
"""

import logging
from typing import Optional

from flask import Flask, jsonify, request

from option_replay.config import ReplayConfig
from option_replay.errors import ConfigurationError, ReplayError

logger = logging.getLogger(__name__)

app = Flask(__name__)

# Loaded config and run settings (set via init_api)
_config: Optional[ReplayConfig] = None
_data_dir: Optional[str] = None
_log: Optional[logging.Logger] = None


def init_api(
    config: ReplayConfig,
    data_dir: Optional[str] = None,
    log: Optional[logging.Logger] = None,
) -> None:
    """
    Initialize API with the default config.

    Args:
        config: Config used by GET /run and by POST /run without a body
        data_dir: Local-file provider directory
        log: Logger handle passed to each engine run
    """
    global _config, _data_dir, _log
    _config = config
    _data_dir = data_dir
    _log = log
    logger.info("Replay API initialized for %s", config.underlying)


def run_api(host: str = '127.0.0.1', port: int = 8080, debug: bool = False) -> None:
    """
    Run the Flask API server.

    Args:
        host: Host to bind to
        port: Port to bind to
        debug: Enable Flask debug mode
    """
    logger.info("Starting replay API server on %s:%d", host, port)
    app.run(host=host, port=port, debug=debug)


# =============================================================================
# ENDPOINTS
# =============================================================================


@app.route('/health')
def health():
    """Health check endpoint."""
    return jsonify({'status': 'ok'})


@app.route('/run', methods=['GET', 'POST'])
def run():
    """
    Run a replay.

    A JSON body, if present, replaces the loaded config. A body that is
    not valid JSON is rejected rather than ignored.

    Returns:
        ReplayResult.to_dict() on success; {"error": msg} with 400 for
        unparsable bodies and configuration errors, 500 for anything else
    """
    from option_replay.runners.cli import run_replay

    try:
        body = None
        if request.method == 'POST' and request.get_data():
            body = request.get_json(force=True, silent=True)
            if body is None:
                raise ConfigurationError("request body is not valid JSON")
        config = ReplayConfig.from_dict(body) if body is not None else _config
        if config is None:
            raise ConfigurationError("no config loaded")

        issues = config.validate()
        if issues:
            raise ConfigurationError("; ".join(issues))

        result = run_replay(config, _data_dir, _log)
        return jsonify(result.to_dict())

    except ConfigurationError as e:
        logger.warning("Rejected replay request: %s", e)
        return jsonify({'error': str(e)}), 400
    except ReplayError as e:
        logger.error("Replay failed: %s", e)
        return jsonify({'error': str(e)}), 500
    except Exception as e:
        logger.exception("Unexpected error running replay")
        return jsonify({'error': f"internal error: {e}"}), 500
