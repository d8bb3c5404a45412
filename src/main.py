"""
Live classifier entry point.

Loads configuration, sets up logging and builds the session controller.
By default serves the web UI/API; with --headless a session is started
immediately and every result is logged until interrupted.

Usage:
    python src/main.py --config config/config.yaml
    python src/main.py --headless

Arguments:
    --config: Path to configuration file
    --headless: Run a session without the web server
    --host / --port: Override web.host / web.port
"""

import os
import sys
import argparse
import asyncio
import logging
import yaml
from typing import Dict, Any, Tuple, Optional

import uvicorn

from errors import LiveClassifierError
from models.status import SessionState
from ops.logging import setup_logging
from runtime.controller import SessionController, create_controller_from_config, describe_error
from web.app import create_app


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into base and return base."""
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            _deep_merge(base[k], v)
        else:
            base[k] = v
    return base


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Load configuration with layering:
    - `config/default.yaml` (checked in)
    - `config/config.yaml` (local overrides)
    - plus any explicitly provided `--config` path (treated as overrides)
    """
    try:
        base_path = os.path.join(os.path.dirname(config_path), "default.yaml")
        base_cfg: Dict[str, Any] = {}
        if os.path.exists(base_path):
            with open(base_path, "r") as f:
                base_cfg = yaml.safe_load(f) or {}

        local_overrides_path = os.path.join(os.path.dirname(config_path), "config.yaml")
        local_cfg: Dict[str, Any] = {}
        if os.path.exists(local_overrides_path):
            with open(local_overrides_path, "r") as f:
                local_cfg = yaml.safe_load(f) or {}

        merged = _deep_merge(base_cfg, local_cfg)

        if os.path.exists(config_path) and os.path.abspath(config_path) != os.path.abspath(local_overrides_path):
            with open(config_path, "r") as f:
                explicit_cfg = yaml.safe_load(f) or {}
            merged = _deep_merge(merged, explicit_cfg)

        return merged
    except Exception as e:
        logging.error(f"Failed to load configuration: {e}")
        sys.exit(1)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_config(config: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate configuration file structure and values.

    Args:
        config: Configuration dictionary

    Returns:
        Tuple of (is_valid, error_message)
    """
    required_sections = ['camera', 'model', 'log_path', 'log_level']
    for section in required_sections:
        if section not in config:
            return False, f"Missing required configuration section: {section}"

    # Camera
    camera = config.get('camera') or {}
    if camera.get('backend', 'opencv') != 'opencv':
        return False, "camera.backend must be: opencv"
    if 'device_id' not in camera:
        return False, "Missing camera.device_id"
    device_id = camera['device_id']
    if isinstance(device_id, bool) or not isinstance(device_id, (int, str)):
        return False, "camera.device_id must be an integer (index) or string (URL/path)"
    if isinstance(device_id, int) and device_id < 0:
        return False, "camera.device_id integer must be non-negative"

    resolution = camera.get('resolution', [400, 400])
    if not isinstance(resolution, list) or len(resolution) != 2:
        return False, "camera.resolution must be a list of [width, height]"
    if not all(isinstance(x, int) and x > 0 for x in resolution):
        return False, "camera.resolution values must be positive integers"

    if camera.get('fps') is not None and (not isinstance(camera['fps'], int) or camera['fps'] <= 0):
        return False, "camera.fps must be a positive integer"
    if camera.get('rotate', 0) not in (0, 90, 180, 270):
        return False, "camera.rotate must be one of: 0, 90, 180, 270"
    if not isinstance(camera.get('max_retries', 3), int) or camera.get('max_retries', 3) < 1:
        return False, "camera.max_retries must be a positive integer"
    for key in ('open_timeout', 'refresh_interval'):
        value = camera.get(key)
        if value is not None and (not _is_number(value) or value < 0):
            return False, f"camera.{key} must be a non-negative number"

    # Model
    model = config.get('model') or {}
    locator = model.get('locator')
    if not isinstance(locator, str) or not locator:
        return False, "model.locator must be a non-empty string (directory or URL)"
    for key in ('model_file', 'metadata_file', 'cache_dir'):
        if key in model and (not isinstance(model[key], str) or not model[key]):
            return False, f"model.{key} must be a non-empty string"
    load_timeout = model.get('load_timeout')
    if load_timeout is not None and (not _is_number(load_timeout) or load_timeout <= 0):
        return False, "model.load_timeout must be a positive number"

    # Aggregation (optional)
    aggregation = config.get('aggregation') or {}
    if 'tracked_labels' in aggregation:
        tracked = aggregation['tracked_labels']
        if not isinstance(tracked, list) or not tracked:
            return False, "aggregation.tracked_labels must be a non-empty list"
        if not all(isinstance(label, str) and label for label in tracked):
            return False, "aggregation.tracked_labels entries must be non-empty strings"
        if len(set(tracked)) != len(tracked):
            return False, "aggregation.tracked_labels must not contain duplicates"
    if 'sum_tolerance' in aggregation:
        tol = aggregation['sum_tolerance']
        if not _is_number(tol) or not (0 <= tol < 1):
            return False, "aggregation.sum_tolerance must be between 0 and 1"

    # Scheduler (optional)
    scheduler = config.get('scheduler') or {}
    if 'tick_hz' in scheduler:
        if not _is_number(scheduler['tick_hz']) or not (0 < scheduler['tick_hz'] <= 120):
            return False, "scheduler.tick_hz must be between 0 and 120"
    for key in ('classify_timeout', 'stats_log_interval'):
        value = scheduler.get(key)
        if value is not None and (not _is_number(value) or value <= 0):
            return False, f"scheduler.{key} must be a positive number"

    # Web (optional)
    web = config.get('web') or {}
    if 'port' in web:
        port = web['port']
        if not isinstance(port, int) or not (0 < port < 65536):
            return False, "web.port must be an integer between 1 and 65535"
    if 'host' in web and not isinstance(web['host'], str):
        return False, "web.host must be a string"

    # Logging
    valid_log_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
    if config['log_level'] not in valid_log_levels:
        return False, f"log_level must be one of: {', '.join(valid_log_levels)}"
    if not isinstance(config['log_path'], str) or not config['log_path']:
        return False, "log_path must be a non-empty string"

    return True, None


async def run_headless(controller: SessionController) -> None:
    """Start a session and log results until it ends or the task is cancelled."""

    def log_result(result) -> None:
        percents = ", ".join(f"{label}={pct}%" for label, pct in result.per_class.items())
        logging.info(f"Result #{result.sequence}: {percents}, best={result.best_label}")

    controller.add_result_callback(log_result)
    await controller.start()
    try:
        while controller.state is SessionState.RUNNING:
            await asyncio.sleep(1.0)
    finally:
        await controller.shutdown()


def main():
    """Main application function."""
    parser = argparse.ArgumentParser(description='Live Camera Classifier')
    parser.add_argument('--config', type=str, default='config/config.yaml',
                        help='Path to configuration file')
    parser.add_argument('--headless', action='store_true',
                        help='Start a session immediately and log results (no web server)')
    parser.add_argument('--host', type=str, default=None,
                        help='Web server host (overrides web.host)')
    parser.add_argument('--port', type=int, default=None,
                        help='Web server port (overrides web.port)')
    args = parser.parse_args()

    config = load_config(args.config)

    is_valid, error_msg = validate_config(config)
    if not is_valid:
        logging.error(f"Configuration validation failed: {error_msg}")
        sys.exit(1)

    setup_logging(config['log_path'], config['log_level'])
    logging.info("Starting Live Classifier")

    controller = create_controller_from_config(config)
    web_cfg = config.get('web', {}) or {}

    if args.headless or not web_cfg.get('enabled', True):
        try:
            asyncio.run(run_headless(controller))
        except KeyboardInterrupt:
            logging.info("Interrupted by user")
        except (LiveClassifierError, asyncio.TimeoutError) as e:
            logging.error(f"Session failed: {describe_error(e)}")
            sys.exit(1)
        finally:
            logging.info("Live Classifier stopped")
        return

    host = args.host or web_cfg.get('host', '127.0.0.1')
    port = args.port or int(web_cfg.get('port', 8000))
    logging.info(f"Web interface on http://{host}:{port}")
    uvicorn.run(
        create_app(controller, config),
        host=host,
        port=port,
        log_level="info",
    )
    logging.info("Live Classifier stopped")


if __name__ == "__main__":
    main()
