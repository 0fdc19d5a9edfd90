"""Entry point for the prediction logger."""

import argparse
import os
import sys
from typing import List, Optional

from .capture_loop import CaptureLoop
from .config.defaults import DEFAULT_PATHS, SYSTEM_CONSTANTS
from .config_manager import ConfigManager
from .exceptions import ModelLoadError, NoDeviceSelected, StorageUnavailable
from .logging_config import get_logger, setup_logging
from .services.export_controller import ExportController
from .web.app import PredictionLoggerWebApp


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="prediction-logger",
        description="Classify live camera frames and log every prediction."
    )
    parser.add_argument("--config", default=DEFAULT_PATHS["config_file"],
                        help="Path to the JSON configuration file")
    parser.add_argument("--host", help="Override the web interface host")
    parser.add_argument("--port", type=int, help="Override the web interface port")
    return parser.parse_args(argv)


def build_web_app(config_manager: ConfigManager) -> PredictionLoggerWebApp:
    """Create services, load the model and check storage once."""
    logger = get_logger("main")
    config = config_manager.get_config()

    capture_loop = CaptureLoop.from_config(config)

    try:
        capture_loop.classifier.load_model()
    except ModelLoadError as e:
        logger.error(f"Model could not be loaded; capture is disabled: {e}")

    try:
        capture_loop.store.open()
    except StorageUnavailable as e:
        logger.error(f"Prediction storage unavailable; export and clear are disabled: {e}")

    if config.device_id:
        try:
            capture_loop.frame_source.select_device(config.device_id)
        except NoDeviceSelected as e:
            logger.warning(f"Ignoring configured device: {e}")

    export_controller = ExportController(capture_loop.store, config.export_filename)
    return PredictionLoggerWebApp(capture_loop, export_controller)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    config_manager = ConfigManager(args.config)
    config = config_manager.get_config()

    setup_logging(config.log_level, config.log_dir)
    logger = get_logger("main")
    logger.info("Starting prediction logger")
    logger.info(f"Python version: {sys.version.split()[0]}, working directory: {os.getcwd()}")

    if not config_manager.validate_config():
        logger.error(f"Invalid configuration in {config_manager.config_path}")
        return 1

    web_app = build_web_app(config_manager)
    try:
        web_app.run(host=args.host or config.web_host, port=args.port or config.web_port)
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
    finally:
        capture_loop = web_app.capture_loop
        capture_loop.stop()
        if not capture_loop.wait_for_idle(timeout=SYSTEM_CONSTANTS["THREAD_JOIN_TIMEOUT_SECONDS"]):
            logger.warning("Capture tick still running at shutdown; its record may be lost")
        capture_loop.store.close()
        logger.info("Prediction logger stopped")

    return 0


if __name__ == "__main__":
    sys.exit(main())
