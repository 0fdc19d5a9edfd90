"""Centralized logging configuration for the prediction logger."""

import logging
import logging.handlers
import os
import sys
from datetime import datetime
from typing import Optional, Dict, Any
from pathlib import Path

from .config.defaults import SYSTEM_CONSTANTS

ROOT_LOGGER_NAME = "prediction_logger"


class StructuredFormatter(logging.Formatter):
    """Formatter that appends an attached ``context`` dict to the message."""

    BASE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-35s | %(message)s"

    def __init__(self, include_context: bool = True):
        super().__init__(self.BASE_FORMAT)
        self.include_context = include_context

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)

        context = getattr(record, 'context', None)
        if self.include_context and context:
            context_str = " | ".join(f"{k}={v}" for k, v in context.items())
            message += f" | Context: {context_str}"

        if record.levelno >= logging.ERROR and record.exc_info:
            message += f" | {record.pathname}:{record.lineno}"

        return message


class ContextFilter(logging.Filter):
    """Filter that tags records with the component and process."""

    def __init__(self, component_name: Optional[str] = None):
        super().__init__()
        self.component_name = component_name
        self.process_id = os.getpid()

    def filter(self, record: logging.LogRecord) -> bool:
        record.process_id = self.process_id
        if self.component_name:
            record.component = self.component_name
        return True


_component_loggers: Dict[str, logging.Logger] = {}


class LoggingManager:
    """Installs console and rotating file handlers for the application."""

    def __init__(self, log_dir: str = "logs", log_level: int = logging.INFO):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.main_log_file = self.log_dir / "prediction_logger.log"
        self.error_log_file = self.log_dir / "errors.log"
        self.performance_log_file = self.log_dir / "performance.log"

        self.log_level = log_level
        self.max_log_size = SYSTEM_CONSTANTS["LOG_ROTATION_SIZE_MB"] * 1024 * 1024
        self.backup_count = 5

        self._handlers = []
        self._setup_package_logger()

    def _rotating_handler(self, path: Path, level: int,
                          formatter: logging.Formatter) -> logging.Handler:
        handler = logging.handlers.RotatingFileHandler(
            path,
            maxBytes=self.max_log_size,
            backupCount=self.backup_count
        )
        handler.setLevel(level)
        handler.setFormatter(formatter)
        return handler

    def _setup_package_logger(self) -> None:
        package_logger = logging.getLogger(ROOT_LOGGER_NAME)
        package_logger.setLevel(self.log_level)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(self.log_level)
        console_handler.setFormatter(StructuredFormatter(include_context=False))

        self._handlers = [
            console_handler,
            self._rotating_handler(self.main_log_file, logging.DEBUG, StructuredFormatter()),
            self._rotating_handler(self.error_log_file, logging.ERROR, StructuredFormatter())
        ]
        for handler in self._handlers:
            package_logger.addHandler(handler)

        perf_logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.performance")
        perf_handler = self._rotating_handler(
            self.performance_log_file, logging.INFO,
            logging.Formatter("%(asctime)s | %(message)s")
        )
        perf_logger.addHandler(perf_handler)
        perf_logger.propagate = False
        self._handlers.append(perf_handler)

        package_logger.info("Logging system initialized")

    def shutdown(self) -> None:
        """Detach and close the handlers this manager installed."""
        for name in (ROOT_LOGGER_NAME, f"{ROOT_LOGGER_NAME}.performance"):
            target = logging.getLogger(name)
            for handler in self._handlers:
                if handler in target.handlers:
                    target.removeHandler(handler)
        for handler in self._handlers:
            handler.close()
        self._handlers = []

    def get_log_stats(self) -> Dict[str, Any]:
        """Get logging statistics."""
        stats = {
            "log_directory": str(self.log_dir),
            "log_files": {},
            "active_loggers": list(_component_loggers.keys()),
            "log_level": logging.getLevelName(self.log_level)
        }

        for log_file in [self.main_log_file, self.error_log_file, self.performance_log_file]:
            if log_file.exists():
                stats["log_files"][log_file.name] = {
                    "size_mb": log_file.stat().st_size / (1024 * 1024),
                    "modified": datetime.fromtimestamp(log_file.stat().st_mtime).isoformat()
                }

        return stats


logging_manager: Optional[LoggingManager] = None


def get_logger(component_name: str) -> logging.Logger:
    """Get or create the logger for a component."""
    if component_name in _component_loggers:
        return _component_loggers[component_name]

    logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{component_name}")
    logger.addFilter(ContextFilter(component_name))
    _component_loggers[component_name] = logger
    return logger


def log_performance(message: str, metrics: Optional[Dict[str, Any]] = None) -> None:
    """Log a performance measurement."""
    if metrics:
        metric_str = " | ".join(f"{k}={v}" for k, v in metrics.items())
        message = f"{message} | {metric_str}"

    logging.getLogger(f"{ROOT_LOGGER_NAME}.performance").info(message)


def setup_logging(log_level: str = "INFO", log_dir: str = "logs") -> LoggingManager:
    """Set up centralized logging, replacing any earlier setup."""
    global logging_manager

    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    if logging_manager is not None:
        logging_manager.shutdown()

    logging_manager = LoggingManager(log_dir, numeric_level)
    return logging_manager
