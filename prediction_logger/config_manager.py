"""Configuration management backed by a JSON file."""

import json
import logging
import os
from dataclasses import asdict, fields
from typing import Optional, Dict, Any, Callable, List

from .models.config import AppConfig
from .config.defaults import DEFAULT_PATHS
from .utils import ensure_directory_exists

logger = logging.getLogger(__name__)

VALID_LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


class ConfigManager:
    """Manages application configuration with file persistence and change callbacks."""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or DEFAULT_PATHS["config_file"]
        self._config: Optional[AppConfig] = None
        self._config_change_callbacks: List[Callable[[AppConfig], None]] = []

        self.load_config()

    def load_config(self) -> AppConfig:
        """Load configuration from file or create default."""
        if os.path.exists(self.config_path):
            try:
                with open(self.config_path, 'r') as f:
                    config_dict = json.load(f)
                self._config = AppConfig(**self._known_keys(config_dict))
            except (json.JSONDecodeError, TypeError, ValueError) as e:
                logger.warning(f"Error loading config from {self.config_path}: {e}. Using defaults.")
                self._config = AppConfig()
        else:
            self._config = AppConfig()
            self.save_config()

        return self._config

    @staticmethod
    def _known_keys(config_dict: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(config_dict, dict):
            raise TypeError("Configuration file must contain a JSON object")
        names = {f.name for f in fields(AppConfig)}
        unknown = set(config_dict) - names
        if unknown:
            logger.warning(f"Ignoring unknown configuration keys: {sorted(unknown)}")
        return {k: v for k, v in config_dict.items() if k in names}

    def save_config(self) -> None:
        """Save current configuration to file."""
        if self._config is None:
            return

        ensure_directory_exists(os.path.dirname(self.config_path))
        with open(self.config_path, 'w') as f:
            json.dump(self.export_config(), f, indent=2)

    def get_config(self) -> AppConfig:
        """Get current configuration."""
        if self._config is None:
            return self.load_config()
        return self._config

    def update_config(self, **kwargs) -> None:
        """Update configuration with new values."""
        if self._config is None:
            self.load_config()

        for key, value in kwargs.items():
            if hasattr(self._config, key):
                setattr(self._config, key, value)
            else:
                logger.warning(f"Ignoring unknown configuration key: {key}")
        self._config.input_size = tuple(self._config.input_size)

        self.save_config()
        self._notify_callbacks()

    def validate_config(self) -> bool:
        """Validate current configuration."""
        config = self._config
        if config is None:
            return False

        if config.poll_interval_ms <= 0:
            return False

        if config.frame_width <= 0 or config.frame_height <= 0:
            return False

        if (len(config.input_size) != 2 or
                not all(isinstance(v, int) and v > 0 for v in config.input_size)):
            return False

        if config.inference_timeout_seconds < 0:
            return False

        if not config.database_path or not config.export_filename:
            return False

        if not config.model_path and not config.model_url:
            return False

        if str(config.log_level).upper() not in VALID_LOG_LEVELS:
            return False

        if not 1 <= config.web_port <= 65535:
            return False

        return True

    def register_change_callback(self, callback: Callable[[AppConfig], None]) -> None:
        """Register a callback to be called when config changes."""
        if callback not in self._config_change_callbacks:
            self._config_change_callbacks.append(callback)

    def unregister_change_callback(self, callback: Callable[[AppConfig], None]) -> None:
        """Unregister a config change callback."""
        if callback in self._config_change_callbacks:
            self._config_change_callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        for callback in self._config_change_callbacks:
            try:
                callback(self._config)
            except Exception as e:
                logger.error(f"Error in config change callback: {e}")

    def reset_to_defaults(self) -> None:
        """Reset configuration to default values."""
        self._config = AppConfig()
        self.save_config()
        self._notify_callbacks()

    def export_config(self) -> Dict[str, Any]:
        """Export current configuration as a dictionary."""
        if not self._config:
            return {}

        config_dict = asdict(self._config)
        config_dict['input_size'] = list(self._config.input_size)
        return config_dict

    def import_config(self, config_dict: Dict[str, Any]) -> bool:
        """
        Import configuration from a dictionary.

        Args:
            config_dict: Dictionary containing configuration values

        Returns:
            True if import was successful, False otherwise
        """
        try:
            temp_config = AppConfig(**config_dict)
        except (TypeError, ValueError) as e:
            logger.error(f"Error importing config: {e}")
            return False

        old_config = self._config
        self._config = temp_config

        if not self.validate_config():
            self._config = old_config
            return False

        self.save_config()
        self._notify_callbacks()
        return True
