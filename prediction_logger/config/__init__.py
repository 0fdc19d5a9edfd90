"""Configuration components for the prediction logger."""

from .defaults import (
    SYSTEM_CONSTANTS,
    DEFAULT_PATHS,
    CAPTURE_SETTINGS,
    MODEL_SETTINGS
)

__all__ = [
    'SYSTEM_CONSTANTS',
    'DEFAULT_PATHS',
    'CAPTURE_SETTINGS',
    'MODEL_SETTINGS'
]
