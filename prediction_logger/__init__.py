"""
Prediction Logger

Captures live camera frames, classifies them with a pre-trained binary
image classifier and keeps a persistent, exportable log of every
prediction.
"""

__version__ = "1.0.0"

from .config_manager import ConfigManager
from .capture_loop import CaptureLoop, CaptureSession, CaptureState
from .models import (
    PredictedClass,
    ClassProbabilities,
    PredictionRecord,
    AppConfig
)
from .services import (
    FrameSource,
    Classifier,
    PredictionStore,
    ExportController
)
from . import exceptions

__all__ = [
    # Core
    'ConfigManager',
    'CaptureLoop',
    'CaptureSession',
    'CaptureState',

    # Data models
    'PredictedClass',
    'ClassProbabilities',
    'PredictionRecord',
    'AppConfig',

    # Services
    'FrameSource',
    'Classifier',
    'PredictionStore',
    'ExportController',

    'exceptions'
]
