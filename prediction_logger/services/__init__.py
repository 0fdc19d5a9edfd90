"""Services for the prediction logger."""

from .interfaces import (
    FrameSourceInterface,
    ClassifierInterface,
    PredictionStoreInterface
)
from .frame_source import FrameSource, CaptureDevice, list_devices
from .classifier import Classifier
from .prediction_store import PredictionStore
from .export_controller import ExportController
from .error_handler import ErrorHandler, ErrorSeverity, ComponentStatus

__all__ = [
    'FrameSourceInterface',
    'ClassifierInterface',
    'PredictionStoreInterface',
    'FrameSource',
    'CaptureDevice',
    'list_devices',
    'Classifier',
    'PredictionStore',
    'ExportController',
    'ErrorHandler',
    'ErrorSeverity',
    'ComponentStatus'
]
