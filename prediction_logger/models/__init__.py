"""Data models for the prediction logger."""

from .prediction import PredictedClass, ClassProbabilities, PredictionRecord, interpret_probabilities
from .config import AppConfig

__all__ = ['PredictedClass', 'ClassProbabilities', 'PredictionRecord', 'interpret_probabilities', 'AppConfig']
