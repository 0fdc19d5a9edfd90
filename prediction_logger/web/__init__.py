"""Web control surface for the prediction logger."""

from .app import PredictionLoggerWebApp, create_app

__all__ = ['PredictionLoggerWebApp', 'create_app']
