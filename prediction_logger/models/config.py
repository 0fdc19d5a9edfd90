"""Configuration data models."""

from dataclasses import dataclass
from typing import Tuple


@dataclass
class AppConfig:
    """Application configuration settings."""
    # Capture settings
    poll_interval_ms: int = 2000
    device_id: str = ""
    frame_width: int = 640
    frame_height: int = 480

    # Model settings
    model_path: str = "model/model.tflite"
    model_url: str = ""  # Downloaded into models_dir when set
    models_dir: str = "models"
    input_size: Tuple[int, int] = (224, 224)
    inference_timeout_seconds: float = 30.0  # 0 disables the stall warning

    # Storage settings
    database_path: str = "data/predictions.db"
    export_filename: str = "predictions.json"
    persist_probabilities: bool = True

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"

    # Web interface
    web_host: str = "127.0.0.1"
    web_port: int = 5000

    def __post_init__(self):
        # JSON round-trips tuples as lists
        self.input_size = tuple(self.input_size)

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000.0
