"""Default configuration values and constants."""

# System constants
SYSTEM_CONSTANTS = {
    "MAX_PROBED_DEVICES": 10,
    "MAX_CONSECUTIVE_READ_FAILURES": 50,
    "READ_RETRY_DELAY_SECONDS": 0.05,
    "THREAD_JOIN_TIMEOUT_SECONDS": 5.0,
    "STORE_REQUEST_TIMEOUT_SECONDS": 30.0,
    "LOG_ROTATION_SIZE_MB": 10
}

# File paths and directories
DEFAULT_PATHS = {
    "config_file": "config.json"
}

CAPTURE_SETTINGS = {
    "resolution": (640, 480),
    "read_fps": 30.0,
    "start_label": "Start Camera",
    "stop_label": "Stop Camera"
}

MODEL_SETTINGS = {
    "input_size": (224, 224),
    "channels": 3,
    "num_classes": 2,
    "num_threads": 2
}
