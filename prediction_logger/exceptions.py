"""Error types for the prediction logger."""


class PredictionLoggerError(Exception):
    """Base error for the prediction logger."""


class PermissionDenied(PredictionLoggerError):
    """Raised when the host refuses access to the capture device."""


class DeviceUnavailable(PredictionLoggerError):
    """Raised when the selected capture device cannot be opened or is lost."""


class NoDeviceSelected(PredictionLoggerError):
    """Raised when capture is started before a device has been selected."""


class NoFrameYet(PredictionLoggerError):
    """Raised when a frame is requested before the stream delivered one."""


class ModelLoadError(PredictionLoggerError):
    """Raised when the classification model cannot be acquired or parsed."""


class InferenceError(PredictionLoggerError):
    """Raised when a frame cannot be classified."""


class StorageUnavailable(PredictionLoggerError):
    """Raised when the prediction database cannot be opened or read."""


class RecordValidationError(PredictionLoggerError):
    """Raised when a stored or supplied record does not have the expected shape."""


class WriteFailed(PredictionLoggerError):
    """Reported (not raised) when an asynchronous record commit fails."""

    def __init__(self, record, cause: Exception):
        super().__init__(f"Failed to persist prediction recorded at {record.timestamp}: {cause}")
        self.record = record
        self.cause = cause
