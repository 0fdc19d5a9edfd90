"""Binary image classifier backed by a TensorFlow Lite model."""

import os
import threading
import time
import urllib.request
from pathlib import Path
from typing import Any, Callable, Optional, Tuple
from urllib.parse import urlparse

import cv2
import numpy as np

from .interfaces import ClassifierInterface
from ..config.defaults import MODEL_SETTINGS
from ..exceptions import InferenceError, ModelLoadError, RecordValidationError
from ..logging_config import get_logger, log_performance
from ..models.prediction import ClassProbabilities

# Handle TensorFlow Lite import gracefully
try:
    import tflite_runtime.interpreter as tflite
    TFLITE_AVAILABLE = True
except ImportError:
    try:
        import tensorflow.lite as tflite
        TFLITE_AVAILABLE = True
    except ImportError:
        TFLITE_AVAILABLE = False
        tflite = None

logger = get_logger("classifier")

PredictFn = Callable[[np.ndarray], Any]


def _is_url(source: str) -> bool:
    return urlparse(source).scheme in ("http", "https")


class Classifier(ClassifierInterface):
    """Maps RGB frames to a pair of class probabilities.

    The model is either a TFLite file (local path or http(s) URL, fetched
    once into ``models_dir``) or any ``predict_fn`` taking a
    ``(1, H, W, 3)`` float32 tensor and returning two probabilities.
    """

    def __init__(self, model_source: str = "",
                 input_size: Tuple[int, int] = MODEL_SETTINGS["input_size"],
                 models_dir: str = "models",
                 predict_fn: Optional[PredictFn] = None,
                 num_threads: int = MODEL_SETTINGS["num_threads"]):
        self.model_source = model_source
        self.input_size = tuple(input_size)
        self.models_dir = Path(models_dir)
        self.num_threads = num_threads

        self._predict_fn = predict_fn
        self._interpreter = None
        self._input_details = None
        self._output_details = None
        self._loaded = False
        self._load_lock = threading.Lock()
        self._inference_lock = threading.Lock()

        self.model_path: Optional[str] = None
        self.inference_count = 0
        self.last_inference_ms = 0.0

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def load_model(self) -> None:
        """Acquire the model once. Raises ModelLoadError on failure."""
        with self._load_lock:
            if self._loaded:
                return

            if self._predict_fn is not None:
                self._loaded = True
                logger.info("Classifier using supplied prediction function")
                return

            if not self.model_source:
                raise ModelLoadError("No model path or URL configured")

            if not TFLITE_AVAILABLE:
                raise ModelLoadError("TensorFlow Lite runtime is not installed")

            model_path = self._resolve_model_path(self.model_source)

            start_time = time.time()
            try:
                interpreter = tflite.Interpreter(model_path=model_path, num_threads=self.num_threads)
                interpreter.allocate_tensors()
                input_details = interpreter.get_input_details()
                output_details = interpreter.get_output_details()
            except Exception as e:
                logger.error(f"Failed to load TFLite model {model_path}: {e}")
                raise ModelLoadError(f"Could not load model {model_path}: {e}") from e

            shape = tuple(input_details[0]["shape"])
            if len(shape) != 4 or shape[3] != MODEL_SETTINGS["channels"]:
                raise ModelLoadError(f"Model input shape {shape} is not (1, H, W, 3)")
            model_size = (int(shape[2]), int(shape[1]))
            if model_size != self.input_size:
                logger.warning(f"Configured input size {self.input_size} differs from model "
                               f"input {model_size}; using the model's")
                self.input_size = model_size

            self._interpreter = interpreter
            self._input_details = input_details
            self._output_details = output_details
            self.model_path = model_path
            self._loaded = True

            log_performance("Model loaded", {
                "model_path": model_path,
                "load_time_ms": round((time.time() - start_time) * 1000, 1),
                "input_size": f"{self.input_size[0]}x{self.input_size[1]}"
            })
            logger.info(f"Model loaded from {model_path}")

    def _resolve_model_path(self, source: str) -> str:
        """Return a local model path, downloading URLs into models_dir."""
        if not _is_url(source):
            if not os.path.isfile(source):
                raise ModelLoadError(f"Model file not found: {source}")
            return source

        filename = os.path.basename(urlparse(source).path) or "model.tflite"
        target = self.models_dir / filename
        if target.is_file():
            logger.info(f"Using cached model {target}")
            return str(target)

        self.models_dir.mkdir(parents=True, exist_ok=True)
        partial = target.with_suffix(target.suffix + ".part")
        try:
            logger.info(f"Downloading model from {source}")
            urllib.request.urlretrieve(source, partial)
            partial.replace(target)
        except (OSError, ValueError) as e:
            if partial.exists():
                partial.unlink()
            raise ModelLoadError(f"Failed to download model from {source}: {e}") from e

        return str(target)

    def preprocess(self, frame: np.ndarray) -> np.ndarray:
        """Resize (nearest neighbour) to the model input, cast to float32, add a batch axis."""
        if not isinstance(frame, np.ndarray) or frame.ndim != 3 or frame.shape[2] != MODEL_SETTINGS["channels"]:
            shape = getattr(frame, 'shape', None)
            raise InferenceError(f"Expected an HxWx3 frame, got shape {shape}")

        resized = cv2.resize(frame, self.input_size, interpolation=cv2.INTER_NEAREST)
        return np.expand_dims(resized.astype(np.float32), axis=0)

    def classify(self, frame: np.ndarray) -> ClassProbabilities:
        if not self._loaded:
            raise InferenceError("Model has not been loaded")

        tensor = self.preprocess(frame)

        start_time = time.time()
        try:
            with self._inference_lock:
                if self._predict_fn is not None:
                    output = self._predict_fn(tensor)
                else:
                    output = self._invoke(tensor)
        except InferenceError:
            raise
        except Exception as e:
            raise InferenceError(f"Model inference failed: {e}") from e

        try:
            values = np.asarray(output, dtype=np.float64).reshape(-1)
        except (TypeError, ValueError) as e:
            raise InferenceError(f"Model output is not a numeric array: {e}") from e
        if values.size != MODEL_SETTINGS["num_classes"]:
            raise InferenceError(f"Expected two class probabilities, got {values.size} values")

        try:
            probabilities = ClassProbabilities(float(values[0]), float(values[1]))
        except RecordValidationError as e:
            raise InferenceError(f"Model produced invalid probabilities: {e}") from e

        self.inference_count += 1
        self.last_inference_ms = (time.time() - start_time) * 1000
        log_performance("Frame classified", {
            "inference_ms": round(self.last_inference_ms, 1),
            "class1": round(probabilities.class1_probability, 4),
            "class2": round(probabilities.class2_probability, 4)
        })
        return probabilities

    def _invoke(self, tensor: np.ndarray) -> np.ndarray:
        input_detail = self._input_details[0]
        expected = tuple(input_detail["shape"])
        if tuple(tensor.shape) != expected:
            raise InferenceError(f"Input shape {tuple(tensor.shape)} does not match model input {expected}")

        dtype = input_detail["dtype"]
        if dtype != np.float32:
            scale, zero_point = input_detail.get("quantization", (0.0, 0))
            if scale:
                tensor = tensor / scale + zero_point
            tensor = tensor.astype(dtype)

        self._interpreter.set_tensor(input_detail["index"], tensor)
        self._interpreter.invoke()

        output_detail = self._output_details[0]
        output = self._interpreter.get_tensor(output_detail["index"])
        if output_detail["dtype"] != np.float32:
            scale, zero_point = output_detail.get("quantization", (0.0, 0))
            if scale:
                output = (output.astype(np.float32) - zero_point) * scale
        return output

    def get_model_info(self) -> dict:
        """Get classifier information."""
        return {
            "loaded": self._loaded,
            "model_source": self.model_source,
            "model_path": self.model_path,
            "input_size": self.input_size,
            "backend": "callable" if self._predict_fn is not None else "tflite",
            "tflite_available": TFLITE_AVAILABLE,
            "inference_count": self.inference_count,
            "last_inference_ms": self.last_inference_ms
        }
