"""Service interfaces and abstract base classes."""

from abc import ABC, abstractmethod
from typing import List, Optional

import numpy as np

from ..models.prediction import ClassProbabilities, PredictionRecord


class FrameSourceInterface(ABC):
    """Interface for a live frame source."""

    @abstractmethod
    def select_device(self, device_id: str) -> None:
        """Choose the capture device used by the next start()."""
        pass

    @abstractmethod
    def start(self) -> None:
        """Acquire the capture stream for the selected device."""
        pass

    @abstractmethod
    def current_frame(self) -> np.ndarray:
        """Return the most recent frame, or raise NoFrameYet."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Release the capture stream."""
        pass

    @property
    @abstractmethod
    def selected_device(self) -> Optional[str]:
        """The currently selected device identifier."""
        pass


class ClassifierInterface(ABC):
    """Interface for the binary image classifier."""

    @abstractmethod
    def load_model(self) -> None:
        """Acquire the model resource."""
        pass

    @abstractmethod
    def classify(self, frame: np.ndarray) -> ClassProbabilities:
        """Classify a frame into a pair of class probabilities."""
        pass

    @property
    @abstractmethod
    def is_loaded(self) -> bool:
        """Whether load_model() has completed."""
        pass


class PredictionStoreInterface(ABC):
    """Interface for the append-only prediction log."""

    @abstractmethod
    def open(self) -> None:
        """Ensure the log exists; raise StorageUnavailable otherwise."""
        pass

    @abstractmethod
    def add(self, record: PredictionRecord) -> None:
        """Queue a record for persistence without waiting for the commit."""
        pass

    @abstractmethod
    def list_all(self) -> List[PredictionRecord]:
        """Return every record in insertion order."""
        pass

    @abstractmethod
    def clear_all(self) -> int:
        """Remove every record and return how many were removed."""
        pass
