"""Prediction data models."""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Sequence

from ..exceptions import RecordValidationError
from ..utils import iso_timestamp


class PredictedClass(Enum):
    """The two classes the model distinguishes, valued by their export label."""
    CLASS_1 = "Class 1"
    CLASS_2 = "Class 2"


def interpret_probabilities(class1_probability: float, class2_probability: float) -> PredictedClass:
    """Pick the predicted class. Ties resolve to Class 2."""
    if class1_probability > class2_probability:
        return PredictedClass.CLASS_1
    return PredictedClass.CLASS_2


def _check_probability(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise RecordValidationError(f"{name} must be a number, got {type(value).__name__}")
    value = float(value)
    if not math.isfinite(value) or not 0.0 <= value <= 1.0:
        raise RecordValidationError(f"{name} must be within [0, 1], got {value}")
    return value


@dataclass(frozen=True)
class ClassProbabilities:
    """Raw model output for one frame. Not required to sum to 1."""
    class1_probability: float
    class2_probability: float

    def __post_init__(self):
        object.__setattr__(self, 'class1_probability',
                           _check_probability('class1_probability', self.class1_probability))
        object.__setattr__(self, 'class2_probability',
                           _check_probability('class2_probability', self.class2_probability))

    @classmethod
    def from_sequence(cls, values: Sequence[float]) -> 'ClassProbabilities':
        if len(values) != 2:
            raise RecordValidationError(f"Expected two probabilities, got {len(values)}")
        return cls(float(values[0]), float(values[1]))

    def to_dict(self) -> Dict[str, float]:
        return {
            'class1Probability': self.class1_probability,
            'class2Probability': self.class2_probability
        }


@dataclass(frozen=True)
class PredictionRecord:
    """One persisted classification outcome.

    Records are immutable once created. ``probabilities`` is optional because
    older stores only kept the predicted class.
    """
    timestamp: str
    predicted_class: PredictedClass
    probabilities: Optional[ClassProbabilities] = None

    @classmethod
    def create(cls, probabilities: ClassProbabilities,
               include_probabilities: bool = True) -> 'PredictionRecord':
        """Build a record stamped with the current time."""
        predicted = interpret_probabilities(probabilities.class1_probability,
                                            probabilities.class2_probability)
        return cls(
            timestamp=iso_timestamp(),
            predicted_class=predicted,
            probabilities=probabilities if include_probabilities else None
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the export interchange shape."""
        data: Dict[str, Any] = {
            'time': self.timestamp,
            'predictedClass': self.predicted_class.value
        }
        if self.probabilities is not None:
            data['probabilities'] = self.probabilities.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PredictionRecord':
        """Validate and parse an interchange dict.

        Accepts the legacy ``exactProbabilities`` key as well as records
        stored without probabilities.
        """
        if not isinstance(data, dict):
            raise RecordValidationError(f"Record must be an object, got {type(data).__name__}")

        timestamp = data.get('time')
        if not isinstance(timestamp, str) or not timestamp:
            raise RecordValidationError("Record is missing its 'time' field")

        try:
            predicted_class = PredictedClass(data.get('predictedClass'))
        except ValueError:
            raise RecordValidationError(f"Unknown predicted class: {data.get('predictedClass')!r}")

        raw = data.get('probabilities', data.get('exactProbabilities'))
        probabilities = None
        if raw is not None:
            if not isinstance(raw, dict):
                raise RecordValidationError("'probabilities' must be an object")
            try:
                probabilities = ClassProbabilities(raw['class1Probability'], raw['class2Probability'])
            except KeyError as e:
                raise RecordValidationError(f"Probabilities missing key {e}")

        return cls(timestamp=timestamp, predicted_class=predicted_class, probabilities=probabilities)
