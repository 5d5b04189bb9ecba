"""
PREDICTION FEATURES

Maps raw native output (class index + probability) onto human-readable
labels read from a line-indexed label file.

LABEL FILE FORMAT:
- One label per line
- Line number (0-based) is the class index
- Trailing newline / carriage return characters are stripped
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .errors import PredictionError


@dataclass(frozen=True)
class Prediction:
    """One entry of the native predictor's output vector."""

    index: int
    probability: float


@dataclass(frozen=True)
class Feature:
    """A labeled prediction: (class index, label, probability)."""

    index: int
    name: str
    probability: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_labels(path: str) -> List[str]:
    """
    Read a label file.

    Raises:
        PredictionError: If the file cannot be read
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            labels = [line.rstrip("\r\n") for line in f]
    except OSError as e:
        raise PredictionError(f"cannot read {path}: {e}") from e

    while labels and labels[-1] == "":
        labels.pop()
    return labels


def to_features(predictions: Iterable[Prediction], labels: Sequence[str]) -> List[Feature]:
    """
    Attach labels to predictions, preserving their order.

    Raises:
        PredictionError: If a prediction index has no label
    """
    features = []
    for pred in predictions:
        if pred.index < 0 or pred.index >= len(labels):
            raise PredictionError(
                f"prediction index {pred.index} out of range for {len(labels)} labels"
            )
        features.append(Feature(
            index=int(pred.index),
            name=labels[pred.index],
            probability=float(pred.probability),
        ))
    return features


def sort_features(features: Iterable[Feature]) -> List[Feature]:
    return sorted(features, key=lambda f: f.probability, reverse=True)


def top_k(features: Sequence[Feature], k: Optional[int]) -> List[Feature]:
    """Return the ``k`` most probable features (all of them if ``k`` is None)."""
    ordered = sort_features(features)
    if k is None:
        return ordered
    if k < 0:
        raise ValueError("k must be non-negative")
    return ordered[:k]
