"""
Stream Value Model
==================

Closed set of value shapes that flow between pipeline stages, plus the
error hierarchy shared by all stages.

Stream Shapes:

    Recording ──segment──→ SegmentSet ──extract──→ FeatureSpace
                                                        │
                                   partition R ─────────┤──── partition K fold
                                        ↓                           ↓
                                   Partition                     FoldSet
                                   │       │
                   select exhaustive│       │svm
                   select restricted│       ↓
                                   ↓   TrainedClassifier
                          SelectionResult   │eval
                                   │eval    ↓
                                   ↓    Evaluation
                         FinalizedSelection

Each shape is an immutable value. A stage consumes the current value and
returns a new one; nothing is mutated in place.

Author: Sleepscore Project Team
License: MIT
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

import numpy as np

from .features import FeatureSpace
from .signals import Segment, Signal


# =============================================================================
# Exceptions
# =============================================================================

class ScoringError(Exception):
    """Base exception for pipeline errors."""
    pass


class CommandError(ScoringError, ValueError):
    """Raised when a stage name or stage argument cannot be interpreted."""
    pass


class StreamShapeError(ScoringError, TypeError):
    """Raised when a stage is applied to a stream shape it does not support."""

    def __init__(self, stage: str, stream: Any, expected: str) -> None:
        self.stage = stage
        self.shape = describe(stream)
        self.expected = expected
        super().__init__(
            f"Stage '{stage}' cannot be applied to {self.shape}; expected {expected}"
        )


class RecordError(ScoringError):
    """Raised when a record cannot be read."""
    pass


class RecordNotFoundError(RecordError, LookupError):
    """Raised when no catalog record matches a record specification."""
    pass


class DegenerateSelectionError(ScoringError):
    """Raised when a feature encoding selects zero features."""
    pass


# =============================================================================
# Stream Shapes
# =============================================================================

@dataclass(frozen=True, eq=False)
class Recording:
    """Output of `load`: one EEG signal plus one label per annotation epoch."""
    signal: Signal
    labels: Tuple[str, ...]
    name: str = ""


@dataclass(frozen=True, eq=False)
class SegmentSet:
    """Output of `segment`: labeled segments in time order."""
    segments: Tuple[Segment, ...]

    def __len__(self) -> int:
        return len(self.segments)


@dataclass(frozen=True, eq=False)
class Partition:
    """Disjoint training and testing sets."""
    training_set: FeatureSpace
    testing_set: FeatureSpace


@dataclass(frozen=True, eq=False)
class FoldSet:
    """K partitions for k-fold cross-validation."""
    folds: Tuple[Partition, ...]

    def __len__(self) -> int:
        return len(self.folds)


@dataclass(frozen=True, eq=False)
class TrainedClassifier:
    """A partition whose training set has been used to fit a classifier."""
    training_set: FeatureSpace
    testing_set: FeatureSpace
    classifier: Any


@dataclass(frozen=True, eq=False)
class Evaluation:
    """
    Classifier evaluated on its testing set.

    Attributes:
        training_set: Vectors the classifier was fitted on
        testing_set: Vectors the classifier was evaluated on
        classifier: Fitted classifier handle
        predicted_set: testing_set with predicted labels (same order)
        accuracy: 1 - mismatches / total, in [0, 1]
        confusion_matrix: Counts, rows = true label, columns = predicted label
        confusion_order: Labels indexing the matrix rows and columns
    """
    training_set: FeatureSpace
    testing_set: FeatureSpace
    classifier: Any
    predicted_set: FeatureSpace
    accuracy: float
    confusion_matrix: np.ndarray
    confusion_order: Tuple[str, ...]

    @property
    def features(self) -> Tuple[str, ...]:
        """Feature subset the classifier was trained on."""
        return self.training_set.feature_names


@dataclass(frozen=True, eq=False)
class FinalizedEvaluation(Evaluation):
    """
    Held-out evaluation of a classifier chosen during a validation search.

    The validation-phase results are kept under `validation_*` names.
    """
    validation_set: Optional[FeatureSpace] = None
    validation_predicted_set: Optional[FeatureSpace] = None
    validation_accuracy: float = 0.0
    validation_confusion_matrix: Optional[np.ndarray] = None
    validation_confusion_order: Tuple[str, ...] = ()


@dataclass(frozen=True, eq=False)
class SelectionResult:
    """
    Output of a feature-selection search.

    Attributes:
        testing_set: Held-out set of the searched partition
        evaluations: Validation evaluations, one per candidate subset
        method: "exhaustive" or "restricted"
    """
    testing_set: FeatureSpace
    evaluations: Tuple[Evaluation, ...]
    method: str = "exhaustive"

    def __len__(self) -> int:
        return len(self.evaluations)


@dataclass(frozen=True, eq=False)
class FinalizedSelection:
    """Held-out evaluations of a selection, sorted by accuracy (descending)."""
    evaluations: Tuple[FinalizedEvaluation, ...]

    def __len__(self) -> int:
        return len(self.evaluations)


Stream = Union[
    Recording,
    SegmentSet,
    FeatureSpace,
    Partition,
    FoldSet,
    TrainedClassifier,
    Evaluation,
    SelectionResult,
    FinalizedSelection,
]


# =============================================================================
# Helpers
# =============================================================================

def describe(stream: Any) -> str:
    """Short human-readable description of a stream value."""
    if stream is None:
        return "an empty stream"
    if isinstance(stream, Recording):
        return f"a recording ({stream.signal.n_samples} samples, {len(stream.labels)} epochs)"
    if isinstance(stream, SegmentSet):
        return f"a segment set ({len(stream)} segments)"
    if isinstance(stream, FeatureSpace):
        return f"a feature space ({len(stream)} vectors, {stream.dimension} features)"
    if isinstance(stream, Partition):
        return (
            f"a partition ({len(stream.training_set)} training, "
            f"{len(stream.testing_set)} testing)"
        )
    if isinstance(stream, FoldSet):
        return f"a fold set ({len(stream)} folds)"
    if isinstance(stream, TrainedClassifier):
        return "a trained classifier"
    if isinstance(stream, FinalizedEvaluation):
        return f"a finalized evaluation (accuracy {stream.accuracy:.3f})"
    if isinstance(stream, Evaluation):
        return f"an evaluation (accuracy {stream.accuracy:.3f})"
    if isinstance(stream, SelectionResult):
        return f"a {stream.method} selection result ({len(stream)} evaluations)"
    if isinstance(stream, FinalizedSelection):
        return f"a finalized selection ({len(stream)} evaluations)"
    return f"an unsupported value of type {type(stream).__name__}"


def summarize(stream: Any) -> Dict[str, Any]:
    """
    Plain-data summary of a stream, suitable for YAML/JSON output.

    Args:
        stream: Any stream value

    Returns:
        Dictionary with a `shape` key and shape-specific details
    """
    summary: Dict[str, Any] = {"shape": describe(stream)}

    if isinstance(stream, FeatureSpace):
        summary["features"] = list(stream.feature_names)
        summary["label_counts"] = {
            label: int(indices.size) for label, indices in stream.by_label().items()
        }
    elif isinstance(stream, Partition):
        summary["training"] = len(stream.training_set)
        summary["testing"] = len(stream.testing_set)
        summary["features"] = list(stream.training_set.feature_names)
    elif isinstance(stream, Evaluation):
        summary.update(_evaluation_summary(stream))
    elif isinstance(stream, (SelectionResult, FinalizedSelection)):
        summary["evaluations"] = [_evaluation_summary(e) for e in stream.evaluations]

    return summary


def _evaluation_summary(evaluation: Evaluation) -> Dict[str, Any]:
    result: Dict[str, Any] = {
        "features": list(evaluation.features),
        "accuracy": float(evaluation.accuracy),
        "confusion_order": list(evaluation.confusion_order),
        "confusion_matrix": np.asarray(evaluation.confusion_matrix).tolist(),
    }
    if isinstance(evaluation, FinalizedEvaluation):
        result["validation_accuracy"] = float(evaluation.validation_accuracy)
    return result
