"""
Evaluation Aggregator
=====================

Turns a trained classifier and its testing set into predictions, an
accuracy score and a confusion matrix, and promotes the results of a
validation search to held-out test results.

Metrics:
    accuracy = 1 - mismatches / total   (exact label equality)

    Confusion matrix: (true, predicted) pairs are sorted by true label and
    counted per label pair. confusion_order lists the labels in first
    appearance order over the sorted true labels, then the predicted
    labels; rows are true labels, columns predicted labels.

Author: Sleepscore Project Team
License: MIT
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np
from sklearn.metrics import confusion_matrix as sklearn_confusion_matrix

from .streams import (
    Evaluation,
    FinalizedEvaluation,
    FinalizedSelection,
    SelectionResult,
    TrainedClassifier,
)

logger = logging.getLogger(__name__)


def accuracy(true_labels: Sequence[str], predicted_labels: Sequence[str]) -> float:
    """
    Fraction of exactly matching labels.

    Raises:
        ValueError: If the sequences are empty or of different lengths
    """
    true_labels = np.asarray(true_labels, dtype=object)
    predicted_labels = np.asarray(predicted_labels, dtype=object)
    if true_labels.shape != predicted_labels.shape:
        raise ValueError(
            f"Label counts differ: {true_labels.size} true, {predicted_labels.size} predicted"
        )
    if true_labels.size == 0:
        raise ValueError("Cannot compute accuracy of an empty testing set")

    mismatches = np.count_nonzero(true_labels != predicted_labels)
    return 1.0 - mismatches / true_labels.size


def confusion(
    true_labels: Sequence[str],
    predicted_labels: Sequence[str],
) -> Tuple[np.ndarray, Tuple[str, ...]]:
    """
    Confusion matrix of true versus predicted labels.

    Returns:
        Tuple of (matrix, order); matrix[i, j] counts vectors with true
        label order[i] predicted as order[j]
    """
    true_labels = [str(label) for label in true_labels]
    predicted_labels = [str(label) for label in predicted_labels]

    arrangement = sorted(range(len(true_labels)), key=lambda i: true_labels[i])
    sorted_true = [true_labels[i] for i in arrangement]
    sorted_predicted = [predicted_labels[i] for i in arrangement]

    order: List[str] = []
    for label in sorted_true + sorted_predicted:
        if label not in order:
            order.append(label)

    matrix = sklearn_confusion_matrix(sorted_true, sorted_predicted, labels=order)
    return matrix, tuple(order)


def evaluate(trained: TrainedClassifier) -> Evaluation:
    """
    Evaluate a trained classifier on its testing set.

    Args:
        trained: Partition plus fitted classifier

    Returns:
        Complete Evaluation
    """
    predicted_set = trained.classifier.predict(trained.testing_set)
    true_labels = trained.testing_set.labels
    predicted_labels = predicted_set.labels

    score = accuracy(true_labels, predicted_labels)
    matrix, order = confusion(true_labels, predicted_labels)

    logger.debug(
        f"Evaluated {len(trained.testing_set)} vectors: accuracy {score:.4f}"
    )
    return Evaluation(
        training_set=trained.training_set,
        testing_set=trained.testing_set,
        classifier=trained.classifier,
        predicted_set=predicted_set,
        accuracy=score,
        confusion_matrix=matrix,
        confusion_order=order,
    )


def finalize(
    selection: SelectionResult,
    evaluator: Optional[Callable[[TrainedClassifier], Evaluation]] = None,
) -> FinalizedSelection:
    """
    Promote validation evaluations to held-out test evaluations.

    For every validation evaluation, the classifier fitted during the
    search is evaluated on the held-out testing set restricted to that
    evaluation's features. The fold it was validated on becomes the
    `validation_set`; all validation metrics are kept under `validation_*`
    names.

    Args:
        selection: Output of an exhaustive or restricted search
        evaluator: Evaluation function; defaults to `evaluate`

    Returns:
        FinalizedSelection sorted by held-out accuracy, descending
    """
    evaluator = evaluator if evaluator is not None else evaluate

    finalized = []
    for validation in selection.evaluations:
        testing_set = selection.testing_set.select(*validation.features)
        held_out = evaluator(TrainedClassifier(
            training_set=validation.training_set,
            testing_set=testing_set,
            classifier=validation.classifier,
        ))
        finalized.append(FinalizedEvaluation(
            training_set=held_out.training_set,
            testing_set=held_out.testing_set,
            classifier=held_out.classifier,
            predicted_set=held_out.predicted_set,
            accuracy=held_out.accuracy,
            confusion_matrix=held_out.confusion_matrix,
            confusion_order=held_out.confusion_order,
            validation_set=validation.testing_set,
            validation_predicted_set=validation.predicted_set,
            validation_accuracy=validation.accuracy,
            validation_confusion_matrix=validation.confusion_matrix,
            validation_confusion_order=validation.confusion_order,
        ))

    finalized.sort(key=lambda e: e.accuracy, reverse=True)
    if finalized:
        logger.info(
            f"Best held-out accuracy {finalized[0].accuracy:.4f} with "
            f"features {list(finalized[0].features)}"
        )
    return FinalizedSelection(evaluations=tuple(finalized))
