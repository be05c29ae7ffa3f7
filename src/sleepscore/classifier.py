"""
Classifier Module
=================

Classifier families usable from the `svm` stage and from the feature
selection searches.

Contract:
    classifier = train("svm", training_set, kernel="linear")
    predicted_set = classifier.predict(testing_set)

    predicted_set has the same vectors, in the same order, as testing_set;
    only the labels are replaced by predictions.

Features are standardized (zero mean, unit variance on the training set)
before fitting.

Author: Sleepscore Project Team
License: MIT
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple, Type

import numpy as np
from sklearn.dummy import DummyClassifier
from sklearn.pipeline import make_pipeline
from sklearn.preprocessing import StandardScaler
from sklearn.svm import SVC

from .features import FeatureSpace
from .streams import CommandError

logger = logging.getLogger(__name__)


SVM_KERNELS = ("linear", "rbf", "poly", "sigmoid")


class SVMClassifier:
    """
    Support vector machine over a feature space.

    A training set with a single label cannot be separated; in that case
    the classifier predicts that label for every vector.

    Example:
        >>> svm = SVMClassifier("rbf").fit(partition.training_set)
        >>> predicted = svm.predict(partition.testing_set)
    """

    family = "svm"

    def __init__(self, kernel: str = "linear", random_state: Optional[int] = None) -> None:
        if kernel not in SVM_KERNELS:
            raise CommandError(
                f'Unknown SVM kernel "{kernel}"; expected one of {", ".join(SVM_KERNELS)}'
            )
        self.kernel = kernel
        self.random_state = random_state
        self.feature_names: Tuple[str, ...] = ()
        self._model = None

    def fit(self, training_set: FeatureSpace) -> SVMClassifier:
        """Fit the classifier to a labeled feature space."""
        if len(training_set) == 0:
            raise ValueError("Cannot train a classifier on an empty training set")

        self.feature_names = training_set.feature_names
        labels = training_set.labels.astype(str)

        if len(training_set.label_set()) < 2:
            logger.warning(
                f"Training set has a single label ({labels[0]}); "
                "predicting it for every vector"
            )
            self._model = DummyClassifier(strategy="most_frequent")
        else:
            self._model = make_pipeline(
                StandardScaler(),
                SVC(kernel=self.kernel, random_state=self.random_state),
            )

        self._model.fit(training_set.matrix, labels)
        logger.debug(
            f"Trained {self.kernel} SVM on {len(training_set)} vectors, "
            f"features {list(self.feature_names)}"
        )
        return self

    def predict(self, testing_set: FeatureSpace) -> FeatureSpace:
        """
        Predict a label for every vector.

        Returns:
            testing_set relabeled with the predictions
        """
        if self._model is None:
            raise RuntimeError("Classifier must be fitted before predicting")
        if testing_set.feature_names != self.feature_names:
            raise ValueError(
                f"Testing features {list(testing_set.feature_names)} do not match "
                f"training features {list(self.feature_names)}"
            )
        if len(testing_set) == 0:
            return testing_set

        predictions = self._model.predict(testing_set.matrix)
        return testing_set.relabel([str(p) for p in predictions])

    @property
    def classes(self) -> np.ndarray:
        """Labels seen during training."""
        if self._model is None:
            return np.array([], dtype=str)
        return self._model.classes_

    def __repr__(self) -> str:
        return f"SVMClassifier(kernel={self.kernel!r}, features={list(self.feature_names)})"


CLASSIFIER_FAMILIES: Dict[str, Type[SVMClassifier]] = {
    "svm": SVMClassifier,
}


def train(
    family: str,
    training_set: FeatureSpace,
    kernel: str,
    random_state: Optional[int] = None,
) -> SVMClassifier:
    """
    Train a classifier of the given family.

    Args:
        family: Classifier family name (e.g. "svm")
        training_set: Labeled training vectors
        kernel: Family-specific kernel name
        random_state: Seed for the underlying estimator

    Raises:
        CommandError: If the family or kernel is unknown
    """
    if family not in CLASSIFIER_FAMILIES:
        raise CommandError(f'Unknown classifier "{family}".')
    return CLASSIFIER_FAMILIES[family](kernel, random_state=random_state).fit(training_set)
