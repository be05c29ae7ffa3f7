"""
Unit Tests for Classification and Evaluation
============================================

Tests for the SVM classifier, accuracy, confusion matrices and
finalization of selection results.

Author: Sleepscore Project Team
License: MIT
"""

import numpy as np
import pytest

from sleepscore.classifier import SVM_KERNELS, SVMClassifier, train
from sleepscore.evaluation import accuracy, confusion, evaluate, finalize
from sleepscore.features import FeatureSpace
from sleepscore.partitioning import random_split
from sleepscore.selection import exhaustive_search
from sleepscore.streams import (
    CommandError,
    FinalizedEvaluation,
    SelectionResult,
    TrainedClassifier,
)


@pytest.fixture
def trained(separable_space, rng):
    """Linear SVM trained on half of the separable space."""
    partition = random_split(separable_space, 0.5, rng)
    return TrainedClassifier(
        training_set=partition.training_set,
        testing_set=partition.testing_set,
        classifier=train("svm", partition.training_set, "linear"),
    )


# =============================================================================
# Classifier Tests
# =============================================================================


class TestSVMClassifier:
    """Tests for SVMClassifier."""

    @pytest.mark.parametrize("kernel", SVM_KERNELS)
    def test_kernels(self, separable_space, kernel):
        """Test every supported kernel trains and predicts."""
        classifier = SVMClassifier(kernel).fit(separable_space)
        predicted = classifier.predict(separable_space)
        assert len(predicted) == len(separable_space)
        assert set(predicted.label_set()) <= {"W", "3"}

    def test_unknown_kernel(self):
        """Test an unknown kernel raises CommandError."""
        with pytest.raises(CommandError):
            SVMClassifier("cubic")

    def test_unknown_family(self, separable_space):
        """Test an unknown classifier family raises CommandError."""
        with pytest.raises(CommandError):
            train("knn", separable_space, "linear")

    def test_prediction_preserves_vectors(self, separable_space):
        """Test predictions keep vectors and order, replacing labels only."""
        classifier = SVMClassifier("linear").fit(separable_space)
        predicted = classifier.predict(separable_space)
        np.testing.assert_array_equal(predicted.matrix, separable_space.matrix)
        assert predicted.feature_names == separable_space.feature_names

    def test_feature_mismatch(self, separable_space):
        """Test predicting on different features raises ValueError."""
        classifier = SVMClassifier("linear").fit(separable_space)
        with pytest.raises(ValueError):
            classifier.predict(separable_space.select("X", "Y"))

    def test_single_class_training(self):
        """Test a single-label training set predicts that label."""
        space = FeatureSpace(np.random.default_rng(0).random((6, 2)), ["2"] * 6, ["A", "B"])
        classifier = SVMClassifier("rbf").fit(space)
        assert classifier.predict(space).labels.tolist() == ["2"] * 6

    def test_predict_before_fit(self, separable_space):
        """Test predicting with an unfitted classifier raises."""
        with pytest.raises(RuntimeError):
            SVMClassifier("linear").predict(separable_space)


# =============================================================================
# Metric Tests
# =============================================================================


class TestAccuracy:
    """Tests for accuracy."""

    def test_perfect_and_partial(self):
        """Test accuracy as one minus the mismatch rate."""
        assert accuracy(["W", "R", "2"], ["W", "R", "2"]) == 1.0
        assert accuracy(["W", "R", "2", "3"], ["W", "2", "2", "2"]) == 0.5

    def test_bounds(self):
        """Test accuracy stays in [0, 1]."""
        assert accuracy(["W", "W"], ["R", "R"]) == 0.0

    def test_length_mismatch(self):
        """Test label sequences of different lengths raise."""
        with pytest.raises(ValueError):
            accuracy(["W"], ["W", "R"])

    def test_empty(self):
        """Test empty label sequences raise."""
        with pytest.raises(ValueError):
            accuracy([], [])


class TestConfusion:
    """Tests for confusion matrices."""

    def test_order_sorted_true_then_predicted(self):
        """Test label order follows sorted true labels, then predictions."""
        matrix, order = confusion(["W", "2", "W", "R"], ["W", "2", "M", "2"])
        assert order == ("2", "R", "W", "M")
        expected = np.array([
            [1, 0, 0, 0],   # 2 → 2
            [1, 0, 0, 0],   # R → 2
            [0, 0, 1, 1],   # W → W, W → M
            [0, 0, 0, 0],   # M never true
        ])
        np.testing.assert_array_equal(matrix, expected)

    def test_counts_sum_to_total(self):
        """Test the matrix counts every pair once."""
        true = list("WW1122RR34")
        predicted = list("W1122RRW34")
        matrix, _ = confusion(true, predicted)
        assert matrix.sum() == len(true)
        assert np.trace(matrix) == sum(t == p for t, p in zip(true, predicted))


# =============================================================================
# Evaluation Tests
# =============================================================================


class TestEvaluate:
    """Tests for evaluate."""

    def test_evaluation_fields(self, trained):
        """Test an evaluation carries sets, predictions and metrics."""
        evaluation = evaluate(trained)
        assert evaluation.training_set is trained.training_set
        assert evaluation.testing_set is trained.testing_set
        assert len(evaluation.predicted_set) == len(trained.testing_set)
        assert 0.0 <= evaluation.accuracy <= 1.0
        assert evaluation.confusion_matrix.sum() == len(trained.testing_set)
        assert evaluation.features == ("X", "Y", "Z")

    def test_separable_accuracy(self, trained):
        """Test a separable problem is classified almost perfectly."""
        assert evaluate(trained).accuracy >= 0.9


class TestFinalize:
    """Tests for finalizing selection results."""

    @pytest.fixture
    def selection(self, separable_space, rng):
        """Exhaustive selection over the separable space."""
        partition = random_split(separable_space, 0.5, rng)

        def scorer(p):
            return evaluate(TrainedClassifier(
                p.training_set, p.testing_set, train("svm", p.training_set, "linear")
            ))

        evaluations = exhaustive_search(partition.training_set, scorer, rng, folds=3)
        return SelectionResult(
            testing_set=partition.testing_set, evaluations=tuple(evaluations)
        )

    def test_sorted_descending(self, selection):
        """Test finalized evaluations are sorted by held-out accuracy."""
        finalized = finalize(selection)
        accuracies = [e.accuracy for e in finalized.evaluations]
        assert len(finalized) == len(selection)
        assert accuracies == sorted(accuracies, reverse=True)

    def test_held_out_features(self, selection):
        """Test each held-out set is restricted to the evaluation's features."""
        for evaluation in finalize(selection).evaluations:
            assert isinstance(evaluation, FinalizedEvaluation)
            assert evaluation.testing_set.feature_names == evaluation.features
            assert len(evaluation.testing_set) == len(selection.testing_set)

    def test_validation_fields_kept(self, selection):
        """Test validation results move to validation_* fields."""
        by_features = {e.features: e for e in selection.evaluations}
        for evaluation in finalize(selection).evaluations:
            validation = by_features[evaluation.features]
            assert evaluation.validation_accuracy == validation.accuracy
            assert evaluation.validation_set is validation.testing_set
            assert evaluation.classifier is validation.classifier

    def test_custom_evaluator(self, selection):
        """Test a custom evaluator is used for every held-out evaluation."""
        calls = []

        def evaluator(trained_classifier):
            calls.append(trained_classifier)
            return evaluate(trained_classifier)

        finalize(selection, evaluator=evaluator)
        assert len(calls) == len(selection)
