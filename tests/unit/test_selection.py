"""
Unit Tests for Feature Selection
================================

Tests for median-fold cross-validation, the exhaustive search and the
genetic search operators.

Author: Sleepscore Project Team
License: MIT
"""

import numpy as np
import pytest

from sleepscore.classifier import train
from sleepscore.evaluation import evaluate
from sleepscore.features import FeatureSpace
from sleepscore.selection import (
    GeneticSearch,
    SearchConfig,
    cross_validate,
    exhaustive_search,
    median_index,
    restricted_search,
)
from sleepscore.streams import DegenerateSelectionError, TrainedClassifier


def svm_scorer(partition):
    """Train a linear SVM on the partition and evaluate it."""
    classifier = train("svm", partition.training_set, "linear")
    return evaluate(TrainedClassifier(
        training_set=partition.training_set,
        testing_set=partition.testing_set,
        classifier=classifier,
    ))


@pytest.fixture
def small_search_config():
    """Genetic search configuration small enough for unit tests."""
    return SearchConfig(
        validation_folds=3, population_size=4, mutation_rate=0.2, generations=3
    )


# =============================================================================
# Configuration Tests
# =============================================================================


class TestSearchConfig:
    """Tests for SearchConfig."""

    def test_default_values(self):
        """Test default configuration values."""
        config = SearchConfig()
        assert config.validation_folds == 5
        assert config.population_size == 5
        assert config.mutation_rate == 0.2
        assert config.generations == 5

    def test_invalid_values(self):
        """Test invalid configurations raise errors."""
        with pytest.raises(ValueError):
            SearchConfig(validation_folds=1)
        with pytest.raises(ValueError):
            SearchConfig(population_size=1)
        with pytest.raises(ValueError):
            SearchConfig(mutation_rate=1.5)
        with pytest.raises(ValueError):
            SearchConfig(generations=0)


# =============================================================================
# Cross-Validation Tests
# =============================================================================


class TestMedianFold:
    """Tests for median fold selection."""

    def test_exact_median(self):
        """Test the fold equal to the median is chosen."""
        assert median_index([0.5, 0.7, 0.6]) == 2

    def test_first_of_ties(self):
        """Test ties go to the first fold."""
        assert median_index([0.6, 0.5, 0.6, 0.9, 0.6]) == 0

    def test_even_count_nearest(self):
        """Test an even count falls back to the first nearest fold."""
        assert median_index([0.0, 0.25, 0.75, 1.0]) == 1

    def test_cross_validate_returns_median_fold(self, separable_space, rng):
        """Test the returned evaluation has the median accuracy."""
        evaluations = []

        def recording_scorer(partition):
            evaluation = svm_scorer(partition)
            evaluations.append(evaluation)
            return evaluation

        chosen = cross_validate(separable_space, recording_scorer, rng, folds=5)
        accuracies = [e.accuracy for e in evaluations]
        assert len(evaluations) == 5
        assert chosen is evaluations[median_index(accuracies)]


# =============================================================================
# Exhaustive Search Tests
# =============================================================================


class TestExhaustiveSearch:
    """Tests for the exhaustive search."""

    def test_candidate_count_and_order(self, separable_space, rng):
        """Test 2^D - 1 candidates, smaller subsets first."""
        evaluations = exhaustive_search(separable_space, svm_scorer, rng, folds=3)
        assert [e.features for e in evaluations] == [
            ("X",), ("Y",), ("Z",),
            ("X", "Y"), ("X", "Z"), ("Y", "Z"),
            ("X", "Y", "Z"),
        ]

    def test_informative_feature_wins(self, separable_space, rng):
        """Test subsets with the separating feature score highest."""
        evaluations = exhaustive_search(separable_space, svm_scorer, rng, folds=3)
        by_features = {e.features: e.accuracy for e in evaluations}
        assert by_features[("X",)] >= 0.9
        assert by_features[("X",)] > by_features[("Y", "Z")]

    def test_empty_universe(self, rng):
        """Test an empty feature universe raises DegenerateSelectionError."""
        space = FeatureSpace(np.zeros((6, 0)), ["W"] * 3 + ["R"] * 3, [])
        with pytest.raises(DegenerateSelectionError):
            exhaustive_search(space, svm_scorer, rng)


# =============================================================================
# Genetic Search Tests
# =============================================================================


class TestGeneticOperators:
    """Tests for the genetic search operators."""

    def test_random_encodings_nonzero(self, separable_space, rng):
        """Test random encodings never select zero features."""
        search = GeneticSearch(separable_space, svm_scorer, rng)
        encodings = search.random_encodings(200)
        assert encodings.shape == (200, 3)
        assert np.all(encodings.sum(axis=1) > 0)

    def test_nonzeroize_keeps_nonzero_rows(self, separable_space, rng):
        """Test rows that already select features are untouched."""
        search = GeneticSearch(separable_space, svm_scorer, rng)
        encodings = np.array([[1, 0, 1], [0, 0, 0]])
        fixed = search.nonzeroize(encodings)
        np.testing.assert_array_equal(fixed[0], [1, 0, 1])
        assert fixed[1].sum() > 0

    def test_roulette_zero_weights(self, separable_space, rng):
        """Test all-zero fitness falls back to a uniform choice."""
        search = GeneticSearch(separable_space, svm_scorer, rng)
        picks = {search.roulette(np.zeros(4)) for _ in range(100)}
        assert picks <= {0, 1, 2, 3}
        assert len(picks) > 1

    def test_roulette_proportional(self, separable_space, rng):
        """Test only positive-fitness individuals are picked."""
        search = GeneticSearch(separable_space, svm_scorer, rng)
        picks = {search.roulette(np.array([0.0, 0.7, 0.0, 0.3])) for _ in range(100)}
        assert picks == {1, 3}

    def test_parents_distinct(self, separable_space, rng):
        """Test the two parents always differ."""
        search = GeneticSearch(separable_space, svm_scorer, rng)
        for _ in range(50):
            first, second = search.select_parents(np.array([0.5, 0.0, 0.0, 0.0]))
            assert first == 0
            assert second != first

    def test_crossover_prefix_suffix(self, separable_space, rng):
        """Test the child is a prefix of parent 1 and a suffix of parent 2."""
        search = GeneticSearch(separable_space, svm_scorer, rng)
        for _ in range(20):
            child = search.crossover(np.ones(3, dtype=np.int8), np.zeros(3, dtype=np.int8))
            cut = int(child.sum())
            np.testing.assert_array_equal(child[:cut], 1)
            np.testing.assert_array_equal(child[cut:], 0)

    def test_mutation_rates(self, separable_space, rng):
        """Test mutation rate 0 keeps and rate 1 flips every bit."""
        encoding = np.array([1, 0, 1], dtype=np.int8)
        keep_all = GeneticSearch(
            separable_space, svm_scorer, rng, SearchConfig(mutation_rate=0.0)
        )
        flip_all = GeneticSearch(
            separable_space, svm_scorer, rng, SearchConfig(mutation_rate=1.0)
        )
        np.testing.assert_array_equal(keep_all.mutate(encoding), [1, 0, 1])
        np.testing.assert_array_equal(flip_all.mutate(encoding), [0, 1, 0])

    def test_zero_encoding_fitness(self, separable_space, rng):
        """Test evaluating an all-zero encoding raises."""
        search = GeneticSearch(separable_space, svm_scorer, rng)
        with pytest.raises(DegenerateSelectionError, match="Selected zero features!"):
            search.fitness(np.zeros(3, dtype=np.int8))

    def test_decode(self, separable_space, rng):
        """Test encodings decode to feature names in universe order."""
        search = GeneticSearch(separable_space, svm_scorer, rng)
        assert search.decode(np.array([1, 0, 1])) == ("X", "Z")


class TestGeneticSearch:
    """Tests for complete genetic search runs."""

    @pytest.mark.slow
    def test_elitism_monotonic(self, separable_space, rng, small_search_config):
        """Test the best fitness never decreases across generations."""
        result = GeneticSearch(separable_space, svm_scorer, rng, small_search_config).run()
        best = [record.best_fitness for record in result.history]
        assert len(result.history) == small_search_config.generations
        assert all(b2 >= b1 for b1, b2 in zip(best, best[1:]))

    @pytest.mark.slow
    def test_evaluated_encodings_nonzero(self, separable_space, rng, small_search_config):
        """Test the fitness function only ever sees non-zero encodings."""
        result = GeneticSearch(separable_space, svm_scorer, rng, small_search_config).run()
        config = small_search_config
        assert len(result.evaluated) == config.population_size * config.generations
        assert all(encoding.sum() > 0 for encoding in result.evaluated)

    @pytest.mark.slow
    def test_result_is_fittest(self, separable_space, rng, small_search_config):
        """Test the result is the best individual of the last generation."""
        result = GeneticSearch(separable_space, svm_scorer, rng, small_search_config).run()
        assert result.evaluation.accuracy == result.history[-1].best_fitness
        assert result.features == GeneticSearch(
            separable_space, svm_scorer, rng
        ).decode(result.encoding)

    @pytest.mark.slow
    def test_restricted_search_single_result(self, separable_space, rng, small_search_config):
        """Test the restricted search returns one evaluation."""
        evaluations = restricted_search(separable_space, svm_scorer, rng, small_search_config)
        assert len(evaluations) == 1
        assert len(evaluations[0].features) >= 1

    def test_deterministic(self, separable_space, small_search_config):
        """Test equal seeds give equal searches."""
        a = GeneticSearch(
            separable_space, svm_scorer, np.random.default_rng(5), small_search_config
        ).run()
        b = GeneticSearch(
            separable_space, svm_scorer, np.random.default_rng(5), small_search_config
        ).run()
        np.testing.assert_array_equal(a.encoding, b.encoding)
        assert a.evaluation.accuracy == b.evaluation.accuracy
