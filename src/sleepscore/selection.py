"""
Feature Selection Searches
==========================

Exhaustive and genetic (restricted) searches for the feature subset that
gives the best cross-validated classifier accuracy.

Candidate Scoring:
    A candidate subset is scored by k-fold cross-validation (k = 5 by
    default) of the classifier on the training set restricted to the
    subset. The fold whose accuracy equals the median of the k fold
    accuracies is kept as the candidate's Evaluation; ties go to the first
    such fold.

Exhaustive Search:
    Every non-empty subset, grouped by increasing size, each size in
    lexicographic order of feature indices: 2^D - 1 candidates.

Genetic Search:
    Population of N bit vectors over the D features (bit i = feature i).

    generation 1:   N random non-zero encodings, evaluated
    generation t:   N offspring, each from
                      roulette-wheel selection of two distinct parents
                      single-point crossover at a random cut
                      bit-flip mutation with probability p
                      resampling of an all-zero result
                    parents + offspring sorted by fitness, best N kept

    Fitness is the candidate accuracy. Elitism makes the best fitness
    non-decreasing across generations.

Author: Sleepscore Project Team
License: MIT
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

import numpy as np

from .features import FeatureSpace
from .partitioning import kfold_split
from .streams import DegenerateSelectionError, Evaluation, Partition

logger = logging.getLogger(__name__)


Scorer = Callable[[Partition], Evaluation]


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class SearchConfig:
    """
    Configuration for the feature selection searches.

    Attributes:
        validation_folds: Fold count of the per-candidate cross-validation
        population_size: Individuals per generation (genetic search)
        mutation_rate: Per-bit flip probability (genetic search)
        generations: Number of generations, including the initial one
    """
    validation_folds: int = 5
    population_size: int = 5
    mutation_rate: float = 0.2
    generations: int = 5

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.validation_folds < 2:
            raise ValueError(f"validation_folds must be >= 2, got {self.validation_folds}")
        if self.population_size < 2:
            raise ValueError(f"population_size must be >= 2, got {self.population_size}")
        if not 0 <= self.mutation_rate <= 1:
            raise ValueError(f"mutation_rate must be in [0, 1], got {self.mutation_rate}")
        if self.generations < 1:
            raise ValueError(f"generations must be >= 1, got {self.generations}")


# =============================================================================
# Cross-Validation
# =============================================================================

def median_index(accuracies: np.ndarray) -> int:
    """
    Index of the first accuracy equal to the median.

    With an even count the median may fall between two values; the first
    accuracy nearest to it is used.
    """
    accuracies = np.asarray(accuracies, dtype=np.float64)
    median = np.median(accuracies)
    exact = np.flatnonzero(accuracies == median)
    if exact.size:
        return int(exact[0])
    return int(np.argmin(np.abs(accuracies - median)))


def cross_validate(
    space: FeatureSpace,
    scorer: Scorer,
    rng: np.random.Generator,
    folds: int = 5,
) -> Evaluation:
    """
    Median-accuracy fold evaluation of a feature space.

    Args:
        space: Training vectors restricted to the candidate features
        scorer: Trains and evaluates a classifier on one partition
        rng: Random source for the fold assignment
        folds: Fold count

    Returns:
        Evaluation of the median fold
    """
    fold_set = kfold_split(space, folds, rng)
    evaluations = [scorer(partition) for partition in fold_set.folds]
    accuracies = np.array([e.accuracy for e in evaluations])

    chosen = median_index(accuracies)
    logger.debug(f"Fold accuracies {np.round(accuracies, 4).tolist()} → fold {chosen}")
    return evaluations[chosen]


# =============================================================================
# Exhaustive Search
# =============================================================================

def exhaustive_search(
    training_set: FeatureSpace,
    scorer: Scorer,
    rng: np.random.Generator,
    folds: int = 5,
) -> List[Evaluation]:
    """
    Cross-validate every non-empty feature subset.

    Only tractable for small feature universes (2^D - 1 candidates).

    Returns:
        One Evaluation per subset, smaller subsets first

    Raises:
        DegenerateSelectionError: If the training set has no features
    """
    features = training_set.feature_names
    if not features:
        raise DegenerateSelectionError("Cannot search an empty feature universe")

    evaluations = []
    for size in range(1, len(features) + 1):
        for selection in itertools.combinations(features, size):
            logger.info(f"Selection: {' '.join(selection)}")
            evaluations.append(
                cross_validate(training_set.select(*selection), scorer, rng, folds)
            )
    return evaluations


# =============================================================================
# Genetic Search
# =============================================================================

@dataclass
class GenerationRecord:
    """Population and fitness after one generation."""
    generation: int
    encodings: np.ndarray
    fitness: np.ndarray

    @property
    def best_fitness(self) -> float:
        """Highest fitness in the population."""
        return float(np.max(self.fitness))


@dataclass
class GeneticResult:
    """
    Outcome of a genetic search.

    Attributes:
        encoding: Fittest encoding of the final generation
        evaluation: Evaluation of that encoding
        history: One record per generation
        evaluated: Every encoding passed to the fitness function
    """
    encoding: np.ndarray
    evaluation: Evaluation
    history: List[GenerationRecord] = field(default_factory=list)
    evaluated: List[np.ndarray] = field(default_factory=list)

    @property
    def features(self) -> Tuple[str, ...]:
        """Features selected by the fittest encoding."""
        return self.evaluation.features


class GeneticSearch:
    """
    Genetic feature selection with roulette-wheel selection and elitism.

    Example:
        >>> search = GeneticSearch(training_set, scorer, rng, SearchConfig())
        >>> result = search.run()
        >>> result.features
        ('Delta', 'Alpha')
    """

    def __init__(
        self,
        training_set: FeatureSpace,
        scorer: Scorer,
        rng: np.random.Generator,
        config: Optional[SearchConfig] = None,
    ) -> None:
        self.training_set = training_set
        self.scorer = scorer
        self.rng = rng
        self.config = config if config is not None else SearchConfig()
        self.feature_names = training_set.feature_names
        self._evaluated: List[np.ndarray] = []

        if not self.feature_names:
            raise DegenerateSelectionError("Cannot search an empty feature universe")

    @property
    def dimension(self) -> int:
        """Length of an encoding."""
        return len(self.feature_names)

    # -------------------------------------------------------------------------
    # Operators
    # -------------------------------------------------------------------------

    def random_encodings(self, n: int) -> np.ndarray:
        """N uniformly random non-zero encodings."""
        encodings = self.rng.integers(0, 2, size=(n, self.dimension))
        return self.nonzeroize(encodings)

    def nonzeroize(self, encodings: np.ndarray) -> np.ndarray:
        """Resample every all-zero row until no row is all-zero."""
        encodings = np.array(encodings, dtype=np.int8, ndmin=2)
        zero_rows = np.flatnonzero(encodings.sum(axis=1) == 0)
        while zero_rows.size:
            encodings[zero_rows] = self.rng.integers(
                0, 2, size=(zero_rows.size, self.dimension)
            )
            zero_rows = np.flatnonzero(encodings.sum(axis=1) == 0)
        return encodings

    def roulette(self, weights: np.ndarray) -> int:
        """
        Fitness-proportional choice of an index.

        Falls back to a uniform choice when all weights are zero.
        """
        weights = np.asarray(weights, dtype=np.float64)
        total = weights.sum()
        if total <= 0:
            return int(self.rng.integers(len(weights)))
        cumulative = np.cumsum(weights)
        x = self.rng.random() * total
        return int(min(np.searchsorted(cumulative, x, side="right"), len(weights) - 1))

    def select_parents(self, fitness: np.ndarray) -> Tuple[int, int]:
        """
        Two distinct parent indices by roulette-wheel selection.

        The second parent is drawn from the wheel with the first removed,
        uniformly if no other individual has positive fitness.
        """
        first = self.roulette(fitness)
        remaining = np.asarray(fitness, dtype=np.float64).copy()
        remaining[first] = 0.0
        if remaining.sum() > 0:
            second = self.roulette(remaining)
        else:
            others = [i for i in range(len(fitness)) if i != first]
            second = int(self.rng.choice(others))
        return first, second

    def crossover(self, parent1: np.ndarray, parent2: np.ndarray) -> np.ndarray:
        """Single-point crossover at a uniformly random cut."""
        cut = int(self.rng.integers(0, self.dimension))
        return np.concatenate([parent1[:cut], parent2[cut:]])

    def mutate(self, encoding: np.ndarray) -> np.ndarray:
        """Flip each bit independently with the mutation rate."""
        flips = self.rng.random(self.dimension) < self.config.mutation_rate
        return np.bitwise_xor(encoding.astype(np.int8), flips.astype(np.int8))

    # -------------------------------------------------------------------------
    # Fitness
    # -------------------------------------------------------------------------

    def decode(self, encoding: np.ndarray) -> Tuple[str, ...]:
        """Feature names selected by an encoding."""
        return tuple(
            name for name, bit in zip(self.feature_names, encoding) if bit
        )

    def fitness(self, encoding: np.ndarray) -> Evaluation:
        """
        Cross-validated Evaluation of one encoding.

        Raises:
            DegenerateSelectionError: If the encoding selects no feature
        """
        selected = self.decode(encoding)
        if not selected:
            raise DegenerateSelectionError("Selected zero features!")

        self._evaluated.append(np.array(encoding, dtype=np.int8))
        return cross_validate(
            self.training_set.select(*selected),
            self.scorer,
            self.rng,
            self.config.validation_folds,
        )

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------

    def run(self) -> GeneticResult:
        """
        Evolve the population for the configured number of generations.

        Returns:
            GeneticResult with the fittest individual of the last generation
        """
        n = self.config.population_size
        runs = self.config.generations
        self._evaluated = []
        history: List[GenerationRecord] = []

        logger.info(f"Computing generation 1/{runs}...")
        generation = self.random_encodings(n)
        evaluations = [self.fitness(encoding) for encoding in generation]
        fitness = np.array([e.accuracy for e in evaluations])
        history.append(GenerationRecord(1, generation.copy(), fitness.copy()))

        for t in range(2, runs + 1):
            logger.info(f"Computing generation {t}/{runs}...")
            offspring = np.zeros_like(generation)
            offspring_evaluations = []

            for row in range(n):
                index1, index2 = self.select_parents(fitness)
                child = self.crossover(generation[index1], generation[index2])
                child = self.mutate(child)
                child = self.nonzeroize(child)[0]
                logger.debug(
                    f"Cross rows {index1} and {index2} → {self.decode(child)}"
                )
                offspring[row] = child
                offspring_evaluations.append(self.fitness(child))

            # Elitism
            all_individuals = np.vstack([generation, offspring])
            all_evaluations = evaluations + offspring_evaluations
            all_fitness = np.array([e.accuracy for e in all_evaluations])
            survivors = np.argsort(-all_fitness, kind="stable")[:n]

            generation = all_individuals[survivors]
            evaluations = [all_evaluations[i] for i in survivors]
            fitness = all_fitness[survivors]
            history.append(GenerationRecord(t, generation.copy(), fitness.copy()))
            logger.info(f"Generation {t}: best accuracy {fitness.max():.4f}")

        best = int(np.argmax(fitness))
        return GeneticResult(
            encoding=generation[best].copy(),
            evaluation=evaluations[best],
            history=history,
            evaluated=list(self._evaluated),
        )


def restricted_search(
    training_set: FeatureSpace,
    scorer: Scorer,
    rng: np.random.Generator,
    config: Optional[SearchConfig] = None,
) -> List[Evaluation]:
    """
    Genetic search returning the fittest Evaluation as a one-element list.
    """
    result = GeneticSearch(training_set, scorer, rng, config).run()
    logger.info(
        f"Restricted search selected {list(result.features)} "
        f"(accuracy {result.evaluation.accuracy:.4f})"
    )
    return [result.evaluation]
