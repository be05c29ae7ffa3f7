"""
Partitioning Engine
===================

Random train/test splits, k-fold splits, random downsampling and class
balancing of feature spaces.

Ratio Grammar:
    "k"    → k / 1        (e.g. "1" keeps everything, "0.25" a quarter)
    "a:b"  → a / (a + b)  (e.g. "1:3" → 1/4)

Invariants:
    random_split: training ∩ testing = ∅, training ∪ testing = input
    kfold_split:  every vector is in exactly one fold's testing set and in
                  the training sets of the other K - 1 folds

All randomness is drawn from the numpy Generator passed in.

Author: Sleepscore Project Team
License: MIT
"""

from __future__ import annotations

import logging
import math
from typing import Tuple

import numpy as np

from .features import FeatureSpace
from .streams import CommandError, FoldSet, Partition

logger = logging.getLogger(__name__)


def parse_ratio(token: str) -> Tuple[float, float]:
    """
    Parse a ratio token into (numerator, denominator).

    Args:
        token: "k" or "a:b"

    Returns:
        (k, 1) or (a, a + b)

    Raises:
        CommandError: If the token is malformed or the denominator is zero
    """
    parts = token.split(":")
    try:
        if len(parts) == 2:
            numerator = float(parts[0])
            denominator = numerator + float(parts[1])
        elif len(parts) == 1:
            numerator = float(parts[0])
            denominator = 1.0
        else:
            raise ValueError(token)
    except ValueError:
        raise CommandError(f'Could not interpret ratio "{token}".') from None

    if not (math.isfinite(numerator) and math.isfinite(denominator)):
        raise CommandError(f'Could not interpret ratio "{token}".')
    if denominator <= 0 or numerator < 0:
        raise CommandError(f'Ratio "{token}" must be non-negative with a positive total.')
    return numerator, denominator


def ratio_fraction(token: str) -> float:
    """Parse a ratio token into a fraction in [0, 1]."""
    numerator, denominator = parse_ratio(token)
    fraction = numerator / denominator
    if fraction > 1:
        raise CommandError(f'Ratio "{token}" selects more than the whole stream.')
    return fraction


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(math.floor(value + 0.5))


def random_split(
    space: FeatureSpace,
    fraction: float,
    rng: np.random.Generator,
) -> Partition:
    """
    Randomly split a feature space into training and testing sets.

    Args:
        space: Vectors to split
        fraction: Share of vectors drawn (without replacement) for training
        rng: Random source

    Returns:
        Partition with round(fraction * N) training vectors
    """
    n = len(space)
    n_training = min(n, round_half_up(fraction * n))
    training_indices = np.sort(rng.choice(n, size=n_training, replace=False))
    testing_indices = np.setdiff1d(np.arange(n), training_indices)

    logger.debug(f"Random split: {n_training} training, {testing_indices.size} testing")
    return Partition(
        training_set=space.take(training_indices),
        testing_set=space.take(testing_indices),
    )


def fold_assignment(n: int, k: int, rng: np.random.Generator) -> np.ndarray:
    """
    Balanced random assignment of n items to k folds.

    Returns:
        Fold index in [0, k) for every item; fold sizes differ by at most 1
    """
    assignment = np.empty(n, dtype=np.intp)
    assignment[rng.permutation(n)] = np.arange(n) % k
    return assignment


def kfold_split(space: FeatureSpace, k: int, rng: np.random.Generator) -> FoldSet:
    """
    Split a feature space into k cross-validation partitions.

    Fold i's members form the testing set of the i-th partition; all other
    members form its training set. Partitions are returned for folds
    k, k-1, ..., 1.

    Raises:
        CommandError: If k < 2 or k exceeds the number of vectors
    """
    n = len(space)
    if k < 2:
        raise CommandError(f"Fold count must be at least 2, got {k}")
    if k > n:
        raise CommandError(f"Cannot split {n} vectors into {k} folds")

    assignment = fold_assignment(n, k, rng)
    folds = []
    for fold in range(k):
        folds.insert(0, Partition(
            training_set=space.take(np.flatnonzero(assignment != fold)),
            testing_set=space.take(np.flatnonzero(assignment == fold)),
        ))
    return FoldSet(folds=tuple(folds))


def keep_indices(n: int, fraction: float, rng: np.random.Generator) -> np.ndarray:
    """Draw round(fraction * n) distinct indices in [0, n), in random order."""
    return rng.permutation(n)[:min(n, round_half_up(fraction * n))]


def keep(space: FeatureSpace, fraction: float, rng: np.random.Generator) -> FeatureSpace:
    """Randomly keep round(fraction * N) vectors, in random order."""
    return space.take(keep_indices(len(space), fraction, rng))


def balance(space: FeatureSpace, rng: np.random.Generator) -> FeatureSpace:
    """
    Downsample every label to the size of the rarest label.

    Returns:
        FeatureSpace with equally many vectors per label, grouped by label
        in reverse sorted label order
    """
    groups = space.by_label()
    if not groups:
        return space

    cardinality = min(indices.size for indices in groups.values())
    logger.debug(f"Balancing {len(groups)} labels to {cardinality} vectors each")

    selected = []
    for indices in groups.values():
        selected.insert(0, rng.choice(indices, size=cardinality, replace=False))
    return space.take(np.concatenate(selected))
