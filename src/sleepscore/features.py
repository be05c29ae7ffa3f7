"""
Feature Extraction Module
=========================

Turns labeled EEG segments into labeled feature vectors and provides the
FeatureSpace container that most pipeline stages operate on.

Extracted Features:
    Time domain:
        Mean, Variance, Skewness, Kurtosis, ZeroCrossings
        Mobility, Complexity (Hjorth parameters)

    Frequency domain (relative band power, Welch PSD):
        Delta (0.5-4 Hz), Theta (4-8 Hz), Alpha (8-12 Hz),
        Sigma (12-15 Hz), Beta (15-30 Hz)

Mathematical Background:

    Hjorth parameters for signal x with derivative x':
        Mobility   = sqrt(var(x') / var(x))
        Complexity = Mobility(x') / Mobility(x)

    Band Power:
        P_band = ∫_{f_low}^{f_high} PSD(f) df
        Relative power divides by the total power over all bands.

FeatureSpace:
    A value-typed sequence of LabeledFeatureVector backed by an (N, D)
    matrix. All operations return a new FeatureSpace.

Author: Sleepscore Project Team
License: MIT
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
from scipy import signal, stats
from scipy.integrate import trapezoid
from sklearn.cluster import KMeans
from sklearn.decomposition import PCA

from .signals import Segment

logger = logging.getLogger(__name__)


# Standard EEG frequency bands for sleep staging
SLEEP_BANDS = {
    "Delta": (0.5, 4.0),
    "Theta": (4.0, 8.0),
    "Alpha": (8.0, 12.0),
    "Sigma": (12.0, 15.0),
    "Beta": (15.0, 30.0),
}

TIME_DOMAIN_FEATURES = (
    "Mean",
    "Variance",
    "Skewness",
    "Kurtosis",
    "ZeroCrossings",
    "Mobility",
    "Complexity",
)

CLUSTER_FEATURE = "Cluster"


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class FeatureConfig:
    """
    Configuration for segment feature extraction.

    Attributes:
        bands: Band names mapped to (low, high) frequency tuples in Hz
        welch_seconds: Welch segment length in seconds (capped at the
                       segment duration)
        use_relative: Whether band powers are divided by total band power
        use_log: Whether to log-transform band powers
    """
    bands: Dict[str, Tuple[float, float]] = field(
        default_factory=lambda: SLEEP_BANDS.copy()
    )
    welch_seconds: float = 4.0
    use_relative: bool = True
    use_log: bool = False

    def __post_init__(self) -> None:
        """Validate configuration."""
        self.bands = {
            name: (float(low), float(high)) for name, (low, high) in self.bands.items()
        }
        for name, (low, high) in self.bands.items():
            if low >= high:
                raise ValueError(f"Band '{name}': low ({low}) must be < high ({high})")
            if name in TIME_DOMAIN_FEATURES:
                raise ValueError(f"Band name '{name}' clashes with a time-domain feature")
        if self.welch_seconds <= 0:
            raise ValueError(f"welch_seconds must be positive, got {self.welch_seconds}")

    @property
    def feature_names(self) -> List[str]:
        """Names of all extracted features, in extraction order."""
        return list(TIME_DOMAIN_FEATURES) + list(self.bands.keys())


# =============================================================================
# Feature Vectors
# =============================================================================

FeatureVector = Dict[str, float]


@dataclass(frozen=True)
class LabeledFeatureVector:
    """Feature vector of one segment plus the segment's label."""
    vector: FeatureVector
    label: str


# =============================================================================
# Feature Space
# =============================================================================

class FeatureSpace:
    """
    Sequence of labeled feature vectors sharing one feature set.

    Stored column-wise as a read-only (N, D) matrix, an (N,) label array
    and D ordered feature names.

    Example:
        >>> space = FeatureSpace(matrix, labels, ["Mean", "Variance"])
        >>> space.select("Mean").feature_names
        ('Mean',)
        >>> space[0].label
        'W'
    """

    def __init__(
        self,
        matrix: np.ndarray,
        labels: Sequence[str],
        feature_names: Sequence[str],
    ) -> None:
        feature_names = tuple(str(name) for name in feature_names)
        matrix = np.asarray(matrix, dtype=np.float64)
        if matrix.ndim == 1 and matrix.size == 0:
            matrix = matrix.reshape(0, len(feature_names))
        labels = np.array([str(label) for label in labels], dtype=object)

        if matrix.ndim != 2:
            raise ValueError(f"matrix must be 2D, got {matrix.ndim}D")
        if matrix.shape[1] != len(feature_names):
            raise ValueError(
                f"matrix has {matrix.shape[1]} columns but {len(feature_names)} "
                f"feature names were given"
            )
        if labels.shape[0] != matrix.shape[0]:
            raise ValueError(
                f"labels length ({labels.shape[0]}) must match rows ({matrix.shape[0]})"
            )
        if len(set(feature_names)) != len(feature_names):
            raise ValueError(f"Duplicate feature names: {feature_names}")

        matrix = matrix.copy()
        matrix.setflags(write=False)
        labels.setflags(write=False)
        self._matrix = matrix
        self._labels = labels
        self._feature_names = feature_names

    @classmethod
    def from_vectors(
        cls,
        vectors: Sequence[LabeledFeatureVector],
        feature_names: Optional[Sequence[str]] = None,
    ) -> FeatureSpace:
        """
        Build a feature space from individual labeled vectors.

        Args:
            vectors: Labeled feature vectors with identical feature sets
            feature_names: Column order; defaults to the first vector's order

        Returns:
            FeatureSpace with one row per vector
        """
        if feature_names is None:
            if not vectors:
                raise ValueError("Cannot infer feature names from an empty sequence")
            feature_names = list(vectors[0].vector.keys())
        matrix = np.array(
            [[v.vector[name] for name in feature_names] for v in vectors],
            dtype=np.float64,
        ).reshape(len(vectors), len(feature_names))
        return cls(matrix, [v.label for v in vectors], feature_names)

    # -------------------------------------------------------------------------
    # Sequence protocol
    # -------------------------------------------------------------------------

    @property
    def matrix(self) -> np.ndarray:
        """Feature values, shape (N, D)."""
        return self._matrix

    @property
    def labels(self) -> np.ndarray:
        """Labels, shape (N,), dtype object."""
        return self._labels

    @property
    def feature_names(self) -> Tuple[str, ...]:
        """Ordered feature names."""
        return self._feature_names

    @property
    def dimension(self) -> int:
        """Number of features."""
        return len(self._feature_names)

    def __len__(self) -> int:
        return self._matrix.shape[0]

    def __iter__(self) -> Iterator[LabeledFeatureVector]:
        for i in range(len(self)):
            yield self[i]

    def __getitem__(
        self, key: Union[int, slice, Sequence[int], np.ndarray]
    ) -> Union[LabeledFeatureVector, FeatureSpace]:
        if isinstance(key, (int, np.integer)):
            row = self._matrix[key]
            vector = {name: float(value) for name, value in zip(self._feature_names, row)}
            return LabeledFeatureVector(vector=vector, label=self._labels[key])
        return self.take(key)

    def __repr__(self) -> str:
        return (
            f"FeatureSpace(n={len(self)}, features={list(self._feature_names)}, "
            f"labels={self.label_set()})"
        )

    def take(self, indices: Union[slice, Sequence[int], np.ndarray]) -> FeatureSpace:
        """Return the rows at `indices` as a new feature space."""
        if not isinstance(indices, slice):
            indices = np.asarray(indices, dtype=np.intp).reshape(-1)
        return FeatureSpace(self._matrix[indices], self._labels[indices], self._feature_names)

    def label_set(self) -> List[str]:
        """Sorted unique labels."""
        return sorted(set(self._labels.tolist()))

    # -------------------------------------------------------------------------
    # Feature operations
    # -------------------------------------------------------------------------

    def select(self, *names: str) -> FeatureSpace:
        """
        Keep only the named features, in the given order.

        Raises:
            KeyError: If any name is not a feature of this space
        """
        missing = [name for name in names if name not in self._feature_names]
        if missing:
            raise KeyError(
                f"Unknown feature(s) {missing}; available: {list(self._feature_names)}"
            )
        columns = [self._feature_names.index(name) for name in names]
        return FeatureSpace(self._matrix[:, columns], self._labels, names)

    def extend(self, name: str, column: np.ndarray) -> FeatureSpace:
        """Append one feature column."""
        column = np.asarray(column, dtype=np.float64).reshape(-1, 1)
        if column.shape[0] != len(self):
            raise ValueError(
                f"Column length ({column.shape[0]}) must match rows ({len(self)})"
            )
        return FeatureSpace(
            np.hstack([self._matrix, column]),
            self._labels,
            self._feature_names + (name,),
        )

    def relabel(self, labels: Sequence[str]) -> FeatureSpace:
        """Return the same vectors with new labels."""
        return FeatureSpace(self._matrix, labels, self._feature_names)

    def concat(self, other: FeatureSpace) -> FeatureSpace:
        """Append the rows of `other`, which must share the feature set."""
        if other.feature_names != self._feature_names:
            raise ValueError("Cannot concatenate feature spaces with different features")
        return FeatureSpace(
            np.vstack([self._matrix, other.matrix]),
            np.concatenate([self._labels, other.labels]),
            self._feature_names,
        )

    def by_label(self) -> Dict[str, np.ndarray]:
        """Row indices grouped by label, keyed in sorted label order."""
        return {
            label: np.flatnonzero(self._labels == label)
            for label in self.label_set()
        }

    def pca(self, n_components: int = 2) -> FeatureSpace:
        """
        Project onto the first principal components.

        Returns:
            FeatureSpace with features PC1..PCn
        """
        if self.dimension < n_components:
            raise ValueError(
                f"Cannot reduce {self.dimension} features to {n_components} components"
            )
        projected = PCA(n_components=n_components, svd_solver="full").fit_transform(
            self._matrix
        )
        names = [f"PC{i + 1}" for i in range(n_components)]
        return FeatureSpace(projected, self._labels, names)

    def kmeans(self, k: int, random_state: Optional[int] = None) -> FeatureSpace:
        """
        Hard k-means clustering of the feature space.

        Returns:
            FeatureSpace extended with a `Cluster` feature in [1, k]
        """
        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")
        if k > len(self):
            raise ValueError(f"Cannot form {k} clusters from {len(self)} vectors")
        model = KMeans(n_clusters=k, n_init=10, random_state=random_state)
        assignments = model.fit_predict(self._matrix)
        logger.debug(f"k-means inertia: {model.inertia_:.4f}")
        return self.extend(CLUSTER_FEATURE, assignments + 1)


# =============================================================================
# Feature Extraction
# =============================================================================

class FeatureExtractor:
    """
    Extracts a fixed, named feature vector from each segment.

    Uses Welch's method for spectral estimation, with the Welch segment
    length capped at the segment length.

    Example:
        >>> extractor = FeatureExtractor(FeatureConfig())
        >>> vector = extractor.extract(segment)     # Dict[str, float]
        >>> space = extractor.extract_all(segments) # FeatureSpace
    """

    def __init__(self, config: Optional[FeatureConfig] = None) -> None:
        self.config = config if config is not None else FeatureConfig()

    @property
    def feature_names(self) -> List[str]:
        """Names of the extracted features."""
        return self.config.feature_names

    def extract(self, segment: Segment) -> FeatureVector:
        """
        Extract features from one segment.

        Args:
            segment: Segment with at least two samples

        Returns:
            Ordered mapping of feature name to value
        """
        x = np.asarray(segment.values, dtype=np.float64)
        if x.size < 2:
            raise ValueError("Cannot extract features from fewer than two samples")

        features: FeatureVector = {}
        features.update(self._time_domain(x))
        features.update(self._band_powers(x, segment.sampling_rate))
        return features

    def extract_all(self, segments: Sequence[Segment]) -> FeatureSpace:
        """
        Extract labeled feature vectors from labeled segments.

        Returns:
            FeatureSpace with one row per segment
        """
        unlabeled = sum(1 for s in segments if s.label is None)
        if unlabeled:
            raise ValueError(f"{unlabeled} segment(s) have no label")

        logger.info(f"Extracting {len(self.feature_names)} features from {len(segments)} segments")
        vectors = [
            LabeledFeatureVector(vector=self.extract(s), label=s.label)
            for s in segments
        ]
        return FeatureSpace.from_vectors(vectors, self.feature_names)

    def _time_domain(self, x: np.ndarray) -> FeatureVector:
        """Statistical moments, zero crossings and Hjorth parameters."""
        variance = float(np.var(x))
        dx = np.diff(x)
        ddx = np.diff(dx)
        var_dx = float(np.var(dx))
        var_ddx = float(np.var(ddx)) if ddx.size else 0.0

        mobility = np.sqrt(var_dx / variance) if variance > 0 else 0.0
        mobility_dx = np.sqrt(var_ddx / var_dx) if var_dx > 0 else 0.0
        complexity = mobility_dx / mobility if mobility > 0 else 0.0

        centered = x - np.mean(x)
        zero_crossings = np.count_nonzero(np.diff(np.signbit(centered)))

        # Moments are undefined for constant segments
        if variance > 0:
            skewness = float(stats.skew(x))
            kurtosis = float(stats.kurtosis(x))
        else:
            skewness = 0.0
            kurtosis = 0.0

        return {
            "Mean": float(np.mean(x)),
            "Variance": variance,
            "Skewness": skewness,
            "Kurtosis": kurtosis,
            "ZeroCrossings": float(zero_crossings) / x.size,
            "Mobility": float(mobility),
            "Complexity": float(complexity),
        }

    def _band_powers(self, x: np.ndarray, sampling_rate: float) -> FeatureVector:
        """Power per configured band from the Welch PSD."""
        nperseg = min(x.size, int(self.config.welch_seconds * sampling_rate))
        freqs, psd = signal.welch(x, fs=sampling_rate, nperseg=max(nperseg, 2))

        powers = np.zeros(len(self.config.bands))
        for idx, (name, (f_low, f_high)) in enumerate(self.config.bands.items()):
            band_mask = (freqs >= f_low) & (freqs <= f_high)
            if np.count_nonzero(band_mask) < 2:
                warnings.warn(f"Too few frequencies in band {name} ({f_low}-{f_high} Hz)")
                continue
            powers[idx] = trapezoid(psd[band_mask], freqs[band_mask])

        if self.config.use_relative:
            powers = powers / (np.sum(powers) + 1e-12)
        if self.config.use_log:
            powers = np.log(powers + 1e-12)

        return {name: float(p) for name, p in zip(self.config.bands.keys(), powers)}
