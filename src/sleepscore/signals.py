"""
Signal Module
=============

Time series containers for polysomnography recordings.

A Signal is an immutable sequence of (timestamp, value) pairs plus a
physical unit. Scoring works on fixed-length slices of a Signal called
Segments, each tagged with the sleep stage of the annotation epoch it was
cut from.

Data Layout:
    times:  (n_samples,) seconds since recording start, strictly increasing
    values: (n_samples,) amplitude in `unit`

    Signal ──segment(seconds)──→ [Segment, Segment, ...]
    Segment ──labeled(code)────→ Segment with label

Usage:
    signal = Signal(times, values, unit="uV")
    segments = signal.segment(10.0)         # 3 segments per 30 s epoch
    labeled = segments[0].labeled("W")

Author: Sleepscore Project Team
License: MIT
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

logger = logging.getLogger(__name__)


# =============================================================================
# Signal
# =============================================================================

@dataclass(frozen=True, eq=False)
class Signal:
    """
    Single-channel physiological time series.

    Attributes:
        times: Sample timestamps in seconds, shape (n_samples,)
        values: Sample amplitudes, shape (n_samples,)
        unit: Physical unit of `values` (e.g. "uV")

    Validation:
        - times and values must be 1D and of equal length
        - at least two samples are needed to derive a sampling rate
    """
    times: np.ndarray
    values: np.ndarray
    unit: str = ""

    def __post_init__(self) -> None:
        """Validate and freeze the sample arrays."""
        times = np.asarray(self.times, dtype=np.float64).ravel()
        values = np.asarray(self.values, dtype=np.float64).ravel()

        if times.shape != values.shape:
            raise ValueError(
                f"times ({times.size}) and values ({values.size}) must have equal length"
            )
        if times.size < 2:
            raise ValueError("A signal needs at least two samples")

        times.setflags(write=False)
        values.setflags(write=False)
        object.__setattr__(self, "times", times)
        object.__setattr__(self, "values", values)

    @property
    def n_samples(self) -> int:
        """Number of samples in the signal."""
        return self.values.size

    @property
    def sampling_rate(self) -> float:
        """Sampling rate in Hz, derived from the median sample spacing."""
        return 1.0 / float(np.median(np.diff(self.times)))

    @property
    def duration(self) -> float:
        """Signal duration in seconds."""
        return self.n_samples / self.sampling_rate

    def segment(self, seconds: float) -> List[Segment]:
        """
        Divide the signal into contiguous equal-length segments.

        Trailing samples that do not fill a whole segment are dropped.

        Args:
            seconds: Segment duration in seconds

        Returns:
            List of unlabeled segments in time order
        """
        if seconds <= 0:
            raise ValueError(f"Segment duration must be positive, got {seconds}")

        samples_per_segment = int(round(seconds * self.sampling_rate))
        if samples_per_segment < 1:
            raise ValueError(
                f"Segment duration {seconds}s is shorter than one sample"
            )

        n_segments = self.n_samples // samples_per_segment
        logger.debug(
            f"Segmenting {self.n_samples} samples into {n_segments} segments "
            f"of {samples_per_segment} samples"
        )

        segments = []
        for i in range(n_segments):
            start = i * samples_per_segment
            stop = start + samples_per_segment
            segments.append(Segment(
                values=self.values[start:stop],
                sampling_rate=self.sampling_rate,
                start_time=float(self.times[start]),
                unit=self.unit,
            ))
        return segments


# =============================================================================
# Segment
# =============================================================================

@dataclass(frozen=True, eq=False)
class Segment:
    """
    Contiguous slice of a Signal.

    Attributes:
        values: Sample amplitudes of the slice
        sampling_rate: Sampling rate of the parent signal in Hz
        start_time: Timestamp of the first sample in seconds
        unit: Physical unit of `values`
        label: Sleep stage code, or None while unlabeled
    """
    values: np.ndarray
    sampling_rate: float
    start_time: float = 0.0
    unit: str = ""
    label: Optional[str] = None

    @property
    def duration(self) -> float:
        """Segment duration in seconds."""
        return len(self.values) / self.sampling_rate

    def labeled(self, code: str) -> Segment:
        """Return a copy of this segment tagged with `code`."""
        return Segment(
            values=self.values,
            sampling_rate=self.sampling_rate,
            start_time=self.start_time,
            unit=self.unit,
            label=str(code),
        )
