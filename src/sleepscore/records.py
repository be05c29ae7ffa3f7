"""
Record Loading Module
=====================

Reads polysomnography records (EEG signal + sleep stage annotations) from
a small catalog of known records, with an on-disk cache.

Supported Sources:
    - slp01a: MIT-BIH Polysomnographic Database, WFDB format. EEG is
      channel 3; stages come from the `st` annotation notes.
    - shhs:   Sleep Heart Health Study, EDF signal file plus a
      `<record>-staging.csv` file with one stage code per 30 s epoch.
    - synthetic: generated EEG-like signal with stage-dependent rhythms,
      for testing and demos without data files.

Record Matching:
    `load shhs` matches the first catalog entry containing "shhs"
    (shhs/shhs1-200001). Ambiguous specs pick the first match and log a
    warning; specs matching nothing raise RecordNotFoundError.

Cache Layout:
    <cache_dir>/<record with '/' replaced by '.'>.npz
        times, values, unit, labels

Author: Sleepscore Project Team
License: MIT
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import numpy as np

from .signals import Signal
from .streams import Recording, RecordError, RecordNotFoundError

logger = logging.getLogger(__name__)


SYNTHETIC_RECORD = "synthetic"

DEFAULT_CATALOG = [
    "slp01a/slp01a",
    "shhs/shhs1-200001",
    "shhs/shhs1-200002",
    "shhs/shhs1-200003",
    "shhs/shhs1-200004",
    "shhs/shhs1-200005",
    "shhs/shhs1-200006",
    "shhs/shhs1-200007",
    "shhs/shhs1-200008",
    "shhs/shhs1-200009",
    "shhs/shhs1-200010",
    SYNTHETIC_RECORD,
]

# SHHS staging codes → stage labels
SHHS_STAGE_MAP = {0: "W", 1: "1", 2: "2", 3: "3", 4: "4", 5: "R", 6: "M", 9: "X"}

# Dominant rhythms of the synthetic generator: stage → [(freq Hz, amplitude µV)]
SYNTHETIC_RHYTHMS: Dict[str, List[Tuple[float, float]]] = {
    "W": [(10.0, 20.0), (20.0, 8.0)],
    "1": [(6.0, 18.0), (10.0, 5.0)],
    "2": [(13.0, 15.0), (5.0, 15.0)],
    "3": [(1.5, 60.0), (5.0, 5.0)],
    "4": [(1.0, 80.0)],
    "R": [(6.0, 12.0), (20.0, 6.0)],
    "M": [(25.0, 25.0), (3.0, 25.0)],
}


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class RecordConfig:
    """
    Configuration for record loading.

    Attributes:
        data_dir: Directory containing the raw record files
        cache_dir: Directory for cached `.npz` copies of read records
        use_cache: Whether to read from and write to the cache
        catalog: Known record paths, relative to data_dir
        epoch_seconds: Duration of one annotation epoch
        eeg_channel: EDF channel name holding the EEG (SHHS)
        wfdb_channel: Zero-based signal index of the EEG (WFDB)
        synthetic_epochs: Number of epochs in the synthetic record
        synthetic_sampling_rate: Sampling rate of the synthetic record in Hz
        synthetic_noise: White noise standard deviation in µV
    """
    data_dir: str = "data"
    cache_dir: str = "cache"
    use_cache: bool = True
    catalog: List[str] = field(default_factory=lambda: list(DEFAULT_CATALOG))
    epoch_seconds: float = 30.0
    eeg_channel: str = "EEG"
    wfdb_channel: int = 2
    synthetic_epochs: int = 60
    synthetic_sampling_rate: int = 100
    synthetic_noise: float = 5.0

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not self.catalog:
            raise ValueError("catalog must list at least one record")
        if self.epoch_seconds <= 0:
            raise ValueError(f"epoch_seconds must be positive, got {self.epoch_seconds}")
        if self.synthetic_epochs < 1:
            raise ValueError(f"synthetic_epochs must be >= 1, got {self.synthetic_epochs}")
        if self.synthetic_sampling_rate < 64:
            raise ValueError(
                f"synthetic_sampling_rate must be >= 64 Hz, got {self.synthetic_sampling_rate}"
            )


# =============================================================================
# Catalog
# =============================================================================

def find_record(spec: str, catalog: List[str]) -> str:
    """
    Resolve a record specification against the catalog.

    Args:
        spec: Record name or any substring of it (e.g. "shhs")
        catalog: Known record paths

    Returns:
        First catalog entry containing `spec`

    Raises:
        RecordNotFoundError: If no entry contains `spec`
    """
    matches = [record for record in catalog if spec in record]
    if not matches:
        raise RecordNotFoundError(f'Found no record that matches input "{spec}".')
    if len(matches) > 1:
        logger.warning(
            f'Record spec "{spec}" matches {len(matches)} records; using {matches[0]}'
        )
    return matches[0]


def cache_path(record: str, cache_dir: str) -> Path:
    """Path of the cache file for `record`."""
    return Path(cache_dir) / f"{record.replace('/', '.')}.npz"


def load_record(
    spec: str,
    config: Optional[RecordConfig] = None,
    rng: Optional[np.random.Generator] = None,
) -> Recording:
    """
    Load the signal and annotations of a catalog record.

    Args:
        spec: Record specification (substring of a catalog entry)
        config: Record configuration
        rng: Random source, used by the synthetic record only

    Returns:
        Recording with the EEG signal and one label per epoch
    """
    config = config if config is not None else RecordConfig()
    record = find_record(spec, config.catalog)

    if record == SYNTHETIC_RECORD:
        signal, labels = generate_synthetic_record(config, rng)
        return Recording(signal=signal, labels=labels, name=record)

    path = cache_path(record, config.cache_dir)
    if config.use_cache and path.exists():
        logger.info(f"Reading {path}...")
        signal, labels = _read_cache(path)
    else:
        record_path = Path(config.data_dir) / record
        logger.info(f"Reading {record_path}...")
        signal, labels = read_signal(record_path, config)
        if config.use_cache:
            _write_cache(path, signal, labels)

    return Recording(signal=signal, labels=labels, name=record)


# =============================================================================
# Readers
# =============================================================================

def read_signal(record_path: Path, config: RecordConfig) -> Tuple[Signal, Tuple[str, ...]]:
    """
    Read a record from disk, choosing the reader from the record path.

    Raises:
        RecordError: If no reader handles the record
    """
    name = str(record_path)
    if "slp01a" in name:
        return _read_wfdb(record_path, config)
    if "shhs" in name:
        return _read_shhs(record_path, config)
    raise RecordError(f"Cannot decide on a reading method for {record_path}")


def _read_wfdb(record_path: Path, config: RecordConfig) -> Tuple[Signal, Tuple[str, ...]]:
    """Read EEG and sleep-stage annotations of a WFDB record."""
    import wfdb

    record = wfdb.rdrecord(str(record_path))
    channel = config.wfdb_channel
    eeg = record.p_signal[:, channel]
    times = np.arange(eeg.size) / record.fs

    annotation = wfdb.rdann(str(record_path), "st")
    # First character of each note is the stage (e.g. "W", "1", "R", "MT")
    labels = tuple(note.strip()[0] for note in annotation.aux_note if note.strip())

    return Signal(times, eeg, unit=record.units[channel]), labels


def _read_shhs(record_path: Path, config: RecordConfig) -> Tuple[Signal, Tuple[str, ...]]:
    """Read the EEG channel of an SHHS EDF file and its staging CSV."""
    import mne

    edf_path = record_path.with_name(record_path.name + ".edf")
    csv_path = record_path.with_name(record_path.name + "-staging.csv")

    raw = mne.io.read_raw_edf(
        str(edf_path), include=[config.eeg_channel], preload=True, verbose="ERROR"
    )
    eeg = raw.get_data(picks=[config.eeg_channel])[0]

    # Header row, then (epoch, stage) rows
    staging = np.loadtxt(csv_path, delimiter=",", skiprows=1, ndmin=2)
    stages = staging[:, 1].astype(int)
    labels = rk_to_aasm(tuple(SHHS_STAGE_MAP.get(int(s), "_") for s in stages))

    values_per_epoch = eeg.size / len(stages)
    times = np.arange(eeg.size) * config.epoch_seconds / values_per_epoch

    # mne returns SI units
    return Signal(times, eeg, unit="V"), labels


def rk_to_aasm(labels: Tuple[str, ...]) -> Tuple[str, ...]:
    """Merge Rechtschaffen & Kales stage 4 into AASM stage 3."""
    return tuple("3" if label == "4" else label for label in labels)


def _read_cache(path: Path) -> Tuple[Signal, Tuple[str, ...]]:
    with np.load(path, allow_pickle=False) as data:
        signal = Signal(data["times"], data["values"], unit=str(data["unit"]))
        labels = tuple(str(label) for label in data["labels"])
    return signal, labels


def _write_cache(path: Path, signal: Signal, labels: Tuple[str, ...]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    np.savez(
        path,
        times=signal.times,
        values=signal.values,
        unit=np.array(signal.unit),
        labels=np.array(labels, dtype=str),
    )
    logger.info(f"Cached record to {path}")


# =============================================================================
# Synthetic Record
# =============================================================================

def generate_synthetic_record(
    config: RecordConfig,
    rng: Optional[np.random.Generator] = None,
) -> Tuple[Signal, Tuple[str, ...]]:
    """
    Generate an EEG-like signal with stage-dependent rhythms.

    Stages follow a sticky random walk over SYNTHETIC_RHYTHMS. Each epoch
    is a sum of the stage's sinusoids with random phase, pink noise and
    white noise.

    Args:
        config: Record configuration (epochs, sampling rate, noise level)
        rng: Random source

    Returns:
        Tuple of (signal, labels)
    """
    rng = rng if rng is not None else np.random.default_rng()
    fs = config.synthetic_sampling_rate
    samples_per_epoch = int(config.epoch_seconds * fs)
    stages = list(SYNTHETIC_RHYTHMS.keys())

    labels: List[str] = []
    current = rng.choice(stages)
    for _ in range(config.synthetic_epochs):
        if rng.random() < 0.3:
            current = rng.choice(stages)
        labels.append(str(current))

    t = np.arange(samples_per_epoch) / fs
    epochs = []
    for label in labels:
        epoch = np.zeros(samples_per_epoch)
        for freq, amplitude in SYNTHETIC_RHYTHMS[label]:
            phase = rng.uniform(0, 2 * np.pi)
            epoch += amplitude * np.sin(2 * np.pi * freq * t + phase)
        epoch += _pink_noise(samples_per_epoch, rng) * config.synthetic_noise
        epoch += rng.standard_normal(samples_per_epoch) * config.synthetic_noise
        epochs.append(epoch)

    values = np.concatenate(epochs)
    times = np.arange(values.size) / fs
    logger.info(f"Generated synthetic record: {len(labels)} epochs at {fs} Hz")
    return Signal(times, values, unit="uV"), tuple(labels)


def _pink_noise(n_samples: int, rng: np.random.Generator) -> np.ndarray:
    """Unit-variance 1/f noise via spectral shaping of white noise."""
    spectrum = np.fft.rfft(rng.standard_normal(n_samples))
    freqs = np.arange(spectrum.size)
    freqs[0] = 1
    pink = np.fft.irfft(spectrum / np.sqrt(freqs), n=n_samples)
    return pink / (np.std(pink) + 1e-12)
