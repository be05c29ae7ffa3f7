"""
Sleep Stage Scoring Pipelines
=============================

Composable pipelines for automatic sleep stage scoring from single-channel
EEG, written in UNIX pipe notation.

Pipeline Overview:

    load → segment → extract → [select | bundle | keep | balance | organize | pca]
         → partition → [select exhaustive | select restricted] → svm → eval → plot

    1. Records: EEG signal plus one stage label per 30 s epoch
    2. Segments: fixed-length labeled slices of the signal
    3. Features: time-domain statistics and relative band powers
    4. Partitioning: random, k-fold, downsampled and balanced splits
    5. Selection: exhaustive or genetic search over feature subsets
    6. Classification: SVM training and held-out evaluation

Key Classes:
    - ScoringPipeline: Stage interpreter
    - ScoringConfig: YAML-backed configuration
    - FeatureSpace: Labeled feature vectors
    - GeneticSearch: Genetic feature selection

Quick Start:
    >>> from sleepscore import score
    >>>
    >>> evaluation = score(
    ...     "load synthetic | segment 3 | extract | partition 1:3 | svm linear | eval",
    ...     seed=42,
    ... )
    >>> evaluation.accuracy

Author: Sleepscore Project Team
License: MIT
"""

# Stream model
from .streams import (
    ScoringError,
    CommandError,
    StreamShapeError,
    RecordError,
    RecordNotFoundError,
    DegenerateSelectionError,
    Recording,
    SegmentSet,
    Partition,
    FoldSet,
    TrainedClassifier,
    Evaluation,
    FinalizedEvaluation,
    SelectionResult,
    FinalizedSelection,
    describe,
    summarize,
)

# Signals and features
from .signals import Signal, Segment
from .features import (
    FeatureConfig,
    FeatureExtractor,
    FeatureSpace,
    LabeledFeatureVector,
)

# Records
from .records import RecordConfig, load_record

# Partitioning, classification, evaluation
from .partitioning import balance, keep, kfold_split, random_split
from .classifier import SVMClassifier, train
from .evaluation import accuracy, confusion, evaluate, finalize

# Feature selection and reduction
from .selection import (
    SearchConfig,
    GeneticSearch,
    cross_validate,
    exhaustive_search,
    restricted_search,
)
from .dbn import DBNConfig, dbnify

# Plotting
from .plotting import PlotConfig, Plotter

# Pipeline module
from .pipeline import (
    Stage,
    ScoringConfig,
    ScoringPipeline,
    parse_command,
    score,
    create_pipeline_from_config,
)

# Version
__version__ = "0.1.0"

# Public API
__all__ = [
    # Streams
    "ScoringError",
    "CommandError",
    "StreamShapeError",
    "RecordError",
    "RecordNotFoundError",
    "DegenerateSelectionError",
    "Recording",
    "SegmentSet",
    "Partition",
    "FoldSet",
    "TrainedClassifier",
    "Evaluation",
    "FinalizedEvaluation",
    "SelectionResult",
    "FinalizedSelection",
    "describe",
    "summarize",
    # Signals and features
    "Signal",
    "Segment",
    "FeatureConfig",
    "FeatureExtractor",
    "FeatureSpace",
    "LabeledFeatureVector",
    # Records
    "RecordConfig",
    "load_record",
    # Partitioning
    "balance",
    "keep",
    "kfold_split",
    "random_split",
    # Classification and evaluation
    "SVMClassifier",
    "train",
    "accuracy",
    "confusion",
    "evaluate",
    "finalize",
    # Selection
    "SearchConfig",
    "GeneticSearch",
    "cross_validate",
    "exhaustive_search",
    "restricted_search",
    "DBNConfig",
    "dbnify",
    # Plotting
    "PlotConfig",
    "Plotter",
    # Pipeline
    "Stage",
    "ScoringConfig",
    "ScoringPipeline",
    "parse_command",
    "score",
    "create_pipeline_from_config",
]
