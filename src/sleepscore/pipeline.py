"""
Scoring Pipeline Module
=======================

Command-driven pipeline that threads one stream value through a sequence
of named stages written in UNIX pipe notation.

Usage:
    >>> score("load shhs | segment 3 | extract | select Mean Variance "
    ...       "| bundle 12RW 34M | partition 1:3 | svm linear | eval | plot")

    or, continuing from an existing stream:

    >>> vectors = score("load shhs | segment 3 | extract | select Mean Variance")
    >>> score("bundle 12RW 34M | partition 0.25 | svm linear | eval", vectors)

    This does the following:
    1. The signal and labels of the first SHHS record are read.
    2. The signal is segmented into 3 segments per epoch (10 second segments).
    3. A feature vector is extracted from each segment.
    4. All features except Mean and Variance are stripped away.
    5. Labels 1, 2, R and W are bundled into A; labels 3, 4 and M into B.
    6. A quarter of the vectors become training vectors, the rest test vectors.
    7. An SVM classifier is trained on the training set.
    8. The classifier is evaluated on the test set.
    9. The test set, predictions and mismatches are plotted.

Stages:
    load RECORD                 → Recording
    segment COUNT               Recording → SegmentSet (COUNT per epoch)
    extract                     SegmentSet → FeatureSpace
    select F1 ... Fn            FeatureSpace | Partition → same shape
    select exhaustive C K       Partition → SelectionResult
    select restricted C K       Partition → SelectionResult
    partition RATIO             FeatureSpace → Partition
    partition K fold            FeatureSpace → FoldSet
    bundle L1 ... Ln            FeatureSpace → FeatureSpace (labels A, B, ...)
    keep RATIO                  FeatureSpace | SegmentSet → random subset
    balance                     FeatureSpace | Partition (training set)
    organize cluster K          FeatureSpace | Partition (each side)
    organize dbn L1 ... Ln      FeatureSpace | Partition (each side)
    pca                         FeatureSpace → 2 principal components
    plot [KIND ...]             any plottable stream → unchanged
    svm KERNEL                  Partition → TrainedClassifier
    eval                        TrainedClassifier → Evaluation
                                SelectionResult → FinalizedSelection
                                FoldSet | FinalizedSelection → first element

Randomness:
    Every stochastic stage draws from the pipeline's numpy Generator,
    created from `ScoringConfig.seed`. A fixed seed gives a fully
    deterministic run.

Author: Sleepscore Project Team
License: MIT
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import yaml

from .classifier import CLASSIFIER_FAMILIES, train
from .dbn import DBNConfig, dbnify
from .evaluation import evaluate, finalize
from .features import FeatureConfig, FeatureExtractor, FeatureSpace
from .partitioning import (
    balance,
    keep,
    keep_indices,
    kfold_split,
    random_split,
    ratio_fraction,
)
from .plotting import PlotConfig, Plotter
from .records import RecordConfig, load_record
from .selection import SearchConfig, exhaustive_search, restricted_search
from .streams import (
    CommandError,
    Evaluation,
    FinalizedSelection,
    FoldSet,
    Partition,
    Recording,
    SegmentSet,
    SelectionResult,
    StreamShapeError,
    TrainedClassifier,
    describe,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Command Parsing
# =============================================================================

@dataclass(frozen=True)
class Stage:
    """One parsed pipeline stage: a name plus its arguments."""
    name: str
    args: Tuple[str, ...] = ()

    def __str__(self) -> str:
        return " ".join((self.name,) + self.args)


def parse_command(command: str) -> List[Stage]:
    """
    Split a pipe-delimited command into stages.

    Args:
        command: e.g. "partition 1:3 | svm linear | eval"

    Returns:
        Stages in pipeline order

    Raises:
        CommandError: If the command or any stage is empty
    """
    stages = []
    for segment in command.split("|"):
        tokens = segment.split()
        if not tokens:
            raise CommandError(f'Empty stage in command "{command}".')
        stages.append(Stage(tokens[0], tuple(tokens[1:])))
    return stages


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class ScoringConfig:
    """
    Master configuration for the scoring pipeline.

    Attributes:
        seed: Seed of the pipeline's random generator (None = random)
        records: Record loading configuration
        features: Feature extraction configuration
        search: Feature selection search configuration
        dbn: DBN reducer configuration
        plot: Plot output configuration
    """
    seed: Optional[int] = None
    records: RecordConfig = field(default_factory=RecordConfig)
    features: FeatureConfig = field(default_factory=FeatureConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    dbn: DBNConfig = field(default_factory=DBNConfig)
    plot: PlotConfig = field(default_factory=PlotConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScoringConfig":
        """Build a configuration from nested dictionaries."""
        data = dict(data or {})
        return cls(
            seed=data.pop("seed", None),
            records=RecordConfig(**data.pop("records", {})),
            features=FeatureConfig(**data.pop("features", {})),
            search=SearchConfig(**data.pop("search", {})),
            dbn=DBNConfig(**data.pop("dbn", {})),
            plot=PlotConfig(**data.pop("plot", {})),
            **data,
        )

    @classmethod
    def from_yaml(cls, path: str) -> "ScoringConfig":
        """
        Load configuration from a YAML file.

        Args:
            path: Path to YAML configuration file

        Returns:
            ScoringConfig instance
        """
        with open(path, "r") as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data or {})

    def to_dict(self) -> Dict[str, Any]:
        """Nested plain-data representation."""
        return _plain(dataclasses.asdict(self))

    def to_yaml(self, path: str) -> None:
        """
        Save configuration to a YAML file.

        Args:
            path: Path to save configuration
        """
        with open(path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)


def _plain(value: Any) -> Any:
    """Convert tuples to lists recursively so YAML stays safe-loadable."""
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


# =============================================================================
# Pipeline
# =============================================================================

class PipelineState(Enum):
    """Pipeline execution states."""
    IDLE = auto()
    RUNNING = auto()
    ERROR = auto()


class ScoringPipeline:
    """
    Stage interpreter for scoring commands.

    Each stage is dispatched on its name and on the shape of the current
    stream. Searches and per-side `organize` stages recurse into the same
    interpreter with pre-parsed stages.

    Example:
        >>> pipeline = ScoringPipeline(ScoringConfig(seed=7))
        >>> evaluation = pipeline.run(
        ...     "load synthetic | segment 3 | extract | partition 1:3 | svm rbf | eval"
        ... )
        >>> evaluation.accuracy
        0.83...
    """

    def __init__(
        self,
        config: Optional[ScoringConfig] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        """
        Initialize the pipeline.

        Args:
            config: Pipeline configuration
            rng: Random source; defaults to a generator seeded with config.seed
        """
        self.config = config if config is not None else ScoringConfig()
        self.rng = rng if rng is not None else np.random.default_rng(self.config.seed)
        self.extractor = FeatureExtractor(self.config.features)
        self.plotter = Plotter(self.config.plot)
        self.state = PipelineState.IDLE

        self._handlers: Dict[str, Callable[[Stage, Any], Any]] = {
            "load": self._load,
            "segment": self._segment,
            "extract": self._extract,
            "select": self._select,
            "partition": self._partition,
            "bundle": self._bundle,
            "keep": self._keep,
            "balance": self._balance,
            "organize": self._organize,
            "pca": self._pca,
            "plot": self._plot,
            "eval": self._eval,
        }
        for family in CLASSIFIER_FAMILIES:
            self._handlers[family] = self._train

    # =========================================================================
    # Execution
    # =========================================================================

    def run(self, command: Union[str, Sequence[Stage]], stream: Any = None) -> Any:
        """
        Run a command on a stream.

        Args:
            command: Pipe-delimited command string, or parsed stages
            stream: Initial stream (None when the command starts with `load`)

        Returns:
            Stream value produced by the last stage
        """
        stages = parse_command(command) if isinstance(command, str) else list(command)
        self.state = PipelineState.RUNNING
        try:
            for stage in stages:
                logger.info(f"Stage '{stage}' on {describe(stream)}")
                stream = self.apply(stage, stream)
        except Exception:
            self.state = PipelineState.ERROR
            raise
        self.state = PipelineState.IDLE
        return stream

    def execute(self, stages: Sequence[Stage], stream: Any) -> Any:
        """Apply stages in order."""
        for stage in stages:
            stream = self.apply(stage, stream)
        return stream

    def apply(self, stage: Stage, stream: Any) -> Any:
        """
        Apply one stage to a stream.

        Raises:
            CommandError: If the stage name or its arguments are invalid
            StreamShapeError: If the stage does not accept the stream's shape
        """
        handler = self._handlers.get(stage.name)
        if handler is None:
            raise CommandError(f'Could not interpret command "{stage.name}".')
        if stream is None and stage.name != "load":
            raise StreamShapeError(stage.name, stream, "a stream produced by an earlier stage")

        logger.debug(f"Applying '{stage}' to {describe(stream)}")
        return handler(stage, stream)

    def scorer(self, family: str, kernel: str) -> Callable[[Partition], Evaluation]:
        """Train-and-evaluate function used by the selection searches."""
        stages = [Stage(family, (kernel,)), Stage("eval")]
        return lambda partition: self.execute(stages, partition)

    # =========================================================================
    # Signal stages
    # =========================================================================

    def _load(self, stage: Stage, stream: Any) -> Recording:
        if stream is not None:
            raise StreamShapeError("load", stream, "no stream (load must be the first stage)")
        record = _arg(stage, 0, "RECORD")
        return load_record(record, self.config.records, self.rng)

    def _segment(self, stage: Stage, stream: Any) -> SegmentSet:
        if not isinstance(stream, Recording):
            raise StreamShapeError("segment", stream, "a recording")
        count = _positive_int(stage, 0, "COUNT")
        seconds = self.config.records.epoch_seconds / count

        segments = stream.signal.segment(seconds)
        labels = [label for label in stream.labels for _ in range(count)]
        if len(segments) != len(labels):
            logger.warning(
                f"{len(segments)} segments but {len(labels)} labels; "
                f"keeping {min(len(segments), len(labels))}"
            )
        labeled = tuple(s.labeled(label) for s, label in zip(segments, labels))
        logger.info(f"Segmented {stream.name or 'recording'} into {len(labeled)} segments")
        return SegmentSet(segments=labeled)

    def _extract(self, stage: Stage, stream: Any) -> FeatureSpace:
        if not isinstance(stream, SegmentSet):
            raise StreamShapeError("extract", stream, "a segment set")
        return self.extractor.extract_all(stream.segments)

    # =========================================================================
    # Feature space stages
    # =========================================================================

    def _select(self, stage: Stage, stream: Any) -> Any:
        if len(stage.args) == 3 and stage.args[0] in ("exhaustive", "restricted"):
            return self._search(stage, stream)
        if not stage.args:
            raise CommandError("select needs at least one feature name.")

        features = stage.args
        try:
            if isinstance(stream, FeatureSpace):
                return stream.select(*features)
            if isinstance(stream, Partition):
                return Partition(
                    training_set=stream.training_set.select(*features),
                    testing_set=stream.testing_set.select(*features),
                )
        except KeyError as e:
            raise CommandError(str(e.args[0])) from e
        raise StreamShapeError("select", stream, "a feature space or a partition")

    def _search(self, stage: Stage, stream: Any) -> SelectionResult:
        method, family, kernel = stage.args
        if not isinstance(stream, Partition):
            raise StreamShapeError(f"select {method}", stream, "a partition")
        if family not in CLASSIFIER_FAMILIES:
            raise CommandError(f'Unknown classifier "{family}".')

        scorer = self.scorer(family, kernel)
        search = self.config.search
        logger.info(
            f"Running {method} search with {family} ({kernel}) over "
            f"{stream.training_set.dimension} features"
        )
        if method == "exhaustive":
            evaluations = exhaustive_search(
                stream.training_set, scorer, self.rng, search.validation_folds
            )
        else:
            evaluations = restricted_search(stream.training_set, scorer, self.rng, search)

        return SelectionResult(
            testing_set=stream.testing_set,
            evaluations=tuple(evaluations),
            method=method,
        )

    def _partition(self, stage: Stage, stream: Any) -> Union[Partition, FoldSet]:
        if not isinstance(stream, FeatureSpace):
            raise StreamShapeError("partition", stream, "a feature space")
        if len(stage.args) >= 2 and stage.args[1] == "fold":
            return kfold_split(stream, _positive_int(stage, 0, "K"), self.rng)
        fraction = ratio_fraction(_arg(stage, 0, "RATIO"))
        return random_split(stream, fraction, self.rng)

    def _bundle(self, stage: Stage, stream: Any) -> FeatureSpace:
        if not isinstance(stream, FeatureSpace):
            raise StreamShapeError("bundle", stream, "a feature space")
        if not stage.args:
            raise CommandError("bundle needs at least one label group.")
        if len(stage.args) > 26:
            raise CommandError("bundle supports at most 26 label groups.")

        # Groups match the incoming labels, not earlier rewrites, and a label
        # listed in several groups keeps the first group's letter. Relabeling
        # group by group would let a later group override an earlier one.
        original = stream.labels
        labels = original.copy()
        assigned = np.zeros(len(stream), dtype=bool)
        for i, group in enumerate(stage.args):
            members = np.isin(original, list(group)) & ~assigned
            labels[members] = chr(ord("A") + i)
            assigned |= members

        if not assigned.all():
            untouched = sorted(set(original[~assigned].tolist()))
            logger.warning(f"bundle leaves labels {untouched} unchanged")
        return stream.relabel(labels)

    def _keep(self, stage: Stage, stream: Any) -> Union[FeatureSpace, SegmentSet]:
        fraction = ratio_fraction(_arg(stage, 0, "RATIO"))
        if isinstance(stream, FeatureSpace):
            return keep(stream, fraction, self.rng)
        if isinstance(stream, SegmentSet):
            indices = keep_indices(len(stream), fraction, self.rng)
            return SegmentSet(segments=tuple(stream.segments[i] for i in indices))
        raise StreamShapeError("keep", stream, "a feature space or a segment set")

    def _balance(self, stage: Stage, stream: Any) -> Union[FeatureSpace, Partition]:
        if isinstance(stream, FeatureSpace):
            return balance(stream, self.rng)
        if isinstance(stream, Partition):
            return Partition(
                training_set=balance(stream.training_set, self.rng),
                testing_set=stream.testing_set,
            )
        raise StreamShapeError("balance", stream, "a feature space or a partition")

    def _organize(self, stage: Stage, stream: Any) -> Union[FeatureSpace, Partition]:
        method = _arg(stage, 0, "METHOD")
        if method not in ("cluster", "dbn"):
            raise CommandError(f'Unknown organize method "{method}".')

        if isinstance(stream, Partition):
            return Partition(
                training_set=self.apply(stage, stream.training_set),
                testing_set=self.apply(stage, stream.testing_set),
            )
        if not isinstance(stream, FeatureSpace):
            raise StreamShapeError(f"organize {method}", stream, "a feature space or a partition")

        if method == "cluster":
            k = _positive_int(stage, 1, "K")
            try:
                return stream.kmeans(k, random_state=int(self.rng.integers(2**31 - 1)))
            except ValueError as e:
                raise CommandError(str(e)) from e

        layer_sizes = [_positive_int(stage, i, "LAYER") for i in range(1, len(stage.args))]
        if not layer_sizes:
            raise CommandError("You specified no layer sizes for the DBN.")
        return dbnify(stream, layer_sizes, self.rng, self.config.dbn)

    def _pca(self, stage: Stage, stream: Any) -> FeatureSpace:
        if not isinstance(stream, FeatureSpace):
            raise StreamShapeError("pca", stream, "a feature space")
        try:
            return stream.pca(2)
        except ValueError as e:
            raise CommandError(str(e)) from e

    def _plot(self, stage: Stage, stream: Any) -> Any:
        self.plotter.render(stream, stage.args)
        return stream

    # =========================================================================
    # Classifier stages
    # =========================================================================

    def _train(self, stage: Stage, stream: Any) -> TrainedClassifier:
        if not isinstance(stream, Partition):
            raise StreamShapeError(stage.name, stream, "a partition")
        kernel = _arg(stage, 0, "KERNEL")
        classifier = train(stage.name, stream.training_set, kernel)
        return TrainedClassifier(
            training_set=stream.training_set,
            testing_set=stream.testing_set,
            classifier=classifier,
        )

    def _eval(self, stage: Stage, stream: Any) -> Any:
        if isinstance(stream, TrainedClassifier):
            return evaluate(stream)
        if isinstance(stream, SelectionResult):
            return finalize(stream, evaluator=lambda trained: self.apply(stage, trained))
        if isinstance(stream, (FoldSet, FinalizedSelection)) and len(stream) > 0:
            items = stream.folds if isinstance(stream, FoldSet) else stream.evaluations
            return items[0]
        raise StreamShapeError(
            "eval", stream,
            "a trained classifier, a selection result, a fold set or a finalized selection",
        )


# =============================================================================
# Argument Helpers
# =============================================================================

def _arg(stage: Stage, index: int, name: str) -> str:
    if index >= len(stage.args):
        raise CommandError(f'Stage "{stage.name}" is missing argument {name}.')
    return stage.args[index]


def _positive_int(stage: Stage, index: int, name: str) -> int:
    token = _arg(stage, index, name)
    try:
        value = int(token)
    except ValueError:
        raise CommandError(
            f'Argument {name} of "{stage.name}" must be an integer, got "{token}".'
        ) from None
    if value < 1:
        raise CommandError(f'Argument {name} of "{stage.name}" must be positive, got {value}.')
    return value


# =============================================================================
# Convenience Functions
# =============================================================================

def score(
    command: str,
    stream: Any = None,
    *,
    config: Optional[ScoringConfig] = None,
    seed: Optional[int] = None,
) -> Any:
    """
    Run a scoring command.

    Args:
        command: Pipe-delimited command, e.g. "load shhs | segment 3 | extract"
        stream: Stream to continue from (None when starting with `load`)
        config: Pipeline configuration
        seed: Overrides config.seed

    Returns:
        Stream produced by the last stage
    """
    config = config if config is not None else ScoringConfig()
    if seed is not None:
        config = dataclasses.replace(config, seed=seed)
    return ScoringPipeline(config).run(command, stream)


def create_pipeline_from_config(config_path: str) -> ScoringPipeline:
    """
    Create a pipeline from a configuration file.

    Args:
        config_path: Path to YAML configuration

    Returns:
        Configured ScoringPipeline
    """
    return ScoringPipeline(ScoringConfig.from_yaml(config_path))
