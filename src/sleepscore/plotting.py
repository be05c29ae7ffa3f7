"""
Plotting Module
===============

Visualizes pipeline streams. Plotting is a side effect only: the stream
passed to a `plot` stage is returned unchanged.

Plot Kinds:
    plot                FeatureSpace: scatter of the first two features
                        Partition / TrainedClassifier / Evaluation:
                            training '*', testing '.', mispredictions 'o'
                        SelectionResult / FinalizedSelection: accuracy bars
    plot hypnogram      FeatureSpace: stage over time
                        Evaluation: true and predicted stages
    plot clusters       FeatureSpace with a Cluster feature
    plot bar            SelectionResult / FinalizedSelection: accuracy bars
    plot bar sizes      mean and max accuracy per subset size

Rendering:
    Figures are saved as PNG files to `output_dir` (if set) and shown
    interactively (if `show`). Without `show`, the non-interactive Agg
    backend is used.

Author: Sleepscore Project Team
License: MIT
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from .features import CLUSTER_FEATURE, FeatureSpace
from .streams import (
    CommandError,
    Evaluation,
    FinalizedSelection,
    Partition,
    SelectionResult,
    StreamShapeError,
    TrainedClassifier,
)

logger = logging.getLogger(__name__)


@dataclass
class PlotConfig:
    """
    Configuration for plot output.

    Attributes:
        output_dir: Directory for saved figures (None = do not save)
        show: Whether to open an interactive window per figure
        dpi: Resolution of saved figures
        figsize: Figure size in inches
    """
    output_dir: Optional[str] = None
    show: bool = False
    dpi: int = 100
    figsize: Tuple[float, float] = (8.0, 6.0)

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.dpi <= 0:
            raise ValueError("dpi must be positive")
        self.figsize = tuple(float(v) for v in self.figsize)


class Plotter:
    """
    Renders streams with matplotlib.

    Example:
        >>> plotter = Plotter(PlotConfig(output_dir="plots"))
        >>> paths = plotter.render(feature_space, ["hypnogram"])
    """

    def __init__(self, config: Optional[PlotConfig] = None) -> None:
        self.config = config if config is not None else PlotConfig()
        self._figure_count = 0
        self._plt = None

    def _pyplot(self):
        """Import pyplot on first use."""
        if self._plt is None:
            import matplotlib
            if not self.config.show:
                matplotlib.use("Agg")
            import matplotlib.pyplot as plt
            self._plt = plt
        return self._plt

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def render(self, stream: Any, args: Sequence[str] = ()) -> List[Path]:
        """
        Plot a stream according to the `plot` stage arguments.

        Args:
            stream: Current pipeline stream
            args: Stage arguments after `plot`

        Returns:
            Paths of the saved figures (empty if output_dir is unset)
        """
        paths = self._dispatch(stream, list(args))
        return [path for path in paths if path is not None]

    def _dispatch(self, stream: Any, args: List[str]) -> List[Optional[Path]]:
        kind = args[0] if args else None

        if kind == "hypnogram":
            if isinstance(stream, FeatureSpace):
                return [self.hypnogram([stream], ["stages"])]
            if isinstance(stream, Evaluation):
                return [self.hypnogram(
                    [stream.testing_set, stream.predicted_set], ["true", "predicted"]
                )]
            raise StreamShapeError("plot hypnogram", stream, "a feature space or an evaluation")

        if kind == "bar":
            if isinstance(stream, (SelectionResult, FinalizedSelection)):
                if len(args) > 1 and args[1] == "sizes":
                    return [self.accuracy_by_size(stream.evaluations)]
                return [self.accuracy_bars(stream.evaluations)]
            raise StreamShapeError("plot bar", stream, "a selection result")

        if kind == "clusters":
            if isinstance(stream, FeatureSpace) and CLUSTER_FEATURE in stream.feature_names:
                return [self.clusters(stream)]
            raise StreamShapeError(
                "plot clusters", stream, f"a feature space with a {CLUSTER_FEATURE} feature"
            )

        if kind is not None:
            raise CommandError(f'Unknown plot kind "{kind}".')

        if isinstance(stream, FeatureSpace):
            return [self.scatter(stream)]
        if isinstance(stream, (Partition, TrainedClassifier, Evaluation)):
            return [self.partition(stream)]
        if isinstance(stream, (SelectionResult, FinalizedSelection)):
            return [self.accuracy_bars(stream.evaluations)]
        raise StreamShapeError(
            "plot", stream, "a feature space, partition, evaluation or selection result"
        )

    # -------------------------------------------------------------------------
    # Plot kinds
    # -------------------------------------------------------------------------

    def scatter(self, space: FeatureSpace) -> Optional[Path]:
        """Scatter of the first two features, colored by label."""
        fig, ax = self._new_figure()
        self._scatter(ax, space, marker="o", size=16)
        ax.legend(title="Label")
        return self._finish(fig, "scatter")

    def clusters(self, space: FeatureSpace) -> Optional[Path]:
        """Cluster membership as large pale markers under the labeled scatter."""
        plt = self._pyplot()
        fig, ax = self._new_figure()
        cluster_column = space.matrix[:, space.feature_names.index(CLUSTER_FEATURE)]
        plotted = space.select(*[f for f in space.feature_names if f != CLUSTER_FEATURE])
        colors = plt.get_cmap("Pastel1")

        for i, cluster in enumerate(np.unique(cluster_column)):
            members = plotted.take(np.flatnonzero(cluster_column == cluster))
            x, y = self._xy(members)
            ax.scatter(x, y, s=400, color=colors(i % colors.N), alpha=0.6, linewidths=0)

        self._scatter(ax, plotted, marker="o", size=16)
        ax.legend(title="Label")
        return self._finish(fig, "clusters")

    def partition(self, stream: Any) -> Optional[Path]:
        """Training and testing sets, with mispredictions circled."""
        fig, ax = self._new_figure()
        self._scatter(ax, stream.training_set, marker="*", size=30, prefix="train ")
        self._scatter(ax, stream.testing_set, marker=".", size=30, prefix="test ")

        if isinstance(stream, Evaluation):
            wrong = np.flatnonzero(stream.predicted_set.labels != stream.testing_set.labels)
            if wrong.size:
                x, y = self._xy(stream.predicted_set.take(wrong))
                ax.scatter(
                    x, y, s=80, facecolors="none", edgecolors=(0.25, 0.0, 0.5),
                    label="mispredicted",
                )
            ax.set_title(f"Accuracy {stream.accuracy:.3f}")

        ax.legend(fontsize="small")
        return self._finish(fig, "partition")

    def hypnogram(self, spaces: Sequence[FeatureSpace], names: Sequence[str]) -> Optional[Path]:
        """Stage sequence over segment index, one trace per space."""
        fig, ax = self._new_figure()
        label_set = sorted(set().union(*(s.label_set() for s in spaces)))
        positions = {label: i + 1 for i, label in enumerate(label_set)}

        for space, name in zip(spaces, names):
            numeric = [positions[label] for label in space.labels]
            ax.step(np.arange(len(numeric)), numeric, where="post", label=name)

        ax.set_ylim(0, len(label_set) + 1)
        ax.set_yticks(range(len(label_set) + 2))
        ax.set_yticklabels([" "] + label_set + [" "])
        ax.set_xlabel("Segment")
        ax.set_ylabel("Stage")
        ax.legend()
        return self._finish(fig, "hypnogram")

    def accuracy_bars(self, evaluations: Sequence[Evaluation]) -> Optional[Path]:
        """One bar per evaluation."""
        fig, ax = self._new_figure()
        ax.bar(np.arange(len(evaluations)) + 1, [e.accuracy for e in evaluations])
        ax.set_xlabel("Evaluation")
        ax.set_ylabel("Accuracy")
        ax.set_ylim(0, 1)
        return self._finish(fig, "bar")

    def accuracy_by_size(self, evaluations: Sequence[Evaluation]) -> Optional[Path]:
        """Mean and maximum accuracy for each number of selected features."""
        by_size = defaultdict(list)
        for evaluation in evaluations:
            by_size[len(evaluation.features)].append(evaluation.accuracy)
        sizes = sorted(by_size)
        means = [float(np.mean(by_size[s])) for s in sizes]
        maxima = [float(np.max(by_size[s])) for s in sizes]

        fig, ax = self._new_figure()
        x = np.arange(len(sizes))
        ax.bar(x - 0.2, means, width=0.4, label="mean")
        ax.bar(x + 0.2, maxima, width=0.4, label="max")
        ax.set_xticks(x)
        ax.set_xticklabels([str(s) for s in sizes])
        ax.set_title("Average accuracy for different feature selections")
        ax.set_xlabel("Number of features in selection")
        ax.set_ylabel("Accuracy")
        ax.set_ylim(0, 1)
        ax.legend()
        return self._finish(fig, "bar_sizes")

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _xy(space: FeatureSpace) -> Tuple[np.ndarray, np.ndarray]:
        x = space.matrix[:, 0]
        y = space.matrix[:, 1] if space.dimension > 1 else np.zeros_like(x)
        return x, y

    def _scatter(self, ax, space: FeatureSpace, marker: str, size: float, prefix: str = "") -> None:
        for label, indices in space.by_label().items():
            x, y = self._xy(space.take(indices))
            ax.scatter(x, y, marker=marker, s=size, label=f"{prefix}{label}")
        if space.dimension:
            ax.set_xlabel(space.feature_names[0])
        if space.dimension > 1:
            ax.set_ylabel(space.feature_names[1])

    def _new_figure(self):
        plt = self._pyplot()
        return plt.subplots(figsize=self.config.figsize)

    def _finish(self, fig, name: str) -> Optional[Path]:
        plt = self._pyplot()
        self._figure_count += 1
        path = None
        if self.config.output_dir is not None:
            directory = Path(self.config.output_dir)
            directory.mkdir(parents=True, exist_ok=True)
            path = directory / f"plot_{self._figure_count:02d}_{name}.png"
            fig.savefig(path, dpi=self.config.dpi, bbox_inches="tight")
            logger.info(f"Saved plot to {path}")
        if self.config.show:
            plt.show()
        plt.close(fig)
        return path
