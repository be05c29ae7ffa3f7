#!/usr/bin/env python3
"""
Sleep Scoring Demo
==================

Demonstrates the scoring pipeline on the synthetic record:
1. Record loading and segmentation
2. Feature extraction
3. Train/test partitioning
4. SVM classification and evaluation
5. Exhaustive and genetic feature selection

Usage:
    python scripts/demo.py
    python scripts/demo.py --seed 7          # Different synthetic night
    python scripts/demo.py --plot-dir plots  # Save figures
    python scripts/demo.py --skip-search     # Classification only

Author: Sleepscore Project Team
License: MIT
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

# Add src directory to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

import numpy as np

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def print_banner():
    """Print demo banner."""
    print(
        """
╔══════════════════════════════════════════════════════════════════╗
║                                                                  ║
║                 SLEEP STAGE SCORING DEMONSTRATION                ║
║                                                                  ║
║        Single-channel EEG pipelines in UNIX pipe notation        ║
║                                                                  ║
╚══════════════════════════════════════════════════════════════════╝
    """
    )


def print_evaluation(evaluation) -> None:
    """Print accuracy and confusion matrix of an evaluation."""
    print(f"   • Features: {', '.join(evaluation.features)}")
    print(f"   • Accuracy: {evaluation.accuracy:.3f}")
    order = evaluation.confusion_order
    print("   • Confusion matrix (rows = true, columns = predicted):")
    print("       " + " ".join(f"{label:>4}" for label in order))
    for label, row in zip(order, evaluation.confusion_matrix):
        print(f"     {label:>2} " + " ".join(f"{int(v):4d}" for v in row))


def run_classification_demo(pipeline) -> None:
    """
    Segment, extract, split and classify the synthetic record.

    Args:
        pipeline: ScoringPipeline to run the commands on
    """
    print("\n" + "=" * 60)
    print("CLASSIFICATION DEMO")
    print("=" * 60)

    start = time.perf_counter()
    space = pipeline.run("load synthetic | segment 3 | extract")
    print(f"\n📊 Extracted {len(space)} vectors with {space.dimension} features")
    for label, indices in space.by_label().items():
        print(f"   • Stage {label}: {indices.size} vectors")

    for kernel in ("linear", "rbf"):
        print(f"\n🔄 SVM ({kernel}) on a 1:3 split")
        evaluation = pipeline.run(
            f"partition 1:3 | svm {kernel} | eval | plot | plot hypnogram", space
        )
        print_evaluation(evaluation)

    print("\n🔄 Wake / light / deep bundles, balanced")
    evaluation = pipeline.run(
        "bundle W 12R 34M | balance | partition 1:1 | svm rbf | eval", space
    )
    print_evaluation(evaluation)
    print(f"\n⏱  Elapsed: {time.perf_counter() - start:.1f}s")


def run_selection_demo(pipeline) -> None:
    """
    Compare exhaustive and genetic feature selection on four features.

    Args:
        pipeline: ScoringPipeline to run the commands on
    """
    print("\n" + "=" * 60)
    print("FEATURE SELECTION DEMO")
    print("=" * 60)

    space = pipeline.run(
        "load synthetic | segment 3 | extract | select Delta Alpha Sigma Variance"
    )
    partition = pipeline.run("partition 1:1", space)

    print("\n🔍 Exhaustive search (15 candidates)")
    start = time.perf_counter()
    selection = pipeline.run("select exhaustive svm linear | eval | plot bar sizes", partition)
    accuracies = [e.accuracy for e in selection.evaluations]
    print(f"   • Best held-out accuracy: {np.max(accuracies):.3f}")
    print(f"   • Mean held-out accuracy: {np.mean(accuracies):.3f}")
    print_evaluation(selection.evaluations[0])
    print(f"   • Elapsed: {time.perf_counter() - start:.1f}s")

    print("\n🧬 Genetic search")
    start = time.perf_counter()
    best = pipeline.run("select restricted svm linear | eval | eval", partition)
    print_evaluation(best)
    print(f"   • Validation accuracy: {best.validation_accuracy:.3f}")
    print(f"   • Elapsed: {time.perf_counter() - start:.1f}s")


def main():
    """Main entry point."""
    from sleepscore import PlotConfig, ScoringConfig, ScoringPipeline

    parser = argparse.ArgumentParser(description="Sleep Stage Scoring Demonstration")
    parser.add_argument(
        "--seed", "-s", type=int, default=42, help="Random seed (default: 42)"
    )
    parser.add_argument("--plot-dir", help="Directory for saved plots")
    parser.add_argument(
        "--skip-search", action="store_true", help="Skip the feature selection demo"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose logging"
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    config = ScoringConfig(seed=args.seed, plot=PlotConfig(output_dir=args.plot_dir))
    pipeline = ScoringPipeline(config)

    print_banner()
    run_classification_demo(pipeline)
    if not args.skip_search:
        run_selection_demo(pipeline)

    print("\n" + "=" * 60)
    print("✅ Demo complete")
    print("=" * 60)


if __name__ == "__main__":
    main()
