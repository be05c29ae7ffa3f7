"""
Command Line Interface
======================

Runs one scoring command and prints a summary of the resulting stream.

Usage:
    sleepscore "load synthetic | segment 3 | extract | partition 1:3 | svm linear | eval"
    sleepscore "load shhs | segment 1 | extract | plot" --plot-dir plots
    sleepscore "<command>" --config configs/default.yaml --seed 7 --output summary.yaml

Exit Status:
    0 on success, 1 if the command fails

Author: Sleepscore Project Team
License: MIT
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from typing import List, Optional

import yaml

from .pipeline import ScoringConfig, ScoringPipeline
from .streams import ScoringError, summarize

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Argument parser of the `sleepscore` command."""
    parser = argparse.ArgumentParser(
        prog="sleepscore",
        description="Sleep stage scoring pipelines in UNIX pipe notation",
    )
    parser.add_argument(
        "command", help='Pipe-delimited command, e.g. "load shhs | segment 3 | extract"'
    )
    parser.add_argument("--config", "-c", help="YAML configuration file")
    parser.add_argument("--seed", "-s", type=int, help="Random seed (overrides config)")
    parser.add_argument("--plot-dir", help="Directory for saved plots")
    parser.add_argument("--show", action="store_true", help="Show plots interactively")
    parser.add_argument("--output", "-o", help="Write the result summary to a YAML file")
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose logging"
    )
    return parser


def load_config(args: argparse.Namespace) -> ScoringConfig:
    """Configuration from the config file, with command line overrides applied."""
    config = ScoringConfig.from_yaml(args.config) if args.config else ScoringConfig()
    if args.seed is not None:
        config.seed = args.seed
    if args.plot_dir is not None or args.show:
        config.plot = dataclasses.replace(
            config.plot,
            output_dir=args.plot_dir if args.plot_dir is not None else config.plot.output_dir,
            show=args.show or config.plot.show,
        )
    return config


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        config = load_config(args)
        result = ScoringPipeline(config).run(args.command)
    except (ScoringError, ValueError, OSError) as e:
        logger.error(str(e))
        return 1

    summary = summarize(result)
    print(yaml.safe_dump(summary, default_flow_style=None, sort_keys=False))

    if args.output:
        with open(args.output, "w") as f:
            yaml.safe_dump(summary, f, default_flow_style=False, sort_keys=False)
        logger.info(f"Summary written to {args.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
