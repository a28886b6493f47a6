"""
Command-line interface for the fire forecast.
"""

import argparse
import dataclasses
import json
import logging
from pathlib import Path

from .config import RunConfig, FeatureConfig
from .errors import FirecastError
from .pipeline import run_forecast

logger = logging.getLogger(__name__)


def build_config(args: argparse.Namespace) -> RunConfig:
    """Load the JSON config and apply command-line overrides."""
    config = RunConfig.from_json(args.config)

    overrides = {}
    if args.sample_count is not None:
        overrides["sample_count"] = args.sample_count
    if args.seed is not None:
        overrides["sample_seed"] = args.seed
    if args.exclusion_distance is not None:
        overrides["exclusion_distance_meters"] = args.exclusion_distance
    if args.features is not None:
        overrides["features"] = FeatureConfig.from_families(args.features)
    if args.no_auto_features:
        overrides["auto_feature_selection"] = False
    if args.output_dir is not None:
        overrides["output_dir"] = args.output_dir

    return dataclasses.replace(config, **overrides) if overrides else config


def main(argv=None):
    parser = argparse.ArgumentParser(description="Train a MaxEnt fire model and forecast fire probability")
    parser.add_argument("config", help="Path to the run configuration (JSON)")
    parser.add_argument("--output-dir", "-o", default=None, help="Output directory")
    parser.add_argument("--sample-count", "-n", type=int, default=None, help="Number of candidate absence points")
    parser.add_argument("--seed", "-s", type=int, default=None, help="Random seed for absence sampling")
    parser.add_argument("--exclusion-distance", "-d", type=float, default=None,
                        help="Minimum distance (m) between absence and presence points")
    parser.add_argument("--features", "-f", nargs="+", default=None,
                        choices=["linear", "quadratic", "product", "threshold", "hinge"],
                        help="Feature families to enable")
    parser.add_argument("--no-auto-features", action="store_true",
                        help="Use exactly the enabled feature families")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        config = build_config(args)
        result = run_forecast(config, output_dir=Path(config.output_dir) if config.output_dir else None)
    except FirecastError as e:
        logger.error(str(e))
        raise SystemExit(1) from e

    summary = result.summary()
    summary["feature_families"] = list(result.model.feature_families_)
    print(json.dumps(summary, indent=2))


if __name__ == "__main__":
    main()
