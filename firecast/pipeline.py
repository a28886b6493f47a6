"""
Main pipeline: train a MaxEnt model on one epoch and forecast the next.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from shapely.geometry.base import BaseGeometry

from .config import REGIONS, RunConfig
from .errors import DataSufficiencyError, InputError
from .model import MaxentModel
from .occurrences import (
    WGS84,
    Point,
    load_point_collection,
    load_region,
    reproject_points,
    reproject_region,
    save_points_geojson,
)
from .predict import ProbabilityRaster, score_raster_stack
from .rasters import RasterStack, load_raster_stack
from .sampling import exclude_near_presence, sample_candidate_points
from .training import TrainingSet, assemble_training_set

logger = logging.getLogger(__name__)


@dataclass
class ForecastResult:
    """Container for forecast results."""

    probability: ProbabilityRaster
    model: MaxentModel
    training_set: TrainingSet
    n_presence: int
    n_candidates: int
    n_absence: int

    @property
    def converged(self) -> bool:
        return self.model.converged_

    def summary(self) -> dict:
        return {
            "n_presence": self.n_presence,
            "n_candidates": self.n_candidates,
            "n_absence_after_join": self.n_absence,
            "n_training_presence": self.training_set.n_presence,
            "n_training_absence": self.training_set.n_absence,
            "n_flagged": self.training_set.n_flagged,
            "converged": self.converged,
            "probability": self.probability.stats(),
        }

    def save(self, output_dir: Path, threshold: float = 0.5) -> dict[str, Path]:
        """Save raster, model, training points and diagnostics."""
        output_dir = Path(output_dir)
        paths = self.probability.save(output_dir, threshold=threshold)

        model_path = output_dir / "maxent_model.joblib"
        self.model.save(model_path)
        paths["model"] = model_path
        logger.info(f"Saved model: {model_path}")

        explain_path = output_dir / "explain.json"
        with open(explain_path, "w") as f:
            json.dump(self.model.explain(), f, indent=2)
        paths["explain"] = explain_path

        points = [p.point for p in self.training_set.points]
        crs = self.probability.grid.crs
        if crs is not None:
            # GeoJSON output is lon/lat
            points = reproject_points(points, WGS84, src_crs=crs)
        paths["training_points"] = save_points_geojson(
            points, output_dir / "training_points.geojson", name="training_points"
        )

        summary_path = output_dir / "summary.json"
        with open(summary_path, "w") as f:
            json.dump(self.summary(), f, indent=2)
        paths["summary"] = summary_path
        logger.info(f"Saved summary: {summary_path}")

        return paths


def load_inputs(config: RunConfig) -> tuple[BaseGeometry, RasterStack, RasterStack, list[Point]]:
    """
    Load and check every input before any sampling happens.

    The region and presence points are read as WGS84 longitude/latitude and
    reprojected into the stack CRS when the stacks use another one.

    Returns:
        Tuple of (region, training stack, forecast stack, presence points),
        all in the stack CRS
    """
    region = load_region(config.region, REGIONS)

    training_stack = load_raster_stack(config.training_stack)
    forecast_stack = load_raster_stack(config.forecast_stack)

    for label, stack in (("training", training_stack), ("forecast", forecast_stack)):
        missing = [b for b in config.predictor_bands if b not in stack.band_names]
        if missing:
            raise InputError(
                f"Predictor bands {missing} not in {label} stack {list(stack.band_names)}",
                stage="load",
                identifier=", ".join(missing),
            )

    if not forecast_stack.grid.matches(training_stack.grid):
        raise InputError(
            f"Forecast grid {forecast_stack.grid.shape} {forecast_stack.grid.crs} does not match "
            f"training grid {training_stack.grid.shape} {training_stack.grid.crs}",
            stage="load",
        )

    presence = load_point_collection(config.presence_points)

    crs = training_stack.grid.crs
    if crs is not None and crs != WGS84:
        logger.info(f"  Reprojecting region and presence points to {crs}")
        region = reproject_region(region, crs)
        presence = reproject_points(presence, crs)

    return region, training_stack, forecast_stack, presence


def train_and_forecast(
    config: RunConfig,
    region: BaseGeometry,
    training_stack: RasterStack,
    forecast_stack: RasterStack,
    presence: list[Point],
) -> ForecastResult:
    """
    Run sampling, the exclusion join, training and scoring on loaded inputs.

    Args:
        config: Run configuration
        region: Region to draw absence points from, in the stack CRS
        training_stack: Predictors of the training epoch
        forecast_stack: Predictors of the forecast epoch
        presence: Observed fire locations of the training period

    Returns:
        ForecastResult with the probability raster and fitted model
    """
    logger.info(f"  Presence points: {len(presence)}")
    if not presence:
        raise DataSufficiencyError("No presence points", stage="sample", identifier=str(config.presence_points))

    # 1. Candidate absence points at pixel centres of the training grid
    logger.info("\n[1/4] Sampling candidate absence points...")
    candidates = sample_candidate_points(
        region,
        training_stack.grid,
        config.sample_count,
        config.sample_seed,
        valid_mask=training_stack.select(config.predictor_bands).valid_mask(),
    )

    # 2. Exclusion join
    logger.info("\n[2/4] Removing candidates near presence points...")
    absence = exclude_near_presence(
        candidates,
        presence,
        config.exclusion_distance_meters,
        geographic=training_stack.grid.is_geographic,
    )
    if not absence:
        raise DataSufficiencyError(
            f"No absence points left after the exclusion join "
            f"({len(candidates)} candidates, distance {config.exclusion_distance_meters:g})",
            stage="join",
        )

    # 3. Training set
    logger.info("\n[3/4] Assembling training set...")
    training_set = assemble_training_set(
        presence,
        absence,
        training_stack,
        band_names=list(config.predictor_bands),
        missing_policy=config.missing_data_policy,
        property_name=config.presence_property,
    )
    training_set.validate()

    # 4. Train and forecast
    logger.info("\n[4/4] Training MaxEnt model and scoring forecast stack...")
    model = MaxentModel(
        features=config.features,
        auto_features=config.auto_feature_selection,
        config=config.maxent,
    )
    model.fit(training_set.X, training_set.y, feature_names=list(training_set.band_names))

    for name, percent in sorted(model.feature_importance().items(), key=lambda kv: -kv[1]):
        logger.info(f"  {name}: {percent:.1f}%")

    probability = score_raster_stack(model, forecast_stack)
    stats = probability.stats()
    if stats["valid_pixels"]:
        logger.info(f"\n  Probability range: {stats['min']:.3f} - {stats['max']:.3f}")

    return ForecastResult(
        probability=probability,
        model=model,
        training_set=training_set,
        n_presence=len(presence),
        n_candidates=len(candidates),
        n_absence=len(absence),
    )


def run_forecast(config: RunConfig, output_dir: Optional[Path] = None) -> ForecastResult:
    """
    Train on the training epoch and forecast fire probability for the next.

    Args:
        config: Run configuration
        output_dir: If provided (or set in the config), save results there

    Returns:
        ForecastResult
    """
    logger.info("=" * 60)
    logger.info("Fire probability forecast (MaxEnt)")
    logger.info("=" * 60)

    logger.info("\nLoading inputs...")
    region, training_stack, forecast_stack, presence = load_inputs(config)

    result = train_and_forecast(config, region, training_stack, forecast_stack, presence)

    output_dir = output_dir or config.output_dir
    if output_dir:
        result.save(Path(output_dir))

    logger.info("\n" + "=" * 60)
    logger.info("COMPLETE")
    logger.info("=" * 60)

    return result
