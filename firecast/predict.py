"""
Apply a fitted model to a forecast-epoch raster stack.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from rasterio.warp import transform
from tqdm import tqdm

from .errors import ScoringError
from .model import MaxentModel
from .occurrences import WGS84, Point
from .rasters import RasterGrid, RasterStack, write_raster

logger = logging.getLogger(__name__)

PROBABILITY_BAND = "probability"


@dataclass(frozen=True)
class ProbabilityRaster:
    """Single-band probability surface (NaN where the forecast stack has no data)."""

    probability: np.ndarray  # (H, W)
    grid: RasterGrid
    band_name: str = PROBABILITY_BAND

    def value_at(self, x: float, y: float) -> float:
        """Probability at a coordinate, NaN outside the grid."""
        rows, cols = self.grid.rowcol([x], [y])
        row, col = int(rows[0]), int(cols[0])
        height, width = self.grid.shape
        if not (0 <= row < height and 0 <= col < width):
            return float("nan")
        return float(self.probability[row, col])

    def stats(self) -> dict:
        valid = self.probability[np.isfinite(self.probability)]
        if valid.size == 0:
            return {"valid_pixels": 0}
        return {
            "valid_pixels": int(valid.size),
            "min": float(valid.min()),
            "max": float(valid.max()),
            "mean": float(valid.mean()),
        }

    def to_geojson(self, threshold: float = 0.5) -> dict:
        """Convert pixels at or above ``threshold`` to GeoJSON points (lon/lat)."""
        rows, cols = np.where(self.probability >= threshold)
        xs, ys = self.grid.pixel_centers(rows, cols)
        if len(xs) and self.grid.crs is not None and self.grid.crs != WGS84:
            xs, ys = transform(self.grid.crs, WGS84, xs.tolist(), ys.tolist())

        features = []
        for x, y, row, col in zip(xs, ys, rows, cols):
            features.append({
                "type": "Feature",
                "properties": {PROBABILITY_BAND: float(self.probability[row, col])},
                "geometry": {"type": "Point", "coordinates": [float(x), float(y)]}
            })

        # Sort by probability (ascending, so high values rendered on top)
        features.sort(key=lambda f: f["properties"][PROBABILITY_BAND])

        return {
            "type": "FeatureCollection",
            "features": features,
            "metadata": {
                "n_pixels": len(features),
                "threshold": threshold,
                "bounds": list(self.grid.bounds),
            }
        }

    def save(self, output_dir: Path, threshold: float = 0.5) -> dict[str, Path]:
        """Save the raster as GeoTIFF and high-probability pixels as GeoJSON."""
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        paths = {}
        paths["raster"] = write_raster(
            output_dir / "probability.tif", self.probability, self.grid, (self.band_name,)
        )

        geojson = self.to_geojson(threshold=threshold)
        geojson_path = output_dir / "high_probability.geojson"
        with open(geojson_path, "w") as f:
            json.dump(geojson, f)
        paths["high_probability"] = geojson_path
        logger.info(f"Saved {len(geojson['features'])} high probability pixels: {geojson_path}")

        return paths


def score_raster_stack(
    model: MaxentModel,
    stack: RasterStack,
    batch_size: int = 15000,
) -> ProbabilityRaster:
    """
    Predict occurrence probability for every pixel of a stack.

    Bands are matched to the model's predictors by name, so band order in the
    stack does not matter. Pixels with no data in any predictor get NaN.

    Args:
        model: Fitted MaxentModel
        stack: Forecast-epoch predictor stack
        batch_size: Pixels scored per batch

    Returns:
        ProbabilityRaster on the stack's grid
    """
    if not model.is_trained:
        raise ScoringError("Model has not been trained yet", stage="score")

    missing = [name for name in model.feature_names_in_ if name not in stack.band_names]
    if missing:
        raise ScoringError(
            f"Forecast stack is missing predictor bands {missing} "
            f"(available: {list(stack.band_names)})",
            stage="score",
            identifier=", ".join(missing),
        )

    pixels = stack.select(model.feature_names_in_, stage="score").pixel_table()
    valid = np.all(np.isfinite(pixels), axis=1)
    valid_idx = np.flatnonzero(valid)

    scores = np.full(len(pixels), np.nan, dtype=np.float64)
    for i in tqdm(range(0, len(valid_idx), batch_size), desc="Scoring", disable=len(valid_idx) <= batch_size):
        idx = valid_idx[i:i + batch_size]
        scores[idx] = model.predict_proba(pixels[idx])

    probability = scores.reshape(stack.grid.shape)
    probability.flags.writeable = False
    logger.info(
        f"Scored {len(valid_idx):,} of {len(pixels):,} pixels "
        f"({len(pixels) - len(valid_idx):,} no-data)"
    )
    return ProbabilityRaster(probability=probability, grid=stack.grid)


def probabilities_at_points(raster: ProbabilityRaster, points: list[Point]) -> list[float]:
    """Look up the probability at each point."""
    return [raster.value_at(p.lon, p.lat) for p in points]
