"""
Candidate (absence) point sampling and the spatial exclusion join.
"""

import logging
from typing import Optional

import numpy as np
import shapely
from rasterio.warp import transform
from shapely.geometry.base import BaseGeometry
from sklearn.neighbors import BallTree

from .occurrences import WGS84, Point
from .rasters import RasterGrid

logger = logging.getLogger(__name__)

# Mean Earth radius (m), used for haversine distances on geographic grids
EARTH_RADIUS_M = 6371008.8


def eligible_pixels(
    region: BaseGeometry,
    grid: RasterGrid,
    valid_mask: Optional[np.ndarray] = None,
) -> tuple[np.ndarray, np.ndarray]:
    """
    List the pixels of a grid that intersect a region, in row-major order.

    Args:
        region: Region geometry in the grid CRS
        grid: Reference grid
        valid_mask: Optional (height, width) mask; False pixels are not eligible

    Returns:
        Tuple of (rows, cols) index arrays
    """
    rows, cols = np.indices(grid.shape)
    rows, cols = rows.ravel(), cols.ravel()

    # Pixel footprints as boxes
    x0 = grid.transform.c + cols * grid.transform.a
    x1 = x0 + grid.transform.a
    y0 = grid.transform.f + rows * grid.transform.e
    y1 = y0 + grid.transform.e
    boxes = shapely.box(np.minimum(x0, x1), np.minimum(y0, y1), np.maximum(x0, x1), np.maximum(y0, y1))

    inside = shapely.intersects(region, boxes)
    # Touching the region's boundary only is not an intersection of area
    inside &= ~shapely.touches(region, boxes)

    if valid_mask is not None:
        inside &= valid_mask.ravel()

    return rows[inside], cols[inside]


def sample_candidate_points(
    region: BaseGeometry,
    grid: RasterGrid,
    n_samples: int,
    seed: int,
    valid_mask: Optional[np.ndarray] = None,
) -> list[Point]:
    """
    Draw candidate absence points at pixel centres inside a region.

    Eligible pixels are enumerated row-major and ``n_samples`` of them are
    drawn without replacement from a generator seeded once with ``seed``, so
    the same inputs always give the same points. If fewer pixels are eligible
    than requested, all of them are returned.

    Args:
        region: Region geometry in the grid CRS
        grid: Reference grid (projection and resolution)
        n_samples: Number of points to draw
        seed: Random seed
        valid_mask: Optional (height, width) mask of pixels with data

    Returns:
        Points in row-major pixel order, with ``longitude``/``latitude``
        (pixel centre) and ``row``/``col`` attributes
    """
    if n_samples <= 0:
        return []

    rows, cols = eligible_pixels(region, grid, valid_mask)
    n_eligible = len(rows)

    if n_eligible <= n_samples:
        if n_eligible < n_samples:
            logger.warning(f"Only {n_eligible} eligible pixels in region (requested {n_samples})")
        chosen = np.arange(n_eligible)
    else:
        rng = np.random.default_rng(seed)
        chosen = np.sort(rng.choice(n_eligible, size=n_samples, replace=False))

    xs, ys = grid.pixel_centers(rows[chosen], cols[chosen])
    if len(xs) and grid.crs is not None and grid.crs != WGS84:
        lons, lats = transform(grid.crs, WGS84, xs.tolist(), ys.tolist())
    else:
        lons, lats = xs, ys

    points = []
    for x, y, lon, lat, row, col in zip(xs, ys, lons, lats, rows[chosen], cols[chosen]):
        points.append(Point(
            float(x), float(y),
            {"longitude": float(lon), "latitude": float(lat), "row": int(row), "col": int(col)},
        ))

    logger.info(f"Sampled {len(points)} candidate points from {n_eligible} eligible pixels")
    return points


def _coords(points: list[Point]) -> np.ndarray:
    return np.array([p.coords for p in points], dtype=float).reshape(-1, 2)


def nearest_distances(
    points: list[Point],
    targets: list[Point],
    geographic: bool,
) -> np.ndarray:
    """
    Distance from each point to its nearest target.

    Args:
        points: Query points
        targets: Points to measure against
        geographic: If True, coordinates are lon/lat degrees and distances are
            haversine metres; otherwise Euclidean distances in CRS units

    Returns:
        Array of distances, +inf everywhere if there are no targets
    """
    if not points:
        return np.zeros(0)
    if not targets:
        return np.full(len(points), np.inf)

    query = _coords(points)
    reference = _coords(targets)

    if geographic:
        # BallTree haversine expects (lat, lon) in radians
        tree = BallTree(np.radians(reference[:, ::-1]), metric="haversine")
        dist, _ = tree.query(np.radians(query[:, ::-1]), k=1)
        return dist[:, 0] * EARTH_RADIUS_M

    tree = BallTree(reference, metric="euclidean")
    dist, _ = tree.query(query, k=1)
    return dist[:, 0]


def exclude_near_presence(
    candidates: list[Point],
    presence: list[Point],
    min_distance: float,
    geographic: bool = True,
) -> list[Point]:
    """
    Drop candidate points lying within ``min_distance`` of any presence point.

    A candidate at exactly ``min_distance`` from its nearest presence point is
    kept. Surviving points are returned unchanged, in their input order.

    Args:
        candidates: Candidate absence points
        presence: Presence points
        min_distance: Exclusion distance (metres if geographic, else CRS units)
        geographic: Whether coordinates are lon/lat degrees

    Returns:
        Candidates farther than the exclusion distance from every presence point
    """
    distances = nearest_distances(candidates, presence, geographic)
    keep = distances >= min_distance

    kept = [point for point, k in zip(candidates, keep) if k]
    logger.info(
        f"Exclusion join: kept {len(kept)} of {len(candidates)} candidates "
        f"(min distance {min_distance:g})"
    )
    return kept
