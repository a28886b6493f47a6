"""
Shared fixtures: small synthetic grids, stacks and point sets.
"""

import json

import numpy as np
import pytest
import rasterio
from rasterio.crs import CRS
from rasterio.transform import from_origin

from firecast.occurrences import Point
from firecast.rasters import RasterGrid, RasterStack


@pytest.fixture
def unit_grid():
    """Unit square split into 4 x 4 pixels (pixel width 0.25), projected CRS."""
    return RasterGrid(
        crs=CRS.from_epsg(3857),
        transform=from_origin(0.0, 1.0, 0.25, 0.25),
        width=4,
        height=4,
    )


@pytest.fixture
def unit_stack(unit_grid):
    """Two predictor bands varying along columns and rows."""
    rows, cols = np.indices(unit_grid.shape).astype(float)
    temp = cols + 0.1 * rows
    dry = rows + 0.3 * cols
    return RasterStack(data=np.stack([temp, dry]), band_names=("temp", "dry"), grid=unit_grid)


@pytest.fixture
def corner_presence():
    """Presence points at the centres of pixels (0, 0), (0, 3) and (3, 0)."""
    return [
        Point(0.125, 0.875, {"id": 1}),
        Point(0.875, 0.875, {"id": 2}),
        Point(0.125, 0.125, {"id": 3}),
    ]


@pytest.fixture
def geo_grid():
    """10 x 10 grid of 0.25 degree pixels in EPSG:4326."""
    return RasterGrid(
        crs=CRS.from_epsg(4326),
        transform=from_origin(-75.0, 0.0, 0.25, 0.25),
        width=10,
        height=10,
    )


@pytest.fixture
def utm_grid():
    """10 x 10 grid of 25 km pixels in UTM zone 18N, just north of the equator."""
    return RasterGrid(
        crs=CRS.from_epsg(32618),
        transform=from_origin(500000.0, 350000.0, 25000.0, 25000.0),
        width=10,
        height=10,
    )


@pytest.fixture
def write_tif():
    """Write a single- or multi-band float32 GeoTIFF."""

    def _write(path, data, grid, nodata=None):
        data = np.asarray(data, dtype=np.float32)
        if data.ndim == 2:
            data = data[np.newaxis]
        with rasterio.open(
            path, "w",
            driver="GTiff",
            height=grid.height,
            width=grid.width,
            count=data.shape[0],
            dtype=np.float32,
            crs=grid.crs,
            transform=grid.transform,
            nodata=nodata,
        ) as dst:
            dst.write(data)
        return path

    return _write


@pytest.fixture
def write_points():
    """Write Points as a GeoJSON FeatureCollection."""

    def _write(path, coords):
        features = [
            {
                "type": "Feature",
                "properties": {"presence": 1},
                "geometry": {"type": "Point", "coordinates": [lon, lat]},
            }
            for lon, lat in coords
        ]
        with open(path, "w") as f:
            json.dump({"type": "FeatureCollection", "features": features}, f)
        return path

    return _write


@pytest.fixture
def synthetic_training_data():
    """Background uniform on [0, 1]^2, presences concentrated at high x0."""
    rng = np.random.default_rng(0)
    background = rng.uniform(0, 1, size=(300, 2))
    presence = np.column_stack([rng.uniform(0.6, 1.0, 60), rng.uniform(0, 1, 60)])
    X = np.vstack([presence, background])
    y = np.array([1] * len(presence) + [0] * len(background))
    return X, y
