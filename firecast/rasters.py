"""
Raster stack loading and sampling.

Predictor rasters are read band by band, checked against a reference grid and
merged into one in-memory stack. No-data pixels are stored as NaN.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import numpy as np
import rasterio
from rasterio.crs import CRS
from rasterio.errors import RasterioIOError
from rasterio.transform import Affine

from .errors import InputError

logger = logging.getLogger(__name__)

# Default tolerance (in CRS units) when comparing grid transforms
GRID_TOLERANCE = 1e-6


@dataclass(frozen=True)
class RasterGrid:
    """Grid geometry shared by every band of a stack."""

    crs: CRS
    transform: Affine
    width: int
    height: int

    def __post_init__(self):
        # Pixel footprints are axis-aligned boxes
        if self.transform.b != 0 or self.transform.d != 0:
            raise InputError(
                f"Rotated or sheared grids are not supported: {tuple(self.transform)[:6]}",
                stage="load",
            )

    @property
    def shape(self) -> tuple[int, int]:
        return (self.height, self.width)

    @property
    def resolution(self) -> tuple[float, float]:
        return (abs(self.transform.a), abs(self.transform.e))

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """(min_x, min_y, max_x, max_y)"""
        return rasterio.transform.array_bounds(self.height, self.width, self.transform)

    @property
    def is_geographic(self) -> bool:
        return bool(self.crs is not None and self.crs.is_geographic)

    def matches(self, other: "RasterGrid", tolerance: float = GRID_TOLERANCE) -> bool:
        """True if both grids share CRS, shape and transform within tolerance."""
        if self.shape != other.shape or self.crs != other.crs:
            return False
        return bool(np.allclose(
            tuple(self.transform)[:6], tuple(other.transform)[:6], rtol=0.0, atol=tolerance
        ))

    def pixel_centers(self, rows, cols) -> tuple[np.ndarray, np.ndarray]:
        """Map pixel indices to the x/y coordinates of pixel centres."""
        rows = np.atleast_1d(np.asarray(rows))
        cols = np.atleast_1d(np.asarray(cols))
        xs = self.transform.c + (cols + 0.5) * self.transform.a + (rows + 0.5) * self.transform.b
        ys = self.transform.f + (cols + 0.5) * self.transform.d + (rows + 0.5) * self.transform.e
        return xs.astype(float), ys.astype(float)

    def rowcol(self, xs, ys) -> tuple[np.ndarray, np.ndarray]:
        """Map x/y coordinates to (row, col) pixel indices (may fall outside the grid)."""
        xs = np.atleast_1d(np.asarray(xs, dtype=float))
        ys = np.atleast_1d(np.asarray(ys, dtype=float))
        inverse = ~self.transform
        cols_f = inverse.a * xs + inverse.b * ys + inverse.c
        rows_f = inverse.d * xs + inverse.e * ys + inverse.f
        return np.floor(rows_f).astype(int), np.floor(cols_f).astype(int)


@dataclass(frozen=True)
class RasterStack:
    """
    Multi-band raster on a single grid.

    Attributes:
        data: float array of shape (bands, height, width), NaN where no-data
        band_names: Band names in stack order
        grid: Grid geometry shared by all bands
    """

    data: np.ndarray
    band_names: tuple[str, ...]
    grid: RasterGrid

    def __post_init__(self):
        if self.data.ndim != 3:
            raise InputError(f"Stack data must be 3-D (bands, rows, cols), got {self.data.shape}")
        if self.data.shape[0] != len(self.band_names):
            raise InputError(
                f"Stack has {self.data.shape[0]} bands but {len(self.band_names)} names"
            )
        if self.data.shape[1:] != self.grid.shape:
            raise InputError(f"Stack data shape {self.data.shape[1:]} does not match grid {self.grid.shape}")
        if len(set(self.band_names)) != len(self.band_names):
            raise InputError(f"Duplicate band names in stack: {list(self.band_names)}")
        # Stacks are read-only once built; the caller's array is left writable
        data = self.data.view()
        data.flags.writeable = False
        object.__setattr__(self, "data", data)

    @property
    def shape(self) -> tuple[int, int, int]:
        return self.data.shape

    def band(self, name: str) -> np.ndarray:
        if name not in self.band_names:
            raise InputError(f"Band '{name}' not in stack {list(self.band_names)}", identifier=name)
        return self.data[self.band_names.index(name)]

    def select(self, names, stage: str = "rasters") -> "RasterStack":
        """Return a new stack with the given bands, in the given order."""
        missing = [name for name in names if name not in self.band_names]
        if missing:
            raise InputError(
                f"Bands {missing} not found in stack (available: {list(self.band_names)})",
                stage=stage,
                identifier=", ".join(missing),
            )
        idx = [self.band_names.index(name) for name in names]
        return RasterStack(data=self.data[idx].copy(), band_names=tuple(names), grid=self.grid)

    def valid_mask(self) -> np.ndarray:
        """(height, width) mask of pixels with data in every band."""
        return np.all(np.isfinite(self.data), axis=0)

    def pixel_table(self) -> np.ndarray:
        """All pixels as an (height * width, bands) array, row-major."""
        return self.data.reshape(self.data.shape[0], -1).T

    def sample_at_points(
        self, points: list[tuple[float, float]]
    ) -> tuple[np.ndarray, np.ndarray]:
        """
        Sample band values at the given points.

        Args:
            points: List of (x, y) tuples in the stack CRS

        Returns:
            Tuple of (values, valid_mask)
            - values: array of shape (n_points, n_bands), NaN where missing
            - valid_mask: boolean array, False for points outside the grid or
              on a no-data pixel in any band
        """
        n_bands, height, width = self.data.shape
        values = np.full((len(points), n_bands), np.nan, dtype=np.float64)
        if not points:
            return values, np.zeros(0, dtype=bool)

        xs, ys = zip(*points)
        rows, cols = self.grid.rowcol(xs, ys)
        inside = (rows >= 0) & (rows < height) & (cols >= 0) & (cols < width)

        values[inside] = self.data[:, rows[inside], cols[inside]].T
        valid_mask = inside & np.all(np.isfinite(values), axis=1)
        return values, valid_mask


def _parse_source(name: str, source) -> tuple[Path, int]:
    if isinstance(source, dict):
        if "path" not in source:
            raise InputError(f"Source for band '{name}' has no path", stage="load", identifier=name)
        return Path(source["path"]), int(source.get("band", 1))
    return Path(source), 1


def load_raster_band(path: Union[str, Path], band: int = 1) -> tuple[np.ndarray, RasterGrid]:
    """
    Read one band of a raster, converting no-data values to NaN.

    Args:
        path: Raster file path
        band: 1-based band index

    Returns:
        Tuple of (array, grid)
    """
    path = Path(path)
    if not path.exists():
        raise InputError(f"Raster not found: {path}", stage="load", identifier=str(path))

    try:
        with rasterio.open(path) as src:
            if not 1 <= band <= src.count:
                raise InputError(
                    f"Band {band} out of range for {path} ({src.count} bands)",
                    stage="load",
                    identifier=str(path),
                )
            arr = src.read(band).astype(np.float64)
            nodata = src.nodatavals[band - 1]
            grid = RasterGrid(crs=src.crs, transform=src.transform, width=src.width, height=src.height)
    except RasterioIOError as e:
        raise InputError(f"Cannot read raster {path}: {e}", stage="load", identifier=str(path)) from e

    if nodata is not None and not np.isnan(nodata):
        arr[arr == nodata] = np.nan
    arr[~np.isfinite(arr)] = np.nan
    return arr, grid


def load_raster_stack(
    sources: dict[str, object],
    reference: Optional[RasterGrid] = None,
    tolerance: float = GRID_TOLERANCE,
) -> RasterStack:
    """
    Load named rasters and merge them into one multi-band stack.

    Args:
        sources: Mapping of band name to raster path, or to
            {"path": ..., "band": k} to select and rename band k of a file
        reference: Grid every band must match. Defaults to the first band's grid.
        tolerance: Allowed transform difference in CRS units

    Returns:
        RasterStack with bands in the order of ``sources``
    """
    if not sources:
        raise InputError("No rasters given", stage="load")

    arrays = []
    grid = reference
    for name, source in sources.items():
        path, band = _parse_source(name, source)
        arr, band_grid = load_raster_band(path, band)

        if grid is None:
            grid = band_grid
        elif not band_grid.matches(grid, tolerance):
            raise InputError(
                f"Grid of '{name}' ({path}) does not match the reference grid: "
                f"{band_grid.shape} {band_grid.crs} vs {grid.shape} {grid.crs}",
                stage="load",
                identifier=str(path),
            )
        arrays.append(arr)
        logger.info(f"  Loaded band {name} from {path.name} ({arr.shape[0]} x {arr.shape[1]})")

    return RasterStack(data=np.stack(arrays), band_names=tuple(sources), grid=grid)


def write_raster(
    path: Union[str, Path],
    data: np.ndarray,
    grid: RasterGrid,
    band_names: tuple[str, ...],
) -> Path:
    """Write a (bands, rows, cols) float array as a GeoTIFF with NaN nodata."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
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
        nodata=np.nan,
        compress="lzw",
    ) as dst:
        for i in range(data.shape[0]):
            dst.write(data[i].astype(np.float32), i + 1)
            dst.set_band_description(i + 1, band_names[i])
    logger.info(f"Saved raster: {path}")
    return path
