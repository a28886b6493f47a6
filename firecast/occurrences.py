"""
Point collections and regions: fire occurrences, candidate points and the
area of interest, read from and written to GeoJSON.
"""

import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional, Union

import requests
from rasterio.crs import CRS
from rasterio.warp import transform, transform_geom
from shapely.geometry import box, mapping, shape
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union

from .errors import InputError

logger = logging.getLogger(__name__)

# GeoJSON coordinates are WGS84 longitude/latitude
WGS84 = CRS.from_epsg(4326)


@dataclass(frozen=True)
class Point:
    """
    A location with numeric attributes.

    Coordinates are WGS84 longitude/latitude as read from GeoJSON, or x/y in a
    raster stack CRS once passed through ``reproject_points``.
    """

    lon: float
    lat: float
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def coords(self) -> tuple[float, float]:
        return (self.lon, self.lat)

    def with_attributes(self, **values) -> "Point":
        """Return a copy with extra attributes set."""
        return replace(self, attributes={**self.attributes, **values})


def _is_url(identifier: str) -> bool:
    return identifier.startswith("http://") or identifier.startswith("https://")


def _read_geojson(identifier: Union[str, Path], stage: str) -> dict:
    """Read GeoJSON from a local file or an http(s) URL."""
    identifier = str(identifier)

    if _is_url(identifier):
        try:
            response = requests.get(identifier, timeout=60)
            response.raise_for_status()
        except requests.RequestException as e:
            raise InputError(f"Cannot fetch {identifier}: {e}", stage=stage, identifier=identifier) from e
        return response.json()

    path = Path(identifier)
    if not path.exists():
        raise InputError(f"Point collection not found: {path}", stage=stage, identifier=identifier)
    with open(path) as f:
        return json.load(f)


def _iter_features(geojson: dict) -> list[dict]:
    kind = geojson.get("type")
    if kind == "FeatureCollection":
        return geojson.get("features", [])
    if kind == "Feature":
        return [geojson]
    # Bare geometry
    return [{"type": "Feature", "properties": {}, "geometry": geojson}]


def load_point_collection(identifier: Union[str, Path]) -> list[Point]:
    """
    Load a point collection from a GeoJSON file or URL.

    MultiPoint geometries are expanded into one Point per member. Features
    without a point geometry are skipped.

    Args:
        identifier: Path or http(s) URL of a GeoJSON FeatureCollection

    Returns:
        List of Points with the feature properties as attributes
    """
    geojson = _read_geojson(identifier, stage="load")

    points = []
    skipped = 0
    for feature in _iter_features(geojson):
        geometry = feature.get("geometry") or {}
        properties = dict(feature.get("properties") or {})
        kind = geometry.get("type")

        if kind == "Point":
            lon, lat = geometry["coordinates"][:2]
            points.append(Point(float(lon), float(lat), properties))
        elif kind == "MultiPoint":
            for lon, lat, *_ in geometry["coordinates"]:
                points.append(Point(float(lon), float(lat), dict(properties)))
        else:
            skipped += 1

    if skipped:
        logger.warning(f"Skipped {skipped} non-point features in {identifier}")

    logger.info(f"Loaded {len(points)} points from {identifier}")
    return points


def load_region(region, regions: Optional[dict] = None) -> BaseGeometry:
    """
    Resolve a region into a shapely geometry.

    Args:
        region: A (min_x, min_y, max_x, max_y) bounding box, a preset name from
            ``regions``, a GeoJSON geometry dict, or a path to a GeoJSON file
        regions: Named region presets

    Returns:
        Region geometry (the union of all features of a collection)
    """
    if isinstance(region, BaseGeometry):
        return region

    if isinstance(region, (tuple, list)):
        if len(region) != 4:
            raise InputError(f"Bounding box needs 4 values, got {len(region)}", stage="load")
        return box(*map(float, region))

    if isinstance(region, dict):
        geometries = [shape(f["geometry"]) for f in _iter_features(region) if f.get("geometry")]
    elif regions and region in regions:
        return box(*regions[region]["bbox"])
    else:
        geojson = _read_geojson(region, stage="load")
        geometries = [shape(f["geometry"]) for f in _iter_features(geojson) if f.get("geometry")]

    if not geometries:
        raise InputError(f"Region has no geometry: {region}", stage="load", identifier=str(region))
    return unary_union(geometries)


def points_to_geojson(points: list[Point], name: str = "points") -> dict:
    """
    Convert Points to a GeoJSON FeatureCollection.

    Args:
        points: Points to convert
        name: Collection name

    Returns:
        GeoJSON FeatureCollection
    """
    features = []
    for point in points:
        features.append({
            "type": "Feature",
            "properties": {k: _json_value(v) for k, v in point.attributes.items()},
            "geometry": {
                "type": "Point",
                "coordinates": [point.lon, point.lat]
            }
        })

    return {
        "type": "FeatureCollection",
        "name": name,
        "features": features
    }


def _json_value(value):
    # numpy scalars are not JSON serializable
    if hasattr(value, "item"):
        return value.item()
    return value


def save_points_geojson(points: list[Point], path: Union[str, Path], name: str = "points") -> Path:
    """Save Points to a GeoJSON file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(points_to_geojson(points, name=name), f, indent=2)
    logger.info(f"Saved {len(points)} points to {path}")
    return path


def reproject_points(points: list[Point], dst_crs, src_crs=WGS84) -> list[Point]:
    """
    Reproject Points into another CRS, keeping their attributes.

    Args:
        points: Points in ``src_crs``
        dst_crs: Target CRS (e.g. the CRS of a raster stack)
        src_crs: CRS of the input coordinates (default: WGS84 lon/lat)

    Returns:
        Points whose coordinates are x/y in ``dst_crs``
    """
    if not points or CRS.from_user_input(dst_crs) == CRS.from_user_input(src_crs):
        return list(points)

    xs, ys = transform(src_crs, dst_crs, [p.lon for p in points], [p.lat for p in points])
    return [replace(p, lon=float(x), lat=float(y)) for p, x, y in zip(points, xs, ys)]


def reproject_region(region: BaseGeometry, dst_crs, src_crs=WGS84) -> BaseGeometry:
    """Reproject a region geometry into another CRS."""
    if CRS.from_user_input(dst_crs) == CRS.from_user_input(src_crs):
        return region
    return shape(transform_geom(src_crs, dst_crs, mapping(region)))
