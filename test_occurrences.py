"""
Tests for point collections and regions.
"""

import json

import pytest
import requests
from shapely.geometry import box

import firecast.occurrences
from firecast.config import REGIONS
from firecast.errors import InputError
from firecast.occurrences import (
    WGS84,
    Point,
    load_point_collection,
    load_region,
    points_to_geojson,
    reproject_points,
    reproject_region,
    save_points_geojson,
)

COLLECTION = {
    "type": "FeatureCollection",
    "features": [
        {"type": "Feature", "properties": {"frp": 12.5},
         "geometry": {"type": "Point", "coordinates": [-72.1, 0.4]}},
        {"type": "Feature", "properties": {"frp": 3.0},
         "geometry": {"type": "MultiPoint", "coordinates": [[-72.0, 0.5], [-71.9, 0.6]]}},
        {"type": "Feature", "properties": {},
         "geometry": {"type": "Polygon", "coordinates": [[[0, 0], [1, 0], [1, 1], [0, 0]]]}},
    ],
}


def test_load_point_collection_from_file(tmp_path):
    path = tmp_path / "fires.geojson"
    path.write_text(json.dumps(COLLECTION))

    points = load_point_collection(path)

    assert [p.coords for p in points] == [(-72.1, 0.4), (-72.0, 0.5), (-71.9, 0.6)]
    assert points[0].attributes == {"frp": 12.5}
    assert points[2].attributes == {"frp": 3.0}


def test_load_point_collection_from_url(monkeypatch):
    class Response:
        def raise_for_status(self):
            pass

        def json(self):
            return COLLECTION

    calls = []

    def fake_get(url, timeout):
        calls.append(url)
        return Response()

    monkeypatch.setattr(firecast.occurrences.requests, "get", fake_get)

    points = load_point_collection("https://example.org/viirs.geojson")

    assert calls == ["https://example.org/viirs.geojson"]
    assert len(points) == 3


def test_failed_download_is_an_input_error(monkeypatch):
    def fake_get(url, timeout):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(firecast.occurrences.requests, "get", fake_get)

    with pytest.raises(InputError) as excinfo:
        load_point_collection("https://example.org/viirs.geojson")
    assert excinfo.value.identifier == "https://example.org/viirs.geojson"


def test_missing_collection(tmp_path):
    with pytest.raises(InputError):
        load_point_collection(tmp_path / "missing.geojson")


def test_load_region_variants(tmp_path):
    assert load_region((0, 0, 2, 1)).area == 2.0
    assert load_region("colombian_amazon", REGIONS).bounds == REGIONS["colombian_amazon"]["bbox"]

    path = tmp_path / "aoi.geojson"
    path.write_text(json.dumps({
        "type": "FeatureCollection",
        "features": [
            {"type": "Feature", "properties": {},
             "geometry": {"type": "Polygon", "coordinates": [[[0, 0], [1, 0], [1, 1], [0, 1], [0, 0]]]}},
            {"type": "Feature", "properties": {},
             "geometry": {"type": "Polygon", "coordinates": [[[1, 0], [2, 0], [2, 1], [1, 1], [1, 0]]]}},
        ],
    }))
    region = load_region(str(path))
    assert region.area == pytest.approx(2.0)
    assert region.bounds == (0.0, 0.0, 2.0, 1.0)


def test_bad_bbox():
    with pytest.raises(InputError):
        load_region((0, 0, 1))


def test_points_geojson(tmp_path):
    points = [Point(1.0, 2.0, {"presence": 1}), Point(3.0, 4.0, {"presence": 0})]

    geojson = points_to_geojson(points, name="training_points")
    assert geojson["name"] == "training_points"
    assert geojson["features"][1]["geometry"]["coordinates"] == [3.0, 4.0]

    path = save_points_geojson(points, tmp_path / "pts.geojson")
    assert load_point_collection(path)[0].attributes == {"presence": 1}


def test_with_attributes_returns_a_copy():
    point = Point(0.0, 0.0, {"a": 1})
    updated = point.with_attributes(b=2)
    assert point.attributes == {"a": 1}
    assert updated.attributes == {"a": 1, "b": 2}


def test_reproject_points_to_utm_and_back():
    # (-75, 0) is on the central meridian of UTM zone 18N, at the equator
    points = [Point(-75.0, 0.0, {"frp": 1.0})]

    utm = reproject_points(points, "EPSG:32618")
    assert utm[0].lon == pytest.approx(500000.0, abs=1e-3)
    assert utm[0].lat == pytest.approx(0.0, abs=1e-3)
    assert utm[0].attributes == {"frp": 1.0}

    back = reproject_points(utm, WGS84, src_crs="EPSG:32618")
    assert back[0].coords == pytest.approx((-75.0, 0.0))


def test_reproject_to_same_crs_is_a_no_op():
    points = [Point(1.0, 2.0)]
    assert reproject_points(points, "EPSG:4326") == points

    region = box(0, 0, 1, 1)
    assert reproject_region(region, WGS84) is region


def test_reproject_region_to_utm():
    region = reproject_region(box(-75.0, 0.0, -74.0, 1.0), "EPSG:32618")
    min_x, min_y, max_x, max_y = region.bounds
    assert min_x == pytest.approx(500000.0, abs=1e-3)
    assert min_y == pytest.approx(0.0, abs=1e-3)
    assert 600000 < max_x < 620000
    assert 100000 < max_y < 120000
