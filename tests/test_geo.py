import math

import pytest

from featurescope.core.geo import (
    GeoPoint,
    Point,
    Polygon,
    Polyline,
    centroid,
    distance_point_to_polygon_boundary_miles,
    distance_point_to_polyline_miles,
    distance_point_to_segment_miles,
    geometry_centroid,
    great_circle_distance_miles,
    is_likely_mercator,
    is_valid_coordinate,
    mercator_to_wgs84,
    miles_to_meters,
    point_in_polygon,
    wgs84_to_mercator,
)


def test_great_circle_distance_is_zero_for_same_point():
    p = GeoPoint(lat=40.0, lon=-75.0)
    assert great_circle_distance_miles(p, p) == 0.0


def test_great_circle_distance_one_degree_latitude():
    a = GeoPoint(lat=0.0, lon=0.0)
    b = GeoPoint(lat=1.0, lon=0.0)
    # 2 * pi * 3959 / 360
    assert great_circle_distance_miles(a, b) == pytest.approx(69.0975, abs=1e-3)


def test_great_circle_distance_is_symmetric_and_obeys_triangle_inequality():
    a = GeoPoint(lat=40.7128, lon=-74.0060)
    b = GeoPoint(lat=34.0522, lon=-118.2437)
    c = GeoPoint(lat=41.8781, lon=-87.6298)
    ab = great_circle_distance_miles(a, b)
    assert ab == pytest.approx(great_circle_distance_miles(b, a))
    assert ab <= great_circle_distance_miles(a, c) + great_circle_distance_miles(c, b) + 1e-9


def test_unit_conversions_use_fixed_constant():
    assert miles_to_meters(1) == pytest.approx(1609.34)


def test_is_valid_coordinate_bounds():
    assert is_valid_coordinate(90.0, 180.0)
    assert is_valid_coordinate(-90.0, -180.0)
    assert not is_valid_coordinate(91.0, 0.0)
    assert not is_valid_coordinate(0.0, -181.0)
    assert not is_valid_coordinate(math.nan, 0.0)


def test_segment_distance_is_symmetric_in_endpoints():
    p = GeoPoint(lat=40.02, lon=-75.0)
    a = GeoPoint(lat=40.0, lon=-75.1)
    b = GeoPoint(lat=40.0, lon=-74.9)
    assert distance_point_to_segment_miles(p, a, b) == pytest.approx(distance_point_to_segment_miles(p, b, a))


def test_segment_distance_clamps_to_endpoint():
    p = GeoPoint(lat=40.0, lon=-74.0)
    a = GeoPoint(lat=40.0, lon=-75.1)
    b = GeoPoint(lat=40.0, lon=-74.9)
    assert distance_point_to_segment_miles(p, a, b) == pytest.approx(great_circle_distance_miles(p, b))


def test_zero_length_segment_is_point_distance():
    p = GeoPoint(lat=40.0, lon=-75.0)
    a = GeoPoint(lat=40.1, lon=-75.0)
    assert distance_point_to_segment_miles(p, a, a) == pytest.approx(great_circle_distance_miles(p, a))


def test_point_on_segment_has_zero_distance():
    a = GeoPoint(lat=40.0, lon=-75.1)
    b = GeoPoint(lat=40.0, lon=-74.9)
    assert distance_point_to_segment_miles(GeoPoint(lat=40.0, lon=-75.0), a, b) == pytest.approx(0.0, abs=1e-9)


def test_polyline_distance_handles_empty_and_single_vertex_paths():
    p = GeoPoint(lat=40.0, lon=-75.0)
    q = GeoPoint(lat=40.1, lon=-75.0)
    assert distance_point_to_polyline_miles(p, []) == math.inf
    assert distance_point_to_polyline_miles(p, [[]]) == math.inf
    assert distance_point_to_polyline_miles(p, [[q]]) == pytest.approx(great_circle_distance_miles(p, q))


def test_polyline_distance_takes_minimum_over_paths():
    p = GeoPoint(lat=40.0, lon=-75.0)
    near = (GeoPoint(lat=40.01, lon=-75.1), GeoPoint(lat=40.01, lon=-74.9))
    far = (GeoPoint(lat=41.0, lon=-75.1), GeoPoint(lat=41.0, lon=-74.9))
    d = distance_point_to_polyline_miles(p, [far, near])
    assert d == pytest.approx(distance_point_to_segment_miles(p, *near))


def _square(lat0: float, lon0: float, size: float, *, closed: bool = True):
    ring = [
        GeoPoint(lat=lat0, lon=lon0),
        GeoPoint(lat=lat0, lon=lon0 + size),
        GeoPoint(lat=lat0 + size, lon=lon0 + size),
        GeoPoint(lat=lat0 + size, lon=lon0),
    ]
    if closed:
        ring.append(ring[0])
    return ring


def test_point_in_polygon_inside_and_outside():
    ring = _square(39.9, -75.1, 0.2)
    assert point_in_polygon(GeoPoint(lat=40.0, lon=-75.0), [ring])
    assert not point_in_polygon(GeoPoint(lat=41.0, lon=-75.0), [ring])


def test_point_in_polygon_ignores_holes_and_degenerate_rings():
    outer = _square(39.0, -76.0, 2.0)
    hole = _square(39.9, -75.1, 0.2)
    assert point_in_polygon(GeoPoint(lat=40.0, lon=-75.0), [outer, hole])
    assert not point_in_polygon(GeoPoint(lat=40.0, lon=-75.0), [])
    assert not point_in_polygon(GeoPoint(lat=40.0, lon=-75.0), [outer[:2]])


def test_polygon_boundary_distance_closes_open_rings():
    p = GeoPoint(lat=40.0, lon=-75.2)
    open_ring = _square(39.9, -75.1, 0.2, closed=False)
    closed_ring = _square(39.9, -75.1, 0.2)
    # The west edge only exists as the implicit closing segment of the open ring.
    assert distance_point_to_polygon_boundary_miles(p, [open_ring]) == pytest.approx(
        distance_point_to_polygon_boundary_miles(p, [closed_ring])
    )
    assert distance_point_to_polygon_boundary_miles(p, []) == math.inf


def test_centroid_is_vertex_mean():
    assert centroid([]) is None
    c = centroid([GeoPoint(lat=0.0, lon=0.0), GeoPoint(lat=2.0, lon=4.0)])
    assert c == GeoPoint(lat=1.0, lon=2.0)


def test_geometry_centroid_per_kind():
    assert geometry_centroid(Point(x=-75.0, y=40.0)) == GeoPoint(lat=40.0, lon=-75.0)
    line = Polyline(paths=((GeoPoint(lat=0.0, lon=0.0), GeoPoint(lat=0.0, lon=2.0)),))
    assert geometry_centroid(line) == GeoPoint(lat=0.0, lon=1.0)
    assert geometry_centroid(Polygon(rings=())) is None


def test_mercator_detection():
    assert not is_likely_mercator(-75.0, 40.0)
    assert is_likely_mercator(-8348961.0, 4865942.0)


@pytest.mark.parametrize("lat,lon", [(0.0, 0.0), (40.0, -75.0), (-33.87, 151.21), (84.0, 179.0)])
def test_mercator_round_trip(lat, lon):
    x, y = wgs84_to_mercator(GeoPoint(lat=lat, lon=lon))
    back = mercator_to_wgs84(x, y)
    assert back.lat == pytest.approx(lat, abs=1e-6)
    assert back.lon == pytest.approx(lon, abs=1e-6)
