"""
Geospatial helpers (GeoMath).

Every distance in featurescope goes through this module so that all sources agree on
one Earth radius and one meters-per-mile constant. Functions here are pure: malformed
input (empty paths/rings) yields `math.inf` or `None`, never an exception.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from math import asin, atan, cos, exp, log, pi, radians, sin, sqrt, tan
from typing import Iterable, Sequence, Union

EARTH_RADIUS_MILES = 3959.0
METERS_PER_MILE = 1609.34
# Half the circumference of the Web Mercator (EPSG:3857) world square, in meters.
MERCATOR_HALF_EXTENT_M = 20037508.34


@dataclass(frozen=True)
class GeoPoint:
    """A latitude/longitude pair in WGS84 decimal degrees."""

    lat: float
    lon: float


@dataclass(frozen=True)
class Point:
    """Point geometry; `x` is longitude and `y` is latitude once in WGS84."""

    x: float
    y: float

    kind = "point"

    def as_geo_point(self) -> GeoPoint:
        return GeoPoint(lat=self.y, lon=self.x)

    def as_dict(self) -> dict:
        return {"x": self.x, "y": self.y}


@dataclass(frozen=True)
class Polyline:
    paths: tuple[tuple[GeoPoint, ...], ...]

    kind = "polyline"

    def as_dict(self) -> dict:
        return {"paths": [[[p.lon, p.lat] for p in path] for path in self.paths]}


@dataclass(frozen=True)
class Polygon:
    """Polygon geometry; the first ring is treated as the exterior ring."""

    rings: tuple[tuple[GeoPoint, ...], ...]

    kind = "polygon"

    def as_dict(self) -> dict:
        return {"rings": [[[p.lon, p.lat] for p in ring] for ring in self.rings]}


Geometry = Union[Point, Polyline, Polygon]


def miles_to_meters(miles: float) -> float:
    return float(miles) * METERS_PER_MILE


def is_valid_coordinate(lat: float, lon: float) -> bool:
    """Return True if `lat`/`lon` are finite and inside the WGS84 range."""
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


def great_circle_distance_miles(a: GeoPoint, b: GeoPoint) -> float:
    """Haversine distance in statute miles between two points."""
    lat1 = radians(a.lat)
    lon1 = radians(a.lon)
    lat2 = radians(b.lat)
    lon2 = radians(b.lon)

    dlat = lat2 - lat1
    dlon = lon2 - lon1

    h = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_MILES * asin(sqrt(min(1.0, h)))


def distance_point_to_segment_miles(p: GeoPoint, a: GeoPoint, b: GeoPoint) -> float:
    """Distance from `p` to the segment `a`-`b`, in miles.

    The projection is done in the planar (lon, lat) space, which is accurate enough
    at the radii feature services are queried with; only the final distance to the
    nearest point uses the great-circle formula.
    """
    dx = b.lon - a.lon
    dy = b.lat - a.lat
    len_sq = dx * dx + dy * dy
    if len_sq == 0:
        return great_circle_distance_miles(p, a)

    t = ((p.lon - a.lon) * dx + (p.lat - a.lat) * dy) / len_sq
    t = max(0.0, min(1.0, t))
    nearest = GeoPoint(lat=a.lat + t * dy, lon=a.lon + t * dx)
    return great_circle_distance_miles(p, nearest)


def _min_distance_to_path(p: GeoPoint, path: Sequence[GeoPoint], *, closed: bool) -> float:
    if not path:
        return math.inf
    if len(path) == 1:
        return great_circle_distance_miles(p, path[0])

    best = math.inf
    for start, end in zip(path, path[1:]):
        best = min(best, distance_point_to_segment_miles(p, start, end))
    # Rings are usually closed explicitly (first == last); close them when they are not.
    if closed and path[0] != path[-1]:
        best = min(best, distance_point_to_segment_miles(p, path[-1], path[0]))
    return best


def distance_point_to_polyline_miles(p: GeoPoint, paths: Iterable[Sequence[GeoPoint]]) -> float:
    """Minimum distance from `p` to any segment of any path; `inf` for empty input."""
    best = math.inf
    for path in paths:
        best = min(best, _min_distance_to_path(p, path, closed=False))
    return best


def distance_point_to_polygon_boundary_miles(p: GeoPoint, rings: Iterable[Sequence[GeoPoint]]) -> float:
    """Minimum distance from `p` to the boundary of any ring (exterior and holes alike).

    This is a boundary distance, not a signed distance: a point deep inside a polygon
    still gets a positive value. Containment is `point_in_polygon`'s job.
    """
    best = math.inf
    for ring in rings:
        best = min(best, _min_distance_to_path(p, ring, closed=True))
    return best


def centroid(points: Iterable[GeoPoint]) -> GeoPoint | None:
    """Arithmetic mean of the vertices (approximate; not area-weighted)."""
    n = 0
    sum_lat = 0.0
    sum_lon = 0.0
    for pt in points:
        n += 1
        sum_lat += pt.lat
        sum_lon += pt.lon
    if n == 0:
        return None
    return GeoPoint(lat=sum_lat / n, lon=sum_lon / n)


def geometry_centroid(geometry: Geometry) -> GeoPoint | None:
    if isinstance(geometry, Point):
        return geometry.as_geo_point()
    if isinstance(geometry, Polyline):
        return centroid(pt for path in geometry.paths for pt in path)
    # Exterior ring only, so holes do not drag the centroid around.
    return centroid(geometry.rings[0]) if geometry.rings else None


def point_in_polygon(p: GeoPoint, rings: Sequence[Sequence[GeoPoint]]) -> bool:
    """Even-odd ray-casting test against the first (exterior) ring.

    Holes are ignored: a point inside a hole of the exterior ring still tests as inside.
    """
    if not rings:
        return False
    ring = rings[0]
    if len(ring) < 3:
        return False

    inside = False
    j = len(ring) - 1
    for i in range(len(ring)):
        xi, yi = ring[i].lon, ring[i].lat
        xj, yj = ring[j].lon, ring[j].lat
        if (yi > p.lat) != (yj > p.lat):
            x_cross = (xj - xi) * (p.lat - yi) / (yj - yi) + xi
            if p.lon < x_cross:
                inside = not inside
        j = i
    return inside


def is_likely_mercator(x: float, y: float) -> bool:
    """Classify a coordinate pair as Web Mercator meters rather than WGS84 degrees."""
    return abs(x) > 180 or abs(y) > 90


def mercator_to_wgs84(x: float, y: float) -> GeoPoint:
    """Convert EPSG:3857 meters to EPSG:4326 degrees."""
    lon = (x / MERCATOR_HALF_EXTENT_M) * 180.0
    lat = (y / MERCATOR_HALF_EXTENT_M) * 180.0
    lat = 180.0 / pi * (2 * atan(exp(lat * pi / 180.0)) - pi / 2)
    return GeoPoint(lat=lat, lon=lon)


def wgs84_to_mercator(point: GeoPoint) -> tuple[float, float]:
    """Convert EPSG:4326 degrees to EPSG:3857 meters (valid for |lat| < ~85.05)."""
    x = point.lon * MERCATOR_HALF_EXTENT_M / 180.0
    y = log(tan((90.0 + point.lat) * pi / 360.0)) / (pi / 180.0)
    y = y * MERCATOR_HALF_EXTENT_M / 180.0
    return x, y
