"""
Result normalization.

This module turns raw service features into canonical `FeatureRecord`s:
1. parse ESRI JSON / GeoJSON geometry and reproject Web Mercator to WGS84,
2. compute the real distance from the origin (the server's spatial filter is advisory),
3. drop anything outside the sub-query's effective radius,
4. merge duplicates across the containment and proximity sub-queries of one source,
5. sort: containing features first, then by distance, then by id.

Malformed features never raise out of here; they are counted in `NormalizeDiagnostics`.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable

from featurescope.core.errors import MalformedFeatureError
from featurescope.core.geo import (
    GeoPoint,
    Geometry,
    Point,
    Polygon,
    Polyline,
    distance_point_to_polygon_boundary_miles,
    distance_point_to_polyline_miles,
    geometry_centroid,
    great_circle_distance_miles,
    is_likely_mercator,
    is_valid_coordinate,
    mercator_to_wgs84,
    point_in_polygon,
)
from featurescope.domain.models import SourceConfig
from featurescope.ingestion.features import RawFeature
from featurescope.resolver.plan import SubQuery, SubQueryKind

# Decimal places used when an id-less feature is keyed by its centroid (~0.1 m).
DEDUP_DECIMALS = 6


@dataclass(frozen=True)
class FeatureRecord:
    id: str | None
    geometry: Geometry
    attributes: dict[str, Any]
    mapped_fields: dict[str, Any]
    distance_miles: float | None
    is_containing: bool
    centroid: GeoPoint | None
    matched_by: SubQueryKind

    @property
    def geometry_kind(self) -> str:
        return self.geometry.kind


@dataclass
class NormalizeDiagnostics:
    raw_features: int = 0
    malformed: int = 0
    outside_radius: int = 0
    containment_rejected: int = 0
    duplicates: int = 0

    def as_dict(self) -> dict[str, int]:
        return {k: int(v) for k, v in asdict(self).items()}


# Geometry parsing ---------------------------------------------------------------


def _xy(coord: Any) -> tuple[float, float]:
    if not isinstance(coord, (list, tuple)) or len(coord) < 2:
        raise MalformedFeatureError(f"invalid coordinate: {coord!r}")
    try:
        x = float(coord[0])
        y = float(coord[1])
    except (TypeError, ValueError) as exc:
        raise MalformedFeatureError(f"non-numeric coordinate: {coord!r}") from exc
    if not (math.isfinite(x) and math.isfinite(y)):
        raise MalformedFeatureError(f"non-finite coordinate: {coord!r}")
    return x, y


def _to_wgs84(x: float, y: float, *, mercator: bool) -> GeoPoint:
    try:
        pt = mercator_to_wgs84(x, y) if mercator else GeoPoint(lat=y, lon=x)
    except OverflowError as exc:
        raise MalformedFeatureError(f"coordinate cannot be reprojected: ({x}, {y})") from exc
    if not is_valid_coordinate(pt.lat, pt.lon):
        raise MalformedFeatureError(f"coordinate outside WGS84 range after reprojection: ({x}, {y})")
    return pt


def _parse_parts(parts: Any) -> tuple[tuple[GeoPoint, ...], ...]:
    """Parse a list of coordinate lists (paths or rings), reprojecting if the first vertex is Mercator."""
    if not isinstance(parts, (list, tuple)):
        raise MalformedFeatureError("paths/rings must be a list")

    raw_parts: list[list[tuple[float, float]]] = []
    for part in parts:
        if not isinstance(part, (list, tuple)) or not part:
            continue
        raw_parts.append([_xy(c) for c in part])
    if not raw_parts:
        raise MalformedFeatureError("geometry has no vertices")

    first_x, first_y = raw_parts[0][0]
    mercator = is_likely_mercator(first_x, first_y)
    return tuple(tuple(_to_wgs84(x, y, mercator=mercator) for x, y in part) for part in raw_parts)


def _point(x: float, y: float) -> Point:
    pt = _to_wgs84(x, y, mercator=is_likely_mercator(x, y))
    return Point(x=pt.lon, y=pt.lat)


def parse_esri_geometry(raw: dict[str, Any] | None) -> Geometry:
    if not isinstance(raw, dict):
        raise MalformedFeatureError("missing geometry")
    if "x" in raw and "y" in raw:
        x, y = _xy((raw.get("x"), raw.get("y")))
        return _point(x, y)
    if "paths" in raw:
        return Polyline(paths=_parse_parts(raw["paths"]))
    if "rings" in raw:
        return Polygon(rings=_parse_parts(raw["rings"]))
    raise MalformedFeatureError(f"unsupported ESRI geometry keys: {sorted(raw)}")


def parse_geojson_geometry(raw: dict[str, Any] | None) -> Geometry:
    if not isinstance(raw, dict):
        raise MalformedFeatureError("missing geometry")
    gtype = raw.get("type")
    coords = raw.get("coordinates")
    if gtype == "Point":
        x, y = _xy(coords)
        return _point(x, y)
    if gtype == "LineString":
        return Polyline(paths=_parse_parts([coords]))
    if gtype == "MultiLineString":
        return Polyline(paths=_parse_parts(coords))
    if gtype == "Polygon":
        return Polygon(rings=_parse_parts(coords))
    if gtype == "MultiPolygon":
        # Rings of all member polygons are flattened; the first polygon's exterior stays first.
        if not isinstance(coords, (list, tuple)):
            raise MalformedFeatureError("MultiPolygon coordinates must be a list")
        rings = [ring for poly in coords if isinstance(poly, (list, tuple)) for ring in poly]
        return Polygon(rings=_parse_parts(rings))
    raise MalformedFeatureError(f"unsupported GeoJSON geometry type: {gtype!r}")


def parse_geometry(feature: RawFeature) -> Geometry:
    if feature.geometry_format == "geojson":
        return parse_geojson_geometry(feature.geometry)
    return parse_esri_geometry(feature.geometry)


# Distance ----------------------------------------------------------------------


def distance_to_geometry_miles(origin: GeoPoint, geometry: Geometry) -> float:
    if isinstance(geometry, Point):
        return great_circle_distance_miles(origin, geometry.as_geo_point())
    if isinstance(geometry, Polyline):
        return distance_point_to_polyline_miles(origin, geometry.paths)
    return distance_point_to_polygon_boundary_miles(origin, geometry.rings)


# Normalizer --------------------------------------------------------------------


def _record_sort_key(record: FeatureRecord) -> tuple:
    distance = record.distance_miles if record.distance_miles is not None else math.inf
    c = record.centroid
    return (
        not record.is_containing,
        distance,
        record.id or "",
        (c.lat, c.lon) if c is not None else (math.inf, math.inf),
    )


def _preferred(new: FeatureRecord, old: FeatureRecord) -> bool:
    """True if `new` should replace `old` on a dedup collision."""
    if new.is_containing != old.is_containing:
        return new.is_containing
    new_d = new.distance_miles if new.distance_miles is not None else math.inf
    old_d = old.distance_miles if old.distance_miles is not None else math.inf
    return new_d < old_d


@dataclass
class ResultNormalizer:
    """Accumulates the sub-query results of ONE source into a dedup'd, sorted result set."""

    source: SourceConfig
    origin: GeoPoint
    diagnostics: NormalizeDiagnostics = field(default_factory=NormalizeDiagnostics)
    _records: dict[tuple, FeatureRecord] = field(default_factory=dict, init=False, repr=False)

    def _feature_id(self, attributes: dict[str, Any]) -> str | None:
        if not self.source.id_field:
            return None
        value = attributes.get(self.source.id_field)
        if value is None or value == "":
            return None
        return str(value)

    def _mapped_fields(self, attributes: dict[str, Any]) -> dict[str, Any]:
        return {name: attributes.get(attr) for name, attr in self.source.field_map.items()}

    def normalize_feature(self, feature: RawFeature, sub_query: SubQuery) -> FeatureRecord | None:
        """Steps 1-3 for one feature; returns None when the feature is excluded."""
        try:
            geometry = parse_geometry(feature)
        except MalformedFeatureError:
            self.diagnostics.malformed += 1
            return None

        is_containing = False
        if sub_query.kind == "containment" and isinstance(geometry, Polygon):
            # The server's intersects test is advisory; trust the local ray cast.
            if not point_in_polygon(self.origin, geometry.rings):
                self.diagnostics.containment_rejected += 1
                return None
            is_containing = True
            distance = 0.0
        else:
            distance = distance_to_geometry_miles(self.origin, geometry)

        if not math.isfinite(distance):
            self.diagnostics.malformed += 1
            return None
        if distance > sub_query.effective_radius_miles:
            self.diagnostics.outside_radius += 1
            return None

        return FeatureRecord(
            id=self._feature_id(feature.attributes),
            geometry=geometry,
            attributes=dict(feature.attributes),
            mapped_fields=self._mapped_fields(feature.attributes),
            distance_miles=distance,
            is_containing=is_containing,
            centroid=geometry_centroid(geometry),
            matched_by=sub_query.kind,
        )

    @staticmethod
    def dedup_key(record: FeatureRecord) -> tuple:
        if record.id is not None:
            return ("id", record.id)
        c = record.centroid
        lat = round(c.lat, DEDUP_DECIMALS) if c is not None else None
        lon = round(c.lon, DEDUP_DECIMALS) if c is not None else None
        return ("geometry", record.geometry_kind, lat, lon)

    def add(self, sub_query: SubQuery, features: Iterable[RawFeature]) -> None:
        for feature in features:
            self.diagnostics.raw_features += 1
            record = self.normalize_feature(feature, sub_query)
            if record is None:
                continue
            key = self.dedup_key(record)
            existing = self._records.get(key)
            if existing is None:
                self._records[key] = record
                continue
            self.diagnostics.duplicates += 1
            if _preferred(record, existing):
                self._records[key] = record

    def results(self) -> list[FeatureRecord]:
        return sorted(self._records.values(), key=_record_sort_key)
