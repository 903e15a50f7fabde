import math

import pytest

from featurescope.core.errors import MalformedFeatureError
from featurescope.core.geo import GeoPoint, great_circle_distance_miles, wgs84_to_mercator
from featurescope.domain.models import SourceConfig
from featurescope.ingestion.features import RawFeature
from featurescope.resolver.normalize import (
    ResultNormalizer,
    parse_esri_geometry,
    parse_geojson_geometry,
)
from featurescope.resolver.plan import SubQuery

ORIGIN = GeoPoint(lat=40.0, lon=-75.0)
CONTAINMENT = SubQuery(kind="containment")
PROXIMITY = SubQuery(kind="proximity", effective_radius_miles=5.0)


def _source(kind: str = "polygon", **overrides) -> SourceConfig:
    payload = {
        "id": "zones",
        "url": "https://example.test/arcgis/rest/services/Zones/FeatureServer",
        "layer_id": 0,
        "id_field": "OBJECTID",
        "field_map": {"name": "ZONE_NAME"},
        "capability": {
            "supports_containment": kind == "polygon",
            "max_radius_miles": 10,
            "geometry_kind": kind,
        },
    }
    payload.update(overrides)
    return SourceConfig.model_validate(payload)


def _normalize(source, batches):
    normalizer = ResultNormalizer(source=source, origin=ORIGIN)
    for sub_query, features in batches:
        normalizer.add(sub_query, features)
    return normalizer.results(), normalizer.diagnostics


def _square_rings(lat0: float, lon0: float, size: float) -> list:
    return [
        [
            [lon0, lat0],
            [lon0 + size, lat0],
            [lon0 + size, lat0 + size],
            [lon0, lat0 + size],
            [lon0, lat0],
        ]
    ]


def _polygon(oid, rings, **attrs) -> RawFeature:
    return RawFeature(attributes={"OBJECTID": oid, **attrs}, geometry={"rings": rings})


def test_containment_and_proximity_hits_are_merged_into_one_containing_record():
    feature = _polygon(7, _square_rings(39.99, -75.01, 0.02), ZONE_NAME="Center")
    normalizer = ResultNormalizer(source=_source(), origin=ORIGIN)
    normalizer.add(CONTAINMENT, [feature])
    normalizer.add(PROXIMITY, [feature])

    records = normalizer.results()
    assert len(records) == 1
    rec = records[0]
    assert rec.id == "7"
    assert rec.is_containing
    assert rec.distance_miles == 0.0
    assert rec.matched_by == "containment"
    assert rec.mapped_fields == {"name": "Center"}
    assert normalizer.diagnostics.duplicates == 1


def test_proximity_first_then_containment_still_prefers_containing_record():
    feature = _polygon(7, _square_rings(39.99, -75.01, 0.02))
    normalizer = ResultNormalizer(source=_source(), origin=ORIGIN)
    normalizer.add(PROXIMITY, [feature])
    normalizer.add(CONTAINMENT, [feature])
    assert normalizer.results()[0].is_containing


def test_server_claimed_containment_is_rejected_by_local_ray_cast():
    far = _polygon(1, _square_rings(41.0, -75.1, 0.2))
    normalizer = ResultNormalizer(source=_source(), origin=ORIGIN)
    normalizer.add(CONTAINMENT, [far])
    assert normalizer.results() == []
    assert normalizer.diagnostics.containment_rejected == 1


def test_proximity_polygon_uses_boundary_distance():
    # A wide, flat rectangle around the origin: the north and south edges are 0.01 degrees away.
    rings = [[[-75.1, 39.99], [-74.9, 39.99], [-74.9, 40.01], [-75.1, 40.01], [-75.1, 39.99]]]
    normalizer = ResultNormalizer(source=_source(), origin=ORIGIN)
    normalizer.add(PROXIMITY, [_polygon(1, rings)])
    rec = normalizer.results()[0]
    assert not rec.is_containing
    assert rec.distance_miles == pytest.approx(
        great_circle_distance_miles(ORIGIN, GeoPoint(lat=40.01, lon=-75.0)), rel=1e-6
    )


def test_features_outside_radius_are_dropped():
    source = _source("point")
    near = RawFeature(attributes={"OBJECTID": 1}, geometry={"x": -75.0, "y": 40.01})
    far = RawFeature(attributes={"OBJECTID": 2}, geometry={"x": -75.0, "y": 41.0})
    records, diagnostics = _normalize(source, [(PROXIMITY, [near, far])])
    assert [r.id for r in records] == ["1"]
    assert diagnostics.outside_radius == 1
    assert all(r.distance_miles <= PROXIMITY.effective_radius_miles for r in records)


def test_malformed_features_are_counted_not_raised():
    source = _source("point")
    features = [
        RawFeature(attributes={"OBJECTID": 1}, geometry=None),
        RawFeature(attributes={"OBJECTID": 2}, geometry={"x": "abc", "y": 1}),
        RawFeature(attributes={"OBJECTID": 3}, geometry={"paths": []}),
        RawFeature(attributes={"OBJECTID": 4}, geometry={"curveRings": []}),
        RawFeature(attributes={"OBJECTID": 5}, geometry={"x": -75.0, "y": 40.0}),
    ]
    records, diagnostics = _normalize(source, [(PROXIMITY, features)])
    assert [r.id for r in records] == ["5"]
    assert diagnostics.malformed == 4
    assert diagnostics.raw_features == 5


def test_web_mercator_geometry_is_reprojected():
    x, y = wgs84_to_mercator(GeoPoint(lat=40.01, lon=-75.0))
    feature = RawFeature(attributes={"OBJECTID": 1}, geometry={"x": x, "y": y})
    records, _ = _normalize(_source("point"), [(PROXIMITY, [feature])])
    assert records[0].geometry.y == pytest.approx(40.01, abs=1e-6)
    assert records[0].distance_miles == pytest.approx(
        great_circle_distance_miles(ORIGIN, GeoPoint(lat=40.01, lon=-75.0)), rel=1e-6
    )


def test_mercator_polyline_is_reprojected_per_part():
    a = wgs84_to_mercator(GeoPoint(lat=40.01, lon=-75.01))
    b = wgs84_to_mercator(GeoPoint(lat=39.99, lon=-74.99))
    geometry = parse_esri_geometry({"paths": [[list(a), list(b)]]})
    assert geometry.paths[0][0].lat == pytest.approx(40.01, abs=1e-6)
    assert geometry.paths[0][1].lon == pytest.approx(-74.99, abs=1e-6)


def test_results_are_sorted_containing_first_then_by_distance_then_id():
    source = _source("point", field_map={})
    features = [
        RawFeature(attributes={"OBJECTID": "b"}, geometry={"x": -75.0, "y": 40.02}),
        RawFeature(attributes={"OBJECTID": "c"}, geometry={"x": -75.0, "y": 40.01}),
        RawFeature(attributes={"OBJECTID": "a"}, geometry={"x": -75.0, "y": 40.02}),
    ]
    records, _ = _normalize(source, [(PROXIMITY, features)])
    assert [r.id for r in records] == ["c", "a", "b"]

    polygon = _polygon("z", _square_rings(39.99, -75.01, 0.02))
    normalizer = ResultNormalizer(source=_source(), origin=ORIGIN)
    normalizer.add(CONTAINMENT, [polygon])
    normalizer.add(PROXIMITY, [_polygon("a", _square_rings(40.02, -75.01, 0.01))])
    assert [r.id for r in normalizer.results()] == ["z", "a"]


def test_features_without_ids_dedup_by_geometry():
    source = _source("point", id_field=None)
    twin = RawFeature(attributes={"name": "x"}, geometry={"x": -75.0, "y": 40.01})
    other = RawFeature(attributes={"name": "y"}, geometry={"x": -75.0, "y": 40.02})
    records, diagnostics = _normalize(source, [(PROXIMITY, [twin, twin, other])])
    assert len(records) == 2
    assert diagnostics.duplicates == 1
    assert records[0].id is None


def test_geojson_shapes():
    line = parse_geojson_geometry({"type": "LineString", "coordinates": [[-75.0, 40.0], [-74.9, 40.0]]})
    assert line.kind == "polyline" and len(line.paths) == 1

    multi = parse_geojson_geometry(
        {
            "type": "MultiPolygon",
            "coordinates": [_square_rings(0.0, 0.0, 1.0), _square_rings(5.0, 5.0, 1.0)],
        }
    )
    assert multi.kind == "polygon" and len(multi.rings) == 2

    with pytest.raises(MalformedFeatureError):
        parse_geojson_geometry({"type": "GeometryCollection", "geometries": []})


def test_out_of_range_coordinates_are_malformed():
    with pytest.raises(MalformedFeatureError):
        parse_esri_geometry({"x": 1e12, "y": 1e12})
    with pytest.raises(MalformedFeatureError):
        parse_esri_geometry({"x": math.nan, "y": 0.0})
