import json

import pytest
from pydantic import ValidationError

from featurescope.catalog.loader import load_sources, parse_sources, select_sources
from featurescope.config.settings import get_settings


def _entry(source_id: str, **overrides) -> dict:
    payload = {
        "id": source_id,
        "url": f"https://example.test/arcgis/rest/services/{source_id}/FeatureServer/",
        "layer_id": 0,
        "capability": {"max_radius_miles": 5, "geometry_kind": "point"},
    }
    payload.update(overrides)
    return payload


def test_bundled_catalog_loads():
    sources = load_sources(get_settings().catalog.path)
    assert sources
    assert len({s.id for s in sources}) == len(sources)
    assert {s.protocol for s in sources} == {"arcgis", "soda"}


def test_load_sources_reads_json_and_yaml(tmp_path):
    json_path = tmp_path / "catalog.json"
    json_path.write_text(json.dumps({"sources": [_entry("a")]}), encoding="utf-8")
    yaml_path = tmp_path / "catalog.yaml"
    yaml_path.write_text(
        "- id: b\n"
        "  url: https://example.test/b/MapServer\n"
        "  capability: {max_radius_miles: 2, geometry_kind: polyline}\n",
        encoding="utf-8",
    )

    [a] = load_sources(json_path)
    [b] = load_sources(yaml_path)
    assert a.url == "https://example.test/arcgis/rest/services/a/FeatureServer"
    assert b.capability.geometry_kind == "polyline"
    assert b.capability.supports_containment is False


def test_duplicate_ids_are_rejected():
    with pytest.raises(ValueError, match="Duplicate source id"):
        parse_sources([_entry("a"), _entry("a")])


@pytest.mark.parametrize(
    "bad",
    [
        {"capability": {"max_radius_miles": 0, "geometry_kind": "point"}},
        {"capability": {"max_radius_miles": 5, "geometry_kind": "multipoint"}},
        {"url": "ftp://example.test/layer"},
        {"protocol": "wfs"},
    ],
)
def test_invalid_entries_are_rejected(bad):
    with pytest.raises(ValidationError):
        parse_sources([_entry("a", **bad)])


def test_capability_is_immutable():
    [source] = parse_sources([_entry("a")])
    with pytest.raises(ValidationError):
        source.capability.max_radius_miles = 50


def test_select_sources():
    sources = parse_sources([_entry("a"), _entry("b"), _entry("c")])
    assert [s.id for s in select_sources(sources, None)] == ["a", "b", "c"]
    assert [s.id for s in select_sources(sources, ["c", "a", "c"])] == ["c", "a"]
    with pytest.raises(KeyError, match="zzz"):
        select_sources(sources, ["a", "zzz"])
