"""
Source catalog loader.

The catalog is a local YAML or JSON file (default: `data/catalogs/sources.yaml`) listing
the feature services to query: URL, layer, capability flags, radius cap and field map.
It is validated into typed Pydantic models once at load time, so the resolver never
does per-feature guessing about attribute names.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import TypeAdapter

from featurescope.core.env import resolve_project_path
from featurescope.domain.models import SourceConfig


_SOURCES_ADAPTER = TypeAdapter(list[SourceConfig])


def _read_catalog_payload(path: Path) -> Any:
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        return json.loads(text)
    return yaml.safe_load(text)


def parse_sources(payload: Any) -> list[SourceConfig]:
    """Validate a raw catalog payload (a list, or a mapping with a `sources` list)."""
    if isinstance(payload, dict):
        payload = payload.get("sources", [])
    sources = _SOURCES_ADAPTER.validate_python(payload or [])

    seen: set[str] = set()
    for source in sources:
        if source.id in seen:
            raise ValueError(f"Duplicate source id in catalog: '{source.id}'")
        seen.add(source.id)
    return sources


def load_sources(path: str | Path) -> list[SourceConfig]:
    """Load and validate a source catalog file."""
    resolved = resolve_project_path(path)
    return parse_sources(_read_catalog_payload(resolved))


def select_sources(sources: list[SourceConfig], ids: list[str] | None) -> list[SourceConfig]:
    """Return the catalog subset named by `ids` (all sources when `ids` is empty)."""
    if not ids:
        return list(sources)
    by_id = {s.id: s for s in sources}
    missing = [i for i in ids if i not in by_id]
    if missing:
        raise KeyError(f"Unknown source id(s): {', '.join(missing)}")
    return [by_id[i] for i in dict.fromkeys(ids)]
