"""
Domain models (Pydantic).

These types represent the stable "contract" between layers:
- catalog entries (`SourceConfig` + its `SourceCapability`)
- API/CLI inputs (`ProximityRequest`)
- JSON output (`ProximityResponse`)

Internal value types used by the geometry engine (GeoPoint, Point/Polyline/Polygon)
are plain frozen dataclasses in `featurescope.core.geo`; these models only exist at
the boundaries where validation matters.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

GeometryKind = Literal["point", "polyline", "polygon"]
ServiceProtocol = Literal["arcgis", "soda"]


class GeoPoint(BaseModel):
    """A geographic point in decimal degrees."""

    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)


class SourceCapability(BaseModel):
    """What one external source can answer; immutable once loaded from the catalog."""

    model_config = ConfigDict(frozen=True)

    supports_containment: bool = False
    supports_proximity: bool = True
    max_radius_miles: float = Field(..., gt=0)
    geometry_kind: GeometryKind


class SourceConfig(BaseModel):
    """One queryable layer: where it lives, what it supports, and how its fields map."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: str | None = None
    protocol: ServiceProtocol = "arcgis"
    url: str
    layer_id: int | None = Field(default=None, ge=0)
    where: str = "1=1"
    out_fields: str = "*"
    id_field: str | None = None
    field_map: dict[str, str] = Field(default_factory=dict)
    capability: SourceCapability

    # Socrata-only column names.
    geometry_field: str = "location"
    latitude_field: str = "latitude"
    longitude_field: str = "longitude"

    @field_validator("url")
    @classmethod
    def _strip_url(cls, url: str) -> str:
        url = url.strip().rstrip("/")
        if not url.startswith(("http://", "https://")):
            raise ValueError("source url must be http(s)")
        return url

    @model_validator(mode="after")
    def _validate_protocol(self) -> "SourceConfig":
        if self.protocol == "soda" and self.capability.supports_containment:
            raise ValueError(f"source '{self.id}': Socrata sources are proximity-only")
        return self

    @property
    def display_name(self) -> str:
        return self.name or self.id

    def query_url(self) -> str:
        """Resolve the endpoint a query is sent to."""
        if self.protocol == "soda":
            return self.url if self.url.endswith(".json") else f"{self.url}.json"
        if self.url.endswith("/query"):
            return self.url
        if self.layer_id is None:
            return f"{self.url}/query"
        return f"{self.url}/{self.layer_id}/query"


class ProximityRequest(BaseModel):
    """End-user request payload for a proximity run."""

    origin: GeoPoint
    radius_miles: float | None = Field(default=None, allow_inf_nan=False)
    source_ids: list[str] | None = None


class FeatureRecordOut(BaseModel):
    id: str | None
    geometry_kind: GeometryKind
    geometry: dict[str, Any]
    attributes: dict[str, Any] = Field(default_factory=dict)
    mapped_fields: dict[str, Any] = Field(default_factory=dict)
    distance_miles: float | None
    is_containing: bool
    centroid: GeoPoint | None = None
    matched_by: Literal["containment", "proximity"]


class SourceResultOut(BaseModel):
    source_id: str
    effective_radius_miles: float | None
    sub_queries: list[str] = Field(default_factory=list)
    truncated: bool = False
    diagnostics: dict[str, int] = Field(default_factory=dict)
    records: list[FeatureRecordOut] = Field(default_factory=list)


class SourceFailureOut(BaseModel):
    source_id: str
    kind: Literal["unavailable", "source_error", "timeout", "cancelled"]
    sub_query: Literal["containment", "proximity"] | None = None
    message: str = ""


class ProximityResponse(BaseModel):
    origin: GeoPoint
    radius_miles: float | None
    partial: bool
    failed_source_ids: list[str] = Field(default_factory=list)
    failures: list[SourceFailureOut] = Field(default_factory=list)
    results: dict[str, SourceResultOut] = Field(default_factory=dict)
    meta: dict[str, Any] = Field(default_factory=dict)
