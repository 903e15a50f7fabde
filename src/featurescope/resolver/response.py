"""Convert resolver dataclasses into the Pydantic response contract (shared by API and CLI)."""

from __future__ import annotations

from typing import Any

from featurescope.domain.models import (
    FeatureRecordOut,
    GeoPoint,
    ProximityResponse,
    SourceFailureOut,
    SourceResultOut,
)
from featurescope.resolver.normalize import FeatureRecord
from featurescope.resolver.resolve import ProximityResult, SourceResult


def record_out(record: FeatureRecord) -> FeatureRecordOut:
    c = record.centroid
    return FeatureRecordOut(
        id=record.id,
        geometry_kind=record.geometry_kind,
        geometry=record.geometry.as_dict(),
        attributes=record.attributes,
        mapped_fields=record.mapped_fields,
        distance_miles=record.distance_miles,
        is_containing=record.is_containing,
        centroid=GeoPoint(lat=c.lat, lon=c.lon) if c is not None else None,
        matched_by=record.matched_by,
    )


def source_result_out(result: SourceResult) -> SourceResultOut:
    return SourceResultOut(
        source_id=result.source_id,
        effective_radius_miles=result.plan.effective_radius_miles,
        sub_queries=[sq.kind for sq in result.plan.sub_queries],
        truncated=result.truncated,
        diagnostics=result.diagnostics,
        records=[record_out(r) for r in result.records],
    )


def build_response(result: ProximityResult, *, meta: dict[str, Any] | None = None) -> ProximityResponse:
    return ProximityResponse(
        origin=GeoPoint(lat=result.origin.lat, lon=result.origin.lon),
        radius_miles=result.requested_radius_miles,
        partial=result.partial,
        failed_source_ids=result.failed_source_ids,
        failures=[
            SourceFailureOut(source_id=f.source_id, kind=f.kind, sub_query=f.sub_query, message=f.message)
            for f in result.failures
        ],
        results={sid: source_result_out(r) for sid, r in result.results.items()},
        meta=dict(meta or {}),
    )
