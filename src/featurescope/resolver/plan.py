"""
Query planning.

Given one source's capability and the caller's radius, decide which sub-queries to
issue. An empty plan is a valid answer: it means "issue no HTTP calls at all", which
is what keeps radius-required sources from being asked for a full-table scan.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Literal

from featurescope.core.geo import GeoPoint, miles_to_meters
from featurescope.domain.models import SourceCapability

SubQueryKind = Literal["containment", "proximity"]


@dataclass(frozen=True)
class SubQuery:
    """One spatial query against one source; containment sub-queries are point-exact."""

    kind: SubQueryKind
    effective_radius_miles: float = 0.0

    @property
    def radius_meters(self) -> float:
        return miles_to_meters(self.effective_radius_miles)


@dataclass(frozen=True)
class QueryPlan:
    origin: GeoPoint
    requested_radius_miles: float | None
    sub_queries: tuple[SubQuery, ...] = field(default_factory=tuple)

    @property
    def is_empty(self) -> bool:
        return not self.sub_queries

    @property
    def effective_radius_miles(self) -> float | None:
        """Radius of the proximity sub-query, if one was planned."""
        for sq in self.sub_queries:
            if sq.kind == "proximity":
                return sq.effective_radius_miles
        return None


def effective_radius(requested_radius_miles: float | None, capability: SourceCapability) -> float | None:
    """min(requested, cap), or None when no usable radius was requested; an infinite radius means the cap."""
    if requested_radius_miles is None or math.isnan(requested_radius_miles):
        return None
    if requested_radius_miles <= 0:
        return None
    return min(float(requested_radius_miles), float(capability.max_radius_miles))


def build_query_plan(
    capability: SourceCapability,
    origin: GeoPoint,
    requested_radius_miles: float | None,
) -> QueryPlan:
    sub_queries: list[SubQuery] = []

    # Only polygons can contain the origin; point and polyline layers never get a containment query.
    if capability.geometry_kind == "polygon" and capability.supports_containment:
        sub_queries.append(SubQuery(kind="containment", effective_radius_miles=0.0))

    radius = effective_radius(requested_radius_miles, capability)
    if radius is not None and capability.supports_proximity:
        sub_queries.append(SubQuery(kind="proximity", effective_radius_miles=radius))

    return QueryPlan(
        origin=origin,
        requested_radius_miles=requested_radius_miles,
        sub_queries=tuple(sub_queries),
    )
