"""
Socrata SODA2 client.

Socrata datasets are queried with `within_circle(col, lat, lon, meters)`. Some portals
refuse that function on certain columns with HTTP 403; in that case the client retries
the same sub-query with a latitude/longitude bounding box. Either way the result is only
a pre-filter and is re-checked by the normalizer.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Any

import httpx

from featurescope.core.errors import SourceErrorResponse, SourceUnavailableError
from featurescope.core.geo import GeoPoint
from featurescope.domain.models import SourceConfig
from featurescope.ingestion.features import FetchResult, RawFeature, ServiceClient, check_deadline
from featurescope.resolver.plan import SubQuery

logger = logging.getLogger(__name__)

# Rough miles per degree of latitude, as used for bounding boxes.
MILES_PER_DEGREE = 69.0


def within_circle_clause(column: str, origin: GeoPoint, radius_meters: float) -> str:
    return f"within_circle({column}, {origin.lat}, {origin.lon}, {radius_meters})"


def bounding_box_clause(
    lat_column: str, lon_column: str, origin: GeoPoint, radius_miles: float
) -> str:
    lat_delta = radius_miles / MILES_PER_DEGREE
    # Clamp the cosine so boxes near the poles stay finite.
    lon_delta = radius_miles / (MILES_PER_DEGREE * max(0.01, math.cos(math.radians(origin.lat))))
    return (
        f"{lat_column} >= {origin.lat - lat_delta} AND {lat_column} <= {origin.lat + lat_delta} AND "
        f"{lon_column} >= {origin.lon - lon_delta} AND {lon_column} <= {origin.lon + lon_delta}"
    )


def _combine_where(base: str, spatial: str) -> str:
    base = (base or "").strip()
    if not base or base == "1=1":
        return spatial
    return f"({base}) AND {spatial}"


def _float_or_none(value: Any) -> float | None:
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return out if math.isfinite(out) else None


def row_to_feature(source: SourceConfig, row: dict[str, Any]) -> RawFeature:
    """Split a SODA row into attributes + a GeoJSON geometry (None if it has no usable location)."""
    attributes = {k: v for k, v in row.items() if k != source.geometry_field}
    geom_value = row.get(source.geometry_field)

    geometry: dict[str, Any] | None = None
    if isinstance(geom_value, dict) and "type" in geom_value and "coordinates" in geom_value:
        geometry = geom_value
    elif isinstance(geom_value, dict) and "latitude" in geom_value and "longitude" in geom_value:
        # Legacy Socrata "location" column.
        lat = _float_or_none(geom_value.get("latitude"))
        lon = _float_or_none(geom_value.get("longitude"))
        if lat is not None and lon is not None:
            geometry = {"type": "Point", "coordinates": [lon, lat]}

    if geometry is None:
        lat = _float_or_none(row.get(source.latitude_field))
        lon = _float_or_none(row.get(source.longitude_field))
        if lat is not None and lon is not None:
            geometry = {"type": "Point", "coordinates": [lon, lat]}

    return RawFeature(attributes=attributes, geometry=geometry, geometry_format="geojson")


class _Forbidden(Exception):
    pass


class SodaClient(ServiceClient):
    """Paging Socrata client with the 403 bounding-box fallback."""

    def fetch(
        self,
        source: SourceConfig,
        origin: GeoPoint,
        sub_query: SubQuery,
        *,
        deadline: float | None = None,
    ) -> FetchResult:
        if sub_query.kind != "proximity":
            raise ValueError(f"{source.id}: Socrata sources only answer proximity sub-queries")

        circle = within_circle_clause(source.geometry_field, origin, sub_query.radius_meters)
        try:
            return self._fetch_pages(source, _combine_where(source.where, circle), deadline=deadline)
        except _Forbidden:
            logger.warning("%s: within_circle returned 403; falling back to a bounding box", source.id)

        bbox = bounding_box_clause(
            source.latitude_field, source.longitude_field, origin, sub_query.effective_radius_miles
        )
        try:
            return self._fetch_pages(source, _combine_where(source.where, bbox), deadline=deadline)
        except _Forbidden as exc:
            raise SourceUnavailableError(source.id, "HTTP 403", status_code=403) from exc

    def _fetch_pages(self, source: SourceConfig, where: str, *, deadline: float | None) -> FetchResult:
        url = source.query_url()
        page_size = int(self._settings.soda.page_size)
        max_pages = int(self._settings.soda.max_pages)
        page_delay_seconds = float(self._settings.soda.page_delay_seconds)

        features: list[RawFeature] = []
        offset = 0
        pages = 0
        truncated = False

        while True:
            if pages >= max_pages:
                logger.warning("%s: stopped paging after %s pages", source.id, pages)
                truncated = True
                break

            check_deadline(deadline)
            if pages > 0 and page_delay_seconds > 0:
                time.sleep(page_delay_seconds)

            params = {"$where": where, "$limit": page_size, "$offset": offset}
            try:
                payload = self._get_json(url, params=params, deadline=deadline)
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                if status == 403 and pages == 0:
                    raise _Forbidden() from exc
                raise SourceUnavailableError(source.id, f"HTTP {status}", status_code=status) from exc
            except httpx.HTTPError as exc:
                raise SourceUnavailableError(source.id, f"transport error: {exc}") from exc
            except ValueError as exc:
                raise SourceUnavailableError(source.id, f"invalid JSON: {exc}") from exc
            pages += 1

            # SODA reports query errors as an object with `error: true` and a message.
            if isinstance(payload, dict) and payload.get("error"):
                raise SourceErrorResponse(source.id, {"code": payload.get("code"), "message": payload.get("message")})
            if not isinstance(payload, list):
                raise SourceUnavailableError(source.id, "unexpected response shape; expected a list")

            features.extend(row_to_feature(source, row) for row in payload if isinstance(row, dict))
            if len(payload) < page_size:
                break
            offset += len(payload)

        return FetchResult(features=features, batches=pages, truncated=truncated)
