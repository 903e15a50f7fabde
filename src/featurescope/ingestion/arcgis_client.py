"""
ArcGIS FeatureServer/MapServer `query` client.

This module is responsible only for:
- building the query parameters for a containment or proximity sub-query,
- paging through `resultOffset` batches until the service stops signalling more data,
- turning failures into `SourceUnavailableError` / `SourceErrorResponse`.

It intentionally does not filter by distance: the server's spatial relation is only an
approximate pre-filter for polylines and polygons. See `featurescope.resolver.normalize`.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

import httpx

from featurescope.core.errors import SourceErrorResponse, SourceUnavailableError
from featurescope.core.geo import GeoPoint
from featurescope.domain.models import SourceConfig
from featurescope.ingestion.features import FetchResult, RawFeature, ServiceClient, check_deadline
from featurescope.resolver.plan import SubQuery

logger = logging.getLogger(__name__)


class ArcGisClient(ServiceClient):
    """Depaginating ArcGIS REST query client."""

    def build_params(
        self,
        source: SourceConfig,
        origin: GeoPoint,
        sub_query: SubQuery,
        *,
        offset: int = 0,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {
            "f": "json",
            "where": source.where,
            "outFields": source.out_fields,
            "geometry": json.dumps(
                {"x": origin.lon, "y": origin.lat, "spatialReference": {"wkid": 4326}},
                separators=(",", ":"),
            ),
            "geometryType": "esriGeometryPoint",
            "spatialRel": "esriSpatialRelIntersects",
            "inSR": "4326",
            "outSR": "4326",
            "returnGeometry": "true",
            "resultRecordCount": int(self._settings.arcgis.batch_size),
            "resultOffset": int(offset),
        }
        if sub_query.kind == "proximity":
            params["distance"] = sub_query.radius_meters
            params["units"] = "esriSRUnit_Meter"
        return params

    def fetch(
        self,
        source: SourceConfig,
        origin: GeoPoint,
        sub_query: SubQuery,
        *,
        deadline: float | None = None,
    ) -> FetchResult:
        """Return every feature matched by `sub_query`, across all result pages."""
        url = source.query_url()
        batch_size = int(self._settings.arcgis.batch_size)
        max_batches = int(self._settings.arcgis.max_batches)
        page_delay_seconds = float(self._settings.arcgis.page_delay_seconds)

        features: list[RawFeature] = []
        offset = 0
        batches = 0
        truncated = False

        while True:
            if batches >= max_batches:
                logger.warning(
                    "%s: stopped paging after %s batches (%s features); more data may exist",
                    source.id,
                    batches,
                    len(features),
                )
                truncated = True
                break

            check_deadline(deadline)
            if batches > 0 and page_delay_seconds > 0:
                time.sleep(page_delay_seconds)

            params = self.build_params(source, origin, sub_query, offset=offset)
            try:
                payload = self._get_json(url, params=params, deadline=deadline)
            except httpx.HTTPStatusError as exc:
                raise SourceUnavailableError(
                    source.id, f"HTTP {exc.response.status_code}", status_code=exc.response.status_code
                ) from exc
            except httpx.HTTPError as exc:
                raise SourceUnavailableError(source.id, f"transport error: {exc}") from exc
            except ValueError as exc:
                raise SourceUnavailableError(source.id, f"invalid JSON: {exc}") from exc
            batches += 1

            if not isinstance(payload, dict):
                raise SourceUnavailableError(source.id, "unexpected response shape; expected an object")

            if payload.get("error"):
                if batches == 1:
                    raise SourceErrorResponse(source.id, payload["error"])
                logger.warning(
                    "%s: service error on batch %s; keeping %s features already fetched",
                    source.id,
                    batches,
                    len(features),
                )
                truncated = True
                break

            page = payload.get("features") or []
            if not page:
                break

            for raw in page:
                if not isinstance(raw, dict):
                    continue
                features.append(
                    RawFeature(
                        attributes=dict(raw.get("attributes") or {}),
                        geometry=raw.get("geometry") if isinstance(raw.get("geometry"), dict) else None,
                    )
                )

            more = payload.get("exceededTransferLimit") is True or len(page) == batch_size
            if not more:
                break
            # Advance by what was actually returned: servers may cap pages below our batch size.
            offset += len(page)

        logger.debug(
            "%s %s: %s features in %s batches", source.id, sub_query.kind, len(features), batches
        )
        return FetchResult(features=features, batches=batches, truncated=truncated)
