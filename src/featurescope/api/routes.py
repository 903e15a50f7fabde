"""
API routes.

Endpoints:
- POST `/api/proximity`: resolve features at/near a point across the configured sources.
- GET  `/api/sources`: list the source catalog (id, protocol, capability).
"""

from __future__ import annotations

import time
import uuid
from functools import lru_cache

from fastapi import APIRouter, HTTPException

from featurescope.catalog.loader import load_sources, select_sources
from featurescope.config.settings import get_settings
from featurescope.core.errors import InvalidInputError
from featurescope.core.geo import GeoPoint as CoreGeoPoint
from featurescope.core.trace import capture_trace
from featurescope.domain.models import ProximityRequest, ProximityResponse, SourceConfig
from featurescope.resolver.resolve import ProximityResolver
from featurescope.resolver.response import build_response

router = APIRouter()


@lru_cache
def _catalog() -> list[SourceConfig]:
    settings = get_settings()
    return load_sources(settings.catalog.path)


@lru_cache
def _resolver() -> ProximityResolver:
    return ProximityResolver(get_settings())


@router.get("/api/sources")
def get_sources() -> dict:
    """Return the configured sources (configuration data only; no network calls)."""
    return {
        "sources": [
            {
                "id": s.id,
                "name": s.display_name,
                "protocol": s.protocol,
                "capability": s.capability.model_dump(mode="json"),
            }
            for s in _catalog()
        ]
    }


@router.post("/api/proximity", response_model=ProximityResponse)
def post_proximity(request: ProximityRequest) -> ProximityResponse:
    """Resolve features at/near `request.origin` across the selected sources."""
    try:
        sources = select_sources(_catalog(), request.source_ids)
    except KeyError as exc:
        raise HTTPException(status_code=422, detail=str(exc.args[0])) from exc

    origin = CoreGeoPoint(lat=request.origin.lat, lon=request.origin.lon)
    request_id = uuid.uuid4().hex[:12]
    start = time.monotonic()
    try:
        with capture_trace() as trace:
            result = _resolver().resolve(origin, request.radius_miles, sources)
    except InvalidInputError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    meta = {
        "request_id": request_id,
        "api_ms": int((time.monotonic() - start) * 1000),
        "trace": trace.as_list(),
    }
    return build_response(result, meta=meta)
