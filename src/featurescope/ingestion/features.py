"""
Shared ingestion types.

Feature-service clients (ArcGIS, Socrata) only fetch: they return raw features exactly
as the server described them and leave distance math to `featurescope.resolver.normalize`.
This module holds what they share:
- `RawFeature` / `FetchResult` value types,
- the `FeatureFetcher` protocol the resolver depends on,
- `ServiceClient`, a base class with the HTTP call, the shared rate limiter,
  the HTTP 429 retry/backoff loop, and cooperative deadline checks.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

import httpx

from featurescope.config.settings import RetrySettings, Settings
from featurescope.core.errors import DeadlineExceededError
from featurescope.core.geo import GeoPoint
from featurescope.core.http import get_json
from featurescope.core.rate_limit import TokenBucketRateLimiter
from featurescope.domain.models import SourceConfig
from featurescope.resolver.plan import SubQuery

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RawFeature:
    """One feature as returned by a service; `geometry` is ESRI JSON or GeoJSON."""

    attributes: dict[str, Any]
    geometry: dict[str, Any] | None
    geometry_format: Literal["esri", "geojson"] = "esri"


@dataclass(frozen=True)
class FetchResult:
    features: list[RawFeature] = field(default_factory=list)
    batches: int = 0
    # True when pagination stopped early (batch bound hit, or a later page errored).
    truncated: bool = False


class FeatureFetcher(Protocol):
    def fetch(
        self,
        source: SourceConfig,
        origin: GeoPoint,
        sub_query: SubQuery,
        *,
        deadline: float | None = None,
    ) -> FetchResult: ...


def check_deadline(deadline: float | None) -> None:
    """Raise if the monotonic `deadline` has passed."""
    if deadline is not None and time.monotonic() >= deadline:
        raise DeadlineExceededError("deadline exceeded")


class ServiceClient:
    """Base class for the feature-service clients."""

    def __init__(
        self,
        settings: Settings,
        *,
        http_client: httpx.Client | None = None,
        rate_limiter: TokenBucketRateLimiter | None = None,
    ):
        self._settings = settings
        self._http_client = http_client
        self._rate_limiter = rate_limiter

    @property
    def _retry(self) -> RetrySettings:
        return self._settings.arcgis.retry

    @staticmethod
    def _parse_retry_after_seconds(value: str | None) -> float | None:
        if not value:
            return None
        try:
            seconds = float(value)
        except ValueError:
            return None
        return seconds if seconds >= 0 else None

    def _request_timeout(self, deadline: float | None) -> float:
        """Per-request httpx timeout, clamped to the time left before `deadline`."""
        timeout = float(self._settings.app.http_timeout_seconds)
        if deadline is None:
            return timeout
        return max(0.001, min(timeout, deadline - time.monotonic()))

    def _get_json(self, url: str, *, params: dict[str, Any], deadline: float | None = None) -> Any:
        """GET JSON, retrying only rate-limited (429) responses with exponential backoff.

        Any other HTTP/transport/decode error propagates immediately.
        """
        retry = self._retry
        max_attempts = int(retry.max_attempts)
        base_delay_seconds = float(retry.base_delay_seconds)
        max_delay_seconds = float(retry.max_delay_seconds)

        for attempt in range(max_attempts + 1):
            check_deadline(deadline)
            if self._rate_limiter is not None:
                self._rate_limiter.acquire(deadline=deadline)
                # The limiter may have slept right up to the deadline.
                check_deadline(deadline)
            try:
                return get_json(
                    url,
                    params=params,
                    headers={"User-Agent": self._settings.app.user_agent},
                    timeout_seconds=self._request_timeout(deadline),
                    client=self._http_client,
                )
            except httpx.TimeoutException as exc:
                if deadline is not None and time.monotonic() >= deadline:
                    raise DeadlineExceededError("deadline exceeded during request") from exc
                raise
            except httpx.HTTPStatusError as exc:
                if exc.response.status_code != 429 or attempt >= max_attempts:
                    raise

                delay = min(max_delay_seconds, base_delay_seconds * (2**attempt))
                retry_after = self._parse_retry_after_seconds(exc.response.headers.get("Retry-After"))
                if retry_after is not None:
                    delay = max(delay, retry_after)
                if deadline is not None and time.monotonic() + delay > deadline:
                    raise DeadlineExceededError(f"retry backoff of {delay:.2f}s would pass the deadline") from exc

                logger.warning(
                    "Rate limited by %s; retrying in %.2fs (attempt %s/%s)",
                    url,
                    delay,
                    attempt + 1,
                    max_attempts,
                )
                time.sleep(delay)

        raise RuntimeError("unreachable: retry loop exited without a result")
