from __future__ import annotations

# This module is the "orchestrator" for a proximity lookup.
# It wires together, per source:
# - planning (QueryPlan: which sub-queries, which radius),
# - ingestion (ArcGIS / Socrata clients: fetch + depaginate),
# - normalization (distance repair, radius filter, dedup, sort),
# and fans that out over every configured source on a bounded thread pool.
#
# Failure policy:
# - InvalidInputError is raised before any network I/O and fails the whole call.
# - Everything else is isolated to one sub-query of one source and reported in
#   `ProximityResult.failures`; sibling sub-queries and other sources still answer.

import logging
import math
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from contextlib import nullcontext
from dataclasses import dataclass, field
from typing import Literal

import httpx

from featurescope.config.settings import Settings, get_settings
from featurescope.core.errors import (
    DeadlineExceededError,
    InvalidInputError,
    SourceErrorResponse,
    SourceUnavailableError,
)
from featurescope.core.geo import GeoPoint, is_valid_coordinate
from featurescope.core.rate_limit import TokenBucketRateLimiter
from featurescope.core.trace import QueryTrace, current_trace
from featurescope.domain.models import SourceConfig
from featurescope.ingestion.arcgis_client import ArcGisClient
from featurescope.ingestion.features import FeatureFetcher
from featurescope.ingestion.soda_client import SodaClient
from featurescope.resolver.normalize import FeatureRecord, ResultNormalizer
from featurescope.resolver.plan import QueryPlan, SubQuery, SubQueryKind, build_query_plan

logger = logging.getLogger(__name__)

FailureKind = Literal["unavailable", "source_error", "timeout", "cancelled"]


@dataclass(frozen=True)
class SourceFailure:
    source_id: str
    kind: FailureKind
    sub_query: SubQueryKind | None = None
    message: str = ""


@dataclass(frozen=True)
class SourceResult:
    """The ResultSet of one source plus how it was obtained."""

    source_id: str
    records: list[FeatureRecord]
    plan: QueryPlan
    diagnostics: dict[str, int] = field(default_factory=dict)
    truncated: bool = False


@dataclass(frozen=True)
class ProximityResult:
    origin: GeoPoint
    requested_radius_miles: float | None
    results: dict[str, SourceResult]
    failures: list[SourceFailure] = field(default_factory=list)

    @property
    def failed_source_ids(self) -> list[str]:
        return list(dict.fromkeys(f.source_id for f in self.failures))

    @property
    def partial(self) -> bool:
        return bool(self.failures)


@dataclass(frozen=True)
class SourceOutcome:
    """What one source task hands back to the resolver; `result` is None if every sub-query failed."""

    result: SourceResult | None
    failures: list[SourceFailure]


def build_rate_limiter(settings: Settings) -> TokenBucketRateLimiter | None:
    rpm = settings.rate_limit.max_requests_per_minute
    if not rpm:
        return None
    return TokenBucketRateLimiter(max_per_minute=float(rpm), burst=settings.rate_limit.burst)


class ProximityResolver:
    """Resolve "what is at or near this point" across many feature services."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        fetchers: dict[str, FeatureFetcher] | None = None,
        http_client: httpx.Client | None = None,
        trace: QueryTrace | None = None,
    ):
        self._settings = settings or get_settings()
        self._trace = trace
        if fetchers is None:
            limiter = build_rate_limiter(self._settings)
            fetchers = {
                "arcgis": ArcGisClient(self._settings, http_client=http_client, rate_limiter=limiter),
                "soda": SodaClient(self._settings, http_client=http_client, rate_limiter=limiter),
            }
        self._fetchers = fetchers

    def validate_request(
        self, origin: GeoPoint, requested_radius_miles: float | None, sources: list[SourceConfig]
    ) -> None:
        """Reject bad input before anything touches the network."""
        if not is_valid_coordinate(float(origin.lat), float(origin.lon)):
            raise InvalidInputError(f"origin out of range: lat={origin.lat}, lon={origin.lon}")
        if requested_radius_miles is not None and math.isnan(float(requested_radius_miles)):
            raise InvalidInputError("requested radius must be a number")
        seen: set[str] = set()
        for source in sources:
            if source.id in seen:
                raise InvalidInputError(f"duplicate source id: '{source.id}'")
            if source.protocol not in self._fetchers:
                raise InvalidInputError(f"source '{source.id}': no client for protocol '{source.protocol}'")
            seen.add(source.id)

    def resolve_source(
        self,
        source: SourceConfig,
        origin: GeoPoint,
        requested_radius_miles: float | None,
        *,
        call_deadline: float | None = None,
        trace: QueryTrace | None = None,
    ) -> SourceOutcome:
        """Run one source's plan; sub-query failures are captured, not raised."""
        plan = build_query_plan(source.capability, origin, requested_radius_miles)
        normalizer = ResultNormalizer(source=source, origin=origin)

        if plan.is_empty:
            logger.debug("%s: nothing to query (no containment support and no usable radius)", source.id)
            empty = SourceResult(source_id=source.id, records=[], plan=plan, diagnostics=normalizer.diagnostics.as_dict())
            return SourceOutcome(result=empty, failures=[])

        source_deadline = time.monotonic() + float(self._settings.resolver.source_timeout_seconds)
        deadline = source_deadline if call_deadline is None else min(source_deadline, call_deadline)
        fetcher = self._fetchers[source.protocol]

        failures: list[SourceFailure] = []
        truncated = False
        for i, sub_query in enumerate(plan.sub_queries):
            failure, sub_truncated = self._run_sub_query(
                fetcher,
                source,
                origin,
                sub_query,
                normalizer,
                deadline=deadline,
                call_deadline=call_deadline,
                trace=trace,
            )
            truncated = truncated or sub_truncated
            if failure is None:
                continue
            failures.append(failure)
            # Past the deadline, the remaining sub-queries would fail the same way.
            if failure.kind in {"timeout", "cancelled"}:
                failures.extend(
                    SourceFailure(source.id, failure.kind, later.kind, "not started: deadline exceeded")
                    for later in plan.sub_queries[i + 1 :]
                )
                break

        records = normalizer.results()
        diagnostics = normalizer.diagnostics.as_dict()
        logger.info(
            "%s: %s record(s) (raw=%s malformed=%s outside_radius=%s duplicates=%s)%s",
            source.id,
            len(records),
            diagnostics["raw_features"],
            diagnostics["malformed"],
            diagnostics["outside_radius"],
            diagnostics["duplicates"],
            f"; {len(failures)} sub-query failure(s)" if failures else "",
        )

        if len(failures) == len(plan.sub_queries):
            return SourceOutcome(result=None, failures=failures)
        result = SourceResult(
            source_id=source.id,
            records=records,
            plan=plan,
            diagnostics=diagnostics,
            truncated=truncated,
        )
        return SourceOutcome(result=result, failures=failures)

    def _run_sub_query(
        self,
        fetcher: FeatureFetcher,
        source: SourceConfig,
        origin: GeoPoint,
        sub_query: SubQuery,
        normalizer: ResultNormalizer,
        *,
        deadline: float,
        call_deadline: float | None,
        trace: QueryTrace | None,
    ) -> tuple[SourceFailure | None, bool]:
        """Fetch + normalize one sub-query; returns (failure or None, truncated)."""
        span = (
            trace.span(
                "sub_query",
                source_id=source.id,
                kind=sub_query.kind,
                effective_radius_miles=sub_query.effective_radius_miles,
            )
            if trace is not None
            else nullcontext({})
        )
        failure: SourceFailure | None = None
        truncated = False
        with span as attrs:
            try:
                fetched = fetcher.fetch(source, origin, sub_query, deadline=deadline)
                normalizer.add(sub_query, fetched.features)
                truncated = fetched.truncated
                attrs.update(batches=fetched.batches, raw_features=len(fetched.features), truncated=truncated)
            except SourceErrorResponse as exc:
                failure = SourceFailure(source.id, "source_error", sub_query.kind, str(exc))
            except SourceUnavailableError as exc:
                failure = SourceFailure(source.id, "unavailable", sub_query.kind, str(exc))
            except DeadlineExceededError:
                cancelled = call_deadline is not None and time.monotonic() >= call_deadline
                kind: FailureKind = "cancelled" if cancelled else "timeout"
                failure = SourceFailure(source.id, kind, sub_query.kind, "deadline exceeded")
            if failure is not None:
                attrs["status"] = failure.kind

        if failure is not None:
            logger.warning("%s %s sub-query failed (%s): %s", source.id, sub_query.kind, failure.kind, failure.message)
        return failure, truncated

    def resolve(
        self,
        origin: GeoPoint,
        requested_radius_miles: float | None,
        sources: list[SourceConfig],
        *,
        deadline_seconds: float | None = None,
    ) -> ProximityResult:
        """Fan out over `sources` and collect one ResultSet per source."""
        self.validate_request(origin, requested_radius_miles, sources)
        if not sources:
            return ProximityResult(origin=origin, requested_radius_miles=requested_radius_miles, results={})

        trace = self._trace or current_trace()
        if deadline_seconds is None:
            deadline_seconds = self._settings.resolver.deadline_seconds
        call_deadline = time.monotonic() + float(deadline_seconds) if deadline_seconds else None

        workers = min(int(self._settings.resolver.max_workers), len(sources))
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="featurescope")
        futures: dict[Future[SourceOutcome], SourceConfig] = {}
        try:
            for source in sources:
                fut = executor.submit(
                    self.resolve_source,
                    source,
                    origin,
                    requested_radius_miles,
                    call_deadline=call_deadline,
                    trace=trace,
                )
                futures[fut] = source

            timeout = None if call_deadline is None else max(0.0, call_deadline - time.monotonic())
            done, not_done = wait(futures, timeout=timeout)
            if not_done:
                logger.warning("Deadline reached with %s source(s) unfinished; cancelling", len(not_done))
        finally:
            # Running tasks notice the deadline between batches; queued ones are dropped here.
            executor.shutdown(wait=False, cancel_futures=True)

        results: dict[str, SourceResult] = {}
        failures: list[SourceFailure] = []
        # Collect in catalog order so the output is deterministic.
        for fut, source in futures.items():
            if fut not in done:
                fut.cancel()
                failures.append(SourceFailure(source.id, "cancelled", None, "deadline exceeded"))
                continue
            exc = fut.exception()
            if exc is not None:
                logger.error("%s: unexpected failure", source.id, exc_info=exc)
                failures.append(SourceFailure(source.id, "unavailable", None, f"{type(exc).__name__}: {exc}"))
                continue
            outcome = fut.result()
            failures.extend(outcome.failures)
            if outcome.result is not None:
                results[source.id] = outcome.result

        if failures:
            logger.info(
                "Partial results: %s of %s source(s) reported failures",
                len({f.source_id for f in failures}),
                len(sources),
            )
        return ProximityResult(
            origin=origin,
            requested_radius_miles=requested_radius_miles,
            results=results,
            failures=failures,
        )


def resolve_proximity(
    origin: GeoPoint,
    requested_radius_miles: float | None,
    sources: list[SourceConfig],
    *,
    settings: Settings | None = None,
    resolver: ProximityResolver | None = None,
    deadline_seconds: float | None = None,
) -> ProximityResult:
    """Public entry point: one ResultSet per source, failed source ids, and a partial flag."""
    resolver = resolver or ProximityResolver(settings)
    return resolver.resolve(origin, requested_radius_miles, sources, deadline_seconds=deadline_seconds)
