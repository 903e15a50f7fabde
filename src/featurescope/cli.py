"""
featurescope CLI entrypoint.

This CLI is intended for quick local lookups and debugging without the HTTP API.
It delegates all resolution logic to `featurescope.resolver.resolve.resolve_proximity`.
"""

from __future__ import annotations

import argparse
import json
from typing import Any

from featurescope.catalog.loader import load_sources, select_sources
from featurescope.config.settings import get_settings
from featurescope.core.errors import InvalidInputError
from featurescope.core.geo import GeoPoint
from featurescope.core.logging import configure_logging
from featurescope.core.trace import capture_trace
from featurescope.resolver.resolve import resolve_proximity
from featurescope.resolver.response import build_response


def _cmd_sources(args: argparse.Namespace) -> int:
    settings = get_settings()
    sources = load_sources(args.catalog or settings.catalog.path)
    for s in sources:
        cap = s.capability
        modes = "+".join(
            m for m, on in [("containment", cap.supports_containment), ("proximity", cap.supports_proximity)] if on
        )
        print(f"{s.id:<32} {s.protocol:<7} {cap.geometry_kind:<9} {modes:<22} max {cap.max_radius_miles:g} mi")
    return 0


def _cmd_resolve(args: argparse.Namespace) -> int:
    """Handle the `resolve` subcommand."""
    settings = get_settings()
    catalog = load_sources(args.catalog or settings.catalog.path)
    try:
        sources = select_sources(catalog, args.source)
    except KeyError as exc:
        print(f"error: {exc.args[0]}")
        return 2

    origin = GeoPoint(lat=float(args.lat), lon=float(args.lon))
    try:
        with capture_trace() as trace:
            result = resolve_proximity(
                origin,
                args.radius,
                sources,
                settings=settings,
                deadline_seconds=args.deadline,
            )
    except InvalidInputError as exc:
        print(f"error: {exc}")
        return 2

    if args.json:
        response = build_response(result, meta={"trace": trace.as_list()})
        print(json.dumps(response.model_dump(mode="json"), ensure_ascii=False, indent=2))
        return 0

    for source_id, source_result in result.results.items():
        radius = source_result.plan.effective_radius_miles
        radius_txt = f"{radius:g} mi" if radius is not None else "containment only"
        print(f"{source_id} ({radius_txt}): {len(source_result.records)} feature(s)")
        for rec in source_result.records[: args.limit]:
            where = "contains origin" if rec.is_containing else f"{rec.distance_miles:.3f} mi"
            label = ", ".join(f"{k}={v}" for k, v in rec.mapped_fields.items() if v not in (None, ""))
            print(f"  - [{rec.id or '-'}] {rec.geometry_kind:<8} {where:<16} {label}")
    if result.partial:
        print(f"partial results; failed sources: {', '.join(result.failed_source_ids)}")
        for f in result.failures:
            print(f"  - {f.source_id} {f.sub_query or ''} {f.kind}: {f.message}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the featurescope CLI."""
    parser = argparse.ArgumentParser(prog="featurescope")
    parser.add_argument("--log-level", default=None, help="Override app.log_level (e.g. DEBUG)")
    sub = parser.add_subparsers(dest="command", required=True)

    res = sub.add_parser("resolve", help="Find features at or near a point across the catalog's sources.")
    res.add_argument("--lat", required=True, type=float)
    res.add_argument("--lon", required=True, type=float)
    res.add_argument("--radius", type=float, default=None, help="Search radius in miles (omit for containment only)")
    res.add_argument("--source", action="append", default=[], help="Repeatable. Omit to query every source.")
    res.add_argument("--catalog", type=str, default=None, help="Catalog file (defaults to settings.catalog.path)")
    res.add_argument("--deadline", type=float, default=None, help="Overall deadline in seconds")
    res.add_argument("--limit", type=int, default=10, help="Records printed per source (text output)")
    res.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    res.set_defaults(func=_cmd_resolve)

    src = sub.add_parser("sources", help="List the sources in the catalog.")
    src.add_argument("--catalog", type=str, default=None)
    src.set_defaults(func=_cmd_sources)
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint callable used by `python -m featurescope.cli`."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    func: Any = getattr(args, "func")
    return int(func(args))


if __name__ == "__main__":
    raise SystemExit(main())
