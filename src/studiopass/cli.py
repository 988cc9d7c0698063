"""
StudioPass CLI entrypoint.

This CLI is intended for quick local demos and debugging without the API.
Directory queries go through `studiopass.directory.query.StudioDirectoryQuery`
over an in-memory store seeded from the local catalog.
"""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any

from studiopass.catalog.loader import load_studios, seed_store
from studiopass.config.settings import get_settings
from studiopass.core.cache import KeyedCache
from studiopass.core.geo import distance_km, format_distance
from studiopass.core.logging import configure_logging
from studiopass.core.time import parse_datetime
from studiopass.directory.query import StudioDirectoryQuery
from studiopass.domain.models import Position
from studiopass.location.resolver import fallback_locations_from
from studiopass.store.memory import InMemoryDocumentStore


def _cmd_studios(args: argparse.Namespace) -> int:
    """Handle the `studios` subcommand."""
    settings = get_settings()

    if (args.lat is None) != (args.lng is None):
        raise SystemExit("--lat and --lng must be given together")
    center = Position(latitude=args.lat, longitude=args.lng) if args.lat is not None else None

    filters: dict[str, Any] = {
        "is_open": bool(args.open),
        "amenities": args.amenity or [],
        "min_rating": float(args.min_rating),
        "search_term": args.q,
    }
    if args.radius_km is not None:
        filters["radius_km"] = float(args.radius_km)

    clock = None
    if args.at:
        at = parse_datetime(args.at, settings.app.timezone)
        clock = lambda: at  # noqa: E731

    async def run():
        store = InMemoryDocumentStore()
        studios = load_studios(args.catalog or settings.directory.catalog_path)
        await seed_store(store, studios, collection=settings.directory.collection)
        directory = StudioDirectoryQuery(store, KeyedCache(), settings, clock=clock)
        return await directory.query(center, filters)

    results = asyncio.run(run())

    if args.json:
        print(json.dumps([s.model_dump(mode="json", by_alias=True) for s in results], ensure_ascii=False, indent=2))
        return 0

    print(f"{len(results)} studio(s)")
    for i, studio in enumerate(results, start=1):
        rating = f"{studio.average_rating:.1f}" if studio.average_rating is not None else "-"
        where = studio.distance or "distance unknown"
        print(f"{i:>2}. {studio.name}  [{where}]  rating={rating}")
        if studio.address:
            print(f"    {studio.address}")
    return 0


def _cmd_distance(args: argparse.Namespace) -> int:
    km = distance_km(args.lat1, args.lng1, args.lat2, args.lng2)
    if args.json:
        print(json.dumps({"distanceKm": km, "distance": format_distance(km)}))
        return 0
    print(format_distance(km))
    return 0


def _cmd_fallbacks(args: argparse.Namespace) -> int:
    fallbacks = fallback_locations_from(get_settings())
    if args.json:
        print(json.dumps([f.model_dump(mode="json") for f in fallbacks], ensure_ascii=False, indent=2))
        return 0
    for f in fallbacks:
        print(f"{f.id:<12} {f.name}, {f.country}  ({f.coordinates.latitude:.4f}, {f.coordinates.longitude:.4f})")
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run(
        "studiopass.api.app:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=get_settings().app.log_level.lower(),
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the StudioPass CLI."""
    parser = argparse.ArgumentParser(prog="studiopass")
    sub = parser.add_subparsers(dest="command", required=True)

    st = sub.add_parser("studios", help="Query the studio directory from the local catalog.")
    st.add_argument("--lat", type=float, default=None)
    st.add_argument("--lng", type=float, default=None)
    st.add_argument("--radius-km", type=float, default=None, help="Use 'inf' for no distance restriction.")
    st.add_argument("--open", action="store_true", help="Only studios open at --at (default: now)")
    st.add_argument("--at", type=str, default=None, help="ISO datetime used for --open (e.g. 2026-01-05T10:00)")
    st.add_argument("--amenity", action="append", default=[], help="Repeatable; all must be present.")
    st.add_argument("--min-rating", type=float, default=0.0)
    st.add_argument("--q", type=str, default=None, help="Search name and address")
    st.add_argument("--catalog", type=str, default=None, help="Catalog JSON path (default from settings)")
    st.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    st.set_defaults(func=_cmd_studios)

    dist = sub.add_parser("distance", help="Great-circle distance between two points.")
    dist.add_argument("lat1", type=float)
    dist.add_argument("lng1", type=float)
    dist.add_argument("lat2", type=float)
    dist.add_argument("lng2", type=float)
    dist.add_argument("--json", action="store_true")
    dist.set_defaults(func=_cmd_distance)

    fb = sub.add_parser("fallbacks", help="List the fallback locations.")
    fb.add_argument("--json", action="store_true")
    fb.set_defaults(func=_cmd_fallbacks)

    sv = sub.add_parser("serve", help="Run the HTTP API with uvicorn.")
    sv.add_argument("--host", type=str, default="127.0.0.1")
    sv.add_argument("--port", type=int, default=8000)
    sv.add_argument("--reload", action="store_true")
    sv.set_defaults(func=_cmd_serve)
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint callable used by `python -m studiopass.cli`."""
    configure_logging()
    parser = build_parser()
    args = parser.parse_args(argv)
    func: Any = getattr(args, "func")
    return int(func(args))


if __name__ == "__main__":
    raise SystemExit(main())
