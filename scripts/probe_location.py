#!/usr/bin/env python3
"""Resolve a map position and fetch its first page of issues.

Live verification aid for the tier resolver, geocoder and backend query
path. Reads ``ISSUEMAP_*`` environment variables for configuration.

Usage
-----
::

    export ISSUEMAP_BACKEND_URL="https://<project>.example.co"
    export ISSUEMAP_API_KEY="..."
    export ISSUEMAP_GEOCODER_TOKEN="..."
    python scripts/probe_location.py 48.85 2.35 5

Options::

    --sort most_voted   Order by votes instead of creation time
    --search TEXT       Filter title/description
    --json              Output as machine-readable JSON
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pyissuemap import (  # noqa: E402
    Coordinate,
    IssueMapConfig,
    IssueMapEngine,
    IssueMapError,
    SortOrder,
)


def _section(title: str) -> str:
    return f"\n{'=' * 60}\n  {title}\n{'=' * 60}"


async def run(args: argparse.Namespace) -> int:
    config = IssueMapConfig.from_env(realtime_enabled=False)
    center = Coordinate(lat=args.lat, lng=args.lng)

    async with IssueMapEngine(config) as engine:
        context = await engine.resolver.resolve(center, args.zoom)
        try:
            page = await engine.load_issues(context, sort=SortOrder(args.sort), search=args.search)
        except IssueMapError as exc:
            print(f"!! issue query failed: {exc}", file=sys.stderr)
            return 1

    if args.json_mode:
        result: dict[str, Any] = {
            "context": context.model_dump(mode="json"),
            "total": page.total,
            "issues": [issue.model_dump(mode="json") for issue in page.issues],
        }
        print(json.dumps(result, indent=2, ensure_ascii=False))
        return 0

    print(_section("LOCATION"))
    print(f"  tier   : {context.tier.value}")
    print(f"  name   : {context.name}")
    if context.bounds is not None:
        b = context.bounds
        print(f"  bounds : W{b.west} S{b.south} E{b.east} N{b.north}")

    print(_section(f"ISSUES (page 1, {len(page.issues)} of {page.total})"))
    for issue in page.issues:
        print(f"  [{issue.category.label:<14}] {issue.title}  ({issue.votes_count} votes) id={issue.id}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Resolve a map position and list its issues.")
    parser.add_argument("lat", type=float, help="Latitude of the map center")
    parser.add_argument("lng", type=float, help="Longitude of the map center")
    parser.add_argument("zoom", type=float, help="Map zoom level")
    parser.add_argument("--sort", choices=[s.value for s in SortOrder], default=SortOrder.NEWEST.value)
    parser.add_argument("--search", help="Case-insensitive title/description filter")
    parser.add_argument("--json", action="store_true", dest="json_mode", help="Output machine-readable JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
