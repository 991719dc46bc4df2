#!/usr/bin/env python3
"""
Warm the catalog cache of a running catalog service.

This helper calls the service's cache warm endpoint so the in-memory cache of
that process is populated; it can be run after a deploy or from a CI job.
With ``--dry-run`` it only prints the keys the warm plan would cover.
"""

import argparse
import asyncio
import json
from pathlib import Path
from typing import Optional
import sys
import os

import httpx

sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from service_catalog.app.caching.warm_plan import WarmPlanLoader  # noqa: E402
from service_catalog.app.caching.keys import category_products_key  # noqa: E402


async def warm(*, service_url: str, category_id: Optional[int], timeout: float) -> dict:
    """POST to the warm endpoint and return its summary."""
    params = {"categoryId": category_id} if category_id is not None else None
    async with httpx.AsyncClient(base_url=service_url.rstrip('/'), timeout=timeout) as client:
        response = await client.post("/api/cache/warm", params=params)
        response.raise_for_status()
        return response.json()


def plan(*, warm_file: Optional[Path], category_id: Optional[int]) -> dict:
    """Describe what a warm request would fetch, without contacting the service."""
    if category_id is not None:
        keys = [category_products_key(category_id)]
    else:
        keys = [entry.key for entry in WarmPlanLoader(warm_file).entries()]
    return {"planned": len(keys), "keys": keys}


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Warm the catalog service cache.")
    parser.add_argument("--service-url", default=os.getenv("TOURS_CATALOG_URL", "http://localhost:8000"), help="Catalog service base URL")
    parser.add_argument("--category", type=int, default=None, help="Warm only this category's first page")
    parser.add_argument("--warm-file", type=Path, default=None, help="Warm plan JSON override (dry run only)")
    parser.add_argument("--timeout", type=float, default=120.0, help="Request timeout in seconds")
    parser.add_argument("--dry-run", action="store_true", help="Print the planned keys without calling the service")
    parser.add_argument("--output", type=Path, default=None, help="Optional path to write JSON summary")
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    try:
        if args.dry_run:
            summary = plan(warm_file=args.warm_file, category_id=args.category)
        else:
            summary = asyncio.run(
                warm(service_url=args.service_url, category_id=args.category, timeout=args.timeout)
            )
    except KeyboardInterrupt:
        return 130
    except httpx.HTTPError as exc:
        print(f"[cache-warm] failed: {exc}", file=sys.stderr)
        return 1

    if args.dry_run:
        print("[cache-warm] DRY RUN - service not contacted")

    print(json.dumps(summary, indent=2))

    if args.output:
        args.output.write_text(json.dumps(summary, indent=2))

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
