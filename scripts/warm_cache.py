#!/usr/bin/env python3
"""
Warm the response cache for a cache category.

This helper mirrors the admin cache warm endpoint but can be executed manually
from a developer workstation or a deploy job. It builds the same service the
API runs, so warmed entries are byte-identical to what the routes would cache.
"""

import argparse
import asyncio
import json
from pathlib import Path
from typing import Optional
import sys
import os

sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from service_api.app.main import OrderingService  # noqa: E402
from shared.config import get_config  # noqa: E402


async def warm(
    *,
    category: str,
    redis_url: Optional[str],
    menu_data_file: Optional[Path],
    concurrency: int,
    dry_run: bool,
) -> dict:
    """Execute cache warming and return the summary."""
    overrides = {"cache_warm_on_startup": False, "cache_warm_concurrency": concurrency}
    if redis_url:
        overrides["redis_url"] = redis_url
    if menu_data_file:
        overrides["menu_data_file"] = str(menu_data_file)

    service = OrderingService(get_config("api", 8000, **overrides))
    try:
        if dry_run:
            return {"category": category, "planned": await service.cache_manager.plan_warm(category)}
        return await service.cache_manager.warm(category)
    finally:
        await service.cache_store.close()


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Warm the ordering API response cache.")
    parser.add_argument("--category", default="menu", help="Cache category to warm")
    parser.add_argument("--redis-url", default=None, help="Redis connection URL (defaults to ACCESS_REDIS_URL)")
    parser.add_argument("--menu-file", type=Path, default=None, help="Menu catalog JSON override")
    parser.add_argument("--concurrency", type=int, default=int(os.getenv("ACCESS_CACHE_WARM_CONCURRENCY", 5)), help="Concurrent warm operations")
    parser.add_argument("--dry-run", action="store_true", help="Do not write to Redis; print planned warm keys")
    parser.add_argument("--output", type=Path, default=None, help="Optional path to write JSON summary")
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    try:
        summary = asyncio.run(
            warm(
                category=args.category,
                redis_url=args.redis_url,
                menu_data_file=args.menu_file,
                concurrency=args.concurrency,
                dry_run=args.dry_run,
            )
        )
    except KeyboardInterrupt:
        return 130
    except Exception as exc:  # pragma: no cover - CLI surface
        print(f"[cache-warm] failed: {exc}", file=sys.stderr)
        return 1

    if args.dry_run:
        print("[cache-warm] DRY RUN - no Redis writes executed")

    print(json.dumps(summary, indent=2))

    if args.output:
        args.output.write_text(json.dumps(summary, indent=2))

    return 0 if not summary.get("errors") else 2


if __name__ == "__main__":
    raise SystemExit(main())
