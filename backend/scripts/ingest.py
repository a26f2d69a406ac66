#!/usr/bin/env python3
"""
CLI tool for the fetch pipeline.

Usage:
    # Fetch every platform and persist
    python -m scripts.ingest fetch

    # Fetch selected platforms
    python -m scripts.ingest fetch --platforms Bilibili,YouTube

    # Poll one platform without saving
    python -m scripts.ingest preview --platform TFTimes

    # Per-author activity
    python -m scripts.ingest stats

    # Manage sources
    python -m scripts.ingest sources list
    python -m scripts.ingest sources add Bilibili 12345678 "Some Creator"
    python -m scripts.ingest sources remove 4
    python -m scripts.ingest sources seed
"""

import argparse
import asyncio
import json
import logging
import sys

# Add parent directory to path for imports
sys.path.insert(0, str(__file__).rsplit("/", 2)[0])

from tftblog.config import get_settings
from tftblog.models.database import Database
from tftblog.models.domain import Platform, SourceTarget
from tftblog.services.persistence import SqlArticleStore
from tftblog.services.pipeline import PipelineService, exit_code
from tftblog.services.sources import SourceError, SourceRegistry
from tftblog.services.statistics import StatisticsService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


async def open_database() -> Database:
    database = Database(get_settings().database_url)
    await database.create_tables()
    return database


def create_pipeline(database: Database) -> PipelineService:
    return PipelineService(
        SourceRegistry(database),
        SqlArticleStore(database),
        get_settings(),
    )


async def print_progress(line: str) -> None:
    print(line, flush=True)


async def cmd_fetch(args):
    """Fetch and persist articles."""
    database = await open_database()
    try:
        pipeline = create_pipeline(database)
        platforms = args.platforms.split(",") if args.platforms else None
        try:
            reports = await pipeline.run(platforms, on_progress=print_progress)
        except ValueError as e:
            print(f"Invalid platform: {e}")
            print(f"Valid platforms: {[p.value for p in Platform]}")
            return 1
    finally:
        await database.dispose()

    print("\n" + "=" * 60)
    print("FETCH RESULTS")
    print("=" * 60)

    for report in reports.values():
        print(report)
        for entry in report.failed:
            print(f"  ✗ {entry.target.label} after {entry.attempt_count} attempts: {entry.last_error}")
        for entry in report.pending_at_cutoff:
            print(f"  … {entry.target.label} still pending")

    if args.output:
        with open(args.output, "w") as f:
            json.dump([r.to_dict() for r in reports.values()], f, indent=2, ensure_ascii=False)
        print(f"\nReport saved to: {args.output}")

    return exit_code(reports)


async def cmd_preview(args):
    """Poll one platform without saving."""
    database = await open_database()
    try:
        articles = await create_pipeline(database).preview(args.platform, on_progress=print_progress)
    except ValueError as e:
        print(f"Invalid platform: {e}")
        return 1
    finally:
        await database.dispose()

    print("\n" + "=" * 60)
    print(f"PREVIEW ({len(articles)} articles)")
    print("=" * 60)

    for article in articles[: args.limit]:
        print(f"\n[{article.platform.value}] {article.title}")
        print(f"  Author: {article.author}")
        print(f"  URL: {article.link or '-'}")
        print(f"  Date: {article.published_at}")

    return 0


async def cmd_stats(args):
    """Show per-author activity."""
    database = await open_database()
    try:
        activity = await StatisticsService(SqlArticleStore(database)).author_activity()
    finally:
        await database.dispose()

    print("\n" + "=" * 70)
    print("AUTHOR ACTIVITY")
    print("=" * 70)
    print(f"{'Platform':<10} {'Author':<30} {'Total':>6} {'7d':>5}  Latest")

    for row in activity:
        latest = row.latest_published.strftime("%Y-%m-%d") if row.latest_published else "-"
        print(f"{row.platform:<10} {row.author[:30]:<30} {row.total_count:>6} {row.weekly_count:>5}  {latest}")

    return 0


async def cmd_sources(args):
    """List, add, remove or seed sources."""
    database = await open_database()
    registry = SourceRegistry(database)
    try:
        if args.action == "list":
            for target in await registry.list_targets():
                state = "on " if target.enabled else "off"
                print(f"  {target.id:>4} [{state}] {target.platform.value:<9} {target.display_name} ({target.identifier})")

        elif args.action == "add":
            metadata = {"type": args.type} if args.type else {}
            target = await registry.add_target(
                SourceTarget(
                    platform=Platform.parse(args.platform),
                    display_name=args.name or args.identifier,
                    identifier=args.identifier,
                    metadata=metadata,
                )
            )
            print(f"Added source {target.id}: {target.label}")

        elif args.action == "remove":
            await registry.remove_target(args.id)
            print(f"Removed source {args.id}")

        elif args.action == "seed":
            added = await registry.seed_defaults()
            print(f"Seeded {added} default sources")

    except (SourceError, ValueError) as e:
        print(f"Error: {e}")
        return 1
    finally:
        await database.dispose()

    return 0


def main():
    parser = argparse.ArgumentParser(
        description="TFT Blog Aggregator - Fetch Pipeline CLI"
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Fetch command
    fetch_parser = subparsers.add_parser("fetch", help="Fetch and persist articles")
    fetch_parser.add_argument(
        "--platforms", "-p",
        help="Comma-separated platforms (default: all)"
    )
    fetch_parser.add_argument(
        "--output", "-o",
        help="Output file for the fetch report (JSON)"
    )

    # Preview command
    preview_parser = subparsers.add_parser("preview", help="Poll without saving")
    preview_parser.add_argument("--platform", "-p", required=True)
    preview_parser.add_argument(
        "--limit", "-l",
        type=int,
        default=20,
        help="Max articles to print (default: 20)"
    )

    # Stats command
    subparsers.add_parser("stats", help="Show per-author activity")

    # Sources command
    sources_parser = subparsers.add_parser("sources", help="Manage sources")
    sources_sub = sources_parser.add_subparsers(dest="action", required=True)
    sources_sub.add_parser("list", help="List sources")
    add_parser = sources_sub.add_parser("add", help="Register a source")
    add_parser.add_argument("platform")
    add_parser.add_argument("identifier", help="UID, channel id, username or category path")
    add_parser.add_argument("name", nargs="?", help="Display name")
    add_parser.add_argument("--type", choices=["channel", "user"], help="YouTube id kind")
    remove_parser = sources_sub.add_parser("remove", help="Delete a source")
    remove_parser.add_argument("id", type=int)
    sources_sub.add_parser("seed", help="Register default TFTimes categories")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    # Run command
    if args.command == "fetch":
        return asyncio.run(cmd_fetch(args))
    elif args.command == "preview":
        return asyncio.run(cmd_preview(args))
    elif args.command == "stats":
        return asyncio.run(cmd_stats(args))
    elif args.command == "sources":
        return asyncio.run(cmd_sources(args))

    return 0


if __name__ == "__main__":
    sys.exit(main())
