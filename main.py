#!/usr/bin/env python3
"""
Feed Synchronization CLI

Drives the source pipeline by hand or from cron:
1. detect  - classify a URL without storing anything
2. add     - classify a URL and register it as a source
3. sync    - synchronize all (or one) registered sources
4. status  - show registered sources and their last fetch outcome

Sources listed in sources.yaml are registered before a sync run.
"""

import asyncio
import sys
import argparse
from datetime import datetime, timezone
from typing import Optional

from aiohttp import ClientSession

from config import config, get_logger
from errors import SourceDetectionError, SourceSyncError
from models import CONTENT_COLUMNS, DatabaseQueue, SQLiteContentStore
from registry import create_default_registry
from syncer import SourceSyncService
from telemetry import init_telemetry

logger = get_logger("cli")


def _format_time(timestamp: Optional[int]) -> str:
    if not timestamp:
        return "never"
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M UTC")


async def seed_sources(service: SourceSyncService) -> int:
    """Register sources from sources.yaml that are not stored yet."""
    if not config.SEED_SOURCES:
        return 0
    known = {source.url for source in await service.store.list_sources()}
    added = 0
    for entry in config.SEED_SOURCES:
        url = entry['url']
        if url in known:
            continue
        try:
            source = await service.add_source(url, title=entry.get('title'))
        except SourceDetectionError as e:
            logger.warning(f"⚠️ Skipping seed source {url}: {e}")
            continue
        known.add(source.url)
        added += 1
    if added:
        logger.info(f"🌱 Registered {added} seed sources")
    return added


async def cmd_detect(service: SourceSyncService, args) -> int:
    detection = await service.detect(args.url)
    if not detection.detected:
        print(f"❌ {args.url}: {detection.error or 'not recognised'}")
        return 1
    print(f"✅ {args.url}")
    print(f"   type:  {detection.source_type.value}")
    print(f"   feed:  {detection.feed_url}")
    if detection.suggested_title:
        print(f"   title: {detection.suggested_title}")
    return 0


async def cmd_add(service: SourceSyncService, args) -> int:
    try:
        source = await service.add_source(args.url, title=args.title)
    except SourceDetectionError as e:
        print(f"❌ {e}")
        return 1
    print(f"✅ Source {source.id} ({source.type.value}): {source.url}")
    return 0


async def cmd_sync(service: SourceSyncService, args) -> int:
    if args.source is not None:
        source = await service.store.get_source(args.source)
        if source is None:
            print(f"❌ No source with id {args.source}")
            return 1
        sources = [source]
    else:
        await seed_sources(service)
        sources = await service.store.list_sources()

    if not sources:
        print("No sources registered")
        return 0

    def _report(source, result):
        if result.success:
            print(f"   ✅ [{source.id}] {source.title or source.url}: "
                  f"{result.articles_added} added, {result.articles_updated} updated")
        else:
            print(f"   ❌ [{source.id}] {source.title or source.url}: {result.error}")

    mode = "full" if args.full else "incremental"
    print(f"🔄 Running {mode} sync of {len(sources)} sources")
    summary = await service.sync_sources(
        sources, full_sync=args.full, on_source_complete=_report, max_items=args.max_items
    )
    print(f"📊 {summary.successful_syncs} ok, {summary.failed_syncs} failed, "
          f"{summary.total_articles_added} added, {summary.total_articles_updated} updated")
    return 0 if summary.failed_syncs == 0 else 1


async def cmd_status(service: SourceSyncService, args) -> int:
    sources = await service.store.list_sources()
    print(f"\n📊 Feed Sync Status ({config.DATABASE_PATH})")
    for table in CONTENT_COLUMNS:
        print(f"   {table}: {await service.store.count_content(table)} items")
    print(f"\n📡 Sources: {len(sources)}")
    for source in sources:
        state = f"error: {source.fetch_error}" if source.fetch_error else "ok"
        print(f"   [{source.id}] {source.type.value:<13} {source.title or source.url}")
        print(f"        last fetched {_format_time(source.last_fetched_at)}, "
              f"{source.fetch_count} fetches, {state}")
    return 0


COMMANDS = {
    'detect': cmd_detect,
    'add': cmd_add,
    'sync': cmd_sync,
    'status': cmd_status,
}


async def run(args) -> int:
    db = DatabaseQueue(args.database or config.DATABASE_PATH)
    await db.start()
    try:
        async with ClientSession() as session:
            service = SourceSyncService(create_default_registry(session), SQLiteContentStore(db))
            return await COMMANDS[args.command](service, args)
    finally:
        await db.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Feed source detection and content synchronization')
    parser.add_argument('--database', type=str, help='SQLite database path (default: DATABASE_PATH)')
    subparsers = parser.add_subparsers(dest='command', required=True)

    detect = subparsers.add_parser('detect', help='Classify a URL without storing it')
    detect.add_argument('url')

    add = subparsers.add_parser('add', help='Register a source')
    add.add_argument('url')
    add.add_argument('--title', type=str, help='Display title (default: detected title)')

    sync = subparsers.add_parser('sync', help='Synchronize registered sources')
    sync.add_argument('--full', action='store_true', help='Ignore the recency window (backfill)')
    sync.add_argument('--source', type=int, help='Only sync the source with this id')
    sync.add_argument('--max-items', type=int,
                      help='Items written per source (default: MAX_ITEMS_PER_SYNC, 0 for no limit)')

    subparsers.add_parser('status', help='Show registered sources')
    return parser


def main():
    """Main entry point."""
    args = build_parser().parse_args()
    init_telemetry("feed-sync-cli")

    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        logger.info("👋 Shutting down")
    except SourceSyncError as e:
        logger.error(f"💥 {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
