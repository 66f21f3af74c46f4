#!/usr/bin/env python3
"""
Per-source synchronization routine shared by every handler.

fetch -> filter -> recency window -> dedup -> cap -> one existence check ->
batched concurrent upserts -> source status update.
"""

from asyncio import gather
from inspect import isawaitable
from time import time
from typing import Dict, List, Optional, Tuple

from config import config, get_logger
from entities import HandlerContext, ProcessedContentItem, Source, SyncResult
from errors import StoreError
from telemetry import trace_span
from utils import chunked

logger = get_logger("pipeline")

FETCH_FAILED = "Failed to fetch feed"


def resolve_item_cap(max_items: Optional[int]) -> Optional[int]:
    """None -> configured ceiling, <= 0 -> unbounded."""
    if max_items is None:
        return config.MAX_ITEMS_PER_SYNC
    if max_items <= 0:
        return None
    return max_items


def select_items(
    handler,
    items: List[ProcessedContentItem],
    filter_recent: bool,
    max_items: Optional[int],
    now: Optional[int] = None,
) -> List[Tuple[str, ProcessedContentItem]]:
    """Apply the item filters and return (dedup_key, item) pairs in feed order."""
    candidates = [item for item in items if item.url and item.title]
    if handler.requires_media:
        candidates = [item for item in candidates if item.media.media_url]

    if filter_recent:
        cutoff = (now if now is not None else int(time())) - config.RECENT_WINDOW_HOURS * 3600
        candidates = [item for item in candidates if item.published_at >= cutoff]

    selected: List[Tuple[str, ProcessedContentItem]] = []
    seen = set()
    for item in candidates:
        key = handler.dedup_key(item)
        if not key or key in seen:
            continue
        seen.add(key)
        selected.append((key, item))

    cap = resolve_item_cap(max_items)
    if cap is not None:
        selected = selected[:cap]
    return selected


async def _notify(context: HandlerContext, count: int) -> None:
    """Report progress; callback failures are logged and never fail the sync."""
    if not context.on_item_processed:
        return
    for _ in range(count):
        try:
            result = context.on_item_processed()
            if isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"Source {context.source.id}: progress callback failed: {e}")


async def _mark_success(context: HandlerContext) -> None:
    source = context.source
    fetched_at = int(time())
    fetch_count = (source.fetch_count or 0) + 1
    await context.store.update_source_status(source.id, None, fetched_at, fetch_count)
    source.fetch_error = None
    source.last_fetched_at = fetched_at
    source.fetch_count = fetch_count


async def _mark_failure(context: HandlerContext, error: str) -> None:
    source = context.source
    fetched_at = int(time())
    try:
        await context.store.update_source_status(source.id, error, fetched_at)
    except StoreError as e:
        logger.error(f"Could not record error for source {source.id}: {e}")
        return
    source.fetch_error = error
    source.last_fetched_at = fetched_at


async def _upsert(context: HandlerContext, handler, key: str, item: ProcessedContentItem, exists: bool) -> str:
    source: Source = context.source
    row = handler.build_row(source, item)
    return await context.store.upsert_content_item(handler.content_table, source.id, key, row, exists)


@trace_span(
    "pipeline.sync_source",
    tracer_name="pipeline",
    attr_from_args=lambda handler, context, filter_recent=True: {
        "source.id": context.source.id,
        "source.type": context.source.type.value,
        "sync.incremental": filter_recent,
    },
)
async def sync_source_content(handler, context: HandlerContext, filter_recent: bool = True) -> SyncResult:
    """Synchronize one source through `handler`.

    Never raises for fetch, parse or per-item failures; the outcome is
    recorded on the source and returned as a SyncResult.
    """
    source = context.source
    try:
        feed = await handler.fetch_feed(source.url)
        if feed is None:
            logger.warning(f"Source {source.id} ({source.url}): {FETCH_FAILED}")
            await _mark_failure(context, FETCH_FAILED)
            return SyncResult.failure(FETCH_FAILED)

        selected = select_items(handler, feed.items, filter_recent, context.max_items)
        if not selected:
            await _mark_success(context)
            logger.info(f"Source {source.id}: no new items")
            return SyncResult(success=True)

        existing = await context.store.exists_by_dedup_key(
            handler.content_table, source.id, [key for key, _ in selected]
        )

        counts: Dict[str, int] = {"added": 0, "updated": 0}
        for batch in chunked(selected, config.SYNC_BATCH_SIZE):
            outcomes = await gather(
                *(_upsert(context, handler, key, item, key in existing) for key, item in batch),
                return_exceptions=True,
            )
            for (key, _), outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    logger.warning(f"Source {source.id}: failed to store item {key}: {outcome}")
                elif outcome in counts:
                    counts[outcome] += 1
            await _notify(context, len(batch))

        await _mark_success(context)
    except Exception as e:
        logger.error(f"Error syncing source {source.id} ({source.url}): {e}")
        await _mark_failure(context, str(e) or e.__class__.__name__)
        return SyncResult.failure(str(e) or e.__class__.__name__)

    logger.info(
        f"Source {source.id} synced: {counts['added']} added, {counts['updated']} updated "
        f"({len(selected)} candidates, {'incremental' if filter_recent else 'full'})"
    )
    return SyncResult(success=True, articles_added=counts["added"], articles_updated=counts["updated"])
