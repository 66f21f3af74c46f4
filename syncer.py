#!/usr/bin/env python3
"""
Source synchronization service.

Ties a handler registry to a content store: registers new sources from
arbitrary URLs and runs incremental or backfill syncs over one or many
sources. One source failing never stops the others.
"""

from typing import Awaitable, Callable, Iterable, Optional, Union
from inspect import isawaitable

from config import get_logger
from entities import DetectionResult, FeedInfo, HandlerContext, ProgressCallback, Source, SyncResult, SyncSummary
from errors import SourceDetectionError, UnsupportedSourceTypeError
from registry import HandlerRegistry
from telemetry import trace_span

logger = get_logger("syncer")

SourceCompleteCallback = Callable[[Source, SyncResult], Union[None, Awaitable[None]]]


class SourceSyncService:
    """Registers sources and synchronizes their content."""

    def __init__(self, registry: HandlerRegistry, store):
        self.registry = registry
        self.store = store

    async def detect(self, url: str) -> DetectionResult:
        return await self.registry.detect(url)

    @trace_span("syncer.add_source", tracer_name="syncer", attr_from_args=lambda self, url, title=None: {"source.url": url})
    async def add_source(self, url: str, title: Optional[str] = None) -> Source:
        """Classify `url` and persist it under its canonical feed address.

        Raises SourceDetectionError when no handler can classify the URL;
        nothing is stored in that case.
        """
        detection = await self.detect(url)
        if not detection.detected or not detection.feed_url or detection.source_type is None:
            raise SourceDetectionError(url, detection.error)

        favicon_url = None
        if detection.handler is not None:
            try:
                favicon_url = await detection.handler.get_favicon_url(detection.feed_url)
            except Exception as e:
                logger.warning(f"Could not resolve favicon for {detection.feed_url}: {e}")

        source = await self.store.create_source(
            detection.feed_url,
            detection.source_type,
            title=title or detection.suggested_title,
            favicon_url=favicon_url,
        )
        logger.info(f"Added {source.type.value} source {source.id}: {source.url}")
        return source

    def _handler_for(self, source: Source):
        handler = self.registry.get_handler(source.type)
        if handler is None:
            raise UnsupportedSourceTypeError(getattr(source.type, 'value', source.type))
        return handler

    async def fetch_feed(self, source: Source) -> Optional[FeedInfo]:
        """Fetch a source's feed without persisting anything."""
        return await self._handler_for(source).fetch_feed(source.url)

    async def sync_source(self, source: Source, on_item_processed: Optional[ProgressCallback] = None,
                          max_items: Optional[int] = None) -> SyncResult:
        """Incremental sync of recent items."""
        return await self._sync(source, False, on_item_processed, max_items)

    async def sync_source_full(self, source: Source, on_item_processed: Optional[ProgressCallback] = None,
                               max_items: Optional[int] = None) -> SyncResult:
        """Backfill sync ignoring the recency window."""
        return await self._sync(source, True, on_item_processed, max_items)

    async def _sync(self, source: Source, full: bool, on_item_processed, max_items) -> SyncResult:
        try:
            handler = self._handler_for(source)
        except UnsupportedSourceTypeError as e:
            logger.error(f"Source {source.id}: {e}")
            return SyncResult.failure(str(e))

        context = HandlerContext(
            store=self.store,
            source=source,
            on_item_processed=on_item_processed,
            max_items=max_items,
        )
        if full:
            return await handler.sync_all_content(context)
        return await handler.sync_content(context)

    async def sync_sources(self, sources: Iterable[Source], full_sync: bool = False,
                           on_source_complete: Optional[SourceCompleteCallback] = None,
                           max_items: Optional[int] = None) -> SyncSummary:
        """Sync sources one after the other and aggregate the outcome.

        `max_items` caps the items written per source (None: configured cap, <= 0: unbounded).
        """
        summary = SyncSummary()
        for source in sources:
            summary.total_sources += 1
            try:
                if full_sync:
                    result = await self.sync_source_full(source, max_items=max_items)
                else:
                    result = await self.sync_source(source, max_items=max_items)
            except Exception as e:
                logger.error(f"Unexpected error syncing source {source.id} ({source.url}): {e}")
                result = SyncResult.failure(str(e) or e.__class__.__name__)

            summary.record(source, result)
            if on_source_complete:
                outcome = on_source_complete(source, result)
                if isawaitable(outcome):
                    await outcome

        logger.info(
            f"Synced {summary.total_sources} sources: {summary.successful_syncs} ok, "
            f"{summary.failed_syncs} failed, {summary.total_articles_added} added, "
            f"{summary.total_articles_updated} updated"
        )
        return summary
