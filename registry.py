#!/usr/bin/env python3
"""
Handler registry: type-keyed lookup plus ordered URL classification.
"""

from typing import Dict, List, Optional

from aiohttp import ClientSession

from config import get_logger
from entities import DetectionResult, SourceType
from handlers import SourceHandler
from podcast import PodcastHandler
from rss import RSSHandler
from youtube import YouTubeHandler

logger = get_logger("registry")


class HandlerRegistry:
    """Ordered collection of source handlers.

    Detection tries handlers in registration order, so more specific
    families must be registered before the generic syndication fallback.
    """

    def __init__(self) -> None:
        self._by_type: Dict[SourceType, SourceHandler] = {}
        self._ordered: List[SourceHandler] = []

    def register(self, handler: SourceHandler) -> None:
        for source_type in handler.source_types:
            self._by_type[source_type] = handler
        if handler not in self._ordered:
            self._ordered.append(handler)
            logger.debug(f"Registered {handler!r}")

    def unregister(self, handler: SourceHandler) -> None:
        for source_type in handler.source_types:
            if self._by_type.get(source_type) is handler:
                del self._by_type[source_type]
        if handler in self._ordered:
            self._ordered.remove(handler)

    def get_handler(self, source_type) -> Optional[SourceHandler]:
        try:
            return self._by_type.get(SourceType(source_type))
        except ValueError:
            return None

    def handlers(self) -> List[SourceHandler]:
        return list(self._ordered)

    def get_supported_types(self) -> List[SourceType]:
        return list(self._by_type.keys())

    def is_type_supported(self, source_type) -> bool:
        return self.get_handler(source_type) is not None

    async def detect(self, url: str) -> DetectionResult:
        """Classify `url` with the first handler that recognises it.

        A handler that raises is skipped. A handler that claims the URL but
        cannot resolve it ends the search with its error.
        """
        url = (url or "").strip()
        for handler in self._ordered:
            try:
                result = await handler.detect_url(url)
            except Exception as e:
                logger.error(f"Error in {handler.display_name} detection for {url}: {e}")
                continue
            if result.detected:
                result.handler = handler
                return result
            if result.error:
                logger.info(f"{handler.display_name} could not classify {url}: {result.error}")
                result.handler = handler
                return result
        return DetectionResult(detected=False, error=f"No handler recognised {url}")

    async def get_handler_for_url(self, url: str) -> Optional[SourceHandler]:
        detection = await self.detect(url)
        return detection.handler if detection.detected else None


def create_default_registry(session: Optional[ClientSession] = None) -> HandlerRegistry:
    """Registry with the built-in handlers in detection priority order."""
    youtube = YouTubeHandler(session)
    registry = HandlerRegistry()
    registry.register(youtube)
    registry.register(PodcastHandler(session, youtube=youtube))
    registry.register(RSSHandler(session))
    return registry
