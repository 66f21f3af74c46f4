import time
from typing import Any, Dict, List, Optional, Set

import pytest

from entities import FeedInfo, MediaInfo, MediaType, ProcessedContentItem, Source, SourceType


class MemoryStore:
    """In-memory content store and source registry."""

    def __init__(self):
        self.rows: Dict[tuple, Dict[str, Any]] = {}
        self.sources: Dict[int, Source] = {}
        self.status_updates: List[tuple] = []
        self.fail_keys: Set[str] = set()
        self.existence_checks = 0

    async def exists_by_dedup_key(self, table, source_id, keys):
        self.existence_checks += 1
        return {key for key in keys if (table, source_id, key) in self.rows}

    async def upsert_content_item(self, table, source_id, dedup_key, row, exists):
        if dedup_key in self.fail_keys:
            raise RuntimeError(f"write failed for {dedup_key}")
        outcome = "updated" if (table, source_id, dedup_key) in self.rows else "added"
        self.rows[(table, source_id, dedup_key)] = dict(row)
        return outcome

    async def update_source_status(self, source_id, error, fetched_at, fetch_count=None):
        self.status_updates.append((source_id, error, fetch_count))

    async def create_source(self, url, source_type, title=None, favicon_url=None):
        for source in self.sources.values():
            if source.url == url:
                return source
        source = Source(id=len(self.sources) + 1, url=url, type=SourceType(source_type), title=title)
        self.sources[source.id] = source
        return source

    async def get_source(self, source_id):
        return self.sources.get(source_id)

    async def list_sources(self):
        return list(self.sources.values())

    def count(self, source_id: Optional[int] = None) -> int:
        return sum(1 for (_, sid, _) in self.rows if source_id is None or sid == source_id)


def make_item(n: int, age: int = 60, url: Optional[str] = None, audio: bool = False) -> ProcessedContentItem:
    media = MediaInfo(MediaType.AUDIO, f"https://cdn.example.com/ep{n}.mp3") if audio else MediaInfo()
    return ProcessedContentItem(
        url=url or f"https://example.com/posts/{n}",
        title=f"Post {n}",
        published_at=int(time.time()) - age,
        media=media,
    )


def make_feed(items) -> FeedInfo:
    return FeedInfo(title="Example", items=list(items))


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def source():
    return Source(id=1, url="https://example.com/feed.xml", type=SourceType.SYNDICATION, title="Example")
