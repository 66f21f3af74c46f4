import pytest

from entities import Source, SourceType
from errors import SourceDetectionError
from registry import HandlerRegistry, create_default_registry
from syncer import SourceSyncService
from youtube import YouTubeHandler

from conftest import make_feed, make_item


def _service(store, feeds):
    """Service whose syndication handler serves canned feeds keyed by URL."""
    registry = create_default_registry()
    rss = registry.get_handler(SourceType.SYNDICATION)

    async def fake_fetch_feed(url):
        feed = feeds[url]
        if isinstance(feed, Exception):
            raise feed
        return feed

    rss.fetch_feed = fake_fetch_feed
    return SourceSyncService(registry, store)


def _source(n: int) -> Source:
    return Source(id=n, url=f"https://site{n}.example.com/feed.xml", type=SourceType.SYNDICATION)


@pytest.mark.asyncio
async def test_one_failing_source_does_not_stop_the_rest(memory_store):
    sources = [_source(1), _source(2), _source(3)]
    service = _service(memory_store, {
        sources[0].url: make_feed([make_item(1), make_item(2)]),
        sources[1].url: None,
        sources[2].url: make_feed([make_item(3)]),
    })
    completed = []

    summary = await service.sync_sources(sources, on_source_complete=lambda s, r: completed.append((s.id, r.success)))

    assert completed == [(1, True), (2, False), (3, True)]
    assert (summary.total_sources, summary.successful_syncs, summary.failed_syncs) == (3, 2, 1)
    assert summary.total_articles_added == 3
    assert memory_store.count(1) == 2
    assert memory_store.count(3) == 1
    assert summary.results[2].error == "Failed to fetch feed"


@pytest.mark.asyncio
async def test_handler_exceptions_become_failed_results(memory_store):
    sources = [_source(1), _source(2)]
    service = _service(memory_store, {
        sources[0].url: RuntimeError("parser exploded"),
        sources[1].url: make_feed([make_item(1)]),
    })

    summary = await service.sync_sources(sources, full_sync=True)

    assert summary.failed_syncs == 1
    assert summary.results[1].error == "parser exploded"
    assert summary.results[2].articles_added == 1
    assert sources[0].fetch_error == "parser exploded"


@pytest.mark.asyncio
async def test_unsupported_source_type_is_a_failed_result(memory_store):
    registry = HandlerRegistry()
    registry.register(YouTubeHandler())
    service = SourceSyncService(registry, memory_store)

    result = await service.sync_source(_source(1))

    assert not result.success
    assert "syndication" in result.error


@pytest.mark.asyncio
async def test_add_source_persists_canonical_feed_url(monkeypatch, memory_store):
    service = SourceSyncService(create_default_registry(), memory_store)
    youtube = service.registry.get_handler(SourceType.VIDEO_CHANNEL)

    async def fake_fetch_text(url, timeout=None):
        return '{"externalId":"UCchannel0000000000"}'

    monkeypatch.setattr(youtube, "fetch_text", fake_fetch_text)

    source = await service.add_source("https://www.youtube.com/@example", title="Example Channel")

    assert source.url == "https://www.youtube.com/feeds/videos.xml?channel_id=UCchannel0000000000"
    assert source.type is SourceType.VIDEO_CHANNEL
    assert source.title == "Example Channel"


@pytest.mark.asyncio
async def test_add_source_uses_detected_title(memory_store):
    service = SourceSyncService(create_default_registry(), memory_store)

    source = await service.add_source("https://www.example.com/blog/feed.xml")

    assert source.title == "example.com"
    assert source.type is SourceType.SYNDICATION


@pytest.mark.asyncio
async def test_add_source_rejects_unclassifiable_urls(memory_store):
    service = SourceSyncService(create_default_registry(), memory_store)

    with pytest.raises(SourceDetectionError) as excinfo:
        await service.add_source("https://open.spotify.com/show/abc123")

    assert excinfo.value.url == "https://open.spotify.com/show/abc123"
    assert "Spotify" in str(excinfo.value)
    assert memory_store.sources == {}


@pytest.mark.asyncio
async def test_fetch_feed_uses_owning_handler(memory_store):
    source = _source(1)
    feed = make_feed([make_item(1)])
    service = _service(memory_store, {source.url: feed})

    assert await service.fetch_feed(source) is feed


@pytest.mark.asyncio
async def test_sync_sources_applies_max_items_to_every_source(memory_store):
    sources = [_source(1), _source(2)]
    service = _service(memory_store, {
        sources[0].url: make_feed(make_item(n) for n in range(4)),
        sources[1].url: make_feed(make_item(n) for n in range(4, 10)),
    })

    summary = await service.sync_sources(sources, full_sync=True, max_items=2)

    assert summary.total_articles_added == 4
    assert (memory_store.count(1), memory_store.count(2)) == (2, 2)
