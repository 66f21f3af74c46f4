from entities import MediaType
from media import extract_episode_media, extract_media_info, extract_video_media
from parsers import parse_syndication_feed
from podcast import build_episode


def entry(**fields):
    return dict(fields)


def test_media_content_with_thumbnail_wins_over_thumbnail_alone():
    info = extract_media_info(entry(
        media_content=[{"url": "https://cdn.example.com/clip.mp4", "type": "video/mp4", "duration": "95"}],
        media_thumbnail=[{"url": "https://cdn.example.com/clip.jpg"}],
    ))

    assert info.media_type is MediaType.VIDEO
    assert info.media_url == "https://cdn.example.com/clip.mp4"
    assert info.thumbnail_url == "https://cdn.example.com/clip.jpg"
    assert info.duration == 95


def test_bare_thumbnail_is_an_image():
    info = extract_media_info(entry(media_thumbnail=[{"url": "https://cdn.example.com/t.jpg"}]))

    assert info.media_type is MediaType.IMAGE
    assert info.media_url == "https://cdn.example.com/t.jpg"


def test_audio_enclosure_takes_artwork_and_itunes_duration():
    info = extract_media_info(entry(
        enclosures=[{"href": "https://cdn.example.com/ep.mp3", "type": "audio/mpeg", "length": "1234"}],
        image={"href": "https://cdn.example.com/cover.png"},
        itunes_duration="12:34",
    ))

    assert info.media_type is MediaType.AUDIO
    assert info.thumbnail_url == "https://cdn.example.com/cover.png"
    assert info.duration == 754


def test_youtube_iframe_gets_predictable_thumbnail():
    info = extract_media_info(entry(
        summary='<p>Watch:</p><iframe src="https://www.youtube.com/embed/dQw4w9WgXcQ?rel=0"></iframe><img src="https://example.com/a.png">',
    ))

    assert info.media_type is MediaType.VIDEO
    assert info.media_url.startswith("https://www.youtube.com/embed/dQw4w9WgXcQ")
    assert info.thumbnail_url == "https://img.youtube.com/vi/dQw4w9WgXcQ/maxresdefault.jpg"


def test_first_inline_image_is_the_last_resort():
    info = extract_media_info(entry(summary='<p>Hi <img src="https://example.com/a.png"> there</p>'))
    assert (info.media_type, info.media_url) == (MediaType.IMAGE, "https://example.com/a.png")

    assert extract_media_info(entry(summary="plain text")).media_type is MediaType.NONE


def test_episode_without_enclosure_keeps_artwork_and_duration():
    info = extract_episode_media(entry(
        title="Episode 1",
        image={"href": "https://cdn.example.com/art.jpg"},
        itunes_duration="01:02:03",
    ))

    assert info.media_type is MediaType.AUDIO
    assert info.media_url is None
    assert info.thumbnail_url == "https://cdn.example.com/art.jpg"
    assert info.duration == 3723


def test_untyped_enclosure_with_audio_extension_is_the_episode_audio():
    info = extract_episode_media(entry(
        enclosures=[
            {"href": "https://cdn.example.com/cover.jpg", "type": "image/jpeg"},
            {"href": "https://cdn.example.com/ep.m4a?source=rss"},
        ],
    ))

    assert info.media_url == "https://cdn.example.com/ep.m4a?source=rss"


def test_malformed_duration_fails_closed():
    info = extract_episode_media(entry(itunes_duration="about an hour"))
    assert info.duration is None


def test_video_media_picks_largest_thumbnail():
    info = extract_video_media(entry(
        media_thumbnail=[
            {"url": "https://i.ytimg.com/vi/abc/default.jpg", "width": "120"},
            {"url": "https://i.ytimg.com/vi/abc/hqdefault.jpg", "width": "480"},
        ],
        media_content=[{"url": "https://www.youtube.com/v/abc", "duration": "300"}],
    ), "abc")

    assert info.media_type is MediaType.VIDEO
    assert info.media_url == "https://www.youtube.com/watch?v=abc"
    assert info.thumbnail_url == "https://i.ytimg.com/vi/abc/hqdefault.jpg"
    assert info.duration == 300


def test_video_media_falls_back_to_predictable_thumbnail():
    info = extract_video_media(entry(), "abc")
    assert info.thumbnail_url == "https://img.youtube.com/vi/abc/maxresdefault.jpg"


def test_build_episode_reads_itunes_numbering():
    episode = build_episode(entry(
        title="Ep 12: Things",
        link="https://show.example.com/12",
        enclosures=[{"href": "https://cdn.example.com/12.mp3", "type": "audio/mpeg"}],
        itunes_episode="12",
        itunes_season="2",
        itunes_explicit="yes",
        summary="<p>Show <b>notes</b></p>",
        published="Sat, 15 Nov 2025 16:00:00 +0000",
    ))

    assert episode.title == "Ep 12: Things"
    assert episode.media.media_url == "https://cdn.example.com/12.mp3"
    assert episode.metadata["episode_number"] == 12
    assert episode.metadata["season_number"] == 2
    assert episode.metadata["explicit"] is True
    assert episode.excerpt == "Show notes"


GROUPED_THUMBNAIL_FEED = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:media="http://search.yahoo.com/mrss/">
  <channel>
    <title>Clips</title>
    <link>https://e.com/</link>
    <item>
      <title>A clip</title>
      <link>https://e.com/clip</link>
      <media:thumbnail url="https://e.com/generic.jpg"/>
      <media:group>
        <media:content url="https://e.com/clip.mp4" type="video/mp4" duration="42"/>
        <media:thumbnail url="https://e.com/rich.jpg"/>
      </media:group>
    </item>
    <item>
      <title>Another clip</title>
      <link>https://e.com/other</link>
      <media:content url="https://e.com/other.mp4" type="video/mp4"/>
      <media:thumbnail url="https://e.com/other.jpg"/>
    </item>
  </channel>
</rss>
"""


def test_media_group_thumbnail_beats_standalone_thumbnail():
    grouped, plain = parse_syndication_feed(GROUPED_THUMBNAIL_FEED, "https://e.com/feed.xml").entries

    info = extract_media_info(grouped)
    assert info.media_type is MediaType.VIDEO
    assert info.media_url == "https://e.com/clip.mp4"
    assert info.thumbnail_url == "https://e.com/rich.jpg"
    assert info.duration == 42

    assert extract_media_info(plain).thumbnail_url == "https://e.com/other.jpg"
