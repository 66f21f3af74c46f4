import pytest

from utils import (
    chunked,
    count_words,
    estimate_reading_time,
    extract_domain,
    make_excerpt,
    parse_duration,
    parse_iso8601_duration,
    validate_url,
)


@pytest.mark.parametrize("value, expected", [
    ("90", 90),
    ("01:30", 90),
    ("1:02:03", 3723),
    ("01:02:03", 3723),
    (45, 45),
    ("  600 ", 600),
    ("", None),
    (None, None),
    ("abc", None),
    ("1:2:3:4", None),
    ("12.5", None),
    ("-10", None),
])
def test_parse_duration(value, expected):
    assert parse_duration(value) == expected


@pytest.mark.parametrize("value, expected", [
    ("PT1H2M3S", 3723),
    ("PT4M13S", 253),
    ("PT45S", 45),
    ("P1DT1S", 86401),
    ("P0D", 0),
    ("PT", None),
    ("P", None),
    ("1:02:03", None),
    (None, None),
])
def test_parse_iso8601_duration(value, expected):
    assert parse_iso8601_duration(value) == expected


def test_chunked_keeps_order_and_remainder():
    assert list(chunked(range(12), 5)) == [[0, 1, 2, 3, 4], [5, 6, 7, 8, 9], [10, 11]]
    assert list(chunked([], 5)) == []
    with pytest.raises(ValueError):
        list(chunked([1], 0))


def test_excerpt_is_plain_text_and_bounded():
    html = "<p>" + "word " * 200 + "</p>"
    excerpt = make_excerpt(html)

    assert "<" not in excerpt
    assert len(excerpt) == 300
    assert excerpt.endswith("...")
    assert make_excerpt("<p></p>") is None


def test_reading_time_rounds_up():
    text = "word " * 251
    assert count_words(text) == 251
    assert estimate_reading_time(text) == 2
    assert estimate_reading_time("") == 0


def test_url_helpers():
    assert validate_url("https://example.com/feed")
    assert not validate_url("ftp://example.com")
    assert not validate_url("https://localhost")
    assert extract_domain("https://www.example.com/path") == "example.com"
