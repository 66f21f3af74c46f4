import time
from datetime import datetime, timezone

from parsers import date_value_to_timestamp, parse_entry_timestamp


class DummyEntry(dict):
    """Dict that also exposes attributes like feedparser entries."""

    def __getattr__(self, item):
        try:
            return self[item]
        except KeyError as exc:  # pragma: no cover - mirrors feedparser behavior
            raise AttributeError(item) from exc


def test_parse_date_without_weekday():
    entry = DummyEntry(
        pubDate="17 Nov 2025 00:00:00 +0000",
        id="https://example.com/2025/11/17/post",
    )

    expected = int(datetime(2025, 11, 17, tzinfo=timezone.utc).timestamp())
    assert parse_entry_timestamp(entry) == expected


def test_parse_rfc822_date_with_weekday():
    entry = DummyEntry(published="Sat, 15 Nov 2025 16:00:00 +0000")

    expected = int(datetime(2025, 11, 15, 16, 0, tzinfo=timezone.utc).timestamp())
    assert parse_entry_timestamp(entry) == expected


def test_parsed_struct_is_treated_as_utc():
    struct = time.strptime("2025-06-01 12:00:00", "%Y-%m-%d %H:%M:%S")
    entry = DummyEntry(updated_parsed=struct)

    expected = int(datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc).timestamp())
    assert parse_entry_timestamp(entry) == expected


def test_date_in_entry_id_is_used_when_fields_are_missing():
    entry = DummyEntry(id="tag:example.com,2024-02-29:/posts/leap")

    expected = int(datetime(2024, 2, 29, tzinfo=timezone.utc).timestamp())
    assert parse_entry_timestamp(entry) == expected


def test_missing_date_falls_back_to_default_or_now():
    assert parse_entry_timestamp(DummyEntry(title="undated"), default=42) == 42

    before = int(time.time())
    assert parse_entry_timestamp(DummyEntry(published="not a date")) >= before


def test_date_value_variants():
    assert date_value_to_timestamp(None) is None
    assert date_value_to_timestamp(True) is None
    assert date_value_to_timestamp(1700000000) == 1700000000
    assert date_value_to_timestamp(datetime(2025, 1, 1)) == int(datetime(2025, 1, 1, tzinfo=timezone.utc).timestamp())
    assert date_value_to_timestamp("2025-01-01") == int(datetime(2025, 1, 1, tzinfo=timezone.utc).timestamp())
