from parsers import entry_content_html, first_of, get_entry_value, normalize_entry_identity


def test_normalize_entry_identity_basic():
    title, url = normalize_entry_identity(
        "  Example Title  ",
        "https://example.com/a/very/long/path" + "?" + "x" * 2050,
    )
    assert title == "Example Title"
    assert len(url) == 2048
    assert url.startswith("https://example.com/a/very/long/path?")


def test_normalize_entry_identity_missing_values():
    assert normalize_entry_identity(None, None) == ("", "")
    assert normalize_entry_identity("   ", " http://example.com ") == ("", "http://example.com")


def test_long_titles_are_bounded():
    title, _ = normalize_entry_identity("t" * 600, "https://example.com")
    assert len(title) == 500


class AttrEntry:
    title = "From attribute"


def test_field_access_accepts_dicts_and_objects():
    assert get_entry_value({"title": "From dict"}, "title") == "From dict"
    assert get_entry_value(AttrEntry(), "title") == "From attribute"
    assert get_entry_value(None, "title") is None
    assert first_of({"summary": "", "description": "fallback"}, "summary", "description") == "fallback"


def test_content_encoded_wins_over_summary():
    entry = {"content": [{"value": "<p>full</p>"}], "summary": "<p>short</p>"}
    assert entry_content_html(entry) == "<p>full</p>"
    assert entry_content_html({"description": "desc"}) == "desc"
    assert entry_content_html({}) == ""
