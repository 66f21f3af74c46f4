from config import config
from main import build_parser


def test_sync_accepts_item_cap():
    args = build_parser().parse_args(["sync", "--full", "--max-items", "0", "--source", "3"])

    assert args.full is True
    assert args.max_items == 0
    assert args.source == 3
    assert build_parser().parse_args(["sync"]).max_items is None


def test_schema_path_prefers_override_then_module_dir(monkeypatch, tmp_path):
    monkeypatch.setenv("SCHEMA_FILE_PATH", "/etc/feed-sync/schema.sql")
    assert config._resolve_schema_path(str(tmp_path)) == "/etc/feed-sync/schema.sql"

    monkeypatch.delenv("SCHEMA_FILE_PATH")
    (tmp_path / "schema.sql").write_text("-- schema")
    assert config._resolve_schema_path(str(tmp_path)) == str(tmp_path / "schema.sql")


def test_schema_path_falls_back_to_installed_data_file(monkeypatch, tmp_path):
    monkeypatch.delenv("SCHEMA_FILE_PATH", raising=False)
    installed = tmp_path / "prefix" / "share" / "feed-sync"
    installed.mkdir(parents=True)
    (installed / "schema.sql").write_text("-- schema")
    monkeypatch.setattr("sys.prefix", str(tmp_path / "prefix"))

    assert config._resolve_schema_path(str(tmp_path / "site-packages")) == str(installed / "schema.sql")
