from __future__ import annotations

from iptv_matcher.utils import (
    coerce_int,
    entry_identifier,
    expand_env,
    load_yaml_file,
    parse_leading_year,
)


def test_expand_env_walks_nested_structures(monkeypatch) -> None:
    monkeypatch.setenv("LIB_ROOT", "/srv/iptv")
    data = {"library": {"path": "$LIB_ROOT/library.yaml"}, "items": ["${LIB_ROOT}", 3]}

    assert expand_env(data) == {"library": {"path": "/srv/iptv/library.yaml"}, "items": ["/srv/iptv", 3]}


def test_load_yaml_file_empty_document(tmp_path) -> None:
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    assert load_yaml_file(path) == {}


def test_entry_identifier_is_stable_and_prefixed() -> None:
    first = entry_identifier("iptv", "Heat", "http://example.com/heat.mkv")
    assert first == entry_identifier("iptv", "Heat", "http://example.com/heat.mkv")
    assert first.startswith("iptv_")
    assert len(first) == len("iptv_") + 16
    assert first != entry_identifier("iptv", "Heat", "http://example.com/other.mkv")


def test_parse_leading_year() -> None:
    assert parse_leading_year("2019–2023") == 2019
    assert parse_leading_year("1995") == 1995
    assert parse_leading_year(2001) == 2001
    assert parse_leading_year("N/A") is None
    assert parse_leading_year(None) is None


def test_coerce_int() -> None:
    assert coerce_int("3") == 3
    assert coerce_int(" 12 ") == 12
    assert coerce_int("x") is None
    assert coerce_int(True) is None
    assert coerce_int(None) is None
