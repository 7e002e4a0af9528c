"""Tests for the fallback catalog loader and filtering helpers."""

import json

from mudo_memes.catalog.store import FALLBACK_MEMES, filter_memes, is_server_id, load_fallback_memes


def test_bundled_fallback_catalog_loads():
    assert len(FALLBACK_MEMES) >= 5
    memes_ids = [m.id for m in FALLBACK_MEMES]
    assert len(memes_ids) == len(set(memes_ids))
    assert not any(is_server_id(i) for i in memes_ids)
    assert all(m.owner_id is None for m in FALLBACK_MEMES)


def test_is_server_id():
    assert is_server_id("0f8fad5b-d9cb-469f-a165-70867728950e")
    assert is_server_id("0F8FAD5B-D9CB-469F-A165-70867728950E")
    assert not is_server_id("1")
    assert not is_server_id("mock-유재석-1")
    assert not is_server_id("")


def test_loader_skips_invalid_and_server_shaped_entries(tmp_path):
    path = tmp_path / "fallback.json"
    good = {"id": "a", "image_url": "/a.jpg", "title": "A", "quote": "q", "category": "길", "tags": ["사과"]}
    bad_tag = dict(good, id="b", tags=["행복"])
    server = dict(good, id="0f8fad5b-d9cb-469f-a165-70867728950e")
    path.write_text(json.dumps([good, bad_tag, server]), encoding="utf-8")

    assert [m.id for m in load_fallback_memes(path)] == ["a"]


def test_loader_tolerates_missing_file(tmp_path):
    assert load_fallback_memes(tmp_path / "nope.json") == []


def test_filter_memes_keeps_order_and_combines_criteria(fallback):
    assert [m.id for m in filter_memes(fallback)] == ["m1", "m2", "m3"]
    assert [m.id for m in filter_memes(fallback, q="O")] == ["m1", "m2"]
    assert [m.id for m in filter_memes(fallback, q="o", category="유재석")] == ["m1"]
    assert filter_memes(fallback, q="hello", category="하하") == []
