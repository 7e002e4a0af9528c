"""Tests for the device-scoped overlay store."""

import json

import pytest

from mudo_memes import storage
from mudo_memes.errors import OverlayCorrupt
from mudo_memes.storage import OverlayStore


def test_missing_file_reads_as_empty(tmp_path):
    store = OverlayStore(tmp_path / "missing.json")
    assert store.read("liked") == set()
    assert store.read("deletedFallback") == set()


def test_write_then_read_round_trips_one_slot(tmp_path):
    store = OverlayStore(tmp_path / "o.json", "phone")
    assert store.write("saved", ["b", "a", "a"]) is True

    assert store.read("saved") == {"a", "b"}
    assert store.read("liked") == set()
    data = json.loads((tmp_path / "o.json").read_text(encoding="utf-8"))
    assert data == {"phone": {"saved": ["a", "b"]}}


def test_devices_are_isolated(tmp_path):
    phone = OverlayStore(tmp_path / "o.json", "phone")
    laptop = phone.for_device("laptop")
    phone.write("liked", {"m1"})
    laptop.write("liked", {"m2"})

    assert phone.read("liked") == {"m1"}
    assert laptop.read("liked") == {"m2"}


@pytest.mark.parametrize(
    "content",
    [
        "{broken",
        json.dumps(["not", "an", "object"]),
        json.dumps({"dev": {"liked": "m1"}}),
        json.dumps({"dev": {"liked": [1, 2]}}),
        json.dumps({"dev": ["liked"]}),
    ],
)
def test_corrupt_content_raises(tmp_path, content):
    path = tmp_path / "o.json"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(OverlayCorrupt):
        OverlayStore(path, "dev").read("liked")


def test_write_replaces_corrupt_file(tmp_path):
    path = tmp_path / "o.json"
    path.write_text("{broken", encoding="utf-8")
    store = OverlayStore(path, "dev")

    assert store.write("liked", {"m1"}) is True
    assert store.read("liked") == {"m1"}


def test_write_rejects_unknown_slot(tmp_path):
    with pytest.raises(ValueError):
        OverlayStore(tmp_path / "o.json").write("favourites", [])


def test_write_failure_returns_false(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    store = OverlayStore(blocker / "o.json")
    assert store.write("liked", {"m1"}) is False


def test_failed_write_keeps_other_devices_intact(tmp_path, monkeypatch):
    path = tmp_path / "o.json"
    other = OverlayStore(path, "other")
    mine = other.for_device("mine")
    other.write("liked", {"x"})
    mine.write("deletedFallback", {"3"})

    real_dump = json.dump
    failures = []

    def half_dump(obj, fp, **kwargs):
        if not failures:
            failures.append(obj)
            fp.write('{"other": {"li')
            raise OSError("disk full")
        return real_dump(obj, fp, **kwargs)

    monkeypatch.setattr(storage.json, "dump", half_dump)

    assert mine.write("liked", {"m1"}) is False
    assert other.read("liked") == {"x"}
    assert mine.read("liked") == set()

    assert mine.write("liked", {"m1"}) is True
    assert other.read("liked") == {"x"}
    assert mine.read("deletedFallback") == {"3"}
    assert [p.name for p in tmp_path.iterdir()] == ["o.json"]
