"""
Tests for the user library and the persisted key-value store.
"""

import pytest

from mirrortube import config
from mirrortube.library import UserLibrary
from mirrortube.models import HistoryItem
from mirrortube.storage import HISTORY_KEY, THUMBNAIL_SOURCE_KEY, StateStore


def item(video_id: str, **kwargs) -> HistoryItem:
    kwargs.setdefault("title", f"Video {video_id}")
    return HistoryItem(video_id=video_id, **kwargs)


# ─── StateStore ──────────────────────────────────────────────────────────────

def test_store_persists_to_disk(tmp_path):
    store = StateStore(tmp_path)
    store.set_item("tube_language", "ja")
    store.set_json("tube_api_priority", ["piped"])

    reloaded = StateStore(tmp_path)
    assert reloaded.get_item("tube_language") == "ja"
    assert reloaded.get_json("tube_api_priority") == ["piped"]
    assert len(reloaded) == 2


def test_store_corrupt_file_starts_empty(tmp_path):
    (tmp_path / config.STATE_FILENAME).write_text("{broken", encoding="utf-8")
    store = StateStore(tmp_path)
    assert len(store) == 0

    store.set_item("k", "v")
    assert StateStore(tmp_path).get_item("k") == "v"


def test_store_malformed_values_read_as_default(store):
    store.set_item("json", "[unterminated")
    store.set_item("ts", "yesterday")
    assert store.get_json("json", []) == []
    assert store.get_timestamp("ts") == 0.0
    assert store.get_timestamp("missing") == 0.0


def test_store_remove_and_clear(store):
    store.set_item("a", "1")
    store.remove_item("a")
    store.remove_item("never-set")
    assert "a" not in store

    store.set_item("b", "2")
    store.clear()
    assert len(store) == 0


# ─── Auth & language ─────────────────────────────────────────────────────────

def test_auth_flag(store):
    library = UserLibrary(store)
    assert not library.is_authenticated()
    library.set_authenticated(True)
    assert library.is_authenticated()
    library.logout()
    assert not library.is_authenticated()


def test_language(store):
    library = UserLibrary(store)
    assert library.get_language() is None
    library.set_language("en")
    assert library.get_language() == "en"


# ─── History ─────────────────────────────────────────────────────────────────

def test_history_most_recent_first_and_deduped(store):
    library = UserLibrary(store)
    library.add_to_history(item("aaaaaaaaaaa"))
    library.add_to_history(item("bbbbbbbbbbb"))
    history = library.add_to_history(item("aaaaaaaaaaa", title="Updated"))

    assert [h.video_id for h in history] == ["aaaaaaaaaaa", "bbbbbbbbbbb"]
    assert history[0].title == "Updated"
    assert history[0].timestamp > 0


def test_history_is_capped(store):
    library = UserLibrary(store, history_limit=100)
    for i in range(105):
        library.add_to_history(item(f"vid{i:08d}"))

    history = library.get_history()
    assert len(history) == 100
    assert history[0].video_id == "vid00000104"
    assert history[-1].video_id == "vid00000005"


def test_history_drops_malformed_entries(store):
    store.set_json(HISTORY_KEY, [{"video_id": "aaaaaaaaaaa"}, {"title": "no id"}, "junk"])
    assert [h.video_id for h in UserLibrary(store).get_history()] == ["aaaaaaaaaaa"]


def test_clear_history(store):
    library = UserLibrary(store)
    library.add_to_history(item("aaaaaaaaaaa"))
    library.clear_history()
    assert library.get_history() == []


# ─── Favorites ───────────────────────────────────────────────────────────────

def test_favorites(store):
    library = UserLibrary(store)
    library.add_to_favorites(item("aaaaaaaaaaa"))
    library.add_to_favorites(item("bbbbbbbbbbb"))
    favorites = library.add_to_favorites(item("aaaaaaaaaaa"))

    assert [f.video_id for f in favorites] == ["aaaaaaaaaaa", "bbbbbbbbbbb"]
    assert library.is_favorite("bbbbbbbbbbb")

    library.remove_from_favorites("bbbbbbbbbbb")
    assert not library.is_favorite("bbbbbbbbbbb")


def test_favorites_are_unbounded(store):
    library = UserLibrary(store, history_limit=3)
    for i in range(5):
        library.add_to_favorites(item(f"vid{i:08d}"))
    assert len(library.get_favorites()) == 5


# ─── Preferences ─────────────────────────────────────────────────────────────

def test_preferred_quality_default(store):
    library = UserLibrary(store)
    assert library.get_preferred_quality() == config.DEFAULT_QUALITY
    library.set_preferred_quality("1080p")
    assert library.get_preferred_quality() == "1080p"


def test_thumbnail_source(store):
    library = UserLibrary(store)
    assert library.get_thumbnail_source() == "i.ytimg.com"

    library.set_thumbnail_source("img.youtube.com")
    assert library.get_thumbnail_source() == "img.youtube.com"

    with pytest.raises(ValueError):
        library.set_thumbnail_source("evil.test")

    store.set_item(THUMBNAIL_SOURCE_KEY, "tampered.test")
    assert library.get_thumbnail_source() == "i.ytimg.com"
