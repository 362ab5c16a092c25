"""Unit tests for MemeStore against a temporary SQLite database."""

import sqlite3

import pytest

from init_database import init_database
from meme_store import MemeStore, StoreError, normalize_meme


def test_insert_creates_uploaded_meme(store):
    meme_id = store.insert_meme("cat.png", "/tmp/cat.png", "abc", "https://cdn/cat.png")
    meme = store.get_meme(meme_id)

    assert meme['annotation_status'] == 'uploaded'
    assert meme['file_name'] == "cat.png"
    assert meme['uploaded_meme_url'] == "https://cdn/cat.png"
    assert meme['heroes'] == []
    assert meme['other_roles'] == []
    assert meme['ocr_text'] == ''
    assert meme['context'] == ''


def test_update_overwrites_role_list(store, add_meme):
    meme = add_meme(heroes=["Thor"])
    store.update(meme['id'], {'heroes': ["Thor", "Loki"], 'sentiment': 'positive'})

    updated = store.get_meme(meme['id'])
    assert updated['heroes'] == ["Thor", "Loki"]
    assert updated['sentiment'] == 'positive'
    # Untouched fields stay as they were
    assert updated['villains'] == []


def test_update_keeps_unicode_roles(store, add_meme):
    meme = add_meme()
    store.update(meme['id'], {'victims': ["Ünïcode", "日本"]})
    assert store.get_meme(meme['id'])['victims'] == ["Ünïcode", "日本"]


def test_update_unknown_meme_raises(store):
    with pytest.raises(StoreError, match="not found"):
        store.update(9999, {'ocr_text': 'x'})


def test_update_rejects_unknown_fields(store, add_meme):
    meme = add_meme()
    with pytest.raises(StoreError, match="unknown field"):
        store.update(meme['id'], {'id': 5})


def test_update_with_no_fields_is_noop(store, add_meme):
    meme = add_meme()
    store.update(meme['id'], {})
    assert store.get_meme(meme['id'])['ocr_text'] == ''


def test_list_memes_in_id_order(store, add_meme):
    first = add_meme("a.png")
    second = add_meme("b.png")
    assert [m['id'] for m in store.list_memes()] == [first['id'], second['id']]


def test_find_by_hash(store):
    meme_id = store.insert_meme("a.png", "/tmp/a.png", "deadbeef", "u")
    assert store.find_by_hash("deadbeef") == meme_id
    assert store.find_by_hash("other") is None


def test_status_counts(store, add_meme):
    add_meme()
    add_meme(annotation_status='half_annotated')
    add_meme(annotation_status='half_annotated')
    assert store.status_counts() == {'uploaded': 1, 'half_annotated': 2}


def test_missing_table_raises_store_error(tmp_path):
    empty = tmp_path / "empty.db"
    sqlite3.connect(empty).close()
    with pytest.raises(StoreError):
        MemeStore(str(empty)).list_memes()


def test_init_database_is_idempotent(db_path):
    init_database(db_path)
    init_database(db_path)
    assert MemeStore(db_path).list_memes() == []


def test_normalize_meme_fills_missing_fields():
    meme = normalize_meme({'id': 3, 'heroes': '["A"]', 'villains': 'not json', 'genre': None})
    assert meme['heroes'] == ["A"]
    assert meme['villains'] == []
    assert meme['genre'] == ''
    assert meme['annotation_status'] == 'uploaded'
