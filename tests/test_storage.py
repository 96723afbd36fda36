import sqlite3
from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from clipstack.models import ColorPayload, ImagePayload, TextPayload
from clipstack.storage import RecordStore


class TestInsertAndRetrieve:
    def test_insert_and_get(self, storage, make_entry):
        entry = make_entry("test text", source_app="Terminal", custom_metadata="note")
        storage.insert(entry)
        found = storage.get(entry.id)
        assert found == entry

    def test_get_not_found(self, storage):
        assert storage.get("missing") is None

    def test_round_trips_every_payload_kind(self, storage, make_entry):
        entries = [
            make_entry(payload=TextPayload("page text", "https://example.com/a")),
            make_entry(payload=ColorPayload("#A1B2C3")),
            make_entry(payload=ImagePayload("ab" * 32)),
        ]
        for entry in entries:
            storage.insert(entry)
        assert [storage.get(e.id).payload for e in entries] == [e.payload for e in entries]

    def test_load_recent_newest_insert_first(self, storage, make_entry):
        first = make_entry("first")
        second = make_entry("second")
        storage.insert(first)
        storage.insert(second)
        assert [e.id for e in storage.load_recent()] == [second.id, first.id]

    def test_load_recent_limit(self, storage, make_entry):
        for i in range(10):
            storage.insert(make_entry(f"item {i}"))
        entries = storage.load_recent(limit=3)
        assert [e.text_representation for e in entries] == ["item 9", "item 8", "item 7"]

    def test_order_ignores_created_at(self, storage, make_entry):
        older = make_entry("older", created_at=datetime.now() - timedelta(days=30))
        storage.insert(make_entry("newer"))
        storage.insert(older)
        assert storage.load_recent()[0].id == older.id

    def test_upsert_keeps_position(self, storage, make_entry):
        first = make_entry("first")
        storage.insert(first)
        storage.insert(make_entry("second"))
        storage.insert(replace(first, is_pinned=True))
        entries = storage.load_recent()
        assert storage.count() == 2
        assert entries[1].id == first.id
        assert entries[1].is_pinned is True

    def test_insert_many(self, storage, make_entry):
        entries = [make_entry(f"item {i}") for i in range(3)]
        assert storage.insert_many(entries) == 3
        assert storage.count() == 3

    def test_insert_many_rolls_back(self, storage, make_entry):
        broken = make_entry("broken", payload=object())
        with pytest.raises(TypeError):
            storage.insert_many([make_entry("ok"), broken])
        assert storage.count() == 0

    def test_count(self, storage, make_entry):
        assert storage.count() == 0
        storage.insert(make_entry("one"))
        assert storage.count() == 1


class TestFindByPayload:
    def test_find(self, storage, make_entry):
        entry = make_entry("dup test")
        storage.insert(entry)
        assert storage.find_by_payload(TextPayload("dup test")).id == entry.id

    def test_not_found(self, storage):
        assert storage.find_by_payload(TextPayload("nothing")) is None

    def test_source_url_is_part_of_identity(self, storage, make_entry):
        storage.insert(make_entry(payload=TextPayload("same", "https://a.example")))
        assert storage.find_by_payload(TextPayload("same")) is None

    def test_kind_is_part_of_identity(self, storage, make_entry):
        storage.insert(make_entry(payload=ColorPayload("#fff")))
        assert storage.find_by_payload(TextPayload("#fff")) is None


class TestReplace:
    def test_replace_moves_to_front(self, storage, make_entry):
        old = make_entry("again")
        storage.insert(old)
        storage.insert(make_entry("other"))
        fresh = replace(old, id="fresh-id", copy_count=2)
        storage.replace(old.id, fresh)
        entries = storage.load_recent()
        assert entries[0].id == "fresh-id"
        assert entries[0].copy_count == 2
        assert storage.get(old.id) is None
        assert storage.count() == 2

    def test_replace_keeps_blob(self, storage, blobs, make_entry, make_png):
        key = blobs.put(make_png())
        old = make_entry(payload=ImagePayload(key))
        storage.insert(old)
        storage.replace(old.id, replace(old, id="fresh-id"))
        assert blobs.exists(key)


class TestSearch:
    def test_search_text(self, storage, make_entry):
        storage.insert(make_entry("python programming"))
        storage.insert(make_entry("javascript coding"))
        results = storage.search("python")
        assert [e.text_representation for e in results] == ["python programming"]

    def test_search_prefix(self, storage, make_entry):
        storage.insert(make_entry("python programming"))
        assert len(storage.search("prog")) == 1

    def test_search_source_app(self, storage, make_entry):
        storage.insert(make_entry("hello", source_app="Safari"))
        assert len(storage.search("safari")) == 1

    def test_search_no_results(self, storage, make_entry):
        storage.insert(make_entry("hello world"))
        assert storage.search("nonexistent") == []

    def test_search_limit(self, storage, make_entry):
        for i in range(10):
            storage.insert(make_entry(f"match item {i}"))
        assert len(storage.search("match", limit=3)) == 3

    def test_search_empty_query(self, storage, make_entry):
        storage.insert(make_entry("hello"))
        assert storage.search("   ") == []

    def test_search_special_characters_no_crash(self, storage, make_entry):
        storage.insert(make_entry("hello world"))
        assert isinstance(storage.search('test "quotes" AND OR NOT'), list)
        assert isinstance(storage.search("col:on * ( )"), list)

    def test_edited_content_is_reindexed(self, storage, make_entry):
        entry = make_entry("original wording")
        storage.insert(entry)
        storage.insert(replace(entry, payload=TextPayload("revised text")))
        assert storage.search("original") == []
        assert [e.id for e in storage.search("revised")] == [entry.id]

    def test_deleted_entry_not_found(self, storage, make_entry):
        entry = make_entry("temporary")
        storage.insert(entry)
        storage.delete(entry.id)
        assert storage.search("temporary") == []

    def test_image_key_not_indexed(self, storage, blobs, make_entry, make_png):
        key = blobs.put(make_png())
        entry = make_entry(payload=ImagePayload(key))
        storage.insert(entry)
        assert storage.search(key[:6]) == []
        assert storage.search(key) == []
        assert [e.id for e in storage.search("image")] == [entry.id]

    def test_deleted_image_leaves_index(self, storage, blobs, make_entry, make_png):
        entry = make_entry(payload=ImagePayload(blobs.put(make_png())))
        storage.insert(entry)
        storage.delete(entry.id)
        assert storage.search("image") == []


class TestDelete:
    def test_delete(self, storage, make_entry):
        entry = make_entry("to delete")
        storage.insert(entry)
        assert storage.delete(entry.id) is True
        assert storage.get(entry.id) is None

    def test_delete_missing(self, storage):
        assert storage.delete("missing") is False

    def test_delete_all(self, storage, make_entry):
        for i in range(5):
            storage.insert(make_entry(f"item {i}"))
        storage.delete_all()
        assert storage.count() == 0
        assert storage.search("item") == []

    def test_delete_all_removes_blobs(self, storage, blobs, make_entry, make_png):
        key = blobs.put(make_png())
        storage.insert(make_entry(payload=ImagePayload(key)))
        storage.delete_all()
        assert blobs.keys() == []

    def test_blob_removed_with_last_reference(self, storage, blobs, make_entry, make_png):
        key = blobs.put(make_png())
        entry = make_entry(payload=ImagePayload(key))
        storage.insert(entry)
        storage.delete(entry.id)
        assert not blobs.exists(key)

    def test_shared_blob_survives_first_delete(self, storage, blobs, make_entry, make_png):
        key = blobs.put(make_png())
        first = make_entry(payload=ImagePayload(key))
        second = make_entry(payload=ImagePayload(key))
        storage.insert(first)
        storage.insert(second)
        assert storage.count_blob_references(key) == 2
        storage.delete(first.id)
        assert blobs.exists(key)
        storage.delete(second.id)
        assert not blobs.exists(key)

    def test_delete_without_release(self, storage, blobs, make_entry, make_png):
        key = blobs.put(make_png())
        entry = make_entry(payload=ImagePayload(key))
        storage.insert(entry)
        storage.delete(entry.id, release_blob=False)
        assert blobs.exists(key)


class TestPurge:
    def test_purge_old(self, storage, make_entry):
        for i in range(10):
            storage.insert(make_entry(f"item {i}"))
        assert storage.purge_old(keep_count=5) == 5
        assert storage.count() == 5
        assert storage.load_recent()[-1].text_representation == "item 5"

    def test_purge_keeps_pinned(self, storage, make_entry):
        pinned = make_entry("pinned", is_pinned=True)
        storage.insert(pinned)
        for i in range(5):
            storage.insert(make_entry(f"item {i}"))
        storage.purge_old(keep_count=2)
        assert storage.get(pinned.id) is not None
        assert storage.count() == 3

    def test_purge_nothing_to_do(self, storage, make_entry):
        storage.insert(make_entry("only"))
        assert storage.purge_old(keep_count=5) == 0


class TestDurability:
    def test_corrupt_row_is_skipped(self, storage, make_entry):
        good = make_entry("good")
        storage.insert(good)
        storage._conn.execute(
            "INSERT INTO history_entries (id, kind, content, payload_hash, created_at) "
            "VALUES ('bad', 'text', 'x', 'h', 'not a date')"
        )
        storage._conn.commit()
        assert [e.id for e in storage.load_recent()] == [good.id]
        assert storage.get("bad") is None

    def test_image_row_with_bad_key_is_skipped(self, storage):
        storage._conn.execute(
            "INSERT INTO history_entries (id, kind, content, payload_hash, created_at) "
            "VALUES ('bad', 'image', '../etc/passwd', 'h', ?)",
            (datetime.now().isoformat(),),
        )
        storage._conn.commit()
        assert storage.load_recent() == []

    def test_reopen_file_database(self, tmp_path, blobs, make_entry):
        db_path = tmp_path / "history.db"
        entry = make_entry("persisted")
        with RecordStore(db_path, blobs) as store:
            store.insert(entry)
        with RecordStore(db_path, blobs) as store:
            assert store.get(entry.id) == entry
            assert len(store.search("persisted")) == 1

    def test_adds_missing_columns(self, tmp_path, blobs, make_entry):
        db_path = tmp_path / "old.db"
        conn = sqlite3.connect(db_path)
        conn.execute(
            """CREATE TABLE history_entries (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                kind TEXT NOT NULL,
                content TEXT NOT NULL,
                payload_hash TEXT NOT NULL,
                created_at TEXT NOT NULL,
                source_app TEXT,
                is_pinned INTEGER NOT NULL DEFAULT 0,
                copy_count INTEGER NOT NULL DEFAULT 1
            )"""
        )
        conn.commit()
        conn.close()

        entry = make_entry(payload=TextPayload("linked", "https://example.com"), custom_metadata="tag")
        with RecordStore(db_path, blobs) as store:
            store.insert(entry)
            assert store.get(entry.id) == entry

    def test_rebuilds_index_with_image_keys(self, tmp_path, blobs, make_entry, make_png):
        db_path = tmp_path / "history.db"
        key = blobs.put(make_png())
        with RecordStore(db_path, blobs) as store:
            # Index the way earlier releases did, with the raw blob key.
            store._conn.executescript(
                """
                DROP TRIGGER history_ai;
                CREATE TRIGGER history_ai AFTER INSERT ON history_entries BEGIN
                    INSERT INTO history_fts(rowid, content, source_app)
                    VALUES (new.seq, new.content, new.source_app);
                END;
                PRAGMA user_version = 0;
                """
            )
            store.insert(make_entry(payload=ImagePayload(key)))
            assert len(store.search(key[:6])) == 1

        with RecordStore(db_path, blobs) as store:
            assert store.search(key[:6]) == []
            assert len(store.search("image")) == 1
            store.delete_all()
            assert store.search("image") == []
