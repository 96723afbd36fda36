import logging
import sqlite3
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from clipstack.blobs import BlobStore
from clipstack.config import DB_PATH, MAX_ENTRIES
from clipstack.models import (
    ClipboardPayload,
    HistoryEntry,
    ImagePayload,
    PayloadKind,
    TextPayload,
    payload_content,
    payload_from_parts,
    payload_key,
    payload_kind,
)

logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS history_entries (
    seq             INTEGER PRIMARY KEY AUTOINCREMENT,
    id              TEXT NOT NULL UNIQUE,
    kind            TEXT NOT NULL CHECK(kind IN ('text', 'color', 'image')),
    content         TEXT NOT NULL,
    source_url      TEXT,
    payload_hash    TEXT NOT NULL,
    created_at      TEXT NOT NULL,
    source_app      TEXT,
    is_pinned       INTEGER NOT NULL DEFAULT 0,
    copy_count      INTEGER NOT NULL DEFAULT 1,
    custom_metadata TEXT
);

CREATE INDEX IF NOT EXISTS idx_payload_hash ON history_entries(payload_hash);

CREATE VIRTUAL TABLE IF NOT EXISTS history_fts USING fts5(
    content,
    source_app,
    content='history_entries',
    content_rowid='seq'
);
"""

# Image rows index the word "Image" instead of their blob key.
FTS_TRIGGERS = """
CREATE TRIGGER IF NOT EXISTS history_ai AFTER INSERT ON history_entries BEGIN
    INSERT INTO history_fts(rowid, content, source_app)
    VALUES (new.seq, CASE new.kind WHEN 'image' THEN 'Image' ELSE new.content END, new.source_app);
END;

CREATE TRIGGER IF NOT EXISTS history_ad AFTER DELETE ON history_entries BEGIN
    INSERT INTO history_fts(history_fts, rowid, content, source_app)
    VALUES ('delete', old.seq, CASE old.kind WHEN 'image' THEN 'Image' ELSE old.content END, old.source_app);
END;

CREATE TRIGGER IF NOT EXISTS history_au AFTER UPDATE OF kind, content, source_app ON history_entries BEGIN
    INSERT INTO history_fts(history_fts, rowid, content, source_app)
    VALUES ('delete', old.seq, CASE old.kind WHEN 'image' THEN 'Image' ELSE old.content END, old.source_app);
    INSERT INTO history_fts(rowid, content, source_app)
    VALUES (new.seq, CASE new.kind WHEN 'image' THEN 'Image' ELSE new.content END, new.source_app);
END;
"""

REINDEX = """
INSERT INTO history_fts(history_fts) VALUES ('delete-all');
INSERT INTO history_fts(rowid, content, source_app)
    SELECT seq, CASE kind WHEN 'image' THEN 'Image' ELSE content END, source_app FROM history_entries;
"""

INDEX_VERSION = 1

UPSERT = """
INSERT INTO history_entries
    (id, kind, content, source_url, payload_hash, created_at, source_app, is_pinned, copy_count, custom_metadata)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    kind = excluded.kind,
    content = excluded.content,
    source_url = excluded.source_url,
    payload_hash = excluded.payload_hash,
    created_at = excluded.created_at,
    source_app = excluded.source_app,
    is_pinned = excluded.is_pinned,
    copy_count = excluded.copy_count,
    custom_metadata = excluded.custom_metadata
"""


class RecordStore:
    """History table plus its full-text index.

    The connection is shared between the monitor thread and the foreground,
    so every public method takes the store lock. ``exclusive()`` exposes the
    same lock for read-modify-write sequences such as dedup-then-insert.
    """

    def __init__(self, db_path: str | Path | None = None, blobs: BlobStore | None = None):
        self._db_path = str(db_path) if db_path else str(DB_PATH)
        self._blobs = blobs
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self.init_db()

    def init_db(self) -> None:
        with self._lock:
            self._conn.executescript(SCHEMA)
            self._migrate_schema()
            self._conn.executescript(FTS_TRIGGERS)
            self._conn.commit()

    def _migrate_schema(self) -> None:
        """Bring a database written by an earlier release up to date."""
        cursor = self._conn.execute("PRAGMA table_info(history_entries)")
        columns = {row[1] for row in cursor.fetchall()}
        if "source_url" not in columns:
            self._conn.execute("ALTER TABLE history_entries ADD COLUMN source_url TEXT")
        if "custom_metadata" not in columns:
            self._conn.execute("ALTER TABLE history_entries ADD COLUMN custom_metadata TEXT")

        version = self._conn.execute("PRAGMA user_version").fetchone()[0]
        if version < INDEX_VERSION:
            # Earlier releases indexed image blob keys as text.
            for trigger in ("history_ai", "history_ad", "history_au"):
                self._conn.execute(f"DROP TRIGGER IF EXISTS {trigger}")
            self._conn.executescript(FTS_TRIGGERS + REINDEX)
            self._conn.execute(f"PRAGMA user_version = {INDEX_VERSION}")
            logger.debug("Rebuilt search index (version %d)", INDEX_VERSION)

    @contextmanager
    def exclusive(self) -> Iterator["RecordStore"]:
        with self._lock:
            yield self

    def insert(self, entry: HistoryEntry) -> None:
        with self._lock:
            self._conn.execute(UPSERT, self._entry_params(entry))
            self._conn.commit()

    def insert_many(self, entries: Iterable[HistoryEntry]) -> int:
        """Upsert all entries in one transaction; nothing is kept on failure."""
        with self._lock:
            inserted = 0
            try:
                for entry in entries:
                    self._conn.execute(UPSERT, self._entry_params(entry))
                    inserted += 1
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
            return inserted

    def replace(self, old_id: str, entry: HistoryEntry) -> None:
        """Swap one row for another in a single transaction; no blob is released."""
        with self._lock:
            try:
                self._conn.execute("DELETE FROM history_entries WHERE id = ?", (old_id,))
                self._conn.execute(UPSERT, self._entry_params(entry))
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def get(self, entry_id: str) -> HistoryEntry | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM history_entries WHERE id = ?", (entry_id,)
            ).fetchone()
        return self._first_entry(row)

    def find_by_payload(self, payload: ClipboardPayload) -> HistoryEntry | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM history_entries WHERE payload_hash = ? ORDER BY seq DESC LIMIT 1",
                (payload_key(payload),),
            ).fetchone()
        return self._first_entry(row)

    def load_recent(self, limit: int | None = None) -> list[HistoryEntry]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM history_entries ORDER BY seq DESC LIMIT ?",
                (-1 if limit is None else limit,),
            ).fetchall()
        return self._rows_to_entries(rows)

    def search(self, query: str, limit: int = 25) -> list[HistoryEntry]:
        sanitized = self._sanitize_fts_query(query)
        if not sanitized:
            return []
        with self._lock:
            try:
                rows = self._conn.execute(
                    """SELECT e.* FROM history_entries e
                       JOIN history_fts f ON e.seq = f.rowid
                       WHERE history_fts MATCH ?
                       ORDER BY e.seq DESC
                       LIMIT ?""",
                    (sanitized, limit),
                ).fetchall()
            except sqlite3.OperationalError:
                logger.debug("Unusable search query %r", query, exc_info=True)
                return []
        return self._rows_to_entries(rows)

    def delete(self, entry_id: str, release_blob: bool = True) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT kind, content FROM history_entries WHERE id = ?", (entry_id,)
            ).fetchone()
            if row is None:
                return False
            self._conn.execute("DELETE FROM history_entries WHERE id = ?", (entry_id,))
            self._conn.commit()
            if release_blob and row["kind"] == PayloadKind.IMAGE.value:
                self._release_blob(row["content"])
        return True

    def delete_all(self) -> None:
        with self._lock:
            rows = self._conn.execute(
                "SELECT DISTINCT content FROM history_entries WHERE kind = ?",
                (PayloadKind.IMAGE.value,),
            ).fetchall()
            self._conn.execute("DELETE FROM history_entries")
            self._conn.commit()
            for row in rows:
                self._release_blob(row["content"])

    def purge_old(self, keep_count: int | None = None) -> int:
        keep = keep_count if keep_count is not None else MAX_ENTRIES
        with self._lock:
            rows = self._conn.execute(
                """SELECT id FROM history_entries
                   WHERE is_pinned = 0
                   ORDER BY seq DESC
                   LIMIT -1 OFFSET ?""",
                (keep,),
            ).fetchall()
            deleted = 0
            for row in rows:
                if self.delete(row["id"]):
                    deleted += 1
        if deleted:
            logger.info("Purged %d old entries", deleted)
        return deleted

    def count(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) AS cnt FROM history_entries").fetchone()
        return row["cnt"]

    def count_blob_references(self, blob_key: str) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) AS cnt FROM history_entries WHERE payload_hash = ?",
                (payload_key(ImagePayload(blob_key)),),
            ).fetchone()
        return row["cnt"]

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def _release_blob(self, blob_key: str) -> None:
        # Only the last row pointing at a blob owns its file.
        if self._blobs is None or self.count_blob_references(blob_key):
            return
        self._blobs.delete(blob_key)

    @staticmethod
    def _sanitize_fts_query(query: str) -> str:
        # Quote each token to prevent FTS5 syntax errors from special chars
        tokens = query.split()
        if not tokens:
            return ""
        quoted = ['"' + token.replace('"', '""') + '"*' for token in tokens]
        return " ".join(quoted)

    @staticmethod
    def _entry_params(entry: HistoryEntry) -> tuple:
        payload = entry.payload
        return (
            entry.id,
            payload_kind(payload).value,
            payload_content(payload),
            payload.source_url if isinstance(payload, TextPayload) else None,
            payload_key(payload),
            entry.created_at.isoformat(),
            entry.source_app,
            int(entry.is_pinned),
            entry.copy_count,
            entry.custom_metadata,
        )

    def _first_entry(self, row: sqlite3.Row | None) -> HistoryEntry | None:
        if row is None:
            return None
        entries = self._rows_to_entries([row])
        return entries[0] if entries else None

    def _rows_to_entries(self, rows: list[sqlite3.Row]) -> list[HistoryEntry]:
        entries = []
        for row in rows:
            try:
                entries.append(self._row_to_entry(row))
            except (ValueError, TypeError, KeyError):
                logger.warning("Skipping unreadable history row %r", row["id"])
        return entries

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> HistoryEntry:
        payload = payload_from_parts(row["kind"], row["content"], row["source_url"])
        if isinstance(payload, ImagePayload) and not BlobStore.is_valid_key(payload.blob_key):
            raise ValueError(f"Invalid blob key {payload.blob_key!r}")
        return HistoryEntry(
            id=row["id"],
            payload=payload,
            created_at=datetime.fromisoformat(row["created_at"]),
            source_app=row["source_app"],
            is_pinned=bool(row["is_pinned"]),
            copy_count=max(1, int(row["copy_count"])),
            custom_metadata=row["custom_metadata"],
        )
