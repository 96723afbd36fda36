import logging
import queue
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path

from clipstack.blobs import BlobStore
from clipstack.config import (
    FILTER_OFFLOAD_THRESHOLD,
    HISTORY_LOAD_LIMIT,
    MAX_ENTRIES,
    POLL_INTERVAL,
    SAVE_DEBOUNCE,
)
from clipstack.migration import migrate_legacy_history
from clipstack.models import ClipboardPayload, ColorPayload, HistoryEntry, ImagePayload, TextPayload
from clipstack.monitor import ClipboardMonitor
from clipstack.pasteboard import ClipboardSource
from clipstack.privacy import PrivacyFilter
from clipstack.storage import RecordStore
from clipstack.utils import DebouncedCall

logger = logging.getLogger(__name__)


class DateCategory(str, Enum):
    TODAY = "Today"
    YESTERDAY = "Yesterday"
    THIS_WEEK = "This Week"
    THIS_MONTH = "This Month"
    OLDER = "Older"


def date_category(created_at: datetime, now: datetime) -> DateCategory:
    day = created_at.date()
    today = now.date()
    if day == today:
        return DateCategory.TODAY
    if day == today - timedelta(days=1):
        return DateCategory.YESTERDAY
    if day.isocalendar()[:2] == today.isocalendar()[:2]:
        return DateCategory.THIS_WEEK
    if (day.year, day.month) == (today.year, today.month):
        return DateCategory.THIS_MONTH
    return DateCategory.OLDER


def categorize(
    entries: list[HistoryEntry], now: datetime | None = None
) -> list[tuple[DateCategory, list[HistoryEntry]]]:
    """Group entries into time buckets, keeping their order; empty buckets are dropped."""
    now = now or datetime.now()
    buckets: dict[DateCategory, list[HistoryEntry]] = {category: [] for category in DateCategory}
    for entry in entries:
        buckets[date_category(entry.created_at, now)].append(entry)
    return [(category, items) for category, items in buckets.items() if items]


def filter_entries(entries: list[HistoryEntry], query: str) -> list[HistoryEntry]:
    if not query:
        return list(entries)
    return [entry for entry in entries if entry.matches(query)]


class HistoryService:
    """In-memory view of the clipboard history.

    Owns the store, the blob directory and the monitor. The entry list and
    everything derived from it belong to the foreground: the monitor thread
    only hands captures over through a queue, and ``pump()`` folds them in.

    Field edits (pin, text, metadata) are written back through a debounced
    writer so a burst of edits costs one store pass. Deletes go straight to
    the store because they release image files.
    """

    def __init__(
        self,
        storage: RecordStore,
        blobs: BlobStore,
        clipboard: ClipboardSource,
        privacy: PrivacyFilter | None = None,
        legacy_path: str | Path | None = None,
        save_delay: float = SAVE_DEBOUNCE,
        load_limit: int = HISTORY_LOAD_LIMIT,
        offload_threshold: int = FILTER_OFFLOAD_THRESHOLD,
        poll_interval: float = POLL_INTERVAL,
        max_entries: int = MAX_ENTRIES,
    ):
        self._storage = storage
        self._blobs = blobs
        self._clipboard = clipboard
        self._legacy_path = legacy_path
        self._load_limit = load_limit
        self._offload_threshold = offload_threshold
        self._max_entries = max_entries

        self._entries: list[HistoryEntry] = []
        self._filtered: list[HistoryEntry] = []
        self.pinned_items: list[HistoryEntry] = []
        self.categorized: list[tuple[DateCategory, list[HistoryEntry]]] = []
        self.visual_history: list[HistoryEntry] = []
        self.selected_id: str | None = None

        self._query = ""
        self._query_generation = 0
        self._pending_filter: tuple[int, Future] | None = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="clipstack-filter")

        self._captures: queue.SimpleQueue[HistoryEntry] = queue.SimpleQueue()
        # Rows the writer touched: (ids now stale in memory, id of the stored row or None).
        self._written: queue.SimpleQueue[tuple[set[str], str | None]] = queue.SimpleQueue()
        # entry id -> (payload the entry had before editing, edited entry)
        self._pending_writes: dict[str, tuple[ClipboardPayload, HistoryEntry]] = {}
        self._pending_lock = threading.Lock()
        self._saver = DebouncedCall(self._write_pending, save_delay)
        self._listeners: list[Callable[[], None]] = []

        self.monitor = ClipboardMonitor(
            clipboard,
            storage,
            blobs,
            privacy,
            on_capture=self._captures.put,
            before_commit=self.flush,
            poll_interval=poll_interval,
            max_entries=max_entries,
        )

    # -- lifecycle --------------------------------------------------------

    def start(self) -> None:
        migrate_legacy_history(self._storage, self._legacy_path, self._blobs)
        self.load()
        self.monitor.start()

    def load(self) -> None:
        self._entries = self._storage.load_recent(self._load_limit)
        self._apply_filter()

    def close(self) -> None:
        self.monitor.stop()
        self.flush()
        self._executor.shutdown(wait=False, cancel_futures=True)

    def add_listener(self, listener: Callable[[], None]) -> None:
        self._listeners.append(listener)

    # -- projection -------------------------------------------------------

    @property
    def entries(self) -> list[HistoryEntry]:
        return list(self._entries)

    @property
    def filtered(self) -> list[HistoryEntry]:
        return list(self._filtered)

    @property
    def query(self) -> str:
        return self._query

    def set_query(self, query: str) -> None:
        self._query = query
        self._apply_filter()

    def pump(self) -> bool:
        """Fold in queued captures, written edits and finished filter results.

        Call from the foreground. Returns True when the projection changed.
        Queued items only name rows; their current version is read back from
        the store, since an edit or a re-capture may have replaced them since.
        """
        changed = False
        while True:
            try:
                entry = self._captures.get_nowait()
            except queue.Empty:
                break
            stored = self._latest(entry.id)
            if stored is not None:
                self._apply_capture(stored)
                changed = True

        while True:
            try:
                stale_ids, entry_id = self._written.get_nowait()
            except queue.Empty:
                break
            self._apply_written(stale_ids, self._latest(entry_id) if entry_id else None)
            changed = True

        if changed:
            changed = self._apply_filter()
        return self._collect_filter_result() or changed

    def wait_for_filter(self, timeout: float | None = None) -> bool:
        if self._pending_filter is None:
            return False
        _, future = self._pending_filter
        future.exception(timeout)
        return self._collect_filter_result()

    def _apply_capture(self, entry: HistoryEntry) -> None:
        key = entry.dedup_key
        entries = [e for e in self._entries if e.dedup_key != key]
        entries.insert(0, entry)

        # Mirror the store's retention: pinned entries plus the newest unpinned ones.
        unpinned = 0
        kept = []
        for e in entries:
            if not e.is_pinned:
                unpinned += 1
                if unpinned > self._max_entries:
                    continue
            kept.append(e)
        self._entries = kept[: self._load_limit]

    def _apply_written(self, stale_ids: set[str], stored: HistoryEntry | None) -> None:
        """Swap stale entries for the stored row, keeping the list position."""
        position = None
        entries = []
        for e in self._entries:
            if e.id in stale_ids or (stored is not None and (e.id == stored.id or e.dedup_key == stored.dedup_key)):
                if position is None:
                    position = len(entries)
                continue
            entries.append(e)
        if stored is not None and position is not None:
            entries.insert(position, stored)
        self._entries = entries

    def _apply_filter(self) -> bool:
        """Recompute the filtered list; returns False when the work was offloaded."""
        self._query_generation += 1
        query = self._query
        snapshot = list(self._entries)

        if not query or len(snapshot) <= self._offload_threshold:
            self._pending_filter = None
            self._set_filtered(filter_entries(snapshot, query))
            return True

        future = self._executor.submit(filter_entries, snapshot, query)
        self._pending_filter = (self._query_generation, future)
        return False

    def _collect_filter_result(self) -> bool:
        if self._pending_filter is None:
            return False
        generation, future = self._pending_filter
        if not future.done():
            return False
        self._pending_filter = None
        if generation != self._query_generation:
            return False
        try:
            result = future.result()
        except Exception:
            logger.exception("Filtering history failed")
            return False
        self._set_filtered(result)
        return True

    def _set_filtered(self, entries: list[HistoryEntry]) -> None:
        self._filtered = entries
        pinned = [e for e in entries if e.is_pinned]
        recent = [e for e in entries if not e.is_pinned]
        self.pinned_items = pinned
        self.categorized = categorize(recent)
        self.visual_history = pinned + recent
        self.ensure_selection()
        self._notify()

    def _notify(self) -> None:
        for listener in self._listeners:
            try:
                listener()
            except Exception:
                logger.exception("History listener failed")

    # -- selection --------------------------------------------------------

    @property
    def selected_entry(self) -> HistoryEntry | None:
        return self._find(self.selected_id) if self.selected_id else None

    def select(self, entry_id: str | None) -> None:
        self.selected_id = entry_id

    def ensure_selection(self) -> None:
        if self.selected_id and any(e.id == self.selected_id for e in self.visual_history):
            return
        self.selected_id = self.visual_history[0].id if self.visual_history else None

    def move_selection(self, offset: int) -> str | None:
        history = self.visual_history
        if not history:
            return None

        ids = [e.id for e in history]
        current = ids.index(self.selected_id) if self.selected_id in ids else -1
        if current == 0 and offset < 0:
            return self.selected_id
        if current == len(ids) - 1 and offset > 0:
            return self.selected_id

        new_index = max(0, min(current + offset, len(ids) - 1))
        self.selected_id = ids[new_index]
        return self.selected_id

    # -- mutations --------------------------------------------------------

    def toggle_pin(self, entry_id: str) -> bool | None:
        entry = self._find(entry_id)
        if entry is None:
            return None
        updated = replace(entry, is_pinned=not entry.is_pinned)
        self._update_entry(updated)
        return updated.is_pinned

    def update_text(self, entry_id: str, new_text: str) -> bool:
        entry = self._find(entry_id)
        if entry is None or not isinstance(entry.payload, TextPayload) or not new_text.strip():
            return False
        payload = TextPayload(new_text, entry.payload.source_url)
        if payload == entry.payload:
            return False

        updated = replace(entry, payload=payload)
        other = next(
            (e for e in self._entries if e.id != entry_id and e.dedup_key == updated.dedup_key), None
        )
        if other is not None:
            # Only one entry per payload: the edited entry absorbs the twin.
            updated = replace(
                updated,
                copy_count=updated.copy_count + other.copy_count,
                is_pinned=updated.is_pinned or other.is_pinned,
                custom_metadata=updated.custom_metadata or other.custom_metadata,
            )
            self._forget(other.id)
            self._storage.delete(other.id)
        self._update_entry(updated)
        return True

    def set_metadata(self, entry_id: str, metadata: str | None) -> bool:
        entry = self._find(entry_id)
        if entry is None:
            return False
        metadata = metadata.strip() if metadata else None
        self._update_entry(replace(entry, custom_metadata=metadata or None))
        return True

    def delete(self, entry_id: str) -> bool:
        if self._find(entry_id) is None:
            return False
        self._forget(entry_id)
        self._storage.delete(entry_id)
        if self.selected_id == entry_id:
            self.selected_id = None
        self._apply_filter()
        return True

    def delete_all(self) -> None:
        self._saver.cancel()
        with self._pending_lock:
            self._pending_writes.clear()
        self._storage.delete_all()
        self._entries = []
        self.selected_id = None
        self._apply_filter()

    def copy_to_clipboard(self, entry_id: str) -> bool:
        """Put an entry back on the clipboard.

        The monitor then sees the change like any other copy. Only the text
        body is written, so a text entry with a source URL comes back as a
        new entry without one; any other entry moves to the front with its
        copy count bumped.
        """
        entry = self._find(entry_id)
        if entry is None:
            return False
        payload = entry.payload
        if isinstance(payload, TextPayload):
            self._clipboard.write_text(payload.body)
        elif isinstance(payload, ColorPayload):
            self._clipboard.write_text(payload.hex_code)
        elif isinstance(payload, ImagePayload):
            data = self._blobs.get(payload.blob_key)
            if data is None:
                logger.warning("Image %s is missing, cannot copy", payload.blob_key[:12])
                return False
            self._clipboard.write_png(data)
        else:
            raise TypeError(f"Unknown payload: {payload!r}")
        return True

    def _find(self, entry_id: str) -> HistoryEntry | None:
        return next((e for e in self._entries if e.id == entry_id), None)

    def _latest(self, entry_id: str) -> HistoryEntry | None:
        """The unsaved edit of an entry if there is one, else its stored row."""
        with self._pending_lock:
            pending = self._pending_writes.get(entry_id)
        if pending is not None:
            return pending[1]
        return self._storage.get(entry_id)

    def _forget(self, entry_id: str) -> None:
        with self._pending_lock:
            self._pending_writes.pop(entry_id, None)
        self._entries = [e for e in self._entries if e.id != entry_id]

    def _update_entry(self, updated: HistoryEntry) -> None:
        current = self._find(updated.id)
        self._entries = [updated if e.id == updated.id else e for e in self._entries]
        with self._pending_lock:
            if updated.id in self._pending_writes:
                original = self._pending_writes[updated.id][0]
            else:
                original = current.payload if current is not None else updated.payload
            self._pending_writes[updated.id] = (original, updated)
        self._saver.schedule()
        self._apply_filter()

    # -- persistence ------------------------------------------------------

    def flush(self) -> None:
        """Write pending edits now instead of waiting for the debounce timer."""
        self._saver.cancel()
        self._write_pending()

    def _write_pending(self) -> None:
        with self._pending_lock:
            pending, self._pending_writes = self._pending_writes, {}
        if not pending:
            return

        results = []
        try:
            with self._storage.exclusive():
                for original, entry in pending.values():
                    results.append(self._write_edit(original, entry))
        except Exception:
            logger.exception("Saving history edits failed, will retry")
            with self._pending_lock:
                for entry_id, (original, entry) in pending.items():
                    newer = self._pending_writes.get(entry_id)
                    self._pending_writes[entry_id] = (original, newer[1] if newer else entry)
            self._saver.schedule()
            return

        for result in results:
            self._written.put(result)
        logger.debug("Saved %d edited entries", sum(1 for _, entry_id in results if entry_id))

    def _write_edit(self, original: ClipboardPayload, entry: HistoryEntry) -> tuple[set[str], str | None]:
        """Store one edited entry; the caller holds the store exclusively.

        Returns the ids that are stale in memory and the id of the row that
        now carries the edit, or None when the entry no longer exists.
        """
        stale = {entry.id}
        updated = entry
        if self._storage.get(entry.id) is None:
            # A re-capture replaced the row since the edit: apply it to the new row.
            target = self._storage.find_by_payload(original)
            if target is None:
                return stale, None
            updated = replace(
                target,
                payload=entry.payload,
                is_pinned=entry.is_pinned,
                custom_metadata=entry.custom_metadata,
            )

        twin = self._storage.find_by_payload(updated.payload)
        if twin is not None and twin.id != updated.id:
            # Captured while the edit was pending; only one row per payload.
            updated = replace(
                updated,
                copy_count=updated.copy_count + twin.copy_count,
                is_pinned=updated.is_pinned or twin.is_pinned,
                custom_metadata=updated.custom_metadata or twin.custom_metadata,
            )
            self._storage.delete(twin.id, release_blob=False)
            stale.add(twin.id)

        self._storage.insert(updated)
        return stale, updated.id
