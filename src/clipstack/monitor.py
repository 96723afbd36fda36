import logging
import plistlib
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from urllib.parse import urlsplit

from clipstack.blobs import BlobStore
from clipstack.classifier import is_hex_color
from clipstack.config import MAX_ENTRIES, MAX_IMAGE_SIZE, MAX_TEXT_SIZE, POLL_INTERVAL
from clipstack.models import ClipboardPayload, ColorPayload, HistoryEntry, ImagePayload, TextPayload, new_entry_id
from clipstack.pasteboard import (
    IMAGE_TYPES,
    TYPE_CHROMIUM_SOURCE_URL,
    TYPE_STRING,
    TYPE_WEB_ARCHIVE,
    ClipboardSource,
)
from clipstack.privacy import PrivacyFilter
from clipstack.storage import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class Capture:
    payload: ClipboardPayload
    source_app: str | None
    host: str | None = None
    image_bytes: bytes | None = None


class ClipboardMonitor:
    """Polls the clipboard and commits every new capture to the store.

    ``check_clipboard`` is one tick. ``start`` runs ticks on a daemon thread
    every ``poll_interval`` seconds until ``stop``; a tick that is already
    running is allowed to finish.
    """

    def __init__(
        self,
        clipboard: ClipboardSource,
        storage: RecordStore,
        blobs: BlobStore,
        privacy: PrivacyFilter | None = None,
        on_capture: Callable[[HistoryEntry], None] | None = None,
        before_commit: Callable[[], None] | None = None,
        poll_interval: float = POLL_INTERVAL,
        max_entries: int = MAX_ENTRIES,
    ):
        self._clipboard = clipboard
        self._storage = storage
        self._blobs = blobs
        self._privacy = privacy or PrivacyFilter()
        self._on_capture = on_capture
        self._before_commit = before_commit
        self._poll_interval = poll_interval
        self._max_entries = max_entries
        self._last_change_count = clipboard.change_count()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run, args=(self._stop_event,), daemon=True, name="ClipboardMonitor"
        )
        self._thread.start()
        logger.info("Clipboard monitor started (interval %.1fs)", self._poll_interval)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop_event.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            logger.info("Clipboard monitor stopped")

    def restart(self, poll_interval: float | None = None) -> None:
        self.stop()
        if poll_interval is not None:
            self._poll_interval = poll_interval
        self.start()

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self._poll_interval):
            self.check_clipboard()

    def sync_change_count(self) -> None:
        self._last_change_count = self._clipboard.change_count()

    def check_clipboard(self) -> bool:
        try:
            current_count = self._clipboard.change_count()
        except Exception:
            logger.exception("Error reading clipboard change count")
            return False
        if current_count == self._last_change_count:
            return False

        self._last_change_count = current_count

        try:
            capture = self._read_clipboard()
            if capture is None:
                return False

            if self._privacy.is_blocked(capture.source_app, capture.host):
                logger.debug("Blocked by privacy settings: app=%s host=%s", capture.source_app, capture.host)
                return False

            entry = self._commit(capture)
        except Exception:
            logger.exception("Error processing clipboard change")
            return False

        if self._on_capture:
            try:
                self._on_capture(entry)
            except Exception:
                logger.exception("Capture listener failed")
        return True

    def _commit(self, capture: Capture) -> HistoryEntry:
        with self._storage.exclusive():
            if self._before_commit:
                self._before_commit()

            existing = self._storage.find_by_payload(capture.payload)

            if capture.image_bytes is not None:
                self._blobs.put(capture.image_bytes)

            if existing is None:
                entry = HistoryEntry.create(capture.payload, capture.source_app)
                self._storage.insert(entry)
                self._storage.purge_old(self._max_entries)
            else:
                # Re-capture counts as the most recent use: new position and time.
                entry = HistoryEntry(
                    id=new_entry_id(),
                    payload=capture.payload,
                    created_at=datetime.now(),
                    source_app=capture.source_app,
                    is_pinned=existing.is_pinned,
                    copy_count=existing.copy_count + 1,
                    custom_metadata=existing.custom_metadata,
                )
                self._storage.replace(existing.id, entry)
        return entry

    def _read_clipboard(self) -> Capture | None:
        types = self._clipboard.types()
        if not types:
            return None

        # Apps often put a textual fallback next to an image; the image wins.
        if any(t in types for t in IMAGE_TYPES):
            capture = self._read_image()
            if capture:
                return capture

        if TYPE_STRING in types:
            return self._read_text()

        return None

    def _read_image(self) -> Capture | None:
        png_bytes = self._clipboard.read_png()
        if not png_bytes:
            return None

        if len(png_bytes) > MAX_IMAGE_SIZE:
            logger.warning("Image too large (%d bytes), skipping", len(png_bytes))
            return None

        return Capture(
            payload=ImagePayload(BlobStore.key_for(png_bytes)),
            source_app=self._clipboard.frontmost_app(),
            image_bytes=png_bytes,
        )

    def _read_text(self) -> Capture | None:
        text = self._clipboard.string_for_type(TYPE_STRING)
        if not text:
            return None

        trimmed = text.strip()
        if not trimmed:
            return None

        if len(trimmed.encode("utf-8")) > MAX_TEXT_SIZE:
            logger.warning("Text too large (%d characters), skipping", len(trimmed))
            return None

        source_app = self._clipboard.frontmost_app()
        if is_hex_color(trimmed):
            return Capture(payload=ColorPayload(trimmed), source_app=source_app)

        source_url = self._recover_source_url()
        return Capture(
            payload=TextPayload(trimmed, source_url),
            source_app=source_app,
            host=_host_of(source_url),
        )

    def _recover_source_url(self) -> str | None:
        url = self._clipboard.string_for_type(TYPE_CHROMIUM_SOURCE_URL)
        if url:
            return url.strip() or None

        archive = self._clipboard.data_for_type(TYPE_WEB_ARCHIVE)
        if not archive:
            return None
        try:
            plist = plistlib.loads(archive)
        except Exception:
            logger.debug("Unreadable web archive on clipboard", exc_info=True)
            return None
        main_resource = plist.get("WebMainResource") if isinstance(plist, dict) else None
        if not isinstance(main_resource, dict):
            return None
        url = main_resource.get("WebResourceURL")
        return url if isinstance(url, str) and url else None


def _host_of(url: str | None) -> str | None:
    if not url:
        return None
    try:
        return urlsplit(url).hostname
    except ValueError:
        return None
