import logging

import rumps

from clipstack.blobs import BlobStore
from clipstack.config import DB_PATH, IMAGE_DIR, LEGACY_HISTORY_PATH, PRIVACY_PATH
from clipstack.history import HistoryService
from clipstack.menu import MenuActions, MenuItemSpec, compute_menu_specs
from clipstack.pasteboard import MacPasteboard
from clipstack.privacy import PrivacyFilter
from clipstack.storage import RecordStore
from clipstack.utils import ensure_dirs

logger = logging.getLogger(__name__)

PUMP_INTERVAL = 0.25  # seconds between folding captures into the menu


class ClipstackApp(rumps.App):
    def __init__(self):
        super().__init__("Clipstack", title="📋", quit_button=None)
        self._init_app()

    def _init_app(self) -> None:
        """Initialize app components. Separated for testability."""
        ensure_dirs()
        self._blobs = BlobStore(IMAGE_DIR)
        self._storage = RecordStore(DB_PATH, self._blobs)
        self._service = HistoryService(
            self._storage,
            self._blobs,
            MacPasteboard(),
            PrivacyFilter.load(PRIVACY_PATH),
            legacy_path=LEGACY_HISTORY_PATH,
        )
        self._actions = MenuActions(
            on_entry=self._on_entry_click,
            on_search=self._on_search,
            on_show_all=self._on_show_all,
            on_clear=self._on_clear,
            on_quit=self._on_quit,
        )
        self._service.start()
        self._build_menu()

    def _build_menu(self) -> None:
        self.menu.clear()
        specs = compute_menu_specs(self._service, self._actions, self._blobs)
        self.menu = [self._render_single_spec(spec) for spec in specs]

    def _render_single_spec(self, spec: MenuItemSpec | None) -> rumps.MenuItem | None:
        if spec is None:
            return None

        if spec.is_submenu and spec.children:
            submenu = rumps.MenuItem(spec.title)
            for child in spec.children:
                submenu.add(self._render_single_spec(child))
            return submenu

        item = rumps.MenuItem(spec.title, callback=spec.callback)
        if spec.entry_id is not None:
            item._id = spec.entry_id
        return item

    @rumps.timer(PUMP_INTERVAL)
    def _pump(self, _sender) -> None:
        if self._service.pump():
            self._build_menu()

    def _on_entry_click(self, sender) -> None:
        entry_id = getattr(sender, "_id", None)
        if entry_id is None:
            return

        # Option-click toggles the pin instead of copying
        try:
            from AppKit import NSAlternateKeyMask, NSEvent

            if NSEvent.modifierFlags() & NSAlternateKeyMask:
                pinned = self._service.toggle_pin(entry_id)
                if pinned is not None:
                    rumps.notification("Clipstack", "", "Pinned" if pinned else "Unpinned", sound=False)
                    self._build_menu()
                return
        except ImportError:
            logger.debug("AppKit unavailable, cannot read modifier keys")

        if self._service.copy_to_clipboard(entry_id):
            rumps.notification("Clipstack", "", "Copied to clipboard", sound=False)

    def _on_search(self, _sender) -> None:
        response = rumps.Window(
            message="Search clipboard history (start with / for a pattern):",
            title="Clipstack Search",
            default_text=self._service.query,
            ok="Search",
            cancel="Cancel",
            dimensions=(300, 24),
        ).run()

        if response.clicked:
            self._service.set_query(response.text.strip())
            self._service.wait_for_filter(timeout=2.0)
            self._build_menu()

    def _on_show_all(self, _sender) -> None:
        self._service.set_query("")
        self._build_menu()

    def _on_clear(self, _sender) -> None:
        if rumps.alert("Clipstack", "Clear all clipboard history?", ok="Clear", cancel="Cancel"):
            self._service.delete_all()
            self._build_menu()

    def _on_quit(self, _sender) -> None:
        self._service.close()
        self._storage.close()
        rumps.quit_application()
