"""Menu layout computed from the history projection, independent of rumps."""

from collections.abc import Callable
from dataclasses import dataclass

from clipstack import __version__
from clipstack.blobs import BlobStore
from clipstack.config import MENU_DISPLAY_COUNT, PREVIEW_LENGTH
from clipstack.history import HistoryService
from clipstack.models import ColorPayload, HistoryEntry, ImagePayload, TextPayload
from clipstack.utils import get_image_dimensions, truncate_text


@dataclass
class MenuItemSpec:
    """Specification for a menu item, separating logic from rumps rendering."""

    title: str
    callback: Callable | None = None
    entry_id: str | None = None
    is_submenu: bool = False
    children: list["MenuItemSpec | None"] | None = None


@dataclass
class MenuActions:
    on_entry: Callable
    on_search: Callable
    on_show_all: Callable
    on_clear: Callable
    on_quit: Callable


def entry_title(entry: HistoryEntry, blobs: BlobStore | None = None) -> str:
    payload = entry.payload
    if isinstance(payload, TextPayload):
        title = truncate_text(payload.body, PREVIEW_LENGTH)
    elif isinstance(payload, ColorPayload):
        title = f"Color {payload.hex_code}"
    elif isinstance(payload, ImagePayload):
        title = _image_title(payload, blobs)
    else:
        raise TypeError(f"Unknown payload: {payload!r}")

    if entry.copy_count > 1:
        title = f"{title}  ×{entry.copy_count}"
    return title


def _image_title(payload: ImagePayload, blobs: BlobStore | None) -> str:
    if blobs is None or not blobs.exists(payload.blob_key):
        return "[Image]"
    with blobs.path_for(payload.blob_key).open("rb") as fh:
        width, height = get_image_dimensions(fh.read(24))
    return f"[Image: {width}x{height}]" if width > 0 else "[Image]"


def compute_menu_specs(
    service: HistoryService,
    actions: MenuActions,
    blobs: BlobStore | None = None,
    limit: int = MENU_DISPLAY_COUNT,
) -> list[MenuItemSpec | None]:
    specs: list[MenuItemSpec | None] = [
        MenuItemSpec(f"Clipstack v{__version__} - Clipboard History"),
        None,  # separator
        MenuItemSpec("Search...", callback=actions.on_search),
    ]
    if service.query:
        specs.append(MenuItemSpec(f'Showing results for "{service.query}"'))
        specs.append(MenuItemSpec("Show All", callback=actions.on_show_all))
    specs.append(None)

    def entry_spec(entry: HistoryEntry) -> MenuItemSpec:
        return MenuItemSpec(entry_title(entry, blobs), callback=actions.on_entry, entry_id=entry.id)

    if service.pinned_items:
        children: list[MenuItemSpec | None] = [entry_spec(e) for e in service.pinned_items]
        specs.append(MenuItemSpec("📌 Pinned", is_submenu=True, children=children))
        specs.append(None)

    remaining = limit
    for category, entries in service.categorized:
        if remaining <= 0:
            break
        specs.append(MenuItemSpec(category.value))
        for entry in entries[:remaining]:
            specs.append(entry_spec(entry))
        remaining -= len(entries)

    if not service.visual_history:
        specs.append(MenuItemSpec("(No matches)" if service.query else "(No clipboard history)"))

    specs.extend([
        None,
        MenuItemSpec("Clear History", callback=actions.on_clear),
        None,
        MenuItemSpec("Quit Clipstack", callback=actions.on_quit),
    ])
    return specs
