"""Access to the system clipboard.

The monitor only talks to a ``ClipboardSource``. ``MacPasteboard`` is the
real implementation on top of the general NSPasteboard; AppKit is imported
when it is constructed so the rest of the package works without pyobjc.
"""

import logging
import os
from typing import Protocol

logger = logging.getLogger(__name__)

TYPE_STRING = "public.utf8-plain-text"
TYPE_PNG = "public.png"
TYPE_TIFF = "public.tiff"
TYPE_JPEG = "public.jpeg"
TYPE_IMAGE = "public.image"
TYPE_CHROMIUM_SOURCE_URL = "org.chromium.source-url"
TYPE_WEB_ARCHIVE = "Apple Web Archive pasteboard type"

IMAGE_TYPES = (TYPE_PNG, TYPE_TIFF, TYPE_JPEG, TYPE_IMAGE)

_NS_PNG_FILE_TYPE = 4  # NSBitmapImageFileTypePNG


class ClipboardSource(Protocol):
    def change_count(self) -> int: ...

    def types(self) -> list[str]: ...

    def string_for_type(self, pb_type: str) -> str | None: ...

    def data_for_type(self, pb_type: str) -> bytes | None: ...

    def read_png(self) -> bytes | None: ...

    def frontmost_app(self) -> str | None: ...

    def write_text(self, text: str) -> None: ...

    def write_png(self, data: bytes) -> None: ...


class MacPasteboard:
    def __init__(self):
        from AppKit import NSPasteboard

        self._pb = NSPasteboard.generalPasteboard()

    def change_count(self) -> int:
        return int(self._pb.changeCount())

    def types(self) -> list[str]:
        types = self._pb.types()
        return [str(t) for t in types] if types is not None else []

    def string_for_type(self, pb_type: str) -> str | None:
        value = self._pb.stringForType_(pb_type)
        return str(value) if value is not None else None

    def data_for_type(self, pb_type: str) -> bytes | None:
        data = self._pb.dataForType_(pb_type)
        return bytes(data) if data is not None else None

    def read_png(self) -> bytes | None:
        """Return the clipboard image re-encoded as PNG."""
        from AppKit import NSBitmapImageRep, NSImage

        image = NSImage.alloc().initWithPasteboard_(self._pb)
        if image is None:
            return None
        tiff_data = image.TIFFRepresentation()
        if not tiff_data:
            return None
        bitmap_rep = NSBitmapImageRep.imageRepWithData_(tiff_data)
        if not bitmap_rep:
            return None
        png_data = bitmap_rep.representationUsingType_properties_(_NS_PNG_FILE_TYPE, None)
        return bytes(png_data) if png_data else None

    def frontmost_app(self) -> str | None:
        from AppKit import NSWorkspace

        app = NSWorkspace.sharedWorkspace().frontmostApplication()
        if app is None or app.processIdentifier() == os.getpid():
            return None
        name = app.localizedName()
        return str(name) if name else None

    def write_text(self, text: str) -> None:
        from AppKit import NSPasteboardTypeString

        self._pb.clearContents()
        self._pb.setString_forType_(text, NSPasteboardTypeString)

    def write_png(self, data: bytes) -> None:
        from AppKit import NSPasteboardTypePNG
        from Foundation import NSData

        ns_data = NSData.dataWithBytes_length_(data, len(data))
        self._pb.clearContents()
        self._pb.setData_forType_(ns_data, NSPasteboardTypePNG)
