from datetime import datetime

import pytest

from clipstack.blobs import BlobStore
from clipstack.models import ClipboardPayload, HistoryEntry, TextPayload, new_entry_id
from clipstack.pasteboard import TYPE_PNG, TYPE_STRING
from clipstack.storage import RecordStore


def _png_bytes(width: int = 100, height: int = 50, filler: bytes = b"\x00") -> bytes:
    """PNG signature and IHDR dimensions followed by filler bytes."""
    header = b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR"
    return header + width.to_bytes(4, "big") + height.to_bytes(4, "big") + filler * 100


class FakeClipboard:
    """In-memory stand-in for the system pasteboard."""

    def __init__(self):
        self.count = 0
        self.items: dict[str, str | bytes] = {}
        self.app: str | None = "Terminal"
        self.written: list[tuple[str, str | bytes]] = []

    def set_text(self, text: str, **extra) -> None:
        self.items = {TYPE_STRING: text, **extra}
        self.count += 1

    def set_image(self, data: bytes, fallback_text: str | None = None) -> None:
        items: dict[str, str | bytes] = {TYPE_PNG: data}
        if fallback_text is not None:
            items[TYPE_STRING] = fallback_text
        self.items = items
        self.count += 1

    def change_count(self) -> int:
        return self.count

    def types(self) -> list[str]:
        return list(self.items)

    def string_for_type(self, pb_type: str) -> str | None:
        value = self.items.get(pb_type)
        return value if isinstance(value, str) else None

    def data_for_type(self, pb_type: str) -> bytes | None:
        value = self.items.get(pb_type)
        return value if isinstance(value, bytes) else None

    def read_png(self) -> bytes | None:
        return self.data_for_type(TYPE_PNG)

    def frontmost_app(self) -> str | None:
        return self.app

    def write_text(self, text: str) -> None:
        self.written.append(("text", text))
        self.set_text(text)

    def write_png(self, data: bytes) -> None:
        self.written.append(("png", data))
        self.set_image(data)


@pytest.fixture
def make_png():
    return _png_bytes


@pytest.fixture
def blobs(tmp_path):
    return BlobStore(tmp_path / "images")


@pytest.fixture
def storage(blobs):
    mgr = RecordStore(db_path=":memory:", blobs=blobs)
    yield mgr
    mgr.close()


@pytest.fixture
def clipboard():
    return FakeClipboard()


@pytest.fixture
def make_entry():
    """Factory fixture to create HistoryEntry instances for testing."""

    def _make_entry(
        text: str = "hello world",
        payload: ClipboardPayload | None = None,
        created_at: datetime | None = None,
        source_app: str | None = None,
        is_pinned: bool = False,
        copy_count: int = 1,
        custom_metadata: str | None = None,
    ) -> HistoryEntry:
        return HistoryEntry(
            id=new_entry_id(),
            payload=payload if payload is not None else TextPayload(text),
            created_at=created_at or datetime.now(),
            source_app=source_app,
            is_pinned=is_pinned,
            copy_count=copy_count,
            custom_metadata=custom_metadata,
        )

    return _make_entry
