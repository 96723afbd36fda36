import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from functools import cached_property

from clipstack.config import REGEX_SCAN_LIMIT, SEARCH_CONTENT_LIMIT
from clipstack.utils import compute_hash


class PayloadKind(str, Enum):
    TEXT = "text"
    COLOR = "color"
    IMAGE = "image"


class SmartType(str, Enum):
    TEXT = "text"
    URL = "url"
    EMAIL = "email"
    CODE = "code"
    COLOR = "color"
    IMAGE = "image"

    @property
    def label(self) -> str:
        return _SMART_TYPE_LABELS[self]


_SMART_TYPE_LABELS = {
    SmartType.TEXT: "Text",
    SmartType.URL: "URL",
    SmartType.EMAIL: "Email",
    SmartType.CODE: "Code",
    SmartType.COLOR: "Color",
    SmartType.IMAGE: "Image",
}


@dataclass(frozen=True)
class TextPayload:
    body: str
    source_url: str | None = None


@dataclass(frozen=True)
class ColorPayload:
    hex_code: str


@dataclass(frozen=True)
class ImagePayload:
    blob_key: str


ClipboardPayload = TextPayload | ColorPayload | ImagePayload


def payload_kind(payload: ClipboardPayload) -> PayloadKind:
    if isinstance(payload, TextPayload):
        return PayloadKind.TEXT
    if isinstance(payload, ColorPayload):
        return PayloadKind.COLOR
    if isinstance(payload, ImagePayload):
        return PayloadKind.IMAGE
    raise TypeError(f"Unknown payload: {payload!r}")


def payload_content(payload: ClipboardPayload) -> str:
    """The single string column a payload is stored and indexed under."""
    if isinstance(payload, TextPayload):
        return payload.body
    if isinstance(payload, ColorPayload):
        return payload.hex_code
    if isinstance(payload, ImagePayload):
        return payload.blob_key
    raise TypeError(f"Unknown payload: {payload!r}")


def payload_from_parts(kind: str, content: str, source_url: str | None = None) -> ClipboardPayload:
    kind = PayloadKind(kind)
    if kind == PayloadKind.TEXT:
        return TextPayload(content, source_url)
    if kind == PayloadKind.COLOR:
        return ColorPayload(content)
    return ImagePayload(content)


def payload_key(payload: ClipboardPayload) -> str:
    """Dedup identity: equal payloads always share a key."""
    source_url = payload.source_url if isinstance(payload, TextPayload) else None
    canonical = "\x00".join((payload_kind(payload).value, payload_content(payload), source_url or ""))
    return compute_hash(canonical)


def new_entry_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class HistoryEntry:
    id: str
    payload: ClipboardPayload
    created_at: datetime
    source_app: str | None = None
    is_pinned: bool = False
    copy_count: int = 1
    custom_metadata: str | None = None

    @classmethod
    def create(cls, payload: ClipboardPayload, source_app: str | None = None) -> "HistoryEntry":
        return cls(id=new_entry_id(), payload=payload, created_at=datetime.now(), source_app=source_app)

    @cached_property
    def smart_type(self) -> SmartType:
        from clipstack.classifier import classify

        return classify(self.payload)

    @property
    def text_representation(self) -> str:
        if isinstance(self.payload, TextPayload):
            return self.payload.body
        if isinstance(self.payload, ColorPayload):
            return self.payload.hex_code
        return "Image"

    @cached_property
    def searchable_text(self) -> str:
        if isinstance(self.payload, TextPayload):
            parts = [self.payload.body[:SEARCH_CONTENT_LIMIT].lower()]
        elif isinstance(self.payload, ColorPayload):
            parts = [self.payload.hex_code.lower()]
        else:
            parts = ["image"]
        if self.source_app:
            parts.append(self.source_app.lower())
        parts.append(self.smart_type.label.lower())
        if self.custom_metadata:
            parts.append(self.custom_metadata.lower())
        return " ".join(parts)

    @cached_property
    def dedup_key(self) -> str:
        return payload_key(self.payload)

    def matches(self, query: str) -> bool:
        if query.startswith("/") and len(query) > 1:
            # Strict: a "/" query is always a pattern, never a plain search.
            try:
                pattern = re.compile(query[1:], re.IGNORECASE)
            except re.error:
                return False
            return pattern.search(self.text_representation[:REGEX_SCAN_LIMIT]) is not None

        terms = query.lower().split()
        return all(term in self.searchable_text for term in terms)
