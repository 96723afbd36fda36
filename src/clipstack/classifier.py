"""Semantic tagging of clipboard payloads."""

import re
from urllib.parse import urlsplit

from clipstack.models import ClipboardPayload, ColorPayload, ImagePayload, SmartType, TextPayload

HEX_COLOR_PATTERN = re.compile(r"#?(?:[A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})")
EMAIL_PATTERN = re.compile(r"[A-Z0-9a-z._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,64}")
CODE_INDICATORS = ("func ", "var ", "let ", "class ", "struct ", "import ", "{", "}", ";", "def ", "return ")


def is_hex_color(text: str) -> bool:
    return HEX_COLOR_PATTERN.fullmatch(text) is not None


def is_url(text: str) -> bool:
    text = text.strip()
    if not text or any(ch.isspace() for ch in text):
        return False
    try:
        parts = urlsplit(text)
        return bool(parts.scheme) and bool(parts.hostname)
    except ValueError:
        return False


def classify(payload: ClipboardPayload) -> SmartType:
    if isinstance(payload, ImagePayload):
        return SmartType.IMAGE
    if isinstance(payload, ColorPayload):
        return SmartType.COLOR
    if not isinstance(payload, TextPayload):
        raise TypeError(f"Unknown payload: {payload!r}")

    text = payload.body
    if is_url(text):
        return SmartType.URL
    if EMAIL_PATTERN.search(text):
        return SmartType.EMAIL
    if sum(1 for indicator in CODE_INDICATORS if indicator in text) >= 2:
        return SmartType.CODE
    return SmartType.TEXT
