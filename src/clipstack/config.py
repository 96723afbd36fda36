import os
from pathlib import Path

DATA_DIR = Path(os.environ.get("CLIPSTACK_DATA_DIR", Path.home() / ".local" / "share" / "clipstack"))
DB_PATH = DATA_DIR / "clipstack.db"
IMAGE_DIR = DATA_DIR / "images"
LEGACY_HISTORY_PATH = DATA_DIR / "history.json"
PRIVACY_PATH = DATA_DIR / "privacy.json"
LOG_PATH = DATA_DIR / "clipstack.log"

POLL_INTERVAL = 1.0  # seconds between clipboard checks
SAVE_DEBOUNCE = 1.5  # quiet period before pending edits are written
MAX_TEXT_SIZE = 1_000_000  # 1MB text limit
MAX_IMAGE_SIZE = 10_000_000  # 10MB image limit
SEARCH_CONTENT_LIMIT = 50_000  # characters of content kept in the search cache
REGEX_SCAN_LIMIT = 100_000  # characters scanned by "/pattern" queries
FILTER_OFFLOAD_THRESHOLD = 2_000  # entries before filtering moves to a worker
HISTORY_LOAD_LIMIT = 5_000
PREVIEW_LENGTH = 60  # characters shown in menu item


def _parse_int_env(name: str, default: int, low: int, high: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(low, min(high, value))


MENU_DISPLAY_COUNT = _parse_int_env("CLIPSTACK_MENU_DISPLAY_COUNT", 10, 5, 50)
MAX_ENTRIES = _parse_int_env("CLIPSTACK_MAX_ENTRIES", 1_000, 50, 100_000)  # auto-purge threshold
