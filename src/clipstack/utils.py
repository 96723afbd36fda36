import hashlib
import logging
import struct
import threading
from collections.abc import Callable
from pathlib import Path

from clipstack.config import DATA_DIR, IMAGE_DIR

logger = logging.getLogger(__name__)


def compute_hash(data: str | bytes) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def truncate_text(text: str, max_len: int) -> str:
    single_line = " ".join(text.split())
    if len(single_line) <= max_len:
        return single_line
    return single_line[: max_len - 3] + "..."


def ensure_dirs(data_dir: Path | None = None, image_dir: Path | None = None) -> None:
    (data_dir or DATA_DIR).mkdir(parents=True, exist_ok=True)
    (image_dir or IMAGE_DIR).mkdir(parents=True, exist_ok=True)


def get_image_dimensions(png_bytes: bytes) -> tuple[int, int]:
    if len(png_bytes) < 24 or png_bytes[:8] != b"\x89PNG\r\n\x1a\n":
        return (0, 0)
    width = struct.unpack(">I", png_bytes[16:20])[0]
    height = struct.unpack(">I", png_bytes[20:24])[0]
    return (width, height)


class DebouncedCall:
    """Run a callable once after a quiet period.

    Every call to ``schedule`` cancels the pending timer and starts a fresh
    one, so a burst of requests results in a single invocation ``delay``
    seconds after the last request.
    """

    def __init__(self, func: Callable[[], None], delay: float):
        self._func = func
        self._delay = delay
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def schedule(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._delay, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _fire(self) -> None:
        with self._lock:
            if self._timer is None or self._timer is not threading.current_thread():
                return
            self._timer = None
        try:
            self._func()
        except Exception:
            logger.exception("Debounced call failed")
