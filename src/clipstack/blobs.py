"""Content-addressed storage for image payloads.

Each blob lives in ``<image_dir>/<sha256>.png``. The key is the hex digest of
the bytes, so writing identical content twice is a no-op and two different
images never share a file.
"""

import logging
import os
import re
import tempfile
from pathlib import Path

from clipstack.config import IMAGE_DIR
from clipstack.utils import compute_hash

logger = logging.getLogger(__name__)

BLOB_SUFFIX = ".png"
_KEY_PATTERN = re.compile(r"[0-9a-f]{64}")


class BlobStore:
    def __init__(self, image_dir: str | Path | None = None):
        self._dir = Path(image_dir) if image_dir else IMAGE_DIR
        self._dir.mkdir(parents=True, exist_ok=True)

    @property
    def directory(self) -> Path:
        return self._dir

    @staticmethod
    def key_for(data: bytes) -> str:
        return compute_hash(data)

    @staticmethod
    def is_valid_key(key: str) -> bool:
        return _KEY_PATTERN.fullmatch(key) is not None

    def path_for(self, key: str) -> Path:
        if not self.is_valid_key(key):
            raise ValueError(f"Invalid blob key: {key!r}")
        return self._dir / (key + BLOB_SUFFIX)

    def exists(self, key: str) -> bool:
        return self.is_valid_key(key) and self.path_for(key).exists()

    def put(self, data: bytes) -> str:
        key = self.key_for(data)
        path = self.path_for(key)
        if path.exists():
            return key

        fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=".blob-", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Stored blob %s (%d bytes)", key[:12], len(data))
        return key

    def get(self, key: str) -> bytes | None:
        if not self.is_valid_key(key):
            return None
        try:
            return self.path_for(key).read_bytes()
        except FileNotFoundError:
            return None

    def delete(self, key: str) -> None:
        if not self.is_valid_key(key):
            return
        try:
            self.path_for(key).unlink()
        except FileNotFoundError:
            pass
        except OSError:
            logger.warning("Could not delete blob %s", key[:12], exc_info=True)

    def keys(self) -> list[str]:
        return sorted(
            p.stem for p in self._dir.glob("*" + BLOB_SUFFIX) if self.is_valid_key(p.stem)
        )
