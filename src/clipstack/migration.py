"""One-shot import of the legacy ``history.json`` flat file.

The legacy file is a JSON array, newest entry first::

    [{"id": "...", "data": {"text": {"_0": "hello", "sourceURL": null}},
      "createdAt": 782000000.0, "sourceApp": "Safari", "isPinned": false,
      "copyCount": 1, "customMetadata": null}, ...]

``data`` is one of ``text``, ``color`` or ``image`` (the image value is the
blob's relative path, ``images/<sha256>.png``). ``createdAt`` counts seconds
from 2001-01-01 UTC.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath

from clipstack.blobs import BlobStore
from clipstack.config import LEGACY_HISTORY_PATH
from clipstack.models import ClipboardPayload, ColorPayload, HistoryEntry, ImagePayload, TextPayload
from clipstack.storage import RecordStore

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".bak"
REFERENCE_EPOCH = datetime(2001, 1, 1, tzinfo=timezone.utc).timestamp()


def backup_path_for(legacy_path: Path) -> Path:
    return legacy_path.with_name(legacy_path.name + BACKUP_SUFFIX)


def decode_payload(data: dict) -> ClipboardPayload:
    if not isinstance(data, dict) or len(data) != 1:
        raise ValueError(f"Unrecognised payload {data!r}")
    tag, value = next(iter(data.items()))
    if not isinstance(value, dict):
        raise ValueError(f"Unrecognised payload value {value!r}")

    if tag == "text":
        body = value["_0"]
        source_url = value.get("sourceURL")
        if not isinstance(body, str) or not (source_url is None or isinstance(source_url, str)):
            raise ValueError("Malformed text payload")
        return TextPayload(body, source_url)
    if tag == "color":
        hex_code = value["_0"]
        if not isinstance(hex_code, str):
            raise ValueError("Malformed color payload")
        return ColorPayload(hex_code)
    if tag == "image":
        key = PurePosixPath(value["_0"]).stem
        if not BlobStore.is_valid_key(key):
            raise ValueError(f"Malformed image reference {value['_0']!r}")
        return ImagePayload(key)
    raise ValueError(f"Unknown payload type {tag!r}")


def decode_timestamp(value) -> datetime:
    if isinstance(value, bool):
        raise ValueError("Boolean is not a timestamp")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(REFERENCE_EPOCH + value)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone().replace(tzinfo=None)
        return parsed
    raise ValueError(f"Unrecognised timestamp {value!r}")


def decode_entry(record: dict) -> HistoryEntry:
    copy_count = record.get("copyCount", 1)
    if not isinstance(copy_count, int) or isinstance(copy_count, bool):
        raise ValueError("Malformed copyCount")
    source_app = record.get("sourceApp")
    custom_metadata = record.get("customMetadata")
    return HistoryEntry(
        id=str(record["id"]),
        payload=decode_payload(record["data"]),
        created_at=decode_timestamp(record["createdAt"]),
        source_app=source_app if isinstance(source_app, str) else None,
        is_pinned=bool(record.get("isPinned", False)),
        copy_count=max(1, copy_count),
        custom_metadata=custom_metadata if isinstance(custom_metadata, str) else None,
    )


def load_legacy_history(legacy_path: Path, blobs: BlobStore | None = None) -> list[HistoryEntry]:
    """Decode the legacy file, newest first, skipping records that fail.

    With ``blobs`` given, image records whose file is missing are dropped too.
    """
    records = json.loads(legacy_path.read_text(encoding="utf-8"))
    if not isinstance(records, list):
        raise ValueError("Legacy history is not a list")

    entries = []
    seen_payloads = set()
    for index, record in enumerate(records):
        try:
            entry = decode_entry(record)
        except (AttributeError, KeyError, TypeError, ValueError, OverflowError, OSError) as exc:
            logger.warning("Skipping legacy record %d: %s", index, exc)
            continue
        if blobs is not None and isinstance(entry.payload, ImagePayload) and not blobs.exists(entry.payload.blob_key):
            logger.warning("Skipping legacy record %d: image %s is missing", index, entry.payload.blob_key[:12])
            continue
        if entry.dedup_key in seen_payloads:
            continue
        seen_payloads.add(entry.dedup_key)
        entries.append(entry)
    return entries


def migrate_legacy_history(
    storage: RecordStore, legacy_path: str | Path | None = None, blobs: BlobStore | None = None
) -> int:
    """Move the legacy history into the store, returning the number imported.

    Does nothing unless the legacy file exists and the store is empty. On any
    failure the store transaction is rolled back and the legacy file is left
    where it is.
    """
    legacy_path = Path(legacy_path) if legacy_path else LEGACY_HISTORY_PATH
    if not legacy_path.exists():
        return 0
    if storage.count() > 0:
        logger.info("Store already populated, leaving %s alone", legacy_path)
        return 0

    backup_path = backup_path_for(legacy_path)
    try:
        entries = load_legacy_history(legacy_path, blobs)
        legacy_path.rename(backup_path)
    except Exception:
        logger.exception("Legacy history migration failed; keeping %s", legacy_path)
        return 0

    try:
        # Oldest first so the newest entry ends up at the front.
        imported = storage.insert_many(reversed(entries))
    except Exception:
        logger.exception("Legacy history migration failed; restoring %s", legacy_path)
        backup_path.rename(legacy_path)
        return 0

    logger.info("Migrated %d entries from %s", imported, legacy_path)
    return imported
