import argparse
import logging
import sys

from clipstack.blobs import BlobStore
from clipstack.config import DATA_DIR, DB_PATH, IMAGE_DIR, LEGACY_HISTORY_PATH, LOG_PATH, PRIVACY_PATH
from clipstack.menu import entry_title
from clipstack.migration import migrate_legacy_history
from clipstack.models import HistoryEntry
from clipstack.privacy import PrivacyFilter
from clipstack.storage import RecordStore
from clipstack.utils import ensure_dirs


def open_storage() -> tuple[RecordStore, BlobStore]:
    ensure_dirs(DATA_DIR, IMAGE_DIR)
    blobs = BlobStore(IMAGE_DIR)
    return RecordStore(DB_PATH, blobs), blobs


def format_entry(entry: HistoryEntry, blobs: BlobStore | None = None) -> str:
    pin = "*" if entry.is_pinned else " "
    return f"{pin} {entry.created_at:%Y-%m-%d %H:%M}  {entry.smart_type.label:<5}  {entry_title(entry, blobs)}"


def list_entries(limit: int) -> int:
    storage, blobs = open_storage()
    with storage:
        migrate_legacy_history(storage, LEGACY_HISTORY_PATH, blobs)
        entries = storage.load_recent(limit)
    if not entries:
        print("(No clipboard history)")
        return 0
    for entry in entries:
        print(format_entry(entry, blobs))
    return 0


def search_entries(query: str, limit: int) -> int:
    storage, blobs = open_storage()
    with storage:
        if query.startswith("/"):
            entries = [e for e in storage.load_recent() if e.matches(query)][:limit]
        else:
            entries = storage.search(query, limit=limit)
    if not entries:
        print(f'No results for "{query}"')
        return 1
    for entry in entries:
        print(format_entry(entry, blobs))
    return 0


def clear_history() -> int:
    storage, _ = open_storage()
    with storage:
        count = storage.count()
        storage.delete_all()
    print(f"Deleted {count} entries.")
    return 0


def migrate() -> int:
    storage, blobs = open_storage()
    with storage:
        if not LEGACY_HISTORY_PATH.exists():
            print("No legacy history found.")
            return 0
        imported = migrate_legacy_history(storage, LEGACY_HISTORY_PATH, blobs)
    if LEGACY_HISTORY_PATH.exists():
        print(f"Legacy history left in place: {LEGACY_HISTORY_PATH}")
        return 1
    print(f"Migrated {imported} entries.")
    return 0


def update_privacy(app: str | None = None, host: str | None = None) -> int:
    privacy = PrivacyFilter.load(PRIVACY_PATH)
    changed = False
    if app:
        changed = privacy.block_app(app) or changed
    if host:
        changed = privacy.block_host(host) or changed
    if changed:
        privacy.save(PRIVACY_PATH)
    print("Blocked applications: " + (", ".join(privacy.blocked_apps) or "(none)"))
    print("Blocked websites: " + (", ".join(privacy.blocked_hosts) or "(none)"))
    return 0


def run_app():
    """Run the Clipstack menu-bar application."""
    ensure_dirs(DATA_DIR, IMAGE_DIR)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(LOG_PATH),
            logging.StreamHandler(sys.stderr),
        ],
    )

    from clipstack.app import ClipstackApp

    app = ClipstackApp()
    app.run()


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(
        prog="clipstack",
        description="Clipstack - Clipboard history manager for macOS",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  clipstack                      # Run the menu-bar app
  clipstack list -n 20           # Show the 20 most recent entries
  clipstack search "invoice"     # Full-text search
  clipstack search "/^https?:"   # Pattern search
  clipstack block-app 1Password  # Never record copies from this app
""",
    )
    subparsers = parser.add_subparsers(dest="command")

    list_parser = subparsers.add_parser("list", help="Show recent history")
    list_parser.add_argument("-n", "--limit", type=int, default=20)

    search_parser = subparsers.add_parser("search", help="Search history")
    search_parser.add_argument("query")
    search_parser.add_argument("-n", "--limit", type=int, default=20)

    subparsers.add_parser("clear", help="Delete all history")
    subparsers.add_parser("migrate", help="Import a legacy history.json")

    block_app_parser = subparsers.add_parser("block-app", help="Ignore copies from an application")
    block_app_parser.add_argument("name")
    block_host_parser = subparsers.add_parser("block-host", help="Ignore copies from a website")
    block_host_parser.add_argument("host")
    subparsers.add_parser("privacy", help="Show privacy settings")

    args = parser.parse_args(argv)

    if args.command == "list":
        sys.exit(list_entries(args.limit))
    elif args.command == "search":
        sys.exit(search_entries(args.query, args.limit))
    elif args.command == "clear":
        sys.exit(clear_history())
    elif args.command == "migrate":
        sys.exit(migrate())
    elif args.command == "block-app":
        sys.exit(update_privacy(app=args.name))
    elif args.command == "block-host":
        sys.exit(update_privacy(host=args.host))
    elif args.command == "privacy":
        sys.exit(update_privacy())
    else:
        run_app()


if __name__ == "__main__":
    main()
