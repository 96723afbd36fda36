import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from clipstack.config import PRIVACY_PATH

logger = logging.getLogger(__name__)


@dataclass
class PrivacyFilter:
    """Blocked source applications and website hosts.

    Captures from a blocked application, or text whose recovered source URL
    points at a blocked host, are never persisted.
    """

    blocked_apps: list[str] = field(default_factory=list)
    blocked_hosts: list[str] = field(default_factory=list)

    def is_blocked(self, app: str | None, host: str | None) -> bool:
        if app and app in self.blocked_apps:
            return True
        if host and host.lower() in self.blocked_hosts:
            return True
        return False

    def block_app(self, app: str) -> bool:
        app = app.strip()
        if not app or app in self.blocked_apps:
            return False
        self.blocked_apps.append(app)
        return True

    def unblock_app(self, app: str) -> None:
        self.blocked_apps = [a for a in self.blocked_apps if a != app]

    def block_host(self, host: str) -> bool:
        host = host.strip().lower()
        if not host or host in self.blocked_hosts:
            return False
        self.blocked_hosts.append(host)
        return True

    def unblock_host(self, host: str) -> None:
        host = host.strip().lower()
        self.blocked_hosts = [h for h in self.blocked_hosts if h != host]

    @classmethod
    def load(cls, path: str | Path | None = None) -> "PrivacyFilter":
        path = Path(path) if path else PRIVACY_PATH
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return cls()
        except (OSError, ValueError):
            logger.warning("Could not read privacy settings from %s", path, exc_info=True)
            return cls()
        if not isinstance(data, dict):
            return cls()
        apps = [a for a in data.get("blocked_apps", []) if isinstance(a, str)]
        hosts = [h.lower() for h in data.get("blocked_hosts", []) if isinstance(h, str)]
        return cls(blocked_apps=apps, blocked_hosts=hosts)

    def save(self, path: str | Path | None = None) -> None:
        path = Path(path) if path else PRIVACY_PATH
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(
            json.dumps({"blocked_apps": self.blocked_apps, "blocked_hosts": self.blocked_hosts}, indent=2),
            encoding="utf-8",
        )
        os.replace(tmp, path)
