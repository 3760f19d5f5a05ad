"""Audit trail of administrative licence actions.

Entries are kept newest first in a single JSON list, capped at
``MAX_ENTRIES``. Admin API routes, the backup scheduler and the CLI all
write through ``AuditLog.log``.
"""

import json
import logging
import os
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional

from licence.exceptions import StorageError

logger = logging.getLogger(__name__)

MAX_ENTRIES = 10000

_path_locks: dict = {}
_path_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    # Every AuditLog on the same file in this process shares one lock
    with _path_locks_guard:
        return _path_locks.setdefault(path.resolve(), threading.Lock())


class AuditAction(str, Enum):
    LICENCE_CREATE = "licence_create"
    LICENCE_RENEW = "licence_renew"
    LICENCE_DEACTIVATE = "licence_deactivate"
    LICENCE_NOTIFY = "licence_notify"
    DATABASE_BACKUP = "database_backup"
    DATABASE_RESTORE = "database_restore"
    DATABASE_EXPORT_SEED = "database_export_seed"
    CUSTOMER_EXPORT = "customer_export"
    AUTO_BACKUP = "auto_backup"


@dataclass
class AuditEntry:
    """One administrative action: what was done, to which licence or file, by whom."""

    action: AuditAction
    target: str
    detail: str = ""
    user: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    entry_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def to_dict(self) -> dict:
        return {
            "entry_id": self.entry_id,
            "action": self.action.value,
            "target": self.target,
            "detail": self.detail,
            "user": self.user,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AuditEntry":
        """Raises KeyError, TypeError or ValueError for an unusable record."""
        return cls(
            entry_id=str(data.get("entry_id", "")),
            action=AuditAction(data["action"]),
            target=str(data.get("target", "")),
            detail=str(data.get("detail", "")),
            user=str(data.get("user", "")),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


class AuditLog:
    """JSON-file audit log, newest entry first.

    Each ``log`` call reads, prepends and rewrites the file under a lock
    shared by every instance on that path, replacing the file atomically.
    A file that is not a JSON list is never overwritten: it is moved aside
    to ``<name>.corrupt-<timestamp>`` and a new log is started.

    Raises:
        StorageError: The log file could not be read or written.
    """

    def __init__(self, path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = _lock_for(self.path)

    def log(self, action, target: str, detail: str = "", user: str = "") -> AuditEntry:
        """Record an action. ``action`` may be an AuditAction or its value.

        Raises:
            ValueError: Unknown action.
        """
        entry = AuditEntry(action=AuditAction(action), target=target, detail=detail, user=user)
        with self._lock:
            records = self._read()
            records.insert(0, entry.to_dict())
            self._write(records[:MAX_ENTRIES])
        return entry

    def list_all(self, limit: int = 500) -> list[AuditEntry]:
        return self.filter(limit=limit)

    def filter(
        self,
        action=None,
        target: Optional[str] = None,
        limit: int = 500,
    ) -> list[AuditEntry]:
        """Newest entries matching ``action`` and containing ``target``.

        ``target`` matches case-insensitively anywhere in the entry target.
        Stored entries that cannot be read are skipped with a warning.

        Raises:
            ValueError: Unknown action.
        """
        if action:
            action = AuditAction(action)
        needle = target.lower() if target else ""
        with self._lock:
            records = self._read()

        entries = []
        for record in records:
            try:
                entry = AuditEntry.from_dict(record)
            except (AttributeError, KeyError, TypeError, ValueError):
                logger.warning("Skipping unreadable audit entry in %s: %r", self.path, record)
                continue
            if action and entry.action != action:
                continue
            if needle and needle not in entry.target.lower():
                continue
            entries.append(entry)
        return entries[:max(limit, 0)]

    def _read(self) -> list:
        if not self.path.exists():
            return []
        try:
            records = json.loads(self.path.read_text(encoding="utf-8"))
        except ValueError as e:
            self._move_aside(f"not valid JSON ({e})")
            return []
        except OSError as e:
            raise StorageError(f"Could not read {self.path}: {e}", path=self.path) from e
        if not isinstance(records, list):
            self._move_aside("not a JSON list")
            return []
        return records

    def _move_aside(self, reason: str) -> None:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        aside = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")
        try:
            os.replace(self.path, aside)
        except OSError as e:
            raise StorageError(f"Could not move aside {self.path}: {e}", path=self.path) from e
        logger.error(
            "Audit log %s is %s. Moved it to %s and started a new log.",
            self.path, reason, aside,
        )

    def _write(self, records: list) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            tmp_path.write_text(json.dumps(records, indent=2, default=str), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error("Failed to write audit log %s: %s", self.path, e)
            raise StorageError(f"Could not write {self.path}: {e}", path=self.path) from e
