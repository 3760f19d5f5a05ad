"""Licence store: load/save of the single JSON document plus backup and restore."""

import base64
import copy
import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from licence.exceptions import StorageError
from licence.models import LicenceDatabase, format_timestamp, utcnow
from licence.results import IntegrityReport, ResultCode, RestoreResult

logger = logging.getLogger(__name__)

RESTORE_CONFIRMATION = "RESTORE_CONFIRMED"
BACKUP_FORMAT_VERSION = "1.0"
BACKUP_FILE_PREFIX = "licenses-backup-"

# Errors that mean the stored document cannot be used as-is
_UNREADABLE = (OSError, ValueError, TypeError, AttributeError, KeyError)


def decode_seed(seed: str) -> dict:
    """Decode a base64 encoded store document."""
    return json.loads(base64.b64decode(seed).decode("utf-8"))


class LicenceStore:
    """Base licence store.

    Subclasses provide ``_read`` and ``_write`` for the raw document and
    ``_write_emergency`` for the pre-restore safety copy. Everything else
    (self-healing load, snapshot, restore, integrity check) lives here.

    ``lock`` guards a complete load-mutate-save cycle. Callers that mutate
    the store must hold it for the whole cycle, otherwise concurrent writers
    silently overwrite each other's changes.
    """

    def __init__(self, seed: str = ""):
        self.lock = threading.RLock()
        self._seed = seed

    # ---- Raw document access ----

    def _read(self) -> Optional[dict]:
        raise NotImplementedError

    def _write(self, document: dict) -> None:
        raise NotImplementedError

    def _write_emergency(self, document: dict) -> Optional[str]:
        raise NotImplementedError

    def describe(self) -> str:
        return self.__class__.__name__

    # ---- Load / save ----

    def load(self) -> LicenceDatabase:
        """Return the stored database.

        A missing document, or one that is not valid JSON or not a JSON
        object, is replaced by the configured seed or, failing that, an empty
        store which is persisted straight away. Problems inside individual
        licence records are logged and the records kept as they are, so one
        bad record never costs the rest of the store.
        """
        with self.lock:
            try:
                document = self._read()
            except (OSError, ValueError) as e:
                self._log_reset(f"unreadable ({e})")
            else:
                if isinstance(document, dict):
                    return LicenceDatabase.from_dict(document)
                if document is not None:
                    self._log_reset("not a JSON object")

            database = self._initial_database()
            try:
                self.save(database)
            except StorageError:
                logger.exception("Failed to persist the initial licence store")
            return database

    def _log_reset(self, reason: str) -> None:
        logger.error(
            "Licence store %s is %s. Resetting it; "
            "existing licence data is lost unless restored from a backup.",
            self.describe(), reason,
        )

    def save(self, database: LicenceDatabase) -> None:
        """Persist the database, replacing the stored document.

        Raises:
            StorageError: The document could not be written. Not retried.
        """
        with self.lock:
            self._write(database.to_dict())

    def _initial_database(self) -> LicenceDatabase:
        if self._seed:
            try:
                database = LicenceDatabase.from_dict(decode_seed(self._seed))
                logger.info(
                    "Licence store %s seeded from environment: %d licence(s)",
                    self.describe(), len(database.licences),
                )
                return database
            except _UNREADABLE:
                logger.exception("Ignoring unusable licence store seed")
        logger.info("Licence store %s initialised empty", self.describe())
        return LicenceDatabase()

    # ---- Backup / restore ----

    def snapshot(self, database: Optional[LicenceDatabase] = None) -> dict:
        """Wrap the store with backup metadata for export."""
        if database is None:
            database = self.load()
        return {
            "metadata": {
                "created_at": format_timestamp(utcnow()),
                "version": BACKUP_FORMAT_VERSION,
                "record_count": len(database.licences),
            },
            "database": database.to_dict(),
        }

    def restore(self, payload, confirmation: Optional[str]) -> RestoreResult:
        """Replace the store with the database carried by a backup payload.

        The current store is copied to the emergency backup location before
        the payload is checked, so the pre-restore state survives both a
        successful and a rejected restore.
        """
        if confirmation != RESTORE_CONFIRMATION:
            return RestoreResult(success=False, code=ResultCode.CONFIRMATION_REQUIRED)

        with self.lock:
            emergency_path = self._take_emergency_backup()

            database_doc = payload.get("database") if isinstance(payload, dict) else None
            if (
                not isinstance(database_doc, dict)
                or not isinstance(database_doc.get("licenses"), dict)
                or not isinstance(database_doc.get("stats"), dict)
            ):
                logger.warning("Rejected restore: backup payload lacks licenses/stats")
                return RestoreResult(
                    success=False,
                    code=ResultCode.INVALID_BACKUP,
                    emergency_backup_path=emergency_path,
                )

            try:
                database = LicenceDatabase.from_dict(database_doc, strict=True)
            except ValueError as e:
                logger.warning("Rejected restore: %s", e)
                return RestoreResult(
                    success=False,
                    code=ResultCode.INVALID_BACKUP,
                    emergency_backup_path=emergency_path,
                )
            self.save(database)

        logger.info("Licence store restored: %d licence(s)", len(database.licences))
        return RestoreResult(
            success=True,
            code=ResultCode.RESTORED,
            restored_licences=len(database.licences),
            backup_info=payload.get("metadata") or payload.get("backup_info"),
            emergency_backup_path=emergency_path,
        )

    def _take_emergency_backup(self) -> Optional[str]:
        current = self.load()
        emergency = {
            "created_at": format_timestamp(utcnow()),
            "type": "emergency_backup_before_restore",
            "data": current.to_dict(),
        }
        try:
            location = self._write_emergency(emergency)
        except (OSError, StorageError) as e:
            logger.warning("Could not write emergency backup before restore: %s", e)
            return None
        logger.info("Emergency backup written to %s", location)
        return location

    def write_backup(self, directory, retain: int = 0) -> Path:
        """Write a timestamped snapshot file and prune old ones.

        Args:
            directory: Folder receiving ``licenses-backup-*.json`` files.
            retain: Number of backup files to keep (0 keeps all).

        Returns:
            Path of the written backup.
        """
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        path = directory / f"{BACKUP_FILE_PREFIX}{stamp}.json"
        path.write_text(json.dumps(self.snapshot(), indent=2))

        if retain > 0:
            backups = sorted(directory.glob(f"{BACKUP_FILE_PREFIX}*.json"))
            for old in backups[:-retain]:
                old.unlink()
        return path

    def export_seed(self) -> str:
        """Return the store as base64 JSON, suitable for ``LICENCE_DB_SEED``."""
        compact = json.dumps(self.load().to_dict(), separators=(",", ":"))
        return base64.b64encode(compact.encode("utf-8")).decode("ascii")

    # ---- Integrity ----

    def verify_integrity(self) -> IntegrityReport:
        """Inspect the stored document without modifying it."""
        try:
            document = self._read()
        except _UNREADABLE as e:
            return IntegrityReport(structure_valid=False, issues=[f"Document is unreadable: {e}"])
        if document is None:
            return IntegrityReport(structure_valid=False, issues=["Document does not exist"])
        return self._check_document(document)

    @staticmethod
    def _check_document(document) -> IntegrityReport:
        if not isinstance(document, dict):
            return IntegrityReport(structure_valid=False, issues=["Document is not a JSON object"])

        licences = document.get("licenses")
        structure_valid = isinstance(licences, dict) and isinstance(document.get("stats"), dict)
        if not isinstance(licences, dict):
            licences = {}

        issues = []
        activated = 0
        for key, record in licences.items():
            if not isinstance(record, dict):
                issues.append(f"Licence {key} is not an object")
                continue
            if record.get("activated_at"):
                activated += 1
            if not record.get("key") or not record.get("type") or not record.get("created_at"):
                issues.append(f"Licence {key} has an incomplete structure")
            if record.get("key") != key:
                issues.append(f"Licence {key} has an inconsistent key: {record.get('key')}")

        return IntegrityReport(
            structure_valid=structure_valid,
            total_licences=len(licences),
            activated_licences=activated,
            issues=issues,
        )


class JsonFileLicenceStore(LicenceStore):
    """Licence store persisted to a single JSON file."""

    def __init__(
        self,
        path,
        emergency_backup_path=None,
        seed: str = "",
    ):
        """Initialize the file store.

        Args:
            path: JSON document holding licences and stats.
            emergency_backup_path: Where the pre-restore safety copy goes.
                Defaults to ``emergency_backup.json`` next to ``path``.
            seed: Optional base64 store document used when the file is
                missing or unreadable.
        """
        super().__init__(seed=seed)
        self.path = Path(path)
        self.emergency_backup_path = Path(
            emergency_backup_path or self.path.with_name("emergency_backup.json")
        )

    def describe(self) -> str:
        return str(self.path)

    def _read(self) -> Optional[dict]:
        if not self.path.exists():
            return None
        return json.loads(self.path.read_text(encoding="utf-8"))

    def _write(self, document: dict) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(document, indent=2), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to write licence store %s: %s", self.path, e)
            raise StorageError(f"Could not write {self.path}: {e}", path=self.path) from e

    def _write_emergency(self, document: dict) -> Optional[str]:
        self.emergency_backup_path.parent.mkdir(parents=True, exist_ok=True)
        self.emergency_backup_path.write_text(json.dumps(document, indent=2), encoding="utf-8")
        return str(self.emergency_backup_path)

    def verify_integrity(self) -> IntegrityReport:
        report = super().verify_integrity()
        report.file_exists = self.path.exists()
        if report.file_exists:
            stat = self.path.stat()
            report.file_size = stat.st_size
            report.last_modified = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        return report


class InMemoryLicenceStore(LicenceStore):
    """Licence store kept in memory, for tests and tooling.

    Documents are deep-copied on every read and write so callers never
    share state with the store, mirroring a real serialisation boundary.
    """

    def __init__(self, document: Optional[dict] = None, seed: str = ""):
        super().__init__(seed=seed)
        self.document = copy.deepcopy(document)
        self.emergency_backup: Optional[dict] = None
        self.fail_writes = False
        self.writes = 0

    def _read(self) -> Optional[dict]:
        return copy.deepcopy(self.document)

    def _write(self, document: dict) -> None:
        if self.fail_writes:
            raise StorageError("In-memory store is configured to fail writes")
        self.document = copy.deepcopy(document)
        self.writes += 1

    def _write_emergency(self, document: dict) -> Optional[str]:
        self.emergency_backup = copy.deepcopy(document)
        return "memory"
