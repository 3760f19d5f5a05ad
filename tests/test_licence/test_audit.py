"""Tests for the audit log."""

import json
import tempfile
import threading
import unittest
from pathlib import Path

from licence.audit import AuditAction, AuditLog


class TestAuditLog(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.log = AuditLog(Path(self.tmpdir.name) / "audit" / "audit_log.json")

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_log_and_list_newest_first(self):
        self.log.log(AuditAction.LICENCE_CREATE, "AAAA-0000-0000-0001", "type: perpetual")
        self.log.log("licence_renew", "AAAA-0000-0000-0001", user="api-key-1")
        entries = self.log.list_all()
        self.assertEqual(len(entries), 2)
        self.assertEqual(entries[0].action, AuditAction.LICENCE_RENEW)
        self.assertEqual(entries[0].user, "api-key-1")
        self.assertEqual(entries[1].detail, "type: perpetual")
        self.assertFalse(self.log.path.with_name("audit_log.json.tmp").exists())

    def test_unknown_action_raises(self):
        with self.assertRaises(ValueError):
            self.log.log("format_disk", "everything")
        with self.assertRaises(ValueError):
            self.log.filter(action="format_disk")

    def test_filter(self):
        self.log.log(AuditAction.LICENCE_CREATE, "AAAA-0000-0000-0001")
        self.log.log(AuditAction.LICENCE_DEACTIVATE, "AAAA-0000-0000-0001")
        self.log.log(AuditAction.LICENCE_CREATE, "BBBB-0000-0000-0002")

        created = self.log.filter(action=AuditAction.LICENCE_CREATE)
        self.assertEqual(len(created), 2)
        self.assertEqual(len(self.log.filter(action="licence_deactivate")), 1)
        by_target = self.log.filter(target="aaaa")
        self.assertEqual(len(by_target), 2)
        both = self.log.filter(action="licence_create", target="bbbb")
        self.assertEqual([e.target for e in both], ["BBBB-0000-0000-0002"])

    def test_limit(self):
        for i in range(5):
            self.log.log(AuditAction.DATABASE_BACKUP, f"backup-{i}")
        entries = self.log.list_all(limit=3)
        self.assertEqual([e.target for e in entries], ["backup-4", "backup-3", "backup-2"])

    def test_corrupt_file_is_moved_aside(self):
        self.log.path.write_text("not json")
        with self.assertLogs("licence.audit", level="ERROR"):
            self.assertEqual(self.log.list_all(), [])

        aside = list(self.log.path.parent.glob("audit_log.json.corrupt-*"))
        self.assertEqual(len(aside), 1)
        self.assertEqual(aside[0].read_text(), "not json")

        self.log.log(AuditAction.LICENCE_CREATE, "AAAA-0000-0000-0001")
        self.assertEqual(len(json.loads(self.log.path.read_text())), 1)
        self.assertEqual(aside[0].read_text(), "not json")

    def test_non_list_file_is_moved_aside_before_logging(self):
        self.log.path.write_text(json.dumps({"entries": []}))
        with self.assertLogs("licence.audit", level="ERROR"):
            self.log.log(AuditAction.LICENCE_CREATE, "AAAA-0000-0000-0001")
        self.assertEqual(len(list(self.log.path.parent.glob("audit_log.json.corrupt-*"))), 1)
        self.assertEqual(len(self.log.list_all()), 1)

    def test_unreadable_entries_are_skipped(self):
        self.log.log(AuditAction.LICENCE_CREATE, "AAAA-0000-0000-0001")
        records = json.loads(self.log.path.read_text())
        records.append({"action": "bogus", "timestamp": "x"})
        records.append("not an entry")
        self.log.path.write_text(json.dumps(records))

        with self.assertLogs("licence.audit", level="WARNING"):
            entries = self.log.list_all()
        self.assertEqual([e.target for e in entries], ["AAAA-0000-0000-0001"])

    def test_concurrent_writers_keep_every_entry(self):
        # Two instances on one file, as the web app and scheduler may hold
        other = AuditLog(self.log.path)

        def worker(log, n):
            for i in range(25):
                log.log(AuditAction.LICENCE_CREATE, f"KEY-{n}-{i}")

        threads = [
            threading.Thread(target=worker, args=(self.log if n % 2 else other, n))
            for n in range(8)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        entries = self.log.list_all(limit=1000)
        self.assertEqual(len(entries), 200)
        self.assertEqual(len({e.target for e in entries}), 200)


if __name__ == "__main__":
    unittest.main()
