import tempfile
import unittest
from pathlib import Path

from conftest import added, deleted, modified, open_cloud, push_changes
from lrmsync import hash as lrmhash
from lrmsync.cloud import history as cloudhistory
from lrmsync.cloud import service
from lrmsync.cloud import snapshots as cloudsnapshots
from lrmsync.cloud import store
from lrmsync.constants import ChangeType, ConflictType, OperationType, SnapshotType
from lrmsync.errors import NotFoundError


def h(value):
    return lrmhash.content_hash(value, None)


def _state(conn):
    return {row.unit_id: (row.value, row.comment) for row in store.list_translations(conn, "demo")}


class HistoryTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.conn, self.ctx = open_cloud(Path(self._tmp.name) / "cloud.db")
        push_changes(self.ctx, added("save", "Save"), added("gone", "Gone"))

    def tearDown(self):
        self.conn.close()
        self._tmp.cleanup()


class TestHistoryListing(HistoryTestCase):
    def test_newest_first_with_paging(self):
        push_changes(self.ctx, added("open", "Open"), message="second")
        entries = cloudhistory.list_history(self.conn, "demo", limit=1)
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].message, "second")
        self.assertEqual(entries[0].changes, [])
        older = cloudhistory.list_history(self.conn, "demo", limit=1, offset=1)
        self.assertEqual(older[0].entries_added, 2)

    def test_detail_carries_before_and_after(self):
        result = push_changes(self.ctx, modified("save", "Store", h("Save")))
        entry = cloudhistory.get_history(self.conn, "demo", result.history_id)
        change = entry.changes[0]
        self.assertEqual(change.change_type, ChangeType.MODIFIED)
        self.assertEqual((change.before_value, change.after_value), ("Save", "Store"))
        self.assertEqual((change.before_version, change.after_version), (1, 2))

    def test_unknown_history_id(self):
        with self.assertRaises(NotFoundError):
            cloudhistory.get_history(self.conn, "demo", "nope")


class TestRevert(HistoryTestCase):
    def test_revert_restores_prior_state(self):
        before = _state(self.conn)
        result = push_changes(
            self.ctx,
            modified("save", "Store", h("Save")),
            deleted("gone", h("Gone")),
            added("new", "New"),
        )

        reverted = service.revert(self.ctx, result.history_id)

        self.assertTrue(reverted.ok)
        self.assertEqual(_state(self.conn), before)
        self.assertEqual(reverted.reverted_from_id, result.history_id)
        entry = cloudhistory.get_history(self.conn, "demo", reverted.history_id)
        self.assertEqual(entry.operation_type, OperationType.REVERT)
        self.assertEqual(entry.reverted_from_id, result.history_id)
        self.assertEqual((entry.entries_added, entry.entries_modified, entry.entries_deleted), (1, 1, 1))

    def test_recreated_unit_gets_a_fresh_version(self):
        result = push_changes(self.ctx, deleted("gone", h("Gone")))
        service.revert(self.ctx, result.history_id)
        row = store.get_translation(self.conn, "demo", ("gone", "", ""))
        self.assertEqual(row.value, "Gone")
        self.assertEqual(row.version, 2)

    def test_revert_of_revert_reapplies(self):
        result = push_changes(self.ctx, modified("save", "Store", h("Save")))
        after = _state(self.conn)
        first = service.revert(self.ctx, result.history_id)
        second = service.revert(self.ctx, first.history_id)
        self.assertTrue(second.ok)
        self.assertEqual(_state(self.conn), after)

    def test_revert_takes_auto_snapshot(self):
        result = push_changes(self.ctx, modified("save", "Store", h("Save")))
        reverted = service.revert(self.ctx, result.history_id)
        snapshot = cloudsnapshots.get_snapshot(self.conn, "demo", reverted.snapshot_id)
        self.assertEqual(snapshot.snapshot_type, SnapshotType.AUTO)
        self.assertEqual(snapshot.entry_count, 2)

    def test_unit_changed_since_is_a_conflict(self):
        result = push_changes(self.ctx, modified("save", "Store", h("Save")), added("new", "New"))
        push_changes(self.ctx, modified("save", "Keep", h("Store")))

        reverted = service.revert(self.ctx, result.history_id)

        self.assertEqual([entry.key for entry in reverted.applied], ["new"])
        conflict = reverted.conflicts[0]
        self.assertEqual(conflict.key, "save")
        self.assertEqual(conflict.conflict_type, ConflictType.BOTH_MODIFIED)
        self.assertEqual(conflict.remote_value, "Keep")
        self.assertEqual(store.get_translation(self.conn, "demo", ("save", "", "")).value, "Keep")

    def test_revert_unknown_history(self):
        with self.assertRaises(NotFoundError):
            service.revert(self.ctx, "nope")
        self.assertEqual(cloudsnapshots.list_snapshots(self.conn, "demo"), [])


if __name__ == "__main__":
    unittest.main()
