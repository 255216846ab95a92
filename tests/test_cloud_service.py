import tempfile
import unittest
from pathlib import Path

from conftest import added, deleted, modified, open_cloud, push_changes
from lrmsync import hash as lrmhash
from lrmsync.cloud import history as cloudhistory
from lrmsync.cloud import service
from lrmsync.cloud import store
from lrmsync.constants import ChangeType, ConflictType, OperationType, OutcomeStatus, SyncSource
from lrmsync.errors import NotFoundError
from lrmsync.protocol import ChangeSet, EditRequest, EntryChange, KnownUnit, PullRequest


def h(value, comment=None):
    return lrmhash.content_hash(value, comment)


class CloudTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.conn, self.ctx = open_cloud(Path(self._tmp.name) / "cloud.db")

    def tearDown(self):
        self.conn.close()
        self._tmp.cleanup()

    def value_of(self, key, language=""):
        row = store.get_translation(self.conn, "demo", (key, language, ""))
        return row.value if row else None


class TestPush(CloudTestCase):
    def test_added_units_get_version_one_and_history(self):
        result = push_changes(self.ctx, added("save", "Save"), added("save", "Speichern", language="de"), message="init")
        self.assertEqual(result.status, OutcomeStatus.APPLIED)
        self.assertEqual([entry.version for entry in result.applied], [1, 1])
        entry = cloudhistory.get_history(self.conn, "demo", result.history_id)
        self.assertEqual(entry.operation_type, OperationType.PUSH)
        self.assertEqual(entry.source, SyncSource.CLI)
        self.assertEqual(entry.created_by, "alice")
        self.assertEqual(entry.message, "init")
        self.assertEqual(entry.entries_added, 2)

    def test_repeated_push_is_idempotent(self):
        first = push_changes(self.ctx, added("save", "Save"))
        second = push_changes(self.ctx, added("save", "Save"))
        self.assertTrue(second.ok)
        self.assertEqual(second.applied[0].version, first.applied[0].version)
        self.assertIsNone(second.history_id)
        self.assertEqual(cloudhistory.count_history(self.conn, "demo"), 1)

    def test_modify_bumps_version(self):
        push_changes(self.ctx, added("save", "Save"))
        result = push_changes(self.ctx, modified("save", "Store", h("Save")))
        self.assertEqual(result.applied[0].version, 2)
        self.assertEqual(self.value_of("save"), "Store")

    def test_stale_base_is_conflict_and_rest_applies(self):
        push_changes(self.ctx, added("save", "Save"))
        push_changes(self.ctx, modified("save", "Store", h("Save")))
        result = push_changes(
            self.ctx,
            modified("save", "Keep", h("Save")),
            added("open", "Open"),
        )
        self.assertEqual(result.status, OutcomeStatus.PARTIAL)
        self.assertEqual([entry.key for entry in result.applied], ["open"])
        conflict = result.conflicts[0]
        self.assertEqual(conflict.conflict_type, ConflictType.BOTH_MODIFIED)
        self.assertEqual(conflict.remote_value, "Store")
        self.assertEqual(conflict.remote_version, 2)
        self.assertEqual(self.value_of("save"), "Store")

    def test_delete_of_remotely_modified_unit_conflicts(self):
        push_changes(self.ctx, added("save", "Save"))
        push_changes(self.ctx, modified("save", "Store", h("Save")))
        result = push_changes(self.ctx, deleted("save", h("Save")))
        self.assertEqual(result.conflicts[0].conflict_type, ConflictType.DELETED_LOCALLY_MODIFIED_REMOTELY)

    def test_add_over_existing_different_value_conflicts(self):
        push_changes(self.ctx, added("save", "Save"))
        result = push_changes(self.ctx, added("save", "Sauver"))
        self.assertEqual(result.conflicts[0].conflict_type, ConflictType.BOTH_ADDED)

    def test_invalid_changes_are_rejected(self):
        result = service.push(
            self.ctx,
            ChangeSet(
                changes=[
                    EntryChange(key="a", change_type=ChangeType.MODIFIED, value="x"),
                    EntryChange(key="b", change_type=ChangeType.ADDED, value="x", base_hash="abc"),
                    EntryChange(key="c", change_type=ChangeType.ADDED, value="x", is_plural=True),
                ]
            ),
        )
        self.assertEqual(result.status, OutcomeStatus.REJECTED)
        self.assertEqual([entry.key for entry in result.rejected], ["a", "b", "c"])
        self.assertEqual(store.list_translations(self.conn, "demo"), [])

    def test_unknown_project(self):
        with self.assertRaises(NotFoundError):
            service.open_context(self.conn, "missing")


class TestPull(CloudTestCase):
    def test_pull_returns_only_what_caller_lacks(self):
        push_changes(self.ctx, added("save", "Save"), added("open", "Open"))
        response = service.pull(
            self.ctx,
            PullRequest(
                known=[
                    KnownUnit(key="save", content_hash=h("Save")),
                    KnownUnit(key="gone", content_hash=h("Gone")),
                ]
            ),
        )
        self.assertEqual([entry.key for entry in response.updates], ["open"])
        self.assertEqual([ref.key for ref in response.deletions], ["gone"])
        self.assertEqual(response.conflicts, [])
        self.assertIsNotNone(response.server_time)

    def test_push_then_pull_round_trip(self):
        push_changes(self.ctx, added("files", "1 file", plural_form="one"), added("files", "{n} files", plural_form="other"))
        response = service.pull(self.ctx, PullRequest())
        self.assertEqual([(e.key, e.plural_form) for e in response.updates], [("files", "one"), ("files", "other")])
        self.assertTrue(all(entry.is_plural for entry in response.updates))
        self.assertEqual(response.updates[0].updated_by, "alice")


class TestEditEntry(CloudTestCase):
    def test_web_edit_records_history(self):
        push_changes(self.ctx, added("save", "Save"))
        result = service.edit_entry(self.ctx, EditRequest(key="save", value="Store", actor="web-user"))
        self.assertEqual(result.applied[0].version, 2)
        entry = cloudhistory.get_history(self.conn, "demo", result.history_id)
        self.assertEqual(entry.source, SyncSource.WEB)
        self.assertEqual(entry.created_by, "web-user")

    def test_expected_version_mismatch(self):
        push_changes(self.ctx, added("save", "Save"))
        result = service.edit_entry(self.ctx, EditRequest(key="save", value="Store", expected_version=5))
        self.assertEqual(result.conflicts[0].conflict_type, ConflictType.VERSION_MISMATCH)
        self.assertEqual(self.value_of("save"), "Save")

    def test_delete(self):
        push_changes(self.ctx, added("save", "Save"))
        result = service.edit_entry(self.ctx, EditRequest(key="save", delete=True))
        self.assertEqual(result.applied[0].change_type, ChangeType.DELETED)
        self.assertIsNone(self.value_of("save"))
        self.assertEqual(service.list_entries(self.conn, "demo"), [])


if __name__ == "__main__":
    unittest.main()
