import json
import tempfile
import unittest
from pathlib import Path

from conftest import added, modified, open_cloud, push_changes
from fakes import FakeGitHub, json_file
from lrmsync import hash as lrmhash
from lrmsync.cloud import history as cloudhistory
from lrmsync.cloud import reconcile
from lrmsync.cloud import service
from lrmsync.cloud import store
from lrmsync.constants import ConflictType, GitHubSyncStatus, OperationType, SyncSource
from lrmsync.protocol import EditRequest, PullRequest

DE = "res/strings.de.json"


def h(value):
    return lrmhash.content_hash(value, None)


class ReconcileTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.conn, self.ctx = open_cloud(
            Path(self._tmp.name) / "cloud.db",
            github_repo="acme/app",
            github_path="res",
        )

    def tearDown(self):
        self.conn.close()
        self._tmp.cleanup()

    def reconcile(self, payload, sha="c1", path=DE):
        return reconcile.reconcile_commit(self.ctx, {path: json_file(payload)}, sha)

    def cloud_value(self, key, language="de"):
        row = store.get_translation(self.conn, "demo", (key, language, ""))
        return row.value if row else None

    def status(self, key, language="de"):
        return reconcile.github_status(self.ctx, (key, language, ""))

    def baseline(self, value):
        """Cloud and GitHub agree on ``save`` = value."""
        push_changes(self.ctx, added("save", value, language="de"))
        self.reconcile({"save": value}, sha="c0")


class TestPaths(ReconcileTestCase):
    def test_language_for_path(self):
        project = self.ctx.project
        self.assertEqual(reconcile.language_for_path(project, "res/strings.json"), "")
        self.assertEqual(reconcile.language_for_path(project, DE), "de")
        self.assertIsNone(reconcile.language_for_path(project, "other/strings.de.json"))
        self.assertIsNone(reconcile.language_for_path(project, "res/readme.md"))
        self.assertEqual(reconcile.repo_path(project, "fr"), "res/strings.fr.json")


class TestReconcileCommit(ReconcileTestCase):
    def test_new_github_keys_are_applied(self):
        result = self.reconcile({"save": "Speichern"})
        self.assertEqual([entry.key for entry in result.applied], ["save"])
        self.assertEqual(self.cloud_value("save"), "Speichern")
        entry = cloudhistory.get_history(self.conn, "demo", result.history_id)
        self.assertEqual(entry.operation_type, OperationType.PULL)
        self.assertEqual(entry.source, SyncSource.GITHUB)
        self.assertEqual(self.status("save"), GitHubSyncStatus.IN_SYNC)

    def test_matching_content_only_sets_baseline(self):
        self.baseline("Speichern")
        self.assertEqual(cloudhistory.count_history(self.conn, "demo"), 1)
        self.assertEqual(self.status("save"), GitHubSyncStatus.IN_SYNC)

    def test_github_change_applies_when_cloud_unchanged(self):
        self.baseline("Speichern")
        result = self.reconcile({"save": "Sichern"})
        self.assertEqual(len(result.applied), 1)
        self.assertEqual(result.pending, [])
        row = store.get_translation(self.conn, "demo", ("save", "de", ""))
        self.assertEqual((row.value, row.version), ("Sichern", 2))
        self.assertEqual(store.list_pending_conflicts(self.conn, "demo"), [])
        self.assertEqual(self.status("save"), GitHubSyncStatus.IN_SYNC)

    def test_unchanged_github_leaves_cloud_edit_alone(self):
        self.baseline("Speichern")
        push_changes(self.ctx, modified("save", "Sichern", h("Speichern"), language="de"))
        result = self.reconcile({"save": "Speichern"})
        self.assertEqual(result.unchanged, 1)
        self.assertEqual(self.cloud_value("save"), "Sichern")
        self.assertEqual(self.status("save"), GitHubSyncStatus.CLOUD_AHEAD)

    def test_both_sides_changed_becomes_pending_conflict(self):
        self.baseline("Speichern")
        push_changes(self.ctx, modified("save", "Sichern", h("Speichern"), language="de"))

        result = self.reconcile({"save": "Ablegen"})

        pending = result.pending[0]
        self.assertEqual(pending.conflict_type, ConflictType.BOTH_MODIFIED)
        self.assertEqual(pending.github_value, "Ablegen")
        self.assertEqual(pending.cloud_value, "Sichern")
        self.assertEqual(pending.base_value, "Speichern")
        self.assertEqual(pending.cloud_modified_by, "alice")
        self.assertEqual(self.cloud_value("save"), "Sichern")
        self.assertEqual(self.status("save"), GitHubSyncStatus.CONFLICTED)

    def test_cloud_value_without_baseline_needs_review(self):
        push_changes(self.ctx, added("save", "Sichern", language="de"))
        result = self.reconcile({"save": "Speichern"})
        self.assertEqual(result.pending[0].conflict_type, ConflictType.NEEDS_REVIEW)
        self.assertEqual(self.cloud_value("save"), "Sichern")

    def test_deleted_in_github_while_cloud_changed(self):
        self.baseline("Speichern")
        push_changes(self.ctx, modified("save", "Sichern", h("Speichern"), language="de"))
        result = self.reconcile({"open": "Öffnen"})
        self.assertEqual(result.pending[0].conflict_type, ConflictType.DELETED_IN_GITHUB)
        self.assertIsNone(result.pending[0].github_value)
        self.assertEqual(self.cloud_value("open"), "Öffnen")

    def test_github_deletion_applies_when_cloud_unchanged(self):
        self.baseline("Speichern")
        result = self.reconcile({})
        self.assertEqual(result.applied[0].change_type, "deleted")
        self.assertIsNone(self.cloud_value("save"))

    def test_unparseable_file_leaves_language_untouched(self):
        self.baseline("Speichern")
        result = reconcile.reconcile_commit(self.ctx, {DE: b"{broken"}, "c1")
        self.assertEqual(result.files_failed, [DE])
        self.assertEqual(result.applied, [])
        self.assertEqual(self.cloud_value("save"), "Speichern")

    def test_other_paths_are_ignored(self):
        result = reconcile.reconcile_commit(self.ctx, {"docs/strings.de.json": json_file({"a": "b"})}, "c1")
        self.assertEqual(result.applied, [])


class TestPendingConflicts(ReconcileTestCase):
    def setUp(self):
        super().setUp()
        self.baseline("Speichern")
        push_changes(self.ctx, modified("save", "Sichern", h("Speichern"), language="de"))
        self.pending = self.reconcile({"save": "Ablegen"}).pending[0]

    def test_push_of_conflicted_unit_is_refused(self):
        result = push_changes(self.ctx, modified("save", "Lokal", h("Sichern"), language="de"))
        self.assertEqual(result.conflicts[0].conflict_type, ConflictType.PENDING_GITHUB_CONFLICT)
        self.assertEqual(self.cloud_value("save"), "Sichern")

    def test_pull_reports_pending_conflicts(self):
        response = service.pull(self.ctx, PullRequest())
        self.assertEqual([item.id for item in response.conflicts], [self.pending.id])

    def test_new_github_content_refreshes_conflict_and_keeps_base(self):
        result = self.reconcile({"save": "Anders"}, sha="c2")
        refreshed = result.pending[0]
        self.assertEqual(refreshed.id, self.pending.id)
        self.assertEqual(refreshed.github_value, "Anders")
        self.assertEqual(refreshed.base_value, "Speichern")
        self.assertEqual(refreshed.commit_sha, "c2")

    def test_same_github_content_is_unchanged(self):
        result = self.reconcile({"save": "Ablegen"}, sha="c2")
        self.assertEqual(result.pending, [])
        self.assertEqual(result.unchanged, 1)

    def test_web_edit_refreshes_cloud_side(self):
        service.edit_entry(self.ctx, EditRequest(key="save", language="de", value="Sichern 2", actor="carol"))
        result = self.reconcile({"save": "Ablegen"}, sha="c2")
        self.assertEqual(result.unchanged, 1)
        conflict = store.list_pending_conflicts(self.conn, "demo")[0]
        self.assertEqual(conflict.id, self.pending.id)
        self.assertEqual((conflict.cloud_value, conflict.cloud_modified_by), ("Sichern 2", "carol"))
        self.assertEqual(conflict.github_value, "Ablegen")
        self.assertEqual(conflict.base_value, "Speichern")

    def test_convergence_clears_conflict(self):
        result = self.reconcile({"save": "Sichern"}, sha="c2")
        self.assertEqual(result.cleared_conflicts, [self.pending.id])
        self.assertEqual(store.list_pending_conflicts(self.conn, "demo"), [])
        self.assertEqual(self.status("save"), GitHubSyncStatus.IN_SYNC)

    def test_resolve_with_github(self):
        result = reconcile.resolve_pending_conflict(self.ctx, self.pending.id, "github")
        self.assertEqual(self.cloud_value("save"), "Ablegen")
        self.assertEqual(self.status("save"), GitHubSyncStatus.IN_SYNC)
        entry = cloudhistory.get_history(self.conn, "demo", result.history_id)
        self.assertEqual(entry.operation_type, OperationType.PULL)

    def test_resolve_with_cloud_leaves_cloud_ahead(self):
        result = reconcile.resolve_pending_conflict(self.ctx, self.pending.id, "cloud")
        self.assertIsNone(result.applied)
        self.assertIsNone(result.history_id)
        self.assertEqual(self.cloud_value("save"), "Sichern")
        self.assertEqual(self.status("save"), GitHubSyncStatus.CLOUD_AHEAD)

    def test_resolve_manual(self):
        with self.assertRaises(ValueError):
            reconcile.resolve_pending_conflict(self.ctx, self.pending.id, "manual")
        result = reconcile.resolve_pending_conflict(self.ctx, self.pending.id, "manual", manual_value="Sichern!")
        self.assertEqual(result.applied.version, 3)
        self.assertEqual(self.cloud_value("save"), "Sichern!")
        self.assertEqual(store.list_pending_conflicts(self.conn, "demo"), [])

    def test_revert_skips_conflicted_unit(self):
        entry = cloudhistory.list_history(self.conn, "demo")[0]
        result = service.revert(self.ctx, entry.history_id)
        self.assertEqual(result.conflicts[0].conflict_type, ConflictType.PENDING_GITHUB_CONFLICT)
        self.assertEqual(self.cloud_value("save"), "Sichern")


class TestGitHubRoundTrip(ReconcileTestCase):
    def test_reconcile_from_github_reads_branch_head(self):
        github = FakeGitHub({DE: json_file({"save": "Speichern"}), "README.md": b"hi"})
        result = reconcile.reconcile_from_github(self.ctx, github)
        self.assertEqual(result.commit_sha, "c0")
        self.assertEqual(self.cloud_value("save"), "Speichern")

    def test_publish_writes_cloud_ahead_languages(self):
        github = FakeGitHub({DE: json_file({"save": "Speichern"})})
        reconcile.reconcile_from_github(self.ctx, github)
        push_changes(
            self.ctx,
            modified("save", "Sichern", h("Speichern"), language="de"),
            added("save", "Enregistrer", language="fr"),
        )

        result = reconcile.publish_to_github(self.ctx, github)

        self.assertEqual(result.files_written, ["res/strings.de.json", "res/strings.fr.json"])
        self.assertEqual(result.units_published, 2)
        self.assertEqual(result.commit_sha, github.head)
        tree = github.commits[-1]
        self.assertEqual(json.loads(tree[DE]), {"save": "Sichern"})
        self.assertEqual(json.loads(tree["res/strings.fr.json"]), {"save": "Enregistrer"})
        statuses = set(reconcile.github_statuses(self.ctx).values())
        self.assertEqual(statuses, {GitHubSyncStatus.IN_SYNC})

        # The published commit comes back through the webhook as a no-op.
        again = reconcile.reconcile_from_github(self.ctx, github)
        self.assertEqual((again.applied, again.pending), ([], []))

    def test_publish_keeps_github_side_of_conflicted_units(self):
        github = FakeGitHub({DE: json_file({"save": "Speichern", "open": "Öffnen"})})
        reconcile.reconcile_from_github(self.ctx, github)
        push_changes(
            self.ctx,
            modified("save", "Sichern", h("Speichern"), language="de"),
            modified("open", "Aufmachen", h("Öffnen"), language="de"),
        )
        github.commit({DE: json_file({"save": "Ablegen", "open": "Öffnen"})})
        reconcile.reconcile_from_github(self.ctx, github)

        reconcile.publish_to_github(self.ctx, github)

        self.assertEqual(json.loads(github.commits[-1][DE]), {"open": "Aufmachen", "save": "Ablegen"})
        self.assertEqual(self.status("save"), GitHubSyncStatus.CONFLICTED)
        self.assertEqual(self.status("open"), GitHubSyncStatus.IN_SYNC)

    def test_nothing_to_publish(self):
        github = FakeGitHub({DE: json_file({"save": "Speichern"})})
        reconcile.reconcile_from_github(self.ctx, github)
        result = reconcile.publish_to_github(self.ctx, github)
        self.assertEqual(result.files_written, [])
        self.assertEqual(github.puts, [])

    def test_projects_for_push(self):
        matches = reconcile.projects_for_push(self.conn, "acme/app", "refs/heads/main")
        self.assertEqual([project.project_id for project in matches], ["demo"])
        self.assertEqual(reconcile.projects_for_push(self.conn, "acme/app", "refs/heads/dev"), [])


if __name__ == "__main__":
    unittest.main()
