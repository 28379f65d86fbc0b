import os
import tempfile
import unittest

from promptdeck.errors import MigrationError
from promptdeck.manager import DocumentStore
from promptdeck.migrations import MIGRATIONS, Migration, MigrationRunner, MigrationState
from promptdeck.models import build_models

V1 = Migration(
    version=1,
    name="create_notes",
    up="CREATE TABLE notes (id INTEGER PRIMARY KEY, body TEXT);",
    down="DROP TABLE notes;",
)
V2 = Migration(
    version=2,
    name="create_tags",
    up="CREATE TABLE tags (id INTEGER PRIMARY KEY, label TEXT); INSERT INTO tags (label) VALUES ('first');",
    down="DROP TABLE tags;",
)
V3 = Migration(
    version=3,
    name="seed_notes",
    up="INSERT INTO notes (body) VALUES ('hello; world');",
    down="DELETE FROM notes;",
)
V3_BROKEN = Migration(
    version=3,
    name="seed_notes_broken",
    up="INSERT INTO notes (body) VALUES ('kept?'); INSERT INTO missing_table (x) VALUES (1);",
    down="",
)


class MigrationRunnerTests(unittest.TestCase):
    def setUp(self):
        self.store = DocumentStore(":memory:").open()
        self.addCleanup(self.store.close)

    def _applied_versions(self, runner):
        return [m["version"] for m in runner.get_applied_migrations()]

    def _table_exists(self, name):
        row = self.store.connection.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
        ).fetchone()
        return row is not None

    def test_initialize_sorts_by_version(self):
        runner = MigrationRunner(self.store, [V2, V1, V3]).initialize()

        self.assertEqual(runner.state, MigrationState.LOADED)
        self.assertEqual([m.version for m in runner.get_all_migrations()], [1, 2, 3])

        applied = runner.run_migrations()
        self.assertEqual([m.version for m in applied], [1, 2, 3])
        self.assertEqual(self._applied_versions(runner), [1, 2, 3])
        self.assertEqual(runner.get_current_version(), 3)
        self.assertEqual(runner.state, MigrationState.IDLE)

    def test_second_run_is_a_no_op(self):
        runner = MigrationRunner(self.store, [V1, V2]).initialize()
        runner.run_migrations()

        self.assertEqual(runner.run_migrations(), [])
        self.assertEqual(runner.get_pending_migrations(), [])
        self.assertEqual(self._applied_versions(runner), [1, 2])

    def test_failed_migration_is_not_recorded(self):
        runner = MigrationRunner(self.store, [V1, V2, V3_BROKEN]).initialize()

        with self.assertRaises(MigrationError):
            runner.run_migrations()

        self.assertEqual(self._applied_versions(runner), [1, 2])
        self.assertEqual(runner.get_current_version(), 2)
        self.assertEqual(runner.state, MigrationState.IDLE)
        self.assertFalse(self.store.in_transaction)
        count = self.store.connection.execute("SELECT COUNT(*) FROM notes").fetchone()[0]
        self.assertEqual(count, 0)
        self.assertEqual([m.version for m in runner.get_pending_migrations()], [3])

    def test_rollback_runs_down_in_descending_order(self):
        runner = MigrationRunner(self.store, [V1, V2, V3]).initialize()
        runner.run_migrations()

        rolled_back = runner.rollback(1)

        self.assertEqual([m.version for m in rolled_back], [3, 2])
        self.assertEqual(self._applied_versions(runner), [1])
        self.assertTrue(self._table_exists("notes"))
        self.assertFalse(self._table_exists("tags"))
        count = self.store.connection.execute("SELECT COUNT(*) FROM notes").fetchone()[0]
        self.assertEqual(count, 0)

    def test_rollback_to_current_or_higher_does_nothing(self):
        runner = MigrationRunner(self.store, [V1, V2]).initialize()
        runner.run_migrations()

        self.assertEqual(runner.rollback(2), [])
        self.assertEqual(runner.rollback(5), [])
        self.assertEqual(runner.get_current_version(), 2)

    def test_duplicate_versions_are_rejected(self):
        duplicate = Migration(version=2, name="another_two", up="SELECT 1;", down="")
        runner = MigrationRunner(self.store, [V1, V2, duplicate])

        with self.assertRaises(MigrationError):
            runner.initialize()
        self.assertEqual(runner.state, MigrationState.UNLOADED)

    def test_invalid_migrations_are_rejected(self):
        for bad in (
            Migration(version=0, name="zero", up="", down=""),
            Migration(version="1", name="text_version", up="", down=""),
            Migration(version=1, name="", up="", down=""),
            Migration(version=1, name="no_up", up=None, down=""),
        ):
            with self.subTest(migration=bad):
                with self.assertRaises(MigrationError):
                    MigrationRunner(self.store, [bad]).initialize()

    def test_run_requires_initialize(self):
        runner = MigrationRunner(self.store, [V1])
        with self.assertRaises(MigrationError):
            runner.run_migrations()

    def test_current_version_without_tracking_table(self):
        runner = MigrationRunner(self.store, [V1]).initialize()
        self.assertEqual(runner.get_current_version(), 0)
        self.assertEqual(runner.get_applied_migrations(), [])

    def test_create_migration_writes_next_version(self):
        runner = MigrationRunner(self.store, [V1, V2, V3])
        with tempfile.TemporaryDirectory() as temp_dir:
            path = runner.create_migration("Add Widgets!", directory=temp_dir)

            self.assertEqual(os.path.basename(path), "v0004_add_widgets.py")
            with open(path, encoding="utf-8") as fh:
                source = fh.read()
            self.assertIn("version=4", source)
            self.assertIn("'add_widgets'", source)

            with self.assertRaises(MigrationError):
                runner.create_migration("add widgets", directory=temp_dir)
        with self.assertRaises(MigrationError):
            runner.create_migration("  ")


class RegisteredMigrationsTests(unittest.TestCase):
    def setUp(self):
        self.store = DocumentStore(":memory:").open()
        self.addCleanup(self.store.close)
        self.registry = build_models(self.store)

    def test_registered_migrations_are_ordered(self):
        versions = [m.version for m in MIGRATIONS]
        self.assertEqual(versions, sorted(versions))
        self.assertEqual(len(versions), len(set(versions)))

    def test_executions_get_origin_and_provider_rename(self):
        executions = self.registry["executions"]
        legacy = executions.create({"status": "completed", "provider": "claude"})
        tagged = executions.create({"status": "completed", "provider": "openai", "origin": "api"})

        runner = MigrationRunner(self.store).initialize()
        runner.run_migrations()

        self.assertEqual(runner.get_current_version(), MIGRATIONS[-1].version)
        legacy = executions.find_by_id(legacy["id"])
        tagged = executions.find_by_id(tagged["id"])
        self.assertEqual(legacy["origin"], "app")
        self.assertEqual(legacy["provider"], "anthropic")
        self.assertEqual(tagged["origin"], "api")
        self.assertEqual(tagged["provider"], "openai")

    def test_origin_rollback_removes_field(self):
        executions = self.registry["executions"]
        doc = executions.create({"status": "pending", "provider": "openai"})
        runner = MigrationRunner(self.store).initialize()
        runner.run_migrations()

        runner.rollback(0)

        self.assertNotIn("origin", executions.find_by_id(doc["id"]))
        self.assertEqual(runner.get_current_version(), 0)


if __name__ == "__main__":
    unittest.main()
