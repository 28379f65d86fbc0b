import enum
import logging
import os
import re
import sqlite3
from collections import namedtuple

from ..constants import LOGGER_NAME, MIGRATIONS_TABLE
from ..errors import MigrationError

logger = logging.getLogger(LOGGER_NAME)

Migration = namedtuple("Migration", "version name up down")

_MIGRATION_TEMPLATE = '''from ..runner import Migration

MIGRATION = Migration(
    version={version},
    name={name!r},
    up="""
        -- migration SQL, e.g. CREATE TABLE example (id INTEGER PRIMARY KEY, name TEXT);
    """,
    down="""
        -- rollback SQL, e.g. DROP TABLE IF EXISTS example;
    """,
)
'''


class MigrationState(enum.Enum):
    UNLOADED = "unloaded"
    LOADED = "loaded"
    IDLE = "idle"
    MIGRATING = "migrating"
    ROLLING_BACK = "rolling_back"


class MigrationRunner:
    """Applies versioned SQL migrations and records them in ``schema_migrations``.

    Each migration runs in its own transaction together with its tracking
    row, so a failed step is never recorded as applied.
    """

    def __init__(self, store, migrations=None):
        if migrations is None:
            from .versions import MIGRATIONS

            migrations = MIGRATIONS
        self.store = store
        self._source = list(migrations)
        self._migrations = []
        self.state = MigrationState.UNLOADED

    def initialize(self):
        logger.info(
            "Loading migrations count=%d versions=%s",
            len(self._source),
            [getattr(m, "version", None) for m in self._source],
        )
        seen = {}
        for migration in self._source:
            version = getattr(migration, "version", None)
            name = getattr(migration, "name", None)
            label = name if isinstance(name, str) and name else "unknown"
            if isinstance(version, bool) or not isinstance(version, int) or version < 1:
                raise MigrationError(f"Invalid migration {label!r}: version must be a positive integer, got {version!r}")
            if not isinstance(name, str) or not name.strip():
                raise MigrationError(f"Invalid migration version {version}: missing name")
            if not isinstance(getattr(migration, "up", None), str):
                raise MigrationError(f"Invalid migration {version} ({name}): up SQL must be a string")
            down = getattr(migration, "down", None)
            if down is not None and not isinstance(down, str):
                raise MigrationError(f"Invalid migration {version} ({name}): down SQL must be a string")
            if version in seen:
                raise MigrationError(f"Duplicate migration version {version}: {seen[version]!r} and {name!r}")
            seen[version] = name

        self._migrations = sorted(self._source, key=lambda m: m.version)
        self.state = MigrationState.LOADED
        logger.info("Migrations loaded versions=%s", [m.version for m in self._migrations])
        return self

    def _ensure_loaded(self):
        if self.state is MigrationState.UNLOADED:
            raise MigrationError("migrations are not loaded; call initialize() first")

    def _ensure_migration_table(self):
        conn = self.store.connection
        row = conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
            (MIGRATIONS_TABLE,),
        ).fetchone()
        if row:
            return
        conn.execute(
            f"""
            CREATE TABLE {MIGRATIONS_TABLE} (
              version INTEGER PRIMARY KEY,
              name TEXT NOT NULL,
              applied_at DATETIME DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        logger.info("Created %s table", MIGRATIONS_TABLE)

    def get_current_version(self):
        try:
            row = self.store.connection.execute(f"SELECT MAX(version) AS version FROM {MIGRATIONS_TABLE}").fetchone()
        except sqlite3.OperationalError:
            # tracking table not created yet
            return 0
        return int(row["version"] or 0) if row else 0

    def run_migrations(self):
        self._ensure_loaded()
        self.state = MigrationState.MIGRATING
        applied = []
        try:
            logger.info("Starting database migrations")
            self._ensure_migration_table()
            current = self.get_current_version()
            logger.info("Current database version=%d", current)

            pending = [m for m in self._migrations if m.version > current]
            if not pending:
                logger.info("No pending migrations")
                return applied

            logger.info("Running %d migration(s)", len(pending))
            for migration in pending:
                self._apply(migration)
                applied.append(migration)
            logger.info("All migrations completed successfully")
            return applied
        finally:
            self.state = MigrationState.IDLE

    def rollback(self, target_version):
        self._ensure_loaded()
        current = self.get_current_version()
        if target_version >= current:
            logger.warning(
                "Target version is not lower than current version current=%d target=%d",
                current,
                target_version,
            )
            return []

        to_rollback = sorted(
            (m for m in self._migrations if target_version < m.version <= current),
            key=lambda m: m.version,
            reverse=True,
        )
        logger.info(
            "Rolling back %d migration(s) from=%d to=%d",
            len(to_rollback),
            current,
            target_version,
        )
        self.state = MigrationState.ROLLING_BACK
        rolled_back = []
        try:
            for migration in to_rollback:
                self._revert(migration)
                rolled_back.append(migration)
            logger.info("Rollback completed successfully")
            return rolled_back
        finally:
            self.state = MigrationState.IDLE

    def _apply(self, migration):
        logger.info("Running migration version=%d name=%s", migration.version, migration.name)
        try:
            with self.store.transaction() as conn:
                self.store.execute_script(migration.up)
                conn.execute(
                    f"INSERT INTO {MIGRATIONS_TABLE} (version, name) VALUES (?, ?)",
                    (migration.version, migration.name),
                )
        except sqlite3.Error as exc:
            logger.error("Migration failed version=%d name=%s: %s", migration.version, migration.name, exc)
            raise MigrationError(f"migration {migration.version} ({migration.name}) failed: {exc}") from exc
        logger.info("Migration completed version=%d name=%s", migration.version, migration.name)

    def _revert(self, migration):
        logger.info("Rolling back migration version=%d name=%s", migration.version, migration.name)
        try:
            with self.store.transaction() as conn:
                self.store.execute_script(migration.down or "")
                conn.execute(f"DELETE FROM {MIGRATIONS_TABLE} WHERE version = ?", (migration.version,))
        except sqlite3.Error as exc:
            logger.error("Migration rollback failed version=%d name=%s: %s", migration.version, migration.name, exc)
            raise MigrationError(f"rollback of migration {migration.version} ({migration.name}) failed: {exc}") from exc
        logger.info("Migration rolled back version=%d name=%s", migration.version, migration.name)

    def get_applied_migrations(self):
        try:
            rows = self.store.connection.execute(
                f"SELECT version, name, applied_at FROM {MIGRATIONS_TABLE} ORDER BY version"
            ).fetchall()
        except sqlite3.OperationalError:
            return []
        return [{"version": r["version"], "name": r["name"], "applied_at": r["applied_at"]} for r in rows]

    def get_pending_migrations(self):
        self._ensure_loaded()
        current = self.get_current_version()
        return [m for m in self._migrations if m.version > current]

    def get_all_migrations(self):
        self._ensure_loaded()
        return list(self._migrations)

    def create_migration(self, name, directory=None):
        """Write a numbered migration module and return its path.

        The new ``MIGRATION`` still has to be added to ``versions.MIGRATIONS``.
        """
        slug = re.sub(r"\W+", "_", str(name or "").strip().lower()).strip("_")
        if not slug:
            raise MigrationError("migration name is required")
        versions = [m.version for m in self._source if isinstance(getattr(m, "version", None), int)]
        next_version = max(versions, default=0) + 1

        directory = directory or os.path.join(os.path.dirname(__file__), "versions")
        os.makedirs(directory, exist_ok=True)
        path = os.path.join(directory, f"v{next_version:04d}_{slug}.py")
        if os.path.exists(path):
            raise MigrationError(f"migration file already exists: {path}")
        with open(path, "w", encoding="utf-8") as fh:
            fh.write(_MIGRATION_TEMPLATE.format(version=next_version, name=slug))
        logger.info("Migration created: %s", os.path.basename(path))
        return path
