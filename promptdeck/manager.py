import logging
import os
import re
import sqlite3
from collections import namedtuple
from contextlib import contextmanager

from .constants import (
    CONNECTION_PRAGMAS,
    DOCUMENT_COLUMNS,
    LOGGER_NAME,
    MIGRATIONS_TABLE,
    TIMESTAMP_COLUMNS,
    VIRTUAL_COLUMN_TYPES,
)
from .errors import MissingColumnError, MissingTableError, SchemaError, StoreError
from .paths import get_db_path

logger = logging.getLogger(LOGGER_NAME)

_ident_re = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_json_path_re = re.compile(r"^\$(?:\.[A-Za-z_][A-Za-z0-9_]*|\[\d+\])*$")
_generated_re = re.compile(
    r"\"?(\w+)\"?\s+\w+\s+GENERATED\s+ALWAYS\s+AS\s*\(\s*json_extract\(\s*data\s*,\s*'([^']*)'\s*\)\s*\)",
    re.IGNORECASE,
)
_line_comment_re = re.compile(r"--[^\n]*")
_block_comment_re = re.compile(r"/\*.*?\*/", re.DOTALL)

VirtualColumn = namedtuple("VirtualColumn", "table column json_path type")


def validate_identifier(name, kind="identifier"):
    if not isinstance(name, str) or not _ident_re.match(name) or name.lower().startswith("sqlite_"):
        raise SchemaError(f"invalid {kind}: {name!r}")
    return name


def validate_json_path(path):
    if not isinstance(path, str) or not _json_path_re.match(path):
        raise SchemaError(f"invalid JSON path: {path!r}")
    return path


def _normalize_column_type(column_type):
    normalized = str(column_type or "").strip().upper()
    if normalized not in VIRTUAL_COLUMN_TYPES:
        raise SchemaError(
            f"unsupported virtual column type {column_type!r}; expected one of {', '.join(VIRTUAL_COLUMN_TYPES)}"
        )
    return normalized


def _has_sql(text):
    stripped = _block_comment_re.sub("", _line_comment_re.sub("", text))
    return bool(stripped.replace(";", "").strip())


def split_sql_statements(sql):
    """Split a SQL script into single statements.

    Semicolons inside string literals, comments and trigger bodies are kept
    in place; fragments holding only comments or whitespace are dropped.
    """
    statements = []
    buffer = ""
    for piece in (sql or "").split(";"):
        buffer += piece + ";"
        if sqlite3.complete_statement(buffer):
            if _has_sql(buffer):
                statements.append(buffer.strip())
            buffer = ""
    if _has_sql(buffer):
        # Unterminated input; hand it to sqlite so the error surfaces there.
        statements.append(buffer.strip().rstrip(";"))
    return statements


class DocumentStore:
    """Owns the SQLite connection plus the table and virtual column registries.

    Every entity lives in its own table ``(id, data, created_at, updated_at)``
    with the payload serialized as JSON in ``data``. Generated columns can be
    layered on top for JSON paths that are filtered or sorted on often.
    """

    def __init__(self, db_path=None):
        self.db_path = db_path or get_db_path()
        self._conn = None
        self._tables = set()
        self._virtual_columns = {}
        self._tx_depth = 0

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def is_open(self):
        return self._conn is not None

    @property
    def connection(self):
        if self._conn is None:
            raise StoreError("document store is not open")
        return self._conn

    @property
    def in_transaction(self):
        return self._tx_depth > 0

    def open(self):
        if self._conn is not None:
            return self
        if self.db_path != ":memory:":
            parent = os.path.dirname(os.path.abspath(self.db_path))
            os.makedirs(parent, exist_ok=True)

        conn = sqlite3.connect(self.db_path, isolation_level=None, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        for name, value in CONNECTION_PRAGMAS:
            conn.execute(f"PRAGMA {name} = {value}")
        self._conn = conn
        self._tx_depth = 0
        self._reconcile()
        logger.info("Database initialized at: %s", self.db_path)
        return self

    def close(self):
        if self._conn is None:
            return
        self._conn.close()
        self._conn = None
        self._tables.clear()
        self._virtual_columns.clear()
        self._tx_depth = 0
        logger.info("Database connection closed")

    def _reconcile(self):
        """Load tables and generated columns that already exist on disk."""
        conn = self._conn
        rows = conn.execute(
            "SELECT name, sql FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
        ).fetchall()
        for row in rows:
            table = row["name"]
            if table == MIGRATIONS_TABLE or not _ident_re.match(table):
                continue
            columns = conn.execute(f'PRAGMA table_xinfo("{table}")').fetchall()
            if not set(DOCUMENT_COLUMNS) <= {c["name"] for c in columns}:
                continue
            self._tables.add(table)
            self._virtual_columns.setdefault(table, {})
            paths = {m.group(1): m.group(2) for m in _generated_re.finditer(row["sql"] or "")}
            for col in columns:
                # hidden: 2 = virtual generated, 3 = stored generated
                if col["hidden"] not in (2, 3):
                    continue
                declared = (col["type"] or "").split()
                self._track_virtual_column(
                    table,
                    col["name"],
                    paths.get(col["name"]),
                    declared[0].upper() if declared else "TEXT",
                )
        logger.debug(
            "reconciled tables=%s virtual_columns=%s",
            sorted(self._tables),
            {t: sorted(cols) for t, cols in self._virtual_columns.items() if cols},
        )

    def ensure_table(self, table_name):
        validate_identifier(table_name, "table name")
        if table_name in self._tables:
            return

        try:
            with self.transaction() as conn:
                conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS "{table_name}" (
                      id TEXT PRIMARY KEY,
                      data TEXT NOT NULL,
                      created_at TEXT NOT NULL,
                      updated_at TEXT NOT NULL
                    )
                    """
                )
                for column in TIMESTAMP_COLUMNS:
                    conn.execute(
                        f'CREATE INDEX IF NOT EXISTS "idx_{table_name}_{column}" ON "{table_name}" ({column})'
                    )
        except sqlite3.Error as exc:
            logger.error("Error creating table '%s': %s", table_name, exc)
            raise SchemaError(f"could not create table {table_name!r}: {exc}") from exc

        self._tables.add(table_name)
        self._virtual_columns.setdefault(table_name, {})
        logger.info("Table '%s' created/verified", table_name)

    def has_table(self, table_name):
        return table_name in self._tables

    def get_tables(self):
        return sorted(self._tables)

    def list_indexes(self, table_name):
        validate_identifier(table_name, "table name")
        rows = self.connection.execute(f'PRAGMA index_list("{table_name}")').fetchall()
        return sorted(r["name"] for r in rows)

    def _physical_columns(self, table_name):
        rows = self.connection.execute(f'PRAGMA table_xinfo("{table_name}")').fetchall()
        return {r["name"] for r in rows}

    def _track_virtual_column(self, table_name, column_name, json_path, column_type):
        column = VirtualColumn(table_name, column_name, json_path, column_type)
        self._virtual_columns.setdefault(table_name, {})[column_name] = column
        return column

    def create_virtual_column(self, table_name, column_name, json_path, column_type="TEXT"):
        if table_name not in self._tables:
            raise MissingTableError(
                f"table {table_name!r} does not exist; ensure_table() must run before adding virtual columns"
            )
        validate_identifier(column_name, "column name")
        if column_name in DOCUMENT_COLUMNS:
            raise SchemaError(f"{column_name!r} is a reserved document column")
        validate_json_path(json_path)
        column_type = _normalize_column_type(column_type)

        existing = self.get_virtual_column(table_name, column_name)
        if existing is not None:
            logger.warning("Virtual column '%s.%s' already exists", table_name, column_name)
            return existing

        if column_name in self._physical_columns(table_name):
            logger.warning(
                "Virtual column '%s.%s' already present in schema, tracking without ALTER",
                table_name,
                column_name,
            )
            return self._track_virtual_column(table_name, column_name, json_path, column_type)

        sql = (
            f'ALTER TABLE "{table_name}" ADD COLUMN "{column_name}" {column_type} '
            f"GENERATED ALWAYS AS (json_extract(data, '{json_path}')) VIRTUAL"
        )
        try:
            self.connection.execute(sql)
        except sqlite3.Error as exc:
            logger.error("Error creating virtual column '%s.%s': %s", table_name, column_name, exc)
            raise SchemaError(f"could not create virtual column {table_name}.{column_name}: {exc}") from exc

        logger.info("Virtual column '%s.%s' -> %s (%s) created", table_name, column_name, json_path, column_type)
        return self._track_virtual_column(table_name, column_name, json_path, column_type)

    def create_virtual_column_index(self, table_name, column_name, index_name=None):
        if not self.has_virtual_column(table_name, column_name):
            raise MissingColumnError(f"virtual column {table_name}.{column_name} is not registered")
        index_name = validate_identifier(index_name or f"idx_{table_name}_{column_name}", "index name")
        try:
            self.connection.execute(
                f'CREATE INDEX IF NOT EXISTS "{index_name}" ON "{table_name}" ("{column_name}")'
            )
        except sqlite3.Error as exc:
            logger.error("Error creating index '%s' on '%s.%s': %s", index_name, table_name, column_name, exc)
            raise SchemaError(f"could not create index {index_name}: {exc}") from exc
        logger.info("Index '%s' on '%s.%s' created/verified", index_name, table_name, column_name)
        return index_name

    def has_virtual_column(self, table_name, column_name):
        return column_name in self._virtual_columns.get(table_name, {})

    def get_virtual_column(self, table_name, column_name):
        return self._virtual_columns.get(table_name, {}).get(column_name)

    def get_virtual_columns(self, table_name):
        return sorted(self._virtual_columns.get(table_name, {}))

    def find_virtual_column(self, table_name, json_path):
        for column in self._virtual_columns.get(table_name, {}).values():
            if column.json_path == json_path:
                return column
        return None

    def drop_virtual_column(self, table_name, column_name):
        # SQLite cannot drop a generated column without rebuilding the table,
        # so only the tracking entry goes away.
        removed = self._virtual_columns.get(table_name, {}).pop(column_name, None)
        if removed is None:
            logger.warning("Virtual column '%s.%s' is not tracked", table_name, column_name)
            return False
        logger.warning(
            "Virtual column '%s.%s' untracked; the physical column stays until the table is rebuilt",
            table_name,
            column_name,
        )
        return True

    @contextmanager
    def transaction(self):
        conn = self.connection
        depth = self._tx_depth
        if depth == 0:
            conn.execute("BEGIN IMMEDIATE")
        else:
            conn.execute(f"SAVEPOINT sp_{depth}")
        self._tx_depth += 1
        try:
            yield conn
        except BaseException:
            self._unwind(conn, depth)
            raise
        try:
            if depth == 0:
                conn.execute("COMMIT")
            else:
                conn.execute(f"RELEASE SAVEPOINT sp_{depth}")
        except sqlite3.Error:
            # a failed COMMIT leaves the transaction open
            logger.error("Commit failed at transaction depth %d, rolling back", depth)
            self._unwind(conn, depth)
            raise
        self._tx_depth = depth

    def _unwind(self, conn, depth):
        try:
            if depth == 0:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
            else:
                conn.execute(f"ROLLBACK TO SAVEPOINT sp_{depth}")
                conn.execute(f"RELEASE SAVEPOINT sp_{depth}")
        finally:
            self._tx_depth = depth

    def run_in_transaction(self, fn, *args, **kwargs):
        with self.transaction():
            return fn(*args, **kwargs)

    def execute_script(self, sql):
        conn = self.connection
        statements = split_sql_statements(sql)
        for statement in statements:
            conn.execute(statement)
        return len(statements)

    def vacuum(self):
        if self.in_transaction:
            raise StoreError("VACUUM cannot run inside a transaction")
        self.connection.execute("VACUUM")
        logger.info("Database vacuumed")

    def backup(self, backup_path):
        parent = os.path.dirname(os.path.abspath(backup_path))
        os.makedirs(parent, exist_ok=True)
        target = sqlite3.connect(backup_path)
        try:
            self.connection.backup(target)
        finally:
            target.close()
        logger.info("Database backed up to: %s", backup_path)
