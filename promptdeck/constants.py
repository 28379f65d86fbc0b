APP_NAME = "PromptDeck"

LOGGER_NAME = APP_NAME

# Applied to every connection, in order.
CONNECTION_PRAGMAS = (
    ("journal_mode", "WAL"),
    ("synchronous", "NORMAL"),
    ("cache_size", "1000"),
    ("temp_store", "memory"),
    ("busy_timeout", "5000"),
)

NATIVE_COLUMNS = ("id", "created_at", "updated_at")
TIMESTAMP_COLUMNS = ("created_at", "updated_at")
DOCUMENT_COLUMNS = ("id", "data", "created_at", "updated_at")

VIRTUAL_COLUMN_TYPES = ("TEXT", "INTEGER", "REAL", "BLOB")

MIGRATIONS_TABLE = "schema_migrations"

DEFAULT_PAGE_LIMIT = 20
MAX_PAGE_LIMIT = 200
