class StoreError(Exception):
    """Base class for document store failures."""


class SchemaError(StoreError):
    """DDL failed or an identifier, JSON path or column type was rejected."""


class MissingTableError(SchemaError):
    pass


class MissingColumnError(SchemaError):
    pass


class MigrationError(StoreError):
    pass


class QueryError(StoreError, ValueError):
    """A query referenced an unknown field or an unsupported operator/value."""


class ConflictError(StoreError):
    """A uniqueness rule of an entity model was violated."""
