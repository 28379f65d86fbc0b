import logging

from .base_model import Model, VirtualColumnSpec
from .constants import APP_NAME, LOGGER_NAME
from .errors import (
    ConflictError,
    MigrationError,
    MissingColumnError,
    MissingTableError,
    QueryError,
    SchemaError,
    StoreError,
)
from .manager import DocumentStore
from .migrations import Migration, MigrationRunner
from .query import AnyOf, Condition, Op, Where

VERSION = "1.0.0"

logging.getLogger(LOGGER_NAME).addHandler(logging.NullHandler())

__all__ = [
    "APP_NAME",
    "AnyOf",
    "Condition",
    "ConflictError",
    "DocumentStore",
    "Migration",
    "MigrationError",
    "MigrationRunner",
    "MissingColumnError",
    "MissingTableError",
    "Model",
    "Op",
    "QueryError",
    "SchemaError",
    "StoreError",
    "VERSION",
    "VirtualColumnSpec",
    "Where",
]
