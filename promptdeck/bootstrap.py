import logging

from .constants import LOGGER_NAME
from .manager import DocumentStore
from .migrations import MigrationRunner
from .models import build_models

logger = logging.getLogger(LOGGER_NAME)


def open_store(db_path=None, migrations=None):
    """Open the store, create entity tables and apply pending migrations.

    Entity tables come first because registered migrations rewrite them.
    Any failure closes the store and propagates.
    """
    store = DocumentStore(db_path).open()
    try:
        registry = build_models(store)
        runner = MigrationRunner(store, migrations).initialize()
        runner.run_migrations()
    except Exception:
        logger.exception("Startup failed, closing %s", store.db_path)
        store.close()
        raise
    return store, registry, runner
