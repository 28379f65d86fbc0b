import logging

from aiohttp import web

from .api import REGISTRY_KEY, RUNNER_KEY, STORE_KEY, setup_routes
from .bootstrap import open_store
from .constants import LOGGER_NAME

logger = logging.getLogger(LOGGER_NAME)


def create_app(db_path=None, migrations=None):
    """aiohttp application bound to one document store.

    The store is opened (tables created, migrations applied) on startup and
    closed on cleanup.
    """
    app = web.Application()

    async def _open(app):
        store, registry, runner = open_store(db_path, migrations)
        app[STORE_KEY] = store
        app[REGISTRY_KEY] = registry
        app[RUNNER_KEY] = runner

    async def _close(app):
        store = app.get(STORE_KEY)
        if store is not None:
            store.close()

    app.on_startup.append(_open)
    app.on_cleanup.append(_close)
    setup_routes(app)
    return app
