import logging

from .constants import LOGGER_NAME

logger = logging.getLogger(LOGGER_NAME)


class ModelRegistry:
    """Entity models keyed by table name, initialized together at startup."""

    def __init__(self):
        self._models = {}
        self._initialized = {}

    def register_model(self, model):
        table = model.table_name
        if table in self._models:
            logger.warning("Model for table '%s' is already registered", table)
            return self._models[table]
        self._models[table] = model
        self._initialized[table] = False
        logger.info("Registered model '%s' with table '%s'", model.name, table)
        return model

    def get(self, table_name):
        return self._models.get(table_name)

    def __getitem__(self, table_name):
        return self._models[table_name]

    def __contains__(self, table_name):
        return table_name in self._models

    def __iter__(self):
        return iter(self._models.values())

    def __len__(self):
        return len(self._models)

    def initialize_all_tables(self):
        logger.info("Initializing all model tables...")
        for table, model in self._models.items():
            if self._initialized[table]:
                continue
            try:
                model.ensure_registered()
            except Exception:
                logger.exception("Failed to initialize table '%s' for model '%s'", table, model.name)
                raise
            self._initialized[table] = True
        logger.info("All model tables initialized (%d)", len(self._models))

    def are_all_tables_initialized(self):
        return all(self._initialized.values())

    def get_initialization_status(self):
        return {
            model.name: {"table_name": table, "initialized": self._initialized[table]}
            for table, model in self._models.items()
        }

    def reset(self):
        self._models.clear()
        self._initialized.clear()
