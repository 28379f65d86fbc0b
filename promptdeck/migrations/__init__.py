from .runner import Migration, MigrationRunner, MigrationState
from .versions import MIGRATIONS

__all__ = ["MIGRATIONS", "Migration", "MigrationRunner", "MigrationState"]
