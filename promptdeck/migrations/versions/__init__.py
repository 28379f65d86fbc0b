"""Registered schema/data migrations.

New migrations are created with ``MigrationRunner.create_migration`` and must
be appended to ``MIGRATIONS`` by hand; nothing is discovered at runtime.
"""

from .v0001_add_execution_origin import MIGRATION as v0001
from .v0002_change_claude_to_anthropic import MIGRATION as v0002

MIGRATIONS = sorted(
    [
        v0001,
        v0002,
    ],
    key=lambda m: m.version,
)

__all__ = ["MIGRATIONS"]
