"""Schema migrations for the outbox table.

Modules
-------
versions  Migration dataclass and the ordered MIGRATIONS history
manager   MigrationManager with migrate() / current_version()

Tags:
    migrations, schema, database, idempotent, DDL
"""

from txoutbox.core.migrations.manager import MigrationManager, MigrationResult
from txoutbox.core.migrations.versions import MIGRATIONS, OUTBOX_TABLE, Migration

__all__ = ["MIGRATIONS", "OUTBOX_TABLE", "Migration", "MigrationManager", "MigrationResult"]
