"""SQL migrations for sqlledger.

Migrations are forward-only SQL scripts listed, in order, in the
``migrations`` section of the configuration:

    migrations:
      directory: database
      units:
        - file: schema.sql
          description: Base schema
        - file: migrations/002_jobs.sql
          description: Jobs and applications tables

Each script is split into statements and applied once; the ledger table
``schema_migrations`` records every applied file.
"""

from sqlledger.migrations.catalog import Catalog, MigrationUnit
from sqlledger.migrations.ledger import Ledger, LedgerEntry
from sqlledger.migrations.runner import (
    MigrationRunner,
    RunReport,
    UnitOutcome,
    UnitResult,
    is_benign_error,
    migrate,
)

__all__ = [
    "Catalog",
    "Ledger",
    "LedgerEntry",
    "MigrationRunner",
    "MigrationUnit",
    "RunReport",
    "UnitOutcome",
    "UnitResult",
    "is_benign_error",
    "migrate",
]
