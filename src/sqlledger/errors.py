"""Exceptions raised by sqlledger."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sqlledger.migrations.runner import RunReport


class SqlLedgerError(Exception):
    """Base class for sqlledger errors."""

    pass


class ConfigurationError(SqlLedgerError):
    """Raised when the configuration cannot drive a run.

    Always raised before any connection is opened or schema is touched.
    """

    pass


class CatalogError(ConfigurationError):
    """Raised when the migration catalog is invalid (e.g. duplicate files)."""

    pass


class DatabaseUnavailableError(SqlLedgerError):
    """Raised when the database cannot be reached after all retries."""

    pass


class MigrationError(SqlLedgerError):
    """Raised when a migration unit fails with a non-benign error.

    Attributes:
        filename: Catalog filename of the failing unit.
        message: Database error text.
        report: Partial run report up to and including the failure.
    """

    def __init__(self, filename: str, message: str, report: RunReport | None = None) -> None:
        super().__init__(f"Migration {filename} failed: {message}")
        self.filename = filename
        self.message = message
        self.report = report
