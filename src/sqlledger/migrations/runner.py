"""Migration runner for sqlledger.

This module provides the core migration functionality:
- Applying catalog units in order, exactly once
- Classifying execution errors as benign ("already exists") or fatal
- Recording applied units in the ledger
- Orchestrating a full run: connect, migrate, verify
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum

from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError

from sqlledger.config import Config
from sqlledger.database import engine_scope, error_message, wait_for_connection
from sqlledger.errors import ConfigurationError, DatabaseUnavailableError, MigrationError
from sqlledger.logging import get_logger
from sqlledger.migrations.catalog import Catalog, MigrationUnit
from sqlledger.migrations.ledger import Ledger
from sqlledger.splitter import split_statements
from sqlledger.verifier import VerificationReport, verify_schema

log = get_logger("runner")

BENIGN_MARKER = "already exists"

# duplicate_table, duplicate_object, duplicate_schema, duplicate_function,
# duplicate_column
BENIGN_SQLSTATES = frozenset({"42P07", "42710", "42P06", "42723", "42701"})


class UnitOutcome(str, Enum):
    """Terminal state of one migration unit within a run."""

    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    MISSING = "missing"
    BENIGN_FAILURE = "benign_failure"
    FAILED = "failed"


@dataclass
class UnitResult:
    """What happened to one unit during a run."""

    filename: str
    description: str
    outcome: UnitOutcome
    elapsed_seconds: float = 0.0
    statements: int = 0
    error: str | None = None


@dataclass
class RunReport:
    """Result of a migration run.

    ``applied_count`` includes units recorded after a benign "already exists"
    error; those are also listed in ``benign``.
    """

    results: list[UnitResult] = field(default_factory=list)
    failed_unit: str | None = None
    error: str | None = None
    verification: VerificationReport | None = None

    def _filenames(self, *outcomes: UnitOutcome) -> list[str]:
        return [r.filename for r in self.results if r.outcome in outcomes]

    @property
    def applied(self) -> list[str]:
        return self._filenames(UnitOutcome.APPLIED, UnitOutcome.BENIGN_FAILURE)

    @property
    def applied_count(self) -> int:
        return len(self.applied)

    @property
    def skipped_count(self) -> int:
        return len(self._filenames(UnitOutcome.ALREADY_APPLIED))

    @property
    def missing(self) -> list[str]:
        return self._filenames(UnitOutcome.MISSING)

    @property
    def benign(self) -> list[str]:
        return self._filenames(UnitOutcome.BENIGN_FAILURE)

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def all_critical_tables_present(self) -> bool:
        return self.verification is not None and self.verification.all_tables_present

    @property
    def status(self) -> str:
        """``failed``, ``completed_with_warnings`` or ``success``."""
        if self.failed:
            return "failed"
        if self.verification is not None and not self.verification.all_present:
            return "completed_with_warnings"
        return "success"

    @property
    def success(self) -> bool:
        """Exit contract: no fatal error and every critical object present."""
        if self.failed:
            return False
        return self.verification is None or self.verification.critical_ok

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "success": self.success,
            "applied_count": self.applied_count,
            "skipped_count": self.skipped_count,
            "missing": self.missing,
            "benign": self.benign,
            "failed_unit": self.failed_unit,
            "error": self.error,
            "all_critical_tables_present": self.all_critical_tables_present,
            "units": [
                {
                    "filename": r.filename,
                    "outcome": r.outcome.value,
                    "elapsed_seconds": round(r.elapsed_seconds, 3),
                    "statements": r.statements,
                    "error": r.error,
                }
                for r in self.results
            ],
            "verification": self.verification.to_dict() if self.verification else None,
        }


def is_benign_error(exc: BaseException) -> bool:
    """Whether an execution error means the unit's end state already exists.

    Matches the "already exists" text of the database message, and the
    equivalent SQLSTATE codes when the driver exposes them.
    """
    if BENIGN_MARKER in error_message(exc).lower():
        return True
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return sqlstate in BENIGN_SQLSTATES


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class MigrationRunner:
    """Applies a catalog of SQL units to one database, in order.

    Usage:
        runner = MigrationRunner(engine, catalog)
        report = runner.run()
    """

    def __init__(self, engine: Engine, catalog: Catalog, ledger: Ledger | None = None) -> None:
        self.engine = engine
        self.catalog = catalog
        self.ledger = ledger or Ledger(engine)

    def run(self) -> RunReport:
        """Apply every pending unit.

        Returns:
            RunReport for the run.

        Raises:
            MigrationError: On the first unit that fails: a non-benign
                execution error, an unreadable source or a ledger write
                error. The partial report is attached as ``error.report``.
            DBAPIError: If the ledger table cannot be created.
        """
        self.ledger.ensure_schema()
        report = RunReport()

        log.info("migrations_starting", units=len(self.catalog))

        for unit in self.catalog:
            report.results.append(self._apply(unit, report))

        log.info(
            "migrations_complete",
            applied=report.applied_count,
            skipped=report.skipped_count,
            missing=len(report.missing),
        )
        return report

    def pending(self) -> list[MigrationUnit]:
        """Units not yet recorded in the ledger, in catalog order."""
        self.ledger.ensure_schema()
        applied = self.ledger.applied_filenames()
        return [unit for unit in self.catalog if unit.filename not in applied]

    def _apply(self, unit: MigrationUnit, report: RunReport) -> UnitResult:
        started = time.monotonic()

        try:
            already_applied = self.ledger.has_applied(unit.filename)
        except DBAPIError as e:
            raise self._failure(unit, report, error_message(e), started) from e
        if already_applied:
            log.info("migration_skipped", filename=unit.filename, reason="already_applied")
            return UnitResult(unit.filename, unit.description, UnitOutcome.ALREADY_APPLIED)

        try:
            sql = unit.load_source()
        except (OSError, UnicodeDecodeError) as e:
            message = f"Could not read {unit.path}: {e}"
            raise self._failure(unit, report, message, started) from e
        if sql is None:
            log.warning("migration_source_missing", filename=unit.filename, path=str(unit.path))
            return UnitResult(unit.filename, unit.description, UnitOutcome.MISSING)

        statements = split_statements(sql)
        log.info(
            "migration_started",
            filename=unit.filename,
            description=unit.description,
            statements=len(statements),
        )

        try:
            self._execute(unit, statements)
        except DBAPIError as e:
            message = error_message(e)
            if not is_benign_error(e):
                raise self._failure(unit, report, message, started, len(statements)) from e

            self._record(unit, report, started, len(statements))
            log.info(
                "migration_already_exists",
                filename=unit.filename,
                error=message,
                elapsed_ms=_elapsed_ms(started),
            )
            return UnitResult(
                unit.filename,
                unit.description,
                UnitOutcome.BENIGN_FAILURE,
                elapsed_seconds=time.monotonic() - started,
                statements=len(statements),
                error=message,
            )

        self._record(unit, report, started, len(statements))
        log.info(
            "migration_applied",
            filename=unit.filename,
            statements=len(statements),
            elapsed_ms=_elapsed_ms(started),
        )
        return UnitResult(
            unit.filename,
            unit.description,
            UnitOutcome.APPLIED,
            elapsed_seconds=time.monotonic() - started,
            statements=len(statements),
        )

    def _record(
        self, unit: MigrationUnit, report: RunReport, started: float, statements: int
    ) -> None:
        try:
            self.ledger.record_applied(unit.filename)
        except DBAPIError as e:
            message = f"Could not record {unit.filename} in the ledger: {error_message(e)}"
            raise self._failure(unit, report, message, started, statements) from e

    def _failure(
        self,
        unit: MigrationUnit,
        report: RunReport,
        message: str,
        started: float,
        statements: int = 0,
    ) -> MigrationError:
        """Mark ``unit`` as failed in ``report`` and build the error to raise."""
        log.error(
            "migration_failed",
            filename=unit.filename,
            description=unit.description,
            error=message,
            elapsed_ms=_elapsed_ms(started),
        )
        report.results.append(
            UnitResult(
                unit.filename,
                unit.description,
                UnitOutcome.FAILED,
                elapsed_seconds=time.monotonic() - started,
                statements=statements,
                error=message,
            )
        )
        report.failed_unit = unit.filename
        report.error = message
        return MigrationError(unit.filename, message, report)

    def _execute(self, unit: MigrationUnit, statements: list[str]) -> None:
        """Run statements in order, committing each one.

        Statements go through ``exec_driver_sql`` with no parameters, so the
        driver does not interpret ``:name``, ``%`` or ``::jsonb`` in them.
        """
        with self.engine.connect() as conn:
            for index, statement in enumerate(statements, start=1):
                try:
                    conn.exec_driver_sql(statement, execution_options={"no_parameters": True})
                    conn.commit()
                except DBAPIError as e:
                    conn.rollback()
                    log_failure = log.warning if is_benign_error(e) else log.error
                    log_failure(
                        "migration_statement_failed",
                        filename=unit.filename,
                        statement_index=index,
                        statement=statement,
                    )
                    raise


def migrate(config: Config, *, verify: bool = True) -> RunReport:
    """Run the configured catalog against the configured database.

    Connects (with retry), applies pending units, then verifies the schema.
    A fatal unit failure is captured in the returned report, and the
    verifier still runs so operators get a schema snapshot. When the
    database is unreachable the verifier is skipped.

    Args:
        config: Application configuration.
        verify: Run the schema verifier after migrating.

    Returns:
        RunReport; ``report.success`` is the overall outcome.

    Raises:
        ConfigurationError: If no connection parameters are configured or
            the catalog is invalid. Raised before connecting.
    """
    if not config.database.is_configured:
        log.error("database_not_configured")
        raise ConfigurationError(
            "No database configuration found. "
            "Set DATABASE_URL or PGHOST (or database.url / database.host)."
        )

    catalog = Catalog.from_config(config.migrations, base_dir=config.base_dir)
    report = RunReport()

    with engine_scope(config) as engine:
        try:
            wait_for_connection(
                engine,
                attempts=config.database.connect_attempts,
                delay=config.database.retry_delay_seconds,
            )
        except DatabaseUnavailableError as e:
            log.error("database_unavailable", error=str(e))
            report.error = str(e)
            return report

        try:
            report = MigrationRunner(engine, catalog).run()
        except MigrationError as e:
            report = e.report or RunReport(failed_unit=e.filename, error=e.message)
        except DBAPIError as e:
            # Ledger table could not be created; no unit was attempted
            log.error("ledger_unavailable", error=error_message(e))
            report = RunReport(error=error_message(e))

        if verify:
            report.verification = verify_schema(
                engine,
                tables=config.verify.tables,
                views=config.verify.views,
                functions=config.verify.functions,
                columns=config.verify.columns,
                schema=config.verify.schema_name,
            )

    log.info(
        "run_finished",
        status=report.status,
        applied=report.applied_count,
        skipped=report.skipped_count,
        missing=report.missing,
        failed_unit=report.failed_unit,
    )
    return report
