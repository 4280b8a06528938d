"""Post-run schema verification.

Checks that expected tables, views and functions exist, and that required
columns are present on their tables. Everything is read from catalog
metadata; no DML is run against the objects and nothing is mutated.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from sqlalchemy import inspect, text
from sqlalchemy.engine import Connection, Engine

from sqlledger.logging import get_logger

log = get_logger("verifier")


@dataclass
class SchemaObjectStatus:
    """Presence of one expected schema object."""

    kind: str
    name: str
    present: bool


@dataclass
class VerificationReport:
    """Presence of every expected object after a run."""

    tables: list[SchemaObjectStatus] = field(default_factory=list)
    views: list[SchemaObjectStatus] = field(default_factory=list)
    functions: list[SchemaObjectStatus] = field(default_factory=list)
    missing_columns: dict[str, list[str]] = field(default_factory=dict)

    @property
    def objects(self) -> list[SchemaObjectStatus]:
        return [*self.tables, *self.views, *self.functions]

    @property
    def all_tables_present(self) -> bool:
        return all(status.present for status in self.tables)

    @property
    def critical_ok(self) -> bool:
        """Whether every expected table and required column exists."""
        return self.all_tables_present and not self.missing_columns

    @property
    def all_present(self) -> bool:
        return self.critical_ok and all(status.present for status in self.objects)

    @property
    def missing(self) -> list[str]:
        """Names of absent objects, tables first."""
        return [status.name for status in self.objects if not status.present]

    def to_dict(self) -> dict:
        return {
            "tables": {s.name: s.present for s in self.tables},
            "views": {s.name: s.present for s in self.views},
            "functions": {s.name: s.present for s in self.functions},
            "missing_columns": {k: list(v) for k, v in self.missing_columns.items()},
        }


def _existing_functions(
    conn: Connection, names: list[str], schema: str | None
) -> set[str]:
    """Names among ``names`` that exist as stored functions or procedures.

    Dialects without stored functions (SQLite) report none.
    """
    if not names or conn.dialect.name != "postgresql":
        return set()

    query = "SELECT DISTINCT routine_name FROM information_schema.routines WHERE routine_name = ANY(:names)"
    params: dict = {"names": names}
    if schema is not None:
        query += " AND routine_schema = :schema"
        params["schema"] = schema

    return set(conn.execute(text(query), params).scalars())


def verify_schema(
    engine: Engine,
    tables: Iterable[str] = (),
    views: Iterable[str] = (),
    functions: Iterable[str] = (),
    columns: Mapping[str, Iterable[str]] | None = None,
    schema: str | None = None,
) -> VerificationReport:
    """Report which expected schema objects exist.

    Args:
        engine: SQLAlchemy engine for the migrated database.
        tables: Critical tables.
        views: Expected views.
        functions: Expected stored functions.
        columns: Required columns per table.
        schema: Schema to inspect; defaults to the connection's default.

    Returns:
        VerificationReport with one status per expected object.
    """
    report = VerificationReport()

    with engine.connect() as conn:
        inspector = inspect(conn)
        existing_tables = set(inspector.get_table_names(schema=schema))
        existing_views = set(inspector.get_view_names(schema=schema))

        report.tables = [
            SchemaObjectStatus("table", name, name in existing_tables) for name in tables
        ]
        report.views = [
            SchemaObjectStatus("view", name, name in existing_views) for name in views
        ]

        function_names = list(functions)
        existing_functions = _existing_functions(conn, function_names, schema)
        report.functions = [
            SchemaObjectStatus("function", name, name in existing_functions)
            for name in function_names
        ]

        for table, required in (columns or {}).items():
            required = list(required)
            if table in existing_tables or table in existing_views:
                present = {col["name"] for col in inspector.get_columns(table, schema=schema)}
            else:
                present = set()
            absent = [col for col in required if col not in present]
            if absent:
                report.missing_columns[table] = absent

    for status in report.objects:
        if not status.present:
            log.warning("schema_object_missing", kind=status.kind, name=status.name)
    for table, absent in report.missing_columns.items():
        log.warning("schema_columns_missing", table=table, columns=absent)

    log.info(
        "verification_complete",
        tables_present=sum(s.present for s in report.tables),
        tables_expected=len(report.tables),
        missing=report.missing,
    )
    return report
