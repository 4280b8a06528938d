"""Ledger of applied migrations.

The ledger is the ``schema_migrations`` table: one row per applied unit,
keyed by filename. Rows are only ever inserted, never updated or deleted.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import inspect, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from sqlledger.database import schema_migrations
from sqlledger.logging import get_logger

log = get_logger("ledger")


@dataclass(frozen=True)
class LedgerEntry:
    """A persisted record proving a migration unit was applied."""

    filename: str
    applied_at: datetime


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the way the ledger stores it."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Ledger:
    """Reads and appends the applied-migration ledger."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def exists(self) -> bool:
        """Whether the ledger table has been created."""
        return inspect(self.engine).has_table(schema_migrations.name)

    def ensure_schema(self) -> None:
        """Create the ledger table if it does not exist."""
        schema_migrations.create(self.engine, checkfirst=True)

    def has_applied(self, filename: str) -> bool:
        """Check whether a unit has been recorded as applied."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(schema_migrations.c.filename).where(
                    schema_migrations.c.filename == filename
                )
            ).first()
        return row is not None

    def record_applied(self, filename: str, applied_at: datetime | None = None) -> None:
        """Record a unit as applied.

        A row that already exists for ``filename`` is left untouched and no
        error is raised.

        Args:
            filename: Catalog filename of the unit.
            applied_at: Time of application; defaults to now (UTC).
        """
        values = {"filename": filename, "applied_at": applied_at or utcnow()}
        dialect = self.engine.dialect.name

        if dialect in ("postgresql", "sqlite"):
            insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
            stmt = insert(schema_migrations).values(**values).on_conflict_do_nothing(
                index_elements=["filename"]
            )
            with self.engine.begin() as conn:
                conn.execute(stmt)
            return

        try:
            with self.engine.begin() as conn:
                conn.execute(schema_migrations.insert().values(**values))
        except IntegrityError:
            log.debug("ledger_entry_exists", filename=filename)

    def applied(self) -> list[LedgerEntry]:
        """All ledger entries, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(schema_migrations).order_by(
                    schema_migrations.c.applied_at, schema_migrations.c.filename
                )
            ).fetchall()
        return [LedgerEntry(filename=row.filename, applied_at=row.applied_at) for row in rows]

    def applied_filenames(self) -> set[str]:
        """Filenames of every applied unit."""
        with self.engine.connect() as conn:
            return set(conn.execute(select(schema_migrations.c.filename)).scalars())
