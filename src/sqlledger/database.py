"""Database connection management and ledger schema for sqlledger.

Uses SQLAlchemy Core (not ORM). The only table this package owns is the
migration ledger; everything else in the target database is created by the
migration scripts themselves.
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import Column, DateTime, MetaData, String, Table, create_engine, text
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.exc import DBAPIError

from sqlledger.config import Config, DatabaseConfig
from sqlledger.errors import ConfigurationError, DatabaseUnavailableError
from sqlledger.logging import get_logger

log = get_logger("database")

metadata = MetaData()

schema_migrations = Table(
    "schema_migrations",
    metadata,
    Column("filename", String(255), primary_key=True),
    Column("applied_at", DateTime, nullable=False),
)


def build_url(database: DatabaseConfig) -> URL:
    """Build the SQLAlchemy URL for the configured database.

    A connection string wins over discrete fields. ``postgres://`` is
    accepted as an alias for ``postgresql://`` and bare PostgreSQL URLs use
    the psycopg driver.

    Args:
        database: Database section of the configuration.

    Returns:
        SQLAlchemy URL.

    Raises:
        ConfigurationError: If neither a URL nor a host is configured.
    """
    if database.url:
        raw = database.url
        if raw.startswith("postgres://"):
            raw = "postgresql://" + raw[len("postgres://"):]
        url = make_url(raw)
        if url.drivername == "postgresql":
            url = url.set(drivername="postgresql+psycopg")
    elif database.host:
        url = URL.create(
            "postgresql+psycopg",
            username=database.user,
            password=database.password,
            host=database.host,
            port=database.port,
            database=database.name,
        )
    else:
        raise ConfigurationError(
            "No database configuration found. "
            "Set DATABASE_URL or PGHOST (or database.url / database.host)."
        )

    if database.ssl_required and url.get_backend_name() == "postgresql":
        url = url.update_query_dict({"sslmode": "require"})

    return url


def mask_url(url: URL | str) -> str:
    """Render a URL with its password hidden."""
    if isinstance(url, str):
        url = make_url(url)
    return url.render_as_string(hide_password=True)


def error_message(exc: BaseException) -> str:
    """Return the driver's error text for a SQLAlchemy DB error."""
    orig = getattr(exc, "orig", None)
    return str(orig if orig is not None else exc).strip()


def get_engine(config: Config) -> Engine:
    """Create SQLAlchemy engine from config.

    Args:
        config: Application configuration.

    Returns:
        SQLAlchemy Engine instance.
    """
    url = build_url(config.database)

    if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(
        url,
        echo=config.log_level == "DEBUG",
        pool_pre_ping=True,
    )
    log.debug("engine_created", url=mask_url(url))
    return engine


@contextmanager
def engine_scope(config: Config) -> Iterator[Engine]:
    """Create an engine and dispose it on every exit path."""
    engine = get_engine(config)
    try:
        yield engine
    finally:
        engine.dispose()
        log.debug("engine_disposed")


def wait_for_connection(engine: Engine, attempts: int = 5, delay: float = 2.0) -> None:
    """Block until the database answers a trivial query.

    Args:
        engine: SQLAlchemy engine.
        attempts: Maximum number of connection attempts.
        delay: Seconds to sleep between attempts.

    Raises:
        DatabaseUnavailableError: If every attempt failed.
    """
    last_error: DBAPIError | None = None

    for attempt in range(1, attempts + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            log.info("database_connected", url=mask_url(engine.url), attempt=attempt)
            return
        except DBAPIError as e:
            last_error = e
            log.warning(
                "database_connect_failed",
                attempt=attempt,
                max_attempts=attempts,
                error=error_message(e),
            )
            if attempt < attempts:
                time.sleep(delay)

    raise DatabaseUnavailableError(
        f"Could not connect to {mask_url(engine.url)} after {attempts} attempts: "
        f"{error_message(last_error) if last_error else 'unknown error'}"
    ) from last_error
